"""
Property tier registry for the Suggest API.

Loads the tier document (attribute name -> tier / value kind), validates it
against data/property_tiers.schema.json, and exposes an immutable lookup.
Any attribute name the document does not list resolves to the
``specialized`` tier with a ``string`` value kind.

Usage:
    handle = RegistryHandle("data/suggest_property_tiers.json")
    registry = handle.get()
    meta = registry.lookup("wheelchair")   # PropertyMetadata(tier="core", ...)

A reload builds a complete replacement registry and swaps the handle's
reference in one assignment; in-flight readers keep the old object.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from intake_config import INTAKE_CONFIG, TIER_ORDER
from intake_errors import TierConfigError

logger = logging.getLogger(__name__)

MAX_CORE_ATTRIBUTES = 10


class Tier(str, Enum):
    CORE = "core"
    HIGH_FREQUENCY = "high_frequency"
    OPTIONAL = "optional"
    SPECIALIZED = "specialized"


class ValueKind(str, Enum):
    STRING = "string"
    BOOLEAN = "boolean"
    ENUM = "enum"
    MONETARY = "monetary"
    NUMBER = "number"
    DATE = "date"


@dataclass(frozen=True)
class PropertyMetadata:
    """Tier and value-kind information for one attribute name."""
    name: str
    tier: Tier
    value_kind: ValueKind
    frequency: int = 0
    synthetic: bool = False     # part of the model but not an OSM tag (lat/lng)
    enum_values: Optional[FrozenSet[str]] = None
    description: str = ""
    known: bool = True          # False for names absent from the document

    @property
    def required(self) -> bool:
        return self.tier is Tier.CORE


@dataclass(frozen=True)
class TierDefinition:
    name: str
    description: str
    strict_validation: bool
    required: bool
    ui_behavior: str = ""
    validation_requirement: str = ""


@dataclass(frozen=True)
class TierStatistics:
    total_count: int
    synthetic_count: int
    osm_property_count: int


# =============================================================================
# Loading
# =============================================================================

def read_json_document(path: str, what: str) -> Any:
    """Load a JSON file, raising TierConfigError (labelled *what*) on failure."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError:
        raise TierConfigError(f"{what} not found at {path}")
    except json.JSONDecodeError as e:
        raise TierConfigError(f"{what} at {path} is not valid JSON: {e}")


def _schema_errors(document: Any, schema: Dict[str, Any]) -> list:
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as e:
        raise TierConfigError(f"Tier schema itself is invalid: {e.message}")
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(document), key=lambda e: list(e.absolute_path))
    return [
        f"{'/'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}"
        for err in errors
    ]


def load_tier_document(path: str, schema_path: Optional[str] = None) -> Dict[str, Any]:
    """Read a tier document from disk and validate it against the schema.

    Raises:
        TierConfigError: file missing, unparsable, or schema violations.
    """
    schema = read_json_document(schema_path or INTAKE_CONFIG.tier_schema_path, "Tier schema")
    document = read_json_document(path, "Tier configuration")
    problems = _schema_errors(document, schema)
    if problems:
        raise TierConfigError(
            f"Invalid tier configuration {path}: " + "; ".join(problems[:10])
        )
    return document


class PropertyTierRegistry:
    """Immutable attribute -> PropertyMetadata lookup built from a tier document."""

    def __init__(
        self,
        version: str,
        tiers: Mapping[str, TierDefinition],
        properties: Mapping[str, PropertyMetadata],
        source: str = "",
    ):
        self.version = version
        self.source = source
        self._tiers = MappingProxyType(dict(tiers))
        self._properties = MappingProxyType(dict(properties))
        # Core attributes keep document order; Phase A walks them in this order.
        self._core: Tuple[str, ...] = tuple(
            name for name, meta in self._properties.items() if meta.tier is Tier.CORE
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_document(
        cls,
        document: Dict[str, Any],
        schema: Optional[Dict[str, Any]] = None,
        source: str = "",
    ) -> "PropertyTierRegistry":
        """Build a registry from an already-parsed tier document.

        When *schema* is given the document is schema-validated first.
        Semantic checks (core size, enum placement) always run.
        """
        if schema is not None:
            problems = _schema_errors(document, schema)
            if problems:
                raise TierConfigError("Invalid tier configuration: " + "; ".join(problems[:10]))

        if not isinstance(document, dict):
            raise TierConfigError("Tier configuration must be a JSON object")
        for key in ("version", "tiers", "properties"):
            if key not in document:
                raise TierConfigError(f"Tier configuration is missing '{key}'")

        raw_tiers = document["tiers"]
        missing = [t for t in TIER_ORDER if t not in raw_tiers]
        if missing:
            raise TierConfigError(f"Tier configuration does not define tiers: {missing}")

        tiers = {}
        for name, raw in raw_tiers.items():
            tiers[name] = TierDefinition(
                name=name,
                description=raw.get("description", ""),
                strict_validation=bool(raw.get("strict_validation", False)),
                required=bool(raw.get("required", False)),
                ui_behavior=raw.get("ui_behavior", ""),
                validation_requirement=raw.get("validation_requirement", ""),
            )

        properties = {}
        for name, raw in document["properties"].items():
            try:
                tier = Tier(raw["tier"])
                kind = ValueKind(raw["validationType"])
            except (KeyError, ValueError) as e:
                raise TierConfigError(f"Property '{name}' has an invalid tier or type: {e}")
            enum_values = raw.get("enumValues")
            if enum_values is not None and kind is not ValueKind.ENUM:
                raise TierConfigError(
                    f"Property '{name}' lists enumValues but is typed {kind.value}"
                )
            properties[name] = PropertyMetadata(
                name=name,
                tier=tier,
                value_kind=kind,
                frequency=int(raw.get("frequency", 0)),
                synthetic=bool(raw.get("synthetic", False)),
                enum_values=frozenset(enum_values) if enum_values else None,
                description=raw.get("description", ""),
            )

        core_count = sum(1 for m in properties.values() if m.tier is Tier.CORE)
        if core_count == 0:
            raise TierConfigError("Tier configuration defines no core properties")
        if core_count > MAX_CORE_ATTRIBUTES:
            raise TierConfigError(
                f"Core tier has {core_count} properties, at most {MAX_CORE_ATTRIBUTES} allowed"
            )

        return cls(
            version=str(document["version"]),
            tiers=tiers,
            properties=properties,
            source=source or document.get("source", ""),
        )

    @classmethod
    def from_file(cls, path: str, schema_path: Optional[str] = None) -> "PropertyTierRegistry":
        document = load_tier_document(path, schema_path)
        registry = cls.from_document(document, source=path)
        logger.info(
            "Loaded tier configuration %s v%s: %d properties (%d core)",
            path, registry.version, len(registry), len(registry.core_attributes),
        )
        return registry

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._properties)

    def __contains__(self, name: object) -> bool:
        return name in self._properties

    @property
    def core_attributes(self) -> Tuple[str, ...]:
        return self._core

    @property
    def tiers(self) -> Mapping[str, TierDefinition]:
        return self._tiers

    def metadata(self, name: str) -> Optional[PropertyMetadata]:
        """Metadata for a listed attribute, or None when the name is unknown."""
        return self._properties.get(name)

    def lookup(self, name: str) -> PropertyMetadata:
        """Metadata for *name*; unknown names default to specialized/string."""
        meta = self._properties.get(name)
        if meta is not None:
            return meta
        return PropertyMetadata(
            name=name,
            tier=Tier.SPECIALIZED,
            value_kind=ValueKind.STRING,
            known=False,
        )

    def names_in_tier(self, tier: Tier) -> Tuple[str, ...]:
        return tuple(n for n, m in self._properties.items() if m.tier is tier)

    def tier_statistics(self) -> Dict[str, TierStatistics]:
        """Per-tier counts of listed attributes, split into synthetic vs OSM tags."""
        counts = {name: [0, 0] for name in self._tiers}
        for meta in self._properties.values():
            bucket = counts.setdefault(meta.tier.value, [0, 0])
            bucket[0 if meta.synthetic else 1] += 1
        return {
            name: TierStatistics(
                total_count=synthetic + osm,
                synthetic_count=synthetic,
                osm_property_count=osm,
            )
            for name, (synthetic, osm) in counts.items()
        }


# =============================================================================
# Process-wide handle
# =============================================================================

class RegistryHandle:
    """Owns the current registry; reload swaps in a fully built replacement."""

    def __init__(self, path: Optional[str] = None, schema_path: Optional[str] = None,
                 registry: Optional[PropertyTierRegistry] = None):
        self.path = path or INTAKE_CONFIG.tier_config_path
        self.schema_path = schema_path
        self._registry = registry or PropertyTierRegistry.from_file(self.path, schema_path)

    def get(self) -> PropertyTierRegistry:
        return self._registry

    def reload(self) -> PropertyTierRegistry:
        """Load the document again and swap it in.

        On failure the current registry stays in place and TierConfigError
        propagates to the caller.
        """
        try:
            fresh = PropertyTierRegistry.from_file(self.path, self.schema_path)
        except TierConfigError:
            logger.error("Tier configuration reload failed; keeping v%s", self._registry.version)
            raise
        self._registry = fresh
        return fresh
