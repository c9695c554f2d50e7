"""
Tier-based validation for toilet suggestions.

Core properties are strictly required, high-frequency properties are
strictly validated when present, optional properties are validated
leniently (with coercion), and specialized properties - including every
name the tier document does not list - only get a basic type check that
can never block a submission.

Processing order for one submission:
  1. Legacy (v1) field remapping: accessible/hours/payment_contactless and a
     numeric fee are translated into their OSM tags.  Explicit OSM tags win.
  2. Legacy-compatible mode only: documented defaults for absent core
     properties (lat/lng have none).
  3. Phase A: every core property, strict checks.  Any core error ends
     validation here (fail-fast); Phase B never runs.
  4. Phase B: every other supplied property in input order, dispatched on
     its tier.
  5. Sanitizing: trimmed strings, coerced values, no blank non-core values.

All per-field problems are returned on ValidationOutcome.  The only thing
raised is MalformedSubmissionError, for input that is not a mapping at all.
"""

import hashlib
import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from intake_config import INTAKE_CONFIG, IntakeConfig, TIER_ORDER
from intake_errors import IssueCode, MalformedSubmissionError, ResponseCode
from property_tiers import PropertyMetadata, PropertyTierRegistry, Tier, ValueKind

logger = logging.getLogger(__name__)

# Closed set of values a parsed JSON body can carry.
AttributeValue = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]

COORDINATE_RANGES = {
    "lat": (-90.0, 90.0, "Latitude"),
    "lng": (-180.0, 180.0, "Longitude"),
}

_DATE_RE = re.compile(r"^(\d{4})(?:-(\d{2})(?:-(\d{2}))?)?$")
# "2", "0.50", "1,20 EUR", "0.50 GBP/hour"
_AMOUNT_RE = re.compile(r"^\d+(?:[.,]\d+)?(?:\s*[A-Z]{3})?(?:\s*/\s*[a-z]+)?$")
_YES_NO = ("yes", "no")


class ValidationMode(str, Enum):
    LEGACY = "legacy"   # v1: defaults for absent core properties
    STRICT = "strict"   # v2: every core property must be supplied

    @classmethod
    def parse(cls, value: Union[str, "ValidationMode", None]) -> "ValidationMode":
        """Accept enum members, 'legacy'/'strict', or API versions 'v1'/'v2'."""
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.LEGACY
        text = str(value).strip().lower()
        if text in ("v2", "strict"):
            return cls.STRICT
        if text in ("v1", "legacy", ""):
            return cls.LEGACY
        raise ValueError(f"Unknown validation mode: {value!r}")


class ValueType(Enum):
    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    STRUCTURED = "structured"


def classify_value(value: Any) -> ValueType:
    """Map a raw attribute value onto the closed ValueType set.

    bool is checked before int because bool subclasses int.  Anything that
    is not a JSON scalar counts as STRUCTURED.
    """
    if value is None:
        return ValueType.NULL
    if isinstance(value, bool):
        return ValueType.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueType.NUMBER
    if isinstance(value, str):
        return ValueType.STRING
    return ValueType.STRUCTURED


# =============================================================================
# Result types
# =============================================================================

@dataclass(frozen=True)
class Issue:
    """One validation error or warning."""
    field: str
    tier: str
    code: IssueCode
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "field": self.field,
            "tier": self.tier,
            "code": self.code.value,
            "message": self.message,
        }


@dataclass
class TierCounts:
    provided: int = 0
    required: int = 0
    valid: int = 0


@dataclass
class ValidationOutcome:
    """Structured result of validating one submission."""
    is_valid: bool
    errors: List[Issue]
    warnings: List[Issue]
    sanitized_data: Dict[str, Any]
    tier_summary: Dict[str, TierCounts]
    errors_by_tier: Dict[str, int] = field(default_factory=dict)
    mode: ValidationMode = ValidationMode.LEGACY

    def errors_for(self, field_name: str) -> List[Issue]:
        return [e for e in self.errors if e.field == field_name]

    def warnings_for(self, field_name: str) -> List[Issue]:
        return [w for w in self.warnings if w.field == field_name]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "sanitizedData": dict(self.sanitized_data),
            "tierSummary": {
                tier: {"provided": c.provided, "required": c.required, "valid": c.valid}
                for tier, c in self.tier_summary.items()
            },
            "errorsByTier": dict(self.errors_by_tier),
            "mode": self.mode.value,
        }


# =============================================================================
# Request body parsing (input-malformed stage)
# =============================================================================

def parse_submission(body: Union[str, bytes, Mapping[str, Any], None]) -> Dict[str, Any]:
    """Turn a request body into an attribute mapping.

    Raises:
        MalformedSubmissionError: empty body, invalid JSON, or JSON that is
            not an object.
    """
    if isinstance(body, Mapping):
        return dict(body)
    if body is None:
        raise MalformedSubmissionError(ResponseCode.MISSING_BODY, "Request body is required")
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedSubmissionError(
                ResponseCode.INVALID_JSON, "Invalid JSON in request body", str(e)
            )
    if not isinstance(body, str):
        raise MalformedSubmissionError(
            ResponseCode.INVALID_JSON,
            "Invalid JSON in request body",
            f"unsupported body type {type(body).__name__}",
        )
    if not body.strip():
        raise MalformedSubmissionError(ResponseCode.MISSING_BODY, "Request body is required")
    try:
        data = json.loads(body)
    except ValueError as e:
        # JSONDecodeError, or an integer literal past the digit limit
        raise MalformedSubmissionError(
            ResponseCode.INVALID_JSON, "Invalid JSON in request body", str(e)
        )
    if not isinstance(data, dict):
        raise MalformedSubmissionError(
            ResponseCode.INVALID_JSON,
            "Invalid JSON in request body",
            f"expected a JSON object, got {type(data).__name__}",
        )
    return data


# =============================================================================
# Value checks
# =============================================================================

def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_valid_date(text: str) -> bool:
    m = _DATE_RE.match(text)
    if not m:
        return False
    year, month, day = m.group(1), m.group(2), m.group(3)
    try:
        date(int(year), int(month or 1), int(day or 1))
    except ValueError:
        return False
    return True


def _finite_number(value: Union[int, float]) -> bool:
    """True when *value* is finite and representable as a float."""
    try:
        return math.isfinite(value)
    except OverflowError:
        # JSON integers are unbounded; anything past float range is unusable.
        return False


def _parse_number(text: str) -> Optional[Union[int, float]]:
    text = text.strip()
    if not text:
        return None
    try:
        number = int(text)
    except ValueError:
        pass
    else:
        return number if _finite_number(number) else None
    try:
        number = float(text)
    except ValueError:
        return None
    return number if _finite_number(number) else None


def _number_to_str(value: Union[int, float]) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _kind_label(meta: PropertyMetadata) -> str:
    if meta.value_kind is ValueKind.MONETARY:
        return "boolean, number, or amount string"
    if meta.value_kind is ValueKind.DATE:
        return "date (YYYY-MM-DD)"
    if meta.value_kind is ValueKind.ENUM:
        return "string"
    return meta.value_kind.value


def _enum_message(meta: PropertyMetadata) -> str:
    return f"{meta.name} must be one of: {', '.join(sorted(meta.enum_values or ()))}"


def strict_check(meta: PropertyMetadata, value: Any) -> Optional[Tuple[IssueCode, str]]:
    """Strict (no coercion) check of *value* against *meta*.

    Returns (code, message) for the first problem found, or None.
    """
    vtype = classify_value(value)
    kind = meta.value_kind
    bad_type = (IssueCode.INVALID_TYPE, f"{meta.name} must be a {_kind_label(meta)}")

    if kind is ValueKind.NUMBER:
        if vtype is not ValueType.NUMBER or not _finite_number(value):
            return bad_type
        if meta.name in COORDINATE_RANGES:
            low, high, label = COORDINATE_RANGES[meta.name]
            if value < low or value > high:
                return (
                    IssueCode.OUT_OF_RANGE,
                    f"{label} must be between {low:g} and {high:g} degrees",
                )
        return None

    if kind is ValueKind.BOOLEAN:
        return None if vtype is ValueType.BOOLEAN else bad_type

    if kind is ValueKind.STRING:
        return None if vtype is ValueType.STRING else bad_type

    if kind is ValueKind.ENUM:
        if vtype is not ValueType.STRING:
            return bad_type
        if meta.enum_values and value.strip() not in meta.enum_values:
            return (IssueCode.INVALID_ENUM, _enum_message(meta))
        return None

    if kind is ValueKind.MONETARY:
        if vtype is ValueType.BOOLEAN:
            return None
        if vtype is ValueType.NUMBER:
            return None if _finite_number(value) else bad_type
        if vtype is ValueType.STRING:
            text = value.strip()
            if text.lower() in _YES_NO or _AMOUNT_RE.match(text):
                return None
        return bad_type

    if kind is ValueKind.DATE:
        if vtype is ValueType.STRING and _is_valid_date(value.strip()):
            return None
        return bad_type

    return None


_COERCION_FAILED = object()


def coerce_value(meta: PropertyMetadata, value: Any, config: IntakeConfig = INTAKE_CONFIG) -> Any:
    """Best-effort conversion of *value* to meta's value kind.

    Returns the coerced value, or the module sentinel _COERCION_FAILED.
    Only called for values that already failed strict_check.
    """
    vtype = classify_value(value)
    kind = meta.value_kind
    true_words = config.coercion.true_words
    false_words = config.coercion.false_words

    if kind is ValueKind.STRING:
        if vtype is ValueType.BOOLEAN:
            return "yes" if value else "no"
        if vtype is ValueType.NUMBER:
            if isinstance(value, int):
                try:
                    return str(value)
                except ValueError:
                    # past the interpreter's int-to-str digit limit
                    return _COERCION_FAILED
            if _finite_number(value):
                return _number_to_str(value)
            return _COERCION_FAILED
        if vtype is ValueType.STRUCTURED:
            return json.dumps(value, sort_keys=True, default=str)
        return _COERCION_FAILED

    if kind is ValueKind.NUMBER:
        if vtype is ValueType.STRING:
            number = _parse_number(value)
            if number is not None:
                if meta.name in COORDINATE_RANGES:
                    low, high, _ = COORDINATE_RANGES[meta.name]
                    if number < low or number > high:
                        return _COERCION_FAILED
                return number
        return _COERCION_FAILED

    if kind is ValueKind.BOOLEAN:
        if vtype is ValueType.STRING:
            word = value.strip().lower()
            if word in true_words:
                return True
            if word in false_words:
                return False
        if vtype is ValueType.NUMBER and value in (0, 1):
            return bool(value)
        return _COERCION_FAILED

    if kind is ValueKind.ENUM:
        members = meta.enum_values or frozenset()
        if vtype is ValueType.STRING:
            wanted = value.strip().lower()
            for member in members:
                if member.lower() == wanted:
                    return member
        if vtype is ValueType.BOOLEAN and set(_YES_NO) <= members:
            return "yes" if value else "no"
        return _COERCION_FAILED

    # Monetary and date values have no sensible conversion beyond strict_check.
    return _COERCION_FAILED


# =============================================================================
# Validator
# =============================================================================

class TieredValidator:
    """Validates raw suggestion mappings against a PropertyTierRegistry.

    Stateless apart from its immutable registry and config, so one instance
    can serve concurrent requests.
    """

    def __init__(self, registry: PropertyTierRegistry, config: IntakeConfig = INTAKE_CONFIG):
        self.registry = registry
        self.config = config

    # ------------------------------------------------------------------
    # Pre-processing
    # ------------------------------------------------------------------

    def apply_legacy_mappings(self, raw: Mapping[str, Any], mode: ValidationMode) -> Dict[str, Any]:
        """Translate v1 field names/encodings into OSM tags.

        Legacy names are consumed.  A canonical tag that is already present
        (and not None) always wins over its legacy counterpart.
        """
        legacy = self.config.legacy
        working = dict(raw)

        for old_name, new_name in legacy.field_mappings.items():
            if old_name not in working:
                continue
            value = working.pop(old_name)
            if working.get(new_name) is not None:
                continue
            if old_name in legacy.yes_no_fields and isinstance(value, bool):
                value = "yes" if value else "no"
            working[new_name] = value

        fee = working.get("fee")
        # An out-of-range fee is left alone for strict_check to reject.
        if classify_value(fee) is ValueType.NUMBER and _finite_number(fee):
            working["fee"] = fee > 0
            if fee > 0 and working.get("charge") is None:
                working["charge"] = f"{fee:.2f} {legacy.charge_currency}"

        if mode is ValidationMode.LEGACY:
            # v1 clients send feature flags as booleans.
            for name in self.registry.names_in_tier(Tier.HIGH_FREQUENCY):
                meta = self.registry.lookup(name)
                value = working.get(name)
                if (isinstance(value, bool) and meta.value_kind is ValueKind.ENUM
                        and set(_YES_NO) <= (meta.enum_values or frozenset())):
                    working[name] = "yes" if value else "no"

        return working

    def _default_id(self, raw: Mapping[str, Any]) -> str:
        canonical = json.dumps(raw, sort_keys=True, default=str, separators=(",", ":"))
        digest = hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:12]
        return f"{self.config.legacy.id_prefix}{digest}"

    def _apply_core_defaults(
        self, working: Dict[str, Any], raw: Mapping[str, Any], warnings: List[Issue]
    ) -> None:
        defaults = self.config.legacy.core_defaults
        for name in self.registry.core_attributes:
            if not _is_blank(working.get(name)):
                continue
            if name == "@id":
                value: Any = self._default_id(raw)
            elif name in defaults:
                value = defaults[name]
            else:
                continue
            working[name] = value
            warnings.append(Issue(
                field=name,
                tier=Tier.CORE.value,
                code=IssueCode.INCOMPLETE_DATA,
                message=f"{name} was not provided; defaulted to {value!r}",
            ))

    # ------------------------------------------------------------------
    # Sanitizing
    # ------------------------------------------------------------------

    def _baseline_sanitize(self, working: Mapping[str, Any]) -> Dict[str, Any]:
        sanitized: Dict[str, Any] = {}
        for name, value in working.items():
            is_core = self.registry.lookup(name).tier is Tier.CORE
            if _is_blank(value) and not is_core:
                continue
            sanitized[name] = value.strip() if isinstance(value, str) else value
        return sanitized

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def validate(
        self,
        raw: Mapping[str, Any],
        mode: Union[ValidationMode, str, None] = ValidationMode.LEGACY,
    ) -> ValidationOutcome:
        """Validate one raw attribute mapping.

        Raises:
            MalformedSubmissionError: *raw* is not a mapping.
        """
        if not isinstance(raw, Mapping):
            raise MalformedSubmissionError(
                ResponseCode.INVALID_JSON,
                "Invalid JSON in request body",
                f"expected an object, got {type(raw).__name__}",
            )
        mode = ValidationMode.parse(mode)

        errors: List[Issue] = []
        warnings: List[Issue] = []
        summary = {tier: TierCounts() for tier in TIER_ORDER}
        errors_by_tier = {tier: 0 for tier in TIER_ORDER}

        working = self.apply_legacy_mappings(raw, mode)
        if mode is ValidationMode.LEGACY:
            self._apply_core_defaults(working, raw, warnings)

        sanitized = self._baseline_sanitize(working)

        # --- Phase A: core ---
        core_counts = summary[Tier.CORE.value]
        core_names = self.registry.core_attributes
        for name in core_names:
            core_counts.required += 1
            value = working.get(name)
            if _is_blank(value):
                errors.append(Issue(name, Tier.CORE.value, IssueCode.REQUIRED, f"{name} is required"))
                continue
            core_counts.provided += 1
            problem = strict_check(self.registry.lookup(name), value)
            if problem is None:
                core_counts.valid += 1
            else:
                errors.append(Issue(name, Tier.CORE.value, problem[0], problem[1]))

        if errors:
            errors_by_tier[Tier.CORE.value] = len(errors)
            logger.debug(
                "Core validation failed (%s mode): %s",
                mode.value, ", ".join(f"{e.field}:{e.code.value}" for e in errors),
            )
            return ValidationOutcome(
                is_valid=False,
                errors=errors,
                warnings=warnings,
                sanitized_data=sanitized,
                tier_summary=summary,
                errors_by_tier=errors_by_tier,
                mode=mode,
            )

        # --- Phase B: everything else, input order ---
        core_set = set(core_names)
        strict = mode is ValidationMode.STRICT
        for name, value in working.items():
            if name in core_set or _is_blank(value):
                continue
            meta = self.registry.lookup(name)
            tier = meta.tier.value
            counts = summary[tier]
            counts.provided += 1

            if meta.tier is Tier.HIGH_FREQUENCY:
                problem = strict_check(meta, value)
                if problem is None:
                    counts.valid += 1
                elif strict:
                    errors.append(Issue(name, tier, problem[0], problem[1]))
                    errors_by_tier[tier] += 1
                else:
                    warnings.append(Issue(
                        name, tier, IssueCode.TYPE_MISMATCH,
                        f"{problem[1]}; value ignored",
                    ))
                    sanitized.pop(name, None)

            elif meta.tier is Tier.OPTIONAL:
                if strict_check(meta, value) is None:
                    counts.valid += 1
                    continue
                coerced = coerce_value(meta, value, self.config)
                if coerced is not _COERCION_FAILED:
                    counts.valid += 1
                    sanitized[name] = coerced
                    warnings.append(Issue(
                        name, tier, IssueCode.TYPE_COERCION,
                        f"{name} was coerced to {meta.value_kind.value}",
                    ))
                    continue
                problem = strict_check(meta, value)
                if strict:
                    errors.append(Issue(name, tier, problem[0], problem[1]))
                    errors_by_tier[tier] += 1
                else:
                    warnings.append(Issue(
                        name, tier, IssueCode.TYPE_MISMATCH,
                        f"{problem[1]}; value ignored",
                    ))
                    sanitized.pop(name, None)

            else:
                counts.valid += 1
                if strict_check(meta, value) is not None:
                    warnings.append(Issue(
                        name, tier, IssueCode.TYPE_MISMATCH, f"Type mismatch for {name}",
                    ))

        return ValidationOutcome(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            sanitized_data=sanitized,
            tier_summary=summary,
            errors_by_tier=errors_by_tier,
            mode=mode,
        )


def validate_submission(
    raw: Mapping[str, Any],
    registry: PropertyTierRegistry,
    mode: Union[ValidationMode, str, None] = ValidationMode.LEGACY,
) -> ValidationOutcome:
    """Convenience wrapper: validate *raw* with a throwaway TieredValidator."""
    return TieredValidator(registry).validate(raw, mode)
