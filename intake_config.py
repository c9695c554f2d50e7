"""
Intake configuration for the toilet suggestion pipeline.

Owns every numeric constant that affects validation and duplicate
detection: the duplicate threshold, the spatial grid cell size, the
expanding-radius schedule, and the legacy (v1) compatibility tables.
The attribute -> tier mapping itself lives in the tier document
(data/suggest_property_tiers.json), not here.

Frozen dataclasses provide type checking and IDE support; environment
overrides are read once through python-dotenv by ``config_from_env()``.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Dict, Tuple

from dotenv import load_dotenv


_HERE = os.path.dirname(os.path.abspath(__file__))

DEFAULT_TIER_CONFIG_PATH = os.path.join(_HERE, "data", "suggest_property_tiers.json")
TIER_SCHEMA_PATH = os.path.join(_HERE, "data", "property_tiers.schema.json")

TIER_ORDER = ("core", "high_frequency", "optional", "specialized")


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class GeoSettings:
    """Earth model used by haversine distance and the grid index."""
    earth_radius_m: float = 6_371_000.0
    # Rough metres per degree of latitude.  Slightly below the true value
    # (~111,195 m) so degree spans derived from it over-cover the circle.
    meters_per_degree: float = 111_000.0


@dataclass(frozen=True)
class DuplicateSettings:
    """Nearest-neighbour search parameters for duplicate detection."""
    threshold_m: float = 50.0
    cell_size_deg: float = 0.01          # ~1.1 km cells
    search_radii_m: Tuple[int, ...] = (100, 500, 1000, 2000, 5000)
    linear_scan_below: int = 100         # snapshots smaller than this skip the grid


@dataclass(frozen=True)
class LegacySettings:
    """v1 payload compatibility: field renames and core defaults."""
    field_mappings: Dict[str, str] = field(default_factory=lambda: {
        "accessible": "wheelchair",
        "hours": "opening_hours",
        "payment_contactless": "payment:contactless",
    })
    # Legacy fields whose boolean value encodes as a "yes"/"no" tag.
    yes_no_fields: Tuple[str, ...] = ("accessible", "payment_contactless")
    charge_currency: str = "GBP"
    # Applied to absent core attributes in legacy-compatible mode only.
    # "@id" is generated per submission, lat/lng have no default.
    core_defaults: Dict[str, object] = field(default_factory=lambda: {
        "amenity": "toilets",
        "wheelchair": "unknown",
        "access": "yes",
        "opening_hours": "unknown",
        "fee": False,
    })
    id_prefix: str = "node/suggest_"


@dataclass(frozen=True)
class CoercionSettings:
    """Vocabulary accepted when coercing lenient-tier values."""
    true_words: Tuple[str, ...] = ("yes", "true", "1")
    false_words: Tuple[str, ...] = ("no", "false", "0")


@dataclass(frozen=True)
class IntakeConfig:
    """Top-level container for all intake parameters.

    A single module-level instance (INTAKE_CONFIG) is the default; callers
    that need overrides build their own with ``dataclasses.replace``.
    """
    version: str
    geo: GeoSettings
    duplicate: DuplicateSettings
    legacy: LegacySettings
    coercion: CoercionSettings
    tier_config_path: str = DEFAULT_TIER_CONFIG_PATH
    tier_schema_path: str = TIER_SCHEMA_PATH
    known_locations_path: str = ""
    known_locations_url: str = ""


INTAKE_CONFIG = IntakeConfig(
    version="2.0.0",
    geo=GeoSettings(),
    duplicate=DuplicateSettings(),
    legacy=LegacySettings(),
    coercion=CoercionSettings(),
)

# Validate the radius schedule at import time (ValueError, not assert,
# so validation is never stripped by python -O).
_radii = INTAKE_CONFIG.duplicate.search_radii_m
if list(_radii) != sorted(_radii) or not _radii:
    raise ValueError(f"search_radii_m must be non-empty and ascending, got {_radii}")


def config_from_env(base: IntakeConfig = INTAKE_CONFIG) -> IntakeConfig:
    """Return *base* with overrides from the environment (and .env).

    Recognised variables: TIER_CONFIG, KNOWN_LOCATIONS_PATH,
    KNOWN_LOCATIONS_URL, DUPLICATE_THRESHOLD_METERS.
    """
    load_dotenv()

    duplicate = base.duplicate
    raw_threshold = os.environ.get("DUPLICATE_THRESHOLD_METERS")
    if raw_threshold:
        try:
            threshold = float(raw_threshold)
        except ValueError:
            raise ValueError(
                f"DUPLICATE_THRESHOLD_METERS must be numeric, got {raw_threshold!r}"
            )
        if threshold <= 0:
            raise ValueError(f"DUPLICATE_THRESHOLD_METERS must be positive, got {threshold}")
        duplicate = replace(duplicate, threshold_m=threshold)

    return replace(
        base,
        duplicate=duplicate,
        tier_config_path=os.environ.get("TIER_CONFIG", base.tier_config_path),
        known_locations_path=os.environ.get("KNOWN_LOCATIONS_PATH", base.known_locations_path),
        known_locations_url=os.environ.get("KNOWN_LOCATIONS_URL", base.known_locations_url),
    )
