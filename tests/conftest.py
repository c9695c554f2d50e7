"""Shared fixtures for the suggestion intake test suite.

Provides the shipped tier registry, a small inline tier document for
registry edge cases, and helpers for building known-location snapshots.
"""

import copy
import os

import pytest

# Keep a developer's .env from leaking into config_from_env tests.
for _var in ("TIER_CONFIG", "KNOWN_LOCATIONS_PATH", "KNOWN_LOCATIONS_URL",
             "DUPLICATE_THRESHOLD_METERS"):
    os.environ.pop(_var, None)

from intake_config import DEFAULT_TIER_CONFIG_PATH, TIER_SCHEMA_PATH  # noqa: E402
from property_tiers import PropertyTierRegistry, RegistryHandle, read_json_document  # noqa: E402
from spatial_index import KnownLocation  # noqa: E402
from tiered_validator import TieredValidator  # noqa: E402
from intake_trace import clear_trace  # noqa: E402


_MINIMAL_TIERS = {
    name: {"description": name, "strict_validation": name in ("core", "high_frequency"),
           "required": name == "core"}
    for name in ("core", "high_frequency", "optional", "specialized")
}

MINIMAL_DOCUMENT = {
    "version": "0.1.0",
    "tiers": _MINIMAL_TIERS,
    "properties": {
        "lat": {"tier": "core", "frequency": 10, "validationType": "number", "synthetic": True},
        "lng": {"tier": "core", "frequency": 10, "validationType": "number", "synthetic": True},
        "amenity": {"tier": "core", "frequency": 10, "validationType": "enum",
                    "enumValues": ["toilets"]},
        "name": {"tier": "high_frequency", "frequency": 5, "validationType": "string"},
        "supervised": {"tier": "optional", "frequency": 2, "validationType": "boolean"},
        "website": {"tier": "specialized", "frequency": 1, "validationType": "string"},
    },
}


@pytest.fixture(scope="session")
def tier_schema():
    return read_json_document(TIER_SCHEMA_PATH, "Tier schema")


@pytest.fixture(scope="session")
def registry():
    """The shipped tier document, loaded and schema-validated once."""
    return PropertyTierRegistry.from_file(DEFAULT_TIER_CONFIG_PATH)


@pytest.fixture()
def registry_handle(registry):
    return RegistryHandle(registry=registry)


@pytest.fixture()
def validator(registry):
    return TieredValidator(registry)


@pytest.fixture()
def minimal_document():
    """A fresh deep copy so tests can mutate it freely."""
    return copy.deepcopy(MINIMAL_DOCUMENT)


@pytest.fixture()
def strict_payload():
    """A complete v2 submission that passes strict validation."""
    return {
        "lat": 51.5074,
        "lng": -0.1278,
        "@id": "node/123456",
        "amenity": "toilets",
        "wheelchair": "yes",
        "access": "yes",
        "opening_hours": "24/7",
        "fee": False,
    }


def _lattice(origin_lat, origin_lng, rows, cols, step_deg=0.01, prefix="loc"):
    return tuple(
        KnownLocation(
            id=f"{prefix}_{r}_{c}",
            lat=origin_lat + r * step_deg,
            lng=origin_lng + c * step_deg,
        )
        for r in range(rows)
        for c in range(cols)
    )


@pytest.fixture()
def grid_locations():
    """Factory for a rows x cols lattice of KnownLocations from an origin."""
    return _lattice


@pytest.fixture(autouse=True)
def _no_trace():
    """Make sure no trace context leaks between tests."""
    clear_trace()
    yield
    clear_trace()
