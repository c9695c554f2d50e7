"""Unit tests for property_tiers.py: tier document loading and lookup."""

import json

import pytest

from intake_errors import TierConfigError
from property_tiers import (
    MAX_CORE_ATTRIBUTES,
    PropertyTierRegistry,
    RegistryHandle,
    Tier,
    ValueKind,
    load_tier_document,
    read_json_document,
)


def _write(tmp_path, name, document):
    path = tmp_path / name
    path.write_text(json.dumps(document), encoding="utf-8")
    return str(path)


# =========================================================================
# Shipped tier document
# =========================================================================

class TestShippedDocument:
    def test_core_attributes_in_document_order(self, registry):
        assert registry.core_attributes == (
            "lat", "lng", "@id", "amenity", "wheelchair", "access", "opening_hours", "fee",
        )

    def test_core_size_within_limit(self, registry):
        assert 1 <= len(registry.core_attributes) <= MAX_CORE_ATTRIBUTES

    def test_four_tiers_defined(self, registry):
        assert set(registry.tiers) == {"core", "high_frequency", "optional", "specialized"}
        assert registry.tiers["core"].required is True
        assert registry.tiers["optional"].strict_validation is False

    def test_enum_values_only_on_enum_kinds(self, registry):
        for tier in Tier:
            for name in registry.names_in_tier(tier):
                meta = registry.lookup(name)
                if meta.enum_values is not None:
                    assert meta.value_kind is ValueKind.ENUM, name

    def test_lat_lng_are_synthetic(self, registry):
        assert registry.lookup("lat").synthetic is True
        assert registry.lookup("lng").synthetic is True
        assert registry.lookup("amenity").synthetic is False

    def test_tier_statistics(self, registry):
        stats = registry.tier_statistics()
        assert stats["core"].total_count == 8
        assert stats["core"].synthetic_count == 2
        assert stats["core"].osm_property_count == 6
        assert sum(s.total_count for s in stats.values()) == len(registry)


# =========================================================================
# Lookup
# =========================================================================

class TestLookup:
    def test_known_attribute(self, registry):
        meta = registry.lookup("wheelchair")
        assert meta.tier is Tier.CORE
        assert meta.value_kind is ValueKind.ENUM
        assert meta.required is True
        assert "limited" in meta.enum_values

    def test_unknown_attribute_defaults_to_specialized_string(self, registry):
        meta = registry.lookup("toilets:colour_scheme")
        assert meta.tier is Tier.SPECIALIZED
        assert meta.value_kind is ValueKind.STRING
        assert meta.known is False
        assert meta.required is False

    def test_metadata_returns_none_for_unknown(self, registry):
        assert registry.metadata("toilets:colour_scheme") is None
        assert registry.metadata("fee").value_kind is ValueKind.MONETARY

    def test_contains(self, registry):
        assert "charge" in registry
        assert "nonexistent" not in registry


# =========================================================================
# Document validation
# =========================================================================

class TestFromDocument:
    def test_minimal_document(self, minimal_document, tier_schema):
        registry = PropertyTierRegistry.from_document(minimal_document, schema=tier_schema)
        assert registry.version == "0.1.0"
        assert registry.core_attributes == ("lat", "lng", "amenity")

    def test_missing_tier_rejected(self, minimal_document):
        del minimal_document["tiers"]["specialized"]
        with pytest.raises(TierConfigError, match="specialized"):
            PropertyTierRegistry.from_document(minimal_document)

    def test_unknown_tier_rejected(self, minimal_document):
        minimal_document["properties"]["name"]["tier"] = "premium"
        with pytest.raises(TierConfigError):
            PropertyTierRegistry.from_document(minimal_document)

    def test_unknown_validation_type_rejected(self, minimal_document):
        minimal_document["properties"]["name"]["validationType"] = "color"
        with pytest.raises(TierConfigError):
            PropertyTierRegistry.from_document(minimal_document)

    def test_enum_values_on_non_enum_rejected(self, minimal_document):
        minimal_document["properties"]["name"]["enumValues"] = ["a", "b"]
        with pytest.raises(TierConfigError, match="enumValues"):
            PropertyTierRegistry.from_document(minimal_document)

    def test_too_many_core_attributes_rejected(self, minimal_document):
        for i in range(MAX_CORE_ATTRIBUTES):
            minimal_document["properties"][f"core_{i}"] = {
                "tier": "core", "frequency": 1, "validationType": "string",
            }
        with pytest.raises(TierConfigError, match="at most"):
            PropertyTierRegistry.from_document(minimal_document)

    def test_no_core_attributes_rejected(self, minimal_document):
        for name in ("lat", "lng", "amenity"):
            del minimal_document["properties"][name]
        with pytest.raises(TierConfigError, match="no core"):
            PropertyTierRegistry.from_document(minimal_document)

    def test_missing_version_rejected(self, minimal_document):
        del minimal_document["version"]
        with pytest.raises(TierConfigError, match="version"):
            PropertyTierRegistry.from_document(minimal_document)

    def test_schema_rejects_negative_frequency(self, minimal_document, tier_schema):
        minimal_document["properties"]["name"]["frequency"] = -1
        with pytest.raises(TierConfigError, match="properties/name/frequency"):
            PropertyTierRegistry.from_document(minimal_document, schema=tier_schema)

    def test_schema_rejects_unexpected_property_key(self, minimal_document, tier_schema):
        minimal_document["properties"]["name"]["colour"] = "red"
        with pytest.raises(TierConfigError):
            PropertyTierRegistry.from_document(minimal_document, schema=tier_schema)

    def test_invalid_schema_reported(self, minimal_document):
        with pytest.raises(TierConfigError, match="schema itself"):
            PropertyTierRegistry.from_document(minimal_document, schema={"type": 12})


class TestLoadFromDisk:
    def test_missing_file(self, tmp_path):
        with pytest.raises(TierConfigError, match="not found"):
            load_tier_document(str(tmp_path / "missing.json"))

    def test_unparsable_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(TierConfigError, match="not valid JSON"):
            PropertyTierRegistry.from_file(str(path))

    def test_from_file_records_source(self, tmp_path, minimal_document):
        path = _write(tmp_path, "tiers.json", minimal_document)
        registry = PropertyTierRegistry.from_file(path)
        assert registry.source == path

    def test_read_json_document(self, tmp_path):
        path = _write(tmp_path, "any.json", {"a": [1, 2]})
        assert read_json_document(path, "Analysis") == {"a": [1, 2]}

    def test_read_json_document_labels_errors(self, tmp_path):
        with pytest.raises(TierConfigError, match="^Analysis not found"):
            read_json_document(str(tmp_path / "missing.json"), "Analysis")


# =========================================================================
# Registry handle
# =========================================================================

class TestRegistryHandle:
    def test_reload_swaps_registry(self, tmp_path, minimal_document):
        path = _write(tmp_path, "tiers.json", minimal_document)
        handle = RegistryHandle(path)
        old = handle.get()

        minimal_document["version"] = "0.2.0"
        _write(tmp_path, "tiers.json", minimal_document)
        fresh = handle.reload()

        assert fresh is handle.get()
        assert fresh is not old
        assert fresh.version == "0.2.0"
        assert old.version == "0.1.0"

    def test_failed_reload_keeps_old_registry(self, tmp_path, minimal_document):
        path = _write(tmp_path, "tiers.json", minimal_document)
        handle = RegistryHandle(path)
        old = handle.get()

        (tmp_path / "tiers.json").write_text("{broken", encoding="utf-8")
        with pytest.raises(TierConfigError):
            handle.reload()
        assert handle.get() is old

    def test_wraps_existing_registry(self, registry):
        handle = RegistryHandle(registry=registry)
        assert handle.get() is registry
