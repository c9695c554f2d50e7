#!/usr/bin/env python3
"""
Generate the Suggest API property tier document from an OSM tag analysis.

Input: a JSON analysis of tags seen on amenity=toilets features, shaped as
    {"totalProperties": 120, "properties": {"<tag>": {"frequency": 612}, ...}}

This script:
1. Assigns each tag to a tier (explicit lists below; everything else is
   specialized)
2. Attaches a validation type, and enum values where the tag has a closed
   vocabulary
3. Adds the synthetic lat/lng core properties
4. Validates the result against data/property_tiers.schema.json before
   writing it

Usage:
    python scripts/generate_property_tiers.py --input data/osm_properties_analysis.json
    python scripts/generate_property_tiers.py --input analysis.json --output tiers.json --summary
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from intake_config import DEFAULT_TIER_CONFIG_PATH, TIER_SCHEMA_PATH
from intake_errors import TierConfigError
from property_tiers import PropertyTierRegistry, read_json_document

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

DOCUMENT_VERSION = "1.1.0"

TIER_DEFINITIONS = {
    "core": {
        "description": "Essential properties that directly impact user decisions",
        "ui_behavior": "Always visible",
        "validation_requirement": "Required, strict validation",
        "strict_validation": True,
        "required": True,
    },
    "high_frequency": {
        "description": "Common properties that enhance user experience",
        "ui_behavior": "Visible by default in v2",
        "validation_requirement": "Strict validation when provided",
        "strict_validation": True,
        "required": False,
    },
    "optional": {
        "description": "Advanced properties for power users",
        "ui_behavior": "Hidden behind advanced toggle",
        "validation_requirement": "Validated if provided",
        "strict_validation": False,
        "required": False,
    },
    "specialized": {
        "description": "Edge case properties for data completeness",
        "ui_behavior": "Not shown in UI",
        "validation_requirement": "Basic type checking only",
        "strict_validation": False,
        "required": False,
    },
}

# Tags not listed here land in "specialized".
TIER_ASSIGNMENTS = {
    "core": [
        "lat", "lng", "@id", "amenity", "wheelchair", "access", "opening_hours", "fee",
    ],
    "high_frequency": [
        "male", "female", "unisex",
        "changing_table", "changing_table:fee",
        "toilets:disposal",
        "level",
        "payment:cash", "payment:contactless",
        "building", "indoor",
        "toilets:wheelchair",
        "name",
        "operator",
        "toilets:position",
        "charge",
        "source",
    ],
    "optional": [
        "description",
        "toilets:handwashing",
        "layer", "roof:shape", "roof:colour",
        "entrance",
        "supervised",
        "drinking_water",
        "toilets:access",
        "centralkey",
        "toilets:disposal:chemical",
        "toilets:menstrual_products",
        "manufacturer",
        "door",
        "material",
        "height",
        "check_date",
        "building:levels",
        "note",
        "survey:date",
        "created_by",
    ],
}

SYNTHETIC_PROPERTIES = {
    "lat": "Latitude coordinate (not an OSM property)",
    "lng": "Longitude coordinate (not an OSM property)",
}

YES_NO = ["yes", "no"]
ENUM_VALUES = {
    "amenity": ["toilets"],
    "wheelchair": ["yes", "no", "limited", "unknown"],
    "access": ["yes", "private", "customers", "permissive"],
    "male": YES_NO,
    "female": YES_NO,
    "unisex": YES_NO,
    "changing_table": ["yes", "no", "limited"],
    "toilets:disposal": ["flush", "chemical", "pitlatrine", "none"],
    "payment:cash": YES_NO,
    "payment:contactless": YES_NO,
    "indoor": YES_NO,
    "toilets:wheelchair": ["yes", "no", "limited"],
    "toilets:access": ["yes", "customers", "private", "permissive"],
    "centralkey": ["radar", "eurokey", "yes", "no"],
    "door": ["hinged", "sliding", "revolving", "no"],
}

VALIDATION_TYPES = {
    "lat": "number",
    "lng": "number",
    "level": "number",
    "layer": "number",
    "height": "number",
    "building:levels": "number",
    "toilets:num_chambers": "number",
    "fee": "monetary",
    "charge": "monetary",
    "changing_table:fee": "monetary",
    "toilets:handwashing": "boolean",
    "supervised": "boolean",
    "drinking_water": "boolean",
    "toilets:disposal:chemical": "boolean",
    "toilets:menstrual_products": "boolean",
    "toilets:paper_supplied": "boolean",
    "check_date": "date",
    "survey:date": "date",
    "check_date:opening_hours": "date",
    "source:date": "date",
    "lastcheck": "date",
    "created": "date",
}


def validation_type(tag: str) -> str:
    if tag in ENUM_VALUES:
        return "enum"
    return VALIDATION_TYPES.get(tag, "string")


def _property_entry(tag: str, tier: str, frequency: int) -> dict:
    entry = {"tier": tier, "frequency": frequency, "validationType": validation_type(tag)}
    if tag in ENUM_VALUES:
        entry["enumValues"] = list(ENUM_VALUES[tag])
    if tag in SYNTHETIC_PROPERTIES:
        entry["synthetic"] = True
        entry["description"] = SYNTHETIC_PROPERTIES[tag]
    return entry


def build_tier_document(analysis: dict, source: str = "") -> dict:
    """Assemble a tier document from a tag-frequency analysis."""
    osm_properties = analysis.get("properties") or {}
    # Every feature has a coordinate, so lat/lng get the largest frequency seen.
    feature_count = max(
        [int(p.get("frequency", 0)) for p in osm_properties.values()] or [0]
    )

    properties = {}
    for tier, tags in TIER_ASSIGNMENTS.items():
        for tag in tags:
            if tag in SYNTHETIC_PROPERTIES:
                properties[tag] = _property_entry(tag, tier, feature_count)
            elif tag in osm_properties:
                properties[tag] = _property_entry(
                    tag, tier, int(osm_properties[tag].get("frequency", 0))
                )
            elif tier == "core":
                logger.warning("Core property '%s' not found in OSM data", tag)

    for tag, data in osm_properties.items():
        if tag not in properties:
            properties[tag] = _property_entry(tag, "specialized", int(data.get("frequency", 0)))

    return {
        "version": DOCUMENT_VERSION,
        "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "source": source,
        "tiers": TIER_DEFINITIONS,
        "properties": properties,
    }


def summary_markdown(document: dict, analysis: dict, input_name: str, top_n: int = 10) -> str:
    """Markdown table of the most frequent tags with their tier and type."""
    ranked = sorted(
        (analysis.get("properties") or {}).items(),
        key=lambda item: item[1].get("frequency", 0),
        reverse=True,
    )[:top_n]
    lines = [
        f"## Top {top_n} Properties by Frequency",
        "",
        "| Property | Frequency | Tier | Type |",
        "|----------|-----------|------|------|",
    ]
    for tag, data in ranked:
        entry = document["properties"][tag]
        lines.append(
            f"| `{tag}` | {data.get('frequency', 0)} | {entry['tier']} | {entry['validationType']} |"
        )
    lines.append("")
    lines.append(f"_Generated from {input_name} on {datetime.now(timezone.utc).date().isoformat()}_")
    return "\n".join(lines)


def generate(input_path: str, output_path: str, summary: bool = False) -> dict:
    with open(input_path, "r", encoding="utf-8") as fh:
        analysis = json.load(fh)

    document = build_tier_document(analysis, source=os.path.relpath(input_path))

    # Refuse to write anything the runtime would reject.
    schema = read_json_document(TIER_SCHEMA_PATH, "Tier schema")
    registry = PropertyTierRegistry.from_document(document, schema=schema, source=output_path)

    for tier, stats in registry.tier_statistics().items():
        logger.info(
            "  %-15s %3d properties (%d synthetic, %d OSM)",
            tier, stats.total_count, stats.synthetic_count, stats.osm_property_count,
        )
    logger.info("Total: %d properties", len(registry))

    with open(output_path, "w", encoding="utf-8") as fh:
        json.dump(document, fh, indent=2)
        fh.write("\n")
    logger.info("Configuration written to %s", output_path)

    if summary:
        print(summary_markdown(document, analysis, os.path.basename(input_path)))

    return document


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate the property tier document")
    parser.add_argument(
        "--input", type=str, required=True,
        help="Path to the OSM property analysis JSON.",
    )
    parser.add_argument(
        "--output", type=str, default=DEFAULT_TIER_CONFIG_PATH,
        help="Where to write the tier document.",
    )
    parser.add_argument(
        "--summary", action="store_true",
        help="Print a markdown table of the most frequent properties.",
    )
    args = parser.parse_args()

    try:
        generate(args.input, args.output, summary=args.summary)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Cannot read analysis %s: %s", args.input, e)
        sys.exit(1)
    except TierConfigError as e:
        logger.error("Generated document is invalid: %s", e)
        sys.exit(1)
