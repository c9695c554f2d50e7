"""
Contribution form -> Suggest API payload mapping.

The map's contribution form collects a small, friendly set of fields.  This
module turns that form data into either the legacy v1 payload (simplified
field names, validated in legacy-compatible mode) or the v2 payload (OSM
tags with every core property filled, validated in strict mode).
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# Form "hours" choices -> OSM opening_hours.  Anything unrecognised is 24/7.
HOURS_PRESETS = {
    "24/7": "24/7",
    "business": "Mo-Fr 09:00-17:00",
    "dawn to dusk": "sunrise-sunset",
    "dawn_to_dusk": "sunrise-sunset",
}
DEFAULT_OPENING_HOURS = "24/7"


@dataclass
class FormFeatures:
    baby_change: bool = False
    radar: bool = False
    automatic: bool = False
    contactless: bool = False


@dataclass
class ContributionFormData:
    lat: float
    lng: float
    name: Optional[str] = None
    hours: Optional[str] = None
    custom_hours: Optional[str] = None
    accessible: Optional[bool] = None
    fee: Optional[float] = None
    features: FormFeatures = field(default_factory=FormFeatures)


def _opening_hours(hours: Optional[str], custom_hours: Optional[str]) -> str:
    if hours == "custom":
        if custom_hours and custom_hours.strip():
            return custom_hours.strip()
        return DEFAULT_OPENING_HOURS
    return HOURS_PRESETS.get(hours or "", DEFAULT_OPENING_HOURS)


def _wheelchair(accessible: Optional[bool]) -> str:
    # Unset means unknown, not "no".
    if accessible is True:
        return "yes"
    if accessible is False:
        return "no"
    return "unknown"


def to_v1_payload(form: ContributionFormData) -> Dict[str, Any]:
    """Legacy payload: name/lat/lng/hours/accessible/fee plus feature flags.

    Radar key and automatic-door features have no v1 field and are dropped.
    """
    if form.hours == "custom":
        hours = form.custom_hours or ""
    else:
        hours = form.hours or ""

    payload: Dict[str, Any] = {
        "name": form.name or "",
        "lat": form.lat,
        "lng": form.lng,
        "hours": hours,
        "accessible": bool(form.accessible),
        "fee": form.fee or 0,
    }
    if form.features.baby_change:
        payload["changing_table"] = True
    if form.features.contactless:
        payload["payment_contactless"] = True
    return payload


def to_v2_payload(form: ContributionFormData, now: Optional[float] = None) -> Dict[str, Any]:
    """Strict payload with every core OSM property present."""
    stamp = int((now if now is not None else time.time()) * 1000)
    payload: Dict[str, Any] = {
        "@id": f"node/temp_{stamp}",
        "amenity": "toilets",
        "lat": form.lat,
        "lng": form.lng,
        "wheelchair": _wheelchair(form.accessible),
        "access": "yes",
        "opening_hours": _opening_hours(form.hours, form.custom_hours),
        "fee": (form.fee or 0) > 0,
    }

    if form.name and form.name.strip():
        payload["name"] = form.name.strip()
    if form.features.baby_change:
        payload["changing_table"] = "yes"
    if form.features.contactless:
        payload["payment:contactless"] = "yes"
    if form.features.radar:
        payload["centralkey"] = "radar"

    # Most public toilets serve everyone.
    payload["male"] = "yes"
    payload["female"] = "yes"
    payload["unisex"] = "no"
    return payload
