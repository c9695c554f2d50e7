"""Great-circle distance helpers used by duplicate detection."""

import math
from typing import Tuple

from intake_config import INTAKE_CONFIG

EARTH_RADIUS_M = INTAKE_CONFIG.geo.earth_radius_m


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> int:
    """Haversine distance between two points, rounded to whole metres.

    Rounds half-up (floor(x + 0.5)) rather than with round(), which would
    round .5 to the nearest even metre.
    """
    lat1_r, lng1_r = math.radians(lat1), math.radians(lng1)
    lat2_r, lng2_r = math.radians(lat2), math.radians(lng2)

    dlat = lat2_r - lat1_r
    dlng = lng2_r - lng1_r

    a = (math.sin(dlat / 2) ** 2
         + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2)
    a = min(1.0, a)  # float error near antipodal points
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return int(math.floor(EARTH_RADIUS_M * c + 0.5))


def distance(point_a: Tuple[float, float], point_b: Tuple[float, float]) -> int:
    """Distance in metres between two (lat, lng) pairs."""
    return haversine_m(point_a[0], point_a[1], point_b[0], point_b[1])
