"""
Duplicate detection for toilet suggestions.

Finds the nearest known toilet to a candidate coordinate and flags the
suggestion as a duplicate when it lies closer than the configured
threshold (50 m).

Search strategy:
  - Empty snapshot: no nearest, infinite distance.
  - Small snapshot (< linear_scan_below): exhaustive scan.
  - Otherwise: expanding-radius search over the grid index
    (100 m, 500 m, 1 km, 2 km, 5 km).  A radius step stops as soon as the
    best candidate is strictly closer than that radius; because the grid
    query covers the whole circle, that candidate is the exact nearest.
    When no step qualifies, an exhaustive scan settles the answer.

The index is cached per snapshot object.  A different snapshot object (or
an explicit refresh) builds a new index and swaps the (snapshot, index)
pair in one assignment; nothing is ever invalidated partially.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

from geo_distance import haversine_m
from intake_config import INTAKE_CONFIG, IntakeConfig
from spatial_index import KnownLocation, SpatialGridIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicateOutcome:
    """Result of a duplicate check against the reference snapshot."""
    is_duplicate: bool
    distance_meters: float               # math.inf when there is no nearest
    nearest_location_id: Optional[str]
    threshold_meters: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "isDuplicate": self.is_duplicate,
            "distanceMeters": None if math.isinf(self.distance_meters) else self.distance_meters,
            "nearestLocationId": self.nearest_location_id,
            "thresholdMeters": self.threshold_meters,
        }


def nearest_linear(
    lat: float, lng: float, locations: Iterable[KnownLocation]
) -> Tuple[Optional[KnownLocation], float]:
    """Exhaustive nearest-neighbour scan.  Ties keep the first location seen."""
    best: Optional[KnownLocation] = None
    best_dist = math.inf
    for loc in locations:
        d = haversine_m(lat, lng, loc.lat, loc.lng)
        if d < best_dist:
            best, best_dist = loc, d
    return best, best_dist


class DuplicateDetector:
    """Nearest-location lookup with a per-snapshot grid index cache."""

    def __init__(self, config: IntakeConfig = INTAKE_CONFIG):
        self.threshold_m = config.duplicate.threshold_m
        self.cell_size_deg = config.duplicate.cell_size_deg
        self.search_radii_m = tuple(config.duplicate.search_radii_m)
        self.linear_scan_below = config.duplicate.linear_scan_below
        # (snapshot, index) swapped as one reference.
        self._cached: Optional[Tuple[Sequence[KnownLocation], SpatialGridIndex]] = None
        self._builds = 0
        self._hits = 0

    # ------------------------------------------------------------------
    # Index cache
    # ------------------------------------------------------------------

    def refresh(self, known_locations: Sequence[KnownLocation]) -> SpatialGridIndex:
        """Build an index for *known_locations* and swap it in."""
        index = SpatialGridIndex.build(known_locations, self.cell_size_deg)
        self._cached = (known_locations, index)
        self._builds += 1
        logger.info(
            "Duplicate index rebuilt: %d locations, %d cells",
            index.size, index.stats()["cell_count"],
        )
        return index

    def invalidate(self) -> None:
        """Drop the cached index; the next grid search rebuilds it."""
        self._cached = None

    def _index_for(self, known_locations: Sequence[KnownLocation]) -> SpatialGridIndex:
        cached = self._cached
        if cached is not None and cached[0] is known_locations:
            self._hits += 1
            return cached[1]
        return self.refresh(known_locations)

    def cache_stats(self) -> Dict[str, object]:
        cached = self._cached
        out: Dict[str, object] = {
            "cached": cached is not None,
            "builds": self._builds,
            "hits": self._hits,
        }
        if cached is not None:
            out.update(cached[1].stats())
        return out

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def find_nearest(
        self, lat: float, lng: float, known_locations: Sequence[KnownLocation]
    ) -> Tuple[Optional[KnownLocation], float]:
        """Nearest known location to (lat, lng) and its distance in metres."""
        if not known_locations:
            return None, math.inf

        if len(known_locations) < self.linear_scan_below:
            return nearest_linear(lat, lng, known_locations)

        index = self._index_for(known_locations)
        for radius in self.search_radii_m:
            best, best_dist = nearest_linear(lat, lng, index.query(lat, lng, radius))
            if best is not None and best_dist < radius:
                return best, best_dist

        logger.debug(
            "No known location within %dm of (%.5f, %.5f); scanning all %d",
            self.search_radii_m[-1], lat, lng, index.size,
        )
        return nearest_linear(lat, lng, index.all_locations())

    def check(
        self, lat: float, lng: float, known_locations: Sequence[KnownLocation]
    ) -> DuplicateOutcome:
        """Decide whether (lat, lng) duplicates a known location."""
        nearest, dist = self.find_nearest(lat, lng, known_locations)
        is_duplicate = nearest is not None and dist < self.threshold_m
        logger.debug(
            "Duplicate check (%.5f, %.5f): nearest=%s dist=%s threshold=%s duplicate=%s",
            lat, lng, nearest.id if nearest else None, dist, self.threshold_m, is_duplicate,
        )
        return DuplicateOutcome(
            is_duplicate=is_duplicate,
            distance_meters=dist,
            nearest_location_id=nearest.id if nearest else None,
            threshold_meters=self.threshold_m,
        )
