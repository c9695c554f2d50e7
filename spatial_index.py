"""
In-memory spatial grid index over the reference toilet snapshot.

Locations are bucketed into fixed-size lat/lng cells so a radius query only
touches the cells around the query point.  The index is built once per
snapshot and never mutated; a changed snapshot gets a brand-new index.

Query boxes are conservative: the latitude span uses a slightly low
metres-per-degree figure, and the longitude span is widened by
1/cos(latitude) at the poleward edge of the box, so every location within
the radius is always among the returned candidates.  Boxes that would wrap
the antimeridian or span more than half the globe fall back to returning
every location.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from intake_config import INTAKE_CONFIG

logger = logging.getLogger(__name__)

CellKey = Tuple[int, int]


@dataclass(frozen=True)
class KnownLocation:
    """An existing toilet from the reference snapshot."""
    id: str
    lat: float
    lng: float

    @property
    def coordinate(self) -> Tuple[float, float]:
        return (self.lat, self.lng)


@dataclass(frozen=True)
class Bounds:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float


def cell_key(lat: float, lng: float, cell_size: float) -> CellKey:
    return (math.floor(lat / cell_size), math.floor(lng / cell_size))


class SpatialGridIndex:
    """Immutable grid of KnownLocations keyed by floored (lat, lng) cell."""

    def __init__(
        self,
        cells: Dict[CellKey, Tuple[KnownLocation, ...]],
        cell_size: float,
        bounds: Optional[Bounds],
        size: int,
    ):
        self._cells = cells
        self.cell_size = cell_size
        self.bounds = bounds
        self.size = size

    @classmethod
    def build(
        cls,
        locations: Iterable[KnownLocation],
        cell_size_deg: float = INTAKE_CONFIG.duplicate.cell_size_deg,
    ) -> "SpatialGridIndex":
        """Bucket every location into its cell.  Linear in len(locations)."""
        if cell_size_deg <= 0:
            raise ValueError(f"cell_size_deg must be positive, got {cell_size_deg}")

        buckets: Dict[CellKey, List[KnownLocation]] = {}
        min_lat = min_lng = math.inf
        max_lat = max_lng = -math.inf
        size = 0

        for loc in locations:
            min_lat = min(min_lat, loc.lat)
            max_lat = max(max_lat, loc.lat)
            min_lng = min(min_lng, loc.lng)
            max_lng = max(max_lng, loc.lng)
            buckets.setdefault(cell_key(loc.lat, loc.lng, cell_size_deg), []).append(loc)
            size += 1

        bounds = Bounds(min_lat, max_lat, min_lng, max_lng) if size else None
        cells = {key: tuple(items) for key, items in buckets.items()}
        logger.debug(
            "Built spatial grid: %d locations in %d cells (cell=%.4f deg)",
            size, len(cells), cell_size_deg,
        )
        return cls(cells, cell_size_deg, bounds, size)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return self.size

    def all_locations(self) -> List[KnownLocation]:
        return [loc for items in self._cells.values() for loc in items]

    def _spans_deg(self, lat: float, radius_m: float) -> Tuple[float, Optional[float]]:
        """Half-widths (lat, lng) in degrees covering *radius_m* around *lat*.

        Returns None for the longitude span when the box reaches a pole or
        would cover more than 180 degrees of longitude.
        """
        meters_per_degree = INTAKE_CONFIG.geo.meters_per_degree
        lat_span = radius_m / meters_per_degree
        edge_lat = abs(lat) + lat_span
        if edge_lat >= 90.0:
            return lat_span, None
        cos_edge = math.cos(math.radians(edge_lat))
        lng_span = radius_m / (meters_per_degree * cos_edge)
        if lng_span >= 180.0:
            return lat_span, None
        return lat_span, lng_span

    def query(self, lat: float, lng: float, radius_m: float) -> List[KnownLocation]:
        """Candidate locations that may lie within *radius_m* of (lat, lng).

        A superset of the true answer: callers compute exact distances.
        """
        if not self.size:
            return []

        lat_span, lng_span = self._spans_deg(lat, radius_m)
        if lng_span is None or lng - lng_span < -180.0 or lng + lng_span > 180.0:
            return self.all_locations()

        lat_cells = math.ceil(lat_span / self.cell_size)
        lng_cells = math.ceil(lng_span / self.cell_size)
        base_lat, base_lng = cell_key(lat, lng, self.cell_size)

        # Scanning a neighbourhood larger than the grid itself is wasted work.
        if (2 * lat_cells + 1) * (2 * lng_cells + 1) > len(self._cells) * 4:
            return self._filter_box(lat, lng, lat_span, lng_span)

        found: List[KnownLocation] = []
        for d_lat in range(-lat_cells, lat_cells + 1):
            for d_lng in range(-lng_cells, lng_cells + 1):
                items = self._cells.get((base_lat + d_lat, base_lng + d_lng))
                if items:
                    found.extend(items)
        return found

    def _filter_box(self, lat: float, lng: float, lat_span: float, lng_span: float) -> List[KnownLocation]:
        return [
            loc for loc in self.all_locations()
            if abs(loc.lat - lat) <= lat_span and abs(loc.lng - lng) <= lng_span
        ]

    def stats(self) -> Dict[str, object]:
        """Cell and item counts for monitoring."""
        out: Dict[str, object] = {
            "cell_count": len(self._cells),
            "total_items": self.size,
            "cell_size_deg": self.cell_size,
        }
        if self.bounds:
            out["bounds"] = {
                "min_lat": self.bounds.min_lat,
                "max_lat": self.bounds.max_lat,
                "min_lng": self.bounds.min_lng,
                "max_lng": self.bounds.max_lng,
            }
        return out
