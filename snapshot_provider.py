"""
Reference snapshot loading for duplicate detection.

Turns a GeoJSON FeatureCollection of existing toilets into an immutable
tuple of KnownLocation.  Two sources:
  - FileSnapshotProvider: a local .geojson file (the ingestion job's output)
  - HTTPSnapshotProvider: the same document served over HTTP

Both cache the parsed snapshot for ``cache_validity_s`` seconds and hand
back the *same* tuple object while the cache is valid, so
DuplicateDetector reuses its grid index instead of rebuilding it per
request.  The file provider also reloads early when the file's mtime
changes.
"""

import json
import logging
import math
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

from intake_errors import SnapshotLoadError
from spatial_index import KnownLocation

logger = logging.getLogger(__name__)

Snapshot = Tuple[KnownLocation, ...]


def parse_feature_collection(document: Any) -> Snapshot:
    """Extract Point features as KnownLocations.

    The location id comes from ``properties.id`` and falls back to the
    feature's top-level ``id``.  Features without a usable Point geometry
    (finite coordinates within WGS84 range) or id are skipped.

    Raises:
        SnapshotLoadError: *document* is not a FeatureCollection.
    """
    if not isinstance(document, dict) or document.get("type") != "FeatureCollection":
        raise SnapshotLoadError("Invalid GeoJSON: expected FeatureCollection")
    features = document.get("features")
    if not isinstance(features, list):
        raise SnapshotLoadError("Invalid GeoJSON: features must be an array")

    locations: List[KnownLocation] = []
    skipped = 0
    for feature in features:
        if not isinstance(feature, dict):
            skipped += 1
            continue
        geometry = feature.get("geometry") or {}
        props = feature.get("properties") or {}
        if not isinstance(geometry, dict) or not isinstance(props, dict):
            skipped += 1
            continue
        coords = geometry.get("coordinates")
        if geometry.get("type") != "Point" or not isinstance(coords, (list, tuple)) or len(coords) < 2:
            skipped += 1
            continue
        loc_id = props.get("id") or feature.get("id")
        try:
            lng, lat = float(coords[0]), float(coords[1])
        except (TypeError, ValueError, OverflowError):
            skipped += 1
            continue
        # float() accepts "NaN" and "Infinity"; neither can be bucketed.
        if not (math.isfinite(lat) and math.isfinite(lng)) or abs(lat) > 90 or abs(lng) > 180:
            skipped += 1
            continue
        if loc_id is None:
            skipped += 1
            continue
        locations.append(KnownLocation(id=str(loc_id), lat=lat, lng=lng))

    if skipped:
        logger.debug("Skipped %d features without a usable Point/id", skipped)
    return tuple(locations)


@dataclass
class CacheStats:
    is_valid: bool
    last_loaded: Optional[float]
    cache_hits: int
    cache_misses: int


class _CachingProvider:
    """Shared cache bookkeeping for snapshot providers."""

    source = ""

    def __init__(self, cache_validity_s: float = 60.0):
        self.cache_validity_s = cache_validity_s
        self._snapshot: Optional[Snapshot] = None
        self._last_loaded: Optional[float] = None
        self._cache_hits = 0
        self._cache_misses = 0

    def _fetch(self) -> Snapshot:
        raise NotImplementedError

    def is_cache_valid(self) -> bool:
        if self._snapshot is None or self._last_loaded is None:
            return False
        return (time.monotonic() - self._last_loaded) < self.cache_validity_s

    def load(self) -> Snapshot:
        """Current snapshot, from cache when valid.

        Raises:
            SnapshotLoadError: the source could not be read or parsed.
        """
        if self.is_cache_valid():
            self._cache_hits += 1
            return self._snapshot
        self._cache_misses += 1
        snapshot = self._fetch()
        self._snapshot = snapshot
        self._last_loaded = time.monotonic()
        logger.info("Loaded %d known locations from %s", len(snapshot), self.source)
        return snapshot

    def clear_cache(self) -> None:
        self._snapshot = None
        self._last_loaded = None
        self._cache_hits = 0
        self._cache_misses = 0

    def cache_stats(self) -> CacheStats:
        return CacheStats(
            is_valid=self.is_cache_valid(),
            last_loaded=self._last_loaded,
            cache_hits=self._cache_hits,
            cache_misses=self._cache_misses,
        )


class FileSnapshotProvider(_CachingProvider):
    """Loads the reference snapshot from a GeoJSON file."""

    def __init__(self, path: str, cache_validity_s: float = 60.0):
        super().__init__(cache_validity_s)
        self.path = path
        self.source = f"file://{path}"
        self._loaded_mtime: Optional[float] = None

    def is_available(self) -> bool:
        return os.path.exists(self.path)

    def is_cache_valid(self) -> bool:
        if not super().is_cache_valid():
            return False
        try:
            return os.path.getmtime(self.path) == self._loaded_mtime
        except OSError:
            # File vanished; keep serving the last good snapshot until expiry.
            return True

    def _fetch(self) -> Snapshot:
        try:
            mtime = os.path.getmtime(self.path)
            with open(self.path, "r", encoding="utf-8") as fh:
                document = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load toilet data from %s: %s", self.path, e)
            raise SnapshotLoadError(f"Cannot read {self.path}: {e}")
        snapshot = parse_feature_collection(document)
        self._loaded_mtime = mtime
        return snapshot

    def metadata(self) -> Dict[str, Any]:
        meta: Dict[str, Any] = {"source": self.source}
        if self._snapshot is not None:
            meta["feature_count"] = len(self._snapshot)
        try:
            meta["last_modified"] = os.path.getmtime(self.path)
        except OSError as e:
            logger.warning("Failed to stat %s: %s", self.path, e)
        return meta


class HTTPSnapshotProvider(_CachingProvider):
    """Loads the reference snapshot from a URL serving GeoJSON."""

    DEFAULT_TIMEOUT = 30  # seconds
    MAX_RETRIES = 1
    RETRY_BACKOFF = [2]  # seconds

    def __init__(self, url: str, timeout: Optional[int] = None, cache_validity_s: float = 300.0):
        super().__init__(cache_validity_s)
        self.url = url
        self.source = url
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    def is_available(self) -> bool:
        try:
            resp = requests.head(self.url, timeout=self.timeout, allow_redirects=True)
        except requests.exceptions.RequestException:
            return False
        return resp.status_code < 400

    def _is_retryable(self, status_code: int) -> bool:
        return status_code == 429 or status_code >= 500

    def _fetch(self) -> Snapshot:
        last_error = ""
        for attempt in range(1 + self.MAX_RETRIES):
            try:
                resp = requests.get(self.url, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                last_error = str(e)
            else:
                if resp.status_code < 400:
                    try:
                        document = resp.json()
                    except ValueError as e:
                        raise SnapshotLoadError(f"Invalid JSON from {self.url}: {e}")
                    return parse_feature_collection(document)
                last_error = f"HTTP {resp.status_code}"
                if not self._is_retryable(resp.status_code):
                    break
            if attempt < self.MAX_RETRIES:
                sleep_time = self.RETRY_BACKOFF[attempt]
                logger.info(
                    "Snapshot fetch failed (attempt %d/%d: %s), sleeping %ds before retry",
                    attempt + 1, 1 + self.MAX_RETRIES, last_error, sleep_time,
                )
                time.sleep(sleep_time)

        logger.error("Failed to load toilet data from %s: %s", self.url, last_error)
        raise SnapshotLoadError(f"Cannot fetch {self.url}: {last_error}")

    def metadata(self) -> Dict[str, Any]:
        meta: Dict[str, Any] = {"source": self.source}
        if self._snapshot is not None:
            meta["feature_count"] = len(self._snapshot)
        return meta
