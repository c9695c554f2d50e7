"""
Running validation metrics across submissions.

SuggestionPipeline feeds every completed validation into a
ValidationMetrics collector:
  - total requests and how many were rejected
  - attributes provided per tier, errors per tier
  - validation latency: count/sum/min/max over the collector's lifetime,
    p95 over a rolling window of recent requests

``summary()`` returns a frozen MetricsSnapshot; callers never see the live
counters.  One collector may be shared by every request thread in the
process.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, Optional

from intake_config import TIER_ORDER
from tiered_validator import ValidationOutcome

logger = logging.getLogger(__name__)

# Rolling window size for the p95 latency estimate.
_LATENCY_WINDOW_SIZE = 100


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LatencyStats:
    """Validation latency in milliseconds.  min/p95 are None before any request."""
    count: int
    sum_ms: float
    min_ms: Optional[float]
    max_ms: float
    p95_ms: Optional[float]

    @property
    def mean_ms(self) -> Optional[float]:
        return self.sum_ms / self.count if self.count else None


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time copy of the collector's counters."""
    total_requests: int
    invalid_requests: int
    requests_by_tier: Dict[str, int]
    errors_by_tier: Dict[str, int]
    latency: LatencyStats

    @property
    def error_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.invalid_requests / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "invalidRequests": self.invalid_requests,
            "errorRate": self.error_rate,
            "requestsByTier": dict(self.requests_by_tier),
            "errorsByTier": dict(self.errors_by_tier),
            "performanceMetrics": {
                "count": self.latency.count,
                "sum": self.latency.sum_ms,
                "min": self.latency.min_ms,
                "max": self.latency.max_ms,
                "p95": self.latency.p95_ms,
            },
        }


def _p95(window) -> Optional[float]:
    if not window:
        return None
    ordered = sorted(window)
    return ordered[int(len(ordered) * 0.95)]


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------

class ValidationMetrics:
    """Thread-safe running totals over validated submissions."""

    def __init__(self, window_size: int = _LATENCY_WINDOW_SIZE) -> None:
        if window_size < 1:
            raise ValueError(f"window_size must be positive, got {window_size}")
        self._lock = threading.Lock()
        self._window_size = window_size
        self._reset_locked()

    def _reset_locked(self) -> None:
        self._total = 0
        self._invalid = 0
        self._requests_by_tier = {tier: 0 for tier in TIER_ORDER}
        self._errors_by_tier = {tier: 0 for tier in TIER_ORDER}
        self._count = 0
        self._sum_ms = 0.0
        self._min_ms: Optional[float] = None
        self._max_ms = 0.0
        self._recent = deque(maxlen=self._window_size)

    def record(self, outcome: ValidationOutcome, duration_ms: float) -> None:
        """Fold one validation outcome and its latency into the totals."""
        with self._lock:
            self._total += 1
            if not outcome.is_valid:
                self._invalid += 1
            for tier, counts in outcome.tier_summary.items():
                if tier in self._requests_by_tier:
                    self._requests_by_tier[tier] += counts.provided
            for tier, n in outcome.errors_by_tier.items():
                if tier in self._errors_by_tier:
                    self._errors_by_tier[tier] += n

            self._count += 1
            self._sum_ms += duration_ms
            if self._min_ms is None or duration_ms < self._min_ms:
                self._min_ms = duration_ms
            self._max_ms = max(self._max_ms, duration_ms)
            self._recent.append(duration_ms)

    def summary(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                total_requests=self._total,
                invalid_requests=self._invalid,
                requests_by_tier=dict(self._requests_by_tier),
                errors_by_tier=dict(self._errors_by_tier),
                latency=LatencyStats(
                    count=self._count,
                    sum_ms=self._sum_ms,
                    min_ms=self._min_ms,
                    max_ms=self._max_ms,
                    p95_ms=_p95(self._recent),
                ),
            )

    def reset(self) -> None:
        with self._lock:
            self._reset_locked()

    def log_summary(self) -> None:
        """Emit a single structured metrics log line."""
        s = self.summary()
        logger.info(
            "[validation-metrics] total=%d invalid=%d error_rate=%.3f p95_ms=%s errors_by_tier=%s",
            s.total_requests,
            s.invalid_requests,
            s.error_rate,
            "n/a" if s.latency.p95_ms is None else f"{s.latency.p95_ms:.1f}",
            s.errors_by_tier,
        )
