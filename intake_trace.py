"""
Request-scoped tracing for suggestion intake.

Provides a thread-local TraceContext that records:
  - Per-stage timing (parse, validate, duplicate_check)
  - End-of-request summary (total elapsed, stage counts, final status)

Usage:
    from intake_trace import TraceContext, get_trace, set_trace, clear_trace

    # In the request handler:
    ctx = TraceContext(trace_id=suggestion_id)
    set_trace(ctx)
    ...
    ctx.log_summary()
    clear_trace()

    # Inside the pipeline:
    trace = get_trace()
    if trace:
        trace.record_stage("validate", t0, time.time())
"""

import time
import threading
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any

logger = logging.getLogger(__name__)


# =============================================================================
# Data classes for trace records
# =============================================================================

@dataclass
class StageRecord:
    """One intake stage (parse, validate, duplicate_check)."""
    stage_name: str
    start_ts: float = 0.0
    end_ts: float = 0.0
    elapsed_ms: int = 0
    skipped: bool = False
    error_class: str = ""
    error_message: str = ""


# =============================================================================
# Trace context
# =============================================================================

@dataclass
class TraceContext:
    """Accumulates timing data for a single submission."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    status: str = ""
    registry_version: str = ""

    def record_stage(
        self,
        stage_name: str,
        start_ts: float,
        end_ts: float,
        skipped: bool = False,
        error_class: str = "",
        error_message: str = "",
    ):
        rec = StageRecord(
            stage_name=stage_name,
            start_ts=start_ts,
            end_ts=end_ts,
            elapsed_ms=int((end_ts - start_ts) * 1000),
            skipped=skipped,
            error_class=error_class,
            error_message=error_message,
        )
        self.stages.append(rec)

        state = "SKIP" if skipped else ("ERR" if error_class else "OK")
        err_info = f" err={error_class}: {error_message}" if error_class else ""
        logger.info(
            "  [stage] trace=%s %s %s %dms%s",
            self.trace_id,
            stage_name,
            state,
            rec.elapsed_ms,
            err_info,
        )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summary_dict(self) -> Dict[str, Any]:
        """Return a summary dict suitable for logging and JSON responses."""
        total_elapsed = int((time.time() - self.request_start) * 1000)
        completed = [s for s in self.stages if not s.skipped and not s.error_class]
        skipped = [s for s in self.stages if s.skipped]
        errored = [s for s in self.stages if s.error_class and not s.skipped]

        result = {
            "trace_id": self.trace_id,
            "total_elapsed_ms": total_elapsed,
            "stages_completed": len(completed),
            "stages_skipped": len(skipped),
            "stages_errored": len(errored),
            "final_status": self.status or "unknown",
        }
        if self.registry_version:
            result["registry_version"] = self.registry_version
        return result

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d completed=%d skipped=%d "
            "errored=%d status=%s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["stages_completed"],
            s["stages_skipped"],
            s["stages_errored"],
            s["final_status"],
        )

    def stages_to_list(self) -> List[Dict[str, Any]]:
        return [
            {
                "stage": s.stage_name,
                "elapsed_ms": s.elapsed_ms,
                "skipped": s.skipped,
                "error": (
                    f"{s.error_class}: {s.error_message}"
                    if s.error_class else None
                ),
            }
            for s in self.stages
        ]


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current request's trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    """Set the trace context for the current thread."""
    _trace_local.ctx = ctx


def clear_trace():
    """Clear the current trace context."""
    _trace_local.ctx = None
