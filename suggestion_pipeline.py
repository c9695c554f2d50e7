"""
Suggestion intake pipeline: parse -> validate -> duplicate check.

A strict two-stage sequence.  Tier validation runs first; only a valid
submission is checked for duplicates, using the sanitized coordinate.
Neither result feeds back into the other; both are merged into one
IntakeResult that the HTTP layer can serialise as-is.

Per-request problems never raise out of ``process``: a malformed body, a
failed validation, a duplicate and an unavailable reference snapshot all
come back as data.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from duplicate_detector import DuplicateDetector, DuplicateOutcome
from intake_config import INTAKE_CONFIG, IntakeConfig, config_from_env
from intake_errors import (
    IntakeError,
    MalformedSubmissionError,
    ResponseCode,
    SnapshotLoadError,
)
from intake_trace import get_trace
from property_tiers import RegistryHandle
from snapshot_provider import FileSnapshotProvider, HTTPSnapshotProvider
from spatial_index import KnownLocation
from tiered_validator import TieredValidator, ValidationMode, ValidationOutcome, parse_submission
from validation_metrics import ValidationMetrics

logger = logging.getLogger(__name__)


class IntakeStatus(str, Enum):
    ACCEPTED = "accepted"
    MALFORMED = "malformed"
    INVALID = "invalid"
    DUPLICATE = "duplicate"


@dataclass
class IntakeResult:
    """Merged outcome of one submission."""
    status: IntakeStatus
    suggestion_id: Optional[str] = None
    validation: Optional[ValidationOutcome] = None
    duplicate: Optional[DuplicateOutcome] = None
    error: Optional[IntakeError] = None

    @property
    def http_status(self) -> int:
        if self.error is not None:
            return self.error.http_status
        return 201

    @property
    def success(self) -> bool:
        return self.status is IntakeStatus.ACCEPTED

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "status": self.status.value,
        }
        if self.suggestion_id:
            out["suggestionId"] = self.suggestion_id
        if self.validation is not None:
            out["validation"] = self.validation.to_dict()
        if self.duplicate is not None:
            out["duplicate"] = self.duplicate.to_dict()
        if self.error is not None:
            out["error"] = self.error.to_dict()
        return out


def generate_suggestion_id(now: Optional[float] = None) -> str:
    stamp = int((now if now is not None else time.time()) * 1000)
    return f"suggest_{stamp}_{secrets.token_hex(4)}"


class SuggestionPipeline:
    """Runs tier validation and duplicate detection for one submission at a time."""

    def __init__(
        self,
        registry_handle: RegistryHandle,
        detector: Optional[DuplicateDetector] = None,
        snapshot_provider=None,
        config: IntakeConfig = INTAKE_CONFIG,
        metrics: Optional[ValidationMetrics] = None,
    ):
        self.registry_handle = registry_handle
        self.metrics = metrics if metrics is not None else ValidationMetrics()
        self.detector = detector if detector is not None else DuplicateDetector(config)
        self.snapshot_provider = snapshot_provider
        self.config = config

    def _load_snapshot(self) -> Sequence[KnownLocation]:
        if self.snapshot_provider is None:
            logger.warning("No known-location source configured; skipping duplicate matches")
            return ()
        try:
            return self.snapshot_provider.load()
        except SnapshotLoadError as e:
            logger.warning("Known-location snapshot unavailable, continuing without it: %s", e)
            return ()

    def process(
        self,
        body: Union[str, bytes, Mapping[str, Any], None],
        known_locations: Optional[Sequence[KnownLocation]] = None,
        mode: Union[ValidationMode, str, None] = ValidationMode.LEGACY,
    ) -> IntakeResult:
        trace = get_trace()
        registry = self.registry_handle.get()
        if trace:
            trace.registry_version = registry.version

        # --- Stage 1: parse ---
        t0 = time.time()
        try:
            raw = parse_submission(body)
        except MalformedSubmissionError as e:
            if trace:
                trace.record_stage("parse", t0, time.time(), error_class=e.code.value,
                                   error_message=e.message)
                trace.status = IntakeStatus.MALFORMED.value
            logger.info("Rejected malformed submission: %s", e.details or e.message)
            return IntakeResult(
                status=IntakeStatus.MALFORMED,
                error=IntakeError(e.code, e.message, e.details),
            )
        if trace:
            trace.record_stage("parse", t0, time.time())

        suggestion_id = generate_suggestion_id()

        # --- Stage 2: tier validation ---
        t0 = time.time()
        validation = TieredValidator(registry, self.config).validate(raw, mode)
        t1 = time.time()
        self.metrics.record(validation, (t1 - t0) * 1000)
        if trace:
            trace.record_stage("validate", t0, t1)

        if not validation.is_valid:
            details = "; ".join(f"{e.field}: {e.message}" for e in validation.errors)
            if trace:
                trace.record_stage("duplicate_check", time.time(), time.time(), skipped=True)
                trace.status = IntakeStatus.INVALID.value
            return IntakeResult(
                status=IntakeStatus.INVALID,
                suggestion_id=suggestion_id,
                validation=validation,
                error=IntakeError(ResponseCode.VALIDATION_FAILED, "Validation failed", details),
            )

        # --- Stage 3: duplicate check ---
        t0 = time.time()
        if known_locations is None:
            known_locations = self._load_snapshot()
        lat = validation.sanitized_data["lat"]
        lng = validation.sanitized_data["lng"]
        duplicate = self.detector.check(lat, lng, known_locations)
        if trace:
            trace.record_stage("duplicate_check", t0, time.time())

        if duplicate.is_duplicate:
            if trace:
                trace.status = IntakeStatus.DUPLICATE.value
            return IntakeResult(
                status=IntakeStatus.DUPLICATE,
                suggestion_id=suggestion_id,
                validation=validation,
                duplicate=duplicate,
                error=IntakeError(
                    ResponseCode.DUPLICATE_DETECTED,
                    "A toilet already exists at this location",
                    f"{duplicate.distance_meters:g}m from {duplicate.nearest_location_id} "
                    f"(threshold {duplicate.threshold_meters:g}m)",
                ),
            )

        if trace:
            trace.status = IntakeStatus.ACCEPTED.value
        return IntakeResult(
            status=IntakeStatus.ACCEPTED,
            suggestion_id=suggestion_id,
            validation=validation,
            duplicate=duplicate,
        )


def build_pipeline_from_env() -> SuggestionPipeline:
    """Wire a pipeline from environment / .env settings.

    Raises:
        TierConfigError: the tier document is missing or invalid.  Callers
            should let this abort startup.
    """
    config = config_from_env()
    handle = RegistryHandle(config.tier_config_path, config.tier_schema_path)

    provider = None
    if config.known_locations_path:
        provider = FileSnapshotProvider(config.known_locations_path)
    elif config.known_locations_url:
        provider = HTTPSnapshotProvider(config.known_locations_url)
    else:
        logger.warning("Neither KNOWN_LOCATIONS_PATH nor KNOWN_LOCATIONS_URL is set")

    return SuggestionPipeline(handle, DuplicateDetector(config), provider, config)
