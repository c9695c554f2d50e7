"""
Error taxonomy for suggestion intake.

Only two things are ever raised: a malformed request body (before any tier
logic runs) and load-time failures of the tier document or the reference
snapshot.  Everything else a submission can get wrong is returned as data
on ValidationOutcome / DuplicateOutcome.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class IssueCode(str, Enum):
    # validation errors
    REQUIRED = "required"
    INVALID_TYPE = "invalid_type"
    OUT_OF_RANGE = "out_of_range"
    INVALID_ENUM = "invalid_enum"
    # validation warnings
    TYPE_COERCION = "type_coercion"
    TYPE_MISMATCH = "type_mismatch"
    INCOMPLETE_DATA = "incomplete_data"


class ResponseCode(str, Enum):
    INVALID_JSON = "invalid_json"
    MISSING_BODY = "missing_body"
    VALIDATION_FAILED = "validation_failed"
    DUPLICATE_DETECTED = "duplicate_detected"


HTTP_STATUS = {
    ResponseCode.INVALID_JSON: 400,
    ResponseCode.MISSING_BODY: 400,
    ResponseCode.VALIDATION_FAILED: 400,
    ResponseCode.DUPLICATE_DETECTED: 409,
}


class TierConfigError(Exception):
    """Raised when the tier document is missing, unparsable, or fails its schema.

    Fatal at startup; never raised while handling a submission.
    """

    pass


class MalformedSubmissionError(Exception):
    """Raised when a request body cannot be parsed into an attribute mapping."""

    def __init__(self, code: ResponseCode, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class SnapshotLoadError(Exception):
    """Raised when the reference location snapshot cannot be loaded."""

    pass


@dataclass(frozen=True)
class IntakeError:
    """Structured error record for the response layer."""
    code: ResponseCode
    message: str
    details: Optional[str] = None

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.code]

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out
