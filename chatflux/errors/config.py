"""Error Configuration.

Defines error codes and their HTTP status mapping for structured
error handling across the pipeline and the read API.
"""

from enum import Enum
from typing import Dict


class ErrorCode(Enum):
    """Standardized error codes."""

    # Validation errors (400)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_BODY = "INVALID_BODY"
    BODY_TOO_LONG = "BODY_TOO_LONG"
    INVALID_KIND = "INVALID_KIND"
    INVALID_ORIGIN = "INVALID_ORIGIN"
    INVALID_PAGINATION = "INVALID_PAGINATION"
    INVALID_CURSOR = "INVALID_CURSOR"
    INVALID_STREAM = "INVALID_STREAM"

    # Server errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    PARTIAL_BATCH = "PARTIAL_BATCH"
    STARTUP_FAILED = "STARTUP_FAILED"

    # Service unavailable (503)
    ADAPTER_UNAVAILABLE = "ADAPTER_UNAVAILABLE"
    PIPELINE_CLOSED = "PIPELINE_CLOSED"


ERROR_STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_BODY: 400,
    ErrorCode.BODY_TOO_LONG: 400,
    ErrorCode.INVALID_KIND: 400,
    ErrorCode.INVALID_ORIGIN: 400,
    ErrorCode.INVALID_PAGINATION: 400,
    ErrorCode.INVALID_CURSOR: 400,
    ErrorCode.INVALID_STREAM: 400,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.PARTIAL_BATCH: 500,
    ErrorCode.STARTUP_FAILED: 500,
    ErrorCode.ADAPTER_UNAVAILABLE: 503,
    ErrorCode.PIPELINE_CLOSED: 503,
}
