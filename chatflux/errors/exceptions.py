"""Exception Hierarchy.

Typed exceptions for the pipeline. Adapter failures are transient and
recoverable; validation failures never enter the pipeline; startup
failures stop the process.
"""

from typing import Any, Dict, List, Optional

from chatflux.errors.config import ERROR_STATUS_MAP, ErrorCode


class ChatFluxError(Exception):
    """Base exception for all ChatFlux errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = ERROR_STATUS_MAP.get(error_code, 500)
        self.details = details or []


class ValidationError(ChatFluxError):
    """Raised when an inbound event or read request fails validation."""

    def __init__(
        self,
        message: str = "Validation failed",
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[List[Dict[str, Any]]] = None,
        field: Optional[str] = None,
    ):
        if field and not details:
            details = [{"field": field, "issue": message}]
        super().__init__(message, error_code, details)
        self.field = field


class TransientAdapterError(ChatFluxError):
    """Raised when a broker, cache or store call fails at the I/O level."""

    def __init__(
        self,
        adapter: str,
        message: str = "",
        cause: Optional[BaseException] = None,
    ):
        text = message or (f"{adapter} unavailable: {cause}" if cause else f"{adapter} unavailable")
        super().__init__(text, ErrorCode.ADAPTER_UNAVAILABLE)
        self.adapter = adapter
        self.cause = cause


class PartialBatchError(ChatFluxError):
    """Raised by a store batch insert when only part of the batch was written.

    The successfully written subset is carried in ``inserted`` and is
    already durable; ``failed`` holds the events that were not written.
    """

    def __init__(self, inserted: list, failed: list):
        super().__init__(
            f"Partial insert: {len(inserted)}/{len(inserted) + len(failed)} succeeded",
            ErrorCode.PARTIAL_BATCH,
            details=[{"inserted": len(inserted), "failed": len(failed)}],
        )
        self.inserted = inserted
        self.failed = failed


class FatalStartupError(ChatFluxError):
    """Raised when an initial connection to the store, broker or cache fails."""

    def __init__(self, component: str, cause: Optional[BaseException] = None):
        super().__init__(
            f"Failed to start {component}: {cause}" if cause else f"Failed to start {component}",
            ErrorCode.STARTUP_FAILED,
        )
        self.component = component
        self.cause = cause
