"""Error taxonomy for ChatFlux."""

from chatflux.errors.config import ERROR_STATUS_MAP, ErrorCode
from chatflux.errors.exceptions import (
    ChatFluxError,
    FatalStartupError,
    PartialBatchError,
    TransientAdapterError,
    ValidationError,
)

__all__ = [
    "ERROR_STATUS_MAP",
    "ErrorCode",
    "ChatFluxError",
    "FatalStartupError",
    "PartialBatchError",
    "TransientAdapterError",
    "ValidationError",
]
