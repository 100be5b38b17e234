"""Chat event model, kinds and input validation."""

from chatflux.events.config import (
    DEFAULT_READ_LIMIT,
    DEFAULT_STREAM_ID,
    MAX_BODY_LENGTH,
    MAX_READ_LIMIT,
    SYSTEM_KEY,
    EventKind,
)
from chatflux.events.model import Event, from_epoch_ms, merge_events, to_epoch_ms, utc_now_ms
from chatflux.events.validators import (
    validate_before,
    validate_body,
    validate_kind,
    validate_limit,
    validate_origin,
    validate_stream_id,
)

__all__ = [
    "DEFAULT_READ_LIMIT",
    "DEFAULT_STREAM_ID",
    "MAX_BODY_LENGTH",
    "MAX_READ_LIMIT",
    "SYSTEM_KEY",
    "EventKind",
    "Event",
    "from_epoch_ms",
    "merge_events",
    "to_epoch_ms",
    "utc_now_ms",
    "validate_before",
    "validate_body",
    "validate_kind",
    "validate_limit",
    "validate_origin",
    "validate_stream_id",
]
