"""Input Validation Utilities.

Validators for inbound events at the transport boundary and for
read-API parameters. Each raises ``ValidationError`` on bad input and
returns the normalized value otherwise.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from chatflux.errors.config import ErrorCode
from chatflux.errors.exceptions import ValidationError
from chatflux.events.config import (
    DEFAULT_STREAM_ID,
    MAX_BODY_LENGTH,
    MAX_READ_LIMIT,
    MAX_STREAM_ID_LENGTH,
    MIN_READ_LIMIT,
    EventKind,
)


def validate_body(body: Any) -> str:
    """Validate a message body: must be text of at most MAX_BODY_LENGTH code points."""
    if not isinstance(body, str) or not body:
        raise ValidationError(
            message="Invalid message format",
            error_code=ErrorCode.INVALID_BODY,
            field="body",
        )
    if len(body) > MAX_BODY_LENGTH:
        raise ValidationError(
            message=f"Message too long (max {MAX_BODY_LENGTH} characters)",
            error_code=ErrorCode.BODY_TOO_LONG,
            field="body",
        )
    return body


def validate_kind(kind: Any) -> EventKind:
    """Validate an event kind, accepting enum members or their string values."""
    if kind is None:
        return EventKind.USER
    try:
        return EventKind(kind)
    except ValueError:
        allowed = ", ".join(k.value for k in EventKind)
        raise ValidationError(
            message=f"Invalid kind '{kind}'. Expected one of: {allowed}",
            error_code=ErrorCode.INVALID_KIND,
            field="kind",
        ) from None


def validate_origin(origin_id: Any) -> str:
    """Validate an origin connection id."""
    if not isinstance(origin_id, str) or not origin_id.strip():
        raise ValidationError(
            message="Origin id is required",
            error_code=ErrorCode.INVALID_ORIGIN,
            field="originId",
        )
    return origin_id


def validate_stream_id(stream_id: Any) -> str:
    """Validate a stream (room) id; empty means the default stream."""
    if stream_id is None or stream_id == "":
        return DEFAULT_STREAM_ID
    if not isinstance(stream_id, str) or len(stream_id) > MAX_STREAM_ID_LENGTH:
        raise ValidationError(
            message=f"Stream id must be a string of at most {MAX_STREAM_ID_LENGTH} characters",
            error_code=ErrorCode.INVALID_STREAM,
            field="roomId",
        )
    return stream_id


def validate_limit(limit: Any) -> int:
    """Validate a read limit: an integer in [MIN_READ_LIMIT, MAX_READ_LIMIT]."""
    value: Optional[int] = None
    if isinstance(limit, bool):
        value = None
    elif isinstance(limit, int):
        value = limit
    elif isinstance(limit, float) and limit.is_integer():
        value = int(limit)
    elif isinstance(limit, str) and limit.strip().lstrip("-").isdigit():
        value = int(limit.strip())

    if value is None or not MIN_READ_LIMIT <= value <= MAX_READ_LIMIT:
        raise ValidationError(
            message=f"limit must be an integer between {MIN_READ_LIMIT} and {MAX_READ_LIMIT}",
            error_code=ErrorCode.INVALID_PAGINATION,
            field="limit",
        )
    return value


def validate_before(before: Any) -> Optional[datetime]:
    """Validate a ``before`` cursor.

    Accepts a datetime (naive values are taken as UTC), an ISO-8601 string
    or integer epoch milliseconds. Returns an aware UTC datetime or None.
    """
    if before is None or before == "":
        return None

    if isinstance(before, datetime):
        parsed = before
    elif isinstance(before, int) and not isinstance(before, bool):
        try:
            parsed = datetime.fromtimestamp(before / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise _invalid_cursor(before) from None
    elif isinstance(before, str):
        text = before.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise _invalid_cursor(before) from None
    else:
        raise _invalid_cursor(before)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _invalid_cursor(value: Any) -> ValidationError:
    return ValidationError(
        message=f"Invalid before cursor: {value!r}. Expected an ISO-8601 date",
        error_code=ErrorCode.INVALID_CURSOR,
        field="before",
    )
