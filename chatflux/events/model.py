"""Chat event model.

The ``Event`` is the unit flowing through the whole pipeline. It is
immutable; each sink receives the same serialized record, keyed by the
exact wire field names (``originId``, ``body``, ``kind``, ``streamId``,
``attributes``, ``createdAt``).
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from chatflux.errors.config import ErrorCode
from chatflux.errors.exceptions import ValidationError
from chatflux.events.config import DEFAULT_STREAM_ID, EventKind
from chatflux.events.validators import (
    validate_body,
    validate_kind,
    validate_origin,
    validate_stream_id,
)


def utc_now_ms() -> datetime:
    """Current UTC time truncated to millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_epoch_ms(value: datetime) -> int:
    """Convert a datetime (naive taken as UTC) to integer epoch milliseconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(round(value.timestamp() * 1000))


def from_epoch_ms(value: int) -> datetime:
    """Convert integer epoch milliseconds to an aware UTC datetime.

    Raises ValidationError for values outside the platform's datetime range.
    """
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise ValidationError(
            f"createdAt out of range: {value!r}", field="createdAt",
        ) from exc


@dataclass(frozen=True)
class Event:
    """A chat event.

    ``created_at`` is assigned once at ingestion and is the sole ordering
    key. ``(origin_id, created_at)`` identifies the event for dedup
    purposes but is not guaranteed unique.
    """

    origin_id: str
    body: str
    created_at: datetime
    kind: EventKind = EventKind.USER
    stream_id: str = DEFAULT_STREAM_ID
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> tuple[str, int]:
        return (self.origin_id, to_epoch_ms(self.created_at))

    @property
    def created_at_ms(self) -> int:
        return to_epoch_ms(self.created_at)

    def validate(self) -> "Event":
        """Re-check field invariants; raises ValidationError."""
        validate_origin(self.origin_id)
        validate_body(self.body)
        validate_kind(self.kind)
        validate_stream_id(self.stream_id)
        return self

    # --- Serialization ---

    def to_record(self) -> dict[str, Any]:
        """Flat key-value record using the wire field names."""
        return {
            "originId": self.origin_id,
            "body": self.body,
            "kind": self.kind.value,
            "streamId": self.stream_id,
            "attributes": dict(self.attributes),
            "createdAt": self.created_at_ms,
        }

    def to_json(self) -> bytes:
        """Serialize to the JSON payload shared by cache, broadcast and log."""
        return json.dumps(
            self.to_record(), separators=(",", ":"), sort_keys=True, default=str,
        ).encode("utf-8")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Event":
        """Build and validate an Event from a wire record."""
        if not isinstance(record, dict):
            raise ValidationError("Event record must be a mapping")

        created_raw = record.get("createdAt")
        created_at: Optional[datetime] = None
        if isinstance(created_raw, bool):
            created_at = None
        elif isinstance(created_raw, (int, float)):
            try:
                created_at = from_epoch_ms(int(created_raw))
            except (OverflowError, ValueError) as exc:
                # NaN and infinity
                raise ValidationError(
                    f"createdAt out of range: {created_raw!r}", field="createdAt",
                ) from exc
        elif isinstance(created_raw, datetime):
            created_at = created_raw if created_raw.tzinfo else created_raw.replace(tzinfo=timezone.utc)
        elif isinstance(created_raw, str):
            try:
                created_at = datetime.fromisoformat(created_raw.replace("Z", "+00:00"))
            except ValueError:
                created_at = None
            if created_at is not None and created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=timezone.utc)
        if created_at is None:
            raise ValidationError(
                "createdAt is required", error_code=ErrorCode.VALIDATION_ERROR, field="createdAt",
            )

        attributes = record.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise ValidationError("attributes must be a mapping", field="attributes")

        try:
            created_at = created_at.astimezone(timezone.utc)
        except (OverflowError, ValueError) as exc:
            raise ValidationError(
                f"createdAt out of range: {created_raw!r}", field="createdAt",
            ) from exc

        return cls(
            origin_id=validate_origin(record.get("originId")),
            body=validate_body(record.get("body")),
            kind=validate_kind(record.get("kind")),
            stream_id=validate_stream_id(record.get("streamId")),
            attributes=attributes,
            created_at=created_at,
        )

    @classmethod
    def from_json(cls, payload: bytes | str) -> "Event":
        """Parse a JSON payload; raises ValidationError if malformed."""
        try:
            record = json.loads(payload)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed event payload: {exc}") from exc
        return cls.from_record(record)


def merge_events(
    existing: Sequence[Event],
    incoming: Sequence[Event],
    max_size: Optional[int] = None,
) -> tuple[list[Event], int]:
    """Merge ``incoming`` into ``existing`` without duplicating events.

    An incoming event counts as present when an existing event has the
    same identity and body. Repeated identical events are matched one to
    one, so two equal events in ``incoming`` against one in ``existing``
    add one. The result is ordered by ``created_at`` (stable for ties)
    and keeps the newest ``max_size`` events.

    Returns the merged list and the number of events added.
    """
    present = Counter(_dedup_key(e) for e in existing)
    added: list[Event] = []
    for event in incoming:
        key = _dedup_key(event)
        if present[key] > 0:
            present[key] -= 1
        else:
            added.append(event)
    if not added:
        return list(existing), 0

    merged = sorted([*existing, *added], key=lambda e: e.created_at)
    if max_size is not None and len(merged) > max_size:
        merged = merged[-max_size:]
    return merged, len(added)


def _dedup_key(event: Event) -> tuple[str, int, str]:
    return (*event.identity, event.body)
