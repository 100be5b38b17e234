"""Tests for chatflux.events: event model, wire records and validation.

Run: python3 -m pytest tests/test_events.py -v
"""

import json
from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from chatflux.errors import ErrorCode, ValidationError
from chatflux.events import (
    MAX_BODY_LENGTH,
    Event,
    EventKind,
    from_epoch_ms,
    merge_events,
    to_epoch_ms,
    utc_now_ms,
    validate_before,
    validate_body,
    validate_kind,
    validate_limit,
    validate_origin,
    validate_stream_id,
)
from conftest import BASE_TIME, make_event


# =============================================================================
# Event Model
# =============================================================================


class TestEventModel:
    """Tests for the Event dataclass."""

    def test_defaults(self):
        event = Event(origin_id="sock-1", body="hi", created_at=BASE_TIME)
        assert event.kind == EventKind.USER
        assert event.stream_id == "global"
        assert event.attributes == {}

    def test_frozen(self):
        event = make_event()
        with pytest.raises(FrozenInstanceError):
            event.body = "changed"

    def test_identity_is_origin_and_created_ms(self):
        event = make_event(3)
        assert event.identity == ("sock-1", to_epoch_ms(BASE_TIME) + 3000)

    def test_validate_rejects_long_body(self):
        event = make_event(body="x" * (MAX_BODY_LENGTH + 1))
        with pytest.raises(ValidationError) as exc:
            event.validate()
        assert exc.value.error_code == ErrorCode.BODY_TOO_LONG

    def test_utc_now_ms_has_millisecond_precision(self):
        now = utc_now_ms()
        assert now.tzinfo is not None
        assert now.microsecond % 1000 == 0

    def test_epoch_ms_conversion(self):
        ms = to_epoch_ms(BASE_TIME)
        assert from_epoch_ms(ms) == BASE_TIME
        naive = BASE_TIME.replace(tzinfo=None)
        assert to_epoch_ms(naive) == ms


class TestEventRecord:
    """Tests for the wire record and JSON payload."""

    def test_to_record_uses_wire_names(self):
        record = make_event(stream_id="room1").to_record()
        assert set(record) == {"originId", "body", "kind", "streamId", "attributes", "createdAt"}
        assert record["streamId"] == "room1"
        assert record["kind"] == "user"
        assert record["createdAt"] == to_epoch_ms(BASE_TIME)

    def test_json_payload_is_compact_and_sorted(self):
        payload = make_event().to_json()
        assert isinstance(payload, bytes)
        assert b" " not in payload.replace(b"message 0", b"")
        keys = list(json.loads(payload).keys())
        assert keys == sorted(keys)

    def test_from_json_restores_identity(self):
        event = Event(
            origin_id="sock-9",
            body="with attrs",
            kind=EventKind.JOIN,
            stream_id="room1",
            attributes={"client": "web"},
            created_at=BASE_TIME,
        )
        restored = Event.from_json(event.to_json())
        assert restored == event

    def test_from_record_accepts_iso_created_at(self):
        record = make_event().to_record()
        record["createdAt"] = "2026-01-15T12:00:00.000Z"
        assert Event.from_record(record).created_at == BASE_TIME

    def test_from_record_requires_created_at(self):
        record = make_event().to_record()
        del record["createdAt"]
        with pytest.raises(ValidationError):
            Event.from_record(record)

    def test_from_record_rejects_bool_created_at(self):
        record = make_event().to_record()
        record["createdAt"] = True
        with pytest.raises(ValidationError):
            Event.from_record(record)

    @pytest.mark.parametrize("created_at", [1e20, -1e20, float("nan"), float("inf")])
    def test_from_record_rejects_out_of_range_created_at(self, created_at):
        record = make_event().to_record()
        record["createdAt"] = created_at
        with pytest.raises(ValidationError) as exc:
            Event.from_record(record)
        assert exc.value.field == "createdAt"

    def test_from_epoch_ms_out_of_range(self):
        with pytest.raises(ValidationError):
            from_epoch_ms(10 ** 20)

    def test_from_record_defaults_missing_stream(self):
        record = make_event().to_record()
        del record["streamId"]
        assert Event.from_record(record).stream_id == "global"

    def test_from_json_malformed(self):
        with pytest.raises(ValidationError):
            Event.from_json(b"{not json")

    def test_from_json_non_mapping(self):
        with pytest.raises(ValidationError):
            Event.from_json(b"[1, 2]")

    def test_from_record_rejects_unknown_kind(self):
        record = make_event().to_record()
        record["kind"] = "shout"
        with pytest.raises(ValidationError) as exc:
            Event.from_record(record)
        assert exc.value.error_code == ErrorCode.INVALID_KIND


class TestMergeEvents:

    def test_present_events_not_added(self):
        events = [make_event(i) for i in range(3)]
        merged, added = merge_events(events, list(events))
        assert added == 0
        assert merged == events

    def test_missing_events_inserted_in_created_order(self):
        e0, e1, e2 = (make_event(i) for i in range(3))
        merged, added = merge_events([e0, e2], [e1, e2])
        assert added == 1
        assert merged == [e0, e1, e2]

    def test_equal_events_matched_one_to_one(self):
        twin = make_event(1)
        merged, added = merge_events([twin], [twin, twin])
        assert added == 1
        assert merged == [twin, twin]

    def test_same_identity_different_body_is_distinct(self):
        first = make_event(1, body="a")
        merged, added = merge_events([first], [make_event(1, body="b")])
        assert added == 1
        assert [e.body for e in merged] == ["a", "b"]

    def test_keeps_newest_max_size(self):
        merged, added = merge_events([make_event(0)], [make_event(i) for i in range(1, 5)], max_size=3)
        assert added == 4
        assert [e.body for e in merged] == ["message 2", "message 3", "message 4"]


# =============================================================================
# Validators
# =============================================================================


class TestBodyValidation:

    def test_accepts_max_length(self):
        body = "x" * MAX_BODY_LENGTH
        assert validate_body(body) == body

    def test_rejects_over_max(self):
        with pytest.raises(ValidationError) as exc:
            validate_body("x" * (MAX_BODY_LENGTH + 1))
        assert exc.value.message == "Message too long (max 5000 characters)"
        assert exc.value.status_code == 400

    def test_length_counts_code_points(self):
        body = "é" * MAX_BODY_LENGTH
        assert validate_body(body) == body

    @pytest.mark.parametrize("body", [None, 42, b"bytes", ""])
    def test_rejects_non_text(self, body):
        with pytest.raises(ValidationError) as exc:
            validate_body(body)
        assert exc.value.message == "Invalid message format"


class TestKindOriginStream:

    def test_kind_default_and_values(self):
        assert validate_kind(None) == EventKind.USER
        assert validate_kind("leave") == EventKind.LEAVE
        assert validate_kind(EventKind.SYSTEM) == EventKind.SYSTEM

    def test_kind_unknown(self):
        with pytest.raises(ValidationError):
            validate_kind("whisper")

    @pytest.mark.parametrize("origin", [None, "", "   ", 7])
    def test_origin_required(self, origin):
        with pytest.raises(ValidationError) as exc:
            validate_origin(origin)
        assert exc.value.error_code == ErrorCode.INVALID_ORIGIN

    def test_stream_defaults_to_global(self):
        assert validate_stream_id(None) == "global"
        assert validate_stream_id("") == "global"

    def test_stream_max_length(self):
        assert validate_stream_id("r" * 100) == "r" * 100
        with pytest.raises(ValidationError):
            validate_stream_id("r" * 101)


class TestReadValidation:

    @pytest.mark.parametrize("limit,expected", [(1, 1), (100, 100), ("25", 25), (10.0, 10)])
    def test_limit_accepted(self, limit, expected):
        assert validate_limit(limit) == expected

    @pytest.mark.parametrize("limit", [0, 101, -5, "abc", 2.5, True, None])
    def test_limit_rejected(self, limit):
        with pytest.raises(ValidationError) as exc:
            validate_limit(limit)
        assert exc.value.error_code == ErrorCode.INVALID_PAGINATION

    def test_before_absent(self):
        assert validate_before(None) is None
        assert validate_before("") is None

    def test_before_iso_with_z(self):
        assert validate_before("2026-01-15T12:00:00Z") == BASE_TIME

    def test_before_naive_datetime_is_utc(self):
        assert validate_before(BASE_TIME.replace(tzinfo=None)) == BASE_TIME

    def test_before_offset_normalized(self):
        plus_two = BASE_TIME.astimezone(timezone(timedelta(hours=2)))
        result = validate_before(plus_two)
        assert result == BASE_TIME
        assert result.utcoffset() == timedelta(0)

    def test_before_epoch_ms(self):
        assert validate_before(to_epoch_ms(BASE_TIME)) == BASE_TIME

    @pytest.mark.parametrize("value", ["yesterday", "2026-13-01", 3.5, ["2026-01-01"]])
    def test_before_invalid(self, value):
        with pytest.raises(ValidationError) as exc:
            validate_before(value)
        assert exc.value.error_code == ErrorCode.INVALID_CURSOR

    def test_before_returns_aware(self):
        assert isinstance(validate_before("2026-01-15T12:00:00"), datetime)
        assert validate_before("2026-01-15T12:00:00").tzinfo is not None
