"""Tests for chatflux.db: SQL message store on SQLite (aiosqlite).

Tests cover: batch insert with partial failure, range queries with the
before cursor, heal-window queries, retention deletes and counts.

Run: python3 -m pytest tests/test_store.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from chatflux.db import MessageRow, SqlMessageStore, create_schema
from chatflux.errors import PartialBatchError
from chatflux.events import Event, EventKind
from conftest import BASE_TIME, make_event


@pytest_asyncio.fixture
async def sql_store(tmp_path):
    store = SqlMessageStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")
    await create_schema(store.engine)
    yield store
    await store.close()


class TestInsertBatch:

    @pytest.mark.asyncio
    async def test_insert_and_count(self, sql_store):
        events = [make_event(i) for i in range(5)]
        inserted = await sql_store.insert_batch(events)
        assert inserted == events
        assert await sql_store.count() == 5

    @pytest.mark.asyncio
    async def test_partial_batch_keeps_valid_subset(self, sql_store):
        events = [make_event(1), make_event(2, body="x" * 5001), make_event(3)]
        with pytest.raises(PartialBatchError) as exc:
            await sql_store.insert_batch(events)
        assert exc.value.inserted == [events[0], events[2]]
        assert exc.value.failed == [events[1]]
        assert await sql_store.count() == 2

    @pytest.mark.asyncio
    async def test_duplicates_tolerated(self, sql_store):
        event = make_event(1)
        await sql_store.insert_batch([event])
        await sql_store.insert_batch([event])
        assert await sql_store.count() == 2

    @pytest.mark.asyncio
    async def test_fields_survive_round_trip(self, sql_store):
        event = Event(
            origin_id="sock-5",
            body="joined",
            kind=EventKind.JOIN,
            stream_id="room1",
            attributes={"client": "web", "version": 2},
            created_at=BASE_TIME,
        )
        await sql_store.insert_batch([event])
        [stored] = await sql_store.range_query("room1")
        assert stored == event
        assert stored.created_at.tzinfo is not None


class TestRangeQuery:

    @pytest.mark.asyncio
    async def test_stream_filter_ascending(self, sql_store):
        room = [make_event(i, stream_id="room1") for i in (3, 1, 2)]
        other = [make_event(i) for i in range(4)]
        await sql_store.insert_batch(room + other)

        result = await sql_store.range_query("room1", limit=50)
        assert [e.body for e in result] == ["message 1", "message 2", "message 3"]

    @pytest.mark.asyncio
    async def test_limit_returns_newest(self, sql_store):
        await sql_store.insert_batch([make_event(i) for i in range(10)])
        result = await sql_store.range_query("global", limit=3)
        assert [e.body for e in result] == ["message 7", "message 8", "message 9"]

    @pytest.mark.asyncio
    async def test_descending(self, sql_store):
        await sql_store.insert_batch([make_event(i) for i in range(3)])
        result = await sql_store.range_query("global", ascending=False)
        assert [e.body for e in result] == ["message 2", "message 1", "message 0"]

    @pytest.mark.asyncio
    async def test_before_is_exclusive(self, sql_store):
        await sql_store.insert_batch([make_event(i) for i in range(6)])
        cutoff = BASE_TIME + timedelta(seconds=4)
        result = await sql_store.range_query("global", before=cutoff, limit=2)
        assert [e.body for e in result] == ["message 2", "message 3"]


class TestMaintenanceQueries:

    @pytest.mark.asyncio
    async def test_recent_since_oldest_first_capped(self, sql_store):
        await sql_store.insert_batch([make_event(i) for i in range(10)])
        since = BASE_TIME + timedelta(seconds=5)
        result = await sql_store.recent_since(since, limit=3)
        assert [e.body for e in result] == ["message 5", "message 6", "message 7"]

    @pytest.mark.asyncio
    async def test_retention_deletes_only_older_than_cutoff(self, sql_store):
        now = datetime.now(timezone.utc).replace(microsecond=0)
        ages = [1, 29, 31, 40]
        await sql_store.insert_batch([
            make_event(0, body=f"{days} days", created_at=now - timedelta(days=days))
            for days in ages
        ])

        deleted = await sql_store.delete_older_than(now - timedelta(days=30))

        assert deleted == 2
        remaining = await sql_store.range_query("global")
        assert [e.body for e in remaining] == ["29 days", "1 days"]

    @pytest.mark.asyncio
    async def test_count_by_stream(self, sql_store):
        await sql_store.insert_batch(
            [make_event(1, stream_id="room1"), make_event(2), make_event(3)]
        )
        assert await sql_store.count("room1") == 1
        assert await sql_store.count("global") == 2

    @pytest.mark.asyncio
    async def test_ping(self, sql_store):
        assert await sql_store.ping() is True


class TestMessageRow:

    def test_from_event(self):
        row = MessageRow.from_event(make_event(1, stream_id="room1"))
        assert row.origin_id == "sock-1"
        assert row.stream_id == "room1"
        assert row.kind == EventKind.USER

    def test_to_event_attaches_utc_to_naive(self):
        row = MessageRow(
            origin_id="sock-1",
            body="hi",
            kind=EventKind.USER,
            stream_id="global",
            attributes={},
            created_at=BASE_TIME.replace(tzinfo=None),
        )
        assert row.to_event().created_at == BASE_TIME
