"""Tests for chatflux.durable_log: Kafka producer, reader and admin.

Kafka clients are replaced with AsyncMock; the in-memory log is
checked for the same partitioning and commit semantics.

Run: python3 -m pytest tests/test_durable_log.py -v
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiokafka import TopicPartition
from aiokafka.errors import KafkaConnectionError, TopicAlreadyExistsError

from chatflux.adapters.base import LogRecord
from chatflux.adapters.memory import InMemoryLog
from chatflux.durable_log import KafkaEventProducer, KafkaLogReader, ensure_topic, partition_key
from chatflux.durable_log.admin import TOPIC_CONFIGS
from chatflux.errors import FatalStartupError, TransientAdapterError
from chatflux.events import EventKind
from conftest import make_event, make_record, out_of_range_payload


# =============================================================================
# Producer
# =============================================================================


class TestProducer:

    def _producer(self):
        client = MagicMock()
        client.start = AsyncMock()
        client.stop = AsyncMock()
        client.send_and_wait = AsyncMock(
            return_value=SimpleNamespace(topic="chat-messages", partition=2, offset=41)
        )
        return KafkaEventProducer("chat-messages", producer=client), client

    def test_partition_key_is_origin(self):
        assert partition_key(make_event(origin_id="sock-7")) == b"sock-7"

    @pytest.mark.asyncio
    async def test_enqueue_returns_ack(self):
        producer, client = self._producer()
        event = make_event()
        ack = await producer.enqueue(event)

        assert (ack.topic, ack.partition, ack.offset) == ("chat-messages", 2, 41)
        kwargs = client.send_and_wait.call_args.kwargs
        assert client.send_and_wait.call_args.args == ("chat-messages",)
        assert kwargs["value"] == event.to_json()
        assert kwargs["key"] == b"sock-1"
        headers = dict(kwargs["headers"])
        assert set(headers) == {"message-id", "timestamp"}
        assert headers["timestamp"] == str(event.created_at_ms).encode()

    @pytest.mark.asyncio
    async def test_system_events_keyed_by_origin_or_sentinel(self):
        producer, client = self._producer()
        await producer.enqueue(make_event(origin_id="system", kind=EventKind.SYSTEM))
        assert client.send_and_wait.call_args.kwargs["key"] == b"system"

    @pytest.mark.asyncio
    async def test_enqueue_failure_raises_transient(self):
        producer, client = self._producer()
        client.send_and_wait = AsyncMock(side_effect=KafkaConnectionError("no broker"))
        with pytest.raises(TransientAdapterError) as exc:
            await producer.enqueue(make_event())
        assert exc.value.adapter == "log"

    @pytest.mark.asyncio
    async def test_start_failure_is_fatal(self):
        producer, client = self._producer()
        client.start = AsyncMock(side_effect=KafkaConnectionError("no broker"))
        with pytest.raises(FatalStartupError):
            await producer.start()

    @pytest.mark.asyncio
    async def test_close_only_after_start(self):
        producer, client = self._producer()
        await producer.close()
        client.stop.assert_not_awaited()
        await producer.start()
        await producer.close()
        client.stop.assert_awaited_once()


# =============================================================================
# Reader
# =============================================================================


class TestReader:

    def _reader(self, batches=None):
        client = MagicMock()
        client.start = AsyncMock()
        client.stop = AsyncMock()
        client.commit = AsyncMock()
        client.getmany = AsyncMock(return_value=batches or {})
        return KafkaLogReader("chat-messages", "chat-consumer-group", consumer=client), client

    @pytest.mark.asyncio
    async def test_pull_decodes_records(self):
        tp = TopicPartition("chat-messages", 1)
        messages = [SimpleNamespace(offset=i, value=make_event(i).to_json()) for i in range(3)]
        reader, client = self._reader({tp: messages})

        records = await reader.pull(10, 500)

        client.getmany.assert_awaited_once_with(timeout_ms=500, max_records=10)
        assert [r.offset for r in records] == [0, 1, 2]
        assert records[0].partition == 1
        assert records[2].event == make_event(2)

    @pytest.mark.asyncio
    async def test_pull_skips_invalid_messages(self):
        tp = TopicPartition("chat-messages", 0)
        messages = [
            SimpleNamespace(offset=0, value=b"{broken"),
            SimpleNamespace(offset=1, value=make_event(1, body="x" * 5001).to_json()),
            SimpleNamespace(offset=2, value=make_event(2).to_json()),
        ]
        reader, _ = self._reader({tp: messages})
        records = await reader.pull(10, 500)
        assert [r.offset for r in records] == [2]

    @pytest.mark.asyncio
    async def test_out_of_range_timestamp_skipped_neighbors_kept(self):
        tp = TopicPartition("chat-messages", 0)
        messages = [
            SimpleNamespace(offset=0, value=make_event(0).to_json()),
            SimpleNamespace(offset=1, value=out_of_range_payload(1)),
            SimpleNamespace(offset=2, value=make_event(2).to_json()),
        ]
        reader, _ = self._reader({tp: messages})
        records = await reader.pull(10, 500)
        assert [r.event.body for r in records] == ["message 0", "message 2"]

    @pytest.mark.asyncio
    async def test_commit_max_offset_plus_one_per_partition(self):
        reader, client = self._reader()
        records = [
            make_record(3, partition=0),
            make_record(5, partition=0),
            make_record(4, partition=0),
            make_record(9, partition=2),
        ]
        await reader.commit(records)
        client.commit.assert_awaited_once_with({
            TopicPartition("chat-messages", 0): 6,
            TopicPartition("chat-messages", 2): 10,
        })

    @pytest.mark.asyncio
    async def test_commit_empty_is_noop(self):
        reader, client = self._reader()
        await reader.commit([])
        client.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pull_failure_raises_transient(self):
        reader, client = self._reader()
        client.getmany = AsyncMock(side_effect=KafkaConnectionError("gone"))
        with pytest.raises(TransientAdapterError):
            await reader.pull(10, 100)


# =============================================================================
# Admin
# =============================================================================


class TestEnsureTopic:

    def _admin(self, existing):
        admin = MagicMock()
        admin.start = AsyncMock()
        admin.close = AsyncMock()
        admin.list_topics = AsyncMock(return_value=existing)
        admin.create_topics = AsyncMock()
        return admin

    @pytest.mark.asyncio
    async def test_creates_missing_topic(self):
        admin = self._admin([])
        with patch("chatflux.durable_log.admin.AIOKafkaAdminClient", return_value=admin):
            created = await ensure_topic("localhost:9092", "chat-messages", partitions=3)
        assert created is True
        (topics,), _ = admin.create_topics.call_args
        assert topics[0].name == "chat-messages"
        assert topics[0].num_partitions == 3
        assert TOPIC_CONFIGS == {"retention.ms": "604800000", "compression.type": "snappy"}
        admin.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_existing_topic_untouched(self):
        admin = self._admin(["chat-messages"])
        with patch("chatflux.durable_log.admin.AIOKafkaAdminClient", return_value=admin):
            created = await ensure_topic("localhost:9092", "chat-messages")
        assert created is False
        admin.create_topics.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_creation_is_not_an_error(self):
        admin = self._admin([])
        admin.create_topics = AsyncMock(side_effect=TopicAlreadyExistsError())
        with patch("chatflux.durable_log.admin.AIOKafkaAdminClient", return_value=admin):
            assert await ensure_topic("localhost:9092", "chat-messages") is False


# =============================================================================
# In-memory log
# =============================================================================


class TestInMemoryLog:

    @pytest.mark.asyncio
    async def test_same_origin_same_partition_in_order(self):
        log = InMemoryLog(partitions=3)
        acks = [await log.enqueue(make_event(i, origin_id="sock-1")) for i in range(4)]
        assert len({a.partition for a in acks}) == 1
        assert [a.offset for a in acks] == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_uncommitted_records_redelivered(self):
        log = InMemoryLog(partitions=1)
        for i in range(3):
            await log.enqueue(make_event(i))
        first = await log.pull(2, 10)
        await log.commit(first)
        await log.pull(10, 10)

        log.rewind_to_committed()
        redelivered = await log.pull(10, 10)
        assert [r.offset for r in redelivered] == [2]

    @pytest.mark.asyncio
    async def test_out_of_range_record_skipped_neighbors_committed(self):
        log = InMemoryLog(partitions=1)
        await log.enqueue(make_event(0))
        log._records[0].append(out_of_range_payload(1))
        await log.enqueue(make_event(2))

        records = await log.pull(10, 10)
        await log.commit(records)

        assert [r.offset for r in records] == [0, 2]
        assert log.committed == [3]

    @pytest.mark.asyncio
    async def test_pull_times_out_empty(self):
        log = InMemoryLog()
        assert await log.pull(10, 5) == []

    def test_log_record_default_topic(self):
        record = LogRecord(event=make_event(), partition=0, offset=0)
        assert record.topic == ""
