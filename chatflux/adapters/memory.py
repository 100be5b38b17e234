"""In-memory adapters.

Process-local implementations of the adapter protocols, used by
``chatflux.runtime`` in ``--memory`` mode and by the test suite. Each
adapter can be told to fail its next calls with ``fail_next`` to
exercise degraded paths.
"""

import asyncio
import logging
import zlib
from datetime import datetime, timezone
from typing import Optional, Sequence

from chatflux.adapters.base import BroadcastHandler, LogAck, LogRecord
from chatflux.errors.exceptions import PartialBatchError, TransientAdapterError, ValidationError
from chatflux.events.config import SYSTEM_KEY
from chatflux.events.model import Event, merge_events

logger = logging.getLogger(__name__)


def _decode_entries(stream_id: str, raw: Sequence[bytes]) -> list[Event]:
    events = []
    for item in raw:
        try:
            events.append(Event.from_json(item))
        except Exception as e:
            logger.warning("Skipping unparseable cache entry in %s: %s", stream_id, e)
    return events


class _FailureInjection:
    adapter_name = "memory"

    def __init__(self):
        self._failures_remaining = 0
        self.calls = 0

    def fail_next(self, times: int = 1) -> None:
        """Make the next ``times`` I/O calls raise TransientAdapterError."""
        self._failures_remaining = times

    def _io(self) -> None:
        self.calls += 1
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            raise TransientAdapterError(self.adapter_name, "injected failure")


class InMemoryCache(_FailureInjection):
    """Bounded per-stream list with tail trim."""

    adapter_name = "cache"

    def __init__(self, max_size: int = 5000):
        super().__init__()
        self.max_size = max_size
        self._lists: dict[str, list[bytes]] = {}

    async def append(self, stream_id: str, events: Sequence[Event]) -> None:
        self._io()
        entries = self._lists.setdefault(stream_id, [])
        entries.extend(e.to_json() for e in events)
        if len(entries) > self.max_size:
            del entries[: len(entries) - self.max_size]

    async def range(self, stream_id: str, limit: int) -> list[Event]:
        self._io()
        count = min(limit, self.max_size)
        if count <= 0:
            return []
        return _decode_entries(stream_id, self._lists.get(stream_id, [])[-count:])

    async def merge(self, stream_id: str, events: Sequence[Event]) -> int:
        self._io()
        if not events:
            return 0
        cached = _decode_entries(stream_id, self._lists.get(stream_id, []))
        merged, added = merge_events(cached, events, self.max_size)
        if added:
            self._lists[stream_id] = [e.to_json() for e in merged]
        return added

    async def length(self, stream_id: str) -> int:
        self._io()
        return len(self._lists.get(stream_id, []))

    async def ping(self) -> bool:
        self._io()
        return True

    async def close(self) -> None:
        self._lists.clear()


class InMemoryBroadcaster(_FailureInjection):
    """Synchronous fan-out to registered handlers; no history."""

    adapter_name = "broadcast"

    def __init__(self):
        super().__init__()
        self._handlers: dict[str, list[BroadcastHandler]] = {}
        self.published: list[tuple[str, bytes]] = []

    async def publish(self, channel: str, event: Event) -> None:
        self._io()
        payload = event.to_json()
        self.published.append((channel, payload))
        for handler in list(self._handlers.get(channel, [])):
            try:
                result = handler(Event.from_json(payload))
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("Broadcast handler error on %s: %s", channel, e)

    async def subscribe(self, channel: str, handler: BroadcastHandler) -> None:
        self._handlers.setdefault(channel, []).append(handler)

    async def close(self) -> None:
        self._handlers.clear()


class InMemoryLog(_FailureInjection):
    """Partitioned append log acting as both producer and group reader.

    Events are keyed by origin onto a fixed number of partitions. The
    reader tracks a fetch position and a committed position per
    partition; ``rewind_to_committed`` simulates a consumer restart.
    """

    adapter_name = "log"

    def __init__(self, topic: str = "chat-messages", partitions: int = 3):
        super().__init__()
        self.topic = topic
        self.partitions = partitions
        self._records: list[list[bytes]] = [[] for _ in range(partitions)]
        self._fetched = [0] * partitions
        self.committed = [0] * partitions
        self._available = asyncio.Event()
        self.closed = False

    def partition_for(self, event: Event) -> int:
        key = (event.origin_id or SYSTEM_KEY).encode("utf-8")
        return zlib.crc32(key) % self.partitions

    async def enqueue(self, event: Event) -> LogAck:
        self._io()
        partition = self.partition_for(event)
        self._records[partition].append(event.to_json())
        self._available.set()
        return LogAck(topic=self.topic, partition=partition, offset=len(self._records[partition]) - 1)

    def pending(self) -> int:
        return sum(len(r) - f for r, f in zip(self._records, self._fetched))

    async def pull(self, max_records: int, timeout_ms: int) -> list[LogRecord]:
        if self.pending() == 0:
            self._available.clear()
            try:
                await asyncio.wait_for(self._available.wait(), timeout_ms / 1000)
            except asyncio.TimeoutError:
                return []

        records: list[LogRecord] = []
        for partition in range(self.partitions):
            while self._fetched[partition] < len(self._records[partition]) and len(records) < max_records:
                offset = self._fetched[partition]
                self._fetched[partition] += 1
                try:
                    event = Event.from_json(self._records[partition][offset])
                except ValidationError as e:
                    logger.error("Skipping undecodable log record at %d/%d: %s", partition, offset, e)
                    continue
                records.append(LogRecord(event=event, partition=partition, offset=offset, topic=self.topic))
        return records

    async def commit(self, records: Sequence[LogRecord]) -> None:
        self._io()
        for record in records:
            self.committed[record.partition] = max(self.committed[record.partition], record.offset + 1)

    def rewind_to_committed(self) -> None:
        self._fetched = list(self.committed)
        if self.pending():
            self._available.set()

    async def close(self) -> None:
        self.closed = True


class InMemoryStore(_FailureInjection):
    """List-backed store with the same partial-batch semantics as the SQL store."""

    adapter_name = "store"

    def __init__(self):
        super().__init__()
        self.events: list[Event] = []
        self.batches: list[int] = []

    async def insert_batch(self, events: Sequence[Event]) -> list[Event]:
        self._io()
        inserted: list[Event] = []
        failed: list[Event] = []
        for event in events:
            try:
                event.validate()
            except ValidationError:
                failed.append(event)
            else:
                inserted.append(event)
        self.events.extend(inserted)
        self.batches.append(len(events))
        if failed:
            raise PartialBatchError(inserted=inserted, failed=failed)
        return inserted

    def _sorted(self, events: list[Event]) -> list[Event]:
        return sorted(events, key=lambda e: e.created_at)

    async def range_query(
        self,
        stream_id: str,
        before: Optional[datetime] = None,
        ascending: bool = True,
        limit: int = 50,
    ) -> list[Event]:
        self._io()
        matches = [e for e in self.events if e.stream_id == stream_id]
        if before is not None:
            cutoff = before if before.tzinfo else before.replace(tzinfo=timezone.utc)
            matches = [e for e in matches if e.created_at < cutoff]
        newest = self._sorted(matches)[-limit:] if limit > 0 else []
        return newest if ascending else list(reversed(newest))

    async def recent_since(self, since: datetime, limit: int) -> list[Event]:
        self._io()
        return self._sorted([e for e in self.events if e.created_at >= since])[:limit]

    async def delete_older_than(self, cutoff: datetime) -> int:
        self._io()
        kept = [e for e in self.events if e.created_at >= cutoff]
        deleted = len(self.events) - len(kept)
        self.events = kept
        return deleted

    async def count(self, stream_id: Optional[str] = None) -> int:
        self._io()
        if stream_id is None:
            return len(self.events)
        return sum(1 for e in self.events if e.stream_id == stream_id)

    async def ping(self) -> bool:
        self._io()
        return True

    async def close(self) -> None:
        pass
