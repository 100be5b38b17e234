"""Adapter Interface Protocols.

Defines the contracts the pipeline coordinators depend on. Redis,
Kafka and SQLAlchemy implementations live in their own packages;
``chatflux.adapters.memory`` provides in-process implementations.

All methods raise ``TransientAdapterError`` on I/O failure.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol, Sequence, Union, runtime_checkable

from chatflux.events.model import Event

BroadcastHandler = Callable[[Event], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class LogAck:
    """Broker acknowledgment of a durably accepted event."""

    topic: str
    partition: int
    offset: int


@dataclass(frozen=True)
class LogRecord:
    """An event pulled from the durable log with its position."""

    event: Event
    partition: int
    offset: int
    topic: str = ""


@runtime_checkable
class MessageCache(Protocol):
    """Bounded, per-stream ordered list of recent events."""

    max_size: int

    async def append(self, stream_id: str, events: Sequence[Event]) -> None:
        """Append events then trim to ``max_size``, atomically."""
        ...

    async def range(self, stream_id: str, limit: int) -> list[Event]:
        """Return up to ``limit`` newest events in chronological order."""
        ...

    async def merge(self, stream_id: str, events: Sequence[Event]) -> int:
        """Add the events not already held, keeping created_at order.

        Idempotent: merging the same events twice adds them once.
        Returns the number of events added.
        """
        ...

    async def length(self, stream_id: str) -> int:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class Broadcaster(Protocol):
    """Ephemeral publish/subscribe channel."""

    async def publish(self, channel: str, event: Event) -> None:
        """Fire-and-forget publish."""
        ...

    async def subscribe(self, channel: str, handler: BroadcastHandler) -> None:
        """Register a handler invoked once per received event."""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class EventLogProducer(Protocol):
    """Producer side of the partitioned durable log."""

    async def enqueue(self, event: Event) -> LogAck:
        """Durably append an event, keyed by origin."""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class EventLogReader(Protocol):
    """Consumer-group side of the durable log with manual commit."""

    async def pull(self, max_records: int, timeout_ms: int) -> list[LogRecord]:
        ...

    async def commit(self, records: Sequence[LogRecord]) -> None:
        """Mark the given records' positions as consumed."""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class MessageStore(Protocol):
    """Durable record store."""

    async def insert_batch(self, events: Sequence[Event]) -> list[Event]:
        """Insert a batch; raises PartialBatchError carrying the written subset."""
        ...

    async def range_query(
        self,
        stream_id: str,
        before: Optional[datetime] = None,
        ascending: bool = True,
        limit: int = 50,
    ) -> list[Event]:
        """Newest ``limit`` events of a stream older than ``before``, sorted."""
        ...

    async def recent_since(self, since: datetime, limit: int) -> list[Event]:
        """Events created at or after ``since``, oldest first."""
        ...

    async def delete_older_than(self, cutoff: datetime) -> int:
        ...

    async def count(self, stream_id: Optional[str] = None) -> int:
        ...

    async def close(self) -> None:
        ...