"""Adapter contracts and in-memory implementations."""

from chatflux.adapters.base import (
    BroadcastHandler,
    Broadcaster,
    EventLogProducer,
    EventLogReader,
    LogAck,
    LogRecord,
    MessageCache,
    MessageStore,
)
from chatflux.adapters.memory import (
    InMemoryBroadcaster,
    InMemoryCache,
    InMemoryLog,
    InMemoryStore,
)

__all__ = [
    "BroadcastHandler",
    "Broadcaster",
    "EventLogProducer",
    "EventLogReader",
    "LogAck",
    "LogRecord",
    "MessageCache",
    "MessageStore",
    "InMemoryBroadcaster",
    "InMemoryCache",
    "InMemoryLog",
    "InMemoryStore",
]
