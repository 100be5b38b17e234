"""Pytest configuration and shared fixtures."""

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from chatflux.adapters.base import LogRecord  # noqa: E402
from chatflux.adapters.memory import (  # noqa: E402
    InMemoryBroadcaster,
    InMemoryCache,
    InMemoryLog,
    InMemoryStore,
)
from chatflux.events import Event, EventKind  # noqa: E402
from chatflux.settings import Settings, get_settings  # noqa: E402

BASE_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def make_event(
    n: int = 0,
    origin_id: str = "sock-1",
    body: str = None,
    stream_id: str = "global",
    kind: EventKind = EventKind.USER,
    created_at: datetime = None,
) -> Event:
    """Build an event whose created_at is BASE_TIME + n seconds."""
    return Event(
        origin_id=origin_id,
        body=body if body is not None else f"message {n}",
        kind=kind,
        stream_id=stream_id,
        created_at=created_at or BASE_TIME + timedelta(seconds=n),
    )


def make_record(n: int = 0, partition: int = 0, **kwargs) -> LogRecord:
    return LogRecord(event=make_event(n, **kwargs), partition=partition, offset=n, topic="chat-messages")


def out_of_range_payload(n: int = 0) -> bytes:
    """Serialized event whose createdAt is beyond the datetime range."""
    record = make_event(n).to_record()
    record["createdAt"] = 1e20
    return json.dumps(record).encode("utf-8")


@pytest.fixture(autouse=True)
def reset_settings():
    """Drop the cached settings so env changes in a test do not leak."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        flush_interval_ms=5000,
        flush_check_interval_ms=1000,
        flush_retry_base_delay=0.0,
        heal_interval_seconds=3600.0,
        retention_interval_seconds=86400.0,
        health_interval_seconds=3600.0,
    )


@pytest.fixture
def cache():
    return InMemoryCache(max_size=5000)


@pytest.fixture
def broadcaster():
    return InMemoryBroadcaster()


@pytest.fixture
def log():
    return InMemoryLog()


@pytest.fixture
def store():
    return InMemoryStore()
