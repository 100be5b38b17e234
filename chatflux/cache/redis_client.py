"""Redis bounded message cache.

Keeps the most recent events of each stream in a capped Redis list.
Every append is an RPUSH followed by an LTRIM executed in one
MULTI/EXEC transaction, so a concurrent LRANGE never sees the list
longer than its cap. Eviction is by insertion recency only. ``merge``
adds only the events a list does not already hold, for cache healing.
"""

import asyncio
import logging
from typing import Sequence

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from chatflux.cache.keys import messages_key
from chatflux.errors.exceptions import TransientAdapterError
from chatflux.events.model import Event, merge_events

logger = logging.getLogger(__name__)

ADAPTER_NAME = "cache"

IO_ERRORS = (RedisError, OSError, asyncio.TimeoutError)

MERGE_ATTEMPTS = 5


class RedisMessageCache:
    """Capped per-stream list of recent events backed by Redis."""

    def __init__(self, client: aioredis.Redis, max_size: int = 5000):
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self._client = client
        self.max_size = max_size

    @classmethod
    def from_url(cls, url: str, max_size: int = 5000) -> "RedisMessageCache":
        """Create a cache with its own connection pool."""
        return cls(aioredis.from_url(url, decode_responses=False), max_size=max_size)

    # --- Connection Management ---

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except IO_ERRORS as e:
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e

    async def close(self) -> None:
        """Release the connection pool."""
        await self._client.aclose()
        logger.info("Redis cache client closed")

    # --- List Operations ---

    async def append(self, stream_id: str, events: Sequence[Event]) -> None:
        """Append events to a stream's list and trim it to ``max_size``."""
        if not events:
            return
        key = messages_key(stream_id)
        payloads = [event.to_json() for event in events]
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.rpush(key, *payloads)
                pipe.ltrim(key, -self.max_size, -1)
                await pipe.execute()
        except IO_ERRORS as e:
            logger.warning("Redis append failed for %s: %s", key, e)
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e

    async def range(self, stream_id: str, limit: int) -> list[Event]:
        """Return up to ``limit`` newest events of a stream, oldest first."""
        count = min(limit, self.max_size)
        if count < 1:
            return []
        key = messages_key(stream_id)
        try:
            raw = await self._client.lrange(key, -count, -1)
        except IO_ERRORS as e:
            logger.warning("Redis range failed for %s: %s", key, e)
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e

        events = _decode_entries(key, raw)
        logger.debug("Fetched %d messages from Redis", len(events))
        return events

    async def merge(self, stream_id: str, events: Sequence[Event]) -> int:
        """Add the events a stream's list does not already hold.

        The list is read under WATCH and rewritten in created_at order
        inside MULTI/EXEC, so merging the same events again changes
        nothing. Returns the number of events added.
        """
        if not events:
            return 0
        key = messages_key(stream_id)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                for _ in range(MERGE_ATTEMPTS):
                    try:
                        await pipe.watch(key)
                        cached = _decode_entries(key, await pipe.lrange(key, 0, -1))
                        merged, added = merge_events(cached, events, self.max_size)
                        if not added:
                            return 0
                        pipe.multi()
                        pipe.delete(key)
                        pipe.rpush(key, *[event.to_json() for event in merged])
                        await pipe.execute()
                        return added
                    except WatchError:
                        logger.debug("Cache list %s changed during merge, retrying", key)
        except IO_ERRORS as e:
            logger.warning("Redis merge failed for %s: %s", key, e)
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e
        raise TransientAdapterError(ADAPTER_NAME, f"merge of {key} kept conflicting with writers")

    async def length(self, stream_id: str) -> int:
        try:
            return int(await self._client.llen(messages_key(stream_id)))
        except IO_ERRORS as e:
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e


def _decode_entries(key: str, raw: Sequence[bytes]) -> list[Event]:
    events: list[Event] = []
    for item in raw:
        try:
            events.append(Event.from_json(item))
        except Exception as e:
            logger.warning("Skipping unparseable cache entry in %s: %s", key, e)
    return events
