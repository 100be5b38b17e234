"""Redis Pub/Sub broadcast channel.

Fire-and-forget publishing of events to live subscribers. Delivery is
ephemeral: a handler registered after a publish never receives it.
Publishing and subscribing use separate connections, as Redis requires.
"""

import asyncio
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from chatflux.adapters.base import BroadcastHandler
from chatflux.errors.exceptions import TransientAdapterError, ValidationError
from chatflux.events.model import Event

logger = logging.getLogger(__name__)

ADAPTER_NAME = "broadcast"

IO_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class RedisBroadcaster:
    """Publishes events on a Redis channel and dispatches received frames to handlers.

    Example:
        broadcaster = RedisBroadcaster.from_url("redis://localhost:6379/0")
        await broadcaster.subscribe("chat-messages", send_to_clients)
        await broadcaster.publish("chat-messages", event)
    """

    def __init__(
        self,
        publisher: aioredis.Redis,
        subscriber: aioredis.Redis,
        poll_timeout: float = 1.0,
    ):
        self._publisher = publisher
        self._subscriber = subscriber
        self._poll_timeout = poll_timeout
        self._pubsub: Optional[PubSub] = None
        self._handlers: dict[str, list[BroadcastHandler]] = {}
        self._listener: Optional[asyncio.Task] = None
        self._running = False
        self._reconnect_delay = 1.0
        self._max_reconnect_delay = 30.0

    @classmethod
    def from_url(cls, url: str) -> "RedisBroadcaster":
        return cls(
            publisher=aioredis.from_url(url, decode_responses=False),
            subscriber=aioredis.from_url(url, decode_responses=False),
        )

    @property
    def is_listening(self) -> bool:
        return self._running

    # ── Publish ───────────────────────────────────────────────────────

    async def publish(self, channel: str, event: Event) -> None:
        """Publish an event; no acknowledgment, zero or many receivers."""
        try:
            await self._publisher.publish(channel, event.to_json())
        except IO_ERRORS as e:
            logger.error("Error publishing to Redis channel %s: %s", channel, e)
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e

    # ── Subscribe ─────────────────────────────────────────────────────

    async def subscribe(self, channel: str, handler: BroadcastHandler) -> None:
        """Register a handler for a channel and make sure the listener runs."""
        first_for_channel = channel not in self._handlers
        self._handlers.setdefault(channel, []).append(handler)

        try:
            if self._pubsub is None:
                self._pubsub = self._subscriber.pubsub(ignore_subscribe_messages=True)
            if first_for_channel:
                await self._pubsub.subscribe(channel)
                logger.info("Subscribed to Redis channel %s", channel)
        except IO_ERRORS as e:
            self._handlers[channel].remove(handler)
            if not self._handlers[channel]:
                del self._handlers[channel]
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e

        if not self._running:
            self._running = True
            self._listener = asyncio.create_task(self._listen())

    async def close(self) -> None:
        """Stop the listener and release both connections."""
        self._running = False
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        await self._publisher.aclose()
        await self._subscriber.aclose()
        logger.info("Redis broadcast clients closed")

    # ── Internal Listener ─────────────────────────────────────────────

    async def _listen(self) -> None:
        """Read frames until closed, backing off on connection errors."""
        delay = self._reconnect_delay
        while self._running:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self._poll_timeout,
                )
                delay = self._reconnect_delay
                if message is None or message.get("type") != "message":
                    continue
                await self._dispatch(message)
            except asyncio.CancelledError:
                break
            except IO_ERRORS as e:
                if self._running:
                    logger.warning("Broadcast listener error: %s, retrying in %.1fs", e, delay)
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self._max_reconnect_delay)

    async def _dispatch(self, message: dict) -> None:
        channel = message.get("channel")
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")
        try:
            event = Event.from_json(message["data"])
        except ValidationError as e:
            logger.error("Error parsing broadcast frame on %s: %s", channel, e)
            return

        for handler in list(self._handlers.get(channel, [])):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("Broadcast handler error on %s: %s", channel, e)
