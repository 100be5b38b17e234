"""ChatFlux runtime.

Wires the adapters into the fan-out, consumer, read and reconciliation
components and owns their lifecycle. Adapters are built explicitly and
injected; nothing here is a module-level singleton.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from chatflux.adapters.base import (
    BroadcastHandler,
    Broadcaster,
    EventLogProducer,
    EventLogReader,
    MessageCache,
    MessageStore,
)
from chatflux.errors.exceptions import ChatFluxError, FatalStartupError
from chatflux.observability.metrics import PipelineMetrics
from chatflux.pipeline.consumer import BatchingConsumer
from chatflux.pipeline.fanout import Disposition, FanoutCoordinator
from chatflux.pipeline.reader import ReadCoordinator, ReadResult
from chatflux.reconciliation.config import ReconciliationConfig
from chatflux.reconciliation.scheduler import ReconciliationScheduler
from chatflux.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class ChatFluxRuntime:
    """Owns the pipeline components and starts/stops them in order."""

    def __init__(
        self,
        broadcaster: Broadcaster,
        cache: MessageCache,
        producer: EventLogProducer,
        reader: EventLogReader,
        store: MessageStore,
        settings: Optional[Settings] = None,
        metrics: Optional[PipelineMetrics] = None,
        prepare: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        self.settings = settings or get_settings()
        self.metrics = metrics or PipelineMetrics()
        self.broadcaster = broadcaster
        self.cache = cache
        self.producer = producer
        self.log_reader = reader
        self.store = store
        self._prepare = prepare

        s = self.settings
        self.fanout = FanoutCoordinator(
            broadcaster, cache, producer, channel=s.broadcast_channel, metrics=self.metrics,
        )
        self.consumer = BatchingConsumer(
            reader,
            store,
            batch_limit=s.batch_limit,
            flush_interval_ms=s.flush_interval_ms,
            flush_check_interval_ms=s.flush_check_interval_ms,
            retry_attempts=s.flush_retry_attempts,
            retry_base_delay=s.flush_retry_base_delay,
            metrics=self.metrics,
        )
        self.reader = ReadCoordinator(cache, store, metrics=self.metrics)
        self.scheduler = ReconciliationScheduler(
            store,
            cache,
            ReconciliationConfig(
                heal_interval_seconds=s.heal_interval_seconds,
                heal_window_minutes=s.heal_window_minutes,
                cache_max_messages=s.cache_max_messages,
                retention_interval_seconds=s.retention_interval_seconds,
                retention_days=s.retention_days,
                health_interval_seconds=s.health_interval_seconds,
            ),
            metrics=self.metrics,
        )
        self._started = False
        self._stopped = False
        self._stop_lock = asyncio.Lock()
        self._started_at = time.monotonic()

    # ── Construction ──────────────────────────────────────────────────

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ChatFluxRuntime":
        """Build a runtime on Redis, Kafka and the SQL store."""
        from chatflux.broadcast.pubsub import RedisBroadcaster
        from chatflux.cache.redis_client import RedisMessageCache
        from chatflux.db.store import SqlMessageStore
        from chatflux.durable_log.admin import ensure_topic
        from chatflux.durable_log.consumer import KafkaLogReader
        from chatflux.durable_log.producer import KafkaEventProducer

        s = settings or get_settings()

        async def prepare() -> None:
            await ensure_topic(
                s.kafka_bootstrap_servers,
                s.kafka_topic,
                partitions=s.kafka_partitions,
                replication_factor=s.kafka_replication_factor,
                client_id=s.kafka_client_id,
            )

        return cls(
            broadcaster=RedisBroadcaster.from_url(s.redis_url),
            cache=RedisMessageCache.from_url(s.redis_url, max_size=s.cache_max_messages),
            producer=KafkaEventProducer(
                s.kafka_topic,
                bootstrap_servers=s.kafka_bootstrap_servers,
                client_id=s.kafka_client_id,
                request_timeout_ms=s.kafka_request_timeout_ms,
            ),
            reader=KafkaLogReader(
                s.kafka_topic,
                s.kafka_group_id,
                bootstrap_servers=s.kafka_bootstrap_servers,
                client_id=s.kafka_client_id,
            ),
            store=SqlMessageStore.from_url(s.database_url, pool_size=s.database_pool_size),
            settings=s,
            prepare=prepare,
        )

    @classmethod
    def in_memory(cls, settings: Optional[Settings] = None) -> "ChatFluxRuntime":
        """Build a runtime on process-local adapters."""
        from chatflux.adapters.memory import (
            InMemoryBroadcaster,
            InMemoryCache,
            InMemoryLog,
            InMemoryStore,
        )

        s = settings or get_settings()
        log = InMemoryLog(topic=s.kafka_topic, partitions=s.kafka_partitions)
        return cls(
            broadcaster=InMemoryBroadcaster(),
            cache=InMemoryCache(max_size=s.cache_max_messages),
            producer=log,
            reader=log,
            store=InMemoryStore(),
            settings=s,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._started and not self._stopped

    async def start(self) -> None:
        """Connect every adapter and start the background components.

        Raises FatalStartupError when any initial connection fails.
        """
        if self._started:
            return
        logger.info("Starting ChatFlux runtime...")

        if self._prepare is not None:
            await self._connect("log topic", self._prepare)
        await self._connect("store", getattr(self.store, "connect", None) or self.store.ping)
        await self._connect("cache", self.cache.ping)
        for name, component in (("log producer", self.producer), ("log reader", self.log_reader)):
            start = getattr(component, "start", None)
            if start is not None:
                await self._connect(name, start)

        await self.consumer.start()
        self.scheduler.start()
        self._started = True
        self._started_at = time.monotonic()
        logger.info("ChatFlux runtime started")

    async def _connect(self, component: str, fn: Callable[[], Awaitable[Any]]) -> None:
        try:
            await fn()
        except FatalStartupError:
            raise
        except (ChatFluxError, OSError) as e:
            logger.error("Failed to connect %s: %s", component, e)
            raise FatalStartupError(component, e) from e

    async def stop(self) -> None:
        """Shut down in order; later calls are no-ops.

        Ingestion stops first, then reconciliation, then the consumer
        drains its buffer, then the broadcast listener and remaining
        adapters are closed.
        """
        async with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True
            logger.info("Shutting down ChatFlux runtime...")

            await self.fanout.close()
            await self.scheduler.stop()
            await self.consumer.stop()

            await self._close("broadcast", self.broadcaster.close)
            await self._close("log producer", self.producer.close)
            await self._close("cache", self.cache.close)
            await self._close("store", self.store.close)
            logger.info("ChatFlux runtime stopped")

    async def _close(self, component: str, fn: Callable[[], Awaitable[None]]) -> None:
        timeout = self.settings.shutdown_timeout_seconds
        try:
            if timeout is None:
                await fn()
            else:
                await asyncio.wait_for(fn(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Closing %s timed out after %.1fs", component, timeout)
        except Exception as e:
            logger.error("Error closing %s: %s", component, e)

    # ── Operations ────────────────────────────────────────────────────

    async def ingest(self, origin_id: Any, body: Any, kind: Any = "user", **kwargs: Any) -> Disposition:
        return await self.fanout.ingest(origin_id, body, kind, **kwargs)

    async def read(self, stream_id: Any = None, limit: Any = 50, before: Any = None) -> ReadResult:
        return await self.reader.read(stream_id, limit, before)

    async def subscribe(self, handler: BroadcastHandler) -> None:
        """Register a broadcast handler on the configured channel."""
        await self.broadcaster.subscribe(self.settings.broadcast_channel, handler)

    async def health(self) -> dict[str, Any]:
        """Component connectivity, as reported by a ping to each."""
        components = {}
        for name, ping in (("redis", self.cache.ping), ("store", getattr(self.store, "ping", None))):
            if ping is None:
                continue
            try:
                await ping()
                components[name] = "connected"
            except ChatFluxError as e:
                logger.warning("Health check failed for %s: %s", name, e)
                components[name] = "disconnected"
        healthy = all(status == "connected" for status in components.values())
        return {
            "status": "healthy" if healthy else "unhealthy",
            "components": components,
            "uptime_seconds": self.uptime_seconds,
        }

    async def stats(self) -> dict[str, Any]:
        return {
            "total_messages": await self.store.count(),
            "uptime_seconds": self.uptime_seconds,
            "consumer": {
                "state": self.consumer.state.value,
                "buffered": self.consumer.buffered,
                **self.consumer.stats.to_dict(),
            },
            "reconciliation": [run.to_dict() for run in list(self.scheduler.history)[-10:]],
            "metrics": self.metrics.snapshot(),
        }

    @property
    def uptime_seconds(self) -> float:
        return round(time.monotonic() - self._started_at, 1)
