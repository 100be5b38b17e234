"""Fan-out Coordinator.

Validates an inbound event, stamps it with its creation time and writes
it to the broadcast channel, the bounded cache and the durable log
concurrently. Each sink's outcome is recorded independently; a failing
sink never blocks or rolls back the others.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from chatflux.adapters.base import Broadcaster, EventLogProducer, MessageCache
from chatflux.errors.config import ErrorCode
from chatflux.errors.exceptions import ValidationError
from chatflux.events.config import DEFAULT_STREAM_ID, EventKind
from chatflux.events.model import Event, utc_now_ms
from chatflux.events.validators import (
    validate_body,
    validate_kind,
    validate_origin,
    validate_stream_id,
)
from chatflux.logging_config.context import EventContext
from chatflux.observability.metrics import PipelineMetrics

logger = logging.getLogger(__name__)

SEND_FAILED_REASON = "Failed to send message"
PIPELINE_CLOSED_REASON = "Pipeline closed"

MAX_TRACKED_ORIGINS = 10_000


class SinkStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"


@dataclass(frozen=True)
class SinkResult:
    """Outcome of one sink write."""

    sink: str
    status: SinkStatus
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status == SinkStatus.OK


@dataclass(frozen=True)
class Disposition:
    """Answer returned to the transport for one inbound event."""

    accepted: bool
    reason: Optional[str] = None
    event: Optional[Event] = None
    results: tuple[SinkResult, ...] = field(default_factory=tuple)

    @property
    def failed_sinks(self) -> list[str]:
        return [r.sink for r in self.results if not r.ok]


class FanoutCoordinator:
    """Entry point for inbound chat events.

    Example:
        coordinator = FanoutCoordinator(broadcaster, cache, producer)
        disposition = await coordinator.ingest("sock-1", "hello")
        if not disposition.accepted:
            send_error(disposition.reason)
    """

    SINKS = ("broadcast", "cache", "log")

    def __init__(
        self,
        broadcaster: Broadcaster,
        cache: MessageCache,
        producer: EventLogProducer,
        channel: str = "chat-messages",
        metrics: Optional[PipelineMetrics] = None,
        clock: Callable[[], datetime] = utc_now_ms,
        max_tracked_origins: int = MAX_TRACKED_ORIGINS,
    ):
        self._broadcaster = broadcaster
        self._cache = cache
        self._producer = producer
        self.channel = channel
        self._metrics = metrics or PipelineMetrics()
        self._clock = clock
        # Least recently active origins are evicted first
        self._last_created: OrderedDict[str, datetime] = OrderedDict()
        self.max_tracked_origins = max_tracked_origins
        self._accepting = True
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def accepting(self) -> bool:
        return self._accepting

    # ── Ingestion ─────────────────────────────────────────────────────

    async def ingest(
        self,
        origin_id: Any,
        body: Any,
        kind: Any = EventKind.USER,
        stream_id: Any = DEFAULT_STREAM_ID,
        attributes: Optional[dict[str, Any]] = None,
    ) -> Disposition:
        """Validate and fan out one event.

        Rejected events cause no sink writes. The disposition is accepted
        unless validation failed, the pipeline is closed, or every sink
        failed.
        """
        if not self._accepting:
            self._metrics.rejected_total.increment(labels={"reason": ErrorCode.PIPELINE_CLOSED.value})
            return Disposition(accepted=False, reason=PIPELINE_CLOSED_REASON)

        try:
            origin_id = validate_origin(origin_id)
            body = validate_body(body)
            kind = validate_kind(kind)
            stream_id = validate_stream_id(stream_id)
        except ValidationError as e:
            self._metrics.rejected_total.increment(labels={"reason": e.error_code.value})
            logger.warning("Rejected inbound event: %s", e.message)
            return Disposition(accepted=False, reason=e.message)

        event = Event(
            origin_id=origin_id,
            body=body,
            kind=kind,
            stream_id=stream_id,
            attributes=dict(attributes or {}),
            created_at=self._next_created_at(origin_id),
        )

        self._in_flight += 1
        self._idle.clear()
        try:
            with EventContext(origin_id=origin_id, stream_id=stream_id):
                results = await self.dispatch(event)
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

        if all(not r.ok for r in results):
            logger.error("All sinks failed for event from %s", origin_id)
            return Disposition(accepted=False, reason=SEND_FAILED_REASON, event=event, results=results)

        self._metrics.messages_total.increment(labels={"kind": kind.value})
        return Disposition(accepted=True, event=event, results=results)

    async def dispatch(self, event: Event) -> tuple[SinkResult, ...]:
        """Write an already-stamped event to all three sinks concurrently."""
        outcomes = await asyncio.gather(
            self._broadcaster.publish(self.channel, event),
            self._cache.append(event.stream_id, [event]),
            self._producer.enqueue(event),
            return_exceptions=True,
        )

        results = []
        for sink, outcome in zip(self.SINKS, outcomes):
            if isinstance(outcome, BaseException):
                self._metrics.sink_failures_total.increment(labels={"sink": sink})
                logger.error("Sink %s failed: %s", sink, outcome, extra={"sink": sink})
                results.append(SinkResult(sink=sink, status=SinkStatus.FAILED, error=outcome))
            else:
                results.append(SinkResult(sink=sink, status=SinkStatus.OK))
        return tuple(results)

    # ── Lifecycle Events ──────────────────────────────────────────────

    async def join(self, origin_id: str, stream_id: str = DEFAULT_STREAM_ID) -> Disposition:
        return await self.ingest(origin_id, f"{origin_id} joined the chat!", EventKind.JOIN, stream_id)

    async def leave(self, origin_id: str, stream_id: str = DEFAULT_STREAM_ID) -> Disposition:
        disposition = await self.ingest(origin_id, f"{origin_id} left the chat!", EventKind.LEAVE, stream_id)
        self._last_created.pop(origin_id, None)
        return disposition

    async def close(self) -> None:
        """Stop accepting events and wait for in-flight fan-outs."""
        self._accepting = False
        await self._idle.wait()
        logger.info("Fan-out coordinator closed")

    def _next_created_at(self, origin_id: str) -> datetime:
        created_at = self._clock()
        last = self._last_created.get(origin_id)
        if last is not None and created_at < last:
            created_at = last
        self._last_created[origin_id] = created_at
        self._last_created.move_to_end(origin_id)
        while len(self._last_created) > self.max_tracked_origins:
            self._last_created.popitem(last=False)
        return created_at

    @property
    def tracked_origins(self) -> int:
        return len(self._last_created)
