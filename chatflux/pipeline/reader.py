"""Read Coordinator.

Serves recent events of a stream from the bounded cache, falling back to
the store when the cache fails, is empty, or a ``before`` cursor asks
for history older than the cache may hold.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from chatflux.adapters.base import MessageCache, MessageStore
from chatflux.errors.exceptions import TransientAdapterError
from chatflux.events.config import DEFAULT_READ_LIMIT, DEFAULT_STREAM_ID
from chatflux.events.model import Event
from chatflux.events.validators import validate_before, validate_limit, validate_stream_id
from chatflux.observability.metrics import PipelineMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadResult:
    """Events of one read in ascending ``created_at`` order."""

    count: int
    events: list[Event] = field(default_factory=list)
    source: str = "cache"

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "count": self.count,
            "messages": [e.to_record() for e in self.events],
        }


class ReadCoordinator:
    """Cache-first reader with store fallback."""

    def __init__(
        self,
        cache: MessageCache,
        store: MessageStore,
        metrics: Optional[PipelineMetrics] = None,
    ):
        self._cache = cache
        self._store = store
        self._metrics = metrics or PipelineMetrics()

    async def read(
        self,
        stream_id: Any = DEFAULT_STREAM_ID,
        limit: Any = DEFAULT_READ_LIMIT,
        before: Any = None,
    ) -> ReadResult:
        """Return up to ``limit`` newest events of a stream, oldest first.

        Raises ValidationError for bad input and TransientAdapterError
        when the store fallback itself fails.
        """
        stream_id = validate_stream_id(stream_id)
        limit = validate_limit(limit)
        before = validate_before(before)

        if before is None:
            fallback_reason = None
            try:
                events = await self._cache.range(stream_id, limit)
            except TransientAdapterError as e:
                logger.warning("Cache read failed for %s, falling back to store: %s", stream_id, e)
                fallback_reason = "cache_error"
            else:
                if events:
                    return ReadResult(count=len(events), events=events, source="cache")
                fallback_reason = "cache_empty"
        else:
            fallback_reason = "before_cursor"

        self._metrics.cache_fallbacks_total.increment(labels={"reason": fallback_reason})
        events = await self._store.range_query(stream_id, before=before, ascending=True, limit=limit)
        return ReadResult(count=len(events), events=events, source="store")
