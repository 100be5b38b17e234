"""Reconciliation Scheduler.

Periodic maintenance between the store and the cache:

- cache heal: merge recent store events into the cache so entries lost
  to a cache outage come back; events already cached are left alone;
- retention: delete store events older than the retention horizon;
- health check: log uptime and total stored events.

A failing run is logged and recorded; its loop keeps going. Runs are
never cancelled midway, ``stop`` waits for them.
"""

import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from chatflux.adapters.base import MessageCache, MessageStore
from chatflux.observability.metrics import PipelineMetrics
from chatflux.reconciliation.config import (
    DEFAULT_RECONCILIATION_CONFIG,
    JobRun,
    ReconciliationConfig,
    ReconciliationTask,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationScheduler:
    """Runs cache-heal, retention and health tasks on fixed intervals."""

    def __init__(
        self,
        store: MessageStore,
        cache: MessageCache,
        config: Optional[ReconciliationConfig] = None,
        metrics: Optional[PipelineMetrics] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._store = store
        self._cache = cache
        self.config = config or DEFAULT_RECONCILIATION_CONFIG
        self._metrics = metrics or PipelineMetrics()
        self._clock = clock
        self._started_at = time.monotonic()
        self._running = False
        self._loops: list[asyncio.Task] = []
        self._in_progress: set[asyncio.Task] = set()
        self.history: deque[JobRun] = deque(maxlen=self.config.history_size)

    @property
    def is_running(self) -> bool:
        return self._running

    # ── Tasks ─────────────────────────────────────────────────────────

    async def run_cache_heal(self) -> JobRun:
        """Merge events from the last heal window into the cache, per stream."""
        return await self._execute(ReconciliationTask.CACHE_HEAL, self._cache_heal)

    async def run_retention(self) -> JobRun:
        """Delete store events older than the retention horizon."""
        return await self._execute(ReconciliationTask.RETENTION, self._retention)

    async def run_health_check(self) -> JobRun:
        return await self._execute(ReconciliationTask.HEALTH_CHECK, self._health_check)

    async def _cache_heal(self, run: JobRun) -> int:
        since = self._clock() - timedelta(minutes=self.config.heal_window_minutes)
        events = await self._store.recent_since(since, self.config.cache_max_messages)

        by_stream: dict[str, list] = {}
        for event in events:
            by_stream.setdefault(event.stream_id, []).append(event)
        added = 0
        for stream_id, stream_events in by_stream.items():
            added += await self._cache.merge(stream_id, stream_events)

        run.details["streams"] = len(by_stream)
        run.details["added"] = added
        logger.info(
            "Synced %d messages to cache (%d missing)", len(events), added,
            extra={"count": len(events)},
        )
        return len(events)

    async def _retention(self, run: JobRun) -> int:
        cutoff = self._clock() - timedelta(days=self.config.retention_days)
        deleted = await self._store.delete_older_than(cutoff)
        run.details["cutoff"] = cutoff.isoformat()
        logger.info("Deleted %d messages older than %d days", deleted, self.config.retention_days)
        return deleted

    async def _health_check(self, run: JobRun) -> int:
        total = await self._store.count()
        uptime = round(time.monotonic() - self._started_at, 1)
        run.details["uptime_seconds"] = uptime
        logger.info(
            "Health check: %d messages stored, uptime %.0fs", total, uptime,
            extra={"count": total},
        )
        return total

    async def _execute(
        self,
        task: ReconciliationTask,
        fn: Callable[[JobRun], Awaitable[int]],
    ) -> JobRun:
        run = JobRun(task=task, started_at=self._clock())
        started = time.perf_counter()
        logger.info("Running %s task...", task.value, extra={"task": task.value})
        try:
            run.count = await fn(run)
        except Exception as e:
            run.error = str(e) or type(e).__name__
            logger.error("%s task failed: %s", task.value, e, extra={"task": task.value})
        run.duration_ms = round((time.perf_counter() - started) * 1000, 2)

        status = "success" if run.succeeded else "failure"
        self._metrics.reconciliation_runs_total.increment(labels={"task": task.value, "status": status})
        self.history.append(run)
        logger.info(
            "%s task finished", task.value,
            extra={"task": task.value, "count": run.count, "duration_ms": run.duration_ms},
        )
        return run

    # ── Scheduling ────────────────────────────────────────────────────

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        schedule = [
            (self.config.heal_interval_seconds, self.run_cache_heal),
            (self.config.retention_interval_seconds, self.run_retention),
        ]
        if self.config.health_interval_seconds:
            schedule.append((self.config.health_interval_seconds, self.run_health_check))
        self._loops = [asyncio.create_task(self._loop(interval, fn)) for interval, fn in schedule]
        logger.info("Reconciliation scheduler started with %d tasks", len(self._loops))

    async def stop(self) -> None:
        """Cancel the schedule and wait for any run already in progress."""
        if not self._running:
            return
        self._running = False
        for loop in self._loops:
            loop.cancel()
        for loop in self._loops:
            try:
                await loop
            except asyncio.CancelledError:
                pass
        self._loops = []
        if self._in_progress:
            await asyncio.gather(*self._in_progress, return_exceptions=True)
        logger.info("Reconciliation scheduler stopped")

    async def _loop(self, interval: float, fn: Callable[[], Awaitable[JobRun]]) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            run = asyncio.ensure_future(fn())
            self._in_progress.add(run)
            run.add_done_callback(self._in_progress.discard)
            try:
                await asyncio.shield(run)
            except asyncio.CancelledError:
                break
