"""Batching Consumer.

Drains the durable log into the store. Pulled records accumulate in a
buffer that is flushed when it reaches ``batch_limit`` records or when
``flush_interval_ms`` has passed since the last flush. A timer task
re-checks the time trigger so a quiet buffer is never held forever.

Log positions are committed only after the batch's store write has been
attempted, so a crash before commit redelivers the batch (at-least-once).
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from chatflux.adapters.base import EventLogReader, LogRecord, MessageStore
from chatflux.errors.exceptions import PartialBatchError, TransientAdapterError
from chatflux.observability.metrics import PipelineMetrics

logger = logging.getLogger(__name__)


class ConsumerState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class ConsumerStats:
    flushed_batches: int = 0
    flushed_events: int = 0
    failed_events: int = 0
    dropped_batches: int = 0
    commit_failures: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class BatchingConsumer:
    """Buffers log records and persists them in batches.

    Two locks keep batches consistent: ``_buffer_lock`` guards append
    and swap of the buffer, ``_flush_lock`` serializes persist+commit so
    batches reach the store and the log in pull order.
    """

    def __init__(
        self,
        reader: EventLogReader,
        store: MessageStore,
        batch_limit: int = 10,
        flush_interval_ms: int = 5000,
        flush_check_interval_ms: int = 1000,
        retry_attempts: int = 2,
        retry_base_delay: float = 0.5,
        pull_timeout_ms: int = 1000,
        metrics: Optional[PipelineMetrics] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if batch_limit < 1:
            raise ValueError("batch_limit must be positive")
        self._reader = reader
        self._store = store
        self.batch_limit = batch_limit
        self.flush_interval = flush_interval_ms / 1000
        self.flush_check_interval = flush_check_interval_ms / 1000
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self.pull_timeout_ms = pull_timeout_ms
        self._metrics = metrics or PipelineMetrics()
        self._clock = clock

        self._buffer: list[LogRecord] = []
        self._buffer_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()
        self._last_flush = clock()
        self._state = ConsumerState.IDLE
        self._running = False
        self._stopping = False
        self._stopped = asyncio.Event()
        self._pull_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self.stats = ConsumerStats()

    @property
    def state(self) -> ConsumerState:
        return self._state

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._state != ConsumerState.IDLE:
            return
        self._running = True
        self._state = ConsumerState.ACCUMULATING
        self._last_flush = self._clock()
        self._pull_task = asyncio.create_task(self._pull_loop())
        self._timer_task = asyncio.create_task(self._timer_loop())
        logger.info(
            "Batching consumer started (batch_limit=%d, flush_interval=%.1fs)",
            self.batch_limit, self.flush_interval,
        )

    async def stop(self) -> None:
        """Stop pulling, drain the buffer to the store and close the reader.

        Safe to call more than once; later calls wait for the first to finish.
        """
        if self._stopping:
            await self._stopped.wait()
            return
        self._stopping = True
        self._running = False
        self._state = ConsumerState.DRAINING

        for task in (self._pull_task, self._timer_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        remaining = len(self._buffer)
        if remaining:
            logger.info("Draining %d buffered messages before shutdown", remaining)
        await self.flush()

        await self._reader.close()
        self._state = ConsumerState.STOPPED
        self._stopped.set()
        logger.info("Batching consumer stopped", extra={"extra_data": self.stats.to_dict()})

    # ── Buffer ────────────────────────────────────────────────────────

    async def add(self, record: LogRecord) -> None:
        """Append one record and flush if a trigger is due."""
        async with self._buffer_lock:
            self._buffer.append(record)
            due = len(self._buffer) >= self.batch_limit or self._interval_elapsed()
        if due:
            await asyncio.shield(self.flush())

    async def tick(self) -> int:
        """Apply the time trigger to a non-empty buffer."""
        if self._buffer and self._interval_elapsed():
            return await asyncio.shield(self.flush())
        return 0

    async def flush(self) -> int:
        """Persist the current buffer then commit its log positions.

        Returns the number of records taken from the buffer.
        """
        async with self._flush_lock:
            async with self._buffer_lock:
                if not self._buffer:
                    return 0
                batch, self._buffer = self._buffer, []
                self._last_flush = self._clock()

            await self._persist(batch)
            await self._commit(batch)
            return len(batch)

    def _interval_elapsed(self) -> bool:
        return self._clock() - self._last_flush >= self.flush_interval

    # ── Persist and Commit ────────────────────────────────────────────

    async def _persist(self, batch: Sequence[LogRecord]) -> None:
        previous = self._state
        self._state = ConsumerState.FLUSHING
        events = [r.event for r in batch]
        started = time.perf_counter()
        logger.info("Flushing %d messages to store", len(events), extra={"batch_size": len(events)})
        try:
            attempt = 0
            while True:
                try:
                    await self._store.insert_batch(events)
                    self._record_flush(len(events), started)
                    return
                except PartialBatchError as e:
                    self._record_flush(len(e.inserted), started)
                    self._record_failed(len(e.failed), "partial")
                    logger.warning(
                        "Partial batch insert: %d succeeded, %d failed",
                        len(e.inserted), len(e.failed),
                    )
                    return
                except TransientAdapterError as e:
                    if attempt >= self.retry_attempts:
                        self.stats.dropped_batches += 1
                        self._record_failed(len(events), "dropped")
                        logger.error(
                            "Error flushing buffer, dropping %d messages: %s", len(events), e,
                            extra={"batch_size": len(events)},
                        )
                        return
                    delay = self.retry_base_delay * (2 ** attempt)
                    attempt += 1
                    logger.warning(
                        "Store write failed (%s), retry %d/%d in %.1fs",
                        e, attempt, self.retry_attempts, delay,
                    )
                    await asyncio.sleep(delay)
                except Exception as e:
                    self.stats.dropped_batches += 1
                    self._record_failed(len(events), "error")
                    logger.error(
                        "Store rejected batch, dropping %d messages: %s", len(events), e,
                        exc_info=True, extra={"batch_size": len(events)},
                    )
                    return
        finally:
            if previous == ConsumerState.DRAINING or self._stopping:
                self._state = ConsumerState.DRAINING
            else:
                self._state = ConsumerState.ACCUMULATING

    async def _commit(self, batch: Sequence[LogRecord]) -> None:
        try:
            await self._reader.commit(batch)
        except TransientAdapterError as e:
            # Uncommitted records are redelivered; duplicates are tolerated.
            self.stats.commit_failures += 1
            logger.warning("Log commit failed for %d records: %s", len(batch), e)

    def _record_flush(self, count: int, started: float) -> None:
        self.stats.flushed_batches += 1
        self.stats.flushed_events += count
        self._metrics.batch_size.observe(count)
        self._metrics.flushed_events_total.increment(count)
        logger.info(
            "Saved %d messages to store", count,
            extra={"count": count, "duration_ms": round((time.perf_counter() - started) * 1000, 2)},
        )

    def _record_failed(self, count: int, reason: str) -> None:
        self.stats.failed_events += count
        self._metrics.failed_events_total.increment(count, labels={"reason": reason})

    # ── Background Tasks ──────────────────────────────────────────────

    async def _pull_loop(self) -> None:
        backoff = 1.0
        while self._running:
            try:
                records = await self._reader.pull(self.batch_limit, self.pull_timeout_ms)
                backoff = 1.0
                for record in records:
                    await self.add(record)
            except asyncio.CancelledError:
                break
            except TransientAdapterError as e:
                logger.warning("Log pull failed: %s, retrying in %.1fs", e, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 30.0)
            except Exception as e:
                logger.error("Consumer pull loop error: %s", e, exc_info=True)
                await asyncio.sleep(backoff)

    async def _timer_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.flush_check_interval)
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Consumer flush timer error: %s", e, exc_info=True)
