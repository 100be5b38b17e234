"""SQLAlchemy-backed message store.

Batch inserts try one bulk write first. When the bulk write is rejected
the batch is retried row by row inside savepoints so one bad row does not
discard its neighbours; the outcome is reported as ``PartialBatchError``.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import DataError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from chatflux.db.engine import create_engine_from_url, create_session_factory
from chatflux.db.models import MessageRow
from chatflux.errors.exceptions import (
    FatalStartupError,
    PartialBatchError,
    TransientAdapterError,
    ValidationError,
)
from chatflux.events.model import Event

logger = logging.getLogger(__name__)

ADAPTER_NAME = "store"

IO_ERRORS = (OperationalError, InterfaceError, OSError, asyncio.TimeoutError)
ROW_ERRORS = (IntegrityError, DataError)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlMessageStore:
    """Durable record store over the ``messages`` table."""

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self._engine = engine
        self._session_factory = session_factory or create_session_factory(engine)

    @classmethod
    def from_url(cls, url: str, pool_size: int = 10) -> "SqlMessageStore":
        return cls(create_engine_from_url(url, pool_size=pool_size))

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def ping(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(select(1))
        except IO_ERRORS as e:
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e
        return True

    async def connect(self) -> None:
        """Verify the initial connection; raises FatalStartupError."""
        try:
            await self.ping()
        except TransientAdapterError as e:
            raise FatalStartupError("store", e.cause) from e
        logger.info("Connected to message store")

    # ── Writes ────────────────────────────────────────────────────────

    async def insert_batch(self, events: Sequence[Event]) -> list[Event]:
        """Insert a batch of events.

        Events failing the body re-check are never written. Raises
        PartialBatchError when any event was not written, carrying the
        written subset.
        """
        valid: list[Event] = []
        failed: list[Event] = []
        for event in events:
            try:
                event.validate()
            except ValidationError as e:
                logger.warning("Rejecting event from %s before store write: %s", event.origin_id, e.message)
                failed.append(event)
            else:
                valid.append(event)

        inserted: list[Event] = []
        if valid:
            try:
                async with self._session_factory() as session:
                    session.add_all([MessageRow.from_event(e) for e in valid])
                    await session.commit()
                inserted = valid
            except ROW_ERRORS as e:
                logger.warning("Bulk insert rejected (%s), retrying row by row", type(e).__name__)
                row_inserted, row_failed = await self._insert_rows(valid)
                inserted = row_inserted
                failed.extend(row_failed)
            except IO_ERRORS as e:
                raise TransientAdapterError(ADAPTER_NAME, cause=e) from e

        if failed:
            raise PartialBatchError(inserted=inserted, failed=failed)
        return inserted

    async def _insert_rows(self, events: Sequence[Event]) -> tuple[list[Event], list[Event]]:
        inserted: list[Event] = []
        failed: list[Event] = []
        try:
            async with self._session_factory() as session:
                for event in events:
                    try:
                        async with session.begin_nested():
                            session.add(MessageRow.from_event(event))
                    except ROW_ERRORS as e:
                        logger.warning("Row insert failed for %s: %s", event.origin_id, e.orig)
                        failed.append(event)
                    else:
                        inserted.append(event)
                await session.commit()
        except IO_ERRORS as e:
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e
        return inserted, failed

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete events created strictly before ``cutoff``; returns the count."""
        stmt = delete(MessageRow).where(MessageRow.created_at < _utc(cutoff))
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except IO_ERRORS as e:
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e
        return result.rowcount or 0

    # ── Reads ─────────────────────────────────────────────────────────

    async def range_query(
        self,
        stream_id: str,
        before: Optional[datetime] = None,
        ascending: bool = True,
        limit: int = 50,
    ) -> list[Event]:
        """Newest ``limit`` events of a stream older than ``before``."""
        stmt = select(MessageRow).where(MessageRow.stream_id == stream_id)
        if before is not None:
            stmt = stmt.where(MessageRow.created_at < _utc(before))
        stmt = stmt.order_by(MessageRow.created_at.desc(), MessageRow.id.desc()).limit(limit)

        events = [row.to_event() for row in await self._scalars(stmt)]
        if ascending:
            events.reverse()
        return events

    async def recent_since(self, since: datetime, limit: int) -> list[Event]:
        """Events created at or after ``since``, oldest first."""
        stmt = (
            select(MessageRow)
            .where(MessageRow.created_at >= _utc(since))
            .order_by(MessageRow.created_at.asc(), MessageRow.id.asc())
            .limit(limit)
        )
        return [row.to_event() for row in await self._scalars(stmt)]

    async def count(self, stream_id: Optional[str] = None) -> int:
        stmt = select(func.count(MessageRow.id))
        if stream_id is not None:
            stmt = stmt.where(MessageRow.stream_id == stream_id)
        try:
            async with self._session_factory() as session:
                return (await session.execute(stmt)).scalar_one()
        except IO_ERRORS as e:
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e

    async def _scalars(self, stmt) -> list[MessageRow]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except IO_ERRORS as e:
            raise TransientAdapterError(ADAPTER_NAME, cause=e) from e

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Message store connection closed")
