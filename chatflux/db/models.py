"""SQLAlchemy ORM models for the ChatFlux store.

Tables:
- messages: every chat event persisted by the batching consumer
"""

from datetime import timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    func,
)

from chatflux.db.base import Base
from chatflux.events.config import DEFAULT_STREAM_ID, MAX_BODY_LENGTH, MAX_STREAM_ID_LENGTH, EventKind
from chatflux.events.model import Event


class MessageRow(Base):
    """Persisted chat event."""

    __tablename__ = "messages"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    origin_id = Column(String(255), nullable=False, index=True)
    body = Column(String(MAX_BODY_LENGTH), nullable=False)
    kind = Column(Enum(EventKind, name="eventkind"), nullable=False, default=EventKind.USER)
    stream_id = Column(String(MAX_STREAM_ID_LENGTH), nullable=False, default=DEFAULT_STREAM_ID, index=True)
    attributes = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_messages_stream_created", "stream_id", "created_at"),
    )

    @classmethod
    def from_event(cls, event: Event) -> "MessageRow":
        return cls(
            origin_id=event.origin_id,
            body=event.body,
            kind=event.kind,
            stream_id=event.stream_id,
            attributes=dict(event.attributes),
            created_at=event.created_at,
        )

    def to_event(self) -> Event:
        created_at = self.created_at
        # SQLite hands back naive datetimes; stored values are always UTC.
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return Event(
            origin_id=self.origin_id,
            body=self.body,
            kind=EventKind(self.kind),
            stream_id=self.stream_id,
            attributes=dict(self.attributes or {}),
            created_at=created_at.astimezone(timezone.utc),
        )
