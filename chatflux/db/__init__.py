"""Persistent message store: ORM model, engine and store adapter."""

from chatflux.db.base import Base
from chatflux.db.engine import create_engine_from_url, create_schema, create_session_factory
from chatflux.db.models import MessageRow
from chatflux.db.store import SqlMessageStore

__all__ = [
    "Base",
    "create_engine_from_url",
    "create_schema",
    "create_session_factory",
    "MessageRow",
    "SqlMessageStore",
]
