"""Async SQL message store (ORM models, repository, dependencies)."""

from .deps import get_message_store
from .models import Base, ChatMessage
from .repository import SqlMessageStore

from chatrelay.infra.db_engine import build_db, get_session_factory

__all__ = [
    "build_db",
    "Base",
    "ChatMessage",
    "get_message_store",
    "get_session_factory",
    "SqlMessageStore",
]
