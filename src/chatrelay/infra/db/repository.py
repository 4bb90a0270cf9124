"""SQL-backed ``PersistenceGateway`` over the ``chat_messages`` table.

Reads and writes each open their own short session from the injected
``async_sessionmaker``.  Any ``SQLAlchemyError`` is logged and re-raised
as ``PersistenceError`` so the caller decides whether the turn survives.

Writes are serialised per chat id inside the process; the autoincrement
primary key then gives every chat a strictly increasing ordering key.
"""

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatrelay.core.errors import PersistenceError
from chatrelay.core.gateway import PersistenceGateway
from chatrelay.core.models import Role, StoredMessage
from chatrelay.infra.telemetry import (
    ATTR_CHAT_ID,
    ATTR_HISTORY_MESSAGE_COUNT,
    SPAN_HISTORY_LOAD,
    tracer,
)

from .converters import row_to_message
from .models import ROLE_SYSTEM, ChatMessage

logger = logging.getLogger(__name__)

_chat_write_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
    weakref.WeakValueDictionary()
)


def _write_lock(chat_id: str) -> asyncio.Lock:
    lock = _chat_write_locks.get(chat_id)
    if lock is None:
        lock = asyncio.Lock()
        _chat_write_locks[chat_id] = lock
    return lock


class SqlMessageStore(PersistenceGateway):
    """Async message store backed by SQLAlchemy."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, action: str, chat_id: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.warning(
                "Failed to %s for chat %s", action, chat_id, exc_info=True
            )
            raise PersistenceError(f"Failed to {action}") from exc

    # -- reads -------------------------------------------------------------

    async def find_system_message(self, chat_id: str) -> StoredMessage | None:
        stmt = (
            select(ChatMessage)
            .where(ChatMessage.chat_id == chat_id, ChatMessage.role == ROLE_SYSTEM)
            .order_by(ChatMessage.id)
            .limit(1)
        )
        async with self._session("load system message", chat_id) as session:
            row = (await session.scalars(stmt)).first()
        return row_to_message(row) if row is not None else None

    async def find_recent_messages(
        self,
        chat_id: str,
        *,
        exclude_system: bool = True,
        limit: int,
    ) -> list[StoredMessage]:
        """Load the ``limit`` newest messages of a chat, oldest-first."""
        if limit <= 0:
            return []
        with tracer.start_as_current_span(SPAN_HISTORY_LOAD) as span:
            span.set_attribute(ATTR_CHAT_ID, chat_id)
            stmt = select(ChatMessage).where(ChatMessage.chat_id == chat_id)
            if exclude_system:
                stmt = stmt.where(ChatMessage.role != ROLE_SYSTEM)
            stmt = stmt.order_by(ChatMessage.id.desc()).limit(limit)

            async with self._session("load history", chat_id) as session:
                rows = (await session.scalars(stmt)).all()

            messages = [row_to_message(row) for row in reversed(rows)]
            span.set_attribute(ATTR_HISTORY_MESSAGE_COUNT, len(messages))
            logger.debug(
                "Loaded %d messages for chat %s", len(messages), chat_id
            )
            return messages

    # -- writes ------------------------------------------------------------

    async def create_message(
        self, chat_id: str, role: Role, content: str
    ) -> StoredMessage:
        async with _write_lock(chat_id):
            async with self._session(f"record {role} message", chat_id) as session:
                row = ChatMessage(chat_id=chat_id, role=role, content=content)
                session.add(row)
                await session.commit()
        return row_to_message(row)

    async def update_message(self, message_id: int, content: str) -> StoredMessage:
        async with self._session("update message", str(message_id)) as session:
            row = await session.get(ChatMessage, message_id)
            if row is None:
                raise PersistenceError(f"Message {message_id} does not exist")
            async with _write_lock(row.chat_id):
                row.content = content
                await session.commit()
        return row_to_message(row)
