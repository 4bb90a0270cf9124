"""Narrow interface the relay uses to reach the message store."""

from abc import ABC, abstractmethod

from .models import Role, StoredMessage


class PersistenceGateway(ABC):
    """Message store as seen by the relay core.

    Implementations raise ``PersistenceError`` on any storage failure and
    must serialise writes per ``chat_id`` so ids stay in insert order.
    """

    @abstractmethod
    async def find_system_message(self, chat_id: str) -> StoredMessage | None:
        """Return the chat's system message, or ``None``."""

    @abstractmethod
    async def find_recent_messages(
        self,
        chat_id: str,
        *,
        exclude_system: bool = True,
        limit: int,
    ) -> list[StoredMessage]:
        """Return the ``limit`` most recent messages, oldest first."""

    @abstractmethod
    async def create_message(
        self, chat_id: str, role: Role, content: str
    ) -> StoredMessage:
        """Insert a message and return the stored row."""

    @abstractmethod
    async def update_message(self, message_id: int, content: str) -> StoredMessage:
        """Replace the content of an existing message."""
