"""SQLAlchemy ORM models for the message store.

Tables are managed by Alembic migrations.  The ``Base.metadata`` naming
convention keeps constraint names deterministic across environments.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from chatrelay.core.models import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, Role

__all__ = [
    "Base",
    "ChatMessage",
    "ROLE_ASSISTANT",
    "ROLE_SYSTEM",
    "ROLE_USER",
    "Role",
]


class Base(DeclarativeBase):
    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# SQLite only autoincrements INTEGER PRIMARY KEY columns.
_ID_TYPE = BigInteger().with_variant(Integer(), "sqlite")


class ChatMessage(Base):
    """A single message of a chat.

    ``id`` is the per-insert ordering key; history is read ordered by it
    rather than by ``created_at``, which can tie under concurrent turns.
    """

    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(_ID_TYPE, primary_key=True, autoincrement=True)
    chat_id: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_chat_messages_chat_id_id", "chat_id", "id"),
        Index("ix_chat_messages_chat_id_role", "chat_id", "role"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChatMessage(id={self.id}, chat_id={self.chat_id!r}, "
            f"role={self.role!r})>"
        )
