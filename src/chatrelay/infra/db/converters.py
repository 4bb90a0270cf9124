"""ORM row <-> domain message conversion, kept in one place."""

from chatrelay.core.models import VALID_ROLES, StoredMessage

from .models import ChatMessage


def row_to_message(row: ChatMessage) -> StoredMessage:
    """Convert a ``chat_messages`` row to a ``StoredMessage``."""
    if row.role not in VALID_ROLES:
        raise ValueError(f"Unknown role {row.role!r} on message {row.id}")
    return StoredMessage(
        role=row.role,  # type: ignore[arg-type]
        content=row.content,
        id=row.id,
        chat_id=row.chat_id,
        created_at=row.created_at,
    )
