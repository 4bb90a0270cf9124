"""Domain models shared by the assembler, the adapter and the store."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

# ---------------------------------------------------------------------------
# Role constants & type
# ---------------------------------------------------------------------------

ROLE_SYSTEM: Literal["system"] = "system"
ROLE_USER: Literal["user"] = "user"
ROLE_ASSISTANT: Literal["assistant"] = "assistant"

Role = Literal["system", "user", "assistant"]

VALID_ROLES = frozenset({ROLE_SYSTEM, ROLE_USER, ROLE_ASSISTANT})


@dataclass(frozen=True)
class Message:
    """A role/content pair as sent to the completion provider."""

    role: Role
    content: str


@dataclass(frozen=True)
class StoredMessage(Message):
    """A message row owned by the store.

    ``id`` is the store's ordering key: it increases monotonically per
    insert, so sorting by it gives chronological order even when two rows
    share a ``created_at``.
    """

    id: int
    chat_id: str
    created_at: datetime


@dataclass
class ConversationWindow:
    """Stored system message (if any) plus the recent history, oldest first."""

    system: StoredMessage | None = None
    history: list[StoredMessage] = field(default_factory=list)

    @property
    def messages(self) -> list[StoredMessage]:
        head = [self.system] if self.system is not None else []
        return head + list(self.history)

    def __len__(self) -> int:
        return len(self.history) + (1 if self.system is not None else 0)
