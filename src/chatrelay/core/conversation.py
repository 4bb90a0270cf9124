"""Decide what context a turn sends to the completion provider.

The window is read *before* anything of the current turn is written, so
stored history never overlaps the incoming messages.
"""

import logging
from collections.abc import Sequence

from opentelemetry import trace

from chatrelay.configs.system import ChatConfig
from chatrelay.infra.telemetry import ATTR_HISTORY_HAS_SYSTEM

from .gateway import PersistenceGateway
from .models import ROLE_SYSTEM, ConversationWindow, Message

logger = logging.getLogger(__name__)


class ConversationAssembler:
    """Builds the outbound message list from stored and incoming messages."""

    def __init__(self, gateway: PersistenceGateway, config: ChatConfig) -> None:
        self._gateway = gateway
        self._config = config

    async def fetch_window(self, chat_id: str, max_pairs: int) -> ConversationWindow:
        """Stored system message plus the last ``max_pairs`` exchanges.

        History holds at most ``2 * max_pairs`` non-system rows, oldest
        first, each id at most once.
        """
        system = await self._gateway.find_system_message(chat_id)
        history = []
        if max_pairs > 0:
            rows = await self._gateway.find_recent_messages(
                chat_id, exclude_system=True, limit=2 * max_pairs
            )
            seen: set[int] = set()
            for row in rows:
                if row.role == ROLE_SYSTEM or row.id in seen:
                    continue
                if system is not None and row.id == system.id:
                    continue
                seen.add(row.id)
                history.append(row)

        trace.get_current_span().set_attribute(
            ATTR_HISTORY_HAS_SYSTEM, system is not None
        )
        return ConversationWindow(system=system, history=history)

    async def merge_with_incoming(
        self,
        chat_id: str,
        window: ConversationWindow,
        incoming: Sequence[Message],
    ) -> list[Message]:
        """Return the provider input for this turn.

        The first incoming system message overrides the stored one and is
        written back only when its content differs.  With no system message
        anywhere the configured default persona leads the list; it is never
        stored.
        """
        incoming_system = next(
            (m for m in incoming if m.role == ROLE_SYSTEM), None
        )

        if incoming_system is not None:
            await self._sync_system(chat_id, window, incoming_system.content)
            head = Message(role=ROLE_SYSTEM, content=incoming_system.content)
        elif window.system is not None:
            head = Message(role=ROLE_SYSTEM, content=window.system.content)
        else:
            head = Message(role=ROLE_SYSTEM, content=self._config.default_persona_text)

        merged = [head]
        merged.extend(Message(role=m.role, content=m.content) for m in window.history)
        merged.extend(
            Message(role=m.role, content=m.content)
            for m in incoming
            if m.role != ROLE_SYSTEM
        )
        return merged

    async def _sync_system(
        self, chat_id: str, window: ConversationWindow, content: str
    ) -> None:
        stored = window.system
        if stored is None:
            logger.debug("Storing first system message for chat %s", chat_id)
            await self._gateway.create_message(chat_id, ROLE_SYSTEM, content)
        elif stored.content != content:
            logger.debug("System message of chat %s changed; updating", chat_id)
            await self._gateway.update_message(stored.id, content)
