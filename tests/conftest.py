"""Shared fakes and fixtures for the relay tests."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncGenerator, Sequence
from datetime import datetime, timezone

import pytest

from chatrelay.configs.system import ChatConfig, LLMConfig, StreamConfig
from chatrelay.core.channel import ResponseChannel
from chatrelay.core.errors import PersistenceError
from chatrelay.core.gateway import PersistenceGateway
from chatrelay.core.llm.provider import CompletionChunk, CompletionProvider
from chatrelay.core.models import ROLE_SYSTEM, Message, Role, StoredMessage

CHAT_ID = "6f1c1c4e-5a7b-4f43-9d1e-2b8a4c1d9e01"
DEFAULT_PERSONA = "You are a test persona."


# =========================================================================
# In-memory message store
# =========================================================================


class FakeGateway(PersistenceGateway):
    """In-memory ``PersistenceGateway`` that records every write."""

    def __init__(self) -> None:
        self.rows: list[StoredMessage] = []
        self.created: list[StoredMessage] = []
        self.updated: list[tuple[int, str]] = []
        self.reads = 0
        self.fail_reads = False
        self.fail_create_roles: set[str] = set()
        self._ids = itertools.count(1)

    def seed(self, chat_id: str, role: Role, content: str) -> StoredMessage:
        """Insert a row without recording it as a write of the turn."""
        row = StoredMessage(
            role=role,
            content=content,
            id=next(self._ids),
            chat_id=chat_id,
            created_at=datetime.now(timezone.utc),
        )
        self.rows.append(row)
        return row

    @property
    def writes(self) -> int:
        return len(self.created) + len(self.updated)

    def messages_for(self, chat_id: str, role: str | None = None) -> list[StoredMessage]:
        return [
            r
            for r in self.rows
            if r.chat_id == chat_id and (role is None or r.role == role)
        ]

    async def find_system_message(self, chat_id: str) -> StoredMessage | None:
        self.reads += 1
        if self.fail_reads:
            raise PersistenceError("Failed to load system message")
        return next(iter(self.messages_for(chat_id, ROLE_SYSTEM)), None)

    async def find_recent_messages(
        self,
        chat_id: str,
        *,
        exclude_system: bool = True,
        limit: int,
    ) -> list[StoredMessage]:
        self.reads += 1
        if self.fail_reads:
            raise PersistenceError("Failed to load history")
        if limit <= 0:
            return []
        rows = [
            r
            for r in self.messages_for(chat_id)
            if not (exclude_system and r.role == ROLE_SYSTEM)
        ]
        return rows[-limit:]

    async def create_message(
        self, chat_id: str, role: Role, content: str
    ) -> StoredMessage:
        if role in self.fail_create_roles:
            raise PersistenceError(f"Failed to record {role} message")
        row = self.seed(chat_id, role, content)
        self.created.append(row)
        return row

    async def update_message(self, message_id: int, content: str) -> StoredMessage:
        for index, row in enumerate(self.rows):
            if row.id == message_id:
                updated = StoredMessage(
                    role=row.role,
                    content=content,
                    id=row.id,
                    chat_id=row.chat_id,
                    created_at=row.created_at,
                )
                self.rows[index] = updated
                self.updated.append((message_id, content))
                return updated
        raise PersistenceError(f"Message {message_id} does not exist")


# =========================================================================
# Scripted completion provider
# =========================================================================


class FakeProvider(CompletionProvider):
    """Yields scripted chunks, optionally failing or blocking part-way.

    ``pulls`` counts chunk requests (including a pending one); ``closed``
    turns true once the stream was finalised.
    """

    def __init__(
        self,
        tokens: Sequence[str | CompletionChunk] = (),
        *,
        error: Exception | None = None,
        block_after: int | None = None,
        delay: float = 0.0,
    ) -> None:
        self.tokens = list(tokens)
        self.error = error
        self.block_after = block_after
        self.delay = delay
        self.pulls = 0
        self.closed = False
        self.blocked = asyncio.Event()
        self.calls: list[tuple[str, list[Message], float]] = []

    async def create_stream(
        self,
        model: str,
        messages: Sequence[Message],
        temperature: float,
    ) -> AsyncGenerator[CompletionChunk, None]:
        self.calls.append((model, list(messages), temperature))
        try:
            for index, token in enumerate(self.tokens):
                self.pulls += 1
                if self.block_after is not None and index >= self.block_after:
                    self.blocked.set()
                    await asyncio.Event().wait()
                if self.delay:
                    await asyncio.sleep(self.delay)
                if isinstance(token, CompletionChunk):
                    yield token
                else:
                    yield CompletionChunk(delta_text=token)
            if self.error is not None:
                self.pulls += 1
                raise self.error
        finally:
            self.closed = True


async def collect(channel: ResponseChannel) -> list[str]:
    """Drain every frame of a channel that is (or will be) closed."""
    return [frame async for frame in channel.frames()]


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def chat_config() -> ChatConfig:
    return ChatConfig(
        max_conversation_pairs=2,
        temperature=0.3,
        default_persona_text=DEFAULT_PERSONA,
    )


@pytest.fixture
def llm_config() -> LLMConfig:
    return LLMConfig(model_name="test-model", api_key="sk-test-0123456789abcdef")


@pytest.fixture
def stream_config() -> StreamConfig:
    return StreamConfig()
