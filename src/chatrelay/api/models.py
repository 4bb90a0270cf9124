"""Pydantic models for the chat API."""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from chatrelay.core.models import Message


class ChatMessageIn(BaseModel):
    """A single message of the incoming turn."""

    role: Literal["system", "user", "assistant"] = Field(
        description="Message sender role"
    )
    content: str = Field(description="Message content")

    def to_message(self) -> Message:
        return Message(role=self.role, content=self.content)


class ChatRequest(BaseModel):
    """Request model for the chat endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    chat_id: UUID = Field(alias="chatId", description="Conversation id")
    messages: list[ChatMessageIn] = Field(
        min_length=1,
        description="Messages of this turn; the last user message is the new question",
    )

    def to_messages(self) -> list[Message]:
        return [m.to_message() for m in self.messages]
