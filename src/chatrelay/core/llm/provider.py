"""Completion provider seam.

``CompletionProvider.create_stream`` returns a lazy, single-pass async
generator of ``CompletionChunk`` values.  Nothing is sent to the provider
until the first pull, and closing the generator (``aclose``) releases the
underlying HTTP stream.

``LangChainCompletionProvider`` is the production implementation over a
LangChain chat model (``ChatOpenAI`` / ``AzureChatOpenAI``).  OpenAI SDK
exceptions are re-raised as ``ProviderError`` with the provider's status
code and error kind preserved.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass

import openai
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    BaseMessageChunk,
    HumanMessage,
    SystemMessage,
)

from chatrelay.core.errors import (
    KIND_PROVIDER,
    KIND_PROVIDER_TIMEOUT,
    KIND_PROVIDER_UNREACHABLE,
    ProviderError,
    ProviderTimeout,
)
from chatrelay.core.models import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, Message

logger = logging.getLogger(__name__)

_KEY_FINISH_REASON = "finish_reason"


@dataclass(frozen=True)
class CompletionChunk:
    """One increment of the provider's answer."""

    delta_text: str
    is_final: bool = False


class CompletionProvider(ABC):
    """Source of streamed completions."""

    @abstractmethod
    def create_stream(
        self,
        model: str,
        messages: Sequence[Message],
        temperature: float,
    ) -> AsyncGenerator[CompletionChunk, None]:
        """Return the chunk stream for one completion request."""


def to_langchain_messages(messages: Sequence[Message]) -> list[BaseMessage]:
    """Convert relay messages into LangChain message objects."""
    converted: list[BaseMessage] = []
    for message in messages:
        if message.role == ROLE_SYSTEM:
            converted.append(SystemMessage(content=message.content))
        elif message.role == ROLE_USER:
            converted.append(HumanMessage(content=message.content))
        elif message.role == ROLE_ASSISTANT:
            converted.append(AIMessage(content=message.content))
        else:
            raise ValueError(f"Unknown message role: {message.role!r}")
    return converted


def _chunk_text(chunk: BaseMessageChunk) -> str:
    content = chunk.content
    if isinstance(content, str):
        return content
    # Content blocks: keep the text parts only.
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def translate_provider_error(exc: openai.OpenAIError) -> ProviderError:
    """Map an OpenAI SDK exception onto the relay's provider errors."""
    if isinstance(exc, openai.APITimeoutError):
        return ProviderTimeout(
            "The completion provider timed out", kind=KIND_PROVIDER_TIMEOUT
        )
    if isinstance(exc, openai.APIConnectionError):
        return ProviderError(
            "The completion provider is unreachable",
            kind=KIND_PROVIDER_UNREACHABLE,
            status_code=502,
        )
    if isinstance(exc, openai.APIStatusError):
        return ProviderError(
            exc.message,
            kind=getattr(exc, "type", None) or KIND_PROVIDER,
            status_code=exc.status_code,
        )
    return ProviderError(str(exc) or "Completion provider failed")


class LangChainCompletionProvider(CompletionProvider):
    """Streams completions from a LangChain chat model."""

    def __init__(self, llm: BaseChatModel) -> None:
        self._llm = llm

    async def create_stream(
        self,
        model: str,
        messages: Sequence[Message],
        temperature: float,
    ) -> AsyncGenerator[CompletionChunk, None]:
        lc_messages = to_langchain_messages(messages)
        logger.debug(
            "Opening completion stream (model=%s, messages=%d)",
            model,
            len(lc_messages),
        )
        try:
            async for chunk in self._llm.astream(
                lc_messages, model=model, temperature=temperature
            ):
                text = _chunk_text(chunk)
                is_final = chunk.response_metadata.get(_KEY_FINISH_REASON) is not None
                if not text and not is_final:
                    continue
                yield CompletionChunk(delta_text=text, is_final=is_final)
        except openai.OpenAIError as exc:
            raise translate_provider_error(exc) from exc
