"""FastAPI dependency factory for the turn service.

Per-request, with an explicit ``Depends`` chain: the store, the provider
and each config section are overridable in tests.
"""

from typing import Annotated

from fastapi import Depends

from chatrelay.configs.config import (
    get_chat_config,
    get_llm_config,
    get_stream_config,
)
from chatrelay.configs.system import ChatConfig, LLMConfig, StreamConfig
from chatrelay.core.gateway import PersistenceGateway
from chatrelay.core.llm import get_completion_provider
from chatrelay.core.llm.provider import CompletionProvider
from chatrelay.infra.db.deps import get_message_store

from .turn import ChatTurnService


def get_chat_turn_service(
    gateway: Annotated[PersistenceGateway, Depends(get_message_store)],
    provider: Annotated[CompletionProvider, Depends(get_completion_provider)],
    chat_config: Annotated[ChatConfig, Depends(get_chat_config)],
    llm_config: Annotated[LLMConfig, Depends(get_llm_config)],
    stream_config: Annotated[StreamConfig, Depends(get_stream_config)],
) -> ChatTurnService:
    return ChatTurnService(
        gateway,
        provider,
        chat_config=chat_config,
        llm_config=llm_config,
        stream_config=stream_config,
    )
