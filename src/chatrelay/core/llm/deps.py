"""LLM client factories (FastAPI dependencies)."""

import logging
from typing import Annotated

from fastapi import Depends
from langchain_core.language_models import BaseChatModel
from langchain_openai import AzureChatOpenAI, ChatOpenAI

from chatrelay.configs.config import get_llm_config
from chatrelay.configs.system import LLMConfig
from chatrelay.core.errors import ConfigurationError

from .provider import CompletionProvider, LangChainCompletionProvider

logger = logging.getLogger(__name__)


def get_llm(
    config: Annotated[LLMConfig, Depends(get_llm_config)],
) -> BaseChatModel:
    """Create the streaming chat model for the configured provider.

    Raises ``ConfigurationError`` when credentials are missing, before any
    message of the turn is stored.
    """
    if not config.api_key:
        raise ConfigurationError("Completion provider API key is not configured")

    if config.provider == "azure":
        if not config.endpoint:
            raise ConfigurationError("Azure OpenAI endpoint is not configured")
        return AzureChatOpenAI(
            azure_endpoint=config.endpoint,
            azure_deployment=config.model_name,
            api_key=config.api_key,
            api_version=config.api_version,
            timeout=config.timeout.total_seconds(),
            max_retries=config.max_retries,
            streaming=True,
        )

    return ChatOpenAI(
        base_url=config.endpoint,
        api_key=config.api_key,
        model=config.model_name,
        timeout=config.timeout.total_seconds(),
        max_retries=config.max_retries,
        streaming=True,
    )


def get_completion_provider(
    llm: Annotated[BaseChatModel, Depends(get_llm)],
) -> CompletionProvider:
    return LangChainCompletionProvider(llm)
