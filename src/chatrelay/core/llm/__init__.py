"""Completion provider seam and its LangChain implementation."""

from .deps import get_completion_provider, get_llm  # noqa: F401
from .provider import (  # noqa: F401
    CompletionChunk,
    CompletionProvider,
    LangChainCompletionProvider,
)
