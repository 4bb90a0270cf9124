"""One chat turn: assemble context, store the question, relay the answer.

``begin_turn`` does everything that can fail *before* the response starts
(validation, history load, system/user writes), so those failures still
become a plain JSON error with a proper HTTP status.  ``relay`` then wires
the provider stream, a ``StreamAdapter`` and a ``ResponseChannel`` into a
``RelayStream`` that the route hands to ``StreamingResponse``.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass

from chatrelay.configs.system import ChatConfig, LLMConfig, StreamConfig
from chatrelay.core.adapter import (
    TERMINAL_STATES,
    Cancelled,
    StreamAdapter,
    StreamHooks,
    StreamOutcome,
)
from chatrelay.core.channel import ResponseChannel
from chatrelay.core.conversation import ConversationAssembler
from chatrelay.core.errors import PersistenceError, TurnValidationError
from chatrelay.core.gateway import PersistenceGateway
from chatrelay.core.llm.provider import CompletionProvider
from chatrelay.core.models import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_USER,
    VALID_ROLES,
    Message,
    StoredMessage,
)
from chatrelay.core.translator import ErrorTranslator
from chatrelay.infra.id_utils import PREFIX_REQUEST, generate_id
from chatrelay.infra.logging import bind_turn_context
from chatrelay.infra.telemetry import (
    ATTR_CHAT_ID,
    ATTR_CONTEXT_MESSAGES,
    ATTR_REQUEST_ID,
    SPAN_TURN_PREPARE,
    tracer,
)

from .metrics import PERSISTENCE_FAILURES_TOTAL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedTurn:
    """Everything the relay needs once the turn passed the pre-stream phase."""

    chat_id: str
    request_id: str
    messages: list[Message]
    user_message: StoredMessage | None


class TurnHooks(StreamHooks):
    """Stores the assistant answer once the stream completed."""

    def __init__(
        self, gateway: PersistenceGateway, chat_id: str, request_id: str
    ) -> None:
        self._gateway = gateway
        self._chat_id = chat_id
        self._request_id = request_id
        self.saved: StoredMessage | None = None

    async def on_completion(self, text: str) -> None:
        try:
            self.saved = await self._gateway.create_message(
                self._chat_id, ROLE_ASSISTANT, text
            )
        except PersistenceError:
            PERSISTENCE_FAILURES_TOTAL.labels(operation="assistant").inc()
            logger.error(
                "[%s] Answer for chat %s was streamed but could not be stored",
                self._request_id,
                self._chat_id,
                exc_info=True,
            )


class RelayStream:
    """Frames of one turn plus the task that produces them.

    The adapter task starts on the first ``frames()`` pull.  If the consumer
    stops before the session settled the task is cancelled; ``wait``
    resolves to the adapter's terminal outcome either way.
    """

    def __init__(
        self,
        channel: ResponseChannel,
        adapter: StreamAdapter,
        stream: AsyncIterator,
        hooks: StreamHooks,
    ) -> None:
        self.channel = channel
        self.adapter = adapter
        self.hooks = hooks
        self.headers = channel.open()
        self._stream = stream
        self._task: asyncio.Task[StreamOutcome] | None = None

    async def frames(self) -> AsyncIterator[str]:
        if self._task is None:
            self._task = asyncio.create_task(
                self.adapter.start(self._stream, self.hooks)
            )
        try:
            async for frame in self.channel.frames():
                yield frame
        finally:
            # After a full drain, or once the session settled, the task runs
            # to the end (it may still be storing the answer).
            if not (
                self._task.done()
                or self.channel.drained
                or self.adapter.state in TERMINAL_STATES
            ):
                self.channel.disconnect()
                self._task.cancel()

    async def wait(self) -> StreamOutcome | None:
        """Block until the adapter reached a terminal state."""
        if self._task is None:
            return None
        await asyncio.wait({self._task})
        if self.adapter.outcome is None and self._task.cancelled():
            # Cancelled before the adapter took its first step.
            return Cancelled()
        return self.adapter.outcome


class ChatTurnService:
    """Orchestrates one turn over the assembler, provider and store."""

    service_name = "chat_turn"

    def __init__(
        self,
        gateway: PersistenceGateway,
        provider: CompletionProvider,
        *,
        chat_config: ChatConfig,
        llm_config: LLMConfig,
        stream_config: StreamConfig,
        translator: ErrorTranslator | None = None,
    ) -> None:
        self._gateway = gateway
        self._provider = provider
        self._chat_config = chat_config
        self._llm_config = llm_config
        self._stream_config = stream_config
        self._translator = translator or ErrorTranslator(
            secrets=(llm_config.api_key, llm_config.endpoint)
        )
        self._assembler = ConversationAssembler(gateway, chat_config)

    @staticmethod
    def validate(messages: Sequence[Message]) -> None:
        if not messages:
            raise TurnValidationError("A turn needs at least one message")
        for message in messages:
            if message.role not in VALID_ROLES:
                raise TurnValidationError(f"Unknown message role: {message.role!r}")
        if all(m.role == ROLE_SYSTEM for m in messages):
            raise TurnValidationError(
                "A turn needs at least one user or assistant message"
            )

    async def begin_turn(
        self, chat_id: str, messages: Sequence[Message]
    ) -> PreparedTurn:
        """Validate, assemble context and store the user's message."""
        self.validate(messages)
        request_id = generate_id(PREFIX_REQUEST)
        bind_turn_context(request_id, chat_id)

        with tracer.start_as_current_span(SPAN_TURN_PREPARE) as span:
            span.set_attribute(ATTR_CHAT_ID, chat_id)
            span.set_attribute(ATTR_REQUEST_ID, request_id)
            try:
                window = await self._assembler.fetch_window(
                    chat_id, self._chat_config.max_conversation_pairs
                )
            except PersistenceError:
                PERSISTENCE_FAILURES_TOTAL.labels(operation="history").inc()
                raise
            try:
                context = await self._assembler.merge_with_incoming(
                    chat_id, window, messages
                )
            except PersistenceError:
                PERSISTENCE_FAILURES_TOTAL.labels(operation="system").inc()
                raise

            user_message = None
            latest = next(
                (m for m in reversed(messages) if m.role != ROLE_SYSTEM), None
            )
            if latest is not None and latest.role == ROLE_USER:
                try:
                    user_message = await self._gateway.create_message(
                        chat_id, ROLE_USER, latest.content
                    )
                except PersistenceError:
                    PERSISTENCE_FAILURES_TOTAL.labels(operation="user").inc()
                    raise
            span.set_attribute(ATTR_CONTEXT_MESSAGES, len(context))

        logger.info(
            "[%s] Turn for chat %s prepared: %d history + %d incoming message(s)",
            request_id,
            chat_id,
            len(window),
            len(messages),
        )
        return PreparedTurn(
            chat_id=chat_id,
            request_id=request_id,
            messages=context,
            user_message=user_message,
        )

    def relay(
        self, turn: PreparedTurn, hooks: StreamHooks | None = None
    ) -> RelayStream:
        """Build the stream that produces the answer frames of ``turn``."""
        channel = ResponseChannel(
            write_timeout=self._stream_config.write_timeout,
            max_buffered_frames=self._stream_config.max_buffered_frames,
            translator=self._translator,
        )
        adapter = StreamAdapter(
            turn.chat_id,
            channel,
            self._translator,
            idle_timeout=self._stream_config.idle_timeout,
            service_name=self.service_name,
        )
        stream = self._provider.create_stream(
            self._llm_config.model_name,
            turn.messages,
            self._chat_config.temperature,
        )
        return RelayStream(
            channel,
            adapter,
            stream,
            hooks or TurnHooks(self._gateway, turn.chat_id, turn.request_id),
        )
