"""Stream adapter: provider token pull loop -> pushed event-stream frames.

One ``StreamAdapter`` drives one turn through::

    INIT -> STREAMING -> COMPLETED | FAILED | CANCELLED

Terminal states are final.  Per session exactly one of these happens:

* **COMPLETED**: the channel is closed and the reader has consumed every
  frame up to the end marker, then ``hooks.on_completion(full_text)`` runs
  once.  Its failure is logged and does not change the state.  A reader
  that leaves before the end marker makes the session CANCELLED instead.
* **FAILED**: exactly one translated error frame is written, then the
  channel is closed.  No token frame follows it.
* **CANCELLED**: the client went away.  Pulling stops, the provider stream
  is closed, ``on_completion`` never runs and the accumulated text is
  dropped.

Pulls are strictly sequential: a chunk is written, accumulated and handed
to ``hooks.on_token`` before the next one is requested, so the client's
read speed throttles provider consumption.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass, field
from datetime import timedelta

from chatrelay.infra.telemetry import (
    ATTR_CHAT_ID,
    ATTR_STREAM_ERROR_KIND,
    ATTR_STREAM_OUTCOME,
    ATTR_STREAM_TOKENS,
    SPAN_RELAY_STREAM,
    tracer,
)

from .channel import ResponseChannel
from .errors import ClientDisconnected, ProviderTimeout
from .llm.provider import CompletionChunk
from .service.metrics import (
    RELAY_SESSION_DURATION_SECONDS,
    RELAY_SESSIONS_ACTIVE,
    RELAY_SESSIONS_TOTAL,
    RELAY_TOKENS_TOTAL,
)
from .translator import ErrorPayload, ErrorTranslator

logger = logging.getLogger(__name__)


class StreamState(str, enum.Enum):
    INIT = "init"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED}
)


# ---------------------------------------------------------------------------
# Tagged transition results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenForwarded:
    token: str


@dataclass(frozen=True)
class Completed:
    text: str


@dataclass(frozen=True)
class Failed:
    error: ErrorPayload

    @property
    def kind(self) -> str:
        return self.error.type


@dataclass(frozen=True)
class Cancelled:
    pass


StreamOutcome = TokenForwarded | Completed | Failed | Cancelled


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


class StreamHooks:
    """Lifecycle callbacks, awaited in sequence by the adapter.

    Subclass and override what you need; the defaults do nothing.
    """

    async def on_start(self) -> None:
        """Runs before the first pull.  Raising fails the session."""

    async def on_token(self, token: str) -> None:
        """Runs after ``token`` was written and accumulated."""

    async def on_completion(self, text: str) -> None:
        """Runs once, after a clean stream end, with the full answer."""


@dataclass
class StreamSession:
    """Per-turn mutable state owned by one adapter."""

    chat_id: str
    state: StreamState = StreamState.INIT
    _parts: list[str] = field(default_factory=list, repr=False)

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def token_count(self) -> int:
        return len(self._parts)

    def append(self, token: str) -> None:
        self._parts.append(token)

    def discard(self) -> None:
        self._parts.clear()


class StreamAdapter:
    """Drives one provider stream into one ``ResponseChannel``."""

    def __init__(
        self,
        chat_id: str,
        channel: ResponseChannel,
        translator: ErrorTranslator,
        *,
        idle_timeout: timedelta = timedelta(seconds=30),
        service_name: str = "chat",
    ) -> None:
        self.session = StreamSession(chat_id=chat_id)
        self._channel = channel
        self._translator = translator
        self._idle_timeout = idle_timeout
        self._service_name = service_name
        self.outcome: StreamOutcome | None = None

    @property
    def state(self) -> StreamState:
        return self.session.state

    def _transition(self, new_state: StreamState) -> None:
        old = self.session.state
        if old in TERMINAL_STATES:
            raise RuntimeError(f"Stream already {old.value}; cannot move to {new_state.value}")
        logger.debug(
            "Chat %s stream %s -> %s", self.session.chat_id, old.value, new_state.value
        )
        self.session.state = new_state

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(
        self,
        stream: AsyncIterator[CompletionChunk],
        hooks: StreamHooks | None = None,
    ) -> StreamOutcome:
        """Run the session to its end and return the terminal outcome."""
        outcome: StreamOutcome | None = None
        async for outcome in self.transitions(stream, hooks):
            pass
        if outcome is None:
            raise RuntimeError("Stream adapter ended without an outcome")
        return outcome

    async def transitions(
        self,
        stream: AsyncIterator[CompletionChunk],
        hooks: StreamHooks | None = None,
    ) -> AsyncGenerator[StreamOutcome, None]:
        """Run the session, yielding one tagged result per transition.

        Every forwarded token yields ``TokenForwarded``; the last item is
        always ``Completed``, ``Failed`` or ``Cancelled``.  If the running
        task is cancelled the state becomes CANCELLED and the
        ``CancelledError`` propagates.
        """
        if self.session.state is not StreamState.INIT:
            raise RuntimeError("A stream adapter can only be started once")
        hooks = hooks or StreamHooks()
        self._transition(StreamState.STREAMING)

        with tracer.start_as_current_span(SPAN_RELAY_STREAM) as span:
            span.set_attribute(ATTR_CHAT_ID, self.session.chat_id)
            RELAY_SESSIONS_ACTIVE.labels(service=self._service_name).inc()
            started = time.monotonic()
            try:
                terminal: StreamOutcome
                try:
                    await hooks.on_start()
                    async for token in self._pump(stream, hooks):
                        yield TokenForwarded(token)
                    await _release(stream)
                    await self._channel.finish()
                except ClientDisconnected:
                    terminal = self._cancel()
                except asyncio.CancelledError:
                    self._cancel()
                    raise
                except Exception as exc:
                    terminal = await self._fail(exc)
                    span.set_attribute(ATTR_STREAM_ERROR_KIND, terminal.kind)
                else:
                    terminal = await self._complete(hooks)
                finally:
                    await _release(stream)
                self.outcome = terminal
                yield terminal
            finally:
                state = self.session.state.value
                span.set_attribute(ATTR_STREAM_OUTCOME, state)
                span.set_attribute(ATTR_STREAM_TOKENS, self.session.token_count)
                RELAY_SESSIONS_ACTIVE.labels(service=self._service_name).dec()
                RELAY_SESSIONS_TOTAL.labels(
                    service=self._service_name, outcome=state
                ).inc()
                RELAY_SESSION_DURATION_SECONDS.labels(
                    service=self._service_name
                ).observe(time.monotonic() - started)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _pump(
        self, stream: AsyncIterator[CompletionChunk], hooks: StreamHooks
    ) -> AsyncGenerator[str, None]:
        iterator = aiter(stream)
        while True:
            try:
                async with asyncio.timeout(self._idle_timeout.total_seconds()):
                    chunk = await anext(iterator)
            except StopAsyncIteration:
                return
            except TimeoutError as exc:
                raise ProviderTimeout(
                    f"No data from the completion provider for "
                    f"{self._idle_timeout.total_seconds():g}s"
                ) from exc

            token = chunk.delta_text
            if token:
                await self._channel.write_token(token)
                self.session.append(token)
                RELAY_TOKENS_TOTAL.labels(service=self._service_name).inc()
                await hooks.on_token(token)
                yield token
            if chunk.is_final:
                return

    async def _complete(self, hooks: StreamHooks) -> Completed:
        self._transition(StreamState.COMPLETED)
        outcome = self.outcome = Completed(self.session.text)
        # Cancelling the turn now must not cut the answer write short.
        await asyncio.shield(self._store_answer(hooks, outcome.text))
        return outcome

    async def _store_answer(self, hooks: StreamHooks, text: str) -> None:
        try:
            await hooks.on_completion(text)
        except Exception:
            logger.warning(
                "on_completion failed for chat %s; stream already delivered.",
                self.session.chat_id,
                exc_info=True,
            )

    async def _fail(self, exc: Exception) -> Failed:
        self._transition(StreamState.FAILED)
        logger.warning(
            "Stream for chat %s failed after %d token(s)",
            self.session.chat_id,
            self.session.token_count,
            exc_info=exc,
        )
        payload = self._translator.translate(exc)
        try:
            await self._channel.write_error(payload)
        except Exception:
            logger.info(
                "Could not deliver error frame for chat %s", self.session.chat_id
            )
        finally:
            self._channel.close()
        return Failed(payload)

    def _cancel(self) -> Cancelled:
        self._transition(StreamState.CANCELLED)
        logger.info(
            "Client left chat %s after %d token(s); discarding answer.",
            self.session.chat_id,
            self.session.token_count,
        )
        self.session.discard()
        self._channel.close()
        self.outcome = Cancelled()
        return self.outcome


async def _release(stream: AsyncIterator[CompletionChunk]) -> None:
    """Close the provider stream so its HTTP connection is returned."""
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception:
        logger.debug("Provider stream raised while closing", exc_info=True)
