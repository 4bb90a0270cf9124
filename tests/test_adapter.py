"""Tests for the stream adapter state machine."""

import asyncio
import json
from datetime import timedelta

import pytest

from chatrelay.core.adapter import (
    Cancelled,
    Completed,
    Failed,
    StreamAdapter,
    StreamHooks,
    StreamState,
    TokenForwarded,
)
from chatrelay.core.channel import ResponseChannel
from chatrelay.core.errors import ProviderError
from chatrelay.core.llm.provider import CompletionChunk
from chatrelay.core.translator import ErrorTranslator

from .conftest import CHAT_ID, FakeProvider, collect


class RecordingHooks(StreamHooks):
    def __init__(self, *, fail_start=False, fail_token_at=None, fail_completion=False):
        self.started = 0
        self.tokens: list[str] = []
        self.completions: list[str] = []
        self.fail_start = fail_start
        self.fail_token_at = fail_token_at
        self.fail_completion = fail_completion

    async def on_start(self) -> None:
        self.started += 1
        if self.fail_start:
            raise RuntimeError("start hook failed")

    async def on_token(self, token: str) -> None:
        self.tokens.append(token)
        if self.fail_token_at is not None and len(self.tokens) == self.fail_token_at:
            raise RuntimeError("token hook failed")

    async def on_completion(self, text: str) -> None:
        self.completions.append(text)
        if self.fail_completion:
            raise RuntimeError("completion hook failed")


def _make(buffer: int = 64, idle: float = 5.0) -> tuple[StreamAdapter, ResponseChannel]:
    translator = ErrorTranslator()
    channel = ResponseChannel(
        max_buffered_frames=buffer,
        write_timeout=timedelta(seconds=1),
        translator=translator,
    )
    channel.open()
    adapter = StreamAdapter(
        CHAT_ID, channel, translator, idle_timeout=timedelta(seconds=idle)
    )
    return adapter, channel


def _stream(provider: FakeProvider):
    return provider.create_stream("m", [], 0.0)


async def _drive(adapter, channel, stream, hooks=None):
    """Run the adapter while a reader drains its channel."""
    return await asyncio.gather(adapter.start(stream, hooks), collect(channel))


def _error_of(frame: str) -> dict:
    assert frame.startswith("data: ") and frame.endswith("\n\n")
    return json.loads(frame[len("data: "):])["error"]


# =========================================================================
# COMPLETED
# =========================================================================


class TestCompleted:
    @pytest.mark.asyncio
    async def test_tokens_are_forwarded_and_accumulated(self):
        adapter, channel = _make()
        hooks = RecordingHooks()
        provider = FakeProvider(["Hel", "lo", ", ", "world"])

        outcome, frames = await _drive(adapter, channel, _stream(provider), hooks)

        assert outcome == Completed("Hello, world")
        assert adapter.state is StreamState.COMPLETED
        assert hooks.started == 1
        assert hooks.tokens == ["Hel", "lo", ", ", "world"]
        assert hooks.completions == ["Hello, world"]
        assert frames == [
            "data: Hel\n\n",
            "data: lo\n\n",
            "data: , \n\n",
            "data: world\n\n",
        ]

    @pytest.mark.asyncio
    async def test_transitions_report_each_token_then_completion(self):
        adapter, channel = _make()
        provider = FakeProvider(["a", "b"])

        async def run():
            return [r async for r in adapter.transitions(_stream(provider))]

        results, _ = await asyncio.gather(run(), collect(channel))

        assert results == [TokenForwarded("a"), TokenForwarded("b"), Completed("ab")]
        assert adapter.outcome == Completed("ab")

    @pytest.mark.asyncio
    async def test_empty_chunks_produce_no_frames(self):
        adapter, channel = _make()
        hooks = RecordingHooks()
        provider = FakeProvider(["", "a", "", "b"])

        outcome, frames = await _drive(adapter, channel, _stream(provider), hooks)

        assert outcome == Completed("ab")
        assert hooks.tokens == ["a", "b"]
        assert frames == ["data: a\n\n", "data: b\n\n"]

    @pytest.mark.asyncio
    async def test_final_chunk_ends_the_stream(self):
        adapter, channel = _make()
        provider = FakeProvider(
            [
                CompletionChunk("a"),
                CompletionChunk("b", is_final=True),
                CompletionChunk("never"),
            ]
        )

        outcome, frames = await _drive(adapter, channel, _stream(provider))

        assert outcome == Completed("ab")
        assert provider.pulls == 2
        assert provider.closed
        assert frames == ["data: a\n\n", "data: b\n\n"]

    @pytest.mark.asyncio
    async def test_empty_stream_completes_with_empty_text(self):
        adapter, channel = _make()
        hooks = RecordingHooks()

        outcome, frames = await _drive(
            adapter, channel, _stream(FakeProvider([])), hooks
        )

        assert outcome == Completed("")
        assert hooks.completions == [""]
        assert frames == []

    @pytest.mark.asyncio
    async def test_completion_hook_failure_keeps_completed(self):
        adapter, channel = _make()
        hooks = RecordingHooks(fail_completion=True)

        outcome, frames = await _drive(
            adapter, channel, _stream(FakeProvider(["x"])), hooks
        )

        assert outcome == Completed("x")
        assert adapter.state is StreamState.COMPLETED
        assert hooks.completions == ["x"]
        assert frames == ["data: x\n\n"]

    @pytest.mark.asyncio
    async def test_completion_hook_runs_after_reader_took_the_end(self):
        adapter, channel = _make()
        seen: list[tuple[bool, bool]] = []

        class Hooks(StreamHooks):
            async def on_completion(self, text: str) -> None:
                seen.append((channel.closed, channel.drained))

        await _drive(adapter, channel, _stream(FakeProvider(["x"])), Hooks())

        assert seen == [(True, True)]

    @pytest.mark.asyncio
    async def test_buffered_answer_is_not_complete_until_read(self):
        adapter, channel = _make()
        hooks = RecordingHooks()
        provider = FakeProvider(["a", "b"])

        task = asyncio.create_task(adapter.start(_stream(provider), hooks))
        await asyncio.sleep(0.05)

        # Every frame fits in the buffer, but nobody has read them yet.
        assert adapter.state is StreamState.STREAMING
        assert hooks.completions == []

        assert await collect(channel) == ["data: a\n\n", "data: b\n\n"]
        assert await asyncio.wait_for(task, timeout=1) == Completed("ab")
        assert hooks.completions == ["ab"]

    @pytest.mark.asyncio
    async def test_cancelling_during_completion_hook_keeps_completed(self):
        adapter, channel = _make()
        started = asyncio.Event()
        release = asyncio.Event()
        stored: list[str] = []

        class SlowHooks(StreamHooks):
            async def on_completion(self, text: str) -> None:
                started.set()
                await release.wait()
                stored.append(text)

        task = asyncio.create_task(
            adapter.start(_stream(FakeProvider(["a", "b"])), SlowHooks())
        )
        await collect(channel)
        await asyncio.wait_for(started.wait(), timeout=1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        release.set()
        await asyncio.sleep(0.01)

        assert adapter.state is StreamState.COMPLETED
        assert adapter.outcome == Completed("ab")
        assert stored == ["ab"]

    @pytest.mark.asyncio
    async def test_adapter_can_only_start_once(self):
        adapter, channel = _make()
        await _drive(adapter, channel, _stream(FakeProvider(["x"])))

        with pytest.raises(RuntimeError):
            await adapter.start(_stream(FakeProvider(["y"])))
        assert adapter.state is StreamState.COMPLETED


# =========================================================================
# FAILED
# =========================================================================


class TestFailed:
    @pytest.mark.asyncio
    async def test_k_tokens_then_provider_error(self):
        adapter, channel = _make()
        hooks = RecordingHooks()
        provider = FakeProvider(
            ["a", "b", "c"],
            error=ProviderError("upstream exploded", kind="server_error", status_code=503),
        )

        outcome, frames = await _drive(adapter, channel, _stream(provider), hooks)

        assert isinstance(outcome, Failed)
        assert outcome.kind == "server_error"
        assert adapter.state is StreamState.FAILED
        assert hooks.completions == []
        assert frames[:3] == ["data: a\n\n", "data: b\n\n", "data: c\n\n"]
        assert len(frames) == 4
        assert _error_of(frames[3]) == {
            "message": "upstream exploded",
            "type": "server_error",
            "statusCode": 503,
        }
        assert channel.closed

    @pytest.mark.asyncio
    async def test_unexpected_error_is_generic_internal_error(self):
        adapter, channel = _make()
        provider = FakeProvider(["a"], error=ValueError("secret stack detail"))

        outcome, frames = await _drive(adapter, channel, _stream(provider))

        assert isinstance(outcome, Failed)
        assert _error_of(frames[-1]) == {
            "message": "Internal server error",
            "type": "internal_error",
            "statusCode": 500,
        }

    @pytest.mark.asyncio
    async def test_start_hook_failure_sends_only_error_frame(self):
        adapter, channel = _make()
        provider = FakeProvider(["a", "b"])

        outcome, frames = await _drive(
            adapter, channel, _stream(provider), RecordingHooks(fail_start=True)
        )

        assert isinstance(outcome, Failed)
        assert provider.pulls == 0
        assert len(frames) == 1
        assert _error_of(frames[0])["type"] == "internal_error"

    @pytest.mark.asyncio
    async def test_token_hook_failure_aborts_session(self):
        adapter, channel = _make()
        hooks = RecordingHooks(fail_token_at=2)
        provider = FakeProvider(["a", "b", "c", "d"])

        outcome, frames = await _drive(adapter, channel, _stream(provider), hooks)

        assert isinstance(outcome, Failed)
        assert hooks.completions == []
        assert provider.pulls == 2
        assert provider.closed
        assert frames[:2] == ["data: a\n\n", "data: b\n\n"]
        assert len(frames) == 3

    @pytest.mark.asyncio
    async def test_idle_provider_times_out(self):
        adapter, channel = _make(idle=0.05)
        provider = FakeProvider(["a", "b"], delay=1.0)

        outcome, frames = await _drive(adapter, channel, _stream(provider))

        assert isinstance(outcome, Failed)
        assert outcome.kind == "provider_timeout"
        assert outcome.error.status_code == 504
        assert provider.closed
        assert len(frames) == 1

    @pytest.mark.asyncio
    async def test_write_to_closed_channel_fails_session(self):
        adapter, channel = _make()
        channel.close()

        outcome = await adapter.start(_stream(FakeProvider(["a"])))

        assert isinstance(outcome, Failed)
        assert outcome.kind == "channel_closed"
        assert outcome.error.status_code == 499


# =========================================================================
# CANCELLED
# =========================================================================


class TestCancelled:
    @pytest.mark.asyncio
    async def test_task_cancel_after_two_of_five_tokens(self):
        adapter, channel = _make()
        hooks = RecordingHooks()
        provider = FakeProvider(["t1", "t2", "t3", "t4", "t5"], block_after=2)

        task = asyncio.create_task(adapter.start(_stream(provider), hooks))
        await asyncio.wait_for(provider.blocked.wait(), timeout=1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert adapter.state is StreamState.CANCELLED
        assert adapter.outcome == Cancelled()
        assert hooks.tokens == ["t1", "t2"]
        assert hooks.completions == []
        assert provider.pulls == 3
        assert provider.closed
        assert adapter.session.text == ""

    @pytest.mark.asyncio
    async def test_reader_leaving_cancels_session(self):
        adapter, channel = _make(buffer=1)
        hooks = RecordingHooks()
        provider = FakeProvider(["t1", "t2", "t3", "t4", "t5"])

        task = asyncio.create_task(adapter.start(_stream(provider), hooks))
        frames = channel.frames()
        assert await anext(frames) == "data: t1\n\n"
        assert await anext(frames) == "data: t2\n\n"
        await frames.aclose()

        outcome = await asyncio.wait_for(task, timeout=1)

        assert outcome == Cancelled()
        assert adapter.state is StreamState.CANCELLED
        assert hooks.completions == []
        assert provider.pulls < 5
        assert provider.closed

    @pytest.mark.asyncio
    async def test_reader_leaving_with_whole_answer_buffered(self):
        adapter, channel = _make()
        hooks = RecordingHooks()
        provider = FakeProvider(["t1", "t2", "t3", "t4", "t5"])

        task = asyncio.create_task(adapter.start(_stream(provider), hooks))
        frames = channel.frames()
        assert await anext(frames) == "data: t1\n\n"
        assert await anext(frames) == "data: t2\n\n"
        await frames.aclose()

        outcome = await asyncio.wait_for(task, timeout=1)

        assert outcome == Cancelled()
        assert adapter.state is StreamState.CANCELLED
        assert hooks.completions == []
        assert adapter.session.text == ""

    @pytest.mark.asyncio
    async def test_reader_that_stops_before_the_end_marker(self):
        adapter, channel = _make()
        hooks = RecordingHooks()

        task = asyncio.create_task(
            adapter.start(_stream(FakeProvider(["a", "b"])), hooks)
        )
        frames = channel.frames()
        assert await anext(frames) == "data: a\n\n"
        assert await anext(frames) == "data: b\n\n"

        # Both tokens reached the reader, but it never asks for the end.
        outcome = await asyncio.wait_for(task, timeout=3)

        assert outcome == Cancelled()
        assert hooks.completions == []
        await frames.aclose()
