"""Push side of the event stream.

The adapter *writes* frames into a ``ResponseChannel``; the HTTP response
body *drains* them through ``frames()``.  The buffer in between is bounded,
so a client that reads slowly stalls the writer (and with it the provider
pull loop) instead of growing memory.

Frame format (one event per token)::

    data: <token>\\n\\n

A token spanning several lines becomes several ``data:`` lines of the same
event, which event-stream clients join back with ``\\n``.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from datetime import timedelta

from .errors import ChannelClosed, ClientDisconnected
from .translator import ErrorPayload, ErrorTranslator

logger = logging.getLogger(__name__)

STREAMING_RESPONSE_MEDIA_TYPE = "text/event-stream"
STREAMING_RESPONSE_HEADERS = {
    "Content-Type": STREAMING_RESPONSE_MEDIA_TYPE,
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

_EOF = object()


def format_sse(data: str) -> str:
    """Render one event: a ``data:`` line per text line, then a blank line."""
    lines = data.split("\n")
    return "".join(f"data: {line}\n" for line in lines) + "\n"


class ResponseChannel:
    """Bounded, close-once frame channel between the relay and a client."""

    def __init__(
        self,
        *,
        write_timeout: timedelta = timedelta(seconds=15),
        max_buffered_frames: int = 64,
        translator: ErrorTranslator | None = None,
    ) -> None:
        self._write_timeout = write_timeout
        self._queue: asyncio.Queue[object] = asyncio.Queue(
            maxsize=max(1, max_buffered_frames)
        )
        self._translator = translator or ErrorTranslator()
        self._opened = False
        self._closed = False
        self._disconnected = False
        self._drained = asyncio.Event()
        self._progress = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def drained(self) -> bool:
        return self._drained.is_set()

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    def open(self) -> dict[str, str]:
        """Enter streaming mode; returns the response headers to send."""
        if self._closed:
            raise ChannelClosed("Channel already closed")
        self._opened = True
        return dict(STREAMING_RESPONSE_HEADERS)

    # ------------------------------------------------------------------
    # Writer side
    # ------------------------------------------------------------------

    async def write_token(self, text: str) -> None:
        await self._write(format_sse(text))

    async def write_error(self, payload: ErrorPayload) -> None:
        await self._write(self._translator.to_sse_frame(payload))

    async def _write(self, frame: str) -> None:
        if self._disconnected:
            raise ClientDisconnected("Client disconnected")
        if self._closed:
            raise ChannelClosed("Channel closed")
        if not self._opened:
            raise ChannelClosed("Channel not open")
        try:
            async with asyncio.timeout(self._write_timeout.total_seconds()):
                await self._queue.put(frame)
        except TimeoutError as exc:
            logger.info(
                "Client stopped draining for %s; treating as disconnect.",
                self._write_timeout,
            )
            raise ClientDisconnected("Client stopped reading") from exc
        if self._disconnected:
            raise ClientDisconnected("Client disconnected")

    def close(self) -> None:
        """End the stream once buffered frames are drained. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._disconnected:
            return
        try:
            self._queue.put_nowait(_EOF)
        except asyncio.QueueFull:
            # The reader is not blocked on an empty queue; it stops once it
            # has drained the buffer and sees ``_closed``.
            pass

    async def finish(self) -> None:
        """Close, then wait until the reader has taken every frame.

        Frames sitting in the buffer have not reached the client yet, so the
        stream only counts as delivered once the reader passed the end
        marker.  Raises ``ClientDisconnected`` if the reader goes away first
        or consumes nothing for ``write_timeout``.
        """
        self.close()
        while not self._drained.is_set():
            if self._disconnected:
                raise ClientDisconnected("Client disconnected before the end")
            self._progress.clear()
            try:
                async with asyncio.timeout(self._write_timeout.total_seconds()):
                    await self._progress.wait()
            except TimeoutError as exc:
                logger.info(
                    "Client did not read the end of the stream within %s.",
                    self._write_timeout,
                )
                raise ClientDisconnected("Client stopped reading") from exc

    # ------------------------------------------------------------------
    # Reader side
    # ------------------------------------------------------------------

    def disconnect(self) -> None:
        """Mark the reader as gone and drop buffered frames."""
        if self._disconnected:
            return
        self._disconnected = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._progress.set()

    async def frames(self) -> AsyncIterator[str]:
        """Yield frames until the writer closes the channel."""
        try:
            while True:
                if self._closed and self._queue.empty():
                    self._drained.set()
                    return
                frame = await self._queue.get()
                self._progress.set()
                if frame is _EOF:
                    self._drained.set()
                    return
                yield frame  # type: ignore[misc]
        finally:
            if self._drained.is_set():
                self._progress.set()
            else:
                self.disconnect()
