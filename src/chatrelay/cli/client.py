"""API client for the relay with event-stream parsing."""

import json
import logging
from collections.abc import AsyncIterator

import httpx

from .config import CLIConfig

logger = logging.getLogger(__name__)

_DATA_PREFIX = "data:"


def parse_event(block: str) -> dict | None:
    """Turn one event block (text between blank lines) into a CLI event.

    ``data:`` lines are joined with ``\\n``.  A payload that is a JSON
    object with an ``error`` key is the terminal error frame; anything else
    is answer text.
    """
    data_lines = []
    for line in block.split("\n"):
        if not line.startswith(_DATA_PREFIX):
            continue
        value = line[len(_DATA_PREFIX):]
        # Exactly one space after the colon belongs to the framing.
        if value.startswith(" "):
            value = value[1:]
        data_lines.append(value)
    if not data_lines:
        return None

    data = "\n".join(data_lines)
    if data.startswith("{"):
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict) and isinstance(parsed.get("error"), dict):
            error = parsed["error"]
            return {
                "type": "error",
                "message": error.get("message", "Unknown error"),
                "code": error.get("type", "unknown"),
                "status_code": error.get("statusCode"),
            }
    return {"type": "token", "content": data}


class EventStreamParser:
    """Incremental parser: feed text chunks, get complete events back."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> list[dict]:
        self._buffer += chunk
        events = []
        while "\n\n" in self._buffer:
            block, self._buffer = self._buffer.split("\n\n", 1)
            event = parse_event(block)
            if event is not None:
                events.append(event)
        return events


class RelayAPIClient:
    """Client for the relay's streaming chat endpoint."""

    def __init__(self, config: CLIConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self.client = client or httpx.AsyncClient(timeout=config.timeout)

    async def chat(self, chat_id: str, messages: list[dict]) -> AsyncIterator[dict]:
        """Send one turn and stream parsed events.

        Yields
        ------
        dict
            ``{"type": "token", "content": ...}`` per frame, or one
            ``{"type": "error", ...}`` event.
        """
        url = self.config.chat_url
        payload = {"chatId": chat_id, "messages": messages}
        logger.debug("POST %s (%d message(s))", url, len(messages))

        try:
            async with self.client.stream(
                "POST", url, json=payload, headers={"Accept": "text/event-stream"}
            ) as response:
                logger.debug(
                    "Response status: %s (request %s)",
                    response.status_code,
                    response.headers.get("X-Chatrelay-Request", "-"),
                )

                if response.status_code != 200:
                    body = await response.aread()
                    yield _http_error_event(response.status_code, body)
                    return

                parser = EventStreamParser()
                async for chunk in response.aiter_text():
                    for event in parser.feed(chunk):
                        yield event

        except httpx.TimeoutException:
            yield {
                "type": "error",
                "message": "Request timed out.",
                "code": "timeout",
            }
        except httpx.ConnectError as e:
            yield {
                "type": "error",
                "message": f"Connection error: {e}",
                "code": "connection_error",
            }

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def _http_error_event(status_code: int, body: bytes) -> dict:
    try:
        error = json.loads(body).get("error") or {}
    except (ValueError, AttributeError):
        error = {}
    return {
        "type": "error",
        "message": error.get("message")
        or f"HTTP {status_code}: {body.decode(errors='replace')}",
        "code": error.get("type", "http_error"),
        "status_code": status_code,
    }
