"""Main CLI loop for interactive chat."""

import logging
import sys
import uuid
from typing import TextIO

from .client import RelayAPIClient
from .config import CLIConfig

logger = logging.getLogger(__name__)

_QUIT_COMMANDS = ("exit", "quit", "q")


class _Quit(Exception):
    pass


class RelayCLI:
    """Interactive CLI for the relay API.

    The server keeps the history, so each turn only sends the new user
    message (plus the system prompt, when one was given).
    """

    def __init__(
        self,
        config: CLIConfig,
        input_stream: TextIO = sys.stdin,
        output_stream: TextIO = sys.stdout,
        chat_id: str | None = None,
        system_prompt: str | None = None,
        client: RelayAPIClient | None = None,
    ):
        self.config = config
        self.input_stream = input_stream
        self.output_stream = output_stream
        self.chat_id = chat_id or str(uuid.uuid4())
        self.system_prompt = system_prompt
        self.client = client or RelayAPIClient(config)

    async def run(self) -> None:
        """Read lines until ``exit``/``quit`` or end of input."""
        self._print(
            f"chatrelay CLI  {self.config.chat_url}\n"
            f"chat {self.chat_id}\n"
            "/new starts a new chat, /id shows the current one, exit quits.\n\n"
        )
        try:
            while (line := self._prompt()) is not None:
                try:
                    await self._handle(line.strip())
                except _Quit:
                    break
                except KeyboardInterrupt:
                    self._print("\n(interrupted, type exit to leave)\n")
            self._print("Goodbye!\n")
        finally:
            await self.client.close()

    async def _handle(self, line: str) -> None:
        if not line:
            return
        command = line.lower()
        if command in _QUIT_COMMANDS:
            raise _Quit
        if command == "/new":
            self.chat_id = str(uuid.uuid4())
            self._print(f"chat {self.chat_id}\n\n")
        elif command == "/id":
            self._print(f"{self.chat_id}\n\n")
        else:
            await self.send(line)

    def build_messages(self, query: str) -> list[dict]:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": query})
        return messages

    async def send(self, query: str) -> str:
        """Send one turn, echo tokens as they arrive, return the answer."""
        parts: list[str] = []
        async for event in self.client.chat(self.chat_id, self.build_messages(query)):
            if event["type"] == "token":
                parts.append(event["content"])
                self._print(event["content"])
            elif event["type"] == "error":
                self._print(f"\n[error {event.get('code')}] {event.get('message')}")
        self._print("\n\n")
        return "".join(parts)

    def _prompt(self) -> str | None:
        self._print("> ")
        line = self.input_stream.readline()
        return line.rstrip("\r\n") if line else None

    def _print(self, text: str) -> None:
        self.output_stream.write(text)
        self.output_stream.flush()


async def main(
    config: CLIConfig,
    chat_id: str | None = None,
    system_prompt: str | None = None,
    debug: bool = False,
) -> None:
    """Main entry point for the CLI."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    cli = RelayCLI(config, chat_id=chat_id, system_prompt=system_prompt)
    await cli.run()
