"""``chatrelay-cli`` / ``python -m chatrelay.cli``."""

import argparse
import asyncio
import sys

from .config import CLIConfig
from .relay_cli import main


def parse_args(
    argv: list[str] | None = None, defaults: CLIConfig | None = None
) -> argparse.Namespace:
    defaults = defaults or CLIConfig()
    parser = argparse.ArgumentParser(
        prog="chatrelay-cli",
        description="Chat with a running relay from the terminal.",
    )
    server = parser.add_argument_group("server")
    server.add_argument("--host", default=defaults.host)
    server.add_argument("--port", type=int, default=defaults.port)
    server.add_argument("--api-path", default=defaults.api_path)
    server.add_argument(
        "--timeout",
        type=float,
        default=defaults.timeout,
        help="seconds to wait for one streamed answer (default: %(default)s)",
    )

    parser.add_argument(
        "--chat-id", help="continue an existing chat instead of starting a new one"
    )
    parser.add_argument("--system", help="system prompt sent with every turn")
    parser.add_argument("--debug", action="store_true", help="log HTTP details")
    return parser.parse_args(argv)


def cli_entry() -> None:
    args = parse_args()
    config = CLIConfig(
        host=args.host, port=args.port, api_path=args.api_path, timeout=args.timeout
    )
    try:
        asyncio.run(
            main(
                config,
                chat_id=args.chat_id,
                system_prompt=args.system,
                debug=args.debug,
            )
        )
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    cli_entry()
