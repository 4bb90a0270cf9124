"""Structured logging bootstrap.

Every record gets four context fields, empty when unknown:

* ``request_id`` / ``chat_id`` of the turn being relayed (bound with
  ``bind_turn_context``; inherited by the adapter task),
* ``trace_id`` / ``span_id`` of the active OpenTelemetry span.

Output is JSON lines (``json_output=True``, default) or uvicorn's coloured
formatter for local development.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

from opentelemetry import trace

from chatrelay.configs.system import LoggingConfig

_turn_context: ContextVar[tuple[str, str]] = ContextVar(
    "chatrelay_turn_context", default=("", "")
)

_CONTEXT_FIELDS = ("request_id", "chat_id", "trace_id", "span_id")

_DEV_FORMAT = "%(levelprefix)s %(asctime)s [%(request_id)s] %(name)s  %(message)s"
_DEV_DATEFMT = "%H:%M:%S"
_JSON_FORMAT = " ".join(
    f"%({field})s"
    for field in ("asctime", "levelname", "name", "message", *_CONTEXT_FIELDS)
)

_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "opentelemetry")


def bind_turn_context(request_id: str, chat_id: str) -> None:
    """Tag log records of the current task (and tasks it spawns)."""
    _turn_context.set((request_id, chat_id))


class _ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id, record.chat_id = _turn_context.get()  # type: ignore[attr-defined]
        ctx = trace.get_current_span().get_span_context()
        if ctx and ctx.is_valid:
            record.trace_id = format(ctx.trace_id, "032x")  # type: ignore[attr-defined]
            record.span_id = format(ctx.span_id, "016x")  # type: ignore[attr-defined]
        else:
            record.trace_id = ""  # type: ignore[attr-defined]
            record.span_id = ""  # type: ignore[attr-defined]
        return True


def _build_formatter(json_output: bool) -> logging.Formatter:
    if json_output:
        from pythonjsonlogger.json import JsonFormatter

        return JsonFormatter(
            fmt=_JSON_FORMAT,
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "logger",
            },
            defaults=dict.fromkeys(_CONTEXT_FIELDS, ""),
        )

    from uvicorn.logging import DefaultFormatter

    return DefaultFormatter(fmt=_DEV_FORMAT, datefmt=_DEV_DATEFMT, use_colors=True)


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Route the root and uvicorn loggers through one stdout handler."""
    config = config or LoggingConfig()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_ContextFilter())
    handler.setFormatter(_build_formatter(config.json_output))

    root = logging.getLogger()
    root.setLevel(config.level.upper())
    root.handlers = [handler]

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
