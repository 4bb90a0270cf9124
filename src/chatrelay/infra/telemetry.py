"""OpenTelemetry tracing for the relay.

Tracing is opt-in (``TracingConfig.enabled``).  While it is off, ``tracer``
hands out non-recording spans and every helper here returns early, so the
relay code can open spans unconditionally.

``init_telemetry`` runs while the app is built (it installs the FastAPI
middleware); ``build_telemetry`` runs in the lifespan, after ``build_db``,
and instruments the store engine.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, FastAPI
from opentelemetry import trace
from opentelemetry.trace import format_trace_id

from chatrelay.configs.system import TracingConfig
from chatrelay.infra.db_engine import build_db
from chatrelay.infra.lifespan import get_app

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("chatrelay")

SPAN_TURN_PREPARE = "turn.prepare"
SPAN_HISTORY_LOAD = "history.load"
SPAN_RELAY_STREAM = "relay.stream"

ATTR_CHAT_ID = "relay.chat_id"
ATTR_REQUEST_ID = "relay.request_id"
ATTR_CONTEXT_MESSAGES = "relay.context_messages"
ATTR_HISTORY_MESSAGE_COUNT = "history.message_count"
ATTR_HISTORY_HAS_SYSTEM = "history.has_system"
ATTR_STREAM_OUTCOME = "relay.outcome"
ATTR_STREAM_TOKENS = "relay.tokens"
ATTR_STREAM_ERROR_KIND = "relay.error_kind"


class _TracingState:
    enabled = False


def _basic_auth(settings: TracingConfig) -> dict[str, str]:
    token = base64.b64encode(
        f"{settings.username}:{settings.password}".encode()
    ).decode()
    return {"Authorization": f"Basic {token}"}


def _install_provider(settings: TracingConfig) -> None:
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
        OTLPSpanExporter,
    )
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

    provider = TracerProvider(
        resource=Resource.create({"service.name": settings.service_name}),
        sampler=ParentBased(root=TraceIdRatioBased(settings.sample_rate)),
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.endpoint, headers=_basic_auth(settings))
        )
    )
    trace.set_tracer_provider(provider)


def init_telemetry(app: FastAPI | None, settings: TracingConfig | None) -> bool:
    """Set up span export plus FastAPI and httpx instrumentation.

    Returns whether tracing ended up enabled.
    """
    if settings is None or not settings.enabled:
        logger.info("Tracing disabled")
        return False
    if not (settings.endpoint and settings.username and settings.password):
        logger.warning("Tracing enabled without endpoint or credentials, skipping")
        return False

    _install_provider(settings)

    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    # The OpenAI client talks httpx, so provider calls get client spans.
    HTTPXClientInstrumentor().instrument()

    if app is not None:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(
            app, excluded_urls=",".join(settings.excluded_urls)
        )

    _TracingState.enabled = True
    logger.info("Tracing spans exported as %s", settings.service_name)
    return True


def instrument_sqlalchemy(engine: object) -> None:
    if not _TracingState.enabled:
        return

    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    SQLAlchemyInstrumentor().instrument(
        engine=getattr(engine, "sync_engine", engine)
    )


def get_current_trace_id() -> str | None:
    """Hex trace id of the active span, ``None`` outside a sampled trace."""
    ctx = trace.get_current_span().get_span_context()
    if not ctx.is_valid:
        return None
    return format_trace_id(ctx.trace_id)


async def build_telemetry(
    app: Annotated[FastAPI, Depends(get_app)],
    _db: Annotated[None, Depends(build_db)],
) -> AsyncGenerator[None, None]:
    instrument_sqlalchemy(app.state.engine)
    yield
