"""Prometheus metrics for the chat relay.

Business metrics that complement the HTTP metrics provided by
``prometheus-fastapi-instrumentator``.

All metrics use the ``chatrelay_`` prefix.
"""

import logging

from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

from chatrelay.configs.config import AppConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Relay session metrics
# ---------------------------------------------------------------------------

RELAY_SESSIONS_ACTIVE = Gauge(
    "chatrelay_relay_sessions_active",
    "Number of streaming relay sessions currently in progress",
    ["service"],
)

RELAY_SESSIONS_TOTAL = Counter(
    "chatrelay_relay_sessions_total",
    "Total number of finished relay sessions, by terminal state",
    ["service", "outcome"],  # completed | failed | cancelled
)

RELAY_SESSION_DURATION_SECONDS = Histogram(
    "chatrelay_relay_session_duration_seconds",
    "Duration of a relay session from first pull to terminal state",
    ["service"],
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
)

RELAY_TOKENS_TOTAL = Counter(
    "chatrelay_relay_tokens_total",
    "Total token frames forwarded to clients",
    ["service"],
)

# ---------------------------------------------------------------------------
# Persistence metrics
# ---------------------------------------------------------------------------

PERSISTENCE_FAILURES_TOTAL = Counter(
    "chatrelay_persistence_failures_total",
    "Total message store failures, by operation",
    ["operation"],  # history | system | user | assistant
)


# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------


def setup_metrics(app: FastAPI, config: AppConfig) -> None:
    """Set up Prometheus HTTP instrumentation.

    Attaches ``prometheus-fastapi-instrumentator`` middleware and the
    ``/metrics`` endpoint to the FastAPI *app*.  Middleware can only be
    added before the app starts, so this runs at construction time.
    """
    Instrumentator(
        should_instrument_requests_inprogress=True,
        excluded_handlers=config.tracing.excluded_urls,
    ).instrument(app).expose(app, endpoint="/metrics")

    logger.info("Prometheus metrics initialised")
