"""FastAPI application entry point."""

from typing import Annotated, AsyncGenerator

from fastapi import Depends, FastAPI

from chatrelay import __version__
from chatrelay.api.chat import router as chat_router
from chatrelay.api.exceptions import register_exception_handlers
from chatrelay.configs.config import AppConfig, get_app_config
from chatrelay.core.service.metrics import setup_metrics
from chatrelay.core.translator import ErrorTranslator
from chatrelay.infra.db_engine import build_db
from chatrelay.infra.lifespan import inject
from chatrelay.infra.logging import setup_logging
from chatrelay.infra.telemetry import build_telemetry, init_telemetry

@inject
async def lifespan(
    app: FastAPI,
    _db: Annotated[None, Depends(build_db)],
    _telemetry: Annotated[None, Depends(build_telemetry)],
) -> AsyncGenerator[None, None]:
    """Application lifespan: store engine and its instrumentation."""
    yield


def get_app(config: AppConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or get_app_config()
    setup_logging(config.logging)

    app = FastAPI(
        title="chatrelay",
        description="Streams chat completions token-by-token and stores the exchange",
        version=__version__,
        lifespan=lifespan,
    )

    init_telemetry(app, config.tracing)
    setup_metrics(app, config)
    register_exception_handlers(
        app, ErrorTranslator(secrets=(config.llm.api_key, config.llm.endpoint))
    )

    @app.get("/health", tags=["ops"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(chat_router)

    return app


app = get_app()
