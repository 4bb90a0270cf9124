"""Engine and session factory of the message store.

Kept apart from the ``db`` package: ``telemetry`` depends on ``build_db``
and must not pull in the repository layer.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Request
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from chatrelay.configs.config import AppConfig, get_app_config
from chatrelay.configs.system import ThirdPartyConfig
from chatrelay.infra.lifespan import get_app

logger = logging.getLogger(__name__)


def create_store_engine(settings: ThirdPartyConfig) -> AsyncEngine:
    """Build the async engine; pool sizing applies to server databases only."""
    url = make_url(settings.postgres_uri)
    options: dict[str, Any] = {"pool_pre_ping": True}
    if url.get_backend_name() != "sqlite":
        options["pool_size"] = settings.postgres_pool_size
        options["max_overflow"] = settings.postgres_max_overflow
    logger.info(
        "Message store: %s", url.render_as_string(hide_password=True)
    )
    return create_async_engine(url, **options)


async def build_db(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[None, None]:
    """Lifespan dependency: engine on ``app.state`` for the app's lifetime."""
    engine = create_store_engine(config.third_party)
    app.state.engine = engine
    app.state.session_factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield
    finally:
        await engine.dispose()


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory
