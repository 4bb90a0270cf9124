"""Dependency injection for the application lifespan.

``inject`` lets a lifespan declare ``Depends()`` parameters like a route.
Each resource (``build_db``, ``build_telemetry``) is a generator dependency
that owns its own setup and teardown; FastAPI's solver orders them, honours
``app.dependency_overrides`` and unwinds them in reverse on shutdown.

The solver needs a request, so a synthetic one carries ``app`` through it
(approach from https://github.com/fastapi/fastapi/discussions/11742).
"""

import logging
import time
from contextlib import AsyncExitStack, asynccontextmanager
from functools import partial
from typing import Any, AsyncIterator, Callable

from fastapi import FastAPI, Request
from fastapi.dependencies.utils import get_dependant, solve_dependencies

logger = logging.getLogger(__name__)


def get_app(request: Request) -> FastAPI:
    return request.app


def _startup_scope(app: FastAPI) -> dict[str, Any]:
    return {
        "type": "http",
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": "/",
        "raw_path": b"/",
        "root_path": "",
        "query_string": b"",
        "headers": [],
        "client": None,
        "server": None,
        "app": app,
        "state": app.state,
    }


def inject(lifespan: Callable[..., Any]) -> Callable[[FastAPI], Any]:
    """Wrap ``lifespan(app, **deps)`` into a FastAPI lifespan context.

    Raises ``RuntimeError`` at startup when a parameter cannot be resolved
    from dependencies.
    """
    body = asynccontextmanager(lifespan)

    @asynccontextmanager
    async def wrapper(app: FastAPI) -> AsyncIterator[None]:
        started = time.monotonic()
        async with AsyncExitStack() as stack:
            solved = await solve_dependencies(
                request=Request(_startup_scope(app)),
                dependant=get_dependant(path="/", call=partial(lifespan, app)),
                async_exit_stack=stack,
                embed_body_fields=False,
                dependency_overrides_provider=app,
            )
            if solved.errors:
                raise RuntimeError(
                    f"Unresolvable lifespan parameters: {solved.errors}"
                )
            async with body(app, **solved.values):
                logger.info(
                    "%s started in %.2fs", app.title, time.monotonic() - started
                )
                yield
            logger.info("%s shutting down", app.title)

    return wrapper
