"""Global exception handlers.

Errors raised before the response starts streaming are rendered as a JSON
body ``{"error": {"message", "type", "statusCode"}}`` with the matching
HTTP status.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chatrelay.core.errors import KIND_VALIDATION, RelayError
from chatrelay.core.translator import ErrorPayload, ErrorTranslator

logger = logging.getLogger(__name__)


def _describe(exc: RequestValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return "; ".join(problems) or "Invalid request"


def register_exception_handlers(
    app: FastAPI, translator: ErrorTranslator | None = None
) -> None:
    """Register the relay's exception handlers on ``app``."""
    translator = translator or ErrorTranslator()

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        payload = ErrorPayload(
            message=translator.sanitize(_describe(exc)),
            type=KIND_VALIDATION,
            status_code=400,
        )
        return JSONResponse(status_code=400, content=translator.to_body(payload))

    @app.exception_handler(RelayError)
    async def handle_relay_error(request: Request, exc: RelayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("Turn rejected before streaming: %s", exc.kind, exc_info=exc)
        payload = translator.translate(exc)
        return JSONResponse(
            status_code=payload.status_code, content=translator.to_body(payload)
        )

