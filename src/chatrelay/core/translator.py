"""Map any failure to the single wire-safe error payload.

``RelayError`` subclasses (provider, persistence, configuration, ...) keep
their kind and status.  Any other exception collapses to a generic
``internal_error`` with a fixed message so stack details never leak.
Messages pass through ``sanitize`` before they leave the process.
"""

import re
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, Field

from .errors import KIND_INTERNAL, RelayError

GENERIC_INTERNAL_MESSAGE = "Internal server error"
REDACTED = "[redacted]"

_SECRET_PATTERNS = (
    re.compile(r"https?://[^\s'\"<>]+", re.IGNORECASE),
    re.compile(r"\bBearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    re.compile(
        r"\b(?:api[-_]?key|key|token|secret|password)\s*[=:]\s*[^\s,;'\"]+",
        re.IGNORECASE,
    ),
    re.compile(r"\bsk-[A-Za-z0-9_-]{8,}"),
    re.compile(r"\b[a-f0-9]{32}\b", re.IGNORECASE),
)


class ErrorPayload(BaseModel):
    """Body of the terminal error frame."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(description="Sanitised, human-readable message")
    type: str = Field(description="Error kind, e.g. 'provider_error'")
    status_code: int = Field(alias="statusCode", description="HTTP-style status")


class ErrorEnvelope(BaseModel):
    """``{"error": {...}}`` wrapper used on the wire."""

    error: ErrorPayload


class ErrorTranslator:
    """Translate exceptions into ``ErrorPayload`` values.

    ``secrets`` are literal strings (API keys, endpoints) that must never
    appear in a client-visible message, whatever the exception says.
    """

    def __init__(self, secrets: Iterable[str | None] = ()) -> None:
        self._secrets = sorted(
            {s for s in secrets if s}, key=len, reverse=True
        )

    def sanitize(self, message: str) -> str:
        for secret in self._secrets:
            message = message.replace(secret, REDACTED)
        for pattern in _SECRET_PATTERNS:
            message = pattern.sub(REDACTED, message)
        return message.strip() or GENERIC_INTERNAL_MESSAGE

    def translate(self, err: BaseException) -> ErrorPayload:
        if isinstance(err, RelayError):
            return ErrorPayload(
                message=self.sanitize(err.message),
                type=err.kind,
                status_code=err.status_code,
            )
        return ErrorPayload(
            message=GENERIC_INTERNAL_MESSAGE,
            type=KIND_INTERNAL,
            status_code=500,
        )

    def to_body(self, payload: ErrorPayload) -> dict:
        return ErrorEnvelope(error=payload).model_dump(by_alias=True)

    def to_json(self, payload: ErrorPayload) -> str:
        return ErrorEnvelope(error=payload).model_dump_json(by_alias=True)

    def to_sse_frame(self, payload: ErrorPayload) -> str:
        """Render the terminal ``data: {"error": {...}}`` event."""
        return f"data: {self.to_json(payload)}\n\n"
