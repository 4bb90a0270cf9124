"""Error taxonomy of the relay.

Every error a client can observe is a ``RelayError`` carrying a wire
``kind`` and an HTTP ``status_code``.  ``ClientDisconnected`` is not one of
them: it is the channel's cancellation signal and never reaches a client.
"""

from __future__ import annotations

KIND_VALIDATION = "validation_error"
KIND_CONFIGURATION = "configuration_error"
KIND_PROVIDER = "provider_error"
KIND_PROVIDER_TIMEOUT = "provider_timeout"
KIND_PROVIDER_UNREACHABLE = "provider_unreachable"
KIND_PERSISTENCE = "persistence_error"
KIND_CHANNEL_CLOSED = "channel_closed"
KIND_INTERNAL = "internal_error"


class RelayError(Exception):
    """Base class for failures with a client-facing kind and status."""

    kind: str = KIND_INTERNAL
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        if status_code is not None:
            self.status_code = status_code


class TurnValidationError(RelayError):
    """Malformed turn request; rejected before any side effect."""

    kind = KIND_VALIDATION
    status_code = 400


class ConfigurationError(RelayError):
    """Required provider settings (credentials, endpoint) are missing."""

    kind = KIND_CONFIGURATION
    status_code = 500


class ProviderError(RelayError):
    """The completion provider failed; keeps the provider's status and kind."""

    kind = KIND_PROVIDER
    status_code = 502


class ProviderTimeout(ProviderError):
    """No chunk arrived from the provider within the idle timeout."""

    kind = KIND_PROVIDER_TIMEOUT
    status_code = 504


class PersistenceError(RelayError):
    """The message store could not be read or written."""

    kind = KIND_PERSISTENCE
    status_code = 500


class ChannelClosed(RelayError):
    """A frame was written to a channel that is already closed."""

    kind = KIND_CHANNEL_CLOSED
    status_code = 499


class ClientDisconnected(Exception):
    """The transport went away (or stopped draining) mid-stream."""
