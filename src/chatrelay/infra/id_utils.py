"""Prefixed ID generation.

Request ids use a ``{prefix}_{random}`` format (``req_a8Kx3nQ9mP2r``) so
log lines of one turn can be grepped together.
"""

import secrets
import string

_ALPHABET = string.ascii_letters + string.digits
_DEFAULT_LENGTH = 12

PREFIX_REQUEST = "req"


def generate_id(prefix: str, length: int = _DEFAULT_LENGTH) -> str:
    """Generate a prefixed random ID: ``"{prefix}_{random}"``."""
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(length))
    return f"{prefix}_{suffix}"
