"""Per-request dependency factories for the db package.

The engine + session plumbing lives in the leaf module
``chatrelay.infra.db_engine``; this module only builds repositories on
top of it.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatrelay.core.gateway import PersistenceGateway
from chatrelay.infra.db_engine import get_session_factory

from .repository import SqlMessageStore


def get_message_store(
    sf: Annotated[
        async_sessionmaker[AsyncSession],
        Depends(get_session_factory),
    ],
) -> PersistenceGateway:
    """Return the SQL message store bound to the app's session factory."""
    return SqlMessageStore(sf)
