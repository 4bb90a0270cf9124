"""Dependency aliases for the route modules.

Override the underlying ``get_*`` factory in tests with
``app.dependency_overrides[get_xxx] = ...``.
"""

from typing import Annotated

from fastapi import Depends

from chatrelay.core.service.deps import get_chat_turn_service
from chatrelay.core.service.turn import ChatTurnService

ChatTurnServiceDep = Annotated[ChatTurnService, Depends(get_chat_turn_service)]
