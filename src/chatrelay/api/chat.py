"""Chat API endpoint implementation."""

import logging

from fastapi import APIRouter
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from chatrelay.core.channel import STREAMING_RESPONSE_MEDIA_TYPE
from chatrelay.infra.telemetry import get_current_trace_id

from .deps import ChatTurnServiceDep
from .models import ChatRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

HEADER_REQUEST_ID = "X-Chatrelay-Request"
HEADER_TRACE_ID = "X-Chatrelay-Trace"


@router.post("/chat")
async def chat(
    chat_request: ChatRequest,
    service: ChatTurnServiceDep,
) -> StreamingResponse:
    """
    Relay one chat turn and stream the answer back.

    The body is an event stream of ``data: <token>`` frames.  A failure
    after streaming started ends the stream with one
    ``data: {"error": {...}}`` frame; failures before that (validation,
    configuration, history load) are plain JSON errors.

    Handles client disconnection by cancelling the provider stream; the
    answer is stored only when it was streamed completely.
    """
    turn = await service.begin_turn(
        str(chat_request.chat_id), chat_request.to_messages()
    )
    relay = service.relay(turn)

    headers = {**relay.headers, HEADER_REQUEST_ID: turn.request_id}
    if trace_id := get_current_trace_id():
        headers[HEADER_TRACE_ID] = trace_id

    return StreamingResponse(
        relay.frames(),
        media_type=STREAMING_RESPONSE_MEDIA_TYPE,
        headers=headers,
        background=BackgroundTask(relay.wait),
    )
