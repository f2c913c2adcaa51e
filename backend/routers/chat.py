from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from config.logging import log_event
from core.dependencies import (
    enforce_chat_rate_limit,
    get_chat_gateway,
    get_conversation_service,
    get_current_user,
)
from core.exceptions import ChatGatewayError
from models.requests import ChatRequest, RenameChatRequest, SaveMessageRequest
from models.responses import (
    HistoryResponse,
    RenameChatResponse,
    SaveMessageResponse,
    SuccessResponse,
)
from services.chat_gateway import ChatGateway
from services.conversation_service import ConversationService

router = APIRouter(prefix="/chat", tags=["chat"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# ---------- Streaming ----------

@router.post("", dependencies=[Depends(enforce_chat_rate_limit)])
async def chat_stream(
    body: ChatRequest,
    gateway: ChatGateway = Depends(get_chat_gateway),
):
    """
    Streams `data: {"kind": ..., "content": ...}` envelopes.
    Failures before the upstream answers are plain JSON errors with a status code.
    """
    try:
        stream = await gateway.open_stream(body)
    except ChatGatewayError as e:
        log_event("chat.rejected", code=e.code, status=e.status_code, model=body.model)
        raise

    return StreamingResponse(
        stream.body,
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
        background=BackgroundTask(stream.aclose),
    )


# ---------- Persistence ----------

@router.post("/save", response_model=SaveMessageResponse)
async def save_message(
    body: SaveMessageRequest,
    user_id: str = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
):
    message, created = await service.save_message(user_id, body.message)
    return SaveMessageResponse(created=created, message=message)


@router.get("/history", response_model=HistoryResponse)
async def chat_history(
    user_id: str = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
):
    return await service.history(user_id)


@router.post("/{chat_id}/delete", response_model=SuccessResponse)
async def delete_chat(
    chat_id: str,
    user_id: str = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
):
    await service.delete(user_id, chat_id)
    return SuccessResponse()


@router.put("/{chat_id}/update", response_model=RenameChatResponse)
async def rename_chat(
    chat_id: str,
    body: RenameChatRequest,
    user_id: str = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
):
    chat = await service.rename(user_id, chat_id, body.title)
    return RenameChatResponse(chat=chat)
