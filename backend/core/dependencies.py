# backend/core/dependencies.py
from typing import Optional

from fastapi import Depends, Header, Request

from config.logging import log_event
from core.exceptions import RateLimitExceededError, UnauthorizedError
from core.rate_limiter import SlidingWindowRateLimiter
from services.chat_gateway import ChatGateway
from services.conversation_service import ConversationService


def get_chat_gateway(request: Request) -> ChatGateway:
    return request.app.state.chat_gateway


def get_conversation_service(request: Request) -> ConversationService:
    return request.app.state.conversation_service


def get_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.rate_limiter


def get_current_user(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity. Authentication proper happens upstream of this service."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise UnauthorizedError()
    return user_id


def caller_key(request: Request) -> str:
    user_id = (request.headers.get("x-user-id") or "").strip()
    if user_id:
        return f"user:{user_id}"
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


def enforce_chat_rate_limit(
    request: Request,
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
) -> None:
    key = caller_key(request)
    try:
        limiter.check(key)
    except RateLimitExceededError as e:
        log_event("chat.rejected", code=e.code, status=e.status_code, key=key)
        raise
