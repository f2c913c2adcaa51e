# main.py
from __future__ import annotations
import logging
import math
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.logging import setup_logging
from config.settings import Settings, get_settings
from core.config_loader import load_config
from core.exceptions import ChatGatewayError, RateLimitExceededError
from core.rate_limiter import SlidingWindowRateLimiter
from models.responses import ErrorResponse
from providers.base import ClientFactory
from providers.registry import ModelRegistry
from services.chat_gateway import ChatGateway
from services.conversation_service import ConversationService
from storage.base import ConversationStorage
from storage.memory_store import MemoryConversationStorage

# Routers
from routers import chat
from routers import health

logger = logging.getLogger(__name__)


def _env_origins(settings: Settings) -> List[str]:
    """
    Allowed origins from CORS_ALLOW_ORIGINS. If unset, default to local dev hosts.
    NOTE: With allow_credentials=True, you cannot use ["*"].
    """
    raw = (settings.cors_allow_origins or "").strip()
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost",
        "http://127.0.0.1",
    ]


def _error_response(status_code: int, message: str, code: Optional[str], headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    body = ErrorResponse(error=message, code=code).model_dump()
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def create_app(
    settings: Optional[Settings] = None,
    *,
    client_factory: Optional[ClientFactory] = None,
    storage: Optional[ConversationStorage] = None,
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ---- Startup ----
        setup_logging(settings)
        cfg: Dict[str, Any] = load_config(settings.models_config_path)
        app.state.config = cfg

        registry = ModelRegistry(cfg)
        app.state.registry = registry
        logger.info(
            "Loaded %d chat models across %d providers",
            len(registry.model_map),
            len(registry.providers),
        )

        app.state.chat_gateway = ChatGateway(registry, settings, client_factory=client_factory)
        app.state.conversation_service = ConversationService(
            storage if storage is not None else MemoryConversationStorage(),
            title_max_chars=settings.title_max_chars,
            history_limit=settings.history_limit,
        )
        app.state.rate_limiter = rate_limiter if rate_limiter is not None else SlidingWindowRateLimiter(
            limit=settings.chat_rate_limit,
            window_s=settings.chat_rate_window_s,
            max_keys=settings.rate_limit_max_keys,
        )

        try:
            yield
        finally:
            # ---- Shutdown ----
            logger.info("Application shutting down")

    app = FastAPI(title="Olenka Chat Gateway", version="0.1.0", lifespan=lifespan)

    # --- CORS (must be added BEFORE routers) ---
    allow_origins = _env_origins(settings)
    logger.info("CORS allow_origins=%s", allow_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Accel-Buffering", "Retry-After"],
        max_age=600,
    )

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> Response:
        retry_after = str(max(1, math.ceil(exc.retry_after_s)))
        return _error_response(exc.status_code, exc.message, exc.code, headers={"Retry-After": retry_after})

    @app.exception_handler(ChatGatewayError)
    async def gateway_error_handler(request: Request, exc: ChatGatewayError) -> Response:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error_response(exc.status_code, exc.message, exc.code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> Response:
        errors = exc.errors()
        first = errors[0] if errors else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{where}: {first.get('msg')}" if where else str(first.get("msg") or "Invalid request")
        return _error_response(400, message, "VALIDATION_ERROR")

    app.include_router(chat.router)
    app.include_router(health.router)

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    _settings = get_settings()
    uvicorn.run("main:app", host=_settings.host, port=_settings.port, reload=_settings.debug)
