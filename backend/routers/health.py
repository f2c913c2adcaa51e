import time

from fastapi import APIRouter, Request

from core.config_loader import providers_index
from models.responses import ModelsResponse

router = APIRouter(tags=["meta"])

_started_at = time.time()


@router.get("/health", summary="Liveness & quick diagnostics")
async def health():
    return {
        "status": "ok",
        "uptime_s": int(time.time() - _started_at),
    }


@router.get("/models", response_model=ModelsResponse, summary="Chat models in the provider catalogue")
async def list_models(request: Request):
    return providers_index(request.app.state.config)
