from __future__ import annotations

import json
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
import pytest

import core.config_loader as config_loader
from config.settings import Settings, get_settings
from providers.registry import ModelRegistry

SSE_HEADERS = {"content-type": "text/event-stream"}

API_KEY_ENVS = ("OPENAI_API_KEY", "GOOGLE_API_KEY", "ANTHROPIC_API_KEY")


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    """Every test sees settings and the catalogue as read from its own environment."""
    monkeypatch.setattr(config_loader, "_config_cache", None)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def api_keys(monkeypatch):
    for env in API_KEY_ENVS:
        monkeypatch.setenv(env, f"test-{env.lower()}")
    get_settings.cache_clear()


@pytest.fixture
def no_api_keys(monkeypatch):
    for env in API_KEY_ENVS:
        monkeypatch.delenv(env, raising=False)
    get_settings.cache_clear()


@pytest.fixture
def registry() -> ModelRegistry:
    return ModelRegistry(config_loader.load_config())


def sse(events: Iterable[Any], done: bool = False) -> bytes:
    """Encode provider-side SSE events (dicts become JSON)."""
    out = []
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        out.append(f"data: {data}\n\n")
    if done:
        out.append("data: [DONE]\n\n")
    return "".join(out).encode("utf-8")


def openai_chunks(*texts: str) -> bytes:
    return sse(({"choices": [{"index": 0, "delta": {"content": t}}]} for t in texts), done=True)


def gemini_chunks(*texts: str) -> bytes:
    return sse({"candidates": [{"content": {"role": "model", "parts": [{"text": t}]}}]} for t in texts)


def anthropic_chunks(*texts: str) -> bytes:
    events: List[Dict[str, Any]] = [{"type": "message_start", "message": {"id": "msg_1"}}]
    events.extend(
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": t}}
        for t in texts
    )
    events.append({"type": "message_stop"})
    return sse(events)


class FakeUpstream:
    """Stands in for every provider host. Records the requests it receives."""

    def __init__(self, handler: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.handler = handler or (lambda request: httpx.Response(200, content=openai_chunks("Hello", " there"), headers=SSE_HEADERS))
        self.requests: List[httpx.Request] = []
        self.clients: List[httpx.AsyncClient] = []

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client_factory(self, timeout_s: float) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self._handle), timeout=timeout_s)
        self.clients.append(client)
        return client

    def last_json(self) -> Dict[str, Any]:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {"chat_rate_limit": 0, "log_level": "WARNING"}
    values.update(overrides)
    return Settings(**values)


def parse_envelopes(body: str) -> List[Dict[str, Any]]:
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]
