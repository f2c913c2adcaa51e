from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from config.settings import get_settings
from core.exceptions import ProviderError
from models.chat import ChatTurn

logger = logging.getLogger(__name__)


@dataclass
class Provider:
    name: str
    type: str
    base_url: str
    api_key_env: Optional[str]
    headers: Dict[str, str]
    models: List[str]
    wire: str = ""
    defaults: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.wire:
            self.wire = self.type

    @property
    def api_key(self) -> Optional[str]:
        if not self.api_key_env:
            return None
        value = os.getenv(self.api_key_env)
        if value:
            return value
        # Fall back to values pydantic-settings read from .env
        return getattr(get_settings(), self.api_key_env.lower(), None) or None


@dataclass
class ProviderContext:
    """Per-call request context. Built fresh for every request, never persisted."""
    system_instruction: str
    history: List[ChatTurn]
    current_turn: ChatTurn

    @classmethod
    def from_turns(cls, system_instruction: str, turns: List[ChatTurn]) -> "ProviderContext":
        return cls(
            system_instruction=system_instruction,
            history=list(turns[:-1]),
            current_turn=turns[-1],
        )

    def all_turns(self) -> List[ChatTurn]:
        return [*self.history, self.current_turn]


@dataclass
class NativeRequest:
    """A provider-specific HTTP request, ready to send."""
    method: str
    url: str
    json: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, str] = field(default_factory=dict)


ClientFactory = Callable[[float], httpx.AsyncClient]


def default_client_factory(timeout_s: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout_s)


# ---------------- error mapping ----------------

def error_kind(marker: Any) -> str:
    """Classify a provider error type/status string (or HTTP status) into a ProviderError kind."""
    if isinstance(marker, int):
        if marker == 429:
            return "rate_limit"
        if marker in (401, 403):
            return "auth"
        if marker in (400, 404, 413, 422):
            return "bad_request"
        if marker in (503, 529):
            return "overloaded"
        return "upstream"

    m = str(marker or "").lower()
    if "rate_limit" in m or "resource_exhausted" in m or "quota" in m:
        return "rate_limit"
    if "overloaded" in m or "unavailable" in m:
        return "overloaded"
    if "auth" in m or "permission" in m or "api_key" in m:
        return "auth"
    if "invalid" in m or "not_found" in m:
        return "bad_request"
    return "upstream"


def error_detail(body: bytes) -> str:
    """Best-effort human-readable message out of an error body."""
    try:
        j = json.loads(body or b"{}")
    except ValueError:
        return body.decode("utf-8", errors="replace")[:500]
    if isinstance(j, list) and j:
        j = j[0]
    if not isinstance(j, dict):
        return str(j)[:500]
    err = j.get("error", j)
    if isinstance(err, dict):
        return str(err.get("message") or err.get("type") or err)[:500]
    return str(err)[:500]


# ---------------- SSE ----------------

async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the `data` payload of each server-sent event.

    Multi-line data fields are joined with newlines; `[DONE]` ends the stream.
    """
    buf: List[str] = []
    async for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if buf:
                data = "\n".join(buf)
                buf = []
                if data == "[DONE]":
                    return
                yield data
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            buf.append(line[5:].lstrip(" "))
    if buf:
        data = "\n".join(buf)
        if data != "[DONE]":
            yield data


class UpstreamStream:
    """Owns one live provider response (client + open streaming response).

    Closing is idempotent; the gateway closes it on every exit path.
    """

    def __init__(self, adapter: "ChatProviderAdapter", client: httpx.AsyncClient, response: httpx.Response):
        self._adapter = adapter
        self._client = client
        self._response = response
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def deltas(self) -> AsyncIterator[str]:
        """Lazy, finite, non-restartable sequence of text fragments."""
        provider = self._adapter.provider.name
        try:
            async for data in iter_sse_data(self._response.aiter_lines()):
                fragment = self._adapter.parse_event(data)
                if fragment is not None:
                    yield fragment
        except httpx.HTTPError as e:
            raise ProviderError(provider, f"stream interrupted: {e}", kind="network") from e

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()

    async def __aenter__(self) -> "UpstreamStream":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()


class ChatProviderAdapter(ABC):
    """Translates normalized turns into one provider's request and its stream into text fragments."""

    wire: str = ""

    def __init__(
        self,
        provider: Provider,
        *,
        timeout_s: float = 180.0,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.provider = provider
        self.timeout_s = timeout_s
        self._client_factory = client_factory or default_client_factory

    @abstractmethod
    def translate(self, model: str, context: ProviderContext) -> NativeRequest:
        """Build the provider-native streaming request."""

    @abstractmethod
    def parse_event(self, data: str) -> Optional[str]:
        """Map one SSE data payload to a text fragment (None when it carries no text).

        Raises ProviderError when the payload reports an upstream failure.
        """

    async def open(self, native: NativeRequest) -> UpstreamStream:
        """Send the request and validate the status. Reads no fragments."""
        client = self._client_factory(self.timeout_s)
        try:
            request = client.build_request(
                native.method,
                native.url,
                headers=native.headers,
                params=native.params or None,
                json=native.json,
            )
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            raise ProviderError(self.provider.name, f"connection failed: {e}", kind="network") from e
        except BaseException:
            await client.aclose()
            raise

        if response.status_code >= 400:
            try:
                body = await response.aread()
            except httpx.HTTPError:
                body = b""
            finally:
                await response.aclose()
                await client.aclose()
            detail = error_detail(body)
            raise ProviderError(
                self.provider.name,
                f"{response.status_code} {response.reason_phrase}: {detail}",
                kind=error_kind(response.status_code),
                upstream_status=response.status_code,
            )

        return UpstreamStream(self, client, response)

    async def stream(self, native: NativeRequest) -> AsyncIterator[str]:
        async with await self.open(native) as upstream:
            async for fragment in upstream.deltas():
                yield fragment

    # ---------------- helpers ----------------

    def _base_url(self) -> str:
        return self.provider.base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        headers = dict(self.provider.headers or {})
        headers.setdefault("Content-Type", "application/json")
        headers.setdefault("Accept", "text/event-stream")
        return headers

    def _load_event(self, data: str) -> Optional[Dict[str, Any]]:
        try:
            j = json.loads(data)
        except ValueError:
            logger.warning("SSE parse error from %s: %.200s", self.provider.name, data)
            return None
        return j if isinstance(j, dict) else None

    def _raise_payload_error(self, err: Any) -> None:
        if isinstance(err, dict):
            code = err.get("code")
            if isinstance(code, int):
                kind = error_kind(code)
            else:
                kind = error_kind(" ".join(str(err.get(k) or "") for k in ("type", "code", "status")))
            message = err.get("message") or str(err)
        else:
            kind, message = "upstream", str(err)
        raise ProviderError(self.provider.name, message, kind=kind)
