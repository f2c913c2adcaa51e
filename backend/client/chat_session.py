from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

import httpx

from client.conversation_store import ConversationStore
from client.persistence_worker import PersistenceWorker
from client.stream_consumer import StreamConsumer, StreamResult
from config.logging import log_event
from config.settings import Settings, get_settings
from core.exceptions import ChatGatewayError
from models.chat import Message

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex


class ChatSession:
    """
    Async client for the chat gateway.

    Keeps a ConversationStore current while answers stream in and saves
    finished messages through a background PersistenceWorker. One request is
    in flight at a time: sending again aborts the previous one.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        user_id: Optional[str] = None,
        store: Optional[ConversationStore] = None,
        persistence_queue_size: int = 256,
        title_max_chars: int = 100,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[], str] = new_id,
    ):
        self.client = client
        self.user_id = user_id
        self.persistence = PersistenceWorker(self._save_remote, maxsize=persistence_queue_size)
        self.store = store or ConversationStore(self.persistence, title_max_chars=title_max_chars)
        if self.store.persistence is None:
            self.store.persistence = self.persistence
        self.consumer = StreamConsumer()
        self._clock = clock
        self._new_id = id_factory
        self._inflight: Optional[asyncio.Task] = None
        self._superseded: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs: Any) -> "ChatSession":
        settings = settings or get_settings()
        client = httpx.AsyncClient(base_url=settings.gateway_url, timeout=settings.provider_timeout_s)
        kwargs.setdefault("user_id", settings.user_id)
        kwargs.setdefault("persistence_queue_size", settings.persistence_queue_size)
        kwargs.setdefault("title_max_chars", settings.title_max_chars)
        return cls(client, **kwargs)

    async def __aenter__(self) -> "ChatSession":
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    def start(self) -> None:
        self.persistence.start()

    async def aclose(self) -> None:
        await self.cancel()
        await self.persistence.stop()
        await self.client.aclose()

    # ---------- conversations ----------

    async def initialize(self) -> int:
        """Load the caller's saved conversations into the store."""
        response = await self.client.get("/chat/history", headers=self._headers())
        data = self._json_or_raise(response)
        loaded = self.store.load_history(data.get("chats") or {})
        logger.info("Loaded %d messages across %d conversations", loaded, len(self.store.conversations()))
        return loaded

    async def delete_conversation(self, conversation_id: str) -> None:
        response = await self.client.post(f"/chat/{conversation_id}/delete", headers=self._headers())
        self._json_or_raise(response)
        self.store.remove_conversation(conversation_id)

    async def rename_conversation(self, conversation_id: str, title: str) -> str:
        response = await self.client.put(
            f"/chat/{conversation_id}/update",
            json={"title": title},
            headers=self._headers(),
        )
        data = self._json_or_raise(response)
        new_title = (data.get("chat") or {}).get("title") or title.strip()
        self.store.set_title(conversation_id, new_title)
        return new_title

    # ---------- streaming ----------

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        images: Optional[List[str]] = None,
        model: str = DEFAULT_MODEL,
        language: Optional[str] = None,
        on_update: Optional[Callable[[str], Any]] = None,
    ) -> Optional[Message]:
        """
        Add the user's message and an empty assistant placeholder, then stream
        the answer into the placeholder. Returns the finished assistant message,
        or what was received so far when a newer send aborted this one.
        """
        await self.cancel()

        user_message = self.store.add_message(Message(
            id=self._new_id(),
            chat_id=conversation_id,
            role="user",
            content=content,
            model=model,
            timestamp=self._clock(),
            images=list(images or []),
        ))
        history = self.store.messages_for(conversation_id)
        placeholder = self.store.add_message(
            Message(
                id=self._new_id(),
                chat_id=conversation_id,
                role="assistant",
                content="",
                model=model,
                timestamp=max(self._clock(), user_message.timestamp),
            ),
            streaming=True,
        )

        task = asyncio.create_task(self._stream(placeholder.id, history, model, language, on_update))
        self._inflight = task
        try:
            return await task
        except asyncio.CancelledError:
            # the task may have been cancelled before it ever ran
            partial = self.store.abandon_stream(placeholder.id)
            if self._superseded is task:
                return partial
            raise
        finally:
            if self._inflight is task:
                self._inflight = None

    async def cancel(self) -> None:
        """Abort the in-flight request, if any. Its placeholder is not persisted."""
        task = self._inflight
        if task is None or task.done():
            return
        self._superseded = task
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _stream(
        self,
        placeholder_id: str,
        history: List[Message],
        model: str,
        language: Optional[str],
        on_update: Optional[Callable[[str], Any]],
    ) -> Message:
        payload: Dict[str, Any] = {
            "messages": [m.to_turn().model_dump() for m in history],
            "model": model,
        }
        if language:
            payload["language"] = language

        def apply(text: str) -> None:
            self.store.update_message(placeholder_id, text)
            if on_update is not None:
                on_update(text)

        try:
            async with self.client.stream("POST", "/chat", json=payload, headers=self._headers()) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise self._error_from(response)
                result: StreamResult = await self.consumer.consume(response.aiter_bytes(), on_update=apply)
        except asyncio.CancelledError:
            self.store.abandon_stream(placeholder_id)
            logger.info("Stream for %s aborted", placeholder_id)
            raise
        except ChatGatewayError:
            self.store.abandon_stream(placeholder_id)
            raise
        except httpx.HTTPError as e:
            # A broken transport still ends the stream; keep what arrived
            placeholder = self.store.get(placeholder_id)
            if placeholder is not None and placeholder.content:
                self.store.finish_stream(placeholder_id)
            else:
                self.store.abandon_stream(placeholder_id)
            raise ChatGatewayError(f"Network error: {e}", code="NETWORK_ERROR") from e

        if result.failed:
            logger.warning("Answer for %s ended with an error notice", placeholder_id)
        return self.store.finish_stream(placeholder_id)

    # ---------- helpers ----------

    def _headers(self) -> Dict[str, str]:
        return {"X-User-Id": self.user_id} if self.user_id else {}

    async def _save_remote(self, message: Message) -> None:
        response = await self.client.post(
            "/chat/save",
            json={"message": message.to_wire()},
            headers=self._headers(),
        )
        self._json_or_raise(response)

    def _json_or_raise(self, response: httpx.Response) -> Dict[str, Any]:
        if response.status_code >= 400:
            raise self._error_from(response)
        return response.json()

    @staticmethod
    def _error_from(response: httpx.Response) -> ChatGatewayError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("error") or f"Request failed with status {response.status_code}"
        log_event(
            "client.request_failed",
            level=logging.WARNING,
            status=response.status_code,
            code=body.get("code"),
            error=message,
        )
        return ChatGatewayError(message, code=body.get("code") or "HTTP_ERROR", status_code=response.status_code)
