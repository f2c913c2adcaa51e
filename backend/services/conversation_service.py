from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from config.logging import log_event
from core.exceptions import ConversationNotFoundError, ValidationError
from models.chat import Message, seed_title
from models.responses import (
    ChatHistoryItem,
    ChatSummary,
    HistoryBuckets,
    HistoryMessage,
    HistoryResponse,
)
from storage.base import ConversationRecord, ConversationStorage


def bucket_for(updated_at: datetime, now: datetime) -> str:
    """today / yesterday / previous7Days / older, on local calendar-day boundaries."""
    start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if updated_at >= start_of_today:
        return "today"
    if updated_at >= start_of_today - timedelta(days=1):
        return "yesterday"
    if updated_at >= start_of_today - timedelta(days=7):
        return "previous_7_days"
    return "older"


class ConversationService:
    """Owner-scoped conversation persistence behind the /chat/* routes."""

    def __init__(
        self,
        storage: ConversationStorage,
        *,
        title_max_chars: int = 100,
        history_limit: int = 100,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage = storage
        self.title_max_chars = title_max_chars
        self.history_limit = history_limit
        self._clock = clock

    async def save_message(self, owner_id: str, message: Message) -> Tuple[Message, bool]:
        """Idempotent upsert keyed by message id."""
        stored, created = await self.storage.upsert_message(
            owner_id,
            message,
            title=seed_title(message.content, self.title_max_chars),
        )
        log_event(
            "store.save",
            owner=owner_id,
            conversation_id=message.chat_id,
            message_id=message.id,
            role=message.role,
            created=created,
        )
        return stored, created

    async def history(self, owner_id: str, now: Optional[datetime] = None) -> HistoryResponse:
        now = now or self._clock()
        records = await self.storage.list_conversations(owner_id, self.history_limit)
        buckets = HistoryBuckets()
        for record in records:
            getattr(buckets, bucket_for(record.updated_at, now)).append(self._history_item(record))
        return HistoryResponse(chats=buckets, total=len(records))

    async def delete(self, owner_id: str, conversation_id: str) -> None:
        if not await self.storage.soft_delete(owner_id, conversation_id):
            raise ConversationNotFoundError(conversation_id)
        log_event("store.delete", owner=owner_id, conversation_id=conversation_id)

    async def rename(self, owner_id: str, conversation_id: str, title: Optional[str]) -> ChatSummary:
        clean = (title or "").strip()
        if not clean:
            raise ValidationError("Title cannot be empty", field="title")
        record = await self.storage.rename(owner_id, conversation_id, clean[: self.title_max_chars])
        if record is None:
            raise ConversationNotFoundError(conversation_id)
        log_event("store.rename", owner=owner_id, conversation_id=conversation_id)
        return ChatSummary(id=record.id, title=record.title, updated_at=record.updated_at)

    @staticmethod
    def _history_item(record: ConversationRecord) -> ChatHistoryItem:
        return ChatHistoryItem(
            id=record.id,
            title=record.title,
            updated_at=record.updated_at,
            messages=[
                HistoryMessage(
                    id=m.id,
                    role=m.role,
                    content=m.content,
                    model=m.model,
                    timestamp=m.timestamp,
                    images=list(m.images),
                )
                for m in record.ordered_messages()
            ],
        )
