import asyncio
import copy
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from core.exceptions import ConversationNotFoundError
from models.chat import Message
from storage.base import ConversationRecord, ConversationStorage


class MemoryConversationStorage(ConversationStorage):
    """In-memory storage backend for development and testing."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._conversations: Dict[str, ConversationRecord] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _owned(self, owner_id: str, conversation_id: str) -> Optional[ConversationRecord]:
        record = self._conversations.get(conversation_id)
        if record is None or record.owner_id != owner_id or record.deleted:
            return None
        return record

    async def upsert_message(self, owner_id: str, message: Message, title: str) -> Tuple[Message, bool]:
        async with self._lock:
            now = self._clock()
            record = self._conversations.get(message.chat_id)
            if record is None:
                record = ConversationRecord(
                    id=message.chat_id,
                    owner_id=owner_id,
                    title=title,
                    created_at=now,
                    updated_at=now,
                )
                self._conversations[record.id] = record
            elif record.owner_id != owner_id or record.deleted:
                raise ConversationNotFoundError(message.chat_id)

            created = message.id not in record.messages
            stored = message.model_copy(deep=True)
            record.messages[message.id] = stored
            record.updated_at = now
            return stored.model_copy(deep=True), created

    async def list_conversations(self, owner_id: str, limit: int) -> List[ConversationRecord]:
        async with self._lock:
            live = [
                r for r in self._conversations.values()
                if r.owner_id == owner_id and not r.deleted
            ]
            live.sort(key=lambda r: r.updated_at, reverse=True)
            return copy.deepcopy(live[:limit])

    async def soft_delete(self, owner_id: str, conversation_id: str) -> bool:
        async with self._lock:
            record = self._owned(owner_id, conversation_id)
            if record is None:
                return False
            record.deleted_at = self._clock()
            return True

    async def rename(self, owner_id: str, conversation_id: str, title: str) -> Optional[ConversationRecord]:
        async with self._lock:
            record = self._owned(owner_id, conversation_id)
            if record is None:
                return None
            record.title = title
            record.updated_at = self._clock()
            return copy.deepcopy(record)
