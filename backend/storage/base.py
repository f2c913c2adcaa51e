from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from models.chat import Message


@dataclass
class ConversationRecord:
    id: str
    owner_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None
    messages: Dict[str, Message] = field(default_factory=dict)

    @property
    def deleted(self) -> bool:
        return self.deleted_at is not None

    def ordered_messages(self) -> List[Message]:
        """Messages by timestamp; ties keep insertion order."""
        return sorted(self.messages.values(), key=lambda m: m.timestamp)


class ConversationStorage(ABC):
    """Abstract interface for conversation storage backends.

    Every operation is scoped to ``owner_id``; a conversation that belongs to
    someone else behaves exactly like one that does not exist.
    """

    @abstractmethod
    async def upsert_message(self, owner_id: str, message: Message, title: str) -> Tuple[Message, bool]:
        """Insert or replace a message by id; create the conversation on first reference.

        Returns the stored message and whether it was newly created.
        """
        pass

    @abstractmethod
    async def list_conversations(self, owner_id: str, limit: int) -> List[ConversationRecord]:
        """Live conversations, most recently updated first."""
        pass

    @abstractmethod
    async def soft_delete(self, owner_id: str, conversation_id: str) -> bool:
        """Mark a conversation deleted. False when missing, foreign or already deleted."""
        pass

    @abstractmethod
    async def rename(self, owner_id: str, conversation_id: str, title: str) -> Optional[ConversationRecord]:
        """Set a new title. None when missing, foreign or deleted."""
        pass
