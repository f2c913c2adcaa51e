from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Set

from client.persistence_worker import PersistenceWorker
from core.exceptions import ConversationStateError
from models.chat import Message, seed_title

logger = logging.getLogger(__name__)

HISTORY_BUCKETS = ("today", "yesterday", "previous7Days", "older")


class ConversationStore:
    """
    Client-side view of every conversation: one flat message list, a
    per-conversation index, titles, and the set of placeholders still streaming.

    Rules:
      - message ids are unique;
      - timestamps never go backwards inside a conversation;
      - only an open placeholder can change, and its content only grows;
      - a placeholder is persisted once, when its own stream finishes.
    """

    def __init__(self, persistence: Optional[PersistenceWorker] = None, title_max_chars: int = 100):
        self.persistence = persistence
        self.title_max_chars = title_max_chars
        self._messages: List[Message] = []
        self._index: Dict[str, Message] = {}
        self._by_conversation: Dict[str, List[Message]] = {}
        self._titles: Dict[str, str] = {}
        self._open: Set[str] = set()

    # ---------- reads ----------

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def conversations(self) -> List[str]:
        return list(self._by_conversation)

    def messages_for(self, conversation_id: str) -> List[Message]:
        return list(self._by_conversation.get(conversation_id, []))

    def get(self, message_id: str) -> Optional[Message]:
        return self._index.get(message_id)

    def title_for(self, conversation_id: str) -> Optional[str]:
        return self._titles.get(conversation_id)

    def is_streaming(self, message_id: str) -> bool:
        return message_id in self._open

    # ---------- writes ----------

    def add_message(self, message: Message, *, streaming: bool = False) -> Message:
        """Append a message. ``streaming=True`` opens it as a placeholder.

        Only user messages are persisted here.
        """
        if message.id in self._index:
            raise ConversationStateError(f"Duplicate message id '{message.id}'", message_id=message.id)

        bucket = self._by_conversation.setdefault(message.chat_id, [])
        if bucket and message.timestamp < bucket[-1].timestamp:
            message = message.model_copy(update={"timestamp": bucket[-1].timestamp})

        self._insert(message)
        if message.role == "user" and message.chat_id not in self._titles:
            self._titles[message.chat_id] = seed_title(message.content, self.title_max_chars)

        if streaming:
            self._open.add(message.id)
        elif message.role == "user":
            # Assistant answers are persisted by finish_stream
            self._persist(message)
        return message

    def update_message(self, message_id: str, content: str) -> Message:
        """Overwrite an open placeholder's content with the full text so far."""
        message = self._require_open(message_id)
        if len(content) < len(message.content):
            raise ConversationStateError("Streaming content cannot shrink", message_id=message_id)
        message.content = content
        return message

    def finish_stream(self, message_id: str) -> Message:
        """Close the placeholder opened for this stream and persist it."""
        message = self._require_open(message_id)
        self._open.discard(message_id)
        self._persist(message)
        return message

    def abandon_stream(self, message_id: str) -> Optional[Message]:
        """Close a placeholder without persisting. An empty one is removed."""
        message = self._index.get(message_id)
        self._open.discard(message_id)
        if message is not None and not message.content:
            self._remove(message)
            return None
        return message

    def load_history(self, chats: Mapping[str, Any]) -> int:
        """Replace local state with the server's bucketed history. Nothing is re-persisted."""
        self._messages.clear()
        self._index.clear()
        self._by_conversation.clear()
        self._titles.clear()
        self._open.clear()

        loaded = 0
        for bucket in HISTORY_BUCKETS:
            for chat in chats.get(bucket) or []:
                chat_id = chat["id"]
                self._titles[chat_id] = chat.get("title") or ""
                self._by_conversation.setdefault(chat_id, [])
                for raw in chat.get("messages") or []:
                    message = Message.model_validate({**raw, "chatId": chat_id})
                    if message.id in self._index:
                        logger.warning("Skipping duplicate message %s in history", message.id)
                        continue
                    self._insert(message)
                    loaded += 1
        return loaded

    def remove_conversation(self, conversation_id: str) -> None:
        for message in self._by_conversation.pop(conversation_id, []):
            self._index.pop(message.id, None)
            self._open.discard(message.id)
        self._messages = [m for m in self._messages if m.chat_id != conversation_id]
        self._titles.pop(conversation_id, None)

    def set_title(self, conversation_id: str, title: str) -> None:
        self._titles[conversation_id] = title

    # ---------- internals ----------

    def _insert(self, message: Message) -> None:
        self._messages.append(message)
        self._index[message.id] = message
        self._by_conversation.setdefault(message.chat_id, []).append(message)

    def _remove(self, message: Message) -> None:
        self._index.pop(message.id, None)
        self._messages = [m for m in self._messages if m.id != message.id]
        bucket = self._by_conversation.get(message.chat_id)
        if bucket is not None:
            bucket[:] = [m for m in bucket if m.id != message.id]

    def _require_open(self, message_id: str) -> Message:
        message = self._index.get(message_id)
        if message is None:
            raise ConversationStateError(f"Unknown message '{message_id}'", message_id=message_id)
        if message_id not in self._open:
            raise ConversationStateError(f"Message '{message_id}' is not streaming", message_id=message_id)
        return message

    def _persist(self, message: Message) -> None:
        if self.persistence is not None:
            self.persistence.enqueue(message)
