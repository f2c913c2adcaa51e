from typing import List, Literal
from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant"]


class ChatTurn(BaseModel):
    """One message of the conversation as the gateway receives it."""
    role: Role = Field(..., description="Author of the message")
    content: str = Field("", description="Message text")
    images: List[str] = Field(
        default_factory=list,
        description="Inline images, as URLs or data: URIs, in attachment order",
    )

    model_config = ConfigDict(extra="ignore")


class Message(BaseModel):
    """A message as the client store and the persistence routes see it."""
    id: str = Field(..., min_length=1)
    chat_id: str = Field(..., alias="chatId", min_length=1)
    role: Role
    content: str = ""
    model: str
    timestamp: int = Field(..., ge=0, description="Creation time, epoch milliseconds")
    images: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)

    def to_turn(self) -> ChatTurn:
        return ChatTurn(role=self.role, content=self.content, images=list(self.images))


DEFAULT_TITLE = "New Chat"


def seed_title(content: str, max_chars: int = 100) -> str:
    """Title for a new conversation: its first message, cut to ``max_chars``."""
    text = " ".join((content or "").split())
    return text[:max_chars] if text else DEFAULT_TITLE
