from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

from models.chat import ChatTurn, Message


class ChatRequest(BaseModel):
    messages: List[ChatTurn] = Field(..., min_length=1, description="Conversation so far, oldest first")
    model: str = Field(..., min_length=1, description="Model id from models.yaml (e.g. 'gpt-4o')")
    language: Optional[str] = Field(None, description="Display language the assistant must answer in")

    model_config = ConfigDict(extra="ignore")


class SaveMessageRequest(BaseModel):
    message: Message

    model_config = ConfigDict(extra="ignore")


class RenameChatRequest(BaseModel):
    title: Optional[str] = Field(None, description="New conversation title")

    model_config = ConfigDict(extra="ignore")
