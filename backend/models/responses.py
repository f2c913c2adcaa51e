from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from models.chat import Message


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: Optional[str] = None


class SuccessResponse(BaseModel):
    success: bool = True


class SaveMessageResponse(BaseModel):
    success: bool = True
    created: bool
    message: Message


class HistoryMessage(BaseModel):
    id: str
    role: str
    content: str
    model: str
    timestamp: int
    images: List[str] = []


class ChatSummary(BaseModel):
    id: str
    title: str
    updated_at: datetime = Field(..., serialization_alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class ChatHistoryItem(ChatSummary):
    messages: List[HistoryMessage]


class HistoryBuckets(BaseModel):
    today: List[ChatHistoryItem] = []
    yesterday: List[ChatHistoryItem] = []
    previous_7_days: List[ChatHistoryItem] = Field([], serialization_alias="previous7Days")
    older: List[ChatHistoryItem] = []

    model_config = ConfigDict(populate_by_name=True)


class HistoryResponse(BaseModel):
    success: bool = True
    chats: HistoryBuckets
    total: int


class RenameChatResponse(BaseModel):
    success: bool = True
    chat: ChatSummary


class ModelInfo(BaseModel):
    id: str
    provider: str
    wire: Optional[str] = None
    configured: bool


class ModelsResponse(BaseModel):
    models: List[ModelInfo]
