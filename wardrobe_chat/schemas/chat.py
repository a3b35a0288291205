from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class ItemInfo(BaseModel):

    item_id: str
    item_name: Optional[str] = None
    item_image: Optional[str] = None


class _MessageBase(BaseModel):

    id: str
    content: str
    timestamp: datetime
    status: Literal["sending", "sent", "read"] = "sent"
    is_read: bool = False
    read_at: Optional[datetime] = None
    temp_id: Optional[str] = None


class TextMessage(_MessageBase):

    message_type: Literal["text"] = "text"
    sender: str


class RequestMessage(_MessageBase):

    message_type: Literal["request"] = "request"
    sender: str
    item: ItemInfo


class SystemMessage(_MessageBase):
    """Workflow-authored notice; display only."""

    message_type: Literal["system"] = "system"
    sender: Optional[str] = None


Message = Annotated[Union[TextMessage, RequestMessage, SystemMessage], Field(discriminator="message_type")]

message_adapter: TypeAdapter = TypeAdapter(Message)


class UserSummary(BaseModel):

    id: str
    name: Optional[str] = None
    profile_image: Optional[str] = None


class ItemSummary(BaseModel):

    id: str
    name: Optional[str] = None
    image_url: Optional[str] = None


class Conversation(BaseModel):

    id: str
    participants: List[str]
    messages: List[Message] = Field(default_factory=list)
    related_item: Optional[str] = None
    is_active: bool = True
    created_at: datetime
    last_message_at: datetime
    unread_counts: Dict[str, int] = Field(default_factory=dict)
    typing_users: Dict[str, datetime] = Field(default_factory=dict)

    def other_participant(self, user_id: str) -> str:
        return next(p for p in self.participants if p != user_id)

    def find_message(self, message_id: str) -> Optional[Any]:
        return next((m for m in self.messages if m.id == message_id), None)


class ConversationView(BaseModel):
    """Conversation with participant and related-item summaries populated."""

    id: str
    participants: List[UserSummary]
    messages: List[Message] = Field(default_factory=list)
    related_item: Optional[ItemSummary] = None
    is_active: bool
    created_at: datetime
    last_message_at: datetime
    unread_count: int = 0
    typing: List[str] = Field(default_factory=list)


class CreateChatRequest(BaseModel):

    participant_id: str = Field(alias="participantId")
    item_id: Optional[str] = Field(default=None, alias="itemId")

    model_config = {"populate_by_name": True}


class SendMessageRequest(BaseModel):

    content: str
    temp_id: Optional[str] = Field(default=None, alias="tempId")

    model_config = {"populate_by_name": True}


class TypingRequest(BaseModel):

    is_typing: bool = Field(alias="isTyping")

    model_config = {"populate_by_name": True}


class MarkReadResponse(BaseModel):

    marked: int


class TypingResponse(BaseModel):

    typing: List[str]


class UnreadResponse(BaseModel):

    unread: int
