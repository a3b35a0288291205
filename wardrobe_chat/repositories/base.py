"""Persistence contract for conversations and their message logs."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from wardrobe_chat.models.message import MessageDocument
from wardrobe_chat.schemas.chat import Conversation, message_adapter


class DuplicateConversation(Exception):
    """A conversation for the same unordered pair already exists."""


class ConversationStore(Protocol):
    """Atomic operations over one conversation document.

    Each mutating call is applied as a single atomic write and returns the
    state read back after it, so callers only ever relay persisted data.
    Mutations return ``None`` when the conversation does not exist (or, for
    ``append_message``, when the write precondition did not hold).
    """

    async def ensure_indexes(self) -> None: ...

    async def get(self, conversation_id: str) -> Optional[Conversation]: ...

    async def find_by_pair(self, user_a: str, user_b: str) -> Optional[Conversation]: ...

    async def insert(
        self,
        user_a: str,
        user_b: str,
        related_item: Optional[str],
        is_active: bool,
        now: datetime,
    ) -> Conversation:
        """Raise ``DuplicateConversation`` if the pair already has one."""
        ...

    async def list_for_user(self, user_id: str) -> List[Conversation]: ...

    async def append_message(
        self,
        conversation_id: str,
        message: MessageDocument,
        recipient_id: Optional[str],
    ) -> Optional[Conversation]:
        """Append only while active and, if the message has a sender, only
        when the sender is a participant. Bumps ``recipient_id``'s counter
        when given, sets ``last_message_at`` and drops the sender's typing
        entry."""
        ...

    async def mark_read(self, conversation_id: str, reader_id: str, other_id: str, now: datetime) -> int: ...

    async def remove_message(self, conversation_id: str, message_id: str) -> Optional[Conversation]: ...

    async def clear_messages(self, conversation_id: str) -> Optional[Conversation]: ...

    async def set_typing(
        self, conversation_id: str, user_id: str, at: Optional[datetime]
    ) -> Optional[Conversation]: ...

    async def activate(self, conversation_id: str) -> bool:
        """Flip an inactive conversation to active. True only for the call
        that performed the flip."""
        ...


def is_unread_from(message: Dict[str, Any], other_id: str) -> bool:
    return (
        message.get("sender") == other_id
        and not message.get("is_read", False)
        and message.get("message_type", "text") != "system"
    )


def message_from_document(doc: Dict[str, Any]):
    data: Dict[str, Any] = {
        "id": str(doc["_id"]),
        "sender": doc.get("sender"),
        "content": doc.get("content", ""),
        "message_type": doc.get("message_type", "text"),
        "timestamp": doc["timestamp"],
        "status": doc.get("status", "sent"),
        "is_read": doc.get("is_read", False),
        "read_at": doc.get("read_at"),
        "temp_id": doc.get("temp_id"),
    }
    if data["message_type"] == "request":
        data["item"] = doc.get("item_info") or {}
    return message_adapter.validate_python(data)


def conversation_from_document(doc: Dict[str, Any]) -> Conversation:
    return Conversation(
        id=str(doc["_id"]),
        participants=list(doc["participants"]),
        messages=[message_from_document(m) for m in doc.get("messages", [])],
        related_item=str(doc["related_item"]) if doc.get("related_item") else None,
        is_active=doc.get("is_active", True),
        created_at=doc["created_at"],
        last_message_at=doc.get("last_message_at") or doc["created_at"],
        unread_counts=dict(doc.get("unread_counts") or {}),
        typing_users=dict(doc.get("typing_users") or {}),
    )
