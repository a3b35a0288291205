import copy
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId

from wardrobe_chat.models.conversation import ConversationDocument, participants_key
from wardrobe_chat.models.message import MessageDocument
from wardrobe_chat.repositories.base import (
    DuplicateConversation,
    conversation_from_document,
    is_unread_from,
)
from wardrobe_chat.schemas.chat import Conversation


class InMemoryConversationRepository:
    """Process-local conversation store with the Mongo store's semantics.

    No method awaits between reading and writing a document, so each call is
    atomic under the event loop.
    """

    def __init__(self) -> None:
        self._docs: Dict[str, ConversationDocument] = {}
        self._by_pair: Dict[str, str] = {}

    async def ensure_indexes(self) -> None:
        return

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        return self._snapshot(self._docs.get(str(conversation_id)))

    async def find_by_pair(self, user_a: str, user_b: str) -> Optional[Conversation]:
        convo_id = self._by_pair.get(participants_key(user_a, user_b))
        return self._snapshot(self._docs.get(convo_id)) if convo_id else None

    async def insert(
        self,
        user_a: str,
        user_b: str,
        related_item: Optional[str],
        is_active: bool,
        now: datetime,
    ) -> Conversation:
        key = participants_key(user_a, user_b)
        if key in self._by_pair:
            raise DuplicateConversation(key)
        convo_id = str(ObjectId())
        self._docs[convo_id] = {
            "_id": convo_id,
            "participants": sorted([user_a, user_b]),
            "participants_key": key,
            "messages": [],
            "related_item": related_item,
            "is_active": is_active,
            "created_at": now,
            "last_message_at": now,
            "unread_counts": {user_a: 0, user_b: 0},
            "typing_users": {},
        }
        self._by_pair[key] = convo_id
        return self._snapshot(self._docs[convo_id])

    async def list_for_user(self, user_id: str) -> List[Conversation]:
        docs = [d for d in self._docs.values() if user_id in d["participants"]]
        docs.sort(key=lambda d: (d["last_message_at"], d["_id"]), reverse=True)
        return [self._snapshot(d) for d in docs]

    async def append_message(
        self,
        conversation_id: str,
        message: MessageDocument,
        recipient_id: Optional[str],
    ) -> Optional[Conversation]:
        doc = self._docs.get(str(conversation_id))
        if not doc or not doc["is_active"]:
            return None
        sender = message.get("sender")
        if sender and sender not in doc["participants"]:
            return None
        doc["messages"].append(copy.deepcopy(message))
        doc["last_message_at"] = message["timestamp"]
        if sender:
            doc["typing_users"].pop(sender, None)
        if recipient_id:
            doc["unread_counts"][recipient_id] = doc["unread_counts"].get(recipient_id, 0) + 1
        return self._snapshot(doc)

    async def mark_read(self, conversation_id: str, reader_id: str, other_id: str, now: datetime) -> int:
        doc = self._docs.get(str(conversation_id))
        if not doc:
            return 0
        marked = 0
        for message in doc["messages"]:
            if is_unread_from(message, other_id):
                message["is_read"] = True
                message["status"] = "read"
                message["read_at"] = now
                marked += 1
        doc["unread_counts"][reader_id] = 0
        return marked

    async def remove_message(self, conversation_id: str, message_id: str) -> Optional[Conversation]:
        doc = self._docs.get(str(conversation_id))
        if not doc:
            return None
        doc["messages"] = [m for m in doc["messages"] if str(m["_id"]) != str(message_id)]
        doc["last_message_at"] = doc["messages"][-1]["timestamp"] if doc["messages"] else doc["created_at"]
        return self._snapshot(doc)

    async def clear_messages(self, conversation_id: str) -> Optional[Conversation]:
        doc = self._docs.get(str(conversation_id))
        if not doc:
            return None
        doc["messages"] = []
        doc["last_message_at"] = doc["created_at"]
        return self._snapshot(doc)

    async def set_typing(
        self, conversation_id: str, user_id: str, at: Optional[datetime]
    ) -> Optional[Conversation]:
        doc = self._docs.get(str(conversation_id))
        if not doc:
            return None
        if at is not None:
            doc["typing_users"][user_id] = at
        else:
            doc["typing_users"].pop(user_id, None)
        return self._snapshot(doc)

    async def activate(self, conversation_id: str) -> bool:
        doc = self._docs.get(str(conversation_id))
        if not doc or doc["is_active"]:
            return False
        doc["is_active"] = True
        return True

    def _snapshot(self, doc: Optional[Dict[str, Any]]) -> Optional[Conversation]:
        if doc is None:
            return None
        return conversation_from_document(copy.deepcopy(doc))
