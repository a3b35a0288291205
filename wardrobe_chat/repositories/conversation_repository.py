from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from wardrobe_chat.models.conversation import ConversationDocument, participants_key
from wardrobe_chat.models.message import MessageDocument
from wardrobe_chat.repositories.base import (
    DuplicateConversation,
    conversation_from_document,
    is_unread_from,
)
from wardrobe_chat.schemas.chat import Conversation


class ConversationRepository:
    """MongoDB conversation store; one document per conversation."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participants_key", ASCENDING)], unique=True)
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("last_message_at", DESCENDING)])

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        oid = self._to_object_id(conversation_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return conversation_from_document(doc) if doc else None

    async def find_by_pair(self, user_a: str, user_b: str) -> Optional[Conversation]:
        doc = await self.collection.find_one({"participants_key": participants_key(user_a, user_b)})
        return conversation_from_document(doc) if doc else None

    async def insert(
        self,
        user_a: str,
        user_b: str,
        related_item: Optional[str],
        is_active: bool,
        now: datetime,
    ) -> Conversation:
        doc: ConversationDocument = {
            "participants": sorted([user_a, user_b]),
            "participants_key": participants_key(user_a, user_b),
            "messages": [],
            "related_item": related_item,
            "is_active": is_active,
            "created_at": now,
            "last_message_at": now,
            "unread_counts": {user_a: 0, user_b: 0},
            "typing_users": {},
        }
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError as exc:
            raise DuplicateConversation(doc["participants_key"]) from exc
        doc["_id"] = result.inserted_id
        return conversation_from_document(doc)

    async def list_for_user(self, user_id: str) -> List[Conversation]:
        sort = [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        cursor = self.collection.find({"participants": user_id}).sort(sort)
        items = await cursor.to_list(length=None)
        return [conversation_from_document(it) for it in items]

    async def append_message(
        self,
        conversation_id: str,
        message: MessageDocument,
        recipient_id: Optional[str],
    ) -> Optional[Conversation]:
        oid = self._to_object_id(conversation_id)
        if oid is None:
            return None
        query: Dict[str, Any] = {"_id": oid, "is_active": True}
        update: Dict[str, Any] = {
            "$push": {"messages": message},
            "$set": {"last_message_at": message["timestamp"]},
        }
        sender = message.get("sender")
        if sender:
            query["participants"] = sender
            update["$unset"] = {f"typing_users.{sender}": ""}
        if recipient_id:
            update["$inc"] = {f"unread_counts.{recipient_id}": 1}
        doc = await self.collection.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
        return conversation_from_document(doc) if doc else None

    async def mark_read(self, conversation_id: str, reader_id: str, other_id: str, now: datetime) -> int:
        oid = self._to_object_id(conversation_id)
        if oid is None:
            return 0
        # BEFORE image tells exactly which messages this write flipped.
        before = await self.collection.find_one_and_update(
            {"_id": oid},
            {
                "$set": {
                    "messages.$[m].is_read": True,
                    "messages.$[m].status": "read",
                    "messages.$[m].read_at": now,
                    f"unread_counts.{reader_id}": 0,
                }
            },
            array_filters=[{"m.sender": other_id, "m.is_read": False, "m.message_type": {"$ne": "system"}}],
            return_document=ReturnDocument.BEFORE,
        )
        if not before:
            return 0
        return sum(1 for m in before.get("messages", []) if is_unread_from(m, other_id))

    async def remove_message(self, conversation_id: str, message_id: str) -> Optional[Conversation]:
        oid = self._to_object_id(conversation_id)
        message_oid = self._to_object_id(message_id)
        if oid is None or message_oid is None:
            return None
        pipeline = [
            {
                "$set": {
                    "messages": {
                        "$filter": {
                            "input": "$messages",
                            "as": "m",
                            "cond": {"$ne": ["$$m._id", message_oid]},
                        }
                    }
                }
            },
            {"$set": {"last_message_at": {"$ifNull": [{"$last": "$messages.timestamp"}, "$created_at"]}}},
        ]
        doc = await self.collection.find_one_and_update({"_id": oid}, pipeline, return_document=ReturnDocument.AFTER)
        return conversation_from_document(doc) if doc else None

    async def clear_messages(self, conversation_id: str) -> Optional[Conversation]:
        oid = self._to_object_id(conversation_id)
        if oid is None:
            return None
        pipeline = [{"$set": {"messages": {"$literal": []}, "last_message_at": "$created_at"}}]
        doc = await self.collection.find_one_and_update({"_id": oid}, pipeline, return_document=ReturnDocument.AFTER)
        return conversation_from_document(doc) if doc else None

    async def set_typing(
        self, conversation_id: str, user_id: str, at: Optional[datetime]
    ) -> Optional[Conversation]:
        oid = self._to_object_id(conversation_id)
        if oid is None:
            return None
        if at is not None:
            update = {"$set": {f"typing_users.{user_id}": at}}
        else:
            update = {"$unset": {f"typing_users.{user_id}": ""}}
        doc = await self.collection.find_one_and_update({"_id": oid}, update, return_document=ReturnDocument.AFTER)
        return conversation_from_document(doc) if doc else None

    async def activate(self, conversation_id: str) -> bool:
        oid = self._to_object_id(conversation_id)
        if oid is None:
            return False
        result = await self.collection.update_one({"_id": oid, "is_active": False}, {"$set": {"is_active": True}})
        return result.modified_count == 1

    def _to_object_id(self, oid_hex: str) -> Optional[ObjectId]:
        if isinstance(oid_hex, ObjectId):
            return oid_hex
        if not oid_hex:
            return None
        try:
            return ObjectId(oid_hex)
        except (InvalidId, TypeError):
            return None
