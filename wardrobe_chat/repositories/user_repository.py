from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase

from wardrobe_chat.schemas.chat import ItemSummary, UserSummary


def _object_ids(ids: Iterable[str]) -> List[ObjectId]:
    oids = []
    for raw in ids:
        try:
            oids.append(ObjectId(raw))
        except (InvalidId, TypeError):
            continue
    return oids


class UserRepository:
    """Read-only summaries of users and catalog items owned by other services."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._users = db.get_collection("users")
        self._items = db.get_collection("items")

    async def get_user_summaries(self, user_ids: Iterable[str]) -> Dict[str, UserSummary]:
        cursor = self._users.find({"_id": {"$in": _object_ids(user_ids)}}, {"name": 1, "profileImage": 1})
        summaries: Dict[str, UserSummary] = {}
        async for doc in cursor:
            user_id = str(doc["_id"])  # normalize to string for API layer
            summaries[user_id] = UserSummary(id=user_id, name=doc.get("name"), profile_image=doc.get("profileImage"))
        return summaries

    async def get_item_summaries(self, item_ids: Iterable[str]) -> Dict[str, ItemSummary]:
        cursor = self._items.find({"_id": {"$in": _object_ids(item_ids)}}, {"name": 1, "imageUrl": 1})
        summaries: Dict[str, ItemSummary] = {}
        async for doc in cursor:
            item_id = str(doc["_id"])
            summaries[item_id] = ItemSummary(id=item_id, name=doc.get("name"), image_url=doc.get("imageUrl"))
        return summaries


class InMemoryUserRepository:

    def __init__(
        self,
        users: Optional[Dict[str, UserSummary]] = None,
        items: Optional[Dict[str, ItemSummary]] = None,
    ) -> None:
        self.users: Dict[str, UserSummary] = dict(users or {})
        self.items: Dict[str, ItemSummary] = dict(items or {})

    async def get_user_summaries(self, user_ids: Iterable[str]) -> Dict[str, UserSummary]:
        return {uid: self.users[uid] for uid in user_ids if uid in self.users}

    async def get_item_summaries(self, item_ids: Iterable[str]) -> Dict[str, ItemSummary]:
        return {iid: self.items[iid] for iid in item_ids if iid in self.items}
