import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set

from bson import ObjectId

from wardrobe_chat import config
from wardrobe_chat.models.message import MessageDocument
from wardrobe_chat.repositories.base import ConversationStore, DuplicateConversation
from wardrobe_chat.schemas.chat import (
    Conversation,
    ConversationView,
    ItemInfo,
    ItemSummary,
    Message,
    UserSummary,
)
from wardrobe_chat.services.errors import Forbidden, InactiveConversation, InvalidOperation, NotFound


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RequestNote:
    """The requester's opening message, posted once the request is accepted."""

    sender_id: str
    content: str
    item: ItemInfo


class ConversationService:

    def __init__(
        self,
        store: ConversationStore,
        users=None,
        clock: Clock = utcnow,
        typing_ttl_seconds: float = config.TYPING_TTL_SECONDS,
    ) -> None:
        self._store = store
        self._users = users
        self._clock = clock
        self._typing_ttl = timedelta(seconds=typing_ttl_seconds)

    async def find_or_create(
        self,
        user_a: str,
        user_b: str,
        related_item: Optional[str] = None,
        active: bool = True,
    ) -> Conversation:
        if user_a == user_b:
            raise InvalidOperation("Cannot create chat with yourself")
        existing = await self._store.find_by_pair(user_a, user_b)
        if existing:
            return existing
        try:
            convo = await self._store.insert(user_a, user_b, related_item, active, self._clock())
        except DuplicateConversation:
            # The other side created it first; the unique pair index picked the winner.
            winner = await self._store.find_by_pair(user_a, user_b)
            if winner is None:
                raise
            return winner
        logger.info("conversation_created id=%s active=%s", convo.id, convo.is_active)
        return convo

    async def open_request(self, requester_id: str, owner_id: str, item: ItemInfo) -> Conversation:
        """Item-request flow: the chat stays closed until the owner accepts."""
        return await self.find_or_create(requester_id, owner_id, related_item=item.item_id, active=False)

    async def activate(
        self,
        conversation_id: str,
        request: Optional[RequestNote] = None,
        notice: Optional[str] = config.ACCEPTED_REQUEST_NOTICE,
    ) -> Conversation:
        if not await self._store.activate(conversation_id):
            # already accepted (or unknown): a retried acceptance posts nothing
            convo = await self._require(conversation_id)
            logger.info("conversation_already_active id=%s", conversation_id)
            return convo
        logger.info("conversation_activated id=%s", conversation_id)
        if request is not None:
            await self.append_message(
                conversation_id,
                request.sender_id,
                request.content,
                message_type="request",
                item=request.item,
            )
        if notice:
            await self._store.append_message(
                conversation_id, self._new_message(None, notice, "system"), recipient_id=None
            )
        return await self._require(conversation_id)

    async def get_for_participant(self, conversation_id: str, user_id: str) -> Conversation:
        convo = await self._require(conversation_id)
        self._ensure_participant(convo, user_id, "Not authorized to view this chat")
        return convo

    async def list_for_user(self, user_id: str) -> List[Conversation]:
        return await self._store.list_for_user(user_id)

    async def unread_total(self, user_id: str) -> int:
        convos = await self._store.list_for_user(user_id)
        return sum(max(c.unread_counts.get(user_id, 0), 0) for c in convos)

    async def append_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        temp_id: Optional[str] = None,
        message_type: str = "text",
        item: Optional[ItemInfo] = None,
    ) -> Message:
        text = (content or "").strip()
        if not text:
            raise InvalidOperation("Message content is required")
        if message_type not in ("text", "request"):
            raise InvalidOperation(f"Cannot send a {message_type} message")
        if message_type == "request" and item is None:
            raise InvalidOperation("Request messages need item info")

        convo = await self._require(conversation_id)
        self._ensure_participant(convo, sender_id, "Not authorized to send messages in this chat")
        if not convo.is_active:
            raise InactiveConversation("This chat is not active yet")

        doc = self._new_message(sender_id, text, message_type, temp_id=temp_id, item=item)
        stored = await self._store.append_message(
            conversation_id, doc, recipient_id=convo.other_participant(sender_id)
        )
        if stored is None:
            # Deactivated between the read and the write.
            raise InactiveConversation("This chat is not active yet")
        message = stored.find_message(str(doc["_id"]))
        logger.debug("message_appended chat=%s message=%s", conversation_id, message.id)
        return message

    async def mark_read(self, conversation_id: str, reader_id: str) -> int:
        convo = await self._require(conversation_id)
        self._ensure_participant(convo, reader_id, "Not authorized")
        other = convo.other_participant(reader_id)
        return await self._store.mark_read(conversation_id, reader_id, other, self._clock())

    async def delete_message(self, conversation_id: str, requester_id: str, message_id: str) -> None:
        convo = await self._require(conversation_id)
        message = convo.find_message(message_id)
        if message is None:
            raise NotFound("Message not found")
        if message.sender is None or message.sender != requester_id:
            raise Forbidden("Not authorized to delete this message")
        await self._store.remove_message(conversation_id, message_id)
        logger.info("message_deleted chat=%s message=%s", conversation_id, message_id)

    async def clear_conversation(self, conversation_id: str, requester_id: str) -> None:
        convo = await self._require(conversation_id)
        self._ensure_participant(convo, requester_id, "Not authorized to clear this chat")
        await self._store.clear_messages(conversation_id)
        logger.info("conversation_cleared chat=%s by=%s", conversation_id, requester_id)

    async def set_typing(self, conversation_id: str, user_id: str, is_typing: bool) -> List[str]:
        convo = await self._require(conversation_id)
        self._ensure_participant(convo, user_id, "Not authorized")
        updated = await self._store.set_typing(conversation_id, user_id, self._clock() if is_typing else None)
        return self.fresh_typists(updated or convo, exclude=user_id)

    async def active_typists(self, conversation_id: str, viewer_id: str) -> List[str]:
        convo = await self.get_for_participant(conversation_id, viewer_id)
        return self.fresh_typists(convo, exclude=viewer_id)

    def fresh_typists(self, convo: Conversation, exclude: Optional[str] = None) -> List[str]:
        now = self._clock()
        return [
            uid
            for uid, last in convo.typing_users.items()
            if uid != exclude and now - last <= self._typing_ttl
        ]

    async def views(self, convos: List[Conversation], viewer_id: str) -> List[ConversationView]:
        user_ids: Set[str] = {p for c in convos for p in c.participants}
        item_ids: Set[str] = {c.related_item for c in convos if c.related_item}
        users: Dict[str, UserSummary] = {}
        items: Dict[str, ItemSummary] = {}
        if self._users is not None:
            users = await self._users.get_user_summaries(user_ids)
            items = await self._users.get_item_summaries(item_ids)
        views = []
        for c in convos:
            views.append(
                ConversationView(
                    id=c.id,
                    participants=[users.get(p) or UserSummary(id=p) for p in c.participants],
                    messages=c.messages,
                    related_item=(items.get(c.related_item) or ItemSummary(id=c.related_item)) if c.related_item else None,
                    is_active=c.is_active,
                    created_at=c.created_at,
                    last_message_at=c.last_message_at,
                    unread_count=c.unread_counts.get(viewer_id, 0),
                    typing=self.fresh_typists(c, exclude=viewer_id),
                )
            )
        return views

    async def _require(self, conversation_id: str) -> Conversation:
        convo = await self._store.get(conversation_id)
        if convo is None:
            raise NotFound("Chat not found")
        return convo

    def _ensure_participant(self, convo: Conversation, user_id: str, detail: str) -> None:
        if user_id not in convo.participants:
            raise Forbidden(detail)

    def _new_message(
        self,
        sender_id: Optional[str],
        content: str,
        message_type: str,
        temp_id: Optional[str] = None,
        item: Optional[ItemInfo] = None,
    ) -> MessageDocument:
        doc: MessageDocument = {
            "_id": ObjectId(),
            "sender": sender_id,
            "content": content,
            "message_type": message_type,
            "timestamp": self._clock(),
            "status": "sent",
            "is_read": False,
            "read_at": None,
            "temp_id": temp_id,
        }
        if item is not None:
            doc["item_info"] = item.model_dump()
        return doc
