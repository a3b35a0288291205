"""Realtime fan-out of chat events to the peer's live connection.

Delivery is keyed by user presence, not by room: the registry says which
connection currently speaks for a user, and every relay re-reads the
conversation from the store so only persisted state is ever pushed. Relays
never raise; a failed or impossible push is logged and dropped because the
message log is already durable and the peer catches up over REST.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import WebSocket

from wardrobe_chat.schemas.chat import Conversation, Message
from wardrobe_chat.services.conversation_service import ConversationService
from wardrobe_chat.services.errors import AuthError, ChatError
from wardrobe_chat.utils.realtime_bus import NoopBus, user_channel
from wardrobe_chat.utils.security import resolve_identity
from wardrobe_chat.utils.websocket_manager import PresenceRegistry, SocketConnection, encode_frame


logger = logging.getLogger(__name__)


def _chat_id(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        data = data.get("chatId")
    return str(data) if data else None


class RealtimeGateway:

    def __init__(
        self,
        service: ConversationService,
        registry: Optional[PresenceRegistry] = None,
        bus=None,
        identify: Callable[[Optional[str]], str] = resolve_identity,
    ) -> None:
        self._service = service
        self.registry = registry or PresenceRegistry()
        self._bus = bus or NoopBus()
        self._identify = identify
        self._subscriptions: Dict[str, Tuple[Any, asyncio.Task]] = {}

    # connection lifecycle

    async def connect(self, websocket: WebSocket) -> SocketConnection:
        await websocket.accept()
        conn = SocketConnection(websocket)
        logger.info("socket_connected conn=%s", conn.id)
        return conn

    async def authenticate(self, conn: SocketConnection, credential: Any) -> str:
        user_id = self._identify(credential)
        if conn.user_id and conn.user_id != user_id:
            await self._release(conn)
        conn.user_id = user_id
        superseded = self.registry.set(user_id, conn)
        if superseded is not None:
            logger.info("presence_superseded user=%s old=%s new=%s", user_id, superseded.id, conn.id)
        logger.info("socket_identified conn=%s user=%s", conn.id, user_id)
        # one bus subscription per locally present user, whichever socket is current
        if self._bus.enabled and user_id not in self._subscriptions:
            await self._subscribe(user_id)
        return user_id

    async def disconnect(self, conn: SocketConnection) -> None:
        if conn.user_id:
            await self._release(conn)
        logger.info("socket_disconnected conn=%s user=%s", conn.id, conn.user_id)

    async def close(self) -> None:
        for subscription, task in self._subscriptions.values():
            await subscription.cancel()
            task.cancel()
        self._subscriptions.clear()

    def join_chat(self, conn: SocketConnection, chat_id: str) -> None:
        conn.rooms.add(chat_id)

    def leave_chat(self, conn: SocketConnection, chat_id: str) -> None:
        conn.rooms.discard(chat_id)

    def is_viewing(self, user_id: str, chat_id: str) -> bool:
        conn = self.registry.get(user_id)
        return conn is not None and chat_id in conn.rooms

    # client events

    async def handle_event(self, conn: SocketConnection, event: str, data: Any) -> None:
        if event == "ping":
            await conn.send_event("pong", {"userId": conn.user_id})
            return
        if event == "authenticate":
            credential = data.get("token") if isinstance(data, dict) else data
            try:
                await self.authenticate(conn, credential)
            except AuthError as exc:
                await self._send_error(conn, exc.message)
            return
        if not conn.identified:
            await self._send_error(conn, "Not authenticated")
            return

        payload = data if isinstance(data, dict) else {}
        chat_id = _chat_id(data)
        try:
            if event == "joinChat":
                if chat_id:
                    self.join_chat(conn, chat_id)
            elif event == "leaveChat":
                if chat_id:
                    self.leave_chat(conn, chat_id)
            elif event == "sendMessage":
                message = payload.get("message")
                message_id = (message.get("id") or message.get("_id")) if isinstance(message, dict) else None
                await self.relay_stored_message(chat_id, conn.user_id, message_id)
            elif event == "deleteMessage":
                await self.relay_message_deleted(chat_id, conn.user_id, payload.get("messageId"))
            elif event == "startTyping":
                await self._service.set_typing(chat_id, conn.user_id, True)
                await self.relay_typing(chat_id, conn.user_id, True, user=payload.get("user"))
            elif event == "stopTyping":
                await self._service.set_typing(chat_id, conn.user_id, False)
                await self.relay_typing(chat_id, conn.user_id, False)
            elif event == "markMessagesRead":
                count = await self._service.mark_read(chat_id, conn.user_id)
                await self.relay_messages_read(chat_id, conn.user_id, count)
            else:
                await self._send_error(conn, f"Unknown event: {event}")
        except ChatError as exc:
            await self._send_error(conn, exc.message)

    # relays

    async def relay_new_message(self, chat_id: str, sender_id: str, message: Message) -> bool:
        found = await self._peer(chat_id, sender_id)
        if found is None:
            return False
        convo, peer = found
        data: Dict[str, Any] = {"chatId": convo.id, "message": message}
        if not self.is_viewing(peer, convo.id):
            data["unreadCount"] = convo.unread_counts.get(peer, 0)
        return await self.emit_to_user(peer, "newMessage", data)

    async def relay_stored_message(self, chat_id: str, sender_id: str, message_id: Optional[str]) -> bool:
        found = await self._peer(chat_id, sender_id)
        if found is None or not message_id:
            return False
        message = found[0].find_message(str(message_id))
        if message is None or message.sender != sender_id:
            logger.info("relay_skipped_unpersisted chat=%s message=%s", chat_id, message_id)
            return False
        return await self.relay_new_message(chat_id, sender_id, message)

    async def relay_message_deleted(self, chat_id: str, actor_id: str, message_id: Optional[str]) -> bool:
        found = await self._peer(chat_id, actor_id)
        if found is None or not message_id:
            return False
        convo, peer = found
        if convo.find_message(str(message_id)) is not None:
            logger.info("relay_skipped_not_deleted chat=%s message=%s", chat_id, message_id)
            return False
        return await self.emit_to_user(peer, "messageDeleted", {"chatId": convo.id, "messageId": str(message_id)})

    async def relay_chat_cleared(self, chat_id: str, actor_id: str) -> bool:
        found = await self._peer(chat_id, actor_id)
        if found is None:
            return False
        convo, peer = found
        return await self.emit_to_user(peer, "chatCleared", {"chatId": convo.id})

    async def relay_typing(self, chat_id: str, actor_id: str, is_typing: bool, user: Any = None) -> bool:
        found = await self._peer(chat_id, actor_id)
        if found is None:
            return False
        convo, peer = found
        data = {"chatId": convo.id, "userId": actor_id, "user": user, "isTyping": is_typing}
        return await self.emit_to_user(peer, "userTyping", data)

    async def relay_messages_read(
        self, chat_id: str, reader_id: str, count: int, read_at: Optional[datetime] = None
    ) -> bool:
        found = await self._peer(chat_id, reader_id)
        if found is None:
            return False
        convo, peer = found
        data = {
            "chatId": convo.id,
            "userId": reader_id,
            "count": count,
            "readAt": read_at or datetime.now(timezone.utc),
        }
        return await self.emit_to_user(peer, "messagesMarkedRead", data)

    async def emit_to_user(self, user_id: str, event: str, data: Any) -> bool:
        frame = encode_frame(event, data)
        if self.registry.get(user_id) is not None:
            return await self._deliver_local(user_id, frame)
        if self._bus.enabled:
            try:
                await self._bus.publish(user_channel(user_id), frame)
                return True
            except Exception:
                logger.warning("relay_publish_failed user=%s event=%s", user_id, event, exc_info=True)
                return False
        logger.debug("relay_dropped_offline user=%s event=%s", user_id, event)
        return False

    async def _deliver_local(self, user_id: str, frame: str) -> bool:
        conn = self.registry.get(user_id)
        if conn is None:
            return False
        try:
            await conn.send_text(frame)
        except Exception:
            logger.warning("relay_send_failed user=%s conn=%s", user_id, conn.id, exc_info=True)
            return False
        return True

    async def _peer(self, chat_id: Optional[str], actor_id: str) -> Optional[Tuple[Conversation, str]]:
        if not chat_id:
            return None
        try:
            convo = await self._service.get_for_participant(str(chat_id), actor_id)
        except ChatError as exc:
            logger.info("relay_rejected chat=%s actor=%s reason=%s", chat_id, actor_id, exc.message)
            return None
        return convo, convo.other_participant(actor_id)

    async def _subscribe(self, user_id: str) -> None:
        async def on_message(frame: str) -> None:
            await self._deliver_local(user_id, frame)

        subscription = await self._bus.subscribe(user_channel(user_id), on_message)
        task = asyncio.create_task(subscription.run())
        self._subscriptions[user_id] = (subscription, task)

    async def _release(self, conn: SocketConnection) -> None:
        """Drop ``conn`` as its user's presence; the bus subscription goes with the last one."""
        if not self.registry.remove_if_current(conn.user_id, conn):
            logger.debug("stale_disconnect conn=%s user=%s", conn.id, conn.user_id)
            return
        entry = self._subscriptions.pop(conn.user_id, None)
        if entry is not None:
            subscription, task = entry
            await subscription.cancel()
            task.cancel()

    async def _send_error(self, conn: SocketConnection, message: str) -> None:
        try:
            await conn.send_event("error", {"message": message})
        except Exception:
            logger.warning("error_frame_failed conn=%s", conn.id, exc_info=True)
