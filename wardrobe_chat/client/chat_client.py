"""Consumer-side view of one open conversation.

The view is optimistic: a sent message shows up immediately with a local
``temp_id`` and ``status="sending"`` and is swapped for the server's canonical
message once the REST call returns. Realtime events for the open chat are
applied directly since the server only ever relays persisted messages; events
for other chats only bump that chat's unread badge.

Outbound, the client joins the room of the chat it shows (so the server leaves
badge counts off relays for it) and announces typing: ``startTyping`` on the
first non-empty keystroke, ``stopTyping`` after an idle pause or on send.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from wardrobe_chat import config
from wardrobe_chat.client.reconnect import ReconnectLoop
from wardrobe_chat.schemas.chat import Message, TextMessage, message_adapter
from wardrobe_chat.services.conversation_service import Clock, utcnow
from wardrobe_chat.services.errors import ChatError, InvalidOperation, TransientNetworkError


logger = logging.getLogger(__name__)

Emit = Callable[[str, Any], Awaitable[None]]


class ChatClient:

    def __init__(
        self,
        api,
        user_id: str,
        clock: Clock = utcnow,
        typing_ttl_seconds: float = config.TYPING_TTL_SECONDS,
        emit: Optional[Emit] = None,
        typing_idle_seconds: float = config.TYPING_IDLE_SECONDS,
    ) -> None:
        self._api = api
        self.user_id = user_id
        self._clock = clock
        self._typing_ttl = timedelta(seconds=typing_ttl_seconds)
        self._emit_fn = emit
        self._typing_idle = typing_idle_seconds
        self._typing_sent = False
        self._typing_timer: Optional[asyncio.Task] = None
        self.current_chat_id: Optional[str] = None
        self.messages: List[Message] = []
        self.badges: Dict[str, int] = {}
        self.typing: Dict[str, datetime] = {}
        self.draft = ""
        self.last_error: Optional[str] = None

    async def open(self, chat_id: str) -> None:
        data = await self._api.get_chat(chat_id)
        if self.current_chat_id is not None and self.current_chat_id != chat_id:
            await self.close()
        self.current_chat_id = chat_id
        self.messages = [message_adapter.validate_python(m) for m in data.get("messages", [])]
        now = self._clock()
        self.typing = {uid: now for uid in data.get("typing", [])}
        self.badges[chat_id] = 0
        await self._emit("joinChat", chat_id)
        if data.get("unread_count"):
            await self._mark_read(chat_id)

    async def close(self) -> None:
        chat_id = self.current_chat_id
        if chat_id is not None:
            await self._stop_typing(chat_id)
            await self._emit("leaveChat", chat_id)
        self.current_chat_id = None
        self.messages = []
        self.typing = {}

    async def input(self, text: str) -> None:
        """Composer keystroke: update the draft and drive the typing announcement."""
        self.draft = text
        chat_id = self.current_chat_id
        if chat_id is None:
            return
        if text.strip() and not self._typing_sent:
            self._typing_sent = True
            await self._emit("startTyping", {"chatId": chat_id})
        if self._typing_timer is not None:
            self._typing_timer.cancel()
        self._typing_timer = asyncio.create_task(self._stop_typing_when_idle(chat_id))

    async def send(self, content: Optional[str] = None) -> Message:
        if self.current_chat_id is None:
            raise InvalidOperation("No chat is open")
        text = (self.draft if content is None else content).strip()
        if not text:
            raise InvalidOperation("Message content is required")
        chat_id = self.current_chat_id
        await self._stop_typing(chat_id)
        temp_id = f"temp_{uuid.uuid4().hex}"
        self.messages.append(
            TextMessage(
                id=temp_id,
                temp_id=temp_id,
                sender=self.user_id,
                content=text,
                timestamp=self._clock(),
                status="sending",
            )
        )
        self.draft = ""
        try:
            stored = await self._api.send_message(chat_id, text, temp_id=temp_id)
        except ChatError as exc:
            # retract, and hand the text back to the composer for a retry
            self.messages = [m for m in self.messages if m.temp_id != temp_id]
            self.draft = text
            self.last_error = exc.message
            raise
        self.last_error = None
        self._reconcile(temp_id, stored)
        return stored

    async def handle_event(self, event: str, data: Dict[str, Any]) -> None:
        chat_id = data.get("chatId")
        if chat_id is None:
            return
        is_open = chat_id == self.current_chat_id
        if event == "newMessage":
            message = message_adapter.validate_python(data["message"])
            if not is_open:
                self.badges[chat_id] = self.badges.get(chat_id, 0) + 1
                return
            if not any(m.id == message.id for m in self.messages):
                self.messages.append(message)
            if message.sender and message.sender != self.user_id:
                self.typing.pop(message.sender, None)
                await self._mark_read(chat_id)
        elif not is_open:
            return
        elif event == "messageDeleted":
            self.messages = [m for m in self.messages if m.id != data.get("messageId")]
        elif event == "chatCleared":
            self.messages = []
        elif event == "userTyping":
            user_id = data.get("userId")
            if not user_id or user_id == self.user_id:
                return
            if data.get("isTyping"):
                self.typing[user_id] = self._clock()
            else:
                self.typing.pop(user_id, None)
        elif event == "messagesMarkedRead":
            if data.get("userId") == self.user_id:
                return
            read_at = data.get("readAt")
            self.messages = [
                message_adapter.validate_python({**m.model_dump(), "status": "read", "is_read": True, "read_at": read_at})
                if m.sender == self.user_id and m.message_type != "system" and m.status != "sending"
                else m
                for m in self.messages
            ]

    def typists(self, now: Optional[datetime] = None) -> List[str]:
        """Advisory only; never gate input on it."""
        now = now or self._clock()
        return [uid for uid, last in self.typing.items() if now - last <= self._typing_ttl]

    async def listen(self, reconnect: ReconnectLoop) -> None:
        """Apply realtime events until the stream ends or reconnect gives up."""
        while True:
            stream = await reconnect.run()
            try:
                async for event, data in stream:
                    await self.handle_event(event, data)
                return
            except TransientNetworkError as exc:
                logger.warning("realtime_stream_lost error=%s", exc)

    def _reconcile(self, temp_id: str, stored: Message) -> None:
        stored = stored.model_copy(update={"temp_id": temp_id})
        if any(m.id == stored.id for m in self.messages):
            self.messages = [m for m in self.messages if m.temp_id != temp_id or m.id == stored.id]
            return
        self.messages = [stored if m.temp_id == temp_id else m for m in self.messages]

    async def _stop_typing_when_idle(self, chat_id: str) -> None:
        await asyncio.sleep(self._typing_idle)
        self._typing_timer = None
        await self._stop_typing(chat_id)

    async def _stop_typing(self, chat_id: str) -> None:
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None
        if self._typing_sent:
            self._typing_sent = False
            await self._emit("stopTyping", {"chatId": chat_id})

    async def _emit(self, event: str, data: Any) -> None:
        if self._emit_fn is None:
            return
        try:
            await self._emit_fn(event, data)
        except (TransientNetworkError, OSError) as exc:
            # realtime is best effort; REST stays the source of truth
            logger.warning("realtime_emit_failed event=%s error=%s", event, exc)

    async def _mark_read(self, chat_id: str) -> None:
        try:
            await self._api.mark_read(chat_id)
        except ChatError as exc:
            logger.warning("mark_read_failed chat=%s error=%s", chat_id, exc.message)
