import json
import uuid
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder


def encode_frame(event: str, data: Any) -> str:
    return json.dumps({"event": event, "data": jsonable_encoder(data)})


class SocketConnection:
    """One realtime connection; unauthenticated until ``user_id`` is set."""

    def __init__(self, websocket: WebSocket) -> None:
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.user_id: Optional[str] = None
        # advisory: chats this client has open
        self.rooms: Set[str] = set()

    @property
    def identified(self) -> bool:
        return self.user_id is not None

    async def send_text(self, frame: str) -> None:
        await self.websocket.send_text(frame)

    async def send_event(self, event: str, data: Any) -> None:
        await self.send_text(encode_frame(event, data))

    def __repr__(self) -> str:
        return f"SocketConnection(id={self.id}, user_id={self.user_id})"


class PresenceRegistry:
    """Last-writer-wins map from user id to the current connection.

    Every mutation completes synchronously within one event-loop turn.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, SocketConnection] = {}

    def set(self, user_id: str, handle: SocketConnection) -> Optional[SocketConnection]:
        previous = self._connections.get(user_id)
        self._connections[user_id] = handle
        return previous if previous is not handle else None

    def get(self, user_id: str) -> Optional[SocketConnection]:
        return self._connections.get(user_id)

    def remove_if_current(self, user_id: str, handle: SocketConnection) -> bool:
        if self._connections.get(user_id) is handle:
            del self._connections[user_id]
            return True
        return False

    def online_users(self) -> List[str]:
        return list(self._connections)
