"""Async REST client for the chat endpoints."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from wardrobe_chat.schemas.chat import Message, message_adapter
from wardrobe_chat.services.errors import (
    AuthError,
    ChatError,
    Forbidden,
    InvalidOperation,
    NotFound,
    TransientNetworkError,
)


logger = logging.getLogger(__name__)

_ERRORS = {
    400: InvalidOperation,
    401: AuthError,
    403: Forbidden,
    404: NotFound,
}


class ChatApi:

    def __init__(self, client: httpx.AsyncClient, token: str) -> None:
        self._client = client
        self._headers = {"Authorization": f"Bearer {token}"}

    async def list_chats(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/chats")

    async def get_chat(self, chat_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/chats/{chat_id}")

    async def create_chat(self, participant_id: str, item_id: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("POST", "/chats", json={"participantId": participant_id, "itemId": item_id})

    async def send_message(self, chat_id: str, content: str, temp_id: Optional[str] = None) -> Message:
        data = await self._request("POST", f"/chats/{chat_id}/messages", json={"content": content, "tempId": temp_id})
        return message_adapter.validate_python(data)

    async def delete_message(self, chat_id: str, message_id: str) -> None:
        await self._request("DELETE", f"/chats/{chat_id}/messages/{message_id}")

    async def clear_chat(self, chat_id: str) -> None:
        await self._request("DELETE", f"/chats/{chat_id}/messages")

    async def mark_read(self, chat_id: str) -> int:
        data = await self._request("PUT", f"/chats/{chat_id}/mark-read")
        return int(data.get("marked", 0))

    async def set_typing(self, chat_id: str, is_typing: bool) -> List[str]:
        data = await self._request("POST", f"/chats/{chat_id}/typing", json={"isTyping": is_typing})
        return list(data.get("typing", []))

    async def get_typing(self, chat_id: str) -> List[str]:
        data = await self._request("GET", f"/chats/{chat_id}/typing")
        return list(data.get("typing", []))

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = await self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("chat_api_transport_error %s %s: %s", method, path, exc)
            raise TransientNetworkError(f"Network error: {exc}") from exc
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail") or resp.text
            except ValueError:
                detail = resp.text
            if resp.status_code >= 500:
                raise TransientNetworkError(str(detail))
            raise _ERRORS.get(resp.status_code, ChatError)(str(detail))
        return resp.json()
