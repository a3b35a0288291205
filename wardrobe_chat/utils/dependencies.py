from typing import Optional

from fastapi import Header, HTTPException, Request

from wardrobe_chat.services.conversation_service import ConversationService
from wardrobe_chat.services.errors import AuthError
from wardrobe_chat.services.realtime_gateway import RealtimeGateway
from wardrobe_chat.utils.security import resolve_identity


async def get_current_user(
    authorization: Optional[str] = Header(default=None),
    x_auth_token: Optional[str] = Header(default=None),
) -> str:
    try:
        return resolve_identity(authorization or x_auth_token)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=exc.message)


def get_chat_service(request: Request) -> ConversationService:
    return request.app.state.chat_service


def get_gateway(request: Request) -> RealtimeGateway:
    return request.app.state.gateway
