from typing import List, NoReturn, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from wardrobe_chat.schemas.chat import (
    ConversationView,
    CreateChatRequest,
    MarkReadResponse,
    Message,
    SendMessageRequest,
    TypingRequest,
    TypingResponse,
    UnreadResponse,
)
from wardrobe_chat.services.conversation_service import ConversationService
from wardrobe_chat.services.errors import ChatError, Forbidden
from wardrobe_chat.services.realtime_gateway import RealtimeGateway
from wardrobe_chat.utils.dependencies import get_chat_service, get_current_user, get_gateway


router = APIRouter(prefix="/chats", tags=["chat"])


def _raise_http(exc: ChatError, forbidden_status: Optional[int] = None) -> NoReturn:
    status = exc.status_code
    if forbidden_status is not None and isinstance(exc, Forbidden):
        status = forbidden_status
    raise HTTPException(status_code=status, detail=exc.message)


@router.get("", response_model=List[ConversationView])
async def list_chats(current_user: str = Depends(get_current_user), service: ConversationService = Depends(get_chat_service)):
    convos = await service.list_for_user(current_user)
    return await service.views(convos, current_user)


@router.get("/unread-count", response_model=UnreadResponse)
async def unread_count(current_user: str = Depends(get_current_user), service: ConversationService = Depends(get_chat_service)):
    return UnreadResponse(unread=await service.unread_total(current_user))


@router.get("/{chat_id}", response_model=ConversationView)
async def get_chat(chat_id: str, current_user: str = Depends(get_current_user), service: ConversationService = Depends(get_chat_service)):
    try:
        convo = await service.get_for_participant(chat_id, current_user)
    except ChatError as exc:
        _raise_http(exc)
    return (await service.views([convo], current_user))[0]


@router.post("", response_model=ConversationView)
async def create_chat(body: CreateChatRequest, current_user: str = Depends(get_current_user), service: ConversationService = Depends(get_chat_service)):
    try:
        convo = await service.find_or_create(current_user, body.participant_id, related_item=body.item_id)
    except ChatError as exc:
        _raise_http(exc)
    return (await service.views([convo], current_user))[0]


@router.post("/{chat_id}/messages", response_model=Message)
async def send_message(
    chat_id: str,
    body: SendMessageRequest,
    background_tasks: BackgroundTasks,
    current_user: str = Depends(get_current_user),
    service: ConversationService = Depends(get_chat_service),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    try:
        message = await service.append_message(chat_id, current_user, body.content, temp_id=body.temp_id)
    except ChatError as exc:
        _raise_http(exc)
    # relay after the response is written; never delays the sender
    background_tasks.add_task(gateway.relay_new_message, chat_id, current_user, message)
    return message


@router.delete("/{chat_id}/messages/{message_id}")
async def delete_message(
    chat_id: str,
    message_id: str,
    background_tasks: BackgroundTasks,
    current_user: str = Depends(get_current_user),
    service: ConversationService = Depends(get_chat_service),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    try:
        await service.delete_message(chat_id, current_user, message_id)
    except ChatError as exc:
        _raise_http(exc, forbidden_status=401)
    background_tasks.add_task(gateway.relay_message_deleted, chat_id, current_user, message_id)
    return {"message": "Message deleted", "messageId": message_id}


@router.delete("/{chat_id}/messages")
async def clear_chat(
    chat_id: str,
    background_tasks: BackgroundTasks,
    current_user: str = Depends(get_current_user),
    service: ConversationService = Depends(get_chat_service),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    try:
        await service.clear_conversation(chat_id, current_user)
    except ChatError as exc:
        _raise_http(exc, forbidden_status=401)
    background_tasks.add_task(gateway.relay_chat_cleared, chat_id, current_user)
    return {"message": "Chat cleared"}


@router.put("/{chat_id}/mark-read", response_model=MarkReadResponse)
async def mark_read(
    chat_id: str,
    background_tasks: BackgroundTasks,
    current_user: str = Depends(get_current_user),
    service: ConversationService = Depends(get_chat_service),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    try:
        count = await service.mark_read(chat_id, current_user)
    except ChatError as exc:
        _raise_http(exc)
    if count:
        background_tasks.add_task(gateway.relay_messages_read, chat_id, current_user, count)
    return MarkReadResponse(marked=count)


@router.post("/{chat_id}/typing", response_model=TypingResponse)
async def set_typing(
    chat_id: str,
    body: TypingRequest,
    background_tasks: BackgroundTasks,
    current_user: str = Depends(get_current_user),
    service: ConversationService = Depends(get_chat_service),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    try:
        typing = await service.set_typing(chat_id, current_user, body.is_typing)
    except ChatError as exc:
        _raise_http(exc)
    background_tasks.add_task(gateway.relay_typing, chat_id, current_user, body.is_typing)
    return TypingResponse(typing=typing)


@router.get("/{chat_id}/typing", response_model=TypingResponse)
async def get_typing(chat_id: str, current_user: str = Depends(get_current_user), service: ConversationService = Depends(get_chat_service)):
    try:
        typing = await service.active_typists(chat_id, current_user)
    except ChatError as exc:
        _raise_http(exc)
    return TypingResponse(typing=typing)
