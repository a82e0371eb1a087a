import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from linkup.core.dependencies import (
    current_user_id,
    get_conversation_repository,
    get_message_repository,
)
from linkup.core.errors import envelope_response

from .conversations import ConversationRepository
from .messages import MessageRepository
from .schemas import CreateConversationModel, SendMessageModel


logger = logging.getLogger(__name__)
router = APIRouter()


async def _require_participant(
    conversation_id: str,
    user_id: str,
    conversations: ConversationRepository,
) -> Optional[JSONResponse]:
    """Error response when the caller is not in the conversation, else None."""
    details = await conversations.get_details(conversation_id, user_id)
    if details.success:
        return None
    return envelope_response(details)


@router.post("/conversations/direct", status_code=200)
async def get_or_create_direct_conversation(
    data: CreateConversationModel,
    user_id: str = Depends(current_user_id),
    conversations: ConversationRepository = Depends(get_conversation_repository),
):
    """
    Get or create the 1-on-1 conversation with another user.

    Used when a user opens a chat from outside an existing conversation
    (e.g. tapping "Message" on a profile).

    **Input**
    - `receiver_id`: id of the other user

    **Returns**
    - `data`: conversation id

    **Errors**
    - 400: Invalid id or messaging yourself
    - 503: Conversation tables not provisioned
    """
    result = await conversations.get_or_create(user_id, data.receiver_id)
    return envelope_response(result)


@router.get("/conversations", status_code=200)
async def get_conversations(
    user_id: str = Depends(current_user_id),
    conversations: ConversationRepository = Depends(get_conversation_repository),
):
    """
    Inbox list: the caller's conversations, most recently updated first, each
    with the other participant's profile.
    """
    result = await conversations.list_for_user(user_id)
    return envelope_response(result)


@router.get("/conversations/{conversation_id}", status_code=200)
async def get_conversation(
    conversation_id: str,
    user_id: str = Depends(current_user_id),
    conversations: ConversationRepository = Depends(get_conversation_repository),
):
    result = await conversations.get_details(conversation_id, user_id)
    return envelope_response(result)


@router.get("/conversations/{conversation_id}/messages", status_code=200)
async def get_messages(
    conversation_id: str,
    limit: Optional[int] = Query(default=None, gt=0, le=500),
    user_id: str = Depends(current_user_id),
    messages: MessageRepository = Depends(get_message_repository),
):
    """
    Message history of a conversation, oldest first.

    **Errors**
    - 404: Conversation missing or caller is not a participant
    """
    denied = await _require_participant(conversation_id, user_id, messages.conversations)
    if denied is not None:
        return denied

    result = await messages.list(conversation_id, limit)
    return envelope_response(result)


@router.post("/conversations/{conversation_id}/messages", status_code=201)
async def send_message(
    conversation_id: str,
    data: SendMessageModel,
    user_id: str = Depends(current_user_id),
    messages: MessageRepository = Depends(get_message_repository),
):
    """
    Send a message to a conversation the caller belongs to.

    **Input**
    - `content`: message text (trimmed)
    - `media_url`, `media_type`: optional attachment

    **Errors**
    - 400: Neither content nor media
    - 404: Conversation missing or caller is not a participant
    """
    denied = await _require_participant(conversation_id, user_id, messages.conversations)
    if denied is not None:
        return denied

    result = await messages.send(
        conversation_id,
        user_id,
        data.content,
        media_url=data.media_url,
        media_type=data.media_type,
    )
    return envelope_response(result, success_status=status.HTTP_201_CREATED)


@router.post("/conversations/{conversation_id}/read", status_code=200)
async def mark_conversation_read(
    conversation_id: str,
    user_id: str = Depends(current_user_id),
    messages: MessageRepository = Depends(get_message_repository),
):
    denied = await _require_participant(conversation_id, user_id, messages.conversations)
    if denied is not None:
        return denied

    result = await messages.mark_read(conversation_id, user_id)
    return envelope_response(result)


@router.get("/conversations/{conversation_id}/unread", status_code=200)
async def get_conversation_unread_count(
    conversation_id: str,
    user_id: str = Depends(current_user_id),
    messages: MessageRepository = Depends(get_message_repository),
):
    denied = await _require_participant(conversation_id, user_id, messages.conversations)
    if denied is not None:
        return denied

    result = await messages.unread_count_for_conversation(conversation_id, user_id)
    return envelope_response(result)


@router.get("/unread", status_code=200)
async def get_unread_count(
    user_id: str = Depends(current_user_id),
    messages: MessageRepository = Depends(get_message_repository),
):
    """Inbox badge: unread messages across every conversation."""
    result = await messages.unread_count(user_id)
    return envelope_response(result)
