import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from linkup.chat.schemas import EnrichedMessage
from linkup.core.dependencies import get_realtime_bridge, user_id_from_token
from linkup.core.errors import LinkupError

from .bridge import RealtimeBridge
from .schemas import ConversationChange

logger = logging.getLogger(__name__)
router = APIRouter()

POLICY_VIOLATION = 1008


def _extract_access_token(websocket: WebSocket) -> Optional[str]:
    auth_header = websocket.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return websocket.query_params.get("access_token")


async def _drain(websocket: WebSocket) -> None:
    # clients only listen; returns when they go away
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass


@router.websocket("/conversations/{conversation_id}")
async def stream_conversation(
    websocket: WebSocket,
    conversation_id: str,
    bridge: RealtimeBridge = Depends(get_realtime_bridge),
):
    """Push every new message of a conversation to a participant as JSON."""
    user_id = user_id_from_token(_extract_access_token(websocket))
    if user_id is None:
        await websocket.close(code=POLICY_VIOLATION)
        return

    details = await bridge.messages.conversations.get_details(conversation_id, user_id)
    if not details.success:
        logger.warning("Realtime access denied user=%s conversation=%s", user_id, conversation_id)
        await websocket.close(code=POLICY_VIOLATION)
        return

    await websocket.accept()

    async def forward(message: EnrichedMessage):
        await websocket.send_json({"type": "message", "data": message.model_dump(mode="json")})

    try:
        subscription = await bridge.subscribe_to_conversation(conversation_id, forward)
    except LinkupError as e:
        await websocket.close(code=POLICY_VIOLATION, reason=e.message)
        return

    try:
        await _drain(websocket)
    finally:
        await subscription.cancel()
        logger.info("Realtime stream closed user=%s conversation=%s", user_id, conversation_id)


@router.websocket("/inbox")
async def stream_inbox(
    websocket: WebSocket,
    bridge: RealtimeBridge = Depends(get_realtime_bridge),
):
    """Push changes to any of the caller's conversations as JSON."""
    user_id = user_id_from_token(_extract_access_token(websocket))
    if user_id is None:
        await websocket.close(code=POLICY_VIOLATION)
        return

    await websocket.accept()

    async def forward(change: ConversationChange):
        await websocket.send_json({"type": "conversation", "data": change.model_dump(mode="json")})

    subscription = await bridge.subscribe_to_user_conversations(user_id, forward)
    try:
        await _drain(websocket)
    finally:
        await subscription.cancel()
        logger.info("Realtime inbox stream closed user=%s", user_id)
