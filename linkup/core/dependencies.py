import jwt
import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from linkup.chat.conversations import ConversationRepository
from linkup.chat.messages import MessageRepository
from linkup.core.capabilities import Capabilities
from linkup.core.settings import get_settings
from linkup.core.supabase_client import get_supabase
from linkup.follows.service import FollowService
from linkup.profiles.service import ProfileService
from linkup.realtime.bridge import RealtimeBridge

logger = logging.getLogger(__name__)

security = HTTPBearer()

# shared so a missing relationship is detected once per process
capabilities = Capabilities()


def decode_token(token: str) -> dict:
    """Verify a Supabase access token and return its claims."""
    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        issuer=f"{settings.supabase_url}/auth/v1",
        options={"verify_aud": False},
        leeway=60,
    )


def verify_token(credentials: HTTPAuthorizationCredentials = Depends(security)):
    token = credentials.credentials

    try:
        return decode_token(token)

    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")

    except jwt.InvalidTokenError as e:
        logger.warning("JWT verification failed: %s", e)
        raise HTTPException(status_code=401, detail="Invalid token")


def current_user_id(payload: dict = Depends(verify_token)) -> str:
    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=401, detail="Token has no subject")
    return user_id


def user_id_from_token(token: Optional[str]) -> Optional[str]:
    """Websocket variant of current_user_id: None instead of an HTTP error."""
    if not token:
        return None
    try:
        payload = decode_token(token)
    except jwt.InvalidTokenError as e:
        logger.warning("Websocket JWT verification failed: %s", e)
        return None
    subject = payload.get("sub")
    return subject if isinstance(subject, str) and subject else None


async def get_profile_service() -> ProfileService:
    return ProfileService(await get_supabase(), get_settings().profile_table)


async def get_conversation_repository(
    profiles: ProfileService = Depends(get_profile_service),
) -> ConversationRepository:
    return ConversationRepository(profiles.client, profiles, capabilities)


async def get_message_repository(
    conversations: ConversationRepository = Depends(get_conversation_repository),
) -> MessageRepository:
    return MessageRepository(
        conversations.client,
        conversations.profiles,
        conversations,
        capabilities,
        page_size=get_settings().message_page_size,
    )


async def get_follow_service(
    profiles: ProfileService = Depends(get_profile_service),
) -> FollowService:
    return FollowService(profiles.client, profiles, capabilities)


async def get_realtime_bridge(
    messages: MessageRepository = Depends(get_message_repository),
) -> RealtimeBridge:
    return RealtimeBridge(messages.client, messages)
