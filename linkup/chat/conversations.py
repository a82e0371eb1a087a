import logging
from datetime import datetime, timezone
from typing import List, Optional

import httpx
from supabase import AsyncClient, PostgrestAPIError

from linkup.core.capabilities import (
    CONVERSATION_PROFILES,
    CONVERSATION_RPC,
    Capabilities,
    negotiate,
)
from linkup.core.errors import (
    Envelope,
    InvalidArgument,
    NotFound,
    envelope,
    error_code,
    is_missing_capability,
    is_unique_violation,
    ok,
)
from linkup.profiles.schemas import PROFILE_EMBED_COLUMNS, User, placeholder_user
from linkup.profiles.service import ProfileService, require_id
from linkup.utils.canonical_pair import canonical_pair, is_participant, other_participant

from .schemas import ConversationDetails, EnrichedConversation

logger = logging.getLogger(__name__)

CONVERSATIONS_TABLE = "conversations"
CONVERSATION_COLUMNS = "id, participant_1, participant_2, last_message, last_message_at, created_at, updated_at"
GET_OR_CREATE_RPC = "get_or_create_conversation_simple"


def participant_filter(user_id: str) -> str:
    return f"participant_1.eq.{user_id},participant_2.eq.{user_id}"


def message_summary(content: Optional[str], media_type: Optional[str] = None) -> str:
    """Text shown in the inbox list for a conversation's latest message."""
    if content:
        return content
    return f"[{media_type or 'media'}]"


class ConversationRepository:
    def __init__(
        self,
        client: AsyncClient,
        profiles: ProfileService,
        capabilities: Optional[Capabilities] = None,
    ):
        self.client = client
        self.profiles = profiles
        self.capabilities = capabilities or Capabilities()

    def _profile_embed(self, n: int) -> str:
        table = self.profiles.profile_table
        return (
            f"participant_{n}_profile:{table}!conversations_participant_{n}_fkey"
            f"({PROFILE_EMBED_COLUMNS})"
        )

    @envelope("get_or_create_conversation")
    async def get_or_create(self, user_a: str, user_b: str) -> Envelope:
        """
        Find or create the single conversation between two users.

        The server-side RPC does lookup-then-insert atomically. When it is
        absent or fails, the direct path selects then inserts using the same
        canonical ordering; the UNIQUE (participant_1, participant_2)
        constraint resolves concurrent first contact.

        **Returns**
        - `data`: the conversation id

        **Errors**
        - `InvalidArgument`: bad ids or both ids equal
        - `SchemaNotProvisioned`: the conversations table does not exist
        """
        user_a = require_id(user_a)
        user_b = require_id(user_b)
        if user_a == user_b:
            raise InvalidArgument("Cannot start a conversation with yourself.")

        # Canonical ordering (important for uniqueness)
        u1, u2 = canonical_pair(user_a, user_b)

        if self.capabilities.available(CONVERSATION_RPC):
            conversation_id = await self._get_or_create_rpc(u1, u2)
            if conversation_id:
                logger.info("Conversation %s resolved by RPC for %s/%s", conversation_id, u1, u2)
                return ok(conversation_id)

        conversation_id = await self._get_or_create_direct(u1, u2)
        return ok(conversation_id)

    async def _get_or_create_rpc(self, u1: str, u2: str) -> Optional[str]:
        try:
            response = await self.client.rpc(
                GET_OR_CREATE_RPC, {"user1_id": u1, "user2_id": u2}
            ).execute()
        except PostgrestAPIError as e:
            if is_missing_capability(e):
                self.capabilities.mark_missing(CONVERSATION_RPC, f"{error_code(e)} {e.message}")
            else:
                logger.warning("RPC %s failed, using direct method: %s", GET_OR_CREATE_RPC, e.message)
            return None
        except httpx.HTTPError as e:
            logger.warning("RPC %s failed, using direct method: %s", GET_OR_CREATE_RPC, e)
            return None

        data = response.data
        if isinstance(data, list):
            data = data[0] if data else None
        if isinstance(data, dict):
            data = data.get("id") or data.get(GET_OR_CREATE_RPC)

        if not data:
            logger.warning("RPC %s returned no conversation id", GET_OR_CREATE_RPC)
            return None
        return str(data)

    async def _find_pair(self, u1: str, u2: str) -> Optional[str]:
        response = await (
            self.client.table(CONVERSATIONS_TABLE)
            .select("id")
            .eq("participant_1", u1)
            .eq("participant_2", u2)
            .limit(1)
            .execute()
        )
        if response.data:
            return str(response.data[0]["id"])
        return None

    async def _get_or_create_direct(self, u1: str, u2: str) -> str:
        existing = await self._find_pair(u1, u2)
        if existing:
            logger.info("Found existing conversation %s", existing)
            return existing

        try:
            created = await (
                self.client.table(CONVERSATIONS_TABLE)
                .insert({"participant_1": u1, "participant_2": u2})
                .execute()
            )
        except PostgrestAPIError as e:
            if not is_unique_violation(e):
                raise
            # another client inserted the same pair between our select and insert
            logger.info("Conversation %s/%s created concurrently, re-reading", u1, u2)
            existing = await self._find_pair(u1, u2)
            if existing:
                return existing
            raise

        conversation_id = str(created.data[0]["id"])
        logger.info("Created new conversation %s for %s/%s", conversation_id, u1, u2)
        return conversation_id

    @envelope("list_conversations")
    async def list_for_user(self, user_id: str) -> Envelope:
        """
        List a user's conversations, newest activity first, each carrying the
        other participant's profile.
        """
        user_id = require_id(user_id)

        conversations = await negotiate(
            self.capabilities,
            CONVERSATION_PROFILES,
            lambda: self._list_joined(user_id),
            lambda: self._list_separate(user_id),
        )

        logger.debug("Found %s conversations for user %s", len(conversations), user_id)
        return ok(conversations)

    def _enrich(self, row: dict, user_id: str, profile: Optional[User]) -> EnrichedConversation:
        other_id = other_participant(row, user_id)
        if profile is None:
            logger.warning(
                "Profile for participant %s of conversation %s unavailable, using placeholder",
                other_id,
                row.get("id"),
            )
            profile = placeholder_user(other_id)
        return EnrichedConversation.model_validate({**row, "other_participant": profile})

    async def _list_joined(self, user_id: str) -> List[EnrichedConversation]:
        columns = f"{CONVERSATION_COLUMNS}, {self._profile_embed(1)}, {self._profile_embed(2)}"
        response = await (
            self.client.table(CONVERSATIONS_TABLE)
            .select(columns)
            .or_(participant_filter(user_id))
            .order("updated_at", desc=True)
            .execute()
        )

        conversations = []
        for row in response.data or []:
            if not is_participant(row, user_id):
                continue
            key = "participant_2_profile" if row.get("participant_1") == user_id else "participant_1_profile"
            embedded = row.get(key)
            profile = User.model_validate(embedded) if embedded else None
            conversations.append(self._enrich(row, user_id, profile))
        return conversations

    async def _list_separate(self, user_id: str) -> List[EnrichedConversation]:
        response = await (
            self.client.table(CONVERSATIONS_TABLE)
            .select(CONVERSATION_COLUMNS)
            .or_(participant_filter(user_id))
            .order("updated_at", desc=True)
            .execute()
        )

        rows = [row for row in response.data or [] if is_participant(row, user_id)]
        if not rows:
            return []

        other_ids = [other_participant(row, user_id) for row in rows]
        try:
            profiles = await self.profiles.fetch_profiles(other_ids, PROFILE_EMBED_COLUMNS)
        except (PostgrestAPIError, httpx.HTTPError) as e:
            logger.warning("Could not fetch participant profiles: %s", e)
            profiles = {}

        return [
            self._enrich(row, user_id, profiles.get(other_participant(row, user_id)))
            for row in rows
        ]

    @envelope("get_conversation")
    async def get_details(self, conversation_id: str, viewer_id: str) -> Envelope:
        """Conversation row plus the id of the participant who is not `viewer_id`."""
        conversation_id = require_id(conversation_id, "conversation ID")
        viewer_id = require_id(viewer_id)

        response = await (
            self.client.table(CONVERSATIONS_TABLE)
            .select(CONVERSATION_COLUMNS)
            .eq("id", conversation_id)
            .limit(1)
            .execute()
        )

        # a conversation the viewer is not part of is reported as missing
        if not response.data or not is_participant(response.data[0], viewer_id):
            raise NotFound("Conversation not found")

        row = response.data[0]
        return ok(
            ConversationDetails.model_validate(
                {**row, "other_user_id": other_participant(row, viewer_id)}
            )
        )

    async def touch(
        self,
        conversation_id: str,
        last_message: str,
        at: Optional[str] = None,
    ) -> bool:
        """Store the latest message summary on the conversation row.

        Best-effort: a failure is logged and reported as False.
        """
        at = at or datetime.now(timezone.utc).isoformat()
        try:
            await (
                self.client.table(CONVERSATIONS_TABLE)
                .update(
                    {
                        "last_message": last_message,
                        "last_message_at": at,
                        "updated_at": at,
                    }
                )
                .eq("id", conversation_id)
                .execute()
            )
        except (PostgrestAPIError, httpx.HTTPError) as e:
            logger.warning("Could not update conversation %s summary: %s", conversation_id, e)
            return False
        return True
