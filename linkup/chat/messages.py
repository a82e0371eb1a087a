import logging
from typing import Dict, List, Optional

import httpx
from supabase import AsyncClient, PostgrestAPIError

from linkup.core.capabilities import MESSAGE_SENDER_PROFILE, Capabilities, negotiate
from linkup.core.errors import (
    Envelope,
    InvalidArgument,
    NotFound,
    TransientServiceError,
    envelope,
    ok,
)
from linkup.profiles.schemas import PROFILE_EMBED_COLUMNS, User, placeholder_user
from linkup.profiles.service import ProfileService, require_id

from .conversations import ConversationRepository, message_summary
from .schemas import EnrichedMessage, Message

logger = logging.getLogger(__name__)

MESSAGES_TABLE = "messages"
MESSAGE_COLUMNS = "id, conversation_id, sender_id, content, media_url, media_type, is_read, created_at"
DEFAULT_PAGE_SIZE = 50


class MessageRepository:
    def __init__(
        self,
        client: AsyncClient,
        profiles: ProfileService,
        conversations: Optional[ConversationRepository] = None,
        capabilities: Optional[Capabilities] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.client = client
        self.profiles = profiles
        self.conversations = conversations
        self.capabilities = capabilities or Capabilities()
        self.page_size = page_size

    def _sender_embed(self) -> str:
        return (
            f"sender_profile:{self.profiles.profile_table}!messages_sender_id_fkey"
            f"({PROFILE_EMBED_COLUMNS})"
        )

    def _enrich(self, row: dict, profile: Optional[User]) -> EnrichedMessage:
        if profile is None:
            logger.warning(
                "Sender profile %s for message %s unavailable, using placeholder",
                row.get("sender_id"),
                row.get("id"),
            )
            profile = placeholder_user(row.get("sender_id"))
        return EnrichedMessage.model_validate({**row, "sender_profile": profile})

    def _enrich_embedded(self, row: dict) -> EnrichedMessage:
        embedded = row.get("sender_profile")
        return self._enrich(row, User.model_validate(embedded) if embedded else None)

    @envelope("send_message")
    async def send(
        self,
        conversation_id: str,
        sender_id: str,
        content: Optional[str],
        media_url: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> Envelope:
        """
        Append a message to a conversation.

        Content is trimmed; a message needs text, media or both. Success means
        the row is stored. The attached sender profile is best-effort and
        falls back to a placeholder.

        **Errors**
        - `InvalidArgument`: bad ids, or no content and no media
        - `NotFound`: the conversation or sender does not exist
        """
        conversation_id = require_id(conversation_id, "conversation ID")
        sender_id = require_id(sender_id, "sender ID")

        content = (content or "").strip()
        if not content and not media_url:
            raise InvalidArgument("Message must have text content or attached media.")

        response = await (
            self.client.table(MESSAGES_TABLE)
            .insert(
                {
                    "conversation_id": conversation_id,
                    "sender_id": sender_id,
                    "content": content,
                    "media_url": media_url,
                    "media_type": media_type,
                }
            )
            .execute()
        )

        if not response.data:
            raise TransientServiceError("No message data returned from database")

        row = response.data[0]
        logger.info("Message %s stored in conversation %s", row.get("id"), conversation_id)

        message = await self._enrich_stored(row)

        if self.conversations is not None:
            await self.conversations.touch(
                conversation_id,
                message_summary(content, media_type),
                row.get("created_at"),
            )

        return ok(message)

    async def _enrich_stored(self, row: dict) -> EnrichedMessage:
        # the row is already durable, nothing past this point may fail the send
        async def joined() -> EnrichedMessage:
            response = await (
                self.client.table(MESSAGES_TABLE)
                .select(f"{MESSAGE_COLUMNS}, {self._sender_embed()}")
                .eq("id", row["id"])
                .limit(1)
                .execute()
            )
            if not response.data:
                return await separate()
            return self._enrich_embedded(response.data[0])

        async def separate() -> EnrichedMessage:
            profile = await self.profiles.profile_or_placeholder(row.get("sender_id"))
            return self._enrich(row, profile)

        try:
            return await negotiate(self.capabilities, MESSAGE_SENDER_PROFILE, joined, separate)
        except (PostgrestAPIError, httpx.HTTPError) as e:
            logger.warning("Sender lookup for message %s failed: %s", row.get("id"), e)
            return await separate()

    @envelope("list_messages")
    async def list(self, conversation_id: str, limit: Optional[int] = None) -> Envelope:
        """Up to `limit` messages of a conversation, oldest first, with senders."""
        conversation_id = require_id(conversation_id, "conversation ID")
        limit = self.page_size if limit is None else limit
        if limit <= 0:
            raise InvalidArgument("limit must be a positive integer.")

        messages = await negotiate(
            self.capabilities,
            MESSAGE_SENDER_PROFILE,
            lambda: self._list_joined(conversation_id, limit),
            lambda: self._list_separate(conversation_id, limit),
        )

        logger.debug("Fetched %s messages for conversation %s", len(messages), conversation_id)
        return ok(messages)

    async def _list_joined(self, conversation_id: str, limit: int) -> List[EnrichedMessage]:
        response = await (
            self.client.table(MESSAGES_TABLE)
            .select(f"{MESSAGE_COLUMNS}, {self._sender_embed()}")
            .eq("conversation_id", conversation_id)
            .order("created_at", desc=False)
            .limit(limit)
            .execute()
        )
        return [self._enrich_embedded(row) for row in response.data or []]

    async def _list_separate(self, conversation_id: str, limit: int) -> List[EnrichedMessage]:
        response = await (
            self.client.table(MESSAGES_TABLE)
            .select(MESSAGE_COLUMNS)
            .eq("conversation_id", conversation_id)
            .order("created_at", desc=False)
            .limit(limit)
            .execute()
        )

        rows = response.data or []
        if not rows:
            return []

        senders = await self._sender_profiles(row["sender_id"] for row in rows)
        return [self._enrich(row, senders.get(row["sender_id"])) for row in rows]

    async def _sender_profiles(self, sender_ids) -> Dict[str, User]:
        try:
            return await self.profiles.fetch_profiles(sender_ids, PROFILE_EMBED_COLUMNS)
        except (PostgrestAPIError, httpx.HTTPError) as e:
            logger.warning("Could not fetch sender profiles: %s", e)
            return {}

    @envelope("get_message")
    async def get(self, message_id: str) -> Envelope:
        """Re-read one stored message with its sender profile."""
        message_id = require_id(message_id, "message ID")

        async def joined() -> Optional[EnrichedMessage]:
            response = await (
                self.client.table(MESSAGES_TABLE)
                .select(f"{MESSAGE_COLUMNS}, {self._sender_embed()}")
                .eq("id", message_id)
                .limit(1)
                .execute()
            )
            return self._enrich_embedded(response.data[0]) if response.data else None

        async def separate() -> Optional[EnrichedMessage]:
            response = await (
                self.client.table(MESSAGES_TABLE)
                .select(MESSAGE_COLUMNS)
                .eq("id", message_id)
                .limit(1)
                .execute()
            )
            if not response.data:
                return None
            row = response.data[0]
            return self._enrich(row, await self.profiles.profile_or_placeholder(row["sender_id"]))

        message = await negotiate(self.capabilities, MESSAGE_SENDER_PROFILE, joined, separate)
        if message is None:
            raise NotFound("Message not found")
        return ok(message)

    @envelope("mark_messages_read")
    async def mark_read(self, conversation_id: str, reader_id: str) -> Envelope:
        """
        Mark every unread message in a conversation that `reader_id` did not
        send as read. Returns how many rows changed; zero is still a success.
        """
        conversation_id = require_id(conversation_id, "conversation ID")
        reader_id = require_id(reader_id, "reader ID")

        response = await (
            self.client.table(MESSAGES_TABLE)
            .update({"is_read": True})
            .eq("conversation_id", conversation_id)
            .neq("sender_id", reader_id)
            .eq("is_read", False)
            .execute()
        )

        updated = len(response.data or [])
        logger.info("Marked %s messages read in conversation %s for %s", updated, conversation_id, reader_id)
        return ok(updated)

    @envelope("unread_count")
    async def unread_count(self, reader_id: str) -> Envelope:
        """
        Inbox badge count: unread messages not sent by `reader_id`, across ALL
        conversations. Row-level security on `messages` is what limits this to
        conversations the reader belongs to. Use
        `unread_count_for_conversation` for a single thread.
        """
        reader_id = require_id(reader_id, "reader ID")

        response = await (
            self.client.table(MESSAGES_TABLE)
            .select("id", count="exact", head=True)
            .eq("is_read", False)
            .neq("sender_id", reader_id)
            .execute()
        )
        return ok(response.count or 0)

    @envelope("unread_count_for_conversation")
    async def unread_count_for_conversation(self, conversation_id: str, reader_id: str) -> Envelope:
        conversation_id = require_id(conversation_id, "conversation ID")
        reader_id = require_id(reader_id, "reader ID")

        response = await (
            self.client.table(MESSAGES_TABLE)
            .select("id", count="exact", head=True)
            .eq("conversation_id", conversation_id)
            .eq("is_read", False)
            .neq("sender_id", reader_id)
            .execute()
        )
        return ok(response.count or 0)

    @envelope("last_message")
    async def last_message(self, conversation_id: str) -> Envelope:
        conversation_id = require_id(conversation_id, "conversation ID")

        response = await (
            self.client.table(MESSAGES_TABLE)
            .select(MESSAGE_COLUMNS)
            .eq("conversation_id", conversation_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )

        if not response.data:
            return ok(None)
        return ok(Message.model_validate(response.data[0]))
