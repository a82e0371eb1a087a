import logging
from typing import Dict, Iterable, Optional

import httpx
from supabase import AsyncClient, PostgrestAPIError

from linkup.core.errors import (
    Envelope,
    InvalidArgument,
    NotFound,
    classify,
    envelope,
    ok,
)
from linkup.utils.canonical_pair import normalize_id

from .schemas import PROFILE_COLUMNS, User, placeholder_user

logger = logging.getLogger(__name__)

# strings that reach us when a caller serialized a missing id
SENTINEL_USER_IDS = {"undefined", "null", "none"}


def is_valid_user_id(user_id) -> bool:
    if user_id is None:
        return False
    value = str(user_id).strip()
    return bool(value) and value.lower() not in SENTINEL_USER_IDS


def require_id(value, label: str = "user ID") -> str:
    if not is_valid_user_id(value):
        raise InvalidArgument(f"Invalid {label} provided: {value!r}")
    return normalize_id(value)


class ProfileService:
    """Read access to the user directory table."""

    def __init__(self, client: AsyncClient, profile_table: str = "users"):
        self.client = client
        self.profile_table = profile_table

    @envelope("fetch_profile")
    async def fetch_profile(self, user_id: Optional[str]) -> Envelope:
        """
        Fetch one user's profile.

        Never leaves the caller without a profile: on an invalid id, a miss or
        a lookup error the envelope has `success=False` and `data` holds a
        placeholder user named "Unknown User" with the requested id.
        """
        if not is_valid_user_id(user_id):
            logger.warning("fetch_profile rejected invalid user id %r", user_id)
            raise InvalidArgument(
                "Invalid user ID provided",
                data=placeholder_user(str(user_id).strip() if user_id else None),
            )

        user_id = normalize_id(user_id)

        try:
            response = await (
                self.client.table(self.profile_table)
                .select(PROFILE_COLUMNS)
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            if not isinstance(e, (PostgrestAPIError, httpx.HTTPError)):
                logger.exception("Unexpected error looking up user %s", user_id)
            error = classify(e)
            error.data = placeholder_user(user_id)
            raise error

        if not response.data:
            logger.info("User %s not found in %s, using placeholder", user_id, self.profile_table)
            raise NotFound("User not found", data=placeholder_user(user_id))

        logger.debug("User %s found in %s", user_id, self.profile_table)
        return ok(User.model_validate(response.data[0]))

    async def profile_or_placeholder(self, user_id: Optional[str]) -> User:
        result = await self.fetch_profile(user_id)
        if not result.success:
            logger.warning(
                "Substituting placeholder profile for %s (%s)", user_id, result.code
            )
        return result.data

    async def fetch_profiles(self, user_ids: Iterable[str], columns: str = PROFILE_COLUMNS) -> Dict[str, User]:
        """Batch lookup; ids without a row are simply absent from the result.

        Storage errors propagate to the calling repository.
        """
        normalized = [normalize_id(uid) for uid in user_ids if is_valid_user_id(uid)]
        deduped = list(dict.fromkeys(normalized))
        if not deduped:
            return {}

        response = await (
            self.client.table(self.profile_table)
            .select(columns)
            .in_("id", deduped)
            .execute()
        )

        users = {}
        for row in response.data or []:
            user = User.model_validate(row)
            users[user.id] = user

        logger.debug(
            "Fetched profiles requested=%s returned=%s", len(deduped), len(users)
        )
        return users
