import logging
from typing import List, Optional

from supabase import AsyncClient, PostgrestAPIError

from linkup.core.capabilities import FOLLOW_PROFILES, Capabilities, negotiate
from linkup.core.errors import Envelope, InvalidArgument, envelope, is_unique_violation, ok
from linkup.profiles.service import ProfileService, is_valid_user_id, require_id
from linkup.utils.canonical_pair import normalize_id

from .schemas import FollowCounts, FollowListEntry, FollowResultModel, ProfileSummary

logger = logging.getLogger(__name__)

FOLLOWS_TABLE = "follows"
# profile fields shown on the follower / following screens
FOLLOW_LIST_COLUMNS = "id, name, username, image, bio, email"

# side -> (column matching the user, column holding the other end)
EDGE_SIDES = {
    "followers": ("following_id", "follower_id"),
    "following": ("follower_id", "following_id"),
}


class FollowService:
    """Follow edges between users and the counts shown on a profile."""

    def __init__(
        self,
        client: AsyncClient,
        profiles: ProfileService,
        capabilities: Optional[Capabilities] = None,
    ):
        self.client = client
        self.profiles = profiles
        self.capabilities = capabilities or Capabilities()

    async def _edge_exists(self, follower_id: str, following_id: str) -> bool:
        response = await (
            self.client.table(FOLLOWS_TABLE)
            .select("id")
            .eq("follower_id", follower_id)
            .eq("following_id", following_id)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    @envelope("follow_user")
    async def follow(self, follower_id: str, following_id: str) -> Envelope:
        """
        Make `follower_id` follow `following_id`.

        Following someone already followed is a success with
        `unchanged=True`, whether the duplicate is seen by the pre-check or by
        the UNIQUE constraint.
        """
        follower_id = require_id(follower_id, "follower ID")
        following_id = require_id(following_id, "following ID")
        if follower_id == following_id:
            raise InvalidArgument("Cannot follow yourself.")

        if await self._edge_exists(follower_id, following_id):
            return ok(FollowResultModel(following=True, unchanged=True), msg="Already following this user")

        try:
            await (
                self.client.table(FOLLOWS_TABLE)
                .insert({"follower_id": follower_id, "following_id": following_id})
                .execute()
            )
        except PostgrestAPIError as e:
            if not is_unique_violation(e):
                raise
            return ok(FollowResultModel(following=True, unchanged=True), msg="Already following this user")

        logger.info("User %s now follows %s", follower_id, following_id)
        return ok(FollowResultModel(following=True))

    @envelope("unfollow_user")
    async def unfollow(self, follower_id: str, following_id: str) -> Envelope:
        follower_id = require_id(follower_id, "follower ID")
        following_id = require_id(following_id, "following ID")
        if follower_id == following_id:
            raise InvalidArgument("Cannot unfollow yourself.")

        if not await self._edge_exists(follower_id, following_id):
            return ok(FollowResultModel(following=False, unchanged=True), msg="Not following this user")

        await (
            self.client.table(FOLLOWS_TABLE)
            .delete()
            .eq("follower_id", follower_id)
            .eq("following_id", following_id)
            .execute()
        )

        logger.info("User %s unfollowed %s", follower_id, following_id)
        return ok(FollowResultModel(following=False))

    @envelope("is_following")
    async def is_following(self, follower_id: str, following_id: str) -> Envelope:
        follower_id = require_id(follower_id, "follower ID")
        following_id = require_id(following_id, "following ID")

        # Can't follow yourself
        if follower_id == following_id:
            return ok(False)

        return ok(await self._edge_exists(follower_id, following_id))

    async def _count_edges(self, user_id: str, side: str) -> int:
        # the database counts; no rows come back, so the row cap never applies
        match_column, _ = EDGE_SIDES[side]
        response = await (
            self.client.table(FOLLOWS_TABLE)
            .select("id", count="exact", head=True)
            .eq(match_column, user_id)
            .execute()
        )
        return response.count or 0

    @envelope("follower_count")
    async def follower_count(self, user_id: str) -> Envelope:
        return ok(await self._count_edges(require_id(user_id), "followers"))

    @envelope("following_count")
    async def following_count(self, user_id: str) -> Envelope:
        return ok(await self._count_edges(require_id(user_id), "following"))

    async def _list_edges(self, user_id: str, side: str, limit: Optional[int]) -> List[FollowListEntry]:
        match_column, other_column = EDGE_SIDES[side]
        alias = other_column.replace("_id", "")

        def query(columns: str):
            builder = (
                self.client.table(FOLLOWS_TABLE)
                .select(columns)
                .eq(match_column, user_id)
                .order("created_at", desc=True)
            )
            return builder.limit(limit) if limit else builder

        async def joined() -> List[FollowListEntry]:
            embed = (
                f"{alias}:{self.profiles.profile_table}!follows_{other_column}_fkey"
                f"({FOLLOW_LIST_COLUMNS})"
            )
            response = await query(f"{other_column}, created_at, {embed}").execute()
            return [
                FollowListEntry.model_validate({**row[alias], "followed_at": row.get("created_at")})
                for row in response.data or []
                if row.get(alias) and row[alias].get("id")
            ]

        async def separate() -> List[FollowListEntry]:
            response = await query(f"{other_column}, created_at").execute()
            rows = response.data or []
            if not rows:
                return []

            users = await self.profiles.fetch_profiles(
                (row[other_column] for row in rows), FOLLOW_LIST_COLUMNS
            )
            return [
                FollowListEntry.model_validate(
                    {**users[row[other_column]].model_dump(), "followed_at": row.get("created_at")}
                )
                for row in rows
                if row[other_column] in users
            ]

        entries = await negotiate(self.capabilities, FOLLOW_PROFILES, joined, separate)
        logger.debug("Listed %s %s for %s", len(entries), side, user_id)
        return entries

    @envelope("list_followers")
    async def list_followers(self, user_id: str, limit: Optional[int] = None) -> Envelope:
        """Users following `user_id`, most recent follow first, with `followed_at`."""
        return ok(await self._list_edges(require_id(user_id), "followers", limit))

    @envelope("list_following")
    async def list_following(self, user_id: str, limit: Optional[int] = None) -> Envelope:
        """Users `user_id` follows, most recent follow first, with `followed_at`."""
        return ok(await self._list_edges(require_id(user_id), "following", limit))

    @envelope("profile_summary")
    async def profile_summary(self, viewer_id: Optional[str], user_id: str) -> Envelope:
        """
        Profile, follower/following counts and follow state in one call.

        Counts that cannot be loaded default to 0 and an unknown profile comes
        back as the "Unknown User" placeholder, so the screen always renders.
        """
        user_id = require_id(user_id)

        profile_result = await self.profiles.fetch_profile(user_id)
        followers = await self.follower_count(user_id)
        following = await self.following_count(user_id)

        for label, result in (("followers", followers), ("following", following)):
            if not result.success:
                logger.warning("Could not load %s count for %s: %s", label, user_id, result.msg)

        viewer_id = normalize_id(viewer_id) if is_valid_user_id(viewer_id) else None
        is_self = viewer_id == user_id
        is_following = False
        if viewer_id is not None and not is_self:
            follow_state = await self.is_following(viewer_id, user_id)
            is_following = bool(follow_state.data) if follow_state.success else False

        return ok(
            ProfileSummary(
                profile=profile_result.data,
                counts=FollowCounts(
                    followers=followers.data if followers.success else 0,
                    following=following.data if following.success else 0,
                ),
                is_following=is_following,
                is_self=is_self,
                profile_found=profile_result.success,
                msg=profile_result.msg,
            )
        )
