from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from linkup.profiles.schemas import User


class FollowRequestModel(BaseModel):
    following_id: str


class FollowResultModel(BaseModel):
    following: bool
    # True when the requested state already held before the call
    unchanged: bool = False


class FollowCounts(BaseModel):
    followers: int = 0
    following: int = 0


class ProfileSummary(BaseModel):
    """Everything the profile screen shows about one user."""

    profile: User
    counts: FollowCounts
    is_following: bool = False
    is_self: bool = False
    profile_found: bool = True
    msg: Optional[str] = None


class FollowListEntry(User):
    """A user on a follower / following list and when that follow started."""

    followed_at: Optional[datetime] = None
