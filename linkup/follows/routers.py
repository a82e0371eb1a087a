from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from linkup.core.dependencies import current_user_id, get_follow_service
from linkup.core.errors import envelope_response

from .schemas import FollowRequestModel
from .service import FollowService


router = APIRouter()


@router.post("", status_code=201)
async def follow_user(
    data: FollowRequestModel,
    user_id: str = Depends(current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    """
    Follow another user.

    **Returns**
    - `data.following`: always True on success
    - `data.unchanged`: True if the caller already followed the user

    **Errors**
    - 400: Following yourself or invalid id
    - 503: Follows table not provisioned
    """
    result = await follows.follow(user_id, data.following_id)
    success_status = status.HTTP_200_OK if result.success and result.data.unchanged else status.HTTP_201_CREATED
    return envelope_response(result, success_status=success_status)


@router.delete("/{following_id}", status_code=200)
async def unfollow_user(
    following_id: str,
    user_id: str = Depends(current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    result = await follows.unfollow(user_id, following_id)
    return envelope_response(result)


@router.get("/{user_id}/status", status_code=200)
async def get_follow_status(
    user_id: str,
    viewer_id: str = Depends(current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    """Whether the caller follows `user_id`."""
    result = await follows.is_following(viewer_id, user_id)
    return envelope_response(result)


@router.get("/{user_id}/summary", status_code=200)
async def get_profile_summary(
    user_id: str,
    viewer_id: str = Depends(current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    """
    Profile screen data: profile, follower/following counts and whether the
    caller follows this user.
    """
    result = await follows.profile_summary(viewer_id, user_id)
    return envelope_response(result)


@router.get("/{user_id}/followers", status_code=200)
async def get_followers(
    user_id: str,
    limit: Optional[int] = Query(default=None, gt=0, le=1000),
    _caller: str = Depends(current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    """
    Users following `user_id`, most recent first.

    **Returns**
    - `data`: profiles, each with `followed_at`
    """
    result = await follows.list_followers(user_id, limit)
    return envelope_response(result)


@router.get("/{user_id}/following", status_code=200)
async def get_following(
    user_id: str,
    limit: Optional[int] = Query(default=None, gt=0, le=1000),
    _caller: str = Depends(current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    """Users `user_id` follows, most recent first."""
    result = await follows.list_following(user_id, limit)
    return envelope_response(result)
