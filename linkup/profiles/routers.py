from fastapi import APIRouter, Depends

from linkup.core.dependencies import current_user_id, get_profile_service
from linkup.core.errors import envelope_response

from .service import ProfileService


router = APIRouter()


@router.get("/me", status_code=200)
async def get_my_profile(
    user_id: str = Depends(current_user_id),
    profiles: ProfileService = Depends(get_profile_service),
):
    result = await profiles.fetch_profile(user_id)
    return envelope_response(result)


@router.get("/{user_id}", status_code=200)
async def get_profile(
    user_id: str,
    _caller: str = Depends(current_user_id),
    profiles: ProfileService = Depends(get_profile_service),
):
    """
    Public profile of a user.

    **Errors**
    - 400: Invalid id (`data` still holds a placeholder profile)
    - 404: No such user (`data` holds the "Unknown User" placeholder)
    """
    result = await profiles.fetch_profile(user_id)
    return envelope_response(result)
