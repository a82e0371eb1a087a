from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_USER_NAME = "Unknown User"

# columns requested from the user directory for a full profile
PROFILE_COLUMNS = "id, name, username, image, bio, email, phoneNumber, address, created_at"
# the subset embedded next to messages and conversations
PROFILE_EMBED_COLUMNS = "id, name, username, image"


class User(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: Optional[str] = None
    username: Optional[str] = None
    image: Optional[str] = None
    bio: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    address: Optional[str] = None
    created_at: Optional[datetime] = None


def placeholder_user(user_id: Optional[str]) -> User:
    """Build a fresh stand-in profile for a user that could not be resolved."""
    return User(id=user_id or "unknown", name=UNKNOWN_USER_NAME)
