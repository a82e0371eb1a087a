from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field

from linkup.utils.env_helper import env_int, env_list, env_none_or_str


class Settings(BaseModel):
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    jwt_secret: Optional[str] = None

    # table holding public user attributes (the user directory)
    profile_table: str = "users"
    message_page_size: int = Field(default=50, gt=0)

    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:8081", "http://localhost:19006"]
    )


@lru_cache
def get_settings() -> Settings:
    return Settings(
        supabase_url=env_none_or_str("PUBLIC_SUPABASE_URL"),
        supabase_key=env_none_or_str("SECRET_API_KEY"),
        jwt_secret=env_none_or_str("SUPABASE_JWT_SECRET"),
        profile_table=env_none_or_str("LINKUP_PROFILE_TABLE", "users"),
        message_page_size=env_int("LINKUP_MESSAGE_PAGE_SIZE", 50),
        cors_origins=env_list(
            "LINKUP_CORS_ORIGINS", ["http://localhost:8081", "http://localhost:19006"]
        ),
    )
