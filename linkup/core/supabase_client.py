import logging
from typing import Optional

from supabase import AsyncClient, acreate_client

from linkup.core.settings import get_settings

logger = logging.getLogger(__name__)

_client: Optional[AsyncClient] = None


async def get_supabase() -> AsyncClient:
    """Return the process-wide async Supabase client, creating it on first use.

    Realtime channels are only available on the async client, so every
    repository shares this one instance.
    """
    global _client

    if _client is None:
        settings = get_settings()
        if not settings.supabase_url or not settings.supabase_key:
            raise RuntimeError(
                "PUBLIC_SUPABASE_URL and SECRET_API_KEY must be set to reach Supabase."
            )
        _client = await acreate_client(settings.supabase_url, settings.supabase_key)
        logger.info("Supabase client created url=%s", settings.supabase_url)

    return _client


def set_supabase(client: Optional[AsyncClient]) -> None:
    """Swap the shared client (used by tests and by the app shutdown hook)."""
    global _client
    _client = client
