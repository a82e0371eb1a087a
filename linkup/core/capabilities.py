import logging
from typing import Awaitable, Callable, Set, TypeVar

from supabase import PostgrestAPIError

from linkup.core.errors import error_code, is_missing_capability

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONVERSATION_RPC = "conversation_rpc"
CONVERSATION_PROFILES = "conversation_profiles"
MESSAGE_SENDER_PROFILE = "message_sender_profile"
FOLLOW_PROFILES = "follow_profiles"


class Capabilities:
    """Optional storage features (foreign-key embeds, RPCs) known to be missing.

    Everything is assumed available until PostgREST answers with a structured
    "relationship / function not found" code, after which the richer path is
    skipped for the lifetime of this registry.
    """

    def __init__(self):
        self._missing: Set[str] = set()

    def available(self, name: str) -> bool:
        return name not in self._missing

    def mark_missing(self, name: str, reason: str = "") -> None:
        if name not in self._missing:
            logger.warning("Capability %s unavailable, degrading: %s", name, reason)
        self._missing.add(name)

    def reset(self) -> None:
        self._missing.clear()


async def negotiate(
    capabilities: Capabilities,
    name: str,
    primary: Callable[[], Awaitable[T]],
    degraded: Callable[[], Awaitable[T]],
) -> T:
    """Run `primary` while `name` is available, otherwise `degraded`.

    Only a missing-capability error switches paths; any other storage error
    propagates to the caller unchanged.
    """
    if capabilities.available(name):
        try:
            return await primary()
        except PostgrestAPIError as e:
            if not is_missing_capability(e):
                raise
            capabilities.mark_missing(name, f"{error_code(e)} {e.message}")

    logger.info("Using degraded path for %s", name)
    return await degraded()
