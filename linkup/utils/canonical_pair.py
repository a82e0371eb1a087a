import uuid
from typing import Mapping, Tuple


def normalize_id(user_id) -> str:
    """Strip an id and, when it is a UUID, lower-case it to the canonical form.

    Postgres compares uuid columns by value, which matches string order only
    for the lower-case hyphenated spelling.
    """
    value = str(user_id).strip()
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return value


def canonical_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    """Order two user ids so the smaller one always comes first.

    Conversations are stored as (participant_1, participant_2) with
    participant_1 < participant_2, which together with the UNIQUE constraint
    in chat/models.py keeps one row per unordered pair. Every lookup and
    insert must go through this function.
    """
    u1, u2 = sorted([normalize_id(user_a), normalize_id(user_b)])
    return u1, u2


def other_participant(conversation: Mapping, viewer_id: str) -> str:
    """Return the participant of a conversation row that is not the viewer."""
    if conversation.get("participant_1") == viewer_id:
        return conversation.get("participant_2")
    return conversation.get("participant_1")


def is_participant(conversation: Mapping, user_id: str) -> bool:
    return user_id in (conversation.get("participant_1"), conversation.get("participant_2"))
