from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field


class ConversationChange(BaseModel):
    """One insert/update/delete on a conversation row the user takes part in."""

    event_type: str
    record: Dict[str, Any] = Field(default_factory=dict)
    old_record: Dict[str, Any] = Field(default_factory=dict)


def parse_change(payload: Any) -> ConversationChange:
    """Normalize a postgres_changes payload into a ConversationChange.

    Realtime wraps the change under "data" with record/old_record keys; older
    servers send new/old at the top level.
    """
    if not isinstance(payload, Mapping):
        return ConversationChange(event_type="UNKNOWN")

    data: Mapping = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload
    event_type: Optional[str] = data.get("type") or data.get("eventType") or payload.get("eventType")
    record = data.get("record") or data.get("new") or {}
    old_record = data.get("old_record") or data.get("old") or {}

    return ConversationChange(
        event_type=str(event_type or "UNKNOWN").upper(),
        record=dict(record),
        old_record=dict(old_record),
    )
