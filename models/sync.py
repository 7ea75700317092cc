"""
Change-feed event schemas for live sync.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """
    One row change on the posts table.

    record is the new row (insert/update); old_record is the previous row
    (delete carries at least its id).
    """

    type: ChangeType
    record: Optional[dict[str, Any]] = None
    old_record: Optional[dict[str, Any]] = None
    commit_timestamp: Optional[str] = None

    @property
    def row_id(self) -> Optional[str]:
        row = self.record if self.type != ChangeType.DELETE else self.old_record
        return (row or {}).get("id")

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ChangeEvent":
        """
        Build an event from a realtime payload.

        Accepts the realtime server shape
        ({"data": {"type", "record", "old_record"}}) and the client-library
        shape ({"eventType", "new", "old"}).

        Raises:
            ValueError: If the payload has no recognisable event type
        """
        if not isinstance(payload, dict):
            raise ValueError(f"Unexpected payload type: {type(payload).__name__}")

        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        event_type = data.get("type") or data.get("eventType")
        if not event_type:
            raise ValueError("Payload has no event type")

        return cls(
            type=str(event_type).upper(),
            record=data.get("record") or data.get("new") or None,
            old_record=data.get("old_record") or data.get("old") or None,
            commit_timestamp=data.get("commit_timestamp"),
        )


class SyncStatusResponse(BaseModel):
    online: bool
    posts_count: int = Field(..., ge=0)
    reconnect_attempts: int = Field(default=0, ge=0)
