"""Queued event model — the unit handed from producers to the server.

Learn: an event is produced once, consumed once, and never mutated in
between. It names its audience (a meeting, a tenant, or everyone) and
carries an arbitrary JSON payload.
"""

import time
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

EventTarget = Literal["meeting", "tenant", "all"]


class QueuedEvent(BaseModel):
    """A domain event waiting in the queue for the broadcast server."""

    model_config = ConfigDict(frozen=True)

    target: EventTarget
    meeting_id: Optional[str] = None
    tenant_id: Optional[str] = None
    type: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    queued_at: float = Field(default_factory=time.time)

    @model_validator(mode="after")
    def check_audience(self):
        if self.target == "meeting" and not self.meeting_id:
            raise ValueError("meeting events need a meeting_id")
        if self.target == "tenant" and not self.tenant_id:
            raise ValueError("tenant events need a tenant_id")
        return self

    @classmethod
    def for_meeting(cls, meeting_id: str, event_type: str, data: Optional[dict] = None) -> "QueuedEvent":
        return cls(target="meeting", meeting_id=meeting_id, type=event_type, data=data or {})

    @classmethod
    def for_tenant(cls, tenant_id: str, event_type: str, data: Optional[dict] = None) -> "QueuedEvent":
        return cls(target="tenant", tenant_id=tenant_id, type=event_type, data=data or {})

    @classmethod
    def for_all(cls, event_type: str, data: Optional[dict] = None) -> "QueuedEvent":
        return cls(target="all", type=event_type, data=data or {})

    def to_message(self, timestamp: str) -> dict[str, Any]:
        """Client-facing payload: {type, data, timestamp}."""
        return {"type": self.type, "data": self.data, "timestamp": timestamp}
