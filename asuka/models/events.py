"""
Event models carried on the event bus.

World events arrive from game/world collaborators; bus events wrap every
notification the core publishes so subscribers see a uniform envelope.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from asuka.models.enums import Topic


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorldEvent(BaseModel):
    """
    Structured world-state change concerning one or more agents.

    The core does not interpret ``data``; it is stored in the agent's
    context and rendered for the reasoning backend.
    """
    event_id: str = Field(default_factory=_new_id, description="Unique event identifier")
    timestamp: datetime = Field(default_factory=_utcnow, description="When the event occurred")
    agent_ids: list[str] = Field(..., min_length=1, description="Agents this event concerns")
    kind: str = Field("message", description="Event kind, e.g. 'message' or 'item_dropped'")
    source: Optional[str] = Field(None, description="Originating collaborator (discord, game, ...)")
    data: dict[str, Any] = Field(default_factory=dict, description="Event-specific payload")

    def describe(self) -> str:
        origin = f" from {self.source}" if self.source else ""
        text = self.data.get("text")
        if text:
            return f"{self.kind}{origin}: {text}"
        return f"{self.kind}{origin}: {self.data}"


class BusEvent(BaseModel):
    """Envelope for every message published on the event bus"""
    event_id: str = Field(default_factory=_new_id)
    timestamp: datetime = Field(default_factory=_utcnow)
    topic: Topic

    agent_id: Optional[str] = Field(None, description="Agent the event is tagged with")
    sequence: Optional[int] = Field(None, description="Originating invocation sequence number")

    payload: Any = None
    details: dict[str, Any] = Field(default_factory=dict)
