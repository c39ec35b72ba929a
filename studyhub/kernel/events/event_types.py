"""
Event payload schemas for the audit trail.

Used with EventStore.log_from_model so payloads stay consistent.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class BaseEvent(BaseModel):
    """Base event payload structure."""

    model_config = ConfigDict(extra="allow")

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = Field(default_factory=dict)


class GateVerifiedEvent(BaseEvent):
    """A skill passed every gate criterion."""

    skill_id: uuid.UUID
    p_mastery: float
    pass_count: int
    hours_between_passes: float
    triggering_attempt_id: Optional[uuid.UUID] = None


class SessionStatusEvent(BaseEvent):
    """A study session moved between lifecycle states."""

    from_status: str
    to_status: str


class AssetEvent(BaseEvent):
    """A generated asset reached a terminal state."""

    session_id: uuid.UUID
    asset_type: str
    status: str
    error: Optional[str] = None
    stats: Dict[str, int] = Field(default_factory=dict)


class JobEvent(BaseEvent):
    """Outcome of one job attempt."""

    job_type: str
    status: str
    attempts: int
    error: Optional[str] = None
    next_run_at: Optional[datetime] = None


class GroundingMissingEvent(BaseEvent):
    """One or more claims in an asset had no verified source."""

    asset_id: uuid.UUID
    claims: List[str] = Field(default_factory=list)
    strict_mode: bool = False
