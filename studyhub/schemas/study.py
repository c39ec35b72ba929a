"""
Study session schemas.
"""

import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AssetStatusSummary(BaseModel):
    """Per-asset status inside a readiness report."""

    asset_id: Optional[uuid.UUID] = None
    asset_type: str
    step_order: int
    status: str


class SessionReadiness(BaseModel):
    session_id: uuid.UUID
    status: str
    target_skill_ids: List[uuid.UUID]
    assets_ready: int
    assets_total: int
    assets: List[AssetStatusSummary]
    rationale: Optional[str] = None


class PrecomputeResult(BaseModel):
    sessions: List[SessionReadiness] = Field(default_factory=list)
    jobs_enqueued: int = 0
    # Unit id -> share of its skills never practised
    coverage_debt: Dict[str, float] = Field(default_factory=dict)


class StudyAssetResponse(BaseModel):
    """Asset response, including its grounding references and stats."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    session_id: uuid.UUID
    asset_type: str
    step_order: int
    status: str
    content: Optional[Dict[str, Any]] = None
    grounding_refs: Dict[str, Any] = Field(default_factory=dict)
    stats: Dict[str, int] = Field(default_factory=dict)
    activity_types: List[str] = Field(default_factory=list)
    generation_error: Optional[str] = None
    generation_started_at: Optional[datetime] = None
    generation_completed_at: Optional[datetime] = None


class StudySessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    session_date: date
    exam_date: Optional[date] = None
    target_skill_ids: List[uuid.UUID]
    estimated_minutes: int
    status: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    assets: List[StudyAssetResponse] = Field(default_factory=list)
