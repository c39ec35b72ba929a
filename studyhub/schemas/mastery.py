"""
Pydantic schemas for mastery API.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from studyhub.engines.mastery.gate_verification import GateCheckResult
from studyhub.engines.mastery.grader import GradingResult, RubricCriterion
from studyhub.kernel.models.mastery import AttemptFormat, AttemptMode


class AttemptSubmission(BaseModel):
    """A learner's answer to one item."""

    item_id: str = Field(..., min_length=1, max_length=100)
    prompt: str = ""
    response_text: str = ""
    format: AttemptFormat = AttemptFormat.WRITTEN
    mode: AttemptMode = AttemptMode.PRACTICE
    elapsed_seconds: Optional[int] = Field(default=None, ge=0)
    # skill_id -> coverage weight
    skill_coverage: Dict[uuid.UUID, float] = Field(..., min_length=1)
    rubric: List[RubricCriterion] = Field(default_factory=list)
    correct_answer: Optional[str] = None

    @field_validator("skill_coverage")
    @classmethod
    def _weights_non_negative(cls, v: Dict[uuid.UUID, float]) -> Dict[uuid.UUID, float]:
        for skill_id, weight in v.items():
            if weight < 0:
                raise ValueError(f"coverage weight for {skill_id} must be >= 0")
        return v


class SkillMasteryDelta(BaseModel):
    """How one skill moved because of an attempt."""

    skill_id: uuid.UUID
    p_before: float
    p_after: float
    delta: float
    stability: float
    easiness_factor: float
    interval_days: int
    next_review_date: datetime
    gate: GateCheckResult


class AttemptResponse(BaseModel):
    attempt_id: uuid.UUID
    grading: GradingResult
    skills: List[SkillMasteryDelta]


class MasteryStateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    skill_id: uuid.UUID
    p_mastery: float
    stability: float
    attempt_count: int
    correct_count: int
    consecutive_wrong: int
    easiness_factor: float
    interval_days: int
    is_verified: bool
    verified_at: Optional[datetime] = None
    next_review_date: Optional[datetime] = None
    last_practiced_at: Optional[datetime] = None


class SkillMasteryDetail(BaseModel):
    """Mastery state plus the gate's explanation of why it is (not) verified."""

    skill_id: uuid.UUID
    skill_name: str
    state: Optional[MasteryStateResponse] = None
    gate: GateCheckResult


class UnitReadiness(BaseModel):
    unit_id: uuid.UUID
    unit_name: str
    readiness: float
    skill_count: int
    verified_count: int


class EvidenceSummary(BaseModel):
    total_attempts: int
    by_format: Dict[str, int] = Field(default_factory=dict)
    by_mode: Dict[str, int] = Field(default_factory=dict)
    verified_skills: int
    last_attempt_at: Optional[datetime] = None


class ReadinessResponse(BaseModel):
    overall: float
    trend: str
    units: List[UnitReadiness]
    evidence: EvidenceSummary
