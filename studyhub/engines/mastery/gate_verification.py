"""
Gate Verification Engine - certifies a skill as durably learned.

A skill is verified only when ALL of these hold:
- p_mastery >= 0.85
- at least 2 passes (score >= 0.6) in timed/exam_sim mode within the lookback window
- the first qualifying pass and a later one are >= 24 hours apart
- none of the skill's top-3 historical error tags reappear in the later pass

check_gate() is pure. GateVerificationService assembles the snapshot from the
database and records the verification exactly once.
"""

import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.config import get_settings
from studyhub.kernel.events.event_store import EventStore
from studyhub.kernel.events.event_types import GateVerifiedEvent
from studyhub.kernel.models import (
    Attempt,
    EventType,
    GateVerificationRecord,
    HIGH_STAKES_MODES,
    MasteryState,
    SkillErrorSignature,
    as_utc,
    utcnow,
)
from studyhub.logging_config import get_logger

logger = get_logger(__name__)


class GateAttempt(BaseModel):
    """An attempt as seen by the gate: only what the criteria look at."""

    attempt_id: Optional[uuid.UUID] = None
    score: float
    mode: str
    submitted_at: datetime
    error_tags: List[str] = Field(default_factory=list)


class GateSnapshot(BaseModel):
    """Everything the gate decision depends on."""

    skill_id: uuid.UUID
    p_mastery: float
    is_verified: bool = False
    attempts: List[GateAttempt] = Field(default_factory=list)
    top_error_tags: List[str] = Field(default_factory=list)
    now: datetime


class GateCheckResult(BaseModel):
    """Outcome of a gate check. reasons is empty only when verified."""

    skill_id: uuid.UUID
    is_verified: bool
    already_verified: bool = False
    p_mastery: float
    pass_count: int = 0
    hours_between_passes: float = 0.0
    error_tags_cleared: bool = False
    checked_error_tags: List[str] = Field(default_factory=list)
    repeated_error_tags: List[str] = Field(default_factory=list)
    qualifying_attempt_ids: List[uuid.UUID] = Field(default_factory=list)
    reasons: List[str] = Field(default_factory=list)


class GateCriteria:
    """Thresholds; lookback and cooldown come from settings."""

    MIN_P_MASTERY = 0.85
    REQUIRED_PASSES = 2
    PASS_SCORE = 0.6
    TOP_ERROR_TAGS = 3


def check_gate(
    snapshot: GateSnapshot,
    lookback_days: int = 90,
    min_hours_between_passes: float = 24.0,
) -> GateCheckResult:
    """Evaluate all four criteria. Never raises on missing data."""
    reasons: List[str] = []

    meets_mastery = snapshot.p_mastery >= GateCriteria.MIN_P_MASTERY
    if not meets_mastery:
        reasons.append(
            f"p_mastery {snapshot.p_mastery * 100:.1f}% below required "
            f"{GateCriteria.MIN_P_MASTERY * 100:.0f}%"
        )

    window_start = snapshot.now - timedelta(days=lookback_days)
    passes = sorted(
        (
            a for a in snapshot.attempts
            if a.mode in HIGH_STAKES_MODES
            and a.score >= GateCriteria.PASS_SCORE
            and window_start <= a.submitted_at <= snapshot.now
        ),
        key=lambda a: a.submitted_at,
    )
    pass_count = len(passes)
    meets_passes = pass_count >= GateCriteria.REQUIRED_PASSES
    if not meets_passes:
        reasons.append(
            f"Only {pass_count}/{GateCriteria.REQUIRED_PASSES} timed or exam-simulation "
            f"passes in the last {lookback_days} days"
        )

    hours_between = 0.0
    meets_cooldown = False
    later_pass: Optional[GateAttempt] = None
    if pass_count >= 2:
        first = passes[0]
        # Earliest later pass that clears the cooldown, else the latest one
        for candidate in passes[1:]:
            gap = (candidate.submitted_at - first.submitted_at).total_seconds() / 3600
            if gap >= min_hours_between_passes:
                later_pass, hours_between, meets_cooldown = candidate, gap, True
                break
        if later_pass is None:
            later_pass = passes[-1]
            hours_between = (later_pass.submitted_at - first.submitted_at).total_seconds() / 3600
            reasons.append(
                f"insufficient cooldown: only {hours_between:.1f} hours between passes "
                f"(need {min_hours_between_passes:g})"
            )

    top = snapshot.top_error_tags[: GateCriteria.TOP_ERROR_TAGS]
    repeated: List[str] = []
    errors_cleared = False
    if later_pass is not None:
        repeated = [tag for tag in top if tag in set(later_pass.error_tags)]
        errors_cleared = not repeated
        if repeated:
            reasons.append(f"Top error tags repeated in later pass: {', '.join(repeated)}")

    is_verified = meets_mastery and meets_passes and meets_cooldown and errors_cleared
    qualifying: List[uuid.UUID] = []
    if later_pass is not None:
        qualifying = [a.attempt_id for a in (passes[0], later_pass) if a.attempt_id]

    return GateCheckResult(
        skill_id=snapshot.skill_id,
        is_verified=is_verified or snapshot.is_verified,
        already_verified=snapshot.is_verified,
        p_mastery=snapshot.p_mastery,
        pass_count=pass_count,
        hours_between_passes=round(hours_between, 2),
        error_tags_cleared=errors_cleared,
        checked_error_tags=top,
        repeated_error_tags=repeated,
        qualifying_attempt_ids=qualifying,
        reasons=[] if is_verified or snapshot.is_verified else reasons,
    )


class GateVerificationService:
    """Database-aware wrapper around check_gate()."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()
        self.event_store = EventStore(session)

    async def top_error_tags(self, user_id: uuid.UUID, skill_id: uuid.UUID, limit: int = 3) -> List[str]:
        result = await self.session.execute(
            select(SkillErrorSignature.error_tag)
            .where(
                SkillErrorSignature.user_id == user_id,
                SkillErrorSignature.skill_id == skill_id,
                SkillErrorSignature.count > 0,
            )
            .order_by(SkillErrorSignature.count.desc(), SkillErrorSignature.error_tag)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def skill_attempts(
        self,
        user_id: uuid.UUID,
        skill_id: uuid.UUID,
        since: datetime,
    ) -> List[GateAttempt]:
        """High-stakes attempts covering the skill since `since`."""
        result = await self.session.execute(
            select(Attempt)
            .where(
                Attempt.user_id == user_id,
                Attempt.mode.in_(HIGH_STAKES_MODES),
                Attempt.created_at >= since,
            )
            .order_by(Attempt.created_at)
        )
        key = str(skill_id)
        return [
            GateAttempt(
                attempt_id=a.id,
                score=a.score,
                mode=a.mode,
                submitted_at=as_utc(a.created_at),
                error_tags=list(a.error_tags or []),
            )
            for a in result.scalars().all()
            if key in (a.skill_coverage or {})
        ]

    async def build_snapshot(
        self,
        state: MasteryState,
        now: Optional[datetime] = None,
    ) -> GateSnapshot:
        now = now or utcnow()
        since = now - timedelta(days=self.settings.gate_lookback_days)
        attempts = await self.skill_attempts(state.user_id, state.skill_id, since)
        return GateSnapshot(
            skill_id=state.skill_id,
            p_mastery=state.p_mastery,
            is_verified=state.is_verified,
            attempts=attempts,
            top_error_tags=await self.top_error_tags(state.user_id, state.skill_id),
            now=now,
        )

    async def evaluate(self, state: MasteryState, now: Optional[datetime] = None) -> GateCheckResult:
        """Check the gate without writing anything."""
        snapshot = await self.build_snapshot(state, now=now)
        return check_gate(
            snapshot,
            lookback_days=self.settings.gate_lookback_days,
            min_hours_between_passes=self.settings.gate_min_hours_between_passes,
        )

    async def evaluate_and_record(
        self,
        state: MasteryState,
        triggering_attempt_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> GateCheckResult:
        """
        Check the gate and, on a first success, flip is_verified and write the
        GateVerificationRecord. Already-verified skills are left untouched.
        """
        result = await self.evaluate(state, now=now)
        if state.is_verified or not result.is_verified:
            return result

        verified_at = now or utcnow()
        state.is_verified = True
        state.verified_at = verified_at
        self.session.add(GateVerificationRecord(
            user_id=state.user_id,
            skill_id=state.skill_id,
            p_mastery=state.p_mastery,
            pass_count=result.pass_count,
            hours_between_passes=result.hours_between_passes,
            triggering_attempt_id=triggering_attempt_id,
            error_tags_cleared=result.checked_error_tags,
            verified_at=verified_at,
        ))
        await self.event_store.log_from_model(
            event_type=EventType.GATE_VERIFIED,
            entity_type="skill",
            entity_id=state.skill_id,
            user_id=state.user_id,
            payload_model=GateVerifiedEvent(
                skill_id=state.skill_id,
                p_mastery=state.p_mastery,
                pass_count=result.pass_count,
                hours_between_passes=result.hours_between_passes,
                triggering_attempt_id=triggering_attempt_id,
            ),
        )
        logger.info(
            "Skill verified",
            extra={
                "user_id": str(state.user_id),
                "skill_id": str(state.skill_id),
                "pass_count": result.pass_count,
            },
        )
        return result
