"""
Remediation - diagnose a struggling skill and adjust the session mix for it.

Signals per (user, skill): p_mastery, recent attempt scores (30 days),
recurring error tags and the current run of failed attempts. Severity:

- severe: p < 0.4, >= 3 failed attempts in a row, or >= 3 recurring error tags
- moderate: p < 0.7, recent average below a checkpoint threshold, or any
  recurring error tag
- mild: only the timed issue-spotting average is below threshold

Applying a prescription: severe replaces the mix with the severe
remediation mix, moderate blends half of each at easy difficulty, mild adds
flashcards. Activity gates still run afterwards.
"""

import math
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.engines.generation.blueprint import (
    ActivityMixItem,
    ActivityType,
    Difficulty,
    _mix,
    scale_for_duration,
)
from studyhub.engines.mastery.mastery_update import MasteryUpdater
from studyhub.kernel.models import (
    HIGH_STAKES_MODES,
    Attempt,
    MasteryState,
    Skill,
    SkillErrorSignature,
    as_utc,
    utcnow,
)


class Severity(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


SEVERITY_ORDER = {Severity.SEVERE: 0, Severity.MODERATE: 1, Severity.MILD: 2}

LOOKBACK_DAYS = 30
WEAK_P_MASTERY = 0.4
STABLE_P_MASTERY = 0.7
MEMORY_CHECK_THRESHOLD = 0.7
QUIZ_THRESHOLD = 0.6
RULE_DRILL_THRESHOLD = 0.6
ISSUE_SPOTTER_THRESHOLD = 0.5
MAX_CONSECUTIVE_FAILURES = 3
REPEATED_ERROR_COUNT = 2
SEVERE_ERROR_PATTERNS = 3

# Minutes per item, for the prescription's time estimate
_ITEM_MINUTES = {
    ActivityType.READING_NOTES: 10,
    ActivityType.ESSAY_OUTLINE: 15,
    ActivityType.ISSUE_SPOTTER: 10,
}
_DEFAULT_ITEM_MINUTES = 3

A, D = ActivityType, Difficulty

MILD_REMEDIATION_MIX = _mix(
    (A.READING_NOTES, 1, D.MEDIUM),
    (A.FLASHCARDS, 4, D.EASY),
    (A.MEMORY_CHECK, 4, D.EASY),
    (A.WRITTEN_QUIZ, 3, D.EASY),
)
MODERATE_REMEDIATION_MIX = _mix(
    (A.READING_NOTES, 1, D.EASY),
    (A.FLASHCARDS, 6, D.EASY),
    (A.MEMORY_CHECK, 6, D.EASY),
    (A.RULE_ELEMENTS_DRILL, 4, D.EASY),
    (A.ERROR_CORRECTION, 3, D.MEDIUM),
    (A.WRITTEN_QUIZ, 3, D.EASY),
)
SEVERE_REMEDIATION_MIX = _mix(
    (A.READING_NOTES, 2, D.EASY),
    (A.FLASHCARDS, 8, D.EASY),
    (A.MEMORY_CHECK, 8, D.EASY),
    (A.RULE_ELEMENTS_DRILL, 6, D.EASY),
    (A.ERROR_CORRECTION, 5, D.EASY),
    (A.WRITTEN_QUIZ, 4, D.EASY),
)

REMEDIATION_MIXES = {
    Severity.MILD: MILD_REMEDIATION_MIX,
    Severity.MODERATE: MODERATE_REMEDIATION_MIX,
    Severity.SEVERE: SEVERE_REMEDIATION_MIX,
}


class ErrorPattern(BaseModel):
    error_tag: str
    count: int


class RemediationSignals(BaseModel):
    """Everything diagnose() looks at for one skill."""

    skill_id: uuid.UUID
    skill_name: str = ""
    p_mastery: float = 0.0
    # Newest first
    recent_scores: List[float] = Field(default_factory=list)
    recent_timed_scores: List[float] = Field(default_factory=list)
    error_patterns: List[ErrorPattern] = Field(default_factory=list)


class RemediationPrescription(BaseModel):
    skill_id: uuid.UUID
    skill_name: str = ""
    severity: Severity
    reasons: List[str]
    prescribed_activities: List[ActivityMixItem]
    estimated_minutes: int
    focus_areas: List[str] = Field(default_factory=list)
    error_patterns: List[ErrorPattern] = Field(default_factory=list)

    def apply_to(self, mix: Sequence[ActivityMixItem], minutes: int) -> List[ActivityMixItem]:
        return apply_remediation(mix, self, minutes)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def consecutive_failures(scores_newest_first: Iterable[float]) -> int:
    count = 0
    for score in scores_newest_first:
        if MasteryUpdater.is_pass(score):
            break
        count += 1
    return count


def _escalate(current: Optional[Severity], to: Severity) -> Severity:
    if current is None or SEVERITY_ORDER[to] < SEVERITY_ORDER[current]:
        return to
    return current


def estimate_minutes(mix: Sequence[ActivityMixItem]) -> int:
    return sum(m.count * _ITEM_MINUTES.get(m.activity_type, _DEFAULT_ITEM_MINUTES) for m in mix)


def diagnose(signals: RemediationSignals) -> Optional[RemediationPrescription]:
    """Prescription for a skill, or None when nothing needs remediating. Pure."""
    reasons: List[str] = []
    focus_areas: List[str] = []
    severity: Optional[Severity] = None

    p = signals.p_mastery
    if p < WEAK_P_MASTERY:
        reasons.append(f"Low mastery ({p * 100:.0f}%)")
        severity = _escalate(severity, Severity.SEVERE)
    elif p < STABLE_P_MASTERY:
        reasons.append(f"Developing mastery ({p * 100:.0f}%)")
        severity = _escalate(severity, Severity.MODERATE)

    if signals.recent_scores:
        average = _mean(signals.recent_scores)
        for threshold, reason, area in (
            (MEMORY_CHECK_THRESHOLD, "Memory check below threshold", "Memorization and recall"),
            (QUIZ_THRESHOLD, "Quiz score below threshold", "Written comprehension"),
            (RULE_DRILL_THRESHOLD, "Rule drill score below threshold", "Rule element identification"),
        ):
            if average < threshold:
                reasons.append(reason)
                focus_areas.append(area)
                severity = _escalate(severity, Severity.MODERATE)

    if signals.recent_timed_scores and _mean(signals.recent_timed_scores) < ISSUE_SPOTTER_THRESHOLD:
        reasons.append("Issue spotter average below threshold")
        focus_areas.append("Issue spotting under time pressure")
        severity = _escalate(severity, Severity.MILD)

    repeated = [e for e in signals.error_patterns if e.count >= REPEATED_ERROR_COUNT]
    if repeated:
        reasons.append(f"{len(repeated)} recurring error pattern(s)")
        severity = _escalate(
            severity,
            Severity.SEVERE if len(repeated) >= SEVERE_ERROR_PATTERNS else Severity.MODERATE,
        )
    if signals.error_patterns:
        top = max(signals.error_patterns, key=lambda e: (e.count, e.error_tag))
        focus_areas.append(f"Common error: {top.error_tag}")

    failures = consecutive_failures(signals.recent_scores)
    if failures >= MAX_CONSECUTIVE_FAILURES:
        reasons.append(f"{failures} consecutive failed attempts")
        severity = _escalate(severity, Severity.SEVERE)

    if severity is None:
        return None

    prescribed = [m.model_copy() for m in REMEDIATION_MIXES[severity]]
    return RemediationPrescription(
        skill_id=signals.skill_id,
        skill_name=signals.skill_name,
        severity=severity,
        reasons=reasons,
        prescribed_activities=prescribed,
        estimated_minutes=estimate_minutes(prescribed),
        focus_areas=focus_areas,
        error_patterns=repeated,
    )


def most_severe(prescriptions: Iterable[Optional[RemediationPrescription]]) -> Optional[RemediationPrescription]:
    found = [p for p in prescriptions if p is not None]
    if not found:
        return None
    return min(found, key=lambda p: SEVERITY_ORDER[p.severity])


def apply_remediation(
    mix: Sequence[ActivityMixItem],
    prescription: RemediationPrescription,
    minutes: int,
) -> List[ActivityMixItem]:
    if prescription.severity == Severity.SEVERE:
        return scale_for_duration(prescription.prescribed_activities, minutes)

    if prescription.severity == Severity.MODERATE:
        blended: Dict[ActivityType, ActivityMixItem] = {}
        for item in mix:
            blended[item.activity_type] = item.model_copy(update={
                "count": math.ceil(item.count * 0.5),
                "difficulty": Difficulty.EASY,
            })
        for item in scale_for_duration(prescription.prescribed_activities, minutes):
            half = math.ceil(item.count * 0.5)
            existing = blended.get(item.activity_type)
            if existing is not None:
                blended[item.activity_type] = existing.model_copy(update={"count": existing.count + half})
            else:
                blended[item.activity_type] = item.model_copy(update={"count": half})
        return list(blended.values())

    result = list(mix)
    for i, item in enumerate(result):
        if item.activity_type == A.FLASHCARDS:
            result[i] = item.model_copy(update={"count": item.count + 2, "difficulty": Difficulty.EASY})
            return result
    result.append(ActivityMixItem(activity_type=A.FLASHCARDS, count=4, difficulty=Difficulty.EASY))
    return result


class RemediationService:
    """Collects remediation signals from the database."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def signals(
        self,
        user_id: uuid.UUID,
        skill_ids: Sequence[uuid.UUID],
        now: Optional[datetime] = None,
    ) -> List[RemediationSignals]:
        """Signals for the practised skills among `skill_ids`."""
        ids = list(dict.fromkeys(skill_ids))
        if not ids:
            return []
        now = now or utcnow()

        states = {
            s.skill_id: s
            for s in (await self.session.execute(
                select(MasteryState).where(
                    MasteryState.user_id == user_id,
                    MasteryState.skill_id.in_(ids),
                )
            )).scalars().all()
        }
        practised = [sid for sid in ids if sid in states]
        if not practised:
            return []

        names = dict((await self.session.execute(
            select(Skill.id, Skill.name).where(Skill.id.in_(practised))
        )).all())

        since = now - timedelta(days=LOOKBACK_DAYS)
        attempts = (await self.session.execute(
            select(Attempt)
            .where(Attempt.user_id == user_id, Attempt.created_at >= since)
            .order_by(Attempt.created_at.desc())
        )).scalars().all()

        signatures = (await self.session.execute(
            select(SkillErrorSignature).where(
                SkillErrorSignature.user_id == user_id,
                SkillErrorSignature.skill_id.in_(practised),
                SkillErrorSignature.count > 0,
            )
        )).scalars().all()
        patterns: Dict[uuid.UUID, List[ErrorPattern]] = {}
        for signature in signatures:
            if signature.last_seen_at is not None and as_utc(signature.last_seen_at) < since:
                continue
            patterns.setdefault(signature.skill_id, []).append(
                ErrorPattern(error_tag=signature.error_tag, count=signature.count)
            )

        result: List[RemediationSignals] = []
        for skill_id in practised:
            key = str(skill_id)
            covering = [a for a in attempts if key in (a.skill_coverage or {})]
            result.append(RemediationSignals(
                skill_id=skill_id,
                skill_name=names.get(skill_id, ""),
                p_mastery=states[skill_id].p_mastery,
                recent_scores=[a.score for a in covering],
                recent_timed_scores=[a.score for a in covering if a.mode in HIGH_STAKES_MODES],
                error_patterns=sorted(patterns.get(skill_id, []), key=lambda e: (-e.count, e.error_tag)),
            ))
        return result

    async def prescribe(
        self,
        user_id: uuid.UUID,
        skill_ids: Sequence[uuid.UUID],
        now: Optional[datetime] = None,
    ) -> List[RemediationPrescription]:
        """Prescriptions for the given skills, most severe first."""
        found = [p for p in map(diagnose, await self.signals(user_id, skill_ids, now=now)) if p is not None]
        return sorted(found, key=lambda p: SEVERITY_ORDER[p.severity])
