"""
Session Blueprint - decides which activities a session contains.

Priority:
1. Any weak skill (p < 0.4 or >= 3 consecutive wrong) -> remediation mix
2. All skills strong (p > 0.8) -> application mix
3. Otherwise a default mix by session length, adjusted for exam phase
Then activity gates remove activities the learner has not unlocked, blocked
slots are reallocated to foundational activities, and the mix is topped up
to at least MIN_DISTINCT_ACTIVITIES types.

A target skill with no mastery row yet counts as p=0 with no attempts, so a
new learner starts behind every gate. A remediation prescription, when given,
is applied to the base mix before gating.
"""

import math
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Set

from pydantic import BaseModel, Field

from studyhub.kernel.models.study import AssetType

if TYPE_CHECKING:
    from studyhub.engines.generation.remediation import RemediationPrescription


class ActivityType(str, Enum):
    READING_NOTES = "READING_NOTES"
    MEMORY_CHECK = "MEMORY_CHECK"
    FLASHCARDS = "FLASHCARDS"
    WRITTEN_QUIZ = "WRITTEN_QUIZ"
    ISSUE_SPOTTER = "ISSUE_SPOTTER"
    RULE_ELEMENTS_DRILL = "RULE_ELEMENTS_DRILL"
    ESSAY_OUTLINE = "ESSAY_OUTLINE"
    FULL_ESSAY = "FULL_ESSAY"
    PAST_PAPER_STYLE = "PAST_PAPER_STYLE"
    ERROR_CORRECTION = "ERROR_CORRECTION"
    MIXED_REVIEW = "MIXED_REVIEW"


class SessionFocus(str, Enum):
    RULES = "RULES"
    APPLICATION = "APPLICATION"
    MIXED = "MIXED"


class ExamPhase(str, Enum):
    DISTANT = "distant"
    APPROACHING = "approaching"
    CRITICAL = "critical"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class ActivityMixItem(BaseModel):
    activity_type: ActivityType
    count: int = Field(..., ge=1)
    difficulty: Difficulty = Difficulty.MEDIUM


class SkillMasterySnapshot(BaseModel):
    skill_id: uuid.UUID
    p_mastery: float = 0.0
    consecutive_wrong: int = 0
    reps: int = 0


class ActivityGate(BaseModel):
    """An unlock rule: pass it before the blocked activities are offered."""

    gate_id: str
    name: str
    min_score: float
    min_attempts: int = 0
    max_consecutive_wrong: Optional[int] = None
    blocks: List[ActivityType]


class GateEvaluation(BaseModel):
    gate_id: str
    skill_id: uuid.UUID
    is_passed: bool
    blocked: List[ActivityType] = Field(default_factory=list)
    recommendation: Optional[str] = None


class SessionBlueprint(BaseModel):
    target_skill_ids: List[uuid.UUID]
    minutes: int
    phase: ExamPhase
    focus: SessionFocus
    activity_mix: List[ActivityMixItem]
    removed_activities: List[ActivityType] = Field(default_factory=list)
    gate_results: List[GateEvaluation] = Field(default_factory=list)
    remediation_severity: Optional[str] = None
    remediation_reasons: List[str] = Field(default_factory=list)

    @property
    def activity_types(self) -> List[ActivityType]:
        return [m.activity_type for m in self.activity_mix]

    def items_for_asset(self, asset_type: AssetType) -> List[ActivityMixItem]:
        wanted = ASSET_ACTIVITIES[asset_type]
        return [m for m in self.activity_mix if m.activity_type in wanted]


def _mix(*items: tuple) -> List[ActivityMixItem]:
    return [ActivityMixItem(activity_type=a, count=c, difficulty=d) for a, c, d in items]


A, D = ActivityType, Difficulty

DEFAULT_MIX_30 = _mix(
    (A.READING_NOTES, 1, D.MEDIUM),
    (A.MEMORY_CHECK, 4, D.MEDIUM),
    (A.FLASHCARDS, 4, D.EASY),
    (A.WRITTEN_QUIZ, 4, D.MEDIUM),
    (A.RULE_ELEMENTS_DRILL, 3, D.MEDIUM),
)
DEFAULT_MIX_45 = _mix(
    (A.READING_NOTES, 1, D.MEDIUM),
    (A.MEMORY_CHECK, 6, D.MEDIUM),
    (A.FLASHCARDS, 6, D.EASY),
    (A.WRITTEN_QUIZ, 6, D.MEDIUM),
    (A.ISSUE_SPOTTER, 1, D.HARD),
    (A.RULE_ELEMENTS_DRILL, 4, D.MEDIUM),
)
DEFAULT_MIX_60 = _mix(
    (A.READING_NOTES, 1, D.MEDIUM),
    (A.MEMORY_CHECK, 8, D.MEDIUM),
    (A.FLASHCARDS, 8, D.EASY),
    (A.WRITTEN_QUIZ, 8, D.MEDIUM),
    (A.ISSUE_SPOTTER, 2, D.HARD),
    (A.RULE_ELEMENTS_DRILL, 5, D.MEDIUM),
    (A.ESSAY_OUTLINE, 1, D.HARD),
)
WEAK_SKILL_MIX = _mix(
    (A.READING_NOTES, 1, D.EASY),
    (A.MEMORY_CHECK, 4, D.EASY),
    (A.FLASHCARDS, 8, D.EASY),
    (A.RULE_ELEMENTS_DRILL, 6, D.EASY),
    (A.ERROR_CORRECTION, 3, D.MEDIUM),
    (A.WRITTEN_QUIZ, 3, D.EASY),
)
STRONG_SKILL_MIX = _mix(
    (A.READING_NOTES, 1, D.HARD),
    (A.MEMORY_CHECK, 4, D.HARD),
    (A.ISSUE_SPOTTER, 2, D.HARD),
    (A.WRITTEN_QUIZ, 6, D.HARD),
    (A.ESSAY_OUTLINE, 1, D.HARD),
    (A.PAST_PAPER_STYLE, 1, D.HARD),
)

ACTIVITY_GATES: List[ActivityGate] = [
    ActivityGate(
        gate_id="memory_gate",
        name="Memory Check Gate",
        min_score=0.7,
        min_attempts=3,
        max_consecutive_wrong=2,
        blocks=[A.WRITTEN_QUIZ, A.ISSUE_SPOTTER, A.ESSAY_OUTLINE, A.PAST_PAPER_STYLE],
    ),
    ActivityGate(
        gate_id="quiz_gate",
        name="Written Quiz Gate",
        min_score=0.6,
        min_attempts=2,
        max_consecutive_wrong=3,
        blocks=[A.ISSUE_SPOTTER, A.ESSAY_OUTLINE, A.PAST_PAPER_STYLE],
    ),
    ActivityGate(
        gate_id="application_gate",
        name="Application Gate",
        min_score=0.5,
        min_attempts=1,
        max_consecutive_wrong=2,
        blocks=[A.FULL_ESSAY, A.PAST_PAPER_STYLE],
    ),
]

FOUNDATIONAL_ACTIVITIES = (A.MEMORY_CHECK, A.FLASHCARDS, A.RULE_ELEMENTS_DRILL)
# Filler order when a mix has too few distinct activities
FILLER_ACTIVITIES = (A.MEMORY_CHECK, A.FLASHCARDS, A.RULE_ELEMENTS_DRILL, A.WRITTEN_QUIZ, A.ERROR_CORRECTION)
APPLICATION_ACTIVITIES = {A.ISSUE_SPOTTER, A.ESSAY_OUTLINE, A.FULL_ESSAY, A.PAST_PAPER_STYLE}
RULE_ACTIVITIES = {A.RULE_ELEMENTS_DRILL, A.MEMORY_CHECK, A.FLASHCARDS}
MIN_DISTINCT_ACTIVITIES = 3

ASSET_ACTIVITIES: Dict[AssetType, Set[ActivityType]] = {
    AssetType.NOTES: {A.READING_NOTES},
    AssetType.CHECKPOINT: {A.MEMORY_CHECK, A.FLASHCARDS},
    AssetType.PRACTICE_SET: {
        A.WRITTEN_QUIZ, A.ISSUE_SPOTTER, A.RULE_ELEMENTS_DRILL, A.ESSAY_OUTLINE,
        A.FULL_ESSAY, A.PAST_PAPER_STYLE, A.ERROR_CORRECTION, A.MIXED_REVIEW,
    },
    AssetType.RUBRIC: {A.WRITTEN_QUIZ, A.ISSUE_SPOTTER, A.ESSAY_OUTLINE, A.FULL_ESSAY, A.PAST_PAPER_STYLE},
}

WEAK_P_MASTERY = 0.4
WEAK_CONSECUTIVE_WRONG = 3
STRONG_P_MASTERY = 0.8
BASELINE_MINUTES = 45


def exam_phase(days_to_exam: Optional[int]) -> ExamPhase:
    """0-7 days critical, 8-59 approaching, 60+ (or unknown) distant."""
    if days_to_exam is None or days_to_exam >= 60:
        return ExamPhase.DISTANT
    if days_to_exam <= 7:
        return ExamPhase.CRITICAL
    return ExamPhase.APPROACHING


def evaluate_activity_gate(gate: ActivityGate, mastery: SkillMasterySnapshot) -> GateEvaluation:
    meets_score = mastery.p_mastery >= gate.min_score
    meets_attempts = mastery.reps >= gate.min_attempts
    within_wrong = gate.max_consecutive_wrong is None or mastery.consecutive_wrong <= gate.max_consecutive_wrong
    passed = meets_score and meets_attempts and within_wrong

    recommendation = None
    if not meets_score:
        recommendation = f"Score {mastery.p_mastery * 100:.0f}% is below {gate.min_score * 100:.0f}% threshold"
    elif not meets_attempts:
        recommendation = f"Need {gate.min_attempts - mastery.reps} more attempts"
    elif not within_wrong:
        recommendation = "Too many consecutive wrong answers - review the material"

    return GateEvaluation(
        gate_id=gate.gate_id,
        skill_id=mastery.skill_id,
        is_passed=passed,
        blocked=[] if passed else list(gate.blocks),
        recommendation=recommendation,
    )


def blocked_activities(mastery: Sequence[SkillMasterySnapshot]) -> tuple[Set[ActivityType], List[GateEvaluation]]:
    blocked: Set[ActivityType] = set()
    results: List[GateEvaluation] = []
    for snapshot in mastery:
        for gate in ACTIVITY_GATES:
            evaluation = evaluate_activity_gate(gate, snapshot)
            results.append(evaluation)
            blocked.update(evaluation.blocked)
    return blocked, results


def scale_for_duration(mix: List[ActivityMixItem], minutes: int) -> List[ActivityMixItem]:
    factor = minutes / BASELINE_MINUTES
    return [m.model_copy(update={"count": max(1, round(m.count * factor))}) for m in mix]


def apply_phase(mix: List[ActivityMixItem], phase: ExamPhase) -> List[ActivityMixItem]:
    if phase == ExamPhase.CRITICAL:
        adjusted = []
        for m in mix:
            if m.activity_type == A.READING_NOTES:
                adjusted.append(m.model_copy(update={"count": 1}))
            elif m.activity_type in (A.WRITTEN_QUIZ, A.ISSUE_SPOTTER, A.PAST_PAPER_STYLE):
                adjusted.append(m.model_copy(update={"count": math.ceil(m.count * 1.5)}))
            else:
                adjusted.append(m)
        return adjusted
    if phase == ExamPhase.APPROACHING and not any(m.activity_type == A.ESSAY_OUTLINE for m in mix):
        return [*mix, ActivityMixItem(activity_type=A.ESSAY_OUTLINE, count=1, difficulty=D.MEDIUM)]
    return list(mix)


def reallocate_blocked(
    mix: List[ActivityMixItem],
    blocked: Set[ActivityType],
) -> tuple[List[ActivityMixItem], List[ActivityType]]:
    """Drop blocked activities and add their slots to foundational ones."""
    removed = [m.activity_type for m in mix if m.activity_type in blocked]
    kept = [m for m in mix if m.activity_type not in blocked]
    if not removed:
        return kept, removed
    extra = math.ceil(len(removed) / 3)
    kept = [
        m.model_copy(update={"count": m.count + extra}) if m.activity_type in FOUNDATIONAL_ACTIVITIES else m
        for m in kept
    ]
    if not any(m.activity_type in FOUNDATIONAL_ACTIVITIES for m in kept):
        kept.append(ActivityMixItem(activity_type=A.MEMORY_CHECK, count=extra, difficulty=D.EASY))
    return kept, removed


def ensure_variety(mix: List[ActivityMixItem], blocked: Set[ActivityType]) -> List[ActivityMixItem]:
    present = {m.activity_type for m in mix}
    result = list(mix)
    for filler in FILLER_ACTIVITIES:
        if len(present) >= MIN_DISTINCT_ACTIVITIES:
            break
        if filler in present or filler in blocked:
            continue
        result.append(ActivityMixItem(activity_type=filler, count=2, difficulty=D.EASY))
        present.add(filler)
    return result


def determine_focus(mix: Sequence[ActivityMixItem]) -> SessionFocus:
    types = {m.activity_type for m in mix}
    has_application = bool(types & APPLICATION_ACTIVITIES)
    has_rules = bool(types & RULE_ACTIVITIES)
    if has_application and has_rules:
        return SessionFocus.MIXED
    if has_application:
        return SessionFocus.APPLICATION
    return SessionFocus.RULES


def compute_blueprint(
    target_skill_ids: Sequence[uuid.UUID],
    minutes: int,
    mastery: Sequence[SkillMasterySnapshot] = (),
    days_to_exam: Optional[int] = None,
    enforce_gates: bool = True,
    remediation: Optional["RemediationPrescription"] = None,
) -> SessionBlueprint:
    """Build the activity mix for a session. Pure."""
    minutes = max(5, minutes)
    phase = exam_phase(days_to_exam)

    by_skill = {m.skill_id: m for m in mastery}
    for skill_id in target_skill_ids:
        by_skill.setdefault(skill_id, SkillMasterySnapshot(skill_id=skill_id))
    snapshots = list(by_skill.values())

    is_weak = any(
        m.p_mastery < WEAK_P_MASTERY or m.consecutive_wrong >= WEAK_CONSECUTIVE_WRONG for m in snapshots
    )
    is_strong = bool(snapshots) and all(m.p_mastery > STRONG_P_MASTERY for m in snapshots)

    if is_weak:
        mix = scale_for_duration(WEAK_SKILL_MIX, minutes)
        focus = SessionFocus.RULES
    elif is_strong:
        mix = scale_for_duration(STRONG_SKILL_MIX, minutes)
        focus = SessionFocus.APPLICATION
    else:
        if minutes <= 35:
            base = DEFAULT_MIX_30
        elif minutes <= 50:
            base = DEFAULT_MIX_45
        else:
            base = DEFAULT_MIX_60
        mix = apply_phase(base, phase)
        focus = SessionFocus.MIXED

    if remediation is not None:
        mix = remediation.apply_to(mix, minutes)
        focus = determine_focus(mix)

    blocked: Set[ActivityType] = set()
    removed: List[ActivityType] = []
    gate_results: List[GateEvaluation] = []
    if enforce_gates:
        blocked, gate_results = blocked_activities(snapshots)
        mix, removed = reallocate_blocked(mix, blocked)

    mix = ensure_variety(mix, blocked)
    if removed:
        focus = determine_focus(mix)

    return SessionBlueprint(
        target_skill_ids=list(target_skill_ids),
        minutes=minutes,
        phase=phase,
        focus=focus,
        activity_mix=mix,
        removed_activities=removed,
        gate_results=gate_results,
        remediation_severity=remediation.severity.value if remediation is not None else None,
        remediation_reasons=list(remediation.reasons) if remediation is not None else [],
    )
