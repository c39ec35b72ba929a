"""Unit tests for remediation diagnosis and mix adjustment."""

import uuid

from studyhub.engines.generation.blueprint import (
    DEFAULT_MIX_30,
    ActivityType,
    Difficulty,
    SkillMasterySnapshot,
    _mix,
    compute_blueprint,
)
from studyhub.engines.generation.remediation import (
    ErrorPattern,
    RemediationSignals,
    Severity,
    apply_remediation,
    consecutive_failures,
    diagnose,
    most_severe,
)

SKILL = uuid.uuid4()


def _signals(p: float, scores=(), timed=(), errors=()) -> RemediationSignals:
    return RemediationSignals(
        skill_id=SKILL,
        skill_name="Offer and acceptance",
        p_mastery=p,
        recent_scores=list(scores),
        recent_timed_scores=list(timed),
        error_patterns=[ErrorPattern(error_tag=t, count=c) for t, c in errors],
    )


def _counts(mix) -> dict:
    return {m.activity_type: m.count for m in mix}


class TestDiagnose:
    def test_stable_skill_needs_nothing(self):
        assert diagnose(_signals(0.85, scores=[0.9, 0.8])) is None

    def test_low_mastery_is_severe(self):
        prescription = diagnose(_signals(0.3))
        assert prescription.severity == Severity.SEVERE
        assert _counts(prescription.prescribed_activities)[ActivityType.FLASHCARDS] == 8
        assert prescription.reasons == ["Low mastery (30%)"]

    def test_developing_mastery_is_moderate(self):
        assert diagnose(_signals(0.65)).severity == Severity.MODERATE

    def test_recent_scores_below_memory_threshold(self):
        prescription = diagnose(_signals(0.85, scores=[0.65, 0.65]))
        assert prescription.severity == Severity.MODERATE
        assert prescription.focus_areas == ["Memorization and recall"]

    def test_failure_streak_is_severe(self):
        prescription = diagnose(_signals(0.85, scores=[0.5, 0.4, 0.3]))
        assert prescription.severity == Severity.SEVERE
        assert "3 consecutive failed attempts" in prescription.reasons

    def test_one_recurring_error_is_moderate(self):
        prescription = diagnose(_signals(0.85, errors=[("missed_element", 2), ("typo", 1)]))
        assert prescription.severity == Severity.MODERATE
        assert [e.error_tag for e in prescription.error_patterns] == ["missed_element"]
        assert "Common error: missed_element" in prescription.focus_areas

    def test_three_recurring_errors_are_severe(self):
        errors = [("missed_element", 2), ("wrong_rule", 3), ("no_authority", 2)]
        assert diagnose(_signals(0.85, errors=errors)).severity == Severity.SEVERE

    def test_weak_timed_work_alone_is_mild(self):
        prescription = diagnose(_signals(0.85, scores=[0.45, 0.95, 0.95], timed=[0.45]))
        assert prescription.severity == Severity.MILD
        assert prescription.estimated_minutes == 10 + 11 * 3

    def test_consecutive_failures_stop_at_first_pass(self):
        assert consecutive_failures([0.1, 0.5, 0.6, 0.2]) == 2
        assert consecutive_failures([]) == 0

    def test_most_severe_wins(self):
        mild = diagnose(_signals(0.85, scores=[0.45, 0.95, 0.95], timed=[0.45]))
        severe = diagnose(_signals(0.2))
        assert most_severe([None, mild, severe]) is severe
        assert most_severe([None]) is None


class TestApplyRemediation:
    def test_severe_replaces_mix(self):
        prescription = diagnose(_signals(0.2))
        result = apply_remediation(DEFAULT_MIX_30, prescription, 45)
        assert _counts(result) == _counts(prescription.prescribed_activities)

    def test_severe_scales_with_minutes(self):
        prescription = diagnose(_signals(0.2))
        result = apply_remediation(DEFAULT_MIX_30, prescription, 90)
        assert _counts(result)[ActivityType.FLASHCARDS] == 16

    def test_moderate_blends_half_of_each(self):
        prescription = diagnose(_signals(0.65))
        result = apply_remediation(DEFAULT_MIX_30, prescription, 45)
        assert _counts(result) == {
            ActivityType.READING_NOTES: 2,
            ActivityType.MEMORY_CHECK: 5,
            ActivityType.FLASHCARDS: 5,
            ActivityType.WRITTEN_QUIZ: 4,
            ActivityType.RULE_ELEMENTS_DRILL: 4,
            ActivityType.ERROR_CORRECTION: 2,
        }
        original = {m.activity_type for m in DEFAULT_MIX_30}
        assert all(m.difficulty == Difficulty.EASY for m in result if m.activity_type in original)

    def test_mild_adds_flashcards(self):
        prescription = diagnose(_signals(0.85, scores=[0.45, 0.95, 0.95], timed=[0.45]))
        with_cards = apply_remediation(DEFAULT_MIX_30, prescription, 45)
        assert _counts(with_cards)[ActivityType.FLASHCARDS] == 6

        without = _mix((ActivityType.MEMORY_CHECK, 4, Difficulty.MEDIUM))
        added = apply_remediation(without, prescription, 45)
        assert _counts(added)[ActivityType.FLASHCARDS] == 4


class TestBlueprintWithRemediation:
    def test_prescription_is_recorded_on_blueprint(self):
        prescription = diagnose(_signals(0.2))
        snapshot = SkillMasterySnapshot(skill_id=SKILL, p_mastery=0.2, reps=4)
        blueprint = compute_blueprint([SKILL], 45, [snapshot], enforce_gates=False, remediation=prescription)
        assert blueprint.remediation_severity == "severe"
        assert blueprint.remediation_reasons == prescription.reasons
        assert _counts(blueprint.activity_mix)[ActivityType.ERROR_CORRECTION] == 5

    def test_gates_still_apply_after_remediation(self):
        prescription = diagnose(_signals(0.2))
        snapshot = SkillMasterySnapshot(skill_id=SKILL, p_mastery=0.2, reps=4)
        blueprint = compute_blueprint([SKILL], 45, [snapshot], remediation=prescription)
        assert ActivityType.WRITTEN_QUIZ in blueprint.removed_activities
        assert ActivityType.WRITTEN_QUIZ not in blueprint.activity_types
