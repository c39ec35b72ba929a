"""Unit tests for session blueprint selection."""

import uuid

import pytest

from studyhub.engines.generation.blueprint import (
    ActivityType,
    Difficulty,
    ExamPhase,
    SessionFocus,
    SkillMasterySnapshot,
    _mix,
    compute_blueprint,
    ensure_variety,
    exam_phase,
)

SKILL = uuid.uuid4()


def _snapshot(p: float, reps: int = 5, wrong: int = 0) -> SkillMasterySnapshot:
    return SkillMasterySnapshot(skill_id=SKILL, p_mastery=p, reps=reps, consecutive_wrong=wrong)


def _counts(blueprint) -> dict:
    return {m.activity_type: m.count for m in blueprint.activity_mix}


class TestExamPhase:
    @pytest.mark.parametrize(
        "days,phase",
        [
            (None, ExamPhase.DISTANT),
            (90, ExamPhase.DISTANT),
            (60, ExamPhase.DISTANT),
            (59, ExamPhase.APPROACHING),
            (8, ExamPhase.APPROACHING),
            (7, ExamPhase.CRITICAL),
            (0, ExamPhase.CRITICAL),
        ],
    )
    def test_boundaries(self, days, phase):
        assert exam_phase(days) == phase


class TestMixSelection:
    def test_weak_skill_gets_remediation(self):
        blueprint = compute_blueprint([SKILL], 45, [_snapshot(0.2)], enforce_gates=False)
        counts = _counts(blueprint)
        assert blueprint.focus == SessionFocus.RULES
        assert counts[ActivityType.FLASHCARDS] == 8
        assert ActivityType.ERROR_CORRECTION in counts

    def test_consecutive_wrong_counts_as_weak(self):
        blueprint = compute_blueprint([SKILL], 45, [_snapshot(0.7, wrong=3)], enforce_gates=False)
        assert ActivityType.ERROR_CORRECTION in blueprint.activity_types

    def test_strong_skills_get_application(self):
        blueprint = compute_blueprint([SKILL], 45, [_snapshot(0.9)])
        assert blueprint.focus == SessionFocus.APPLICATION
        assert ActivityType.PAST_PAPER_STYLE in blueprint.activity_types
        assert blueprint.removed_activities == []

    def test_one_weak_skill_outranks_strong_ones(self):
        other = SkillMasterySnapshot(skill_id=uuid.uuid4(), p_mastery=0.95, reps=10)
        blueprint = compute_blueprint([SKILL, other.skill_id], 45, [other, _snapshot(0.1)], enforce_gates=False)
        assert blueprint.focus == SessionFocus.RULES

    def test_default_mix_by_length(self):
        short = compute_blueprint([SKILL], 30, [_snapshot(0.75)])
        long = compute_blueprint([SKILL], 60, [_snapshot(0.75)])
        assert ActivityType.ESSAY_OUTLINE not in short.activity_types
        assert _counts(long)[ActivityType.MEMORY_CHECK] == 8
        assert short.focus == SessionFocus.MIXED

    def test_approaching_exam_adds_essay_outline(self):
        blueprint = compute_blueprint([SKILL], 30, [_snapshot(0.75)], days_to_exam=30)
        assert blueprint.phase == ExamPhase.APPROACHING
        assert ActivityType.ESSAY_OUTLINE in blueprint.activity_types

    def test_critical_phase_boosts_exam_practice(self):
        blueprint = compute_blueprint([SKILL], 45, [_snapshot(0.75)], days_to_exam=3)
        counts = _counts(blueprint)
        assert counts[ActivityType.WRITTEN_QUIZ] == 9
        assert counts[ActivityType.READING_NOTES] == 1

    def test_remediation_scales_with_minutes(self):
        blueprint = compute_blueprint([SKILL], 90, [_snapshot(0.2)], enforce_gates=False)
        assert _counts(blueprint)[ActivityType.FLASHCARDS] == 16


class TestActivityGates:
    def test_unpassed_gates_remove_and_reallocate(self):
        blueprint = compute_blueprint([SKILL], 60, [_snapshot(0.6, reps=1)])
        counts = _counts(blueprint)
        assert set(blueprint.removed_activities) == {
            ActivityType.WRITTEN_QUIZ,
            ActivityType.ISSUE_SPOTTER,
            ActivityType.ESSAY_OUTLINE,
        }
        assert ActivityType.WRITTEN_QUIZ not in counts
        assert counts[ActivityType.MEMORY_CHECK] == 9
        assert blueprint.focus == SessionFocus.RULES

    def test_gate_results_explain_blocks(self):
        blueprint = compute_blueprint([SKILL], 60, [_snapshot(0.6, reps=1)])
        memory_gate = next(g for g in blueprint.gate_results if g.gate_id == "memory_gate")
        assert memory_gate.is_passed is False
        assert "below 70% threshold" in memory_gate.recommendation

    def test_skill_without_mastery_row_is_gated(self):
        blueprint = compute_blueprint([SKILL], 60)
        gated = {
            ActivityType.WRITTEN_QUIZ,
            ActivityType.ISSUE_SPOTTER,
            ActivityType.ESSAY_OUTLINE,
            ActivityType.FULL_ESSAY,
            ActivityType.PAST_PAPER_STYLE,
        }
        assert not gated & set(blueprint.activity_types)
        assert {g.skill_id for g in blueprint.gate_results} == {SKILL}
        assert all(not g.is_passed for g in blueprint.gate_results)

    def test_missing_skill_gates_even_when_others_are_strong(self):
        strong = SkillMasterySnapshot(skill_id=uuid.uuid4(), p_mastery=0.95, reps=10)
        blueprint = compute_blueprint([strong.skill_id, SKILL], 45, [strong])
        assert ActivityType.PAST_PAPER_STYLE not in blueprint.activity_types
        assert ActivityType.WRITTEN_QUIZ not in blueprint.activity_types
        assert blueprint.focus == SessionFocus.RULES

    def test_gates_can_be_disabled(self):
        blueprint = compute_blueprint([SKILL], 60, [_snapshot(0.6, reps=1)], enforce_gates=False)
        assert blueprint.removed_activities == []
        assert ActivityType.WRITTEN_QUIZ in blueprint.activity_types

    def test_every_blueprint_has_three_activity_types(self):
        for p in (0.0, 0.5, 0.6, 0.9):
            blueprint = compute_blueprint([SKILL], 5, [_snapshot(p, reps=0, wrong=4)])
            assert len(set(blueprint.activity_types)) >= 3


class TestEnsureVariety:
    def test_tops_up_thin_mix(self):
        mix = _mix((ActivityType.READING_NOTES, 1, Difficulty.EASY))
        result = ensure_variety(mix, set())
        assert [m.activity_type for m in result] == [
            ActivityType.READING_NOTES,
            ActivityType.MEMORY_CHECK,
            ActivityType.FLASHCARDS,
        ]

    def test_skips_blocked_fillers(self):
        mix = _mix((ActivityType.READING_NOTES, 1, Difficulty.EASY))
        result = ensure_variety(mix, {ActivityType.MEMORY_CHECK})
        assert ActivityType.MEMORY_CHECK not in [m.activity_type for m in result]
        assert len(result) == 3
