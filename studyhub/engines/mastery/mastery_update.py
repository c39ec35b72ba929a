"""
Mastery update - moves a skill's p_mastery toward the observed score.

Pure: no I/O, no clock. The repository applies the result.
"""

from typing import Tuple

from pydantic import BaseModel, Field

from studyhub.kernel.models.mastery import AttemptFormat, AttemptMode


class AttemptOutcome(BaseModel):
    """What the update algorithm needs to know about one graded attempt."""

    score: float = Field(..., ge=0.0, le=1.0)
    format: AttemptFormat = AttemptFormat.WRITTEN
    mode: AttemptMode = AttemptMode.PRACTICE
    coverage_weight: float = Field(default=1.0, ge=0.0)


class MasteryUpdate(BaseModel):
    """Before/after values for one skill."""

    p_before: float
    p_after: float
    stability_before: float
    stability_after: float
    delta: float
    is_pass: bool


class MasteryUpdater:
    """
    Learning-rate update of p_mastery with asymmetric clamping.

    delta = LEARNING_RATE * (score - p) * format_w * mode_w * coverage_w,
    clamped to [MAX_DECREASE, MAX_INCREASE].
    """

    LEARNING_RATE = 0.15
    MAX_INCREASE = 0.10
    MAX_DECREASE = -0.12
    PASS_THRESHOLD = 0.6

    FORMAT_WEIGHTS = {
        AttemptFormat.WRITTEN: 1.0,
        AttemptFormat.ORAL: 1.15,
        AttemptFormat.DRAFTING: 1.10,
        AttemptFormat.MULTIPLE_CHOICE: 0.75,
    }
    MODE_WEIGHTS = {
        AttemptMode.PRACTICE: 1.0,
        AttemptMode.TIMED: 1.25,
        AttemptMode.EXAM_SIM: 1.25,
    }

    # Stability (days) multipliers and bounds
    STABILITY_GROWTH = 1.5
    STABILITY_DECAY = 0.5
    MIN_STABILITY = 1.0
    MAX_STABILITY = 30.0

    @classmethod
    def is_pass(cls, score: float) -> bool:
        return score >= cls.PASS_THRESHOLD

    @classmethod
    def compute_delta(cls, current_p: float, outcome: AttemptOutcome) -> float:
        """Clamped change in p_mastery for this outcome."""
        current_p = min(1.0, max(0.0, current_p))
        raw = (
            cls.LEARNING_RATE
            * (outcome.score - current_p)
            * cls.FORMAT_WEIGHTS[outcome.format]
            * cls.MODE_WEIGHTS[outcome.mode]
            * outcome.coverage_weight
        )
        return max(cls.MAX_DECREASE, min(cls.MAX_INCREASE, raw))

    @classmethod
    def update(
        cls,
        current_p: float,
        current_stability: float,
        outcome: AttemptOutcome,
    ) -> Tuple[float, float]:
        """
        Apply one outcome.

        Returns:
            (new_p, new_stability); new_p in [0, 1], new_stability in [1, 30]
        """
        current_p = min(1.0, max(0.0, current_p))
        delta = cls.compute_delta(current_p, outcome)
        new_p = min(1.0, max(0.0, current_p + delta))

        factor = cls.STABILITY_GROWTH if cls.is_pass(outcome.score) else cls.STABILITY_DECAY
        new_stability = min(cls.MAX_STABILITY, max(cls.MIN_STABILITY, current_stability * factor))
        return new_p, new_stability

    @classmethod
    def apply(cls, current_p: float, current_stability: float, outcome: AttemptOutcome) -> MasteryUpdate:
        """Same as update() but keeps the before values for reporting."""
        new_p, new_stability = cls.update(current_p, current_stability, outcome)
        return MasteryUpdate(
            p_before=current_p,
            p_after=new_p,
            stability_before=current_stability,
            stability_after=new_stability,
            delta=new_p - min(1.0, max(0.0, current_p)),
            is_pass=cls.is_pass(outcome.score),
        )
