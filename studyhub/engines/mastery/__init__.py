"""
Mastery Engine - per-skill competence tracking.

- MasteryUpdater: learning-rate update of p_mastery and stability
- schedule_review: SM-2 review scheduling
- check_gate / GateVerificationService: durable-learning certification
- Grader: black-box model grading with a heuristic fallback
- AttemptService: transactional application of a graded attempt
"""

from studyhub.engines.mastery.mastery_update import AttemptOutcome, MasteryUpdate, MasteryUpdater
from studyhub.engines.mastery.spaced_repetition import ReviewSchedule, schedule_review
from studyhub.engines.mastery.gate_verification import (
    GateAttempt,
    GateCheckResult,
    GateSnapshot,
    GateVerificationService,
    check_gate,
)
from studyhub.engines.mastery.grader import Grader, GradingRequest, GradingResult
from studyhub.engines.mastery.mastery_repository import MasteryRepository

__all__ = [
    "AttemptOutcome",
    "MasteryUpdate",
    "MasteryUpdater",
    "ReviewSchedule",
    "schedule_review",
    "GateAttempt",
    "GateCheckResult",
    "GateSnapshot",
    "GateVerificationService",
    "check_gate",
    "Grader",
    "GradingRequest",
    "GradingResult",
    "MasteryRepository",
]
