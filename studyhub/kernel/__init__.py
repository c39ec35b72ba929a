"""
Kernel Layer

Foundational persistence for the backend:
- Curriculum reference data (units, skills, outline, lectures, authorities)
- Learner mastery state and immutable attempts
- Study sessions, generated assets and the job queue
- Immutable Event Log

Invariants:
- Attempts, gate verifications and event log rows are append-only
- Mastery rows are never deleted
"""

from studyhub.kernel.models import (
    Skill,
    MasteryState,
    Attempt,
    StudySession,
    StudyAsset,
    BackgroundJob,
    EventLog,
    EventType,
)

__all__ = [
    "Skill",
    "MasteryState",
    "Attempt",
    "StudySession",
    "StudyAsset",
    "BackgroundJob",
    "EventLog",
    "EventType",
]
