"""
Kernel Data Models

SQLAlchemy models for curriculum reference data, learner mastery,
study sessions/assets, the job queue and the audit log.
"""

from studyhub.kernel.models.base import Base, TimestampMixin, generate_uuid, utcnow, as_utc
from studyhub.kernel.models.curriculum import (
    CurriculumUnit,
    Skill,
    OutlineTopic,
    SkillOutlineMap,
    LectureChunk,
    LectureSkillMap,
    Authority,
    AuthorityType,
)
from studyhub.kernel.models.mastery import (
    MasteryState,
    Attempt,
    AttemptFormat,
    AttemptMode,
    HIGH_STAKES_MODES,
    SkillErrorSignature,
    GateVerificationRecord,
)
from studyhub.kernel.models.study import (
    StudySession,
    SessionStatus,
    StudyAsset,
    AssetType,
    AssetStatus,
    REQUIRED_ASSETS,
    MissingAuthorityLogEntry,
    WeeklyReport,
)
from studyhub.kernel.models.job import BackgroundJob, JobStatus
from studyhub.kernel.models.event_log import EventLog, EventType

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "generate_uuid",
    "utcnow",
    "as_utc",
    # Curriculum
    "CurriculumUnit",
    "Skill",
    "OutlineTopic",
    "SkillOutlineMap",
    "LectureChunk",
    "LectureSkillMap",
    "Authority",
    "AuthorityType",
    # Mastery
    "MasteryState",
    "Attempt",
    "AttemptFormat",
    "AttemptMode",
    "HIGH_STAKES_MODES",
    "SkillErrorSignature",
    "GateVerificationRecord",
    # Study
    "StudySession",
    "SessionStatus",
    "StudyAsset",
    "AssetType",
    "AssetStatus",
    "REQUIRED_ASSETS",
    "MissingAuthorityLogEntry",
    "WeeklyReport",
    # Jobs
    "BackgroundJob",
    "JobStatus",
    # Event Log
    "EventLog",
    "EventType",
]
