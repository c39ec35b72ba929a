"""
Mastery models - per-skill learner state, graded attempts and gate records.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    JSON,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from studyhub.kernel.models.base import Base, TimestampMixin, generate_uuid, utcnow


class AttemptFormat(str, Enum):
    """How the learner answered."""
    WRITTEN = "written"
    ORAL = "oral"
    DRAFTING = "drafting"
    MULTIPLE_CHOICE = "multiple_choice"


class AttemptMode(str, Enum):
    """Conditions the attempt was taken under."""
    PRACTICE = "practice"
    TIMED = "timed"
    EXAM_SIM = "exam_sim"


HIGH_STAKES_MODES = (AttemptMode.TIMED.value, AttemptMode.EXAM_SIM.value)


class MasteryState(Base, TimestampMixin):
    """
    Per-user, per-skill mastery estimate and review schedule.

    p_mastery only moves through the mastery update algorithm; is_verified
    only flips false -> true through the gate engine. `version` is the
    optimistic lock checked on every flush.
    """

    __tablename__ = "mastery_states"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    skill_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("skills.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    p_mastery: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    stability: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    consecutive_wrong: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # SM-2 scheduler state
    easiness_factor: Mapped[float] = mapped_column(Float, nullable=False, default=2.5)
    interval_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    next_review_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_practiced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("user_id", "skill_id", name="uq_mastery_states_user_skill"),
        Index("ix_mastery_states_user_review", "user_id", "next_review_date"),
    )

    def __repr__(self) -> str:
        return f"<MasteryState user={self.user_id} skill={self.skill_id} p={self.p_mastery:.2f}>"


class Attempt(Base):
    """Immutable record of one graded submission."""

    __tablename__ = "attempts"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False)

    score: Mapped[float] = mapped_column(Float, nullable=False)
    format: Mapped[str] = mapped_column(String(30), nullable=False)
    mode: Mapped[str] = mapped_column(String(30), nullable=False)
    elapsed_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # {skill_id: weight}
    skill_coverage: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    error_tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    rubric_breakdown: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    response_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    graded_by_fallback: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_attempts_user_time", "user_id", "created_at"),
    )


class SkillErrorSignature(Base, TimestampMixin):
    """Running count of one error tag for a (user, skill)."""

    __tablename__ = "skill_error_signatures"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    skill_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("skills.id", ondelete="CASCADE"),
        nullable=False,
    )
    error_tag: Mapped[str] = mapped_column(String(100), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "skill_id", "error_tag", name="uq_skill_error_signature"),
    )


class GateVerificationRecord(Base):
    """Written once, when a (user, skill) first satisfies every gate criterion."""

    __tablename__ = "gate_verifications"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    skill_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("skills.id", ondelete="CASCADE"),
        nullable=False,
    )
    p_mastery: Mapped[float] = mapped_column(Float, nullable=False)
    pass_count: Mapped[int] = mapped_column(Integer, nullable=False)
    hours_between_passes: Mapped[float] = mapped_column(Float, nullable=False)
    triggering_attempt_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("attempts.id", ondelete="SET NULL"),
        nullable=True,
    )
    error_tags_cleared: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    verified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "skill_id", name="uq_gate_verifications_user_skill"),
    )
