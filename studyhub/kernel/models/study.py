"""
Study models - sessions, the generated assets inside them, and the
records generation leaves behind (missing-authority log, weekly reports).
"""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    JSON,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studyhub.kernel.models.base import Base, TimestampMixin, generate_uuid


class SessionStatus(str, Enum):
    """Lifecycle of a study session."""
    QUEUED = "QUEUED"
    PREPARING = "PREPARING"
    READY = "READY"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


class AssetType(str, Enum):
    """The four assets every session is built from."""
    NOTES = "NOTES"
    CHECKPOINT = "CHECKPOINT"
    PRACTICE_SET = "PRACTICE_SET"
    RUBRIC = "RUBRIC"


class AssetStatus(str, Enum):
    """Lifecycle of a generated asset."""
    GENERATING = "GENERATING"
    READY = "READY"
    FAILED = "FAILED"


# Step order of each required asset inside a session
REQUIRED_ASSETS: List[AssetType] = [
    AssetType.NOTES,
    AssetType.CHECKPOINT,
    AssetType.PRACTICE_SET,
    AssetType.RUBRIC,
]


class StudySession(Base, TimestampMixin):
    """A planned block of study for one learner on one day."""

    __tablename__ = "study_sessions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    session_date: Mapped[date] = mapped_column(Date, nullable=False)
    target_skill_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    estimated_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    exam_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SessionStatus.QUEUED.value)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    assets: Mapped[List["StudyAsset"]] = relationship(
        back_populates="session",
        order_by="StudyAsset.step_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_study_sessions_user_date", "user_id", "session_date"),
    )


class StudyAsset(Base, TimestampMixin):
    """One generated asset (notes, checkpoint, practice set or rubric)."""

    __tablename__ = "study_assets"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    session_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("study_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    asset_type: Mapped[str] = mapped_column(String(20), nullable=False)
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AssetStatus.GENERATING.value)

    content: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    # {outline_topic_ids, lecture_chunk_ids, authority_ids}
    grounding_refs: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    activity_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    generation_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    generation_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    generation_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    session: Mapped["StudySession"] = relationship(back_populates="assets")

    __table_args__ = (
        UniqueConstraint("session_id", "asset_type", name="uq_study_assets_session_type"),
    )

    @property
    def stats(self) -> dict:
        return (self.content or {}).get("stats", {})


class MissingAuthorityLogEntry(Base):
    """Append-only record of a claim generation could not ground."""

    __tablename__ = "missing_authority_log"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    claim: Mapped[str] = mapped_column(Text, nullable=False)
    skill_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    error_tag: Mapped[str] = mapped_column(String(100), nullable=False)
    session_id: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True, index=True)
    asset_id: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True, index=True)
    detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class WeeklyReport(Base):
    """Readiness snapshot produced by the weekly report job."""

    __tablename__ = "weekly_reports"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    report: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "week_start", name="uq_weekly_reports_user_week"),
    )
