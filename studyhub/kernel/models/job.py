"""
Background job rows - the durable queue polled by workers.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from studyhub.kernel.models.base import Base, TimestampMixin, generate_uuid, utcnow


class JobStatus(str, Enum):
    """PENDING -> PROCESSING -> COMPLETED | PENDING (retry) | FAILED"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class BackgroundJob(Base, TimestampMixin):
    """A unit of deferred work. Lower priority number runs sooner."""

    __tablename__ = "background_jobs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # Learner the job acts for; None for system jobs
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True, index=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=JobStatus.PENDING.value)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    scheduled_for: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_background_jobs_claim", "status", "priority", "scheduled_for"),
    )

    def __repr__(self) -> str:
        return f"<BackgroundJob {self.job_type} {self.status} attempts={self.attempts}>"
