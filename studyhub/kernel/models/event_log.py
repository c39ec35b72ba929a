"""
Immutable event log for audit trail.

Significant state changes (gate verifications, session/asset lifecycle,
job outcomes) are appended here in the same transaction as the change.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, String, func, Index, JSON, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from studyhub.kernel.models.base import Base, generate_uuid


class EventType(str, Enum):
    """All event types for the audit log."""

    # Mastery events
    ATTEMPT_RECORDED = "mastery.attempt_recorded"
    ATTEMPT_GRADED_BY_FALLBACK = "mastery.attempt_graded_by_fallback"
    GATE_VERIFIED = "mastery.gate_verified"

    # Study events
    SESSION_CREATED = "session.created"
    SESSION_STATUS_CHANGED = "session.status_changed"
    ASSET_READY = "asset.ready"
    ASSET_FAILED = "asset.failed"
    GROUNDING_MISSING = "asset.grounding_missing"

    # Job events
    JOB_ENQUEUED = "job.enqueued"
    JOB_COMPLETED = "job.completed"
    JOB_RETRY_SCHEDULED = "job.retry_scheduled"
    JOB_FAILED = "job.failed"
    JOB_RECLAIMED = "job.reclaimed"

    # Reports / notifications
    WEEKLY_REPORT_GENERATED = "report.weekly_generated"
    REMINDER_SENT = "reminder.sent"


class EventLog(Base):
    """
    Immutable audit event log.

    This table is append-only - no updates or deletes allowed.
    """

    __tablename__ = "event_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )

    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )

    # Entity reference
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        nullable=False,
        index=True,
    )

    # Learner the event concerns; None for system-wide events
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        nullable=True,
        index=True,
    )

    payload: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_event_logs_entity", "entity_type", "entity_id"),
        Index("ix_event_logs_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<EventLog {self.event_type} {self.entity_type}:{self.entity_id}>"
