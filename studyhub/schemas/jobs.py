"""
Background job schemas.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from studyhub.orchestration.job_types import JobType


class JobCreate(BaseModel):
    """Enqueue request. The payload is validated against the job type's model."""

    job_type: JobType
    payload: Dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(5, ge=0, le=100)
    scheduled_for: Optional[datetime] = None


class JobCreated(BaseModel):
    id: uuid.UUID
    status: str


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_type: str
    user_id: Optional[uuid.UUID] = None
    priority: int
    payload: Dict[str, Any]
    status: str
    attempts: int
    scheduled_for: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
