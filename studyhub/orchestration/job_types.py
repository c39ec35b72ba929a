"""
Job types and their payloads.

Each JobType has exactly one payload model. The payload stored on a
BackgroundJob row is validated against it before dispatch.
"""

import uuid
from datetime import date
from enum import Enum
from typing import Dict, Optional, Type

from pydantic import BaseModel, Field

from studyhub.exceptions import UnknownJobTypeError


class JobType(str, Enum):
    GENERATE_SESSION_ASSETS = "GENERATE_SESSION_ASSETS"
    PRECOMPUTE_TODAY = "PRECOMPUTE_TODAY"
    GENERATE_WEEKLY_REPORT = "GENERATE_WEEKLY_REPORT"
    SEND_REMINDER = "SEND_REMINDER"
    GENERATE_RETEST_VARIANT = "GENERATE_RETEST_VARIANT"


class GenerateSessionAssetsPayload(BaseModel):
    session_id: uuid.UUID
    asset_id: uuid.UUID
    asset_type: str
    days_to_exam: Optional[int] = None


class PrecomputeTodayPayload(BaseModel):
    user_id: uuid.UUID
    sessions: Optional[int] = Field(None, ge=1, le=10)
    minutes: Optional[int] = Field(None, ge=5, le=240)
    exam_date: Optional[date] = None


class WeeklyReportPayload(BaseModel):
    user_id: uuid.UUID
    # Defaults to the Monday of the current week
    week_start: Optional[date] = None


class SendReminderPayload(BaseModel):
    user_id: uuid.UUID
    message: str = "You have study sessions ready today."
    channel: str = "webhook"


class RetestVariantPayload(BaseModel):
    asset_id: uuid.UUID
    item_id: str = Field(..., min_length=1)
    skill_id: Optional[uuid.UUID] = None


JOB_PAYLOADS: Dict[JobType, Type[BaseModel]] = {
    JobType.GENERATE_SESSION_ASSETS: GenerateSessionAssetsPayload,
    JobType.PRECOMPUTE_TODAY: PrecomputeTodayPayload,
    JobType.GENERATE_WEEKLY_REPORT: WeeklyReportPayload,
    JobType.SEND_REMINDER: SendReminderPayload,
    JobType.GENERATE_RETEST_VARIANT: RetestVariantPayload,
}

_missing = set(JobType) - set(JOB_PAYLOADS)
if _missing:
    raise RuntimeError(f"Job types without a payload model: {sorted(m.value for m in _missing)}")


def parse_job_type(value: str) -> JobType:
    try:
        return JobType(value)
    except ValueError as exc:
        raise UnknownJobTypeError(value) from exc


def parse_payload(job_type: JobType | str, payload: Optional[dict]) -> BaseModel:
    """Validate a raw payload dict against the model registered for its job type."""
    if not isinstance(job_type, JobType):
        job_type = parse_job_type(job_type)
    return JOB_PAYLOADS[job_type].model_validate(payload or {})
