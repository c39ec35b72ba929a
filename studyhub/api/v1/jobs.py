"""
Job endpoints - enqueue and inspect background jobs.

Jobs belong to the caller. A payload may only name the caller as its
user_id, and any session or asset it references must be the caller's.
"""

import uuid

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ValidationError

from studyhub.api.deps import CurrentUserId, DbSession
from studyhub.kernel.models import StudyAsset, StudySession
from studyhub.orchestration.job_queue import JobQueue
from studyhub.orchestration.job_types import parse_payload
from studyhub.schemas.jobs import JobCreate, JobCreated, JobResponse

router = APIRouter()


async def _check_references(db: DbSession, payload: BaseModel, user_id: uuid.UUID) -> None:
    """404 unless every session/asset the payload names belongs to the caller."""
    session_id = getattr(payload, "session_id", None)
    asset_id = getattr(payload, "asset_id", None)

    if asset_id is not None:
        asset = await db.get(StudyAsset, asset_id)
        if asset is None or (session_id is not None and asset.session_id != session_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Asset not found")
        session_id = asset.session_id

    if session_id is not None:
        study_session = await db.get(StudySession, session_id)
        if study_session is None or study_session.user_id != user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")


@router.post("", response_model=JobCreated, status_code=status.HTTP_201_CREATED)
async def enqueue_job(
    data: JobCreate,
    user_id: CurrentUserId,
    db: DbSession,
):
    """Enqueue a job. The payload must match the job type's schema."""
    try:
        payload = parse_payload(data.job_type, data.payload)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid payload for {data.job_type.value}: {e.error_count()} error(s)",
        )

    owner = getattr(payload, "user_id", None)
    if owner is not None and owner != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot enqueue jobs for another user")
    await _check_references(db, payload, user_id)

    job = await JobQueue(db).enqueue(
        data.job_type,
        payload.model_dump(mode="json"),
        priority=data.priority,
        scheduled_for=data.scheduled_for,
        user_id=user_id,
    )
    return JobCreated(id=job.id, status=job.status)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: uuid.UUID,
    user_id: CurrentUserId,
    db: DbSession,
):
    job = await JobQueue(db).get(job_id)
    if not job or job.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobResponse.model_validate(job)
