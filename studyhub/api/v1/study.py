"""
Study endpoints - today's precomputed sessions and their assets.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from studyhub.api.deps import CurrentUserId, DbSession
from studyhub.kernel.models import StudyAsset, StudySession
from studyhub.orchestration.precompute import PrecomputeOrchestrator
from studyhub.schemas.study import PrecomputeResult, StudyAssetResponse, StudySessionResponse

router = APIRouter()


@router.get("/sessions", response_model=PrecomputeResult)
async def list_today_sessions(
    user_id: CurrentUserId,
    db: DbSession,
    count: Optional[int] = Query(None, ge=1, le=10),
    exam_date: Optional[date] = Query(None),
):
    """
    Ensure today's top sessions exist and have generation queued, then
    report their readiness. Generation itself happens in the worker.

    `exam_date` sets the exam horizon used to pick each session's phase.
    """
    return await PrecomputeOrchestrator(db).precompute_today(user_id, sessions=count, exam_date=exam_date)


@router.get("/sessions/{session_id}", response_model=StudySessionResponse)
async def get_session(
    session_id: uuid.UUID,
    user_id: CurrentUserId,
    db: DbSession,
):
    result = await db.execute(
        select(StudySession)
        .options(selectinload(StudySession.assets))
        .where(StudySession.id == session_id)
    )
    study_session = result.scalar_one_or_none()
    if not study_session or study_session.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return StudySessionResponse.model_validate(study_session)


@router.get("/assets/{asset_id}", response_model=StudyAssetResponse)
async def get_asset(
    asset_id: uuid.UUID,
    user_id: CurrentUserId,
    db: DbSession,
):
    asset = await db.get(StudyAsset, asset_id)
    if not asset:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Asset not found")
    study_session = await db.get(StudySession, asset.session_id)
    if not study_session or study_session.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Asset not found")
    return StudyAssetResponse.model_validate(asset)
