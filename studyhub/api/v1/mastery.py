"""
Mastery endpoints - attempt submission, readiness, per-skill state.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException, status

from studyhub.api.deps import CurrentUserId, DbSession, SessionFactory
from studyhub.engines.mastery.attempt_service import AttemptService
from studyhub.engines.mastery.gate_verification import GateSnapshot, GateVerificationService, check_gate
from studyhub.engines.mastery.mastery_repository import MasteryRepository
from studyhub.engines.mastery.readiness import ReadinessService
from studyhub.exceptions import ConcurrencyConflictError, NotFoundError
from studyhub.kernel.models import Skill, utcnow
from studyhub.schemas.mastery import (
    AttemptResponse,
    AttemptSubmission,
    MasteryStateResponse,
    ReadinessResponse,
    SkillMasteryDetail,
)

router = APIRouter()


@router.post("/attempts", response_model=AttemptResponse, status_code=status.HTTP_201_CREATED)
async def submit_attempt(
    data: AttemptSubmission,
    user_id: CurrentUserId,
    session_factory: SessionFactory,
):
    """Grade an attempt and apply it to every skill it covers."""
    service = AttemptService(session_factory)
    try:
        return await service.submit(user_id, data)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConcurrencyConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get("/readiness", response_model=ReadinessResponse)
async def get_readiness(
    user_id: CurrentUserId,
    db: DbSession,
    unit_id: Optional[uuid.UUID] = None,
):
    """Exam-weighted readiness per unit and overall, with trend and evidence."""
    return await ReadinessService(db).compute(user_id, unit_id=unit_id)


@router.get("/skills/{skill_id}", response_model=SkillMasteryDetail)
async def get_skill_mastery(
    skill_id: uuid.UUID,
    user_id: CurrentUserId,
    db: DbSession,
):
    """Mastery state for one skill, and why it is or is not verified yet."""
    skill = await db.get(Skill, skill_id)
    if not skill:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Skill not found")

    state = await MasteryRepository(db).get(user_id, skill_id)
    if state is None:
        gate = check_gate(GateSnapshot(
            skill_id=skill_id,
            p_mastery=0.0,
            is_verified=False,
            attempts=[],
            top_error_tags=[],
            now=utcnow(),
        ))
    else:
        gate = await GateVerificationService(db).evaluate(state)

    return SkillMasteryDetail(
        skill_id=skill.id,
        skill_name=skill.name,
        state=MasteryStateResponse.model_validate(state) if state else None,
        gate=gate,
    )
