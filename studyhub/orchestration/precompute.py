"""
Precompute Orchestrator - keep today's top sessions ready before the learner
asks for them.

For each chosen skill: make sure a session exists today, make sure it has
all four required assets (GENERATING placeholders), and enqueue one
GENERATE_SESSION_ASSETS job per new placeholder. Nothing is generated
inline. An exam date, when given, is stored on the session and passed to
generation as days_to_exam.
"""

import uuid
from datetime import date, datetime
from typing import Dict, List, Optional, Set

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.config import get_settings
from studyhub.engines.mastery.mastery_repository import MasteryRepository
from studyhub.kernel.events.event_store import EventStore
from studyhub.kernel.models import (
    AssetStatus,
    EventType,
    REQUIRED_ASSETS,
    SessionStatus,
    Skill,
    StudyAsset,
    StudySession,
    as_utc,
    utcnow,
)
from studyhub.logging_config import get_logger
from studyhub.orchestration.job_queue import JobQueue
from studyhub.orchestration.job_types import JobType
from studyhub.orchestration.state_machine import StateMachine
from studyhub.schemas.study import AssetStatusSummary, PrecomputeResult, SessionReadiness

logger = get_logger(__name__)

COVERAGE_DEBT_THRESHOLD = 0.1


class TargetChoice(BaseModel):
    skill_id: uuid.UUID
    rationale: str


class PrecomputeOrchestrator:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()
        self.repo = MasteryRepository(session)
        self.queue = JobQueue(session)
        self.state_machine = StateMachine(session)

    async def coverage_debt(self, user_id: uuid.UUID) -> Dict[uuid.UUID, float]:
        """Per unit, the share of its skills the learner has never practised."""
        skills = list((await self.session.execute(select(Skill))).scalars().all())
        practised = {s.skill_id for s in await self.repo.list_for_user(user_id) if s.attempt_count > 0}
        return self._debt_by_unit(skills, practised)

    @staticmethod
    def _debt_by_unit(skills: List[Skill], practised: Set[uuid.UUID]) -> Dict[uuid.UUID, float]:
        by_unit: Dict[uuid.UUID, List[Skill]] = {}
        for skill in skills:
            by_unit.setdefault(skill.unit_id, []).append(skill)
        return {
            unit_id: 1 - sum(1 for s in unit_skills if s.id in practised) / len(unit_skills)
            for unit_id, unit_skills in by_unit.items()
        }

    async def rank_targets(self, user_id: uuid.UUID, limit: int, now: Optional[datetime] = None) -> List[TargetChoice]:
        """
        Rank skills for today's sessions:

        1. urgent reviews: practised skills that are due, earliest due first
        2. unpractised skills in units with coverage debt above
           COVERAGE_DEBT_THRESHOLD, biggest debt first, then exam weight
        3. everything else, weakest p_mastery first, then exam weight
        """
        now = now or utcnow()
        skills = list((await self.session.execute(select(Skill))).scalars().all())
        states = {s.skill_id: s for s in await self.repo.list_for_user(user_id)}
        practised = {sid for sid, s in states.items() if s.attempt_count > 0}
        debt = self._debt_by_unit(skills, practised)

        def rank(skill: Skill):
            state = states.get(skill.id)
            if skill.id in practised:
                due_at = as_utc(state.next_review_date) if state.next_review_date else None
                if due_at is None or due_at <= now:
                    return (0, (due_at or now).timestamp(), state.p_mastery, -skill.exam_weight, skill.name)
            elif debt[skill.unit_id] > COVERAGE_DEBT_THRESHOLD:
                return (1, -debt[skill.unit_id], -skill.exam_weight, 0.0, skill.name)
            p = state.p_mastery if state else 0.0
            return (2, p, -skill.exam_weight, 0.0, skill.name)

        choices: List[TargetChoice] = []
        for skill in sorted(skills, key=rank)[:limit]:
            tier = rank(skill)[0]
            if tier == 0:
                rationale = "Review due"
            elif tier == 1:
                rationale = f"Coverage gap: {round(debt[skill.unit_id] * 100)}% of unit unpractised"
            else:
                rationale = "Weakest skill"
            choices.append(TargetChoice(skill_id=skill.id, rationale=rationale))
        return choices

    async def choose_target_skills(self, user_id: uuid.UUID, limit: int, now: Optional[datetime] = None) -> List[uuid.UUID]:
        return [c.skill_id for c in await self.rank_targets(user_id, limit, now=now)]

    async def precompute_today(
        self,
        user_id: uuid.UUID,
        sessions: Optional[int] = None,
        minutes: Optional[int] = None,
        now: Optional[datetime] = None,
        exam_date: Optional[date] = None,
    ) -> PrecomputeResult:
        now = now or utcnow()
        count = sessions or self.settings.precompute_sessions
        minutes = minutes or self.settings.precompute_session_minutes
        today = now.date()

        result = PrecomputeResult(
            coverage_debt={str(k): round(v, 4) for k, v in (await self.coverage_debt(user_id)).items()},
        )
        choices = await self.rank_targets(user_id, count, now=now)
        todays = await self._sessions_for_day(user_id, today)

        for choice in choices:
            skill_id = choice.skill_id
            study_session = next(
                (s for s in todays if str(skill_id) in [str(t) for t in s.target_skill_ids]),
                None,
            )
            if study_session is None:
                study_session = await self._create_session(user_id, skill_id, today, minutes, exam_date)
                todays.append(study_session)
            elif exam_date is not None and study_session.exam_date != exam_date:
                study_session.exam_date = exam_date

            readiness, enqueued = await self._ensure_assets(study_session)
            readiness.rationale = choice.rationale
            result.sessions.append(readiness)
            result.jobs_enqueued += enqueued

        await self.session.flush()
        logger.info(
            "Precompute finished",
            extra={
                "user_id": str(user_id),
                "sessions": len(result.sessions),
                "jobs_enqueued": result.jobs_enqueued,
            },
        )
        return result

    async def _sessions_for_day(self, user_id: uuid.UUID, day: date) -> List[StudySession]:
        result = await self.session.execute(
            select(StudySession)
            .where(
                StudySession.user_id == user_id,
                StudySession.session_date == day,
                StudySession.status != SessionStatus.ABANDONED.value,
            )
            .order_by(StudySession.created_at)
        )
        return list(result.scalars().all())

    async def _create_session(
        self,
        user_id: uuid.UUID,
        skill_id: uuid.UUID,
        day: date,
        minutes: int,
        exam_date: Optional[date] = None,
    ) -> StudySession:
        study_session = StudySession(
            user_id=user_id,
            session_date=day,
            target_skill_ids=[str(skill_id)],
            estimated_minutes=minutes,
            exam_date=exam_date,
            status=SessionStatus.QUEUED.value,
        )
        self.session.add(study_session)
        await self.session.flush()
        await EventStore(self.session).log(
            event_type=EventType.SESSION_CREATED,
            entity_type="session",
            entity_id=study_session.id,
            user_id=user_id,
            payload={"target_skill_ids": [str(skill_id)], "estimated_minutes": minutes},
        )
        return study_session

    async def _ensure_assets(self, study_session: StudySession) -> tuple[SessionReadiness, int]:
        result = await self.session.execute(
            select(StudyAsset).where(StudyAsset.session_id == study_session.id)
        )
        existing = {a.asset_type: a for a in result.scalars().all()}
        days_to_exam = (
            max(0, (study_session.exam_date - study_session.session_date).days)
            if study_session.exam_date is not None else None
        )

        enqueued = 0
        summaries: List[AssetStatusSummary] = []
        assets: List[StudyAsset] = []
        for step, asset_type in enumerate(REQUIRED_ASSETS, start=1):
            asset = existing.get(asset_type.value)
            if asset is None:
                asset = StudyAsset(
                    session_id=study_session.id,
                    asset_type=asset_type.value,
                    step_order=step,
                    status=AssetStatus.GENERATING.value,
                    grounding_refs={},
                    activity_types=[],
                    generation_started_at=utcnow(),
                )
                self.session.add(asset)
                await self.session.flush()
                await self.queue.enqueue(
                    JobType.GENERATE_SESSION_ASSETS,
                    {
                        "session_id": str(study_session.id),
                        "asset_id": str(asset.id),
                        "asset_type": asset_type.value,
                        "days_to_exam": days_to_exam,
                    },
                    priority=step,
                    user_id=study_session.user_id,
                )
                enqueued += 1
            assets.append(asset)
            summaries.append(AssetStatusSummary(
                asset_id=asset.id,
                asset_type=asset.asset_type,
                step_order=asset.step_order,
                status=asset.status,
            ))

        # Promote QUEUED -> PREPARING once generation is underway
        if study_session.status == SessionStatus.QUEUED.value and existing:
            await self.state_machine.transition_session(study_session, SessionStatus.PREPARING.value)
        await self.state_machine.refresh_session_readiness(study_session, assets)

        ready = sum(1 for a in assets if a.status == AssetStatus.READY.value)
        readiness = SessionReadiness(
            session_id=study_session.id,
            status=study_session.status,
            target_skill_ids=[uuid.UUID(str(s)) for s in study_session.target_skill_ids],
            assets_ready=ready,
            assets_total=len(REQUIRED_ASSETS),
            assets=summaries,
        )
        return readiness, enqueued
