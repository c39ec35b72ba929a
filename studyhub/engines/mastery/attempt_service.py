"""
Attempt Service - grade a submission and apply it to every covered skill.

Grading runs outside any transaction. The mastery write (attempt row,
per-skill update + schedule, gate check, error signatures, audit events) is
one transaction that is retried as a whole when it loses a race on the
MasteryState version or on lazy row creation.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from studyhub.config import get_settings
from studyhub.engines.mastery.gate_verification import GateVerificationService
from studyhub.engines.mastery.grader import Grader, GradingRequest, GradingResult
from studyhub.engines.mastery.mastery_repository import MasteryRepository
from studyhub.engines.mastery.mastery_update import AttemptOutcome, MasteryUpdater
from studyhub.engines.mastery.spaced_repetition import schedule_review
from studyhub.exceptions import ConcurrencyConflictError, NotFoundError
from studyhub.kernel.events.event_store import EventStore
from studyhub.kernel.models import Attempt, EventType, utcnow
from studyhub.logging_config import get_logger
from studyhub.schemas.mastery import AttemptResponse, AttemptSubmission, SkillMasteryDelta

logger = get_logger(__name__)


class AttemptService:
    """Entry point for attempt submission."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.settings = get_settings()

    async def submit(
        self,
        user_id: uuid.UUID,
        submission: AttemptSubmission,
        now: Optional[datetime] = None,
    ) -> AttemptResponse:
        grading = await Grader.grade(GradingRequest(
            item_id=submission.item_id,
            prompt=submission.prompt,
            response_text=submission.response_text,
            format=submission.format,
            rubric=submission.rubric,
            correct_answer=submission.correct_answer,
        ))
        return await self.record(user_id, submission, grading, now=now)

    async def record(
        self,
        user_id: uuid.UUID,
        submission: AttemptSubmission,
        grading: GradingResult,
        now: Optional[datetime] = None,
    ) -> AttemptResponse:
        """Persist an already-graded attempt, retrying on write conflicts."""
        max_retries = max(1, self.settings.mastery_update_max_retries)
        last_error: Optional[Exception] = None
        for attempt_no in range(1, max_retries + 1):
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        return await self._apply(session, user_id, submission, grading, now or utcnow())
            except (StaleDataError, IntegrityError) as exc:
                last_error = exc
                logger.warning(
                    "Mastery write conflict, retrying (%d/%d): %s",
                    attempt_no,
                    max_retries,
                    type(exc).__name__,
                    extra={"user_id": str(user_id), "item_id": submission.item_id},
                )
        raise ConcurrencyConflictError(user_id) from last_error

    async def _apply(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        submission: AttemptSubmission,
        grading: GradingResult,
        now: datetime,
    ) -> AttemptResponse:
        repo = MasteryRepository(session)
        gates = GateVerificationService(session)
        events = EventStore(session)

        skill_ids = list(submission.skill_coverage.keys())
        known = await repo.existing_skill_ids(skill_ids)
        for skill_id in skill_ids:
            if skill_id not in known:
                raise NotFoundError("Skill", skill_id)

        attempt = Attempt(
            user_id=user_id,
            item_id=submission.item_id,
            score=grading.score,
            format=submission.format.value,
            mode=submission.mode.value,
            elapsed_seconds=submission.elapsed_seconds,
            skill_coverage={str(k): v for k, v in submission.skill_coverage.items()},
            error_tags=list(grading.error_tags),
            rubric_breakdown=dict(grading.rubric_breakdown),
            response_text=submission.response_text,
            graded_by_fallback=grading.graded_by_fallback,
            created_at=now,
        )
        session.add(attempt)
        await session.flush()

        deltas: List[SkillMasteryDelta] = []
        # Sorted so concurrent submissions lock rows in the same order
        for skill_id in sorted(skill_ids):
            state = await repo.get_or_create_for_update(user_id, skill_id)
            outcome = AttemptOutcome(
                score=grading.score,
                format=submission.format,
                mode=submission.mode,
                coverage_weight=submission.skill_coverage[skill_id],
            )
            update = MasteryUpdater.apply(state.p_mastery, state.stability, outcome)
            schedule = schedule_review(grading.score, state.easiness_factor, state.interval_days, now)

            state.p_mastery = update.p_after
            state.stability = update.stability_after
            state.easiness_factor = schedule.easiness_factor
            state.interval_days = schedule.interval_days
            state.next_review_date = schedule.next_review_date
            state.last_practiced_at = now
            state.attempt_count += 1
            if update.is_pass:
                state.correct_count += 1
                state.consecutive_wrong = 0
            else:
                state.consecutive_wrong += 1
            await session.flush()

            # Gate sees error history before this attempt's tags are counted
            gate = await gates.evaluate_and_record(state, triggering_attempt_id=attempt.id, now=now)
            await repo.record_error_tags(user_id, skill_id, grading.error_tags, now)

            deltas.append(SkillMasteryDelta(
                skill_id=skill_id,
                p_before=update.p_before,
                p_after=update.p_after,
                delta=update.delta,
                stability=update.stability_after,
                easiness_factor=schedule.easiness_factor,
                interval_days=schedule.interval_days,
                next_review_date=schedule.next_review_date,
                gate=gate,
            ))

        await events.log(
            event_type=(
                EventType.ATTEMPT_GRADED_BY_FALLBACK if grading.graded_by_fallback
                else EventType.ATTEMPT_RECORDED
            ),
            entity_type="attempt",
            entity_id=attempt.id,
            user_id=user_id,
            payload={
                "item_id": submission.item_id,
                "score": grading.score,
                "mode": submission.mode.value,
                "skills": [str(d.skill_id) for d in deltas],
            },
        )
        await session.flush()

        logger.info(
            "Attempt recorded",
            extra={
                "attempt_id": str(attempt.id),
                "user_id": str(user_id),
                "score": grading.score,
                "graded_by_fallback": grading.graded_by_fallback,
            },
        )
        return AttemptResponse(attempt_id=attempt.id, grading=grading, skills=deltas)
