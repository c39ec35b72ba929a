"""
Durable job queue over the background_jobs table.

PENDING -> PROCESSING -> COMPLETED | PENDING (retry) | FAILED

Claiming is a conditional UPDATE guarded by `status = 'PENDING'`, so two
workers that pick the same candidate cannot both win. On PostgreSQL the
candidate select also uses FOR UPDATE SKIP LOCKED. All methods work inside
the caller's transaction; the caller commits.
"""

import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.config import get_settings
from studyhub.engines.generation.pipeline import GenerationPipeline
from studyhub.kernel.events.event_store import EventStore
from studyhub.kernel.events.event_types import JobEvent
from studyhub.kernel.models import BackgroundJob, EventType, JobStatus, utcnow
from studyhub.logging_config import get_logger
from studyhub.orchestration.job_types import JobType, parse_payload

logger = get_logger(__name__)

CLAIM_MAX_RACES = 5


class JobQueue:
    """enqueue / claim / complete / fail over BackgroundJob rows."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()
        self.event_store = EventStore(session)

    @property
    def _skip_locked(self) -> bool:
        return self.session.get_bind().dialect.name == "postgresql"

    async def enqueue(
        self,
        job_type: JobType,
        payload: dict,
        priority: int = 5,
        scheduled_for: Optional[datetime] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> BackgroundJob:
        """
        Validate the payload for its job type and insert a PENDING row.

        The job is owned by `user_id`, or by the payload's user_id when the
        payload names one.
        """
        model = parse_payload(job_type, payload)
        if user_id is None:
            user_id = getattr(model, "user_id", None)
        job = BackgroundJob(
            job_type=job_type.value,
            user_id=user_id,
            priority=priority,
            payload=model.model_dump(mode="json"),
            status=JobStatus.PENDING.value,
            attempts=0,
            scheduled_for=scheduled_for or utcnow(),
        )
        self.session.add(job)
        await self.session.flush()

        await self.event_store.log(
            event_type=EventType.JOB_ENQUEUED,
            entity_type="job",
            entity_id=job.id,
            user_id=user_id,
            payload={"job_type": job.job_type, "priority": priority},
        )
        logger.debug("Job enqueued", extra={"job_id": str(job.id), "job_type": job.job_type})
        return job

    async def get(self, job_id: uuid.UUID) -> Optional[BackgroundJob]:
        return await self.session.get(BackgroundJob, job_id)

    async def claim(self, now: Optional[datetime] = None) -> Optional[BackgroundJob]:
        """
        Claim the next due job: lowest priority number, then earliest
        scheduled_for. Returns None when nothing is due.
        """
        now = now or utcnow()
        for _ in range(CLAIM_MAX_RACES):
            job_id = await self._next_candidate(now)
            if job_id is None:
                return None

            result = await self.session.execute(
                update(BackgroundJob)
                .where(
                    BackgroundJob.id == job_id,
                    BackgroundJob.status == JobStatus.PENDING.value,
                )
                .values(
                    status=JobStatus.PROCESSING.value,
                    attempts=BackgroundJob.attempts + 1,
                    started_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return await self.session.get(BackgroundJob, job_id, populate_existing=True)
            logger.debug("Lost claim race, retrying", extra={"job_id": str(job_id)})
        return None

    async def _next_candidate(self, now: datetime) -> Optional[uuid.UUID]:
        query = (
            select(BackgroundJob.id)
            .where(
                BackgroundJob.status == JobStatus.PENDING.value,
                BackgroundJob.scheduled_for <= now,
            )
            .order_by(BackgroundJob.priority, BackgroundJob.scheduled_for)
            .limit(1)
        )
        if self._skip_locked:
            query = query.with_for_update(skip_locked=True)
        return (await self.session.execute(query)).scalar_one_or_none()

    async def complete(self, job: BackgroundJob, result: Optional[dict] = None, now: Optional[datetime] = None) -> BackgroundJob:
        job.status = JobStatus.COMPLETED.value
        job.completed_at = now or utcnow()
        job.result = result or {}
        job.error_message = None
        await self._log(EventType.JOB_COMPLETED, job)
        await self.session.flush()
        return job

    def backoff(self, attempts: int) -> timedelta:
        """Delay before retry number `attempts`: base, 2x base, 4x base, ..."""
        return timedelta(seconds=(2 ** max(0, attempts - 1)) * self.settings.worker_backoff_base_seconds)

    async def fail(self, job: BackgroundJob, error: str, now: Optional[datetime] = None) -> BackgroundJob:
        """Reschedule with exponential backoff, or fail terminally once attempts run out."""
        now = now or utcnow()
        job.error_message = error
        if job.attempts < self.settings.worker_max_attempts:
            job.status = JobStatus.PENDING.value
            job.scheduled_for = now + self.backoff(job.attempts)
            job.started_at = None
            await self._log(EventType.JOB_RETRY_SCHEDULED, job, error=error, next_run_at=job.scheduled_for)
            logger.warning(
                "Job failed, retry scheduled",
                extra={"job_id": str(job.id), "attempts": job.attempts, "error": error},
            )
        else:
            await self._fail_terminal(job, error, now)
        await self.session.flush()
        return job

    async def reclaim_stale(self, now: Optional[datetime] = None) -> List[BackgroundJob]:
        """Return PROCESSING jobs older than the job timeout to the queue."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.settings.worker_job_timeout_seconds)
        result = await self.session.execute(
            select(BackgroundJob).where(
                BackgroundJob.status == JobStatus.PROCESSING.value,
                BackgroundJob.started_at < cutoff,
            )
        )
        reclaimed = list(result.scalars().all())
        for job in reclaimed:
            error = "Job timed out"
            if job.attempts >= self.settings.worker_max_attempts:
                await self._fail_terminal(job, error, now)
                continue
            job.status = JobStatus.PENDING.value
            job.scheduled_for = now
            job.started_at = None
            job.error_message = error
            await self._log(EventType.JOB_RECLAIMED, job, error=error, next_run_at=now)
        if reclaimed:
            logger.warning("Reclaimed stale jobs", extra={"count": len(reclaimed)})
            await self.session.flush()
        return reclaimed

    async def _fail_terminal(self, job: BackgroundJob, error: str, now: datetime) -> None:
        job.status = JobStatus.FAILED.value
        job.completed_at = now
        job.result = {"success": False, "error": error}
        await self._log(EventType.JOB_FAILED, job, error=error)
        logger.error(
            "Job failed permanently",
            extra={"job_id": str(job.id), "job_type": job.job_type, "attempts": job.attempts, "error": error},
        )

        asset_id = (job.payload or {}).get("asset_id")
        if asset_id and job.job_type == JobType.GENERATE_SESSION_ASSETS.value:
            await GenerationPipeline(self.session).mark_failed(uuid.UUID(str(asset_id)), error)

    async def _log(
        self,
        event_type: EventType,
        job: BackgroundJob,
        error: Optional[str] = None,
        next_run_at: Optional[datetime] = None,
    ) -> None:
        await self.event_store.log_from_model(
            event_type=event_type,
            entity_type="job",
            entity_id=job.id,
            user_id=job.user_id,
            payload_model=JobEvent(
                job_type=job.job_type,
                status=job.status,
                attempts=job.attempts,
                error=error,
                next_run_at=next_run_at,
            ),
        )
