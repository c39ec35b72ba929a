"""
Background worker - polls the job queue and runs handlers.

Each job runs in three short transactions: claim, handle + complete, and
(on error) fail. A handler's partial writes are rolled back before the
failure is recorded.

Run:
    python -m studyhub.orchestration.worker
    python -m studyhub.orchestration.worker --max-iterations 50
"""

import argparse
import asyncio
import uuid
from datetime import datetime
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyhub.config import get_settings
from studyhub.kernel.models import BackgroundJob, utcnow
from studyhub.logging_config import configure_logging, get_logger, job_id_var
from studyhub.orchestration.handlers import JobContext, dispatch
from studyhub.orchestration.job_queue import JobQueue

logger = get_logger(__name__)


class Worker:
    """Claims and processes one job at a time."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.session_factory = session_factory
        self.http_client = http_client
        self.settings = get_settings()

    async def reclaim_stale(self, now: Optional[datetime] = None) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                return len(await JobQueue(session).reclaim_stale(now=now))

    async def run_once(self, now: Optional[datetime] = None) -> Optional[uuid.UUID]:
        """Claim and process one due job. Returns its id, or None if the queue was empty."""
        async with self.session_factory() as session:
            async with session.begin():
                job = await JobQueue(session).claim(now=now)
                if job is None:
                    return None
                job_id, job_type, attempts = job.id, job.job_type, job.attempts
                payload = dict(job.payload or {})

        token = job_id_var.set(f"job:{job_id}")
        try:
            logger.info("Job claimed", extra={"job_type": job_type, "attempts": attempts})
            try:
                await self._handle(job_id, job_type, payload, now)
            except Exception as exc:
                logger.exception("Job handler raised", extra={"job_type": job_type})
                await self._record_failure(job_id, f"{type(exc).__name__}: {exc}", now)
            return job_id
        finally:
            job_id_var.reset(token)

    async def run(self, max_iterations: Optional[int] = None) -> int:
        """
        Poll until stopped, or until `max_iterations` polls have run.
        Sleeps `worker_poll_interval_seconds` after an empty poll.
        Returns the number of jobs processed.
        """
        processed = 0
        iterations = 0
        await self.reclaim_stale()
        while max_iterations is None or iterations < max_iterations:
            iterations += 1
            job_id = await self.run_once()
            if job_id is not None:
                processed += 1
                continue
            await self.reclaim_stale()
            if max_iterations is not None and iterations >= max_iterations:
                break
            await asyncio.sleep(self.settings.worker_poll_interval_seconds)
        return processed

    async def drain(self, now: Optional[datetime] = None, limit: int = 100) -> int:
        """Process every job that is due right now, without sleeping."""
        processed = 0
        while processed < limit:
            if await self.run_once(now=now) is None:
                break
            processed += 1
        return processed

    async def _handle(self, job_id: uuid.UUID, job_type: str, payload: dict, now: Optional[datetime]) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                ctx = JobContext(session=session, now=now or utcnow(), http_client=self.http_client)
                result = await asyncio.wait_for(
                    dispatch(ctx, job_type, payload),
                    timeout=self.settings.worker_job_timeout_seconds,
                )
                job = await session.get(BackgroundJob, job_id)
                await JobQueue(session).complete(job, result=result, now=now)
        logger.info("Job completed", extra={"job_type": job_type})

    async def _record_failure(self, job_id: uuid.UUID, error: str, now: Optional[datetime]) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                job = await session.get(BackgroundJob, job_id)
                await JobQueue(session).fail(job, error, now=now)


async def _main(max_iterations: Optional[int]) -> None:
    from studyhub.database import async_session_maker, close_db

    settings = get_settings()
    configure_logging(log_level=settings.log_level, environment=settings.environment, debug=settings.debug)
    worker = Worker(async_session_maker)
    try:
        processed = await worker.run(max_iterations=max_iterations)
        logger.info("Worker stopped", extra={"processed": processed})
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="StudyHub background job worker")
    parser.add_argument("--max-iterations", type=int, default=None, help="stop after this many polls")
    args = parser.parse_args()
    asyncio.run(_main(args.max_iterations))


if __name__ == "__main__":
    main()
