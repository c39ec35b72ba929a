"""Integration tests for the durable job queue and the worker loop."""

import uuid
from datetime import timedelta

import httpx
import pytest
from pydantic import ValidationError
from sqlalchemy import select

from studyhub.config import get_settings
from studyhub.engines.generation.pipeline import GenerationPipeline
from studyhub.exceptions import UnknownJobTypeError
from studyhub.kernel.models import (
    AssetStatus,
    AssetType,
    BackgroundJob,
    JobStatus,
    StudyAsset,
    StudySession,
    WeeklyReport,
)
from studyhub.orchestration.job_queue import JobQueue
from studyhub.orchestration.job_types import JobType, parse_payload
from studyhub.orchestration.worker import Worker


async def _enqueue(session_factory, job_type, payload, at, priority=5) -> BackgroundJob:
    async with session_factory() as session:
        async with session.begin():
            return await JobQueue(session).enqueue(job_type, payload, priority=priority, scheduled_for=at)


async def _job(session_factory, job_id) -> BackgroundJob:
    async with session_factory() as session:
        return await session.get(BackgroundJob, job_id)


async def _claim(session_factory, at):
    async with session_factory() as session:
        async with session.begin():
            return await JobQueue(session).claim(now=at)


@pytest.fixture
def settings():
    return get_settings()


class TestEnqueue:
    async def test_payload_is_validated(self, session_factory, user_id, now):
        with pytest.raises(ValidationError):
            await _enqueue(session_factory, JobType.PRECOMPUTE_TODAY, {"sessions": 2}, now)

    def test_unknown_job_type(self):
        with pytest.raises(UnknownJobTypeError):
            parse_payload("DEFRAG_DISK", {})

    async def test_payload_is_normalised(self, session_factory, user_id, now):
        job = await _enqueue(session_factory, JobType.SEND_REMINDER, {"user_id": str(user_id)}, now)
        assert job.status == JobStatus.PENDING.value
        assert job.attempts == 0
        assert job.payload["channel"] == "webhook"

    async def test_owner_comes_from_payload(self, session_factory, user_id, now):
        job = await _enqueue(session_factory, JobType.SEND_REMINDER, {"user_id": str(user_id)}, now)
        assert job.user_id == user_id

    async def test_explicit_owner_for_payload_without_user(self, session_factory, user_id, now):
        async with session_factory() as session:
            async with session.begin():
                job = await JobQueue(session).enqueue(
                    JobType.GENERATE_RETEST_VARIANT,
                    {"asset_id": str(uuid.uuid4()), "item_id": "practice-1"},
                    scheduled_for=now,
                    user_id=user_id,
                )
        assert (await _job(session_factory, job.id)).user_id == user_id


class TestClaim:
    async def test_priority_then_schedule_order(self, session_factory, user_id, now):
        payload = {"user_id": str(user_id)}
        late_low = await _enqueue(session_factory, JobType.SEND_REMINDER, payload, now, priority=5)
        early_low = await _enqueue(session_factory, JobType.SEND_REMINDER, payload, now - timedelta(minutes=5), priority=5)
        high = await _enqueue(session_factory, JobType.SEND_REMINDER, payload, now, priority=1)

        claimed = [await _claim(session_factory, now) for _ in range(3)]
        assert [j.id for j in claimed] == [high.id, early_low.id, late_low.id]
        assert all(j.status == JobStatus.PROCESSING.value and j.attempts == 1 for j in claimed)
        assert await _claim(session_factory, now) is None

    async def test_future_jobs_wait(self, session_factory, user_id, now):
        await _enqueue(session_factory, JobType.SEND_REMINDER, {"user_id": str(user_id)}, now + timedelta(hours=1))
        assert await _claim(session_factory, now) is None
        assert await _claim(session_factory, now + timedelta(hours=1)) is not None

    async def test_completed_job_is_not_claimable(self, session_factory, user_id, now):
        job = await _enqueue(session_factory, JobType.SEND_REMINDER, {"user_id": str(user_id)}, now)
        async with session_factory() as session:
            async with session.begin():
                queue = JobQueue(session)
                claimed = await queue.claim(now=now)
                await queue.complete(claimed, result={"ok": True}, now=now)
        assert (await _job(session_factory, job.id)).status == JobStatus.COMPLETED.value
        assert await _claim(session_factory, now + timedelta(days=1)) is None

    @staticmethod
    def _stale_candidate_first(monkeypatch, stale_id):
        """The first candidate read returns a job another worker has already taken."""
        original = JobQueue._next_candidate
        pending = [stale_id]

        async def candidate(self, now):
            if pending:
                return pending.pop()
            return await original(self, now)

        monkeypatch.setattr(JobQueue, "_next_candidate", candidate)

    async def test_lost_race_moves_on_to_next_job(self, session_factory, user_id, now, monkeypatch):
        payload = {"user_id": str(user_id)}
        first = await _enqueue(session_factory, JobType.SEND_REMINDER, payload, now, priority=1)
        second = await _enqueue(session_factory, JobType.SEND_REMINDER, payload, now, priority=5)
        assert (await _claim(session_factory, now)).id == first.id

        self._stale_candidate_first(monkeypatch, first.id)
        claimed = await _claim(session_factory, now)
        assert claimed.id == second.id
        assert claimed.attempts == 1

        winner = await _job(session_factory, first.id)
        assert winner.status == JobStatus.PROCESSING.value
        assert winner.attempts == 1

    async def test_lost_race_on_last_job_claims_nothing(self, session_factory, user_id, now, monkeypatch):
        job = await _enqueue(session_factory, JobType.SEND_REMINDER, {"user_id": str(user_id)}, now)
        await _claim(session_factory, now)

        self._stale_candidate_first(monkeypatch, job.id)
        assert await _claim(session_factory, now) is None
        assert (await _job(session_factory, job.id)).attempts == 1


class TestRetry:
    async def test_backoff_doubles(self, db_session, settings):
        queue = JobQueue(db_session)
        base = settings.worker_backoff_base_seconds
        assert [queue.backoff(n).total_seconds() for n in (1, 2, 3)] == [base, 2 * base, 4 * base]

    async def test_failure_retries_then_fails_asset(self, session_factory, user_id, now, monkeypatch, settings):
        async with session_factory() as session:
            async with session.begin():
                study_session = StudySession(user_id=user_id, session_date=now.date(), target_skill_ids=[])
                session.add(study_session)
                await session.flush()
                asset = StudyAsset(
                    session_id=study_session.id,
                    asset_type=AssetType.NOTES.value,
                    step_order=1,
                    status=AssetStatus.GENERATING.value,
                )
                session.add(asset)
                await session.flush()
                job = await JobQueue(session).enqueue(
                    JobType.GENERATE_SESSION_ASSETS,
                    {"session_id": str(study_session.id), "asset_id": str(asset.id), "asset_type": "NOTES"},
                    scheduled_for=now,
                )

        async def boom(self, asset_id, days_to_exam=None):
            raise RuntimeError("model unavailable")

        monkeypatch.setattr(GenerationPipeline, "generate_asset", boom)
        worker = Worker(session_factory)
        base = timedelta(seconds=settings.worker_backoff_base_seconds)

        assert await worker.run_once(now=now) == job.id
        row = await _job(session_factory, job.id)
        assert row.status == JobStatus.PENDING.value
        assert row.attempts == 1
        assert "model unavailable" in row.error_message

        # Not due until the backoff has elapsed
        assert await worker.run_once(now=now + base / 2) is None
        assert await worker.run_once(now=now + base) == job.id
        assert await worker.run_once(now=now + base * 3) == job.id

        row = await _job(session_factory, job.id)
        assert row.status == JobStatus.FAILED.value
        assert row.attempts == settings.worker_max_attempts
        async with session_factory() as session:
            failed_asset = await session.get(StudyAsset, asset.id)
        assert failed_asset.status == AssetStatus.FAILED.value
        assert "model unavailable" in failed_asset.generation_error

    async def test_stale_processing_job_is_reclaimed(self, session_factory, user_id, now, settings):
        job = await _enqueue(session_factory, JobType.SEND_REMINDER, {"user_id": str(user_id)}, now)
        await _claim(session_factory, now)

        worker = Worker(session_factory)
        assert await worker.reclaim_stale(now=now + timedelta(seconds=10)) == 0
        later = now + timedelta(seconds=settings.worker_job_timeout_seconds + 1)
        assert await worker.reclaim_stale(now=later) == 1

        row = await _job(session_factory, job.id)
        assert row.status == JobStatus.PENDING.value
        assert row.attempts == 1
        assert row.error_message == "Job timed out"


class TestHandlers:
    async def test_reminder_posts_to_webhook(self, session_factory, user_id, now, monkeypatch, settings):
        monkeypatch.setattr(settings, "notification_webhook_url", "https://hooks.example.test/remind")
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        job = await _enqueue(session_factory, JobType.SEND_REMINDER, {"user_id": str(user_id)}, now)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await Worker(session_factory, http_client=client).run_once(now=now)

        row = await _job(session_factory, job.id)
        assert row.status == JobStatus.COMPLETED.value
        assert row.result == {"sent": True, "status_code": 202}
        assert str(user_id) in seen[0].content.decode()

    async def test_reminder_error_status_retries(self, session_factory, user_id, now, monkeypatch, settings):
        monkeypatch.setattr(settings, "notification_webhook_url", "https://hooks.example.test/remind")
        transport = httpx.MockTransport(lambda request: httpx.Response(503))

        job = await _enqueue(session_factory, JobType.SEND_REMINDER, {"user_id": str(user_id)}, now)
        async with httpx.AsyncClient(transport=transport) as client:
            await Worker(session_factory, http_client=client).run_once(now=now)

        row = await _job(session_factory, job.id)
        assert row.status == JobStatus.PENDING.value
        assert "503" in row.error_message

    async def test_reminder_without_webhook_is_skipped(self, session_factory, user_id, now):
        job = await _enqueue(session_factory, JobType.SEND_REMINDER, {"user_id": str(user_id)}, now)
        await Worker(session_factory).run_once(now=now)
        row = await _job(session_factory, job.id)
        assert row.status == JobStatus.COMPLETED.value
        assert row.result["sent"] is False

    async def test_weekly_report_is_upserted(self, session_factory, curriculum, user_id, now):
        payload = {"user_id": str(user_id)}
        await _enqueue(session_factory, JobType.GENERATE_WEEKLY_REPORT, payload, now)
        await _enqueue(session_factory, JobType.GENERATE_WEEKLY_REPORT, payload, now)
        assert await Worker(session_factory).drain(now=now) == 2

        async with session_factory() as session:
            reports = (await session.execute(
                select(WeeklyReport).where(WeeklyReport.user_id == user_id)
            )).scalars().all()
        assert len(reports) == 1
        assert reports[0].week_start == now.date() - timedelta(days=now.weekday())
        assert reports[0].report["readiness"]["units"][0]["skill_count"] == 3
