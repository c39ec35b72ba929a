"""
Job handlers, one per JobType.

A handler receives the validated payload model and returns a JSON-able
result dict that the queue stores on the job row. Raising marks the job
attempt failed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional

import httpx
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.config import Settings, get_settings
from studyhub.engines.generation.pipeline import GenerationPipeline
from studyhub.engines.mastery.readiness import ReadinessService
from studyhub.kernel.events.event_store import EventStore
from studyhub.kernel.models import EventType, WeeklyReport, utcnow
from studyhub.logging_config import get_logger
from studyhub.orchestration.job_types import (
    GenerateSessionAssetsPayload,
    JobType,
    PrecomputeTodayPayload,
    RetestVariantPayload,
    SendReminderPayload,
    WeeklyReportPayload,
    parse_payload,
)
from studyhub.orchestration.precompute import PrecomputeOrchestrator

logger = get_logger(__name__)

REMINDER_TIMEOUT_SECONDS = 10


@dataclass
class JobContext:
    """What a handler may touch while it runs."""

    session: AsyncSession
    now: datetime = field(default_factory=utcnow)
    settings: Settings = field(default_factory=get_settings)
    http_client: Optional[httpx.AsyncClient] = None


Handler = Callable[[JobContext, BaseModel], Awaitable[dict]]


async def generate_session_assets(ctx: JobContext, payload: GenerateSessionAssetsPayload) -> dict:
    outcome = await GenerationPipeline(ctx.session).generate_asset(
        payload.asset_id,
        days_to_exam=payload.days_to_exam,
    )
    return outcome.model_dump(mode="json")


async def precompute_today(ctx: JobContext, payload: PrecomputeTodayPayload) -> dict:
    result = await PrecomputeOrchestrator(ctx.session).precompute_today(
        payload.user_id,
        sessions=payload.sessions,
        minutes=payload.minutes,
        now=ctx.now,
        exam_date=payload.exam_date,
    )
    return result.model_dump(mode="json")


async def generate_weekly_report(ctx: JobContext, payload: WeeklyReportPayload) -> dict:
    today = ctx.now.date()
    week_start = payload.week_start or (today - timedelta(days=today.weekday()))
    readiness = await ReadinessService(ctx.session).compute(payload.user_id)
    report = {
        "week_start": week_start.isoformat(),
        "generated_at": ctx.now.isoformat(),
        "readiness": readiness.model_dump(mode="json"),
        "weakest_units": [
            u.unit_name for u in sorted(readiness.units, key=lambda u: u.readiness)[:3]
        ],
    }

    existing = (await ctx.session.execute(
        select(WeeklyReport).where(
            WeeklyReport.user_id == payload.user_id,
            WeeklyReport.week_start == week_start,
        )
    )).scalar_one_or_none()
    if existing is None:
        existing = WeeklyReport(user_id=payload.user_id, week_start=week_start, report=report)
        ctx.session.add(existing)
    else:
        existing.report = report
    await ctx.session.flush()

    await EventStore(ctx.session).log(
        event_type=EventType.WEEKLY_REPORT_GENERATED,
        entity_type="weekly_report",
        entity_id=existing.id,
        user_id=payload.user_id,
        payload={"week_start": week_start.isoformat(), "overall": readiness.overall},
    )
    return {"report_id": str(existing.id), "week_start": week_start.isoformat(), "overall": readiness.overall}


async def send_reminder(ctx: JobContext, payload: SendReminderPayload) -> dict:
    url = ctx.settings.notification_webhook_url
    if not url:
        logger.info("No notification webhook configured, reminder skipped", extra={"user_id": str(payload.user_id)})
        return {"sent": False, "reason": "no webhook configured"}

    body = {"user_id": str(payload.user_id), "message": payload.message, "channel": payload.channel}
    if ctx.http_client is not None:
        resp = await ctx.http_client.post(url, json=body, timeout=REMINDER_TIMEOUT_SECONDS)
    else:
        async with httpx.AsyncClient() as client:
            resp = await client.post(url, json=body, timeout=REMINDER_TIMEOUT_SECONDS)
    # Non-2xx fails the attempt so the queue retries
    resp.raise_for_status()

    await EventStore(ctx.session).log(
        event_type=EventType.REMINDER_SENT,
        entity_type="user",
        entity_id=payload.user_id,
        user_id=payload.user_id,
        payload={"channel": payload.channel, "status_code": resp.status_code},
    )
    return {"sent": True, "status_code": resp.status_code}


async def generate_retest_variant(ctx: JobContext, payload: RetestVariantPayload) -> dict:
    outcome = await GenerationPipeline(ctx.session).generate_retest_variant(
        payload.asset_id,
        payload.item_id,
        skill_id=payload.skill_id,
    )
    return outcome.model_dump(mode="json")


HANDLERS: Dict[JobType, Handler] = {
    JobType.GENERATE_SESSION_ASSETS: generate_session_assets,
    JobType.PRECOMPUTE_TODAY: precompute_today,
    JobType.GENERATE_WEEKLY_REPORT: generate_weekly_report,
    JobType.SEND_REMINDER: send_reminder,
    JobType.GENERATE_RETEST_VARIANT: generate_retest_variant,
}

_unhandled = set(JobType) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"Job types without a handler: {sorted(t.value for t in _unhandled)}")


async def dispatch(ctx: JobContext, job_type: str, payload: Optional[dict]) -> dict:
    """Validate the payload for `job_type` and run its handler."""
    model = parse_payload(job_type, payload)
    return await HANDLERS[JobType(job_type)](ctx, model)
