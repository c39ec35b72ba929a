"""
Generation Pipeline - Blueprint -> Retrieve -> Compose -> Validate -> Persist.

Builds one StudyAsset. Idempotent: an asset that is already READY is left
alone. Strict-mode grounding rejections mark the asset FAILED and are not
retried; any other exception propagates to the job queue, which retries and
eventually marks the asset FAILED itself.

Retest variants reuse Retrieve -> Compose -> Validate for a single item and
are appended to a READY asset without changing its status.
"""

import uuid
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.config import get_settings
from studyhub.engines.generation.blueprint import SessionBlueprint, SkillMasterySnapshot, compute_blueprint
from studyhub.engines.generation.composer import ComposedAsset, Composer, ContentItem
from studyhub.engines.generation.grounding_validator import MissingClaim, ValidationOutcome, validate_grounding
from studyhub.engines.generation.remediation import RemediationService, most_severe
from studyhub.engines.grounding.retrieval_service import GroundingRetrievalService, RetrievalResult
from studyhub.engines.mastery.mastery_repository import MasteryRepository
from studyhub.exceptions import GroundingError, NotFoundError
from studyhub.kernel.events.event_store import EventStore
from studyhub.kernel.events.event_types import AssetEvent, GroundingMissingEvent
from studyhub.kernel.models import (
    AssetStatus,
    AssetType,
    EventType,
    MissingAuthorityLogEntry,
    SessionStatus,
    StudyAsset,
    StudySession,
    utcnow,
)
from studyhub.logging_config import get_logger
from studyhub.orchestration.state_machine import StateMachine

logger = get_logger(__name__)


class GenerationOutcome(BaseModel):
    """What a generation run did to one asset."""

    asset_id: uuid.UUID
    session_id: uuid.UUID
    asset_type: str
    status: str
    skipped: bool = False
    stats: Dict[str, int] = Field(default_factory=dict)
    missing_claims: int = 0
    session_status: Optional[str] = None
    error: Optional[str] = None


class VariantOutcome(BaseModel):
    asset_id: uuid.UUID
    original_item_id: str
    variant: ContentItem
    missing_claims: int = 0


def grounding_refs(retrievals: Dict[uuid.UUID, RetrievalResult], cited: set) -> Dict[str, List[str]]:
    """Group the cited source ids by source class."""
    refs: Dict[str, List[str]] = {
        "outline_topic_ids": [],
        "lecture_chunk_ids": [],
        "authority_ids": [],
    }
    for retrieval in retrievals.values():
        for key, sources in (
            ("outline_topic_ids", retrieval.outline_topics),
            ("lecture_chunk_ids", retrieval.lecture_chunks),
            ("authority_ids", retrieval.authorities),
        ):
            for source in sources:
                sid = str(source.source_id)
                if source.source_id in cited and sid not in refs[key]:
                    refs[key].append(sid)
    return refs


class GenerationPipeline:
    """Runs the five generation stages for a single asset."""

    def __init__(self, session: AsyncSession, strict: Optional[bool] = None, min_citations: Optional[int] = None):
        settings = get_settings()
        self.session = session
        self.strict = settings.grounding_strict_mode if strict is None else strict
        self.min_citations = settings.grounding_min_citations if min_citations is None else min_citations
        self.state_machine = StateMachine(session)
        self.event_store = EventStore(session)

    async def generate_asset(self, asset_id: uuid.UUID, days_to_exam: Optional[int] = None) -> GenerationOutcome:
        asset = await self.session.get(StudyAsset, asset_id)
        if asset is None:
            raise NotFoundError("StudyAsset", asset_id)
        study_session = await self.session.get(StudySession, asset.session_id)
        if study_session is None:
            raise NotFoundError("StudySession", asset.session_id)

        if asset.status == AssetStatus.READY.value:
            logger.info("Asset already READY, skipping", extra={"asset_id": str(asset.id)})
            return self._outcome(asset, study_session, skipped=True)

        if asset.status == AssetStatus.FAILED.value:
            self.state_machine.transition_asset(asset, AssetStatus.GENERATING.value)
        elif asset.generation_started_at is None:
            asset.generation_started_at = utcnow()
        if study_session.status == SessionStatus.QUEUED.value:
            await self.state_machine.transition_session(study_session, SessionStatus.PREPARING.value)

        skill_ids = [uuid.UUID(str(s)) for s in study_session.target_skill_ids]

        # Blueprint
        blueprint = await self._blueprint(study_session, skill_ids, days_to_exam)
        # Retrieve
        retrievals = await GroundingRetrievalService(self.session).retrieve_many(skill_ids)
        retrieved_ids = set()
        for retrieval in retrievals.values():
            retrieved_ids |= retrieval.source_ids()
        # Compose
        asset_type = AssetType(asset.asset_type)
        composed = Composer(blueprint, retrievals).compose(asset_type)

        # Validate
        try:
            validation = validate_grounding(
                composed,
                retrieved_ids,
                min_citations=self.min_citations,
                strict=self.strict,
            )
        except GroundingError as exc:
            await self._log_missing(asset, study_session, exc.missing)
            await self._fail(asset, study_session, str(exc))
            logger.warning(
                "Asset rejected by strict grounding",
                extra={"asset_id": str(asset.id), "missing_claims": len(exc.missing)},
            )
            outcome = self._outcome(asset, study_session)
            outcome.missing_claims = len(exc.missing)
            return outcome

        # Persist
        await self._log_missing(asset, study_session, validation.missing)
        await self._persist(asset, blueprint, retrievals, validation)
        await self.session.flush()

        await self.state_machine.refresh_session_readiness(study_session, await self._session_assets(study_session))
        await self.session.flush()

        logger.info(
            "Asset generated",
            extra={
                "asset_id": str(asset.id),
                "asset_type": asset.asset_type,
                "session_status": study_session.status,
                **validation.stats,
            },
        )
        outcome = self._outcome(asset, study_session)
        outcome.missing_claims = len(validation.missing)
        return outcome

    async def mark_failed(self, asset_id: uuid.UUID, error: str) -> None:
        """Terminal failure from the job queue. The session stays PREPARING."""
        asset = await self.session.get(StudyAsset, asset_id)
        if asset is None or asset.status == AssetStatus.READY.value:
            return
        study_session = await self.session.get(StudySession, asset.session_id)
        await self._fail(asset, study_session, error)

    async def generate_retest_variant(
        self,
        asset_id: uuid.UUID,
        item_id: str,
        skill_id: Optional[uuid.UUID] = None,
    ) -> VariantOutcome:
        """Append a grounded variant of one item to the asset's content["variants"]."""
        asset = await self.session.get(StudyAsset, asset_id)
        if asset is None:
            raise NotFoundError("StudyAsset", asset_id)
        study_session = await self.session.get(StudySession, asset.session_id)
        if study_session is None:
            raise NotFoundError("StudySession", asset.session_id)

        content = dict(asset.content or {})
        raw = next((i for i in content.get("items", []) if i.get("item_id") == item_id), None)
        if raw is None:
            raise NotFoundError("ContentItem", item_id)
        original = ContentItem.model_validate(raw)
        if skill_id is not None:
            original.skill_id = skill_id
        skill_ids = [original.skill_id] if original.skill_id else [
            uuid.UUID(str(s)) for s in study_session.target_skill_ids
        ]
        if original.skill_id is None and skill_ids:
            original.skill_id = skill_ids[0]

        retrievals = await GroundingRetrievalService(self.session).retrieve_many(skill_ids)
        retrieved_ids = set()
        for retrieval in retrievals.values():
            retrieved_ids |= retrieval.source_ids()

        variants = list(content.get("variants", []))
        blueprint = compute_blueprint(skill_ids, study_session.estimated_minutes, enforce_gates=False)
        candidate = Composer(blueprint, retrievals).variant(original, len(variants) + 1)
        # Variants never fail the asset, unsupported ones fall back
        validation = validate_grounding(
            ComposedAsset(asset_type=AssetType(asset.asset_type), items=[candidate]),
            retrieved_ids,
            min_citations=self.min_citations,
            strict=False,
        )
        await self._log_missing(asset, study_session, validation.missing)

        variant = validation.items[0]
        variants.append({
            "original_item_id": item_id,
            "item": variant.model_dump(mode="json"),
            "generated_at": utcnow().isoformat(),
        })
        content["variants"] = variants
        asset.content = content
        await self.session.flush()

        logger.info(
            "Retest variant generated",
            extra={"asset_id": str(asset.id), "item_id": item_id, "fallback": variant.is_fallback},
        )
        return VariantOutcome(
            asset_id=asset.id,
            original_item_id=item_id,
            variant=variant,
            missing_claims=len(validation.missing),
        )

    async def _blueprint(
        self,
        study_session: StudySession,
        skill_ids: List[uuid.UUID],
        days_to_exam: Optional[int],
    ) -> SessionBlueprint:
        states = await MasteryRepository(self.session).states_by_skill(study_session.user_id, skill_ids)
        snapshots = [
            SkillMasterySnapshot(
                skill_id=sid,
                p_mastery=states[sid].p_mastery,
                consecutive_wrong=states[sid].consecutive_wrong,
                reps=states[sid].attempt_count,
            )
            for sid in skill_ids
            if sid in states
        ]
        if days_to_exam is None and study_session.exam_date is not None:
            days_to_exam = max(0, (study_session.exam_date - study_session.session_date).days)
        prescriptions = await RemediationService(self.session).prescribe(study_session.user_id, skill_ids)
        return compute_blueprint(
            skill_ids,
            study_session.estimated_minutes,
            mastery=snapshots,
            days_to_exam=days_to_exam,
            remediation=most_severe(prescriptions),
        )

    async def _persist(
        self,
        asset: StudyAsset,
        blueprint: SessionBlueprint,
        retrievals: Dict[uuid.UUID, RetrievalResult],
        validation: ValidationOutcome,
    ) -> None:
        cited = {c for item in validation.items for c in item.citations}
        asset.content = {
            "items": [item.model_dump(mode="json") for item in validation.items],
            "stats": validation.stats,
            "blueprint": {
                "focus": blueprint.focus.value,
                "phase": blueprint.phase.value,
                "minutes": blueprint.minutes,
                "removed_activities": [a.value for a in blueprint.removed_activities],
                "remediation": blueprint.remediation_severity,
            },
            "sources": [r.summary() for r in retrievals.values()],
        }
        asset.grounding_refs = grounding_refs(retrievals, cited)
        asset.activity_types = sorted({item.activity_type for item in validation.items})
        self.state_machine.transition_asset(asset, AssetStatus.READY.value)

        await self.event_store.log_from_model(
            event_type=EventType.ASSET_READY,
            entity_type="asset",
            entity_id=asset.id,
            user_id=None,
            payload_model=AssetEvent(
                session_id=asset.session_id,
                asset_type=asset.asset_type,
                status=asset.status,
                stats=validation.stats,
            ),
        )

    async def _fail(self, asset: StudyAsset, study_session: Optional[StudySession], error: str) -> None:
        if asset.status != AssetStatus.FAILED.value:
            self.state_machine.transition_asset(asset, AssetStatus.FAILED.value)
        asset.generation_error = error
        await self.event_store.log_from_model(
            event_type=EventType.ASSET_FAILED,
            entity_type="asset",
            entity_id=asset.id,
            user_id=study_session.user_id if study_session else None,
            payload_model=AssetEvent(
                session_id=asset.session_id,
                asset_type=asset.asset_type,
                status=asset.status,
                error=error,
            ),
        )
        await self.session.flush()

    async def _log_missing(
        self,
        asset: StudyAsset,
        study_session: StudySession,
        missing: List[MissingClaim],
    ) -> None:
        if not missing:
            return
        for claim in missing:
            self.session.add(MissingAuthorityLogEntry(
                claim=claim.claim,
                skill_ids=[str(s) for s in claim.skill_ids],
                error_tag=claim.error_tag,
                session_id=study_session.id,
                asset_id=asset.id,
                detail=claim.detail,
            ))
        await self.event_store.log_from_model(
            event_type=EventType.GROUNDING_MISSING,
            entity_type="asset",
            entity_id=asset.id,
            user_id=study_session.user_id,
            payload_model=GroundingMissingEvent(
                asset_id=asset.id,
                claims=[m.claim for m in missing],
                strict_mode=self.strict,
            ),
        )

    async def _session_assets(self, study_session: StudySession) -> List[StudyAsset]:
        result = await self.session.execute(
            select(StudyAsset).where(StudyAsset.session_id == study_session.id)
        )
        return list(result.scalars().all())

    @staticmethod
    def _outcome(asset: StudyAsset, study_session: StudySession, skipped: bool = False) -> GenerationOutcome:
        return GenerationOutcome(
            asset_id=asset.id,
            session_id=asset.session_id,
            asset_type=asset.asset_type,
            status=asset.status,
            skipped=skipped,
            stats=asset.stats,
            session_status=study_session.status,
            error=asset.generation_error,
        )
