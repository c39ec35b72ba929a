"""Unit tests for composition and grounding validation."""

import uuid

import pytest

from studyhub.engines.generation.blueprint import compute_blueprint
from studyhub.engines.generation.composer import ComposedAsset, Composer, ContentItem
from studyhub.engines.generation.grounding_validator import (
    ERROR_NO_CITATION,
    ERROR_UNRETRIEVED_CITATION,
    FALLBACK_TEXT,
    validate_grounding,
)
from studyhub.engines.grounding.retrieval_service import GroundingSource, RetrievalResult, SourceType
from studyhub.exceptions import GroundingError
from studyhub.kernel.models.study import AssetType

GROUNDED = uuid.uuid4()
ORPHAN = uuid.uuid4()


def _source(source_type: SourceType, title: str, text: str, citation=None, confidence=1.0) -> GroundingSource:
    return GroundingSource(
        source_type=source_type,
        source_id=uuid.uuid4(),
        skill_id=GROUNDED,
        title=title,
        text=text,
        citation=citation,
        confidence=confidence,
    )


@pytest.fixture
def grounded_retrieval() -> RetrievalResult:
    return RetrievalResult(
        skill_id=GROUNDED,
        skill_name="Formation of contract",
        outline_topics=[_source(SourceType.OUTLINE_TOPIC, "Offer and acceptance", "An offer is a promise. More.")],
        lecture_chunks=[_source(SourceType.LECTURE_CHUNK, "Lecture 3", "Consideration must move.", confidence=0.85)],
        authorities=[_source(
            SourceType.AUTHORITY, "Carlill v Carbolic", "Unilateral offers.", citation="[1893] 1 QB 256"
        )],
    )


@pytest.fixture
def orphan_retrieval() -> RetrievalResult:
    return RetrievalResult(skill_id=ORPHAN, skill_name="Restitution")


class TestComposer:
    @pytest.mark.parametrize("asset_type", list(AssetType))
    def test_citations_only_reference_retrieved_sources(self, grounded_retrieval, asset_type):
        blueprint = compute_blueprint([GROUNDED], 30)
        asset = Composer(blueprint, {GROUNDED: grounded_retrieval}).compose(asset_type)
        retrieved = grounded_retrieval.source_ids()
        assert asset.items
        for item in asset.items:
            assert item.citations
            assert set(item.citations) <= retrieved

    def test_notes_have_minimum_sections(self, orphan_retrieval):
        blueprint = compute_blueprint([ORPHAN], 30)
        asset = Composer(blueprint, {ORPHAN: orphan_retrieval}).compose(AssetType.NOTES)
        assert len(asset.items) >= 3

    def test_orphan_skill_items_carry_no_citations(self, orphan_retrieval):
        blueprint = compute_blueprint([ORPHAN], 30)
        asset = Composer(blueprint, {ORPHAN: orphan_retrieval}).compose(AssetType.CHECKPOINT)
        assert all(item.citations == [] for item in asset.items)

    def test_composition_is_deterministic(self, grounded_retrieval):
        blueprint = compute_blueprint([GROUNDED], 45)
        first = Composer(blueprint, {GROUNDED: grounded_retrieval}).compose(AssetType.PRACTICE_SET)
        second = Composer(blueprint, {GROUNDED: grounded_retrieval}).compose(AssetType.PRACTICE_SET)
        assert first == second


class TestValidateGrounding:
    def test_grounded_asset_passes_unchanged(self, grounded_retrieval):
        blueprint = compute_blueprint([GROUNDED], 30)
        asset = Composer(blueprint, {GROUNDED: grounded_retrieval}).compose(AssetType.RUBRIC)
        outcome = validate_grounding(asset, grounded_retrieval.source_ids(), strict=True)
        assert outcome.missing == []
        assert outcome.cited_items == outcome.total_items

    def test_soft_mode_replaces_unsupported_items(self, orphan_retrieval):
        blueprint = compute_blueprint([ORPHAN], 30)
        asset = Composer(blueprint, {ORPHAN: orphan_retrieval}).compose(AssetType.CHECKPOINT)
        outcome = validate_grounding(asset, set())
        assert outcome.fallback_items == len(asset.items)
        assert all(item.is_fallback and item.body == FALLBACK_TEXT for item in outcome.items)
        assert {m.error_tag for m in outcome.missing} == {ERROR_NO_CITATION}
        assert outcome.missing[0].skill_ids == [ORPHAN]

    def test_strict_mode_raises_with_missing_claims(self, orphan_retrieval):
        blueprint = compute_blueprint([ORPHAN], 30)
        asset = Composer(blueprint, {ORPHAN: orphan_retrieval}).compose(AssetType.NOTES)
        with pytest.raises(GroundingError) as exc_info:
            validate_grounding(asset, set(), strict=True)
        assert len(exc_info.value.missing) == len(asset.items)

    def test_unretrieved_citation_is_rejected(self):
        item = ContentItem(
            item_id="practice-1",
            activity_type="WRITTEN_QUIZ",
            skill_id=GROUNDED,
            body="Explain the postal rule.",
            citations=[uuid.uuid4()],
        )
        asset = ComposedAsset(asset_type=AssetType.PRACTICE_SET, items=[item])
        outcome = validate_grounding(asset, {uuid.uuid4()})
        assert outcome.items[0].is_fallback is True
        assert outcome.items[0].citations == []
        assert outcome.missing[0].error_tag == ERROR_UNRETRIEVED_CITATION

    def test_min_citations_threshold(self, grounded_retrieval):
        blueprint = compute_blueprint([GROUNDED], 30)
        asset = Composer(blueprint, {GROUNDED: grounded_retrieval}).compose(AssetType.CHECKPOINT)
        outcome = validate_grounding(asset, grounded_retrieval.source_ids(), min_citations=2)
        assert outcome.cited_items == 0
        assert outcome.fallback_items == len(asset.items)
