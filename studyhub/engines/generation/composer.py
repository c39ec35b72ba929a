"""
Composer - deterministic assembly of asset items from retrieved sources.

Every item carries the ids of the sources it was built from. When a skill
has no source for an item, the item is still produced as a claim with no
citations; the validator decides what happens to it. Citations are never
invented.
"""

import itertools
import re
import uuid
from typing import Dict, Iterator, List, Optional

from pydantic import BaseModel, Field

from studyhub.engines.generation.blueprint import ActivityMixItem, ActivityType, SessionBlueprint
from studyhub.engines.grounding.retrieval_service import GroundingSource, RetrievalResult, SourceType
from studyhub.kernel.models.study import AssetType

NOTES_MIN_SECTIONS = 3
NOTES_MAX_SECTIONS = 6

_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


class ContentItem(BaseModel):
    """One unit of generated content (a note section, a card, a question, a criterion)."""

    item_id: str
    activity_type: str
    skill_id: Optional[uuid.UUID] = None
    title: str = ""
    body: str = ""
    answer: Optional[str] = None
    difficulty: Optional[str] = None
    citations: List[uuid.UUID] = Field(default_factory=list)
    is_fallback: bool = False

    @property
    def claim(self) -> str:
        return self.body or self.title


class ComposedAsset(BaseModel):
    asset_type: AssetType
    items: List[ContentItem] = Field(default_factory=list)
    activity_types: List[str] = Field(default_factory=list)


def _first_sentence(text: str, limit: int = 280) -> str:
    text = (text or "").strip()
    if not text:
        return ""
    sentence = _SENTENCE_RE.split(text, maxsplit=1)[0]
    return sentence if len(sentence) <= limit else sentence[: limit - 3].rstrip() + "..."


def _label(source: GroundingSource) -> str:
    if source.source_type == SourceType.AUTHORITY and source.citation:
        return f"{source.title} ({source.citation})"
    return source.title


class _SourceCycle:
    """Round-robin over skills, and over each skill's sources by confidence."""

    def __init__(self, retrievals: Dict[uuid.UUID, RetrievalResult], prefer: Optional[SourceType] = None):
        self.skill_ids = list(retrievals.keys())
        self._per_skill: Dict[uuid.UUID, Iterator[GroundingSource]] = {}
        self._has_sources: Dict[uuid.UUID, bool] = {}
        for skill_id, retrieval in retrievals.items():
            sources = sorted(
                retrieval.sources,
                key=lambda s: (0 if prefer and s.source_type == prefer else 1, -s.confidence),
            )
            self._has_sources[skill_id] = bool(sources)
            self._per_skill[skill_id] = itertools.cycle(sources) if sources else iter(())
        self._skills = itertools.cycle(self.skill_ids) if self.skill_ids else iter(())

    def next(self) -> tuple[Optional[uuid.UUID], Optional[GroundingSource]]:
        skill_id = next(self._skills, None)
        if skill_id is None:
            return None, None
        if not self._has_sources[skill_id]:
            return skill_id, None
        return skill_id, next(self._per_skill[skill_id])


class Composer:
    """Builds one ComposedAsset per asset type from a blueprint + retrievals."""

    def __init__(self, blueprint: SessionBlueprint, retrievals: Dict[uuid.UUID, RetrievalResult]):
        self.blueprint = blueprint
        self.retrievals = retrievals
        self._skill_names = {sid: (r.skill_name or str(sid)) for sid, r in retrievals.items()}

    def compose(self, asset_type: AssetType) -> ComposedAsset:
        builders = {
            AssetType.NOTES: self._notes,
            AssetType.CHECKPOINT: self._checkpoint,
            AssetType.PRACTICE_SET: self._practice_set,
            AssetType.RUBRIC: self._rubric,
        }
        items = builders[asset_type]()
        return ComposedAsset(
            asset_type=asset_type,
            items=items,
            activity_types=sorted({i.activity_type for i in items}),
        )

    def _skill_name(self, skill_id: Optional[uuid.UUID]) -> str:
        if skill_id is None:
            return "this topic"
        return self._skill_names.get(skill_id, str(skill_id))

    # -- NOTES ---------------------------------------------------------------

    def _notes(self) -> List[ContentItem]:
        mix = self.blueprint.items_for_asset(AssetType.NOTES)
        difficulty = mix[0].difficulty.value if mix else None
        sections: List[ContentItem] = []
        for skill_id, retrieval in self.retrievals.items():
            name = self._skill_name(skill_id)
            if retrieval.is_empty:
                sections.append(ContentItem(
                    item_id=f"notes-{len(sections) + 1}",
                    activity_type=ActivityType.READING_NOTES.value,
                    skill_id=skill_id,
                    title=f"Key principles: {name}",
                    body=f"Core rules and elements of {name}.",
                    difficulty=difficulty,
                ))
                continue
            for source in retrieval.sources:
                if len(sections) >= NOTES_MAX_SECTIONS:
                    break
                sections.append(ContentItem(
                    item_id=f"notes-{len(sections) + 1}",
                    activity_type=ActivityType.READING_NOTES.value,
                    skill_id=skill_id,
                    title=_label(source),
                    body=source.text or source.title,
                    difficulty=difficulty,
                    citations=[source.source_id],
                ))

        # Pad thin notes with an overview section per skill
        cycle = _SourceCycle(self.retrievals, prefer=SourceType.OUTLINE_TOPIC)
        while len(sections) < NOTES_MIN_SECTIONS and cycle.skill_ids:
            skill_id, source = cycle.next()
            name = self._skill_name(skill_id)
            sections.append(ContentItem(
                item_id=f"notes-{len(sections) + 1}",
                activity_type=ActivityType.READING_NOTES.value,
                skill_id=skill_id,
                title=f"Summary: {name}",
                body=_first_sentence(source.text) if source else f"Summary of {name}.",
                difficulty=difficulty,
                citations=[source.source_id] if source else [],
            ))
        return sections

    # -- CHECKPOINT ----------------------------------------------------------

    def _checkpoint(self) -> List[ContentItem]:
        items: List[ContentItem] = []
        cycle = _SourceCycle(self.retrievals, prefer=SourceType.AUTHORITY)
        for mix_item in self.blueprint.items_for_asset(AssetType.CHECKPOINT):
            for _ in range(mix_item.count):
                skill_id, source = cycle.next()
                items.append(self._checkpoint_item(mix_item, skill_id, source, len(items) + 1))
        return items

    def _checkpoint_item(
        self,
        mix_item: ActivityMixItem,
        skill_id: Optional[uuid.UUID],
        source: Optional[GroundingSource],
        n: int,
    ) -> ContentItem:
        name = self._skill_name(skill_id)
        if mix_item.activity_type == ActivityType.FLASHCARDS:
            title = _label(source) if source else name
            body = f"What is the rule in {title}?"
            answer = _first_sentence(source.text) if source else f"The governing rule for {name}."
        else:
            title = f"Recall: {_label(source) if source else name}"
            body = f"State the rule and its elements for {_label(source) if source else name}."
            answer = _first_sentence(source.text) if source else f"The elements of {name}."
        return ContentItem(
            item_id=f"checkpoint-{n}",
            activity_type=mix_item.activity_type.value,
            skill_id=skill_id,
            title=title,
            body=body,
            answer=answer,
            difficulty=mix_item.difficulty.value,
            citations=[source.source_id] if source else [],
        )

    # -- PRACTICE_SET --------------------------------------------------------

    _PRACTICE_PROMPTS = {
        ActivityType.WRITTEN_QUIZ: "Explain how {label} applies to {skill}.",
        ActivityType.ISSUE_SPOTTER: "Identify every issue raised under {skill}, citing {label}.",
        ActivityType.RULE_ELEMENTS_DRILL: "List the elements of the rule in {label}.",
        ActivityType.ESSAY_OUTLINE: "Outline an answer on {skill} built around {label}.",
        ActivityType.FULL_ESSAY: "Write a full answer on {skill}, applying {label}.",
        ActivityType.PAST_PAPER_STYLE: "Answer an exam-style problem on {skill} using {label}.",
        ActivityType.ERROR_CORRECTION: "Correct the common misstatement of {label}.",
        ActivityType.MIXED_REVIEW: "Review {label} alongside related rules in {skill}.",
    }

    def _practice_set(self) -> List[ContentItem]:
        items: List[ContentItem] = []
        for mix_item in self.blueprint.items_for_asset(AssetType.PRACTICE_SET):
            prefer = SourceType.AUTHORITY if mix_item.activity_type in (
                ActivityType.ISSUE_SPOTTER, ActivityType.PAST_PAPER_STYLE
            ) else SourceType.LECTURE_CHUNK
            cycle = _SourceCycle(self.retrievals, prefer=prefer)
            template = self._PRACTICE_PROMPTS[mix_item.activity_type]
            for _ in range(mix_item.count):
                skill_id, source = cycle.next()
                name = self._skill_name(skill_id)
                label = _label(source) if source else f"the governing rule for {name}"
                items.append(ContentItem(
                    item_id=f"practice-{len(items) + 1}",
                    activity_type=mix_item.activity_type.value,
                    skill_id=skill_id,
                    title=mix_item.activity_type.value.replace("_", " ").title(),
                    body=template.format(label=label, skill=name),
                    answer=_first_sentence(source.text) if source else None,
                    difficulty=mix_item.difficulty.value,
                    citations=[source.source_id] if source else [],
                ))
        return items

    # -- RUBRIC --------------------------------------------------------------

    def _rubric(self) -> List[ContentItem]:
        items: List[ContentItem] = []
        practice_types = [m.activity_type.value for m in self.blueprint.items_for_asset(AssetType.RUBRIC)]
        if not practice_types:
            # Rubric criteria follow the practice set when every written format is gated
            practice_types = [m.activity_type.value for m in self.blueprint.items_for_asset(AssetType.PRACTICE_SET)]
        activity = practice_types[0] if practice_types else ActivityType.RULE_ELEMENTS_DRILL.value
        for skill_id, retrieval in self.retrievals.items():
            name = self._skill_name(skill_id)
            authorities = retrieval.authorities[:2]
            rule_source = (retrieval.outline_topics or retrieval.lecture_chunks or [None])[0]
            items.append(ContentItem(
                item_id=f"rubric-{len(items) + 1}",
                activity_type=activity,
                skill_id=skill_id,
                title=f"States the rule: {name}",
                body=(
                    f"Accurately states the rule from {_label(rule_source)}."
                    if rule_source else f"Accurately states the governing rule for {name}."
                ),
                citations=[rule_source.source_id] if rule_source else [],
            ))
            if authorities:
                for authority in authorities:
                    items.append(ContentItem(
                        item_id=f"rubric-{len(items) + 1}",
                        activity_type=activity,
                        skill_id=skill_id,
                        title=f"Applies authority: {authority.title}",
                        body=f"Applies {_label(authority)} to the facts.",
                        citations=[authority.source_id],
                    ))
            else:
                items.append(ContentItem(
                    item_id=f"rubric-{len(items) + 1}",
                    activity_type=activity,
                    skill_id=skill_id,
                    title=f"Supports with authority: {name}",
                    body=f"Supports the analysis of {name} with binding authority.",
                ))
        return items

    # -- RETEST VARIANTS -----------------------------------------------------

    def variant(self, original: ContentItem, n: int) -> ContentItem:
        """A retest item on the same skill, built from a different source where one exists."""
        retrieval = self.retrievals.get(original.skill_id) if original.skill_id else None
        sources = sorted(retrieval.sources, key=lambda s: -s.confidence) if retrieval else []
        used = set(original.citations)
        source = next((s for s in sources if s.source_id not in used), sources[0] if sources else None)

        try:
            activity = ActivityType(original.activity_type)
        except ValueError:
            activity = ActivityType.MIXED_REVIEW
        template = self._PRACTICE_PROMPTS.get(activity, self._PRACTICE_PROMPTS[ActivityType.MIXED_REVIEW])
        name = self._skill_name(original.skill_id)
        label = _label(source) if source else f"the governing rule for {name}"
        return ContentItem(
            item_id=f"{original.item_id}-variant-{n}",
            activity_type=activity.value,
            skill_id=original.skill_id,
            title=f"Retest: {original.title}" if original.title else "Retest",
            body=template.format(label=label, skill=name),
            answer=_first_sentence(source.text) if source else None,
            difficulty=original.difficulty,
            citations=[source.source_id] if source else [],
        )
