"""
Grounding Retrieval Service - finds the verified material a skill can be
taught from.

Three source classes, each with a confidence:
- outline topics mapped to the skill (confidence = coverage strength)
- approved lecture chunks mapped to the skill (confidence = mapping confidence)
- verified authorities naming the skill (1.0) or only its unit (0.8)

Read-only. Nothing found is an empty RetrievalResult, never an error.
"""

import uuid
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.kernel.models import (
    Authority,
    LectureChunk,
    LectureSkillMap,
    OutlineTopic,
    Skill,
    SkillOutlineMap,
)
from studyhub.logging_config import get_logger

logger = get_logger(__name__)

SKILL_MATCH_CONFIDENCE = 1.0
UNIT_MATCH_CONFIDENCE = 0.8


class SourceType(str, Enum):
    OUTLINE_TOPIC = "outline_topic"
    LECTURE_CHUNK = "lecture_chunk"
    AUTHORITY = "authority"


class GroundingSource(BaseModel):
    """A retrieved candidate. Ephemeral; assets keep only its id."""

    source_type: SourceType
    source_id: uuid.UUID
    skill_id: uuid.UUID
    title: str
    text: str = ""
    citation: Optional[str] = None
    confidence: float = Field(..., ge=0.0, le=1.0)


class RetrievalResult(BaseModel):
    skill_id: uuid.UUID
    skill_name: str = ""
    outline_topics: List[GroundingSource] = Field(default_factory=list)
    lecture_chunks: List[GroundingSource] = Field(default_factory=list)
    authorities: List[GroundingSource] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.outline_topics or self.lecture_chunks or self.authorities)

    @property
    def sources(self) -> List[GroundingSource]:
        return [*self.outline_topics, *self.lecture_chunks, *self.authorities]

    def source_ids(self) -> set[uuid.UUID]:
        return {s.source_id for s in self.sources}

    def summary(self) -> str:
        """One-line description for logs and asset metadata."""
        if self.is_empty:
            return f"{self.skill_name or self.skill_id}: no verified sources"
        return (
            f"{self.skill_name or self.skill_id}: "
            f"{len(self.outline_topics)} outline topic(s), "
            f"{len(self.lecture_chunks)} lecture excerpt(s), "
            f"{len(self.authorities)} authority(ies)"
        )


class GroundingRetrievalService:
    """Sources per skill. Verified authorities are loaded once per instance."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._verified: Optional[List[Authority]] = None

    async def retrieve(self, skill_id: uuid.UUID) -> RetrievalResult:
        skill = await self.session.get(Skill, skill_id)
        if skill is None:
            logger.warning("Retrieval for unknown skill", extra={"skill_id": str(skill_id)})
            return RetrievalResult(skill_id=skill_id)

        result = RetrievalResult(
            skill_id=skill_id,
            skill_name=skill.name,
            outline_topics=await self._outline_topics(skill_id),
            lecture_chunks=await self._lecture_chunks(skill_id),
            authorities=await self._authorities(skill),
        )
        if result.is_empty:
            logger.info("No grounding sources for skill", extra={"skill_id": str(skill_id)})
        return result

    async def retrieve_many(self, skill_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, RetrievalResult]:
        results: Dict[uuid.UUID, RetrievalResult] = {}
        for skill_id in skill_ids:
            if skill_id not in results:
                results[skill_id] = await self.retrieve(skill_id)
        return results

    async def _outline_topics(self, skill_id: uuid.UUID) -> List[GroundingSource]:
        rows = (await self.session.execute(
            select(OutlineTopic, SkillOutlineMap.coverage_strength)
            .join(SkillOutlineMap, SkillOutlineMap.topic_id == OutlineTopic.id)
            .where(SkillOutlineMap.skill_id == skill_id)
            .order_by(SkillOutlineMap.coverage_strength.desc(), OutlineTopic.topic_number)
        )).all()
        return [
            GroundingSource(
                source_type=SourceType.OUTLINE_TOPIC,
                source_id=topic.id,
                skill_id=skill_id,
                title=f"{topic.topic_number} {topic.title}",
                text=topic.description or topic.title,
                confidence=max(0.0, min(1.0, strength)),
            )
            for topic, strength in rows
        ]

    async def _lecture_chunks(self, skill_id: uuid.UUID) -> List[GroundingSource]:
        rows = (await self.session.execute(
            select(LectureChunk, LectureSkillMap.confidence)
            .join(LectureSkillMap, LectureSkillMap.chunk_id == LectureChunk.id)
            .where(
                LectureSkillMap.skill_id == skill_id,
                LectureChunk.is_approved.is_(True),
            )
            .order_by(LectureSkillMap.confidence.desc(), LectureChunk.chunk_index)
        )).all()
        return [
            GroundingSource(
                source_type=SourceType.LECTURE_CHUNK,
                source_id=chunk.id,
                skill_id=skill_id,
                title=chunk.lecture_title,
                text=chunk.content,
                confidence=max(0.0, min(1.0, confidence)),
            )
            for chunk, confidence in rows
        ]

    async def _verified_authorities(self) -> List[Authority]:
        if self._verified is None:
            self._verified = list((await self.session.execute(
                select(Authority).where(Authority.is_verified.is_(True)).order_by(Authority.title)
            )).scalars().all())
        return self._verified

    async def _authorities(self, skill: Skill) -> List[GroundingSource]:
        rows = await self._verified_authorities()
        skill_key, unit_key = str(skill.id), str(skill.unit_id)

        found: List[GroundingSource] = []
        for authority in rows:
            if skill_key in (authority.skill_ids or []):
                confidence = SKILL_MATCH_CONFIDENCE
            elif unit_key in (authority.unit_ids or []):
                confidence = UNIT_MATCH_CONFIDENCE
            else:
                continue
            found.append(GroundingSource(
                source_type=SourceType.AUTHORITY,
                source_id=authority.id,
                skill_id=skill.id,
                title=authority.title,
                text=authority.summary or "",
                citation=authority.citation,
                confidence=confidence,
            ))
        found.sort(key=lambda s: -s.confidence)
        return found
