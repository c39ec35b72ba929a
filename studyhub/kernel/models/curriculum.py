"""
Curriculum reference data - units, skills and the source material they map to.

Written by curriculum import; read-only for the rest of the system.
"""

import uuid
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studyhub.kernel.models.base import Base, TimestampMixin, generate_uuid


class CurriculumUnit(Base, TimestampMixin):
    """An examinable unit (e.g. a course or paper) grouping skills."""

    __tablename__ = "curriculum_units"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    skills: Mapped[List["Skill"]] = relationship(back_populates="unit")


class Skill(Base, TimestampMixin):
    """A single assessable competence within a unit."""

    __tablename__ = "skills"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    unit_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("curriculum_units.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Fraction of the unit's exam marks this skill carries, 0..1
    exam_weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    min_practice_reps: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    min_timed_proofs: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    is_core: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    unit: Mapped["CurriculumUnit"] = relationship(back_populates="skills")


class OutlineTopic(Base, TimestampMixin):
    """A heading from the official syllabus outline."""

    __tablename__ = "outline_topics"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    unit_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("curriculum_units.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    topic_number: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class SkillOutlineMap(Base):
    """Skill <-> outline topic mapping with a coverage strength (0..1)."""

    __tablename__ = "skill_outline_map"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    skill_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("skills.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    topic_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("outline_topics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    coverage_strength: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    __table_args__ = (UniqueConstraint("skill_id", "topic_id", name="uq_skill_outline_map"),)


class LectureChunk(Base, TimestampMixin):
    """A segment of a lecture transcript. Only approved chunks are citable."""

    __tablename__ = "lecture_chunks"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    unit_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("curriculum_units.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    lecture_title: Mapped[str] = mapped_column(String(500), nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class LectureSkillMap(Base):
    """Lecture chunk <-> skill mapping with the mapper's confidence."""

    __tablename__ = "lecture_skill_map"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    chunk_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("lecture_chunks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    skill_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("skills.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    __table_args__ = (UniqueConstraint("chunk_id", "skill_id", name="uq_lecture_skill_map"),)


class AuthorityType(str, Enum):
    """Kinds of primary authority."""

    STATUTE = "statute"
    CASE = "case"
    REGULATION = "regulation"


class Authority(Base, TimestampMixin):
    """
    A primary legal authority (statute, case, regulation).

    skill_ids / unit_ids are JSON lists of UUID strings; retrieval matches
    a skill directly or falls back to the skill's unit.
    """

    __tablename__ = "authorities"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    authority_type: Mapped[str] = mapped_column(String(30), nullable=False, default=AuthorityType.CASE.value)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    citation: Mapped[str] = mapped_column(String(255), nullable=False)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    skill_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    unit_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
