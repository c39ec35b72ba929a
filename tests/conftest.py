"""
Pytest fixtures for StudyHub tests.

Uses a temp-file SQLite database so every connection (API, worker, fixtures)
shares the same data. Environment is set before studyhub is imported so the
app's engine points at the test database.
"""

import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio

_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_tmp.close()
TEST_DB_PATH = _tmp.name
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["OPENAI_API_KEY"] = ""
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""
os.environ["GROUNDING_STRICT_MODE"] = "false"

from studyhub.config import get_settings  # noqa: E402

get_settings.cache_clear()

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from studyhub.database import async_session_maker, engine  # noqa: E402
from studyhub.kernel.models import (  # noqa: E402
    Authority,
    AuthorityType,
    Base,
    CurriculumUnit,
    LectureChunk,
    LectureSkillMap,
    OutlineTopic,
    Skill,
    SkillOutlineMap,
)

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def hours():
    """hours(n) -> NOW + n hours, for spacing attempts."""
    return lambda n: NOW + timedelta(hours=n)


@pytest_asyncio.fixture
async def db_tables():
    """Create all tables for one test and drop them afterwards."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def session_factory(db_tables) -> async_sessionmaker[AsyncSession]:
    return async_session_maker


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest_asyncio.fixture
async def curriculum(session_factory) -> SimpleNamespace:
    """
    One unit with three skills:
    - contract: outline topic, approved lecture chunk, verified authority
    - tort: outline topic only
    - orphan: no sources at all
    """
    async with session_factory() as session:
        unit = CurriculumUnit(code="LAW101", name="Law of Obligations")
        session.add(unit)
        await session.flush()

        contract = Skill(
            unit_id=unit.id,
            name="Formation of contract",
            description="Offer, acceptance, consideration and intention",
            exam_weight=0.6,
            is_core=True,
        )
        tort = Skill(unit_id=unit.id, name="Duty of care", exam_weight=0.3)
        orphan = Skill(unit_id=unit.id, name="Restitution", exam_weight=0.1)
        session.add_all([contract, tort, orphan])
        await session.flush()

        topic = OutlineTopic(
            unit_id=unit.id,
            topic_number="1.1",
            title="Offer and acceptance",
            description="An offer is a definite promise to be bound. Acceptance must mirror the offer.",
        )
        tort_topic = OutlineTopic(
            unit_id=unit.id,
            topic_number="2.1",
            title="Negligence",
            description="A duty of care arises where harm is foreseeable and the parties are proximate.",
        )
        session.add_all([topic, tort_topic])
        await session.flush()
        session.add_all([
            SkillOutlineMap(skill_id=contract.id, topic_id=topic.id, coverage_strength=0.9),
            SkillOutlineMap(skill_id=tort.id, topic_id=tort_topic.id, coverage_strength=0.8),
        ])

        chunk = LectureChunk(
            unit_id=unit.id,
            lecture_title="Lecture 3: Consideration",
            chunk_index=0,
            content="Consideration must move from the promisee. Past consideration is no consideration.",
            is_approved=True,
        )
        draft_chunk = LectureChunk(
            unit_id=unit.id,
            lecture_title="Lecture 4: Draft notes",
            chunk_index=0,
            content="Unreviewed material.",
            is_approved=False,
        )
        session.add_all([chunk, draft_chunk])
        await session.flush()
        session.add_all([
            LectureSkillMap(chunk_id=chunk.id, skill_id=contract.id, confidence=0.85),
            LectureSkillMap(chunk_id=draft_chunk.id, skill_id=contract.id, confidence=0.99),
        ])

        authority = Authority(
            authority_type=AuthorityType.CASE.value,
            title="Carlill v Carbolic Smoke Ball Co",
            citation="[1893] 1 QB 256",
            summary="A unilateral offer to the world can be accepted by performance.",
            is_verified=True,
            skill_ids=[str(contract.id)],
            unit_ids=[],
        )
        unverified = Authority(
            authority_type=AuthorityType.CASE.value,
            title="Unverified v Authority",
            citation="[2099] 1 XX 1",
            is_verified=False,
            skill_ids=[str(contract.id)],
            unit_ids=[],
        )
        session.add_all([authority, unverified])
        await session.commit()

        return SimpleNamespace(
            unit=unit,
            contract=contract,
            tort=tort,
            orphan=orphan,
            topic=topic,
            tort_topic=tort_topic,
            chunk=chunk,
            draft_chunk=draft_chunk,
            authority=authority,
            unverified=unverified,
        )
