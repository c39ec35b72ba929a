"""Integration tests for attempt submission against a real (SQLite) database."""

import uuid

import pytest
from sqlalchemy import func, select, update

from studyhub.engines.mastery.attempt_service import AttemptService
from studyhub.engines.mastery.grader import GradingResult
from studyhub.engines.mastery.mastery_repository import MasteryRepository
from studyhub.engines.mastery.readiness import ReadinessService
from studyhub.exceptions import ConcurrencyConflictError, NotFoundError
from studyhub.kernel.events.event_store import EventStore
from studyhub.kernel.models import (
    Attempt,
    AttemptFormat,
    AttemptMode,
    CurriculumUnit,
    EventType,
    GateVerificationRecord,
    MasteryState,
    Skill,
    SkillErrorSignature,
)
from studyhub.schemas.mastery import AttemptSubmission


def _submission(skill_id: uuid.UUID, mode=AttemptMode.TIMED, weight: float = 1.0) -> AttemptSubmission:
    return AttemptSubmission(
        item_id="essay-1",
        response_text="The offer was accepted by performance.",
        format=AttemptFormat.WRITTEN,
        mode=mode,
        skill_coverage={skill_id: weight},
    )


async def _seed_state(session_factory, user_id, skill_id, p: float) -> None:
    async with session_factory() as session:
        session.add(MasteryState(user_id=user_id, skill_id=skill_id, p_mastery=p))
        await session.commit()


async def _state(session_factory, user_id, skill_id) -> MasteryState:
    async with session_factory() as session:
        return (await session.execute(
            select(MasteryState).where(MasteryState.user_id == user_id, MasteryState.skill_id == skill_id)
        )).scalar_one()


class TestRecordAttempt:
    async def test_first_attempt_creates_state(self, session_factory, curriculum, user_id, now):
        service = AttemptService(session_factory)
        response = await service.record(
            user_id,
            _submission(curriculum.contract.id, mode=AttemptMode.PRACTICE),
            GradingResult(score=1.0),
            now=now,
        )
        delta = response.skills[0]
        assert delta.p_before == 0.0
        assert delta.p_after == pytest.approx(0.10)
        assert delta.interval_days == 6
        assert delta.gate.is_verified is False

        state = await _state(session_factory, user_id, curriculum.contract.id)
        assert state.attempt_count == 1
        assert state.correct_count == 1
        assert state.version == 2

    async def test_update_from_existing_mastery(self, session_factory, curriculum, user_id, now):
        await _seed_state(session_factory, user_id, curriculum.contract.id, 0.3)
        response = await AttemptService(session_factory).record(
            user_id,
            _submission(curriculum.contract.id, mode=AttemptMode.PRACTICE),
            GradingResult(score=1.0),
            now=now,
        )
        assert response.skills[0].p_after == pytest.approx(0.40)

    async def test_multi_skill_coverage(self, session_factory, curriculum, user_id, now):
        submission = AttemptSubmission(
            item_id="mixed-1",
            mode=AttemptMode.PRACTICE,
            skill_coverage={curriculum.contract.id: 1.0, curriculum.tort.id: 0.5},
        )
        response = await AttemptService(session_factory).record(user_id, submission, GradingResult(score=0.4), now=now)
        by_skill = {d.skill_id: d for d in response.skills}
        assert by_skill[curriculum.tort.id].p_after == pytest.approx(by_skill[curriculum.contract.id].p_after / 2)

    async def test_failed_attempt_tracks_consecutive_wrong(self, session_factory, curriculum, user_id, now):
        service = AttemptService(session_factory)
        for _ in range(2):
            await service.record(user_id, _submission(curriculum.contract.id), GradingResult(score=0.2), now=now)
        state = await _state(session_factory, user_id, curriculum.contract.id)
        assert state.consecutive_wrong == 2
        assert state.interval_days == 1

    async def test_unknown_skill_writes_nothing(self, session_factory, curriculum, user_id, now):
        with pytest.raises(NotFoundError):
            await AttemptService(session_factory).record(
                user_id, _submission(uuid.uuid4()), GradingResult(score=1.0), now=now
            )
        async with session_factory() as session:
            count = (await session.execute(select(func.count()).select_from(Attempt))).scalar_one()
        assert count == 0

    async def test_error_tags_accumulate(self, session_factory, curriculum, user_id, now):
        service = AttemptService(session_factory)
        grading = GradingResult(score=0.4, error_tags=["missed_element", "no_authority"])
        await service.record(user_id, _submission(curriculum.contract.id), grading, now=now)
        await service.record(user_id, _submission(curriculum.contract.id), grading, now=now)

        async with session_factory() as session:
            rows = (await session.execute(
                select(SkillErrorSignature).where(SkillErrorSignature.user_id == user_id)
            )).scalars().all()
        assert {r.error_tag: r.count for r in rows} == {"missed_element": 2, "no_authority": 2}

    async def test_error_tag_count_survives_stale_copy(self, session_factory, curriculum, user_id, now):
        skill_id = curriculum.contract.id
        async with session_factory() as session:
            session.add(SkillErrorSignature(user_id=user_id, skill_id=skill_id, error_tag="missed_element", count=1))
            await session.commit()

        async with session_factory() as stale:
            # Loaded with count=1 and kept in this session's identity map
            signature = (await stale.execute(select(SkillErrorSignature))).scalar_one()
            assert signature.count == 1
            await stale.commit()

            async with session_factory() as other:
                await MasteryRepository(other).record_error_tags(user_id, skill_id, ["missed_element"], now)
                await other.commit()

            await MasteryRepository(stale).record_error_tags(user_id, skill_id, ["missed_element"], now)
            await stale.commit()

        async with session_factory() as session:
            count = (await session.execute(select(SkillErrorSignature.count))).scalar_one()
        assert count == 3

    async def test_audit_event_per_attempt(self, session_factory, curriculum, user_id, now):
        response = await AttemptService(session_factory).record(
            user_id, _submission(curriculum.contract.id), GradingResult(score=0.5, graded_by_fallback=True), now=now
        )
        async with session_factory() as session:
            history = await EventStore(session).get_entity_history("attempt", response.attempt_id)
        assert [e.event_type for e in history] == [EventType.ATTEMPT_GRADED_BY_FALLBACK.value]


class TestGateVerificationFlow:
    async def test_verified_after_spaced_timed_passes(self, session_factory, curriculum, user_id, hours):
        skill_id = curriculum.contract.id
        await _seed_state(session_factory, user_id, skill_id, 0.9)
        service = AttemptService(session_factory)

        first = await service.record(user_id, _submission(skill_id), GradingResult(score=0.9), now=hours(0))
        assert first.skills[0].gate.is_verified is False

        second = await service.record(user_id, _submission(skill_id), GradingResult(score=0.9), now=hours(30))
        gate = second.skills[0].gate
        assert gate.is_verified is True
        assert gate.hours_between_passes == pytest.approx(30.0)

        state = await _state(session_factory, user_id, skill_id)
        assert state.is_verified is True

    async def test_verification_is_recorded_once(self, session_factory, curriculum, user_id, hours):
        skill_id = curriculum.contract.id
        await _seed_state(session_factory, user_id, skill_id, 0.9)
        service = AttemptService(session_factory)
        for h in (0, 30, 60):
            await service.record(user_id, _submission(skill_id), GradingResult(score=0.9), now=hours(h))
        # A bad attempt lowers p but never un-verifies
        await service.record(user_id, _submission(skill_id), GradingResult(score=0.0), now=hours(61))

        async with session_factory() as session:
            records = (await session.execute(select(GateVerificationRecord))).scalars().all()
            verified_events = await EventStore(session).count_events(event_type=EventType.GATE_VERIFIED)
        assert len(records) == 1
        assert verified_events == 1
        assert (await _state(session_factory, user_id, skill_id)).is_verified is True

    async def test_short_gap_is_not_enough(self, session_factory, curriculum, user_id, hours):
        skill_id = curriculum.contract.id
        await _seed_state(session_factory, user_id, skill_id, 0.9)
        service = AttemptService(session_factory)
        await service.record(user_id, _submission(skill_id), GradingResult(score=0.9), now=hours(0))
        response = await service.record(user_id, _submission(skill_id), GradingResult(score=0.9), now=hours(12))
        gate = response.skills[0].gate
        assert gate.is_verified is False
        assert any("insufficient cooldown" in r for r in gate.reasons)

    async def test_practice_passes_do_not_verify(self, session_factory, curriculum, user_id, hours):
        skill_id = curriculum.contract.id
        await _seed_state(session_factory, user_id, skill_id, 0.9)
        service = AttemptService(session_factory)
        for h in (0, 30):
            response = await service.record(
                user_id, _submission(skill_id, mode=AttemptMode.PRACTICE), GradingResult(score=0.9), now=hours(h)
            )
        assert response.skills[0].gate.pass_count == 0

    async def test_repeated_top_error_blocks(self, session_factory, curriculum, user_id, hours):
        skill_id = curriculum.contract.id
        await _seed_state(session_factory, user_id, skill_id, 0.9)
        async with session_factory() as session:
            session.add(SkillErrorSignature(user_id=user_id, skill_id=skill_id, error_tag="missed_element", count=4))
            await session.commit()

        service = AttemptService(session_factory)
        await service.record(user_id, _submission(skill_id), GradingResult(score=0.9), now=hours(0))
        response = await service.record(
            user_id,
            _submission(skill_id),
            GradingResult(score=0.8, error_tags=["missed_element"]),
            now=hours(30),
        )
        gate = response.skills[0].gate
        assert gate.is_verified is False
        assert gate.repeated_error_tags == ["missed_element"]


class TestReadiness:
    async def test_weighted_by_exam_weight(self, session_factory, curriculum, user_id, now):
        await _seed_state(session_factory, user_id, curriculum.contract.id, 0.5)
        await _seed_state(session_factory, user_id, curriculum.tort.id, 1.0)
        async with session_factory() as session:
            readiness = await ReadinessService(session).compute(user_id)
        # (0.5*0.6 + 1.0*0.3 + 0*0.1) / 1.0
        assert readiness.overall == pytest.approx(0.6)
        assert readiness.units[0].skill_count == 3
        assert readiness.evidence.total_attempts == 0
        assert readiness.trend == "stable"

    async def test_trend_and_evidence(self, session_factory, curriculum, user_id, hours):
        service = AttemptService(session_factory)
        for i, score in enumerate([0.2, 0.3, 0.8, 0.9]):
            await service.record(
                user_id, _submission(curriculum.contract.id), GradingResult(score=score), now=hours(i)
            )
        async with session_factory() as session:
            readiness = await ReadinessService(session).compute(user_id, unit_id=curriculum.unit.id)
        assert readiness.trend == "improving"
        assert readiness.evidence.total_attempts == 4
        assert readiness.evidence.by_mode == {"timed": 4}

    async def test_unit_scope_limits_evidence_and_trend(self, session_factory, curriculum, user_id, hours):
        async with session_factory() as session:
            other_unit = CurriculumUnit(code="LAW201", name="Public Law")
            session.add(other_unit)
            await session.flush()
            review = Skill(unit_id=other_unit.id, name="Judicial review", exam_weight=1.0)
            session.add(review)
            await session.flush()
            session.add(MasteryState(user_id=user_id, skill_id=review.id, p_mastery=0.9, is_verified=True))
            await session.commit()

        service = AttemptService(session_factory)
        for i, (skill_id, score) in enumerate([
            (curriculum.contract.id, 0.2),
            (curriculum.contract.id, 0.9),
            (review.id, 0.5),
            (review.id, 0.6),
        ]):
            await service.record(user_id, _submission(skill_id), GradingResult(score=score), now=hours(i))

        async with session_factory() as session:
            scoped = await ReadinessService(session).compute(user_id, unit_id=curriculum.unit.id)
            everything = await ReadinessService(session).compute(user_id)

        assert [u.unit_id for u in scoped.units] == [curriculum.unit.id]
        assert scoped.evidence.total_attempts == 2
        assert scoped.evidence.verified_skills == 0
        assert scoped.trend == "improving"

        assert everything.evidence.total_attempts == 4
        assert everything.evidence.verified_skills == 1
        assert everything.trend == "stable"


class TestWriteConflicts:
    @staticmethod
    def _bump_version_on(monkeypatch, conflicting_calls):
        """Move the row's version on in the database after it is read, as a concurrent writer would."""
        original = MasteryRepository.get_or_create_for_update
        calls = []

        async def racing(self, user_id, skill_id):
            state = await original(self, user_id, skill_id)
            calls.append(skill_id)
            if len(calls) in conflicting_calls:
                await self.session.execute(
                    update(MasteryState)
                    .where(MasteryState.id == state.id)
                    .values(version=MasteryState.version + 1)
                    .execution_options(synchronize_session=False)
                )
            return state

        monkeypatch.setattr(MasteryRepository, "get_or_create_for_update", racing)
        return calls

    async def test_version_conflict_is_retried(self, session_factory, curriculum, user_id, now, monkeypatch):
        skill_id = curriculum.contract.id
        await _seed_state(session_factory, user_id, skill_id, 0.3)
        calls = self._bump_version_on(monkeypatch, {1})

        response = await AttemptService(session_factory).record(
            user_id, _submission(skill_id, mode=AttemptMode.PRACTICE), GradingResult(score=1.0), now=now
        )
        assert len(calls) == 2
        assert response.skills[0].p_after == pytest.approx(0.40)

        state = await _state(session_factory, user_id, skill_id)
        assert state.attempt_count == 1
        async with session_factory() as session:
            attempts = (await session.execute(select(func.count()).select_from(Attempt))).scalar_one()
        assert attempts == 1

    async def test_persistent_conflict_raises(self, session_factory, curriculum, user_id, now, monkeypatch):
        skill_id = curriculum.contract.id
        await _seed_state(session_factory, user_id, skill_id, 0.3)
        calls = self._bump_version_on(monkeypatch, {1, 2, 3})

        with pytest.raises(ConcurrencyConflictError):
            await AttemptService(session_factory).record(
                user_id, _submission(skill_id), GradingResult(score=1.0), now=now
            )
        assert len(calls) == 3

        state = await _state(session_factory, user_id, skill_id)
        assert state.attempt_count == 0
        assert state.p_mastery == pytest.approx(0.3)
        async with session_factory() as session:
            attempts = (await session.execute(select(func.count()).select_from(Attempt))).scalar_one()
        assert attempts == 0
