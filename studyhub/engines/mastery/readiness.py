"""
Readiness - exam-weighted roll-up of mastery per unit and overall.

Scoped to one unit, the trend and evidence cover only attempts on that
unit's skills.
"""

import uuid
from collections import Counter
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.engines.mastery.mastery_repository import MasteryRepository
from studyhub.kernel.models import Attempt, CurriculumUnit, Skill, as_utc
from studyhub.schemas.mastery import (
    EvidenceSummary,
    ReadinessResponse,
    UnitReadiness,
)

TREND_WINDOW = 10
TREND_THRESHOLD = 0.05


def weighted_readiness(pairs: Sequence[tuple[float, float]]) -> float:
    """Mean of p_mastery weighted by exam weight; plain mean when all weights are 0."""
    if not pairs:
        return 0.0
    total_weight = sum(w for _, w in pairs)
    if total_weight <= 0:
        return sum(p for p, _ in pairs) / len(pairs)
    return sum(p * w for p, w in pairs) / total_weight


def score_trend(scores_oldest_first: Sequence[float], window: int = TREND_WINDOW) -> str:
    """Compare the latest `window` scores with the `window` before them."""
    if len(scores_oldest_first) < 2:
        return "stable"
    recent = scores_oldest_first[-window:]
    earlier = scores_oldest_first[-2 * window:-window]
    if not earlier:
        half = len(recent) // 2
        earlier, recent = recent[:half], recent[half:]
    diff = sum(recent) / len(recent) - sum(earlier) / len(earlier)
    if diff > TREND_THRESHOLD:
        return "improving"
    if diff < -TREND_THRESHOLD:
        return "declining"
    return "stable"


class ReadinessService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = MasteryRepository(session)

    async def compute(self, user_id: uuid.UUID, unit_id: Optional[uuid.UUID] = None) -> ReadinessResponse:
        query = select(Skill, CurriculumUnit).join(CurriculumUnit, Skill.unit_id == CurriculumUnit.id)
        if unit_id is not None:
            query = query.where(Skill.unit_id == unit_id)
        rows = (await self.session.execute(query)).all()

        states = {s.skill_id: s for s in await self.repo.list_for_user(user_id)}

        per_unit: Dict[uuid.UUID, List[tuple[float, float]]] = {}
        unit_names: Dict[uuid.UUID, str] = {}
        verified_per_unit: Counter = Counter()
        all_pairs: List[tuple[float, float]] = []
        for skill, unit in rows:
            state = states.get(skill.id)
            p = state.p_mastery if state else 0.0
            pair = (p, skill.exam_weight)
            per_unit.setdefault(unit.id, []).append(pair)
            unit_names[unit.id] = unit.name
            all_pairs.append(pair)
            if state and state.is_verified:
                verified_per_unit[unit.id] += 1

        units = [
            UnitReadiness(
                unit_id=uid,
                unit_name=unit_names[uid],
                readiness=round(weighted_readiness(pairs), 4),
                skill_count=len(pairs),
                verified_count=verified_per_unit[uid],
            )
            for uid, pairs in sorted(per_unit.items(), key=lambda kv: unit_names[kv[0]])
        ]

        attempts = (await self.session.execute(
            select(Attempt).where(Attempt.user_id == user_id).order_by(Attempt.created_at)
        )).scalars().all()
        scoped_skill_ids = {skill.id for skill, _ in rows}
        if unit_id is not None:
            # Only attempts that touched a skill in the unit count as its evidence
            scoped_keys = {str(sid) for sid in scoped_skill_ids}
            attempts = [a for a in attempts if scoped_keys & set((a.skill_coverage or {}).keys())]

        evidence = EvidenceSummary(
            total_attempts=len(attempts),
            by_format=dict(Counter(a.format for a in attempts)),
            by_mode=dict(Counter(a.mode for a in attempts)),
            verified_skills=sum(
                1 for sid, s in states.items() if s.is_verified and (unit_id is None or sid in scoped_skill_ids)
            ),
            last_attempt_at=as_utc(attempts[-1].created_at) if attempts else None,
        )

        return ReadinessResponse(
            overall=round(weighted_readiness(all_pairs), 4),
            trend=score_trend([a.score for a in attempts]),
            units=units,
            evidence=evidence,
        )
