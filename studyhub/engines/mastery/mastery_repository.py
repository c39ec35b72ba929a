"""
Mastery repository - the only place MasteryState rows are read for update
or created.
"""

import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.kernel.models import MasteryState, SkillErrorSignature, Skill


class MasteryRepository:
    """Thin data access over mastery_states and skill_error_signatures."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: uuid.UUID, skill_id: uuid.UUID) -> Optional[MasteryState]:
        result = await self.session.execute(
            select(MasteryState).where(
                MasteryState.user_id == user_id,
                MasteryState.skill_id == skill_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, user_id: uuid.UUID, skill_id: uuid.UUID) -> Optional[MasteryState]:
        """Row-locked read (FOR UPDATE is dropped on SQLite)."""
        result = await self.session.execute(
            select(MasteryState)
            .where(
                MasteryState.user_id == user_id,
                MasteryState.skill_id == skill_id,
            )
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def get_or_create_for_update(self, user_id: uuid.UUID, skill_id: uuid.UUID) -> MasteryState:
        """
        Lock the row, creating it with defaults on first attempt.

        A concurrent creator surfaces as IntegrityError at flush; the caller
        retries the whole transaction.
        """
        state = await self.get_for_update(user_id, skill_id)
        if state is None:
            state = MasteryState(
                user_id=user_id,
                skill_id=skill_id,
                p_mastery=0.0,
                stability=1.0,
                attempt_count=0,
                correct_count=0,
                consecutive_wrong=0,
                easiness_factor=2.5,
                interval_days=1,
                is_verified=False,
            )
            self.session.add(state)
            await self.session.flush()
        return state

    async def list_for_user(self, user_id: uuid.UUID) -> List[MasteryState]:
        result = await self.session.execute(
            select(MasteryState).where(MasteryState.user_id == user_id)
        )
        return list(result.scalars().all())

    async def states_by_skill(self, user_id: uuid.UUID, skill_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, MasteryState]:
        ids = list(skill_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(MasteryState).where(
                MasteryState.user_id == user_id,
                MasteryState.skill_id.in_(ids),
            )
        )
        return {s.skill_id: s for s in result.scalars().all()}

    async def existing_skill_ids(self, skill_ids: Iterable[uuid.UUID]) -> set:
        ids = list(skill_ids)
        if not ids:
            return set()
        result = await self.session.execute(select(Skill.id).where(Skill.id.in_(ids)))
        return set(result.scalars().all())

    async def record_error_tags(
        self,
        user_id: uuid.UUID,
        skill_id: uuid.UUID,
        error_tags: Iterable[str],
        seen_at: datetime,
    ) -> None:
        """
        Increment the running count of each tag for (user, skill).

        The increment is a single UPDATE so concurrent writers never lose a
        count. A concurrent first insert surfaces as IntegrityError; the
        caller retries the whole transaction.
        """
        for tag in sorted(set(error_tags)):
            result = await self.session.execute(
                update(SkillErrorSignature)
                .where(
                    SkillErrorSignature.user_id == user_id,
                    SkillErrorSignature.skill_id == skill_id,
                    SkillErrorSignature.error_tag == tag,
                )
                .values(count=SkillErrorSignature.count + 1, last_seen_at=seen_at)
                .execution_options(synchronize_session="evaluate")
            )
            if result.rowcount == 0:
                self.session.add(SkillErrorSignature(
                    user_id=user_id,
                    skill_id=skill_id,
                    error_tag=tag,
                    count=1,
                    last_seen_at=seen_at,
                ))
