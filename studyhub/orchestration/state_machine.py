"""
State machine for StudySession and StudyAsset lifecycles.

Valid transitions are defined here; every change is written to the event log.
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.exceptions import InvalidTransitionError
from studyhub.kernel.events.event_store import EventStore
from studyhub.kernel.events.event_types import SessionStatusEvent
from studyhub.kernel.models import (
    AssetStatus,
    EventType,
    REQUIRED_ASSETS,
    SessionStatus,
    StudyAsset,
    StudySession,
)

S, AS = SessionStatus, AssetStatus

_SESSION_TRANSITIONS: Set[Tuple[str, str]] = {
    (S.QUEUED.value, S.PREPARING.value),
    (S.QUEUED.value, S.READY.value),
    (S.PREPARING.value, S.READY.value),
    (S.READY.value, S.IN_PROGRESS.value),
    (S.IN_PROGRESS.value, S.COMPLETED.value),
    (S.QUEUED.value, S.ABANDONED.value),
    (S.PREPARING.value, S.ABANDONED.value),
    (S.READY.value, S.ABANDONED.value),
    (S.IN_PROGRESS.value, S.ABANDONED.value),
}

_ASSET_TRANSITIONS: Set[Tuple[str, str]] = {
    (AS.GENERATING.value, AS.READY.value),
    (AS.GENERATING.value, AS.FAILED.value),
    # Requeue after a terminal failure
    (AS.FAILED.value, AS.GENERATING.value),
}

_TRANSITIONS: Dict[str, Set[Tuple[str, str]]] = {
    "session": _SESSION_TRANSITIONS,
    "asset": _ASSET_TRANSITIONS,
}


def valid_transitions(from_state: str, entity_type: str = "session") -> List[str]:
    """Return list of valid target states from given state."""
    return sorted({t for f, t in _TRANSITIONS[entity_type] if f == from_state})


def can_transition(from_state: str, to_state: str, entity_type: str = "session") -> bool:
    return (from_state, to_state) in _TRANSITIONS[entity_type]


def session_is_ready(assets: List[StudyAsset]) -> bool:
    """True when every required asset type exists and is READY."""
    ready = {a.asset_type for a in assets if a.status == AS.READY.value}
    return all(t.value in ready for t in REQUIRED_ASSETS)


class StateMachine:
    """Service for performing state transitions with audit logging."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.event_store = EventStore(session)

    async def transition_session(
        self,
        study_session: StudySession,
        to_state: str,
        user_id: Optional[uuid.UUID] = None,
    ) -> StudySession:
        """Move a session to `to_state`. No-op if it is already there."""
        from_state = study_session.status
        if from_state == to_state:
            return study_session
        if not can_transition(from_state, to_state, "session"):
            raise InvalidTransitionError("session", from_state, to_state)

        now = datetime.now(timezone.utc)
        study_session.status = to_state
        if to_state == S.IN_PROGRESS.value:
            study_session.started_at = now
        elif to_state in (S.COMPLETED.value, S.ABANDONED.value):
            study_session.completed_at = now

        await self.event_store.log_from_model(
            event_type=EventType.SESSION_STATUS_CHANGED,
            entity_type="session",
            entity_id=study_session.id,
            user_id=user_id or study_session.user_id,
            payload_model=SessionStatusEvent(from_status=from_state, to_status=to_state),
        )
        return study_session

    def transition_asset(self, asset: StudyAsset, to_state: str) -> StudyAsset:
        """Move an asset to `to_state`. Callers log the outcome event themselves."""
        from_state = asset.status
        if from_state == to_state:
            return asset
        if not can_transition(from_state, to_state, "asset"):
            raise InvalidTransitionError("asset", from_state, to_state)

        now = datetime.now(timezone.utc)
        asset.status = to_state
        if to_state == AS.GENERATING.value:
            asset.generation_started_at = now
            asset.generation_error = None
        else:
            asset.generation_completed_at = now
        return asset

    async def refresh_session_readiness(self, study_session: StudySession, assets: List[StudyAsset]) -> str:
        """
        Promote QUEUED/PREPARING sessions to READY once every required asset
        is READY. Failed assets leave the session PREPARING.
        """
        if study_session.status in (S.QUEUED.value, S.PREPARING.value) and session_is_ready(assets):
            await self.transition_session(study_session, S.READY.value)
        return study_session.status
