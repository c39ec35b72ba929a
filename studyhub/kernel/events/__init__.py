"""
Event sourcing infrastructure.

Provides append-only audit logging with immutable events.
"""

from studyhub.kernel.events.event_store import EventStore
from studyhub.kernel.events.event_types import (
    BaseEvent,
    GateVerifiedEvent,
    SessionStatusEvent,
    AssetEvent,
    JobEvent,
    GroundingMissingEvent,
)

__all__ = [
    "EventStore",
    "BaseEvent",
    "GateVerifiedEvent",
    "SessionStatusEvent",
    "AssetEvent",
    "JobEvent",
    "GroundingMissingEvent",
]
