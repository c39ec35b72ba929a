"""
Domain exceptions.

Engines raise these; the API layer translates them into HTTP errors and the
worker treats them as job failures.
"""

import uuid
from typing import List, Optional


class StudyHubError(Exception):
    """Base class for all domain errors."""


class NotFoundError(StudyHubError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: uuid.UUID | str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidTransitionError(StudyHubError):
    """A lifecycle transition that the state machine does not allow."""

    def __init__(self, entity: str, from_state: str, to_state: str):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid {entity} transition: {from_state} -> {to_state}")


class GroundingError(StudyHubError):
    """Strict-mode grounding validation rejected an asset."""

    def __init__(self, messages: List[str], missing: Optional[list] = None):
        self.messages = messages
        # Unsupported claims, for the missing-authority log
        self.missing = missing or []
        super().__init__("Grounding validation failed: " + "; ".join(messages))


class GradingUnavailableError(StudyHubError):
    """The external grading model could not produce a usable result."""


class UnknownJobTypeError(StudyHubError):
    """A job row carries a type with no registered handler."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"Unknown job type: {job_type}")


class ConcurrencyConflictError(StudyHubError):
    """A mastery update kept losing the race after all retries."""

    def __init__(self, user_id: uuid.UUID, skill_id: Optional[uuid.UUID] = None):
        self.user_id = user_id
        self.skill_id = skill_id
        super().__init__(f"Concurrent mastery update conflict for user {user_id}")
