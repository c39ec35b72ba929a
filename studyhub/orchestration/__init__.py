"""
Orchestration layer - lifecycle state machine, job queue, worker and
precompute.

Only the state machine and job types are re-exported here; import the
queue, handlers, worker and precompute modules directly.
"""

from studyhub.orchestration.state_machine import StateMachine, can_transition, valid_transitions
from studyhub.orchestration.job_types import JobType, parse_payload

__all__ = [
    "StateMachine",
    "can_transition",
    "valid_transitions",
    "JobType",
    "parse_payload",
]
