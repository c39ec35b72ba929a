"""
Pydantic schemas for API request/response validation.

Import from the submodules directly (studyhub.schemas.mastery, ...).
"""

from studyhub.schemas.common import ErrorResponse, HealthResponse

__all__ = [
    "ErrorResponse",
    "HealthResponse",
]
