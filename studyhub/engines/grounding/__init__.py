"""
Grounding - retrieval of verified sources for generated content.
"""

from studyhub.engines.grounding.retrieval_service import (
    GroundingRetrievalService,
    GroundingSource,
    RetrievalResult,
    SourceType,
)

__all__ = [
    "GroundingRetrievalService",
    "GroundingSource",
    "RetrievalResult",
    "SourceType",
]
