"""
Grounded content generation: blueprint, composition, grounding validation
and the pipeline that persists study assets.
"""

from studyhub.engines.generation.blueprint import (
    ActivityType,
    SessionBlueprint,
    SkillMasterySnapshot,
    compute_blueprint,
)
from studyhub.engines.generation.composer import ComposedAsset, Composer, ContentItem
from studyhub.engines.generation.grounding_validator import (
    FALLBACK_TEXT,
    MissingClaim,
    ValidationOutcome,
    validate_grounding,
)
from studyhub.engines.generation.pipeline import GenerationOutcome, GenerationPipeline

__all__ = [
    "ActivityType",
    "SessionBlueprint",
    "SkillMasterySnapshot",
    "compute_blueprint",
    "ComposedAsset",
    "Composer",
    "ContentItem",
    "FALLBACK_TEXT",
    "MissingClaim",
    "ValidationOutcome",
    "validate_grounding",
    "GenerationOutcome",
    "GenerationPipeline",
]
