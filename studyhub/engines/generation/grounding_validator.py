"""
Grounding Validator - every item must cite enough retrieved sources.

Soft mode: unsupported items are replaced by a fallback item marked
is_fallback=True. Strict mode: any unsupported item rejects the asset with
GroundingError. In both modes every unsupported claim is returned as a
MissingClaim so the caller can append it to the missing-authority log.
"""

import uuid
from typing import List, Set

from pydantic import BaseModel, Field

from studyhub.engines.generation.composer import ComposedAsset, ContentItem
from studyhub.exceptions import GroundingError

FALLBACK_TEXT = "Not found in verified sources yet."

ERROR_NO_CITATION = "NO_CITATION"
ERROR_UNRETRIEVED_CITATION = "UNRETRIEVED_CITATION"


class MissingClaim(BaseModel):
    item_id: str
    claim: str
    skill_ids: List[uuid.UUID] = Field(default_factory=list)
    error_tag: str
    detail: str = ""


class ValidationOutcome(BaseModel):
    items: List[ContentItem]
    missing: List[MissingClaim] = Field(default_factory=list)
    total_items: int = 0
    cited_items: int = 0
    fallback_items: int = 0

    @property
    def stats(self) -> dict:
        return {
            "total_items": self.total_items,
            "cited_items": self.cited_items,
            "fallback_items": self.fallback_items,
        }


def fallback_item(item: ContentItem) -> ContentItem:
    return ContentItem(
        item_id=item.item_id,
        activity_type=item.activity_type,
        skill_id=item.skill_id,
        title=item.title,
        body=FALLBACK_TEXT,
        difficulty=item.difficulty,
        citations=[],
        is_fallback=True,
    )


def validate_grounding(
    asset: ComposedAsset,
    retrieved_ids: Set[uuid.UUID],
    min_citations: int = 1,
    strict: bool = False,
) -> ValidationOutcome:
    """
    Check each item's citations against the ids that were actually retrieved.

    Citations to ids that were not retrieved are dropped before counting.
    Raises GroundingError in strict mode, carrying the unsupported claims.
    """
    validated: List[ContentItem] = []
    missing: List[MissingClaim] = []
    cited = 0

    for item in asset.items:
        valid = [c for c in item.citations if c in retrieved_ids]
        invalid = [c for c in item.citations if c not in retrieved_ids]
        skill_ids = [item.skill_id] if item.skill_id else []

        if len(valid) >= min_citations:
            validated.append(item.model_copy(update={"citations": valid}))
            cited += 1
            continue

        if invalid:
            error_tag = ERROR_UNRETRIEVED_CITATION
            detail = f"{len(invalid)} citation(s) not among retrieved sources"
        else:
            error_tag = ERROR_NO_CITATION
            detail = f"{len(valid)} of {min_citations} required citation(s)"
        missing.append(MissingClaim(
            item_id=item.item_id,
            claim=item.claim,
            skill_ids=skill_ids,
            error_tag=error_tag,
            detail=detail,
        ))
        validated.append(fallback_item(item))

    if strict and missing:
        raise GroundingError([f"{m.item_id}: {m.detail}" for m in missing], missing=missing)

    return ValidationOutcome(
        items=validated,
        missing=missing,
        total_items=len(validated),
        cited_items=cited,
        fallback_items=len(missing),
    )
