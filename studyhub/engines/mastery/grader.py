"""
Grader - turns a learner response into a normalized score.

Multiple-choice items with a known answer are auto-graded. Everything else
goes to the black-box grading model (OpenAI, JSON output). When the model is
unavailable or returns something unusable, a conservative heuristic based on
response length and rubric keyword coverage is substituted and the result is
flagged graded_by_fallback.
"""

import asyncio
import json
import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from studyhub.config import get_settings
from studyhub.exceptions import GradingUnavailableError
from studyhub.kernel.models.mastery import AttemptFormat
from studyhub.logging_config import get_logger

logger = get_logger(__name__)

_GRADER_SYSTEM_PROMPT = (
    "You are an exam marker. Grade the candidate's answer against the rubric. "
    "Respond with JSON only: "
    '{"score": <0..1>, "rubric_breakdown": {"<criterion>": <0..1>, ...}, '
    '"error_tags": ["<short_snake_case_tag>", ...], "feedback": "<one paragraph>"}'
)

_WORD_RE = re.compile(r"[A-Za-z0-9']+")


class RubricCriterion(BaseModel):
    name: str
    keywords: List[str] = Field(default_factory=list)
    weight: float = 1.0


class GradingRequest(BaseModel):
    """One response to grade."""

    item_id: str
    prompt: str = ""
    response_text: str = ""
    format: AttemptFormat = AttemptFormat.WRITTEN
    rubric: List[RubricCriterion] = Field(default_factory=list)
    correct_answer: Optional[str] = None


class GradingResult(BaseModel):
    score: float = Field(..., ge=0.0, le=1.0)
    rubric_breakdown: Dict[str, float] = Field(default_factory=dict)
    error_tags: List[str] = Field(default_factory=list)
    feedback: Optional[str] = None
    graded_by_fallback: bool = False
    model: str = "fallback"


class _ModelOutput(BaseModel):
    score: float = Field(..., ge=0.0, le=1.0)
    rubric_breakdown: Dict[str, float] = Field(default_factory=dict)
    error_tags: List[str] = Field(default_factory=list)
    feedback: Optional[str] = None


def _api_key() -> str:
    key = (get_settings().openai_api_key or "").strip()
    if not key or key.startswith("sk-your-"):
        return ""
    return key


class Grader:
    """Grades attempts; never raises to the caller."""

    # Share of the fallback score carried by each heuristic signal
    LENGTH_WEIGHT = 0.5
    KEYWORD_WEIGHT = 0.5

    @classmethod
    def model_configured(cls) -> bool:
        return bool(_api_key())

    @classmethod
    async def grade(cls, request: GradingRequest) -> GradingResult:
        if request.format == AttemptFormat.MULTIPLE_CHOICE and request.correct_answer is not None:
            return cls.grade_multiple_choice(request)

        if _api_key():
            try:
                return await cls._grade_with_model(request)
            except GradingUnavailableError as exc:
                logger.warning(
                    "Grading model unavailable, using fallback heuristic: %s",
                    exc,
                    extra={"item_id": request.item_id},
                )
        return cls.fallback_grade(request)

    @classmethod
    def grade_multiple_choice(cls, request: GradingRequest) -> GradingResult:
        expected = (request.correct_answer or "").strip().lower()
        correct = (request.response_text or "").strip().lower() == expected
        return GradingResult(
            score=1.0 if correct else 0.0,
            rubric_breakdown={"correct_answer": 1.0 if correct else 0.0},
            error_tags=[] if correct else ["incorrect_option"],
            model="auto",
        )

    @classmethod
    def fallback_grade(cls, request: GradingRequest) -> GradingResult:
        """
        Heuristic score from response length and rubric keyword presence.

        Capped at settings.fallback_grade_ceiling.
        """
        settings = get_settings()
        ceiling = settings.fallback_grade_ceiling
        words = _WORD_RE.findall(request.response_text or "")
        text = " ".join(words).lower()

        length_score = min(1.0, len(words) / max(1, settings.fallback_grade_target_words))

        breakdown: Dict[str, float] = {}
        total_weight = 0.0
        weighted_hits = 0.0
        for criterion in request.rubric:
            if criterion.keywords:
                hits = sum(1 for kw in criterion.keywords if kw.lower() in text)
                coverage = hits / len(criterion.keywords)
            else:
                coverage = length_score
            breakdown[criterion.name] = round(coverage * ceiling, 3)
            total_weight += criterion.weight
            weighted_hits += coverage * criterion.weight

        if total_weight > 0:
            keyword_score = weighted_hits / total_weight
            raw = cls.LENGTH_WEIGHT * length_score + cls.KEYWORD_WEIGHT * keyword_score
        else:
            raw = length_score

        return GradingResult(
            score=round(min(ceiling, raw * ceiling), 4),
            rubric_breakdown=breakdown,
            error_tags=[] if words else ["no_response"],
            feedback="Provisional score pending model grading.",
            graded_by_fallback=True,
            model="fallback",
        )

    @classmethod
    async def _grade_with_model(cls, request: GradingRequest) -> GradingResult:
        from openai import AsyncOpenAI

        settings = get_settings()
        client = AsyncOpenAI(api_key=_api_key())

        rubric_text = "\n".join(
            f"- {c.name} (weight {c.weight:g}): {', '.join(c.keywords) or 'holistic'}"
            for c in request.rubric
        ) or "- overall quality"
        user_prompt = (
            f"QUESTION:\n{request.prompt or '(not provided)'}\n\n"
            f"RUBRIC:\n{rubric_text}\n\n"
            f"ANSWER ({request.format.value}):\n{request.response_text[:8000]}"
        )

        try:
            response = await asyncio.wait_for(
                client.chat.completions.create(
                    model=settings.grading_model,
                    messages=[
                        {"role": "system", "content": _GRADER_SYSTEM_PROMPT},
                        {"role": "user", "content": user_prompt},
                    ],
                    max_tokens=800,
                    temperature=0.0,
                    response_format={"type": "json_object"},
                ),
                timeout=settings.grading_timeout_seconds,
            )
        except Exception as exc:
            raise GradingUnavailableError(str(exc) or type(exc).__name__) from exc

        raw_text = (response.choices[0].message.content or "").strip()
        try:
            output = _ModelOutput.model_validate(json.loads(raw_text))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise GradingUnavailableError(f"Invalid grader output: {exc}") from exc

        return GradingResult(
            score=output.score,
            rubric_breakdown={k: max(0.0, min(1.0, v)) for k, v in output.rubric_breakdown.items()},
            error_tags=output.error_tags,
            feedback=output.feedback,
            model=settings.grading_model,
        )
