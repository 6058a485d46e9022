# backend/evaluator.py

import json
import logging
from functools import lru_cache
from typing import Any, List, Optional

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from matcher import matches
from models import EvaluationVerdict, Phase, Rubric, Verdict
from settings import ClassifierSettings

# Logger for evaluation / classifier layer
logger = logging.getLogger("detective_evaluator")


class ClassifierError(Exception):
    """The classifier could not produce a usable verdict."""


class Evaluator:
    """Turns a free-text submission into a verdict for one phase."""

    async def evaluate_phase(
        self, phase: Phase, text: str, rubric: Rubric
    ) -> EvaluationVerdict:
        raise NotImplementedError


# ---------------- Deterministic keyword matching ----------------

class KeywordEvaluator(Evaluator):
    """
    Rubric keyword matching. Pure: same text and rubric, same verdict.

    Correct when the canonical diagnosis phrase hits or at least half of the
    keywords do. Partial on two or more hits, a quarter of the keywords, or a
    single hit. Incorrect otherwise.
    """

    def evaluate(self, text: str, rubric: Rubric) -> EvaluationVerdict:
        matched = [kw for kw in rubric.keywords if matches(text, kw)]
        ratio = len(matched) / len(rubric.keywords) if rubric.keywords else 0.0
        phrase_hit = matches(text, rubric.diagnosis_phrase)

        if phrase_hit or ratio >= 0.5:
            return EvaluationVerdict(
                verdict=Verdict.CORRECT,
                explanation="Your answer covers the key concepts of the expected answer.",
                matched_concepts=matched,
            )
        if len(matched) >= 2 or ratio >= 0.25:
            return EvaluationVerdict(
                verdict=Verdict.PARTIAL,
                explanation=(
                    "Your answer mentions relevant concepts but hasn't pinpointed "
                    "the exact root cause. Keep investigating..."
                ),
                matched_concepts=matched,
            )
        if len(matched) == 1:
            return EvaluationVerdict(
                verdict=Verdict.PARTIAL,
                explanation=(
                    "You've touched on something relevant, but the answer needs more "
                    "detail. What specifically is causing the problem?"
                ),
                matched_concepts=matched,
            )
        return EvaluationVerdict(
            verdict=Verdict.INCORRECT,
            explanation=(
                "That doesn't seem to match the evidence. Review the clues again and "
                "consider: what do the symptoms have in common?"
            ),
            matched_concepts=matched,
        )

    async def evaluate_phase(
        self, phase: Phase, text: str, rubric: Rubric
    ) -> EvaluationVerdict:
        return self.evaluate(text, rubric)


# ---------------- Classifier prompts ----------------

_REPLY_FORMAT = (
    "You must respond with ONLY a valid JSON object in this exact format, no other text:\n"
    '{"verdict": "correct" | "partial" | "incorrect", "explanation": "brief explanation", '
    '"matchedConcepts": ["concept1", "concept2"]}'
)

ROOT_CAUSE_SYSTEM_PROMPT = f"""You are an expert evaluator for a backend engineering debugging game. Your job is to determine if the user's diagnosis matches the actual root cause of an incident.

{_REPLY_FORMAT}

CORRECT: The user has identified the core root cause, even if they use different terminology or phrasing. They understand WHY the problem occurred.

PARTIAL: The user is on the right track - they've identified related symptoms or contributing factors, but haven't pinpointed the exact root cause.

INCORRECT: The user's diagnosis is unrelated or fundamentally misunderstands the problem.

Be generous - if the user demonstrates understanding of the core issue, mark it as correct even if the wording differs from the official answer."""

SOLUTION_SYSTEM_PROMPT = f"""You are an expert evaluator for a backend engineering debugging game. The user has already identified the root cause of an incident. Your job is to determine if the fix they propose would actually resolve it.

{_REPLY_FORMAT}

CORRECT: The proposed fix addresses the root cause and would stop the incident from recurring. It does not need to match the example fixes word for word.

PARTIAL: The fix mitigates symptoms or covers only part of the problem, or it is too vague to act on.

INCORRECT: The fix would not resolve the incident, targets the wrong component, or would make things worse.

Judge the engineering substance, not the wording."""


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {i}" for i in items) if items else "N/A"


def build_messages(phase: Phase, text: str, rubric: Rubric) -> List[BaseMessage]:
    """Rubric-grounded prompt for one phase."""
    if phase == Phase.SOLUTION:
        user_prompt = f"""## Actual Root Cause
{rubric.diagnosis_phrase}

## Full Explanation
{rubric.solution_description.strip() or "N/A"}

## Example Fixes
{_bullets(rubric.example_fix_descriptions)}

## Key Concepts
{", ".join(rubric.keywords)}

---

## User's Proposed Fix
"{text}"

---

Evaluate if the proposed fix would actually resolve the incident. Respond with ONLY the JSON object."""
        return [SystemMessage(content=SOLUTION_SYSTEM_PROMPT), HumanMessage(content=user_prompt)]

    user_prompt = f"""## Actual Root Cause
{rubric.diagnosis_phrase}

## Full Explanation
{rubric.solution_description.strip() or "N/A"}

## Key Concepts
{", ".join(rubric.keywords)}

---

## User's Diagnosis
"{text}"

---

Evaluate if the user's diagnosis demonstrates understanding of the root cause. Respond with ONLY the JSON object."""
    return [SystemMessage(content=ROOT_CAUSE_SYSTEM_PROMPT), HumanMessage(content=user_prompt)]


# ---------------- Classifier output parsing ----------------

class ClassifierReply(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    verdict: Verdict
    explanation: str = ""
    matched_concepts: List[str] = Field(default_factory=list, alias="matchedConcepts")

    @field_validator("verdict", mode="before")
    @classmethod
    def _lower_verdict(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("explanation", mode="before")
    @classmethod
    def _explanation_text(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("matched_concepts", mode="before")
    @classmethod
    def _concept_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        if isinstance(v, list):
            return [str(c) for c in v]
        return v


def _cleanup_json(text: str) -> str:
    s = text.strip()
    if s.startswith("```"):
        s = s.lstrip("`")
        if s.lower().startswith("json"):
            s = s[4:]
        s = s.rstrip()
        if s.endswith("```"):
            s = s.rstrip("`")
    return s.strip()


def _response_text(resp: Any) -> str:
    content = getattr(resp, "content", resp)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict):
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return str(content)


def parse_verdict(raw_text: str) -> EvaluationVerdict:
    cleaned = _cleanup_json(raw_text)
    if not cleaned:
        raise ClassifierError("empty classifier output")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ClassifierError(f"classifier output is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise ClassifierError("classifier JSON is not an object")
    try:
        reply = ClassifierReply.model_validate(data)
    except ValidationError as e:
        raise ClassifierError(f"classifier JSON failed validation: {e.error_count()} error(s)") from e
    return EvaluationVerdict(
        verdict=reply.verdict,
        explanation=reply.explanation,
        matched_concepts=reply.matched_concepts,
    )


# ---------------- Classifier-backed evaluation ----------------

class ClassifierEvaluator(Evaluator):
    """One classifier call per submission. Raises ClassifierError on any failure."""

    def __init__(self, llm: Any):
        # Anything exposing langchain's async `ainvoke(messages)`.
        self.llm = llm

    async def evaluate_phase(
        self, phase: Phase, text: str, rubric: Rubric
    ) -> EvaluationVerdict:
        messages = build_messages(phase, text, rubric)
        try:
            resp = await self.llm.ainvoke(messages)
        except Exception as e:
            raise ClassifierError(f"classifier call failed: {e!r}") from e

        raw_text = _response_text(resp)
        result = parse_verdict(raw_text)
        logger.debug(
            "Classifier verdict: phase=%s verdict=%s concepts=%d raw_length=%d",
            phase.name,
            result.verdict.value,
            len(result.matched_concepts),
            len(raw_text),
        )
        return result


class FallbackEvaluator(Evaluator):
    """Primary evaluator first; on any failure, the fallback with the same inputs."""

    def __init__(self, primary: Evaluator, fallback: Optional[Evaluator] = None):
        self.primary = primary
        self.fallback = fallback or KeywordEvaluator()

    async def evaluate_phase(
        self, phase: Phase, text: str, rubric: Rubric
    ) -> EvaluationVerdict:
        try:
            return await self.primary.evaluate_phase(phase, text, rubric)
        except Exception as e:
            logger.warning(
                "Primary evaluator failed for phase=%s; falling back to keyword matching: %r",
                phase.name,
                e,
            )
            return await self.fallback.evaluate_phase(phase, text, rubric)


@lru_cache(maxsize=1)
def get_classifier() -> ChatGoogleGenerativeAI:
    settings = ClassifierSettings.from_env()
    kwargs = {
        "model": settings.model,
        "temperature": settings.temperature,
        "max_output_tokens": settings.max_tokens,
        "timeout": settings.timeout,
        "max_retries": settings.max_retries,
    }
    if settings.api_key:
        kwargs["google_api_key"] = settings.api_key
    logger.info(
        "Evaluation classifier configured: model=%s temperature=%.2f max_tokens=%d",
        settings.model,
        settings.temperature,
        settings.max_tokens,
    )
    return ChatGoogleGenerativeAI(**kwargs)


def build_evaluator(llm: Any = None) -> Evaluator:
    """
    Classifier evaluation with keyword fallback. If no classifier can be
    built (e.g. no API key), evaluation degrades to keyword matching only.
    """
    if llm is None:
        try:
            llm = get_classifier()
        except Exception as e:
            logger.error("Evaluation classifier unavailable; using keyword matching only: %r", e)
            return KeywordEvaluator()
    return FallbackEvaluator(ClassifierEvaluator(llm), KeywordEvaluator())
