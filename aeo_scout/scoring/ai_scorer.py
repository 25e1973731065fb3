# File: aeo_scout/scoring/ai_scorer.py
"""aeo_scout.scoring.ai_scorer: rubric-driven page scoring through an LLM.

``overall_score`` is the unweighted mean of the criterion scores, rounded
half-up. Results are cached under ``digest(content_hash, rubric_version)``;
:meth:`AiRubricScorer.rescore` skips the lookup and overwrites the entry.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from aeo_scout.cache import TTLCache
from aeo_scout.errors import AiResponseParseError, LlmError
from aeo_scout.llm import CompletionRequest, CompletionResponse, LLMClient, TokenUsage, parse_json_response
from aeo_scout.logger import LOGGER_NAME
from aeo_scout.parser.html_parser import ContentExtraction
from aeo_scout.scoring.preparer import ContentPreparer
from aeo_scout.scoring.rubric import RubricCriterion, RubricStore
from aeo_scout.utils import clamp_score, digest, round_half_up

__all__ = [
    "AiRecommendation",
    "AiScoreResult",
    "AiRubricScorer",
    "cache_key",
    "normalize_criteria_scores",
    "overall_score",
    "validate_score_result",
]

_log = logging.getLogger(LOGGER_NAME)

_CORRECTIVE_INSTRUCTION = (
    "Your previous reply could not be used: {reason}. Reply again with ONLY a valid JSON object "
    'containing "criteriaScores" (criterion name -> number 0-100), "criteriaExplanations" and '
    '"recommendations", using the criterion names listed above.'
)

_RESPONSE_SHAPE = """{
  "criteriaScores": {"direct_answer": 75, "question_coverage": 80, ...},
  "criteriaExplanations": {"direct_answer": "Brief explanation of this score", ...},
  "recommendations": [
    {
      "category": "question_coverage",
      "text": "Human-sounding recommendation that references specific page content",
      "references": ["Specific element from page"],
      "example": {"type": "faq", "content": [{"q": "What is X?", "a": "X is..."}]}
    }
  ]
}"""

_GUIDELINES = """Scoring Guidelines:
- Score each criterion 0-100
- 0-40: Poor (major improvements needed)
- 41-60: Fair (significant improvements recommended)
- 61-80: Good (minor improvements suggested)
- 81-100: Excellent (well optimized)
- Emphasize page-type-appropriate criteria
- Recommendations must be concise (2-4 sentences), human-sounding, and reference actual page content
- Be specific and actionable

Content Examples:
- Include an "example" object with recommendations where ready-to-use text makes sense
- Example types: "faq" (3-5 q/a pairs), "tldr" (2-3 sentences), "executive_summary" (one paragraph),
  "table" ({headers, rows}), "text" (improved snippet)
- Do not include examples for multimedia_richness, technical_optimization or internal_linking"""


# --------------------------------------------------------------------------- #
# Result types                                                                #
# --------------------------------------------------------------------------- #


@dataclass(slots=True, frozen=True)
class AiRecommendation:
    category: str
    text: str
    references: Tuple[str, ...] = ()
    example: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"category": self.category, "text": self.text, "references": list(self.references)}
        if self.example is not None:
            data["example"] = self.example
        return data


@dataclass(slots=True, frozen=True)
class AiScoreResult:
    page_type: str
    criteria_scores: Mapping[str, float]
    explanations: Mapping[str, str]
    recommendations: Tuple[AiRecommendation, ...]
    overall_score: int
    cache_key: str
    rubric_version: str
    tokens_used: TokenUsage = field(default_factory=TokenUsage)
    preparation_method: str = ""
    token_reduction_percent: int = 0
    from_cache: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_type": self.page_type,
            "overall_score": self.overall_score,
            "criteria_scores": dict(self.criteria_scores),
            "explanations": dict(self.explanations),
            "recommendations": [r.to_dict() for r in self.recommendations],
            "cache_key": self.cache_key,
            "rubric_version": self.rubric_version,
            "tokens_used": self.tokens_used.total_tokens,
            "preparation_method": self.preparation_method,
            "token_reduction_percent": self.token_reduction_percent,
            "from_cache": self.from_cache,
        }


# --------------------------------------------------------------------------- #
# Pure helpers                                                                #
# --------------------------------------------------------------------------- #


def cache_key(content_hash: str, rubric_version: str) -> str:
    return digest(content_hash, rubric_version)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip().rstrip("%"))
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def normalize_criteria_scores(raw: Any, known: Sequence[str]) -> Dict[str, float]:
    """Numbers clamped to [0, 100]; unknown criteria and non-numeric values are dropped."""
    if not isinstance(raw, dict):
        raise AiResponseParseError("criteriaScores is missing or not an object")
    allowed = set(known)
    scores: Dict[str, float] = {}
    for name, value in raw.items():
        if name not in allowed:
            _log.debug("Ignoring unknown criterion %r", name)
            continue
        number = _as_number(value)
        if number is None:
            _log.debug("Dropping non-numeric score %r for %s", value, name)
            continue
        scores[name] = clamp_score(number)
    if not scores:
        raise AiResponseParseError("no usable criterion scores in response")
    return scores


def overall_score(scores: Mapping[str, float]) -> int:
    if not scores:
        return 0
    return round_half_up(sum(sorted(scores.values())) / len(scores))


def _recommendations(raw: Any) -> Tuple[AiRecommendation, ...]:
    if not isinstance(raw, list):
        return ()
    items: List[AiRecommendation] = []
    for item in raw:
        if not isinstance(item, dict) or not isinstance(item.get("text"), str):
            continue
        refs = item.get("references") or []
        items.append(
            AiRecommendation(
                category=str(item.get("category") or "general"),
                text=item["text"].strip(),
                references=tuple(str(r) for r in refs) if isinstance(refs, list) else (),
                example=item.get("example"),
            )
        )
    return tuple(items)


def validate_score_result(result: AiScoreResult) -> List[str]:
    """Sanity warnings for a result; an empty list means it looks fine."""
    warnings: List[str] = []
    if not 0 <= result.overall_score <= 100:
        warnings.append("Overall score out of range")
    for name, score in result.criteria_scores.items():
        if not 0 <= score <= 100:
            warnings.append(f"Criterion {name} score out of range")
    for idx, rec in enumerate(result.recommendations):
        if len(rec.text) < 20:
            warnings.append(f"Recommendation {idx} too short")
        if not rec.references:
            warnings.append(f"Recommendation {idx} missing references")
    return warnings


def _system_prompt(page_type: str, version: str, criteria: Sequence[RubricCriterion]) -> str:
    return (
        "You are an Answer Engine Optimization (AEO) expert evaluating web pages for their readiness "
        "to appear in AI-powered search results like Google AI Overviews.\n\n"
        f"Page Type: {page_type}\n"
        f"Rubric Version: {version}\n\n"
        "Your task is to:\n"
        "1. Analyze the page content against the provided rubric criteria\n"
        "2. Score each criterion from 0-100\n"
        "3. Provide brief, specific explanations for each score\n"
        "4. Generate actionable, human-sounding recommendations that reference actual page content\n\n"
        "Rubric Criteria:\n"
        f"{json.dumps([c.to_dict() for c in criteria], indent=2, ensure_ascii=False)}\n\n"
        "Respond in valid JSON format matching the expected schema."
    )


def _user_prompt(content: str, page_type: str, criteria: Sequence[RubricCriterion]) -> str:
    listing = "\n".join(
        f"- {c.name}{' [EMPHASIZED]' if c.emphasized else ''}: {c.description}" for c in criteria
    )
    return (
        f"Analyze and score this {page_type} page for Answer Engine Optimization (AEO).\n\n"
        f"Criteria to Evaluate:\n{listing}\n\n"
        f"Page Content:\n{content}\n\n"
        f"Provide your analysis as JSON with this structure:\n{_RESPONSE_SHAPE}\n\n"
        f"{_GUIDELINES}"
    )


# --------------------------------------------------------------------------- #
# Scorer                                                                      #
# --------------------------------------------------------------------------- #


class AiRubricScorer:
    """Scores one page at a time; shared across workers, concurrency is bounded internally."""

    def __init__(
        self,
        llm: LLMClient,
        rubric_store: RubricStore,
        preparer: ContentPreparer,
        cache: Optional[TTLCache[str, AiScoreResult]] = None,
        *,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        timeout: float = 60.0,
        concurrency: int = 2,
    ) -> None:
        self.llm = llm
        self.rubrics = rubric_store
        self.preparer = preparer
        self.cache: TTLCache[str, AiScoreResult] = cache if cache is not None else TTLCache()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._sem = asyncio.Semaphore(max(1, concurrency))
        self.llm_calls = 0

    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        async with self._sem:
            self.llm_calls += 1
            try:
                return await asyncio.wait_for(self.llm.complete(request), timeout=self.timeout)
            except asyncio.TimeoutError as exc:
                raise LlmError(f"completion timed out after {self.timeout}s") from exc

    async def score_page(
        self,
        extraction: ContentExtraction,
        content_hash: str,
        page_type: str,
        rubric_version: Optional[str] = None,
        *,
        use_cache: bool = True,
    ) -> AiScoreResult:
        page_type = str(getattr(page_type, "value", page_type))
        version = rubric_version or self.rubrics.version
        key = cache_key(content_hash, version)

        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                _log.debug("AI score cache hit for %s", extraction.url)
                return dataclasses.replace(cached, from_cache=True, tokens_used=TokenUsage())

        prepared = await self.preparer.prepare(extraction, page_type, complete=self._complete)
        criteria = self.rubrics.criteria_for(page_type)
        names = [c.name for c in criteria]
        request = CompletionRequest(
            system_prompt=_system_prompt(page_type, version, criteria),
            user_prompt=_user_prompt(prepared.content, page_type, criteria),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            structured_output=True,
        )

        usage = prepared.usage
        response = await self._complete(request)
        usage = usage + response.usage
        try:
            data, scores = self._parse(response.content, names)
        except AiResponseParseError as exc:
            _log.warning("Unparseable AI score for %s (%s); retrying once", extraction.url, exc)
            retry = dataclasses.replace(
                request,
                user_prompt=request.user_prompt + "\n\n" + _CORRECTIVE_INSTRUCTION.format(reason=exc),
            )
            response = await self._complete(retry)
            usage = usage + response.usage
            data, scores = self._parse(response.content, names)

        explanations = data.get("criteriaExplanations")
        result = AiScoreResult(
            page_type=page_type,
            criteria_scores=scores,
            explanations={
                k: str(v) for k, v in (explanations.items() if isinstance(explanations, dict) else ()) if k in scores
            },
            recommendations=_recommendations(data.get("recommendations")),
            overall_score=overall_score(scores),
            cache_key=key,
            rubric_version=version,
            tokens_used=usage,
            preparation_method=prepared.method,
            token_reduction_percent=prepared.reduction_percent,
        )
        self.cache.set(key, result)
        return result

    async def rescore(
        self, extraction: ContentExtraction, content_hash: str, page_type: str, rubric_version: Optional[str] = None
    ) -> AiScoreResult:
        return await self.score_page(extraction, content_hash, page_type, rubric_version, use_cache=False)

    async def score_batch(
        self, pages: Sequence[Tuple[ContentExtraction, str, str]], *, use_cache: bool = True
    ) -> List[Optional[AiScoreResult]]:
        """Score several pages; a page whose scoring fails yields *None*."""

        async def one(extraction: ContentExtraction, chash: str, ptype: str) -> Optional[AiScoreResult]:
            try:
                return await self.score_page(extraction, chash, ptype, use_cache=use_cache)
            except (AiResponseParseError, LlmError) as exc:
                _log.warning("AI scoring failed for %s: %s", extraction.url, exc)
                return None

        return list(await asyncio.gather(*(one(*page) for page in pages)))

    @staticmethod
    def _parse(content: str, names: Sequence[str]) -> Tuple[Dict[str, Any], Dict[str, float]]:
        data = parse_json_response(content)
        return data, normalize_criteria_scores(data.get("criteriaScores"), names)
