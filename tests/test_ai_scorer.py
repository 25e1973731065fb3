# File: tests/test_ai_scorer.py
import asyncio
import itertools

import pytest
from conftest import ARTICLE_HTML, FakeLLM, score_reply, word_tokens

from aeo_scout.cache import TTLCache
from aeo_scout.errors import AiResponseParseError, LlmError
from aeo_scout.llm import TokenUsage
from aeo_scout.parser.html_parser import extract_content
from aeo_scout.scoring.ai_scorer import (
    AiRecommendation,
    AiRubricScorer,
    AiScoreResult,
    cache_key,
    normalize_criteria_scores,
    overall_score,
    validate_score_result,
)
from aeo_scout.scoring.preparer import AI_SUMMARIZED, STRUCTURED_ONLY, ContentPreparer
from aeo_scout.scoring.rubric import RubricStore

GOOD = score_reply({"direct_answer": 80, "authority": 71, "content_depth": 90, "question_coverage": 100})
HASH = "a" * 64


def make_scorer(llm, *, threshold=1000, timeout=1.0, concurrency=2):
    preparer = ContentPreparer(llm, token_threshold=threshold, token_counter=word_tokens)
    return AiRubricScorer(llm, RubricStore(), preparer, TTLCache(3600), timeout=timeout, concurrency=concurrency)


@pytest.fixture()
def article():
    return extract_content(ARTICLE_HTML, "https://example.com/blog/coffee")


# ---- pure helpers ---- #


def test_normalize_scores_clamps_and_drops():
    known = ["a", "b", "c", "d", "e", "f"]
    raw = {"a": 85, "b": "90%", "c": 130, "d": -5, "e": True, "f": "high", "zzz": 50}
    assert normalize_criteria_scores(raw, known) == {"a": 85, "b": 90, "c": 100, "d": 0}


@pytest.mark.parametrize("raw", [None, [], "80", {}, {"a": "n/a"}, {"unknown": 80}])
def test_normalize_scores_rejects_unusable(raw):
    with pytest.raises(AiResponseParseError):
        normalize_criteria_scores(raw, ["a"])


def test_overall_score_rounds_half_up():
    assert overall_score({"a": 74, "b": 75}) == 75
    assert overall_score({"a": 80, "b": 71, "c": 90, "d": 100}) == 85
    assert overall_score({}) == 0


def test_overall_score_is_the_rounded_mean():
    assert overall_score({"a": 80, "b": 70, "c": 90, "d": 60}) == 75


def test_overall_score_ignores_criterion_order():
    values = [80.5, 70.25, 90.125, 60.0, 33.3]
    names = ["a", "b", "c", "d", "e"]
    expected = overall_score(dict(zip(names, values)))
    for order in itertools.permutations(values):
        assert overall_score(dict(zip(names, order))) == expected


def test_cache_key_depends_on_rubric_version():
    assert cache_key(HASH, "1.0") == cache_key(HASH, "1.0")
    assert cache_key(HASH, "1.0") != cache_key(HASH, "1.1")


def test_validate_score_result():
    result = AiScoreResult(
        page_type="blog",
        criteria_scores={"a": 50},
        explanations={},
        recommendations=(AiRecommendation("a", "too short"),),
        overall_score=50,
        cache_key="k",
        rubric_version="1.0",
    )
    assert validate_score_result(result) == ["Recommendation 0 too short", "Recommendation 0 missing references"]


# ---- scoring ---- #


@pytest.mark.asyncio()
async def test_score_page(article):
    reply = score_reply({"direct_answer": 80, "authority": "71", "content_depth": "90%", "structured_content": True,
                         "question_coverage": 130, "made_up": 10})
    llm = FakeLLM(reply)
    scorer = make_scorer(llm)

    result = await scorer.score_page(article, HASH, "blog")

    assert result.criteria_scores == {"direct_answer": 80, "authority": 71, "content_depth": 90, "question_coverage": 100}
    assert result.overall_score == 85
    assert set(result.explanations) == set(result.criteria_scores)
    assert result.recommendations[0].references == ("opening paragraph",)
    assert result.tokens_used == TokenUsage(100, 50)
    assert result.preparation_method == STRUCTURED_ONLY
    assert result.rubric_version == "1.0"
    assert result.cache_key == cache_key(HASH, "1.0")
    assert not result.from_cache
    assert validate_score_result(result) == []

    (request,) = llm.requests
    assert request.structured_output is True
    assert "Page Type: blog" in request.system_prompt
    assert "Rubric Version: 1.0" in request.system_prompt
    assert "- direct_answer [EMPHASIZED]:" in request.user_prompt
    assert "- multimedia_richness:" in request.user_prompt
    assert "Main Content:" in request.user_prompt


@pytest.mark.asyncio()
async def test_cache_hit_costs_nothing(article):
    llm = FakeLLM(GOOD)
    scorer = make_scorer(llm)
    first = await scorer.score_page(article, HASH, "blog")
    second = await scorer.score_page(article, HASH, "blog")

    assert scorer.llm_calls == 1
    assert second.from_cache
    assert second.tokens_used.total_tokens == 0
    assert second.criteria_scores == first.criteria_scores
    assert second.overall_score == first.overall_score


@pytest.mark.asyncio()
async def test_new_rubric_version_misses_cache(article):
    llm = FakeLLM(GOOD)
    scorer = make_scorer(llm)
    await scorer.score_page(article, HASH, "blog")
    other = await scorer.score_page(article, HASH, "blog", "2.0")
    assert scorer.llm_calls == 2
    assert other.rubric_version == "2.0"
    assert not other.from_cache


@pytest.mark.asyncio()
async def test_rescore_bypasses_and_overwrites_cache(article):
    llm = FakeLLM(GOOD, score_reply({"direct_answer": 10}))
    scorer = make_scorer(llm)
    await scorer.score_page(article, HASH, "blog")
    rescored = await scorer.rescore(article, HASH, "blog")
    assert rescored.overall_score == 10
    assert scorer.cache.get(cache_key(HASH, "1.0")).overall_score == 10


@pytest.mark.asyncio()
async def test_one_corrective_retry(article):
    llm = FakeLLM("Sure! Here is my analysis.", GOOD)
    scorer = make_scorer(llm)
    result = await scorer.score_page(article, HASH, "blog")
    assert result.overall_score == 85
    assert scorer.llm_calls == 2
    assert result.tokens_used.total_tokens == 300
    assert "Your previous reply could not be used" in llm.requests[1].user_prompt
    assert "Your previous reply could not be used" not in llm.requests[0].user_prompt


@pytest.mark.asyncio()
async def test_second_parse_failure_propagates(article):
    llm = FakeLLM("not json", '{"criteriaScores": {"direct_answer": "excellent"}}')
    scorer = make_scorer(llm)
    with pytest.raises(AiResponseParseError):
        await scorer.score_page(article, HASH, "blog")
    assert scorer.llm_calls == 2
    assert len(scorer.cache) == 0


@pytest.mark.asyncio()
async def test_transport_errors_are_not_retried(article):
    llm = FakeLLM(LlmError("service unavailable"))
    scorer = make_scorer(llm)
    with pytest.raises(LlmError):
        await scorer.score_page(article, HASH, "blog")
    assert scorer.llm_calls == 1


@pytest.mark.asyncio()
async def test_timeout_becomes_llm_error(article):
    scorer = make_scorer(FakeLLM(GOOD, delay=0.5), timeout=0.05)
    with pytest.raises(LlmError, match="timed out"):
        await scorer.score_page(article, HASH, "blog")


@pytest.mark.asyncio()
async def test_summary_tokens_are_counted(article):
    llm = FakeLLM("A short summary of the coffee guide.", GOOD)
    scorer = make_scorer(llm, threshold=10)
    result = await scorer.score_page(article, HASH, "blog")
    assert result.preparation_method == AI_SUMMARIZED
    assert result.token_reduction_percent > 0
    assert result.tokens_used == TokenUsage(200, 100)
    assert "Content Summary:" in llm.requests[1].user_prompt
    assert scorer.llm_calls == 2


@pytest.mark.asyncio()
async def test_score_batch_isolates_failures(article):
    other = extract_content("<html><body><main><p>Other page</p></main></body></html>", "https://example.com/other")
    llm = FakeLLM(GOOD, LlmError("down"))
    scorer = make_scorer(llm)
    await scorer.score_page(article, HASH, "blog")

    results = await scorer.score_batch([(article, HASH, "blog"), (other, "b" * 64, "resource")])

    assert results[0] is not None and results[0].from_cache
    assert results[1] is None


def test_result_to_dict(article):
    result = AiScoreResult(
        page_type="blog",
        criteria_scores={"direct_answer": 80.0},
        explanations={"direct_answer": "clear"},
        recommendations=(AiRecommendation("direct_answer", "Lead with the answer.", ("h1",), {"type": "tldr"}),),
        overall_score=80,
        cache_key="k",
        rubric_version="1.0",
        tokens_used=TokenUsage(5, 5),
    )
    data = result.to_dict()
    assert data["tokens_used"] == 10
    assert data["recommendations"] == [
        {"category": "direct_answer", "text": "Lead with the answer.", "references": ["h1"], "example": {"type": "tldr"}}
    ]


@pytest.mark.asyncio()
async def test_hanging_summary_times_out(article):
    llm = FakeLLM("never arrives", delay=5.0)
    scorer = make_scorer(llm, threshold=10, timeout=0.05)
    started = asyncio.get_running_loop().time()
    with pytest.raises(LlmError, match="timed out"):
        await scorer.score_page(article, HASH, "blog")
    assert asyncio.get_running_loop().time() - started < 2
    assert scorer.llm_calls == 1


@pytest.mark.asyncio()
async def test_summary_shares_the_concurrency_limit(article):
    llm = FakeLLM("summary", GOOD, delay=0.05)
    scorer = make_scorer(llm, threshold=10, concurrency=1)
    in_flight = []
    inner = llm.complete

    async def tracked(request):
        in_flight.append(scorer._sem.locked())
        return await inner(request)

    llm.complete = tracked
    await scorer.score_page(article, HASH, "blog")
    assert in_flight == [True, True]
