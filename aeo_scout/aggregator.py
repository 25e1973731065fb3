# File: aeo_scout/aggregator.py
"""aeo_scout.aggregator: сводный отчёт по результатам обхода."""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, TypedDict, Union

from aeo_scout.crawler.crawler import PageResult, PageStatus
from aeo_scout.utils import round_half_up

_COMPONENTS = ("overall", "content", "eat", "technical", "structured_data")


class PageInfo(TypedDict, total=False):
    """Информация об одной обработанной странице."""

    url: str
    status: str
    status_code: Optional[int]
    page_type: Optional[str]
    overall_score: int
    scores: Dict[str, int]
    ai_score: Optional[Dict[str, Any]]
    ai_score_unavailable: bool
    render_method: Optional[str]
    render_fallback: Optional[str]
    unchanged: bool
    error: Optional[str]
    recommendations: List[Dict[str, str]]


class IssueInfo(TypedDict):
    """Проблема, встречающаяся на нескольких страницах."""

    issue: str
    category: str
    priority: str
    pages: int


@dataclass(slots=True)
class CrawlReport:
    """Результаты обхода: страницы, распределения и средние оценки."""

    run_id: Optional[str] = None
    pages: List[PageInfo] = field(default_factory=list)
    status_counts: Dict[str, int] = field(default_factory=dict)
    page_type_counts: Dict[str, int] = field(default_factory=dict)
    average_scores: Dict[str, int] = field(default_factory=dict)
    top_issues: List[IssueInfo] = field(default_factory=list)
    pages_discovered: int = 0
    tokens_used: int = 0
    stop_reason: Optional[str] = None

    raw_results: Union[List[PageResult], None] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if k != "raw_results"}

    def json(self, *, pretty: bool = False) -> str:
        """Возвращает JSON-представление CrawlReport без сырых данных."""
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2 if pretty else None)


def page_info(result: PageResult) -> PageInfo:
    return {
        "url": result.url,
        "status": result.status.value,
        "status_code": result.status_code,
        "page_type": result.page_type.value if result.page_type else None,
        "overall_score": result.overall_score,
        "scores": result.rule_score.as_dict() if result.rule_score else {},
        "ai_score": result.ai_score.to_dict() if result.ai_score else None,
        "ai_score_unavailable": result.ai_score_unavailable,
        "render_method": result.render_method.value if result.render_method else None,
        "render_fallback": result.render_fallback.reason if result.render_fallback else None,
        "unchanged": result.unchanged,
        "error": result.error,
        "recommendations": [r.to_dict() for r in result.recommendations],
    }


def _average_scores(results: List[PageResult]) -> Dict[str, int]:
    scored = [r for r in results if r.status is PageStatus.COMPLETED and r.rule_score is not None]
    if not scored:
        return {}
    averages = {
        name: round_half_up(sum(getattr(r.rule_score, name) for r in scored) / len(scored))
        for name in _COMPONENTS
    }
    # overall учитывает AI-оценку там, где она есть
    averages["overall"] = round_half_up(sum(r.overall_score for r in scored) / len(scored))
    return averages


def _top_issues(results: List[PageResult], limit: int) -> List[IssueInfo]:
    counts: Counter[str] = Counter()
    first_seen: Dict[str, IssueInfo] = {}
    for r in results:
        for issue in {rec.issue for rec in r.recommendations}:
            counts[issue] += 1
        for rec in r.recommendations:
            first_seen.setdefault(
                rec.issue, {"issue": rec.issue, "category": rec.category, "priority": rec.priority, "pages": 0}
            )
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
    return [{**first_seen[issue], "pages": n} for issue, n in ranked]


def aggregate_results(
    results: Iterable[PageResult],
    *,
    run_id: Optional[str] = None,
    pages_discovered: Optional[int] = None,
    tokens_used: int = 0,
    stop_reason: Optional[str] = None,
    top_issues: int = 10,
) -> CrawlReport:
    """Собирает все части отчёта в CrawlReport."""
    items = list(results)
    return CrawlReport(
        run_id=run_id,
        pages=[page_info(r) for r in items],
        status_counts=dict(Counter(r.status.value for r in items)),
        page_type_counts=dict(Counter(r.page_type.value for r in items if r.page_type is not None)),
        average_scores=_average_scores(items),
        top_issues=_top_issues(items, top_issues),
        pages_discovered=len(items) if pages_discovered is None else pages_discovered,
        tokens_used=tokens_used,
        stop_reason=stop_reason,
        raw_results=items,
    )
