# === FILE: aeo_scout/crawler/crawler.py ===
"""Crawl orchestrator: robots negotiation, fetch, extraction and scoring per page.

A run seeds its frontier according to ``run_type`` and drains it with a pool
of workers over an :class:`asyncio.Queue`. Pausing stops new fetches; queued
URLs go back to the retained frontier, and calling :meth:`run` again resumes
from there with the same dedup state.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional, Set, Tuple

from aeo_scout.config import ProjectConfig, RunType
from aeo_scout.crawler.canonicalizer import is_same_domain, normalize, resolve_canonical, should_crawl
from aeo_scout.crawler.fetcher import BrowserFetcher, DomainRateLimiter, HttpFetcher
from aeo_scout.crawler.models import CanonicalUrl, PageFetchResult, RenderMethod, RobotsPolicy
from aeo_scout.crawler.robots import RobotsEngine
from aeo_scout.errors import (
    AiResponseParseError,
    BrowserUnavailableError,
    FetchError,
    InvalidUrlError,
    LlmError,
    RenderFallbackEvent,
    RobotsBlockedError,
)
from aeo_scout.logger import LOGGER_NAME
from aeo_scout.parser.html_parser import calculate_metrics, extract_content
from aeo_scout.parser.page_type import PageType, detect_page_type
from aeo_scout.parser.sitemap_parser import SitemapParser, filter_urls
from aeo_scout.scoring.ai_scorer import AiRubricScorer, AiScoreResult
from aeo_scout.scoring.recommendations import Recommendation, recommendations_for
from aeo_scout.scoring.rules import RuleScore, ScoreCalculator
from aeo_scout.store import ResultSink, ScoreRecord, SnapshotRecord, new_id
from aeo_scout.utils import content_hash

__all__ = ("PageStatus", "PageResult", "CrawlSummary", "CrawlOrchestrator", "score_record")

_log = logging.getLogger(LOGGER_NAME)


class PageStatus(str, enum.Enum):
    COMPLETED = "completed"
    BLOCKED = "blocked"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class PageResult:
    """Итог обработки одной страницы."""
    url: str
    status: PageStatus
    depth: int = 0
    canonical: Optional[CanonicalUrl] = None
    status_code: Optional[int] = None
    page_type: Optional[PageType] = None
    rule_score: Optional[RuleScore] = None
    recommendations: Tuple[Recommendation, ...] = ()
    ai_score: Optional[AiScoreResult] = None
    ai_score_unavailable: bool = False
    render_method: Optional[RenderMethod] = None
    render_fallback: Optional[RenderFallbackEvent] = None
    snapshot_id: Optional[str] = None
    content_hash: Optional[str] = None
    unchanged: bool = False
    error: Optional[str] = None
    links: Tuple[str, ...] = field(default=(), repr=False)

    @property
    def overall_score(self) -> int:
        if self.ai_score is not None:
            return self.ai_score.overall_score
        return self.rule_score.overall if self.rule_score is not None else 0


@dataclass(slots=True)
class CrawlSummary:
    run_id: str
    paused: bool
    results: List[PageResult]
    pages_discovered: int
    pages_processed: int
    tokens_used: int
    stop_reason: Optional[str] = None
    duration: float = 0.0


class CrawlOrchestrator:
    """Асинхронный оркестратор обхода с учётом robots.txt, rate-limit и лимитов запуска."""

    def __init__(
        self,
        config: ProjectConfig,
        *,
        http: HttpFetcher,
        robots: RobotsEngine,
        sitemaps: SitemapParser,
        calculator: ScoreCalculator,
        sink: ResultSink,
        ai_scorer: Optional[AiRubricScorer] = None,
        browser: Optional[BrowserFetcher] = None,
        run_id: Optional[str] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
        owns_browser: bool = True,
    ) -> None:
        self.config = config
        self.http = http
        self.robots = robots
        self.sitemaps = sitemaps
        self.calculator = calculator
        self.sink = sink
        self.ai_scorer = ai_scorer
        self.browser = browser if config.use_browser else None
        # чужой (общий для Engine) браузер не закрываем в конце run()
        self.owns_browser = owns_browser
        self.run_id = run_id or new_id()
        self.rate_limiter = rate_limiter or DomainRateLimiter(config.min_crawl_delay)

        self.results: List[PageResult] = []
        self.tokens_used = 0
        self.stop_reason: Optional[str] = None
        self._pending: Deque[Tuple[str, int]] = deque()
        self._seen: Set[str] = set()
        self._seeded = False
        self._paused = False
        self._claimed = 0
        self._browser_failed = False

    async def __aenter__(self) -> CrawlOrchestrator:
        await self.http.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._release_browser()
        await self.http.close()

    # ---- state ---- #

    @property
    def pages_discovered(self) -> int:
        return len(self._seen)

    @property
    def pages_processed(self) -> int:
        return len(self.results)

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def pending(self) -> int:
        return len(self._pending)

    def pause(self) -> None:
        """Stop taking new URLs; in-flight pages finish and are persisted."""
        if not self._paused:
            _log.info("Run %s: pausing (%d queued)", self.run_id, len(self._pending))
        self._paused = True

    # ---- run ---- #

    async def run(self) -> CrawlSummary:
        """Seed (first call only) and drain the frontier; returns when done or paused."""
        self._paused = False
        self.stop_reason = None
        start = time.monotonic()
        _log.info("Run %s: %s crawl of %s", self.run_id, self.config.run_type.value, self.config.base_url)
        workers: List[asyncio.Task[None]] = []
        try:
            if not self._seeded:
                await self._seed()
                self._seeded = True

            queue: asyncio.Queue[Tuple[str, int]] = asyncio.Queue()
            while self._pending:
                queue.put_nowait(self._pending.popleft())

            workers = [asyncio.create_task(self._worker(queue)) for _ in range(self.config.concurrency)]
            await queue.join()
        finally:
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            await self._release_browser()

        duration = time.monotonic() - start
        if self._paused:
            self.stop_reason = "paused"
        _log.info(
            "Run %s: %d page(s) in %.2f s, %d pending%s",
            self.run_id,
            len(self.results),
            duration,
            len(self._pending),
            f" ({self.stop_reason})" if self.stop_reason else "",
        )
        return CrawlSummary(
            run_id=self.run_id,
            paused=self._paused,
            results=list(self.results),
            pages_discovered=self.pages_discovered,
            pages_processed=self.pages_processed,
            tokens_used=self.tokens_used,
            stop_reason=self.stop_reason,
            duration=duration,
        )

    async def _seed(self) -> None:
        cfg = self.config
        if cfg.run_type is RunType.MANUAL:
            for url in (cfg.base_url, *cfg.urls):
                self._add(url, 0)
            return

        seeds: List[str] = []
        policy = await self.robots.resolve(cfg.base_url, cfg.user_agent)
        if policy.can_crawl:
            entries = await self.sitemaps.parse_all(cfg.base_url, policy)
            entries = filter_urls(
                entries,
                modified_after=cfg.modified_after if cfg.run_type is RunType.DELTA else None,
                min_priority=cfg.min_priority,
                exclude_patterns=cfg.excluded_patterns,
            )
            entries.sort(key=lambda e: -(e.priority if e.priority is not None else 0.5))
            seeds = [e.url.url for e in entries]
        else:
            _log.warning("Run %s: %s blocked by robots.txt (%s)", self.run_id, policy.domain, policy.reason)

        if cfg.run_type is not RunType.DELTA or not policy.can_crawl:
            seeds.insert(0, cfg.base_url)
        for url in seeds:
            self._add(url, 0)
        _log.info("Run %s: frontier seeded with %d URL(s)", self.run_id, len(self._pending))

    def _admit(self, url: str, depth: int) -> Optional[Tuple[str, int]]:
        try:
            canonical = normalize(url)
        except InvalidUrlError as exc:
            _log.debug("Skipping %s: %s", url, exc.reason)
            return None
        if canonical.hash in self._seen:
            return None
        if not should_crawl(canonical.url, exclude=self.config.excluded_patterns):
            _log.debug("Excluded by pattern: %s", canonical.url)
            return None
        self._seen.add(canonical.hash)
        return canonical.url, depth

    def _add(self, url: str, depth: int) -> None:
        item = self._admit(url, depth)
        if item is not None:
            self._pending.append(item)

    def _should_stop(self) -> bool:
        if self._paused:
            return True
        if self._claimed >= self.config.page_cap:
            self.stop_reason = "page limit reached"
            return True
        limit = self.config.token_limit
        if limit is not None and self.tokens_used >= limit:
            self.stop_reason = "token limit reached"
            return True
        return False

    async def _worker(self, queue: asyncio.Queue[Tuple[str, int]]) -> None:
        while True:
            try:
                url, depth = await queue.get()
            except asyncio.CancelledError:
                break
            try:
                if self._should_stop():
                    self._pending.append((url, depth))
                    continue
                self._claimed += 1
                try:
                    result = await self.process_page(url, depth)
                except Exception as exc:
                    _log.exception("Unexpected error on %s", url)
                    result = PageResult(url, PageStatus.FAILED, depth, error=f"unexpected error: {exc}")
                self.results.append(result)
                if self.config.follows_links and depth < self.config.depth_limit:
                    for link in result.links:
                        if not is_same_domain(link, self.config.base_url):
                            continue
                        item = self._admit(link, depth + 1)
                        if item is None:
                            continue
                        if self._paused:
                            self._pending.append(item)
                        else:
                            queue.put_nowait(item)
            finally:
                queue.task_done()

    # ---- one page ---- #

    async def _fetch(self, url: str, user_agent: Optional[str]) -> Tuple[PageFetchResult, Optional[RenderFallbackEvent]]:
        event: Optional[RenderFallbackEvent] = None
        if self.browser is not None and not self._browser_failed:
            try:
                return await self.browser.fetch(url, user_agent=user_agent), None
            except BrowserUnavailableError as exc:
                self._browser_failed = True
                event = RenderFallbackEvent(url, str(exc))
                _log.warning("Browser unavailable, falling back to static fetch: %s", exc)
            except FetchError as exc:
                event = RenderFallbackEvent(url, exc.reason)
                _log.warning("Render of %s failed, falling back to static fetch: %s", url, exc.reason)
        return await self.http.fetch_page(url, user_agent=user_agent), event

    async def process_page(self, url: str, depth: int = 0) -> PageResult:
        """Robots check, fetch, extract, classify, score and persist one URL."""
        try:
            canonical = normalize(url)
        except InvalidUrlError as exc:
            return PageResult(url, PageStatus.FAILED, depth, error=str(exc))

        try:
            policy: RobotsPolicy = await self.robots.ensure_allowed(canonical.url, self.config.user_agent)
        except RobotsBlockedError as exc:
            return PageResult(
                canonical.url, PageStatus.BLOCKED, depth, canonical=canonical,
                rule_score=RuleScore.zero(), error=exc.reason or str(exc),
            )
        if not await self.robots.is_allowed(canonical.url, self.config.user_agent):
            return PageResult(
                canonical.url, PageStatus.BLOCKED, depth, canonical=canonical,
                rule_score=RuleScore.zero(), error="path disallowed by robots.txt",
            )

        ua = policy.effective_user_agent or self.config.user_agent
        await self.rate_limiter.wait(policy.domain, policy.crawl_delay_seconds)
        try:
            fetched, fallback = await self._fetch(canonical.url, ua)
        except FetchError as exc:
            return PageResult(canonical.url, PageStatus.FAILED, depth, canonical=canonical, error=exc.reason)

        if not fetched.ok:
            return PageResult(
                canonical.url, PageStatus.FAILED, depth, canonical=canonical,
                status_code=fetched.status_code, render_method=fetched.render_method,
                render_fallback=fallback, error=f"HTTP {fetched.status_code}",
            )

        page_canonical = resolve_canonical(fetched.final_url, fetched.html)
        if page_canonical.hash != canonical.hash:
            if page_canonical.hash in self._seen:
                return PageResult(
                    canonical.url, PageStatus.SKIPPED, depth, canonical=page_canonical,
                    status_code=fetched.status_code, error=f"duplicate of {page_canonical.url}",
                )
            self._seen.add(page_canonical.hash)

        extraction = extract_content(fetched.html, fetched.final_url)
        page_type = detect_page_type(fetched.final_url, extraction)
        metrics = calculate_metrics(fetched.html, extraction, fetched.elapsed_ms, fetched.render_method)
        analysis = self.calculator.analyze(extraction, page_type, metrics)
        rule_score = self.calculator.score_analysis(analysis)
        recs = tuple(recommendations_for(analysis, rule_score))
        chash = content_hash(extraction.body)
        links = tuple(link.url for link in extraction.internal_links)

        result = PageResult(
            canonical.url, PageStatus.COMPLETED, depth, canonical=page_canonical,
            status_code=fetched.status_code, page_type=page_type, rule_score=rule_score,
            recommendations=recs, render_method=fetched.render_method, render_fallback=fallback,
            content_hash=chash, links=links,
        )

        if self.config.run_type is RunType.DELTA and self.sink.latest_content_hash(canonical.url) == chash:
            _log.debug("Unchanged since last snapshot: %s", canonical.url)
            result.unchanged = True
            return result

        snapshot = SnapshotRecord(
            id=new_id(),
            run_id=self.run_id,
            url=canonical.url,
            status_code=fetched.status_code,
            cleaned_text=extraction.body,
            content_hash=chash,
            extraction=extraction,
            metrics=metrics,
            page_type=page_type.value,
            raw_html=fetched.html if self.config.keep_raw_html else None,
        )
        self.sink.emit_snapshot(snapshot)
        result.snapshot_id = snapshot.id

        if self.config.ai_scoring and self.ai_scorer is not None:
            try:
                result.ai_score = await self.ai_scorer.score_page(extraction, chash, page_type)
                self.tokens_used += result.ai_score.tokens_used.total_tokens
            except (AiResponseParseError, LlmError) as exc:
                _log.warning("AI score unavailable for %s: %s", canonical.url, exc)
                result.ai_score_unavailable = True

        self.sink.emit_score(score_record(snapshot.id, result))
        _log.debug("Scored %s as %s: %d", canonical.url, page_type.value, result.overall_score)
        return result

    async def _release_browser(self) -> None:
        if self.owns_browser and self.browser is not None and self.browser.started:
            await self.browser.close()


def score_record(snapshot_id: str, result: PageResult) -> ScoreRecord:
    ai = result.ai_score
    return ScoreRecord(
        id=new_id(),
        snapshot_id=snapshot_id,
        page_type=result.page_type.value if result.page_type else PageType.RESOURCE.value,
        overall_score=result.overall_score,
        rule_score=result.rule_score or RuleScore.zero(),
        criteria_scores=dict(ai.criteria_scores) if ai else {},
        explanations=dict(ai.explanations) if ai else {},
        recommendations=tuple(
            [r.to_dict() for r in ai.recommendations] if ai else [r.to_dict() for r in result.recommendations]
        ),
        cache_key=ai.cache_key if ai else None,
        tokens_used=ai.tokens_used.total_tokens if ai else 0,
        ai_score_unavailable=result.ai_score_unavailable,
    )
