# File: aeo_scout/engine.py
"""aeo_scout.engine: фасад для CLI и внешнего слоя оркестрации.

One :class:`Engine` per process holds the shared pieces (robots and AI score
caches, rubric store, EAT weights, LLM client, headless browser, result sink)
and builds a :class:`CrawlOrchestrator` per run. Runs execute as asyncio
tasks; any run-level failure marks the run ``failed`` with a readable reason.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from aeo_scout.cache import TTLCache
from aeo_scout.config import EngineSettings, ProjectConfig, RunType, load_config
from aeo_scout.crawler.crawler import CrawlOrchestrator, CrawlSummary, PageResult, PageStatus, score_record
from aeo_scout.crawler.fetcher import BrowserFetcher, HttpFetcher
from aeo_scout.crawler.models import FetchStrategy, RobotsPolicy
from aeo_scout.crawler.robots import RobotsEngine
from aeo_scout.errors import LlmError, RunFailedError
from aeo_scout.llm import LLMClient, OpenAIClient
from aeo_scout.logger import logger
from aeo_scout.parser.page_type import PageType
from aeo_scout.parser.sitemap_parser import SitemapParser
from aeo_scout.scoring.ai_scorer import AiRubricScorer, AiScoreResult
from aeo_scout.scoring.preparer import ContentPreparer, TokenCounter
from aeo_scout.scoring.recommendations import recommendations_for
from aeo_scout.scoring.rubric import RubricStore
from aeo_scout.scoring.rules import ScoreCalculator
from aeo_scout.scoring.weights import EatWeights
from aeo_scout.store import InMemoryStore, ResultSink

__all__ = ["RunStatus", "CrawlRun", "AnalysisResult", "Engine"]

BrowserFactory = Callable[[ProjectConfig], Optional[BrowserFetcher]]


class RunStatus(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class CrawlRun:
    id: str
    config: ProjectConfig
    status: RunStatus = RunStatus.QUEUED
    reason: Optional[str] = None
    pages_discovered: int = 0
    pages_processed: int = 0
    token_usage: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    summary: Optional[CrawlSummary] = field(default=None, repr=False)

    @property
    def results(self) -> List[PageResult]:
        return self.summary.results if self.summary is not None else []


@dataclass(slots=True)
class AnalysisResult:
    """Single-page analysis outcome returned by :meth:`Engine.analyze_domain`."""

    domain: str
    url: str
    page: PageResult
    robots_policy: RobotsPolicy
    robots_notes: List[str]

    @property
    def strategy(self) -> FetchStrategy:
        return self.robots_policy.strategy

    @property
    def overall_score(self) -> int:
        return self.page.overall_score

    def to_dict(self) -> Dict[str, Any]:
        page = self.page
        rule = page.rule_score
        return {
            "domain": self.domain,
            "url": self.url,
            "status": page.status.value,
            "page_type": page.page_type.value if page.page_type else None,
            "overall_score": page.overall_score,
            "scores": rule.as_dict() if rule else None,
            "recommendations": [r.to_dict() for r in page.recommendations],
            "ai_score": page.ai_score.to_dict() if page.ai_score else None,
            "ai_score_unavailable": page.ai_score_unavailable,
            "render_method": page.render_method.value if page.render_method else None,
            "render_fallback": page.render_fallback.reason if page.render_fallback else None,
            "robots": {
                "state": self.robots_policy.state.value,
                "strategy": self.strategy.value,
                "can_crawl": self.robots_policy.can_crawl,
                "effective_user_agent": self.robots_policy.effective_user_agent,
                "crawl_delay": self.robots_policy.crawl_delay_seconds,
                "notes": self.robots_notes,
            },
            "error": page.error,
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _default_browser(config: ProjectConfig) -> Optional[BrowserFetcher]:
    return BrowserFetcher(timeout=config.timeout)


class Engine:
    """Фасад: запуск обходов, анализ одной страницы и пересчёт AI-оценки."""

    @staticmethod
    def load_config(path: str) -> ProjectConfig:
        """Загружает конфиг проекта из YAML/JSON."""
        return load_config(path)

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        *,
        llm: Optional[LLMClient] = None,
        store: Optional[ResultSink] = None,
        browser_factory: BrowserFactory = _default_browser,
    ) -> None:
        self.settings = settings or EngineSettings.from_env()
        s = self.settings
        self.store: ResultSink = store if store is not None else InMemoryStore()
        self.robots_cache: TTLCache = TTLCache(s.robots_ttl)
        self.ai_cache: TTLCache = TTLCache(s.ai_cache_ttl)
        self.rubrics = RubricStore(s.rubric_path)
        self.calculator = ScoreCalculator(EatWeights.load(s.eat_weights_path))
        self._browser_factory = browser_factory
        self._browser: Optional[BrowserFetcher] = None
        self._browser_users = 0

        if llm is None and s.openai_api_key:
            llm = OpenAIClient(s.openai_api_key, model=s.openai_model, timeout=s.llm_timeout)
        self.llm = llm
        self.ai_scorer: Optional[AiRubricScorer] = None
        if llm is not None:
            preparer = ContentPreparer(
                llm, token_threshold=s.token_threshold, token_counter=TokenCounter(s.openai_model)
            )
            self.ai_scorer = AiRubricScorer(
                llm, self.rubrics, preparer, self.ai_cache,
                timeout=s.llm_timeout, concurrency=s.llm_concurrency,
            )

        self._runs: Dict[str, CrawlRun] = {}
        self._orchestrators: Dict[str, CrawlOrchestrator] = {}
        self._tasks: Dict[str, asyncio.Task[CrawlRun]] = {}

    # ---- wiring ---- #

    def build_orchestrator(self, config: ProjectConfig, *, run_id: Optional[str] = None) -> CrawlOrchestrator:
        http = HttpFetcher(timeout=config.timeout, retry_times=config.retry_times, user_agent=config.user_agent)
        return CrawlOrchestrator(
            config,
            http=http,
            robots=RobotsEngine(http, self.robots_cache, declared_agent=config.user_agent),
            sitemaps=SitemapParser(http, max_depth=config.sitemap_max_depth, user_agent=config.user_agent),
            calculator=self.calculator,
            sink=self.store,
            ai_scorer=self.ai_scorer if config.ai_scoring else None,
            browser=self._shared_browser(config) if config.use_browser else None,
            run_id=run_id,
            owns_browser=False,
        )

    def _shared_browser(self, config: ProjectConfig) -> Optional[BrowserFetcher]:
        """One renderer per Engine, shared by concurrent runs; Chromium starts on the first fetch."""
        if self._browser is None:
            self._browser = self._browser_factory(config)
        return self._browser

    def _lease_browser(self, orchestrator: CrawlOrchestrator) -> None:
        if orchestrator.browser is not None:
            self._browser_users += 1

    async def _return_browser(self, orchestrator: CrawlOrchestrator) -> None:
        """Last active user closes Chromium; the next run relaunches it."""
        browser = orchestrator.browser
        if browser is None:
            return
        self._browser_users -= 1
        if self._browser_users == 0 and browser.started:
            await browser.close()

    # ---- runs ---- #

    async def start_crawl(self, config: ProjectConfig) -> str:
        """Schedule a crawl run and return its id without waiting for it."""
        orchestrator: Optional[CrawlOrchestrator] = None
        run = CrawlRun(id="", config=config)
        try:
            orchestrator = self.build_orchestrator(config)
            run.id = orchestrator.run_id
            self._runs[run.id] = run
            self._orchestrators[run.id] = orchestrator
            self._tasks[run.id] = asyncio.create_task(self._drive(run, orchestrator))
        except Exception as exc:
            run.id = run.id or (orchestrator.run_id if orchestrator else f"unscheduled-{len(self._runs) + 1}")
            self._runs[run.id] = run
            self._fail(run, f"scheduling failed: {exc}")
        logger.info("Run %s queued for %s", run.id, config.base_url)
        return run.id

    def _fail(self, run: CrawlRun, reason: str) -> None:
        run.status = RunStatus.FAILED
        run.reason = reason
        run.finished_at = _now()
        logger.error("Run %s failed: %s", run.id, reason)

    async def _drive(self, run: CrawlRun, orchestrator: CrawlOrchestrator) -> CrawlRun:
        run.status = RunStatus.RUNNING
        run.started_at = run.started_at or _now()
        self._lease_browser(orchestrator)
        try:
            await orchestrator.http.open()
            summary = await orchestrator.run()
        except Exception as exc:
            self._fail(run, f"{exc.__class__.__name__}: {exc}")
            await orchestrator.close()
            return run
        finally:
            await self._return_browser(orchestrator)

        run.summary = summary
        run.pages_discovered = summary.pages_discovered
        run.pages_processed = summary.pages_processed
        run.token_usage = summary.tokens_used
        run.reason = summary.stop_reason
        if summary.paused:
            run.status = RunStatus.PAUSED
        else:
            run.status = RunStatus.COMPLETED
            run.finished_at = _now()
        await orchestrator.close()
        return run

    def get_run(self, run_id: str) -> CrawlRun:
        try:
            return self._runs[run_id]
        except KeyError:
            raise KeyError(f"unknown run {run_id!r}") from None

    async def wait(self, run_id: str) -> CrawlRun:
        run = self.get_run(run_id)
        task = self._tasks.get(run_id)
        if task is not None:
            await task
        return run

    def pause(self, run_id: str) -> CrawlRun:
        run = self.get_run(run_id)
        orchestrator = self._orchestrators.get(run_id)
        if orchestrator is not None and run.status in (RunStatus.QUEUED, RunStatus.RUNNING):
            orchestrator.pause()
        return run

    async def resume(self, run_id: str) -> str:
        run = self.get_run(run_id)
        if run.status is not RunStatus.PAUSED:
            raise RunFailedError(run_id, f"cannot resume a run in state {run.status.value}")
        orchestrator = self._orchestrators[run_id]
        logger.info("Run %s resuming with %d queued URL(s)", run_id, orchestrator.pending)
        self._tasks[run_id] = asyncio.create_task(self._drive(run, orchestrator))
        return run_id

    async def crawl(self, config: ProjectConfig) -> CrawlRun:
        """start_crawl + wait."""
        return await self.wait(await self.start_crawl(config))

    # ---- single page ---- #

    async def analyze_domain(self, domain: str, url: Optional[str] = None) -> AnalysisResult:
        """Analyse one page of *domain* (its root unless *url* is given)."""
        base = domain if "://" in domain else f"https://{domain}"
        config = ProjectConfig(
            base_url=url or base,
            run_type=RunType.MANUAL,
            depth_limit=0,
            concurrency=1,
            ai_scoring=self.ai_scorer is not None,
        )
        async with self.build_orchestrator(config) as orchestrator:
            self._lease_browser(orchestrator)
            try:
                page = await orchestrator.process_page(config.base_url)
                policy = await orchestrator.robots.resolve(config.base_url, config.user_agent)
            finally:
                await self._return_browser(orchestrator)
        if page.status is PageStatus.BLOCKED:
            logger.warning("Analysis of %s blocked: %s", config.base_url, page.error)
        return AnalysisResult(
            domain=policy.domain,
            url=config.base_url,
            page=page,
            robots_policy=policy,
            robots_notes=RobotsEngine.recommendations(policy),
        )

    async def rescore_page(self, snapshot_id: str) -> AiScoreResult:
        """Fresh AI score for a stored snapshot; the cache is bypassed and overwritten."""
        snapshot = self.store.get_snapshot(snapshot_id)
        if snapshot is None:
            raise KeyError(f"unknown snapshot {snapshot_id!r}")
        if self.ai_scorer is None:
            raise LlmError("no completion service configured")

        page_type = PageType(snapshot.page_type)
        ai = await self.ai_scorer.rescore(snapshot.extraction, snapshot.content_hash, page_type)
        analysis = self.calculator.analyze(snapshot.extraction, page_type, snapshot.metrics)
        rule = self.calculator.score_analysis(analysis)
        page = PageResult(
            snapshot.url,
            PageStatus.COMPLETED,
            page_type=page_type,
            rule_score=rule,
            recommendations=tuple(recommendations_for(analysis, rule)),
            ai_score=ai,
            snapshot_id=snapshot.id,
            content_hash=snapshot.content_hash,
        )
        self.store.emit_score(score_record(snapshot.id, page))
        return ai

    async def aclose(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        for orchestrator in self._orchestrators.values():
            await orchestrator.close()
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if isinstance(self.llm, OpenAIClient):
            await self.llm.close()
