# File: tests/test_engine.py
import asyncio

import pytest
from aiohttp import web
from conftest import ALLOW_ALL_ROBOTS, FakeBrowser, FakeLLM, html_page, score_reply

from aeo_scout.config import EngineSettings, ProjectConfig
from aeo_scout.crawler.crawler import PageStatus
from aeo_scout.crawler.models import FetchStrategy, RenderMethod
from aeo_scout.engine import Engine, RunStatus
from aeo_scout.errors import LlmError, RunFailedError

GOOD = score_reply({"direct_answer": 80, "authority": 71, "content_depth": 90, "question_coverage": 100})


def make_engine(llm=None, browser_factory=lambda config: None) -> Engine:
    return Engine(EngineSettings(), llm=llm, browser_factory=browser_factory)


def make_config(base, **overrides):
    values = {"base_url": base, "use_browser": False, "retry_times": 0, "timeout": 5, "concurrency": 1}
    values.update(overrides)
    return ProjectConfig(**values)


def slow(html, delay=0.05):
    async def handle(_):
        await asyncio.sleep(delay)
        return web.Response(text=html, content_type="text/html")

    return handle


@pytest.mark.asyncio()
async def test_crawl_run_lifecycle(serve):
    base = await serve({"/robots.txt": ALLOW_ALL_ROBOTS, "/": html_page("Home", links=["/a"]), "/a": html_page("A")})
    engine = make_engine()
    run_id = await engine.start_crawl(make_config(base))

    assert engine.get_run(run_id).status in (RunStatus.QUEUED, RunStatus.RUNNING)
    run = await engine.wait(run_id)

    assert run.status is RunStatus.COMPLETED
    assert run.pages_processed == run.pages_discovered == 2
    assert run.token_usage == 0
    assert run.reason is None
    assert run.started_at <= run.finished_at
    assert {r.status for r in run.results} == {PageStatus.COMPLETED}
    assert len(engine.store.snapshots_for_run(run_id)) == 2
    await engine.aclose()


@pytest.mark.asyncio()
async def test_unknown_run_id():
    engine = make_engine()
    with pytest.raises(KeyError):
        engine.get_run("nope")
    with pytest.raises(KeyError):
        await engine.wait("nope")


@pytest.mark.asyncio()
async def test_scheduling_failure_marks_run_failed():
    def broken_factory(config):
        raise RuntimeError("no display")

    engine = make_engine(browser_factory=broken_factory)
    run_id = await engine.start_crawl(ProjectConfig(base_url="https://example.com", use_browser=True))
    run = engine.get_run(run_id)
    assert run.status is RunStatus.FAILED
    assert run.reason == "scheduling failed: no display"
    assert run.finished_at is not None


@pytest.mark.asyncio()
async def test_limit_reason_is_recorded(serve):
    base = await serve(
        {"/robots.txt": ALLOW_ALL_ROBOTS, "/": html_page("Home", links=["/a", "/b"]), "/a": html_page("A"),
         "/b": html_page("B")}
    )
    engine = make_engine()
    run = await engine.crawl(make_config(base, max_pages=1))
    assert run.status is RunStatus.COMPLETED
    assert run.pages_processed == 1
    assert run.reason == "page limit reached"


@pytest.mark.asyncio()
async def test_pause_and_resume(serve):
    children = [f"/p{i}" for i in range(4)]
    routes = {"/robots.txt": ALLOW_ALL_ROBOTS, "/": slow(html_page("Home", links=children))}
    routes.update({path: slow(html_page(path)) for path in children})
    base = await serve(routes)

    engine = make_engine()
    run_id = await engine.start_crawl(make_config(base))
    while not engine.store.snapshots:
        await asyncio.sleep(0.01)
    engine.pause(run_id)
    run = await engine.wait(run_id)

    assert run.status is RunStatus.PAUSED
    assert run.reason == "paused"
    assert run.finished_at is None
    assert run.pages_processed < 5

    await engine.resume(run_id)
    run = await engine.wait(run_id)

    assert run.status is RunStatus.COMPLETED
    assert run.pages_processed == 5
    assert len({r.url for r in run.results}) == 5
    await engine.aclose()


@pytest.mark.asyncio()
async def test_resume_requires_paused_run(serve):
    base = await serve({"/robots.txt": ALLOW_ALL_ROBOTS, "/": html_page("Home")})
    engine = make_engine()
    run = await engine.crawl(make_config(base))
    with pytest.raises(RunFailedError, match="cannot resume a run in state completed"):
        await engine.resume(run.id)


@pytest.mark.asyncio()
async def test_analyze_domain(serve):
    base = await serve({"/robots.txt": ALLOW_ALL_ROBOTS, "/": html_page("Home", "<p>Welcome to our shop.</p>")})
    engine = make_engine()

    result = await engine.analyze_domain("127.0.0.1", url=base)

    assert result.page.status is PageStatus.COMPLETED
    assert result.url == f"{base}/"
    assert result.strategy is FetchStrategy.CRAWLER
    data = result.to_dict()
    assert set(data) == {
        "domain", "url", "status", "page_type", "overall_score", "scores", "recommendations", "ai_score",
        "ai_score_unavailable", "render_method", "render_fallback", "robots", "error",
    }
    assert data["page_type"] == "homepage"
    assert data["overall_score"] == result.overall_score
    assert data["ai_score"] is None
    assert data["robots"]["can_crawl"] is True
    assert set(data["scores"]) == {"overall", "content", "eat", "technical", "structured_data"}


@pytest.mark.asyncio()
async def test_analyze_domain_with_ai(serve):
    base = await serve({"/robots.txt": ALLOW_ALL_ROBOTS, "/": html_page("Home")})
    engine = make_engine(llm=FakeLLM(GOOD))
    result = await engine.analyze_domain("127.0.0.1", url=base)
    assert result.overall_score == 85
    assert result.to_dict()["ai_score"]["overall_score"] == 85


@pytest.mark.asyncio()
async def test_rescore_page(serve):
    base = await serve({"/robots.txt": ALLOW_ALL_ROBOTS, "/": html_page("Home")})
    llm = FakeLLM(GOOD, score_reply({"direct_answer": 40}))
    engine = make_engine(llm=llm)
    run = await engine.crawl(make_config(base, ai_scoring=True))
    snapshot_id = run.results[0].snapshot_id
    assert run.results[0].overall_score == 85

    rescored = await engine.rescore_page(snapshot_id)

    assert rescored.overall_score == 40
    assert not rescored.from_cache
    records = engine.store.scores_for(snapshot_id)
    assert [r.overall_score for r in records] == [85, 40]
    assert records[-1].criteria_scores == {"direct_answer": 40}


@pytest.mark.asyncio()
async def test_rescore_errors(serve):
    engine = make_engine()
    with pytest.raises(KeyError):
        await engine.rescore_page("missing")

    base = await serve({"/robots.txt": ALLOW_ALL_ROBOTS, "/": html_page("Home")})
    run = await engine.crawl(make_config(base))
    with pytest.raises(LlmError):
        await engine.rescore_page(run.results[0].snapshot_id)


def test_settings_without_key_have_no_scorer():
    engine = make_engine()
    assert engine.llm is None
    assert engine.ai_scorer is None


@pytest.mark.asyncio()
async def test_concurrent_runs_share_one_browser(serve):
    routes = {"/robots.txt": ALLOW_ALL_ROBOTS, "/": slow(html_page("Home", links=["/a"])), "/a": slow(html_page("A"))}
    base = await serve(routes)
    browser = FakeBrowser()
    built = []

    def factory(config):
        built.append(config)
        return browser

    engine = make_engine(browser_factory=factory)
    first = await engine.start_crawl(make_config(base, use_browser=True))
    second = await engine.start_crawl(make_config(base, use_browser=True))
    runs = [await engine.wait(first), await engine.wait(second)]

    assert [r.status for r in runs] == [RunStatus.COMPLETED, RunStatus.COMPLETED]
    assert {r.render_method for run in runs for r in run.results} == {RenderMethod.RENDERED}
    assert len(built) == 1
    assert browser.launches == 1
    # released once the last run finished
    assert browser.closes == 1 and not browser.started

    analysis = await engine.analyze_domain("127.0.0.1", url=base)
    assert analysis.page.render_method is RenderMethod.RENDERED
    assert len(built) == 1
    assert browser.launches == browser.closes == 2
    await engine.aclose()
