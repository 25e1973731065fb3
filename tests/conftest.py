# File: tests/conftest.py
from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Dict, List, Optional, Sequence, Union

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web

from aeo_scout.crawler.crawler import PageResult, PageStatus
from aeo_scout.crawler.models import PageFetchResult, RenderMethod
from aeo_scout.errors import BrowserUnavailableError
from aeo_scout.llm import CompletionRequest, CompletionResponse, TokenUsage
from aeo_scout.parser.page_type import PageType
from aeo_scout.scoring.recommendations import Recommendation
from aeo_scout.scoring.rules import RuleScore

Route = Union[str, Callable[[web.Request], Awaitable[web.StreamResponse]]]

ALLOW_ALL_ROBOTS = "User-agent: *\nDisallow:\nCrawl-delay: 0\n"

ARTICLE_HTML = """<!DOCTYPE html>
<html>
<head>
  <title>How to brew great coffee at home</title>
  <meta name="description" content="A practical guide to brewing coffee at home: beans, grind size, water temperature and timing explained step by step for beginners.">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <meta name="author" content="Jane Doe">
  <meta property="article:published_time" content="2024-03-01">
  <link rel="canonical" href="/blog/coffee">
  <script type="application/ld+json">
  {"@context": "https://schema.org", "@type": "FAQPage", "mainEntity": [
    {"@type": "Question", "name": "What grind size should I use?",
     "acceptedAnswer": {"@type": "Answer", "text": "Medium for drip, fine for espresso."}},
    {"@type": "Question", "name": "How hot should the water be?",
     "acceptedAnswer": {"@type": "Answer", "text": "Between 90 and 96 degrees Celsius."}}
  ]}
  </script>
</head>
<body>
  <nav><a href="/">Home</a><a href="/blog/tea">Tea</a></nav>
  <main>
    <h1>How to brew great coffee at home</h1>
    <p>To brew great coffee at home, start with fresh beans and the right grind size.</p>
    <h2>What equipment do I need?</h2>
    <p>According to a 2023 survey, 64% of home brewers use a drip machine.</p>
    <ol><li>Grinder</li><li>Scale</li><li>Kettle</li><li>Brewer</li></ol>
    <h2>How long should coffee brew?</h2>
    <p>Step 1: heat water. Step 2: grind beans. Finally, pour slowly.</p>
    <p>See <a href="https://en.wikipedia.org/wiki/Coffee">Coffee on Wikipedia</a>.</p>
  </main>
  <footer>Contact us at hello@example.com. Privacy policy applies.</footer>
</body>
</html>
"""


def html_page(title: str, body: str = "", links: Sequence[str] = ()) -> str:
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
    return f"<html><head><title>{title}</title></head><body><main><h1>{title}</h1>{body}{anchors}</main></body></html>"


def _handler(route: Route) -> Callable[[web.Request], Awaitable[web.StreamResponse]]:
    if callable(route):
        return route
    content_type = "text/plain" if route.lstrip().startswith("User-agent") else "text/html"
    if route.lstrip().startswith("<?xml"):
        content_type = "application/xml"

    async def handle(_: web.Request) -> web.Response:
        return web.Response(text=route, content_type=content_type)

    return handle


@pytest_asyncio.fixture
async def serve(unused_tcp_port: int) -> AsyncIterator[Callable[[Dict[str, Route]], Awaitable[str]]]:
    """Start a local aiohttp site from ``{path: body-or-handler}``; yields a starter returning the base URL."""
    runners: List[web.AppRunner] = []

    async def start(routes: Dict[str, Route]) -> str:
        app = web.Application()
        for path, route in routes.items():
            app.router.add_get(path, _handler(route))
        runner = web.AppRunner(app)
        await runner.setup()
        await web.TCPSite(runner, "127.0.0.1", unused_tcp_port).start()
        runners.append(runner)
        return f"http://127.0.0.1:{unused_tcp_port}"

    yield start
    for runner in runners:
        await runner.cleanup()


class FakeLLM:
    """Completion client returning queued replies (strings or exceptions) in order."""

    def __init__(self, *replies: Union[str, Exception], usage: TokenUsage = TokenUsage(100, 50), delay: float = 0.0):
        self.replies: List[Union[str, Exception]] = list(replies)
        self.usage = usage
        self.delay = delay
        self.requests: List[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return CompletionResponse(content=reply, usage=self.usage, model="fake")


def score_reply(scores: Dict[str, object], **extra: object) -> str:
    payload: Dict[str, object] = {
        "criteriaScores": scores,
        "criteriaExplanations": {name: f"{name} looks fine" for name in scores},
        "recommendations": [
            {
                "category": "Content Quality",
                "text": "Move the direct answer into the first paragraph of the page.",
                "references": ["opening paragraph"],
            }
        ],
    }
    payload.update(extra)
    return json.dumps(payload)


def word_tokens(text: str) -> int:
    return len(text.split())


class FakeBrowser:
    """Stand-in for the headless renderer: fetches over plain HTTP, reports ``rendered``."""

    def __init__(self, *, unavailable: bool = False) -> None:
        self.unavailable = unavailable
        self.launches = 0
        self.closes = 0
        self.fetched: List[str] = []
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def started(self) -> bool:
        return self._session is not None

    async def start(self) -> None:
        if self.unavailable:
            raise BrowserUnavailableError("chromium not installed")
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self.launches += 1

    async def fetch(self, url: str, *, user_agent: Optional[str] = None) -> PageFetchResult:
        await self.start()
        assert self._session is not None
        self.fetched.append(url)
        start = time.monotonic()
        async with self._session.get(url, headers={"User-Agent": user_agent or "fake"}) as resp:
            html = await resp.text()
            return PageFetchResult(
                url=url,
                final_url=str(resp.url),
                status_code=resp.status,
                html=html,
                render_method=RenderMethod.RENDERED,
                elapsed_ms=int((time.monotonic() - start) * 1000),
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
            self.closes += 1


@pytest.fixture()
def fake_browser() -> FakeBrowser:
    return FakeBrowser()


CONTENT_TOO_SHORT = Recommendation(
    "Content Quality", "high", "Content too short", "Expand the page to at least 500 words.", "High"
)
MISSING_FAQ = Recommendation(
    "Structured Data", "medium", "Missing FAQ schema", "Add FAQPage markup.", "Medium"
)


def sample_results() -> List[PageResult]:
    """Two scored pages and one blocked page, as a finished run would report them."""
    return [
        PageResult(
            "https://example.com/", PageStatus.COMPLETED, 0, status_code=200, page_type=PageType.HOMEPAGE,
            rule_score=RuleScore(content=60, eat=50, technical=90, structured_data=20, overall=58),
            recommendations=(CONTENT_TOO_SHORT, MISSING_FAQ), render_method=RenderMethod.STATIC,
        ),
        PageResult(
            "https://example.com/blog/coffee", PageStatus.COMPLETED, 1, status_code=200, page_type=PageType.BLOG,
            rule_score=RuleScore(content=81, eat=70, technical=95, structured_data=41, overall=73),
            recommendations=(CONTENT_TOO_SHORT,), render_method=RenderMethod.RENDERED,
        ),
        PageResult(
            "https://example.com/private", PageStatus.BLOCKED, 1, rule_score=RuleScore.zero(),
            error="path disallowed by robots.txt",
        ),
    ]
