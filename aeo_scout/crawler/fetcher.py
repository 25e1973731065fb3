# aeo_scout/crawler/fetcher.py
"""
Fetchers: the HTTP client abstraction (aiohttp, retry/backoff, timeout), a
per-domain rate limiter and the headless-browser renderer.

The browser is optional. When it cannot start the orchestrator falls back to
:class:`HttpFetcher` and records a render-fallback event on the page.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from aiohttp import ClientError, ClientSession, ClientTimeout

from aeo_scout.crawler.models import PageFetchResult, RenderMethod
from aeo_scout.errors import BrowserUnavailableError, FetchError
from aeo_scout.logger import LOGGER_NAME

__all__ = ("HttpFetcher", "BrowserFetcher", "DomainRateLimiter", "RETRY_STATUS")

RETRY_STATUS: Sequence[int] = tuple(range(500, 600)) + (429,)

_log = logging.getLogger(LOGGER_NAME)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DomainRateLimiter:
    """Spaces consecutive requests to the same domain by at least *interval* seconds."""

    def __init__(self, min_interval: float = 0.0) -> None:
        self.min_interval = min_interval
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_request_ts: Dict[str, float] = {}

    async def wait(self, domain: str, crawl_delay: Optional[float] = None) -> None:
        interval = max(self.min_interval, crawl_delay or 0.0)
        lock = self._locks.setdefault(domain, asyncio.Lock())
        async with lock:
            last = self._last_request_ts.get(domain)
            if last is not None:
                wait = interval - (time.monotonic() - last)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_request_ts[domain] = time.monotonic()


class HttpFetcher:
    """Thin aiohttp wrapper shared by robots, sitemap and page fetching.

    Use as an async context manager, or pass an existing ``ClientSession``.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        retry_times: int = 2,
        user_agent: str = "AEO-Platform-Bot/1.0",
        session: Optional[ClientSession] = None,
        max_backoff: float = 60.0,
    ) -> None:
        self.timeout = timeout
        self.retry_times = retry_times
        self.user_agent = user_agent
        self.max_backoff = max_backoff
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> HttpFetcher:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        if self._session is None or self._session.closed:
            self._session = ClientSession(
                timeout=ClientTimeout(total=self.timeout),
                headers={"User-Agent": self.user_agent},
                raise_for_status=False,
            )
            self._owns_session = True

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    @property
    def session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            raise RuntimeError("Session not initialized")
        return self._session

    def _headers(self, user_agent: Optional[str]) -> Mapping[str, str]:
        return {"User-Agent": user_agent or self.user_agent}

    async def get_text(
        self, url: str, *, user_agent: Optional[str] = None, timeout: Optional[float] = None
    ) -> Tuple[int, str]:
        """Single GET without retries; returns ``(status, body)``.

        Network errors propagate as ``aiohttp.ClientError`` / ``asyncio.TimeoutError``.
        """
        kwargs: Dict[str, Any] = {"headers": self._headers(user_agent)}
        if timeout is not None:
            kwargs["timeout"] = ClientTimeout(total=timeout)
        async with self.session.get(url, **kwargs) as resp:
            return resp.status, await resp.text(errors="replace")

    async def head_ok(self, url: str, *, timeout: float = 5.0) -> bool:
        """True when a HEAD request answers 2xx; network problems count as "no"."""
        try:
            async with self.session.head(
                url, headers=self._headers(None), timeout=ClientTimeout(total=timeout), allow_redirects=True
            ) as resp:
                return 200 <= resp.status < 300
        except (ClientError, asyncio.TimeoutError) as exc:
            _log.debug("HEAD %s failed: %s", url, exc)
            return False

    async def fetch_page(self, url: str, *, user_agent: Optional[str] = None) -> PageFetchResult:
        """GET *url* with retry on 5xx/429 and network errors.

        Raises
        ------
        FetchError
            The retry budget is exhausted.
        """
        attempts = 0
        while True:
            start = time.monotonic()
            try:
                async with self.session.get(url, headers=self._headers(user_agent)) as resp:
                    if resp.status in RETRY_STATUS:
                        raise ClientError(f"retryable status {resp.status}")
                    body = await resp.read()
                    text = await resp.text(errors="replace")
                    return PageFetchResult(
                        url=url,
                        final_url=str(resp.url),
                        status_code=resp.status,
                        html=text,
                        render_method=RenderMethod.STATIC,
                        elapsed_ms=int((time.monotonic() - start) * 1000),
                        headers={k: v for k, v in resp.headers.items()},
                        fetched_at=_now(),
                        body=body,
                    )
            except (ClientError, asyncio.TimeoutError) as exc:
                attempts += 1
                reason = str(exc) or exc.__class__.__name__
                if attempts > self.retry_times:
                    _log.warning("Failed %s after %d attempt(s): %s", url, attempts, reason)
                    raise FetchError(url, reason) from exc
                backoff = min(self.max_backoff, 2**attempts + random.random())
                _log.debug("Retry %d/%d for %s after %.2f s", attempts, self.retry_times, url, backoff)
                await asyncio.sleep(backoff)


class BrowserFetcher:
    """Headless Chromium via Playwright, launched once and reused for every page.

    Mobile viewport (375x667); images, fonts and media are not downloaded.
    """

    _BLOCKED_RESOURCES = frozenset({"image", "font", "media"})

    def __init__(self, *, timeout: float = 30.0, headless: bool = True) -> None:
        self.timeout = timeout
        self.headless = headless
        self._playwright: Any = None
        self._browser: Any = None
        self._lock = asyncio.Lock()
        self.launches = 0

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def start(self) -> None:
        async with self._lock:
            if self._browser is not None:
                return
            try:
                from playwright.async_api import async_playwright

                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"],
                )
            except Exception as exc:
                await self._stop_playwright()
                raise BrowserUnavailableError(f"browser launch failed: {exc}") from exc
            self.launches += 1
            _log.info("Headless browser started")

    async def fetch(self, url: str, *, user_agent: Optional[str] = None) -> PageFetchResult:
        if self._browser is None:
            await self.start()
        start = time.monotonic()
        try:
            context = await self._browser.new_context(
                user_agent=user_agent, viewport={"width": 375, "height": 667}
            )
        except Exception as exc:
            raise BrowserUnavailableError(f"browser context failed: {exc}") from exc
        try:
            page = await context.new_page()

            async def _route(route):
                if route.request.resource_type in self._BLOCKED_RESOURCES:
                    await route.abort()
                else:
                    await route.continue_()

            await page.route("**/*", _route)
            try:
                response = await page.goto(url, wait_until="networkidle", timeout=int(self.timeout * 1000))
            except Exception as exc:
                raise FetchError(url, f"render failed: {exc}") from exc
            html = await page.content()
            status = response.status if response is not None else 200
            headers = dict(response.headers) if response is not None else {}
            return PageFetchResult(
                url=url,
                final_url=page.url,
                status_code=status,
                html=html,
                render_method=RenderMethod.RENDERED,
                elapsed_ms=int((time.monotonic() - start) * 1000),
                headers=headers,
                fetched_at=_now(),
            )
        finally:
            await context.close()

    async def _stop_playwright(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def close(self) -> None:
        async with self._lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                finally:
                    self._browser = None
                    await self._stop_playwright()
                _log.info("Headless browser closed")
