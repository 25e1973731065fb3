# aeo_scout/crawler/models.py
"""
Data models for the AEO Scout crawler: canonical URLs, robots policies,
sitemap entries and fetch results.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple


@dataclass(slots=True, frozen=True)
class CanonicalUrl:
    """Normalized URL plus its fixed-length SHA-256 identity."""

    url: str
    hash: str

    def __str__(self) -> str:
        return self.url


class RobotsState(str, enum.Enum):
    UNCHECKED = "unchecked"
    FETCHING = "fetching"
    ALLOWED_AS_DECLARED = "allowed_as_declared"
    ALLOWED_AS_BROWSER = "allowed_as_browser"
    BLOCKED = "blocked"
    ERROR_FALLBACK_PERMISSIVE = "error_fallback_permissive"


class FetchStrategy(str, enum.Enum):
    CRAWLER = "crawler"
    BROWSER = "browser"
    BLOCKED = "blocked"


@dataclass(slots=True, frozen=True)
class RobotsPolicy:
    """Outcome of evaluating one domain's robots.txt for one declared agent."""

    domain: str
    state: RobotsState
    exists: bool
    allowed_as_declared_agent: bool
    allowed_as_browser_agent: bool
    effective_user_agent: Optional[str]
    crawl_delay_seconds: float
    declared_user_agent: str = ""
    browser_agent_name: Optional[str] = None
    disallowed_paths: Tuple[str, ...] = ()
    sitemap_urls: Tuple[str, ...] = ()
    reason: str = ""
    fetched_at: Optional[datetime] = None

    @property
    def can_crawl(self) -> bool:
        return self.state is not RobotsState.BLOCKED

    @property
    def strategy(self) -> FetchStrategy:
        if self.state is RobotsState.BLOCKED:
            return FetchStrategy.BLOCKED
        if self.state is RobotsState.ALLOWED_AS_BROWSER:
            return FetchStrategy.BROWSER
        return FetchStrategy.CRAWLER


@dataclass(slots=True, frozen=True)
class SitemapEntry:
    url: CanonicalUrl
    last_modified: Optional[datetime] = None
    change_frequency: Optional[str] = None
    priority: Optional[float] = None


class RenderMethod(str, enum.Enum):
    STATIC = "static"
    RENDERED = "rendered"


@dataclass(slots=True, frozen=True)
class PageFetchResult:
    """Raw result of fetching one URL, either statically or through the browser."""

    url: str
    final_url: str
    status_code: int
    html: str
    render_method: RenderMethod
    elapsed_ms: int = 0
    headers: Dict[str, str] = field(default_factory=dict)
    fetched_at: Optional[datetime] = None
    # сырые байты ответа (только статический fetch); XML-парсеру нужна объявленная кодировка
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300
