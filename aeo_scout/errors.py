# File: aeo_scout/errors.py
"""aeo_scout.errors: error taxonomy shared by the crawl and scoring layers.

Errors that end processing of one page (``RobotsBlockedError``,
``FetchError``) are converted by the orchestrator into terminal page results;
they never fail a whole run. ``RenderFallbackEvent`` is not an exception: it is
recorded on the page result when the static HTTP fetch replaced the browser.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

__all__ = [
    "AeoScoutError",
    "InvalidUrlError",
    "RobotsBlockedError",
    "FetchError",
    "BrowserUnavailableError",
    "RenderFallbackEvent",
    "MalformedSitemapError",
    "AiResponseParseError",
    "LlmError",
    "RunFailedError",
]


class AeoScoutError(Exception):
    """Base class for all project errors."""


class InvalidUrlError(AeoScoutError, ValueError):
    """Malformed or non-HTTP(S) URL rejected at the boundary."""

    def __init__(self, url: object, reason: str = "invalid URL") -> None:
        super().__init__(f"{reason}: {url!r}")
        self.url = url
        self.reason = reason


class RobotsBlockedError(AeoScoutError):
    """robots.txt denies both the declared agent and every browser agent."""

    def __init__(self, domain: str, reason: str = "") -> None:
        super().__init__(f"robots.txt blocks all agents for {domain}" + (f": {reason}" if reason else ""))
        self.domain = domain
        self.reason = reason


class FetchError(AeoScoutError):
    """Network error, timeout or retryable status after the retry budget."""

    def __init__(self, url: str, reason: str, status: Optional[int] = None) -> None:
        super().__init__(f"failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status = status


class BrowserUnavailableError(AeoScoutError):
    """Headless browser could not be started or crashed mid-run."""


@dataclass(slots=True, frozen=True)
class RenderFallbackEvent:
    """The page was fetched statically because the browser was unavailable."""

    url: str
    reason: str


class MalformedSitemapError(AeoScoutError):
    """A sitemap document could not be parsed as XML."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"malformed sitemap {url}: {reason}")
        self.url = url
        self.reason = reason


class AiResponseParseError(AeoScoutError):
    """The completion service returned something that is not a usable score object."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class LlmError(AeoScoutError):
    """Transport or vendor error raised by the completion service."""


class RunFailedError(AeoScoutError):
    """A crawl run could not be scheduled or aborted at run level."""

    def __init__(self, run_id: str, reason: str) -> None:
        super().__init__(f"run {run_id} failed: {reason}")
        self.run_id = run_id
        self.reason = reason
