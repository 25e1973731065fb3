# aeo_scout/crawler/robots.py
"""
robots.txt parsing and the per-domain compliance engine.

:class:`RobotsTxtRules` implements RFC 9309 matching (longest match wins,
``allow`` wins ties, ``*`` and ``$`` wildcards). :class:`RobotsEngine` turns the
rules into a :class:`~aeo_scout.crawler.models.RobotsPolicy`:

* the declared crawler agent is evaluated first;
* if it is disallowed, the browser agents are tried in priority order
  (Chrome, Firefox, Safari) and the first allowed one is used;
* if none is allowed the domain is ``BLOCKED``;
* a missing robots.txt is permissive, a failed fetch is permissive too but
  recorded as ``ERROR_FALLBACK_PERMISSIVE``.

Policies are cached per ``(domain, declared agent)`` for a TTL (one hour by
default); concurrent resolutions of the same key share one fetch.
"""
from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple
from urllib.parse import urlsplit

from aiohttp import ClientError

from aeo_scout.cache import TTLCache
from aeo_scout.crawler.fetcher import HttpFetcher
from aeo_scout.crawler.models import RobotsPolicy, RobotsState
from aeo_scout.errors import RobotsBlockedError
from aeo_scout.logger import LOGGER_NAME

__all__ = (
    "DECLARED_AGENT",
    "BROWSER_AGENTS",
    "DEFAULT_CRAWL_DELAY",
    "FALLBACK_CRAWL_DELAY",
    "RobotsTxtRules",
    "RobotsEngine",
)

DECLARED_AGENT = "AEO-Platform-Bot/1.0"

BROWSER_AGENTS: Sequence[Tuple[str, str]] = (
    (
        "chrome",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    ),
    (
        "firefox",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:121.0) Gecko/20100101 Firefox/121.0",
    ),
    (
        "safari",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.2.1 Safari/605.1.15",
    ),
)

DEFAULT_CRAWL_DELAY = 1.0
FALLBACK_CRAWL_DELAY = 2.0
ROBOTS_TTL = 3600.0
ROBOTS_FETCH_TIMEOUT = 10.0

_log = logging.getLogger(LOGGER_NAME)


class RobotsTxtRules:
    """
    Парсит robots.txt (RFC 9309).
    Пустое Disallow считается разрешением всех путей.
    """
    _Directive = Tuple[str, str]
    _WILDCARD_RE = re.compile(r"(\*|\$)")

    def __init__(self, text: str) -> None:
        self._groups: List[Dict[str, object]] = []
        self._regex_cache: Dict[str, re.Pattern[str]] = {}
        self.sitemaps: List[str] = []
        self._parse(text)

    def can_fetch(self, user_agent: str, path: str) -> bool:
        best_len = -1
        allow: Optional[bool] = None
        for directive, pattern in self._directives_for(user_agent):
            if not self._match_path(path, pattern):
                continue
            length = self._rule_len(pattern)
            if length > best_len or (length == best_len and directive == "allow" and allow is False):
                best_len = length
                allow = (directive == "allow")
        return True if allow is None else allow

    def crawl_delay(self, user_agent: str) -> Optional[float]:
        """Delay of the group that applies to *user_agent*, else of the ``*`` group."""
        for group in self._specific_groups(user_agent):
            if group["crawl_delay"] is not None:
                return group["crawl_delay"]  # type: ignore[return-value]
        for group in self._wildcard_groups():
            if group["crawl_delay"] is not None:
                return group["crawl_delay"]  # type: ignore[return-value]
        return None

    def disallowed_paths(self, user_agent: str) -> List[str]:
        """Disallow patterns that apply to *user_agent* (the bare root is skipped)."""
        return [
            pattern
            for directive, pattern in self._directives_for(user_agent)
            if directive == "disallow" and pattern != "/"
        ]

    def _parse(self, text: str) -> None:
        current: Optional[Dict[str, object]] = None
        for raw in text.splitlines():
            line = raw.split("#", 1)[0].strip()
            if not line:
                continue
            key, _, val = line.partition(":")
            key = key.lower().strip()
            val = val.strip()
            if key == "sitemap":
                if val:
                    self.sitemaps.append(val)
                continue
            if key == "user-agent":
                if current is None or (current["agents"] and (current["directives"] or current["crawl_delay"] is not None)):
                    current = {"agents": [], "directives": [], "crawl_delay": None}
                    self._groups.append(current)
                current["agents"].append(val.lower())  # type: ignore[attr-defined]
            elif key in ("allow", "disallow", "crawl-delay"):
                if current is None:
                    current = {"agents": ["*"], "directives": [], "crawl_delay": None}
                    self._groups.append(current)
                if key == "crawl-delay":
                    try:
                        current["crawl_delay"] = float(val)
                    except ValueError:
                        _log.debug("Ignoring invalid crawl-delay %r", val)
                elif key == "disallow" and val == "":
                    # пустой Disallow разрешает все, пропускаем
                    continue
                else:
                    current["directives"].append((key, val))  # type: ignore[attr-defined]

    def _specific_groups(self, user_agent: str) -> List[Dict[str, object]]:
        ua = user_agent.lower()
        return [
            g for g in self._groups
            if any(a != "*" and self._ua_match(ua, a) for a in g["agents"])  # type: ignore[attr-defined]
        ]

    def _wildcard_groups(self) -> List[Dict[str, object]]:
        return [g for g in self._groups if "*" in g["agents"]]  # type: ignore[operator]

    def _directives_for(self, user_agent: str) -> List[_Directive]:
        groups = self._specific_groups(user_agent) or self._wildcard_groups()
        return [d for g in groups for d in g["directives"]]  # type: ignore[attr-defined]

    @staticmethod
    def _ua_match(ua: str, pattern: str) -> bool:
        token = ua.split("/", 1)[0].strip()
        return ua.startswith(pattern) or token == pattern

    def _match_path(self, path: str, pattern: str) -> bool:
        if pattern not in self._regex_cache:
            esc = re.escape(pattern).replace(r"\*", ".*")
            if pattern.endswith("$"):
                esc = esc[:-2] + "$"
            self._regex_cache[pattern] = re.compile(f"^{esc}")
        return bool(self._regex_cache[pattern].match(path))

    @classmethod
    def _rule_len(cls, pattern: str) -> int:
        return len(cls._WILDCARD_RE.sub("", pattern))


def _domain_of(url_or_domain: str) -> Tuple[str, str]:
    """``(scheme, netloc)`` for a URL or a bare domain (https assumed)."""
    if "://" not in url_or_domain:
        url_or_domain = f"https://{url_or_domain}"
    parts = urlsplit(url_or_domain)
    return parts.scheme.lower() or "https", parts.netloc.lower()


class RobotsEngine:
    """Resolves and caches :class:`RobotsPolicy` objects per domain."""

    def __init__(
        self,
        http: HttpFetcher,
        cache: Optional[TTLCache] = None,
        *,
        declared_agent: str = DECLARED_AGENT,
        browser_agents: Sequence[Tuple[str, str]] = BROWSER_AGENTS,
    ) -> None:
        self.http = http
        self.cache: TTLCache = cache if cache is not None else TTLCache(ROBOTS_TTL)
        self.declared_agent = declared_agent
        self.browser_agents = tuple(browser_agents)
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._fetching: Set[Tuple[str, str]] = set()
        self.fetch_count = 0

    def _key(self, domain: str, user_agent: Optional[str]) -> Tuple[str, str]:
        return domain, user_agent or self.declared_agent

    def state(self, url_or_domain: str, user_agent: Optional[str] = None) -> RobotsState:
        key = self._key(_domain_of(url_or_domain)[1], user_agent)
        if key in self._fetching:
            return RobotsState.FETCHING
        cached = self.cache.get(key)
        return cached[0].state if cached is not None else RobotsState.UNCHECKED

    async def resolve(self, url_or_domain: str, user_agent: Optional[str] = None) -> RobotsPolicy:
        policy, _ = await self._resolve(url_or_domain, user_agent)
        return policy

    async def is_allowed(self, url: str, user_agent: Optional[str] = None) -> bool:
        """Per-path check of *url* for the policy's effective agent."""
        policy, rules = await self._resolve(url, user_agent)
        if not policy.can_crawl:
            return False
        if rules is None or policy.effective_user_agent is None:
            return True
        parts = urlsplit(url)
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"
        return rules.can_fetch(policy.effective_user_agent, path)

    async def ensure_allowed(self, url_or_domain: str, user_agent: Optional[str] = None) -> RobotsPolicy:
        policy = await self.resolve(url_or_domain, user_agent)
        if not policy.can_crawl:
            raise RobotsBlockedError(policy.domain, policy.reason)
        return policy

    def invalidate(self, domain: Optional[str] = None) -> int:
        if domain is None:
            count = len(self.cache)
            self.cache.clear()
            return count
        netloc = _domain_of(domain)[1]
        return self.cache.invalidate_where(lambda key: key[0] == netloc)

    async def _resolve(
        self, url_or_domain: str, user_agent: Optional[str]
    ) -> Tuple[RobotsPolicy, Optional[RobotsTxtRules]]:
        scheme, domain = _domain_of(url_or_domain)
        key = self._key(domain, user_agent)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
            self._fetching.add(key)
            try:
                result = await self._fetch_and_evaluate(scheme, domain, key[1])
            finally:
                self._fetching.discard(key)
            self.cache.set(key, result)
            return result

    async def _fetch_and_evaluate(
        self, scheme: str, domain: str, declared: str
    ) -> Tuple[RobotsPolicy, Optional[RobotsTxtRules]]:
        robots_url = f"{scheme}://{domain}/robots.txt"
        self.fetch_count += 1
        try:
            status, text = await self.http.get_text(robots_url, user_agent=declared, timeout=ROBOTS_FETCH_TIMEOUT)
        except (ClientError, asyncio.TimeoutError, UnicodeDecodeError) as exc:
            reason = f"robots.txt fetch failed: {exc or exc.__class__.__name__}"
            _log.warning("%s (%s); crawling permissively", reason, domain)
            return self._fallback_policy(domain, declared, reason), None

        if not 200 <= status < 300:
            _log.debug("robots.txt %s -> HTTP %s", robots_url, status)
            policy = RobotsPolicy(
                domain=domain,
                state=RobotsState.ALLOWED_AS_DECLARED,
                exists=False,
                allowed_as_declared_agent=True,
                allowed_as_browser_agent=True,
                effective_user_agent=declared,
                declared_user_agent=declared,
                crawl_delay_seconds=DEFAULT_CRAWL_DELAY,
                reason=f"no robots.txt (HTTP {status})",
                fetched_at=datetime.now(timezone.utc),
            )
            return policy, None

        rules = RobotsTxtRules(text)
        return self.evaluate(domain, rules, declared), rules

    def evaluate(self, domain: str, rules: RobotsTxtRules, declared: Optional[str] = None) -> RobotsPolicy:
        """Apply the declared-then-browser decision to parsed *rules*."""
        declared = declared or self.declared_agent
        as_declared = rules.can_fetch(declared, "/")
        browser_name: Optional[str] = None
        browser_ua: Optional[str] = None
        for name, ua in self.browser_agents:
            if rules.can_fetch(ua, "/"):
                browser_name, browser_ua = name, ua
                break

        if as_declared:
            state, effective, reason = RobotsState.ALLOWED_AS_DECLARED, declared, "allowed for crawler agent"
        elif browser_ua is not None:
            state, effective = RobotsState.ALLOWED_AS_BROWSER, browser_ua
            reason = f"crawler agent disallowed; using {browser_name} agent"
        else:
            state, effective, reason = RobotsState.BLOCKED, None, "all agents disallowed"

        delay = rules.crawl_delay(effective or declared)
        policy = RobotsPolicy(
            domain=domain,
            state=state,
            exists=True,
            allowed_as_declared_agent=as_declared,
            allowed_as_browser_agent=browser_ua is not None,
            effective_user_agent=effective,
            declared_user_agent=declared,
            browser_agent_name=browser_name if state is RobotsState.ALLOWED_AS_BROWSER else None,
            crawl_delay_seconds=DEFAULT_CRAWL_DELAY if delay is None else delay,
            disallowed_paths=tuple(rules.disallowed_paths(effective or declared)),
            sitemap_urls=tuple(rules.sitemaps),
            reason=reason,
            fetched_at=datetime.now(timezone.utc),
        )
        _log.info("robots.txt %s: %s (%s)", domain, state.value, reason)
        return policy

    def _fallback_policy(self, domain: str, declared: str, reason: str) -> RobotsPolicy:
        name, ua = self.browser_agents[0]
        return RobotsPolicy(
            domain=domain,
            state=RobotsState.ERROR_FALLBACK_PERMISSIVE,
            exists=False,
            allowed_as_declared_agent=True,
            allowed_as_browser_agent=True,
            effective_user_agent=declared,
            declared_user_agent=declared,
            browser_agent_name=name,
            crawl_delay_seconds=FALLBACK_CRAWL_DELAY,
            reason=reason,
            fetched_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def recommendations(policy: RobotsPolicy) -> List[str]:
        """Human-readable notes about how the domain can be analysed."""
        if policy.state is RobotsState.ERROR_FALLBACK_PERMISSIVE or not policy.exists:
            return ["No robots.txt restrictions found - crawling allowed"]
        if policy.state is RobotsState.ALLOWED_AS_DECLARED:
            return ["Analysis allowed with crawler identification"]
        if policy.state is RobotsState.ALLOWED_AS_BROWSER:
            return [
                "Analysis possible using a browser user agent",
                f"Using the {policy.browser_agent_name} user agent for analysis",
            ]
        return [
            "All automated access blocked - manual analysis required",
            "Contact the site owner for analysis permission",
        ]
