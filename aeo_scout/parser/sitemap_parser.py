# File: aeo_scout/parser/sitemap_parser.py
"""aeo_scout.parser.sitemap_parser: discovery and recursive parsing of XML sitemaps.

A sitemap node is either an index (``<sitemapindex>``, pointing at further
sitemaps) or a URL set (``<urlset>``). Recursion is bounded by ``max_depth``
and a visited set, so self-referencing or cyclic indexes terminate. A node
that is not well-formed XML contributes nothing; its siblings are still
processed.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Set
from urllib.parse import urljoin, urlsplit

from aiohttp import ClientError
from lxml import etree

from aeo_scout.crawler.canonicalizer import normalize, should_crawl
from aeo_scout.crawler.fetcher import HttpFetcher
from aeo_scout.crawler.models import RobotsPolicy, SitemapEntry
from aeo_scout.crawler.robots import RobotsTxtRules
from aeo_scout.errors import FetchError, InvalidUrlError, MalformedSitemapError
from aeo_scout.logger import LOGGER_NAME

__all__ = (
    "COMMON_SITEMAP_PATHS",
    "SitemapKind",
    "SitemapDocument",
    "SitemapParser",
    "parse_sitemap_xml",
    "parse_lastmod",
    "filter_urls",
    "sitemap_stats",
)

COMMON_SITEMAP_PATHS: Sequence[str] = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemap-index.xml",
    "/sitemaps.xml",
    "/sitemap1.xml",
)

_log = logging.getLogger(LOGGER_NAME)


class SitemapKind(str, enum.Enum):
    INDEX = "index"
    URLSET = "urlset"
    EMPTY = "empty"


@dataclass(slots=True)
class SitemapDocument:
    """One parsed sitemap node."""

    url: str
    kind: SitemapKind
    entries: List[SitemapEntry] = field(default_factory=list)
    children: List[str] = field(default_factory=list)


def parse_lastmod(value: Optional[str]) -> Optional[datetime]:
    """W3C datetime (date or full timestamp) → aware ``datetime``; junk → None."""
    if not value:
        return None
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _child_text(node: etree._Element, name: str) -> Optional[str]:
    for child in node:
        if isinstance(child.tag, str) and etree.QName(child).localname == name:
            text = (child.text or "").strip()
            return text or None
    return None


def _parse_priority(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def parse_sitemap_xml(content: str | bytes, url: str) -> SitemapDocument:
    """Разбирает XML одного sitemap-узла.

    Args:
        content: тело ответа (строка или байты).
        url: адрес узла; относительные ``<loc>`` разрешаются от него.

    Raises:
        MalformedSitemapError: документ не является корректным XML.
    """
    raw = content.encode("utf-8") if isinstance(content, str) else content
    if not raw.strip():
        raise MalformedSitemapError(url, "empty document")
    parser = etree.XMLParser(ns_clean=True, recover=False, resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(raw, parser=parser)
    except etree.XMLSyntaxError as exc:
        raise MalformedSitemapError(url, str(exc)) from exc

    kind_name = etree.QName(root).localname
    if kind_name == "sitemapindex":
        children: List[str] = []
        for node in root:
            if isinstance(node.tag, str) and etree.QName(node).localname == "sitemap":
                loc = _child_text(node, "loc")
                if loc:
                    children.append(urljoin(url, loc))
        return SitemapDocument(url=url, kind=SitemapKind.INDEX, children=children)

    if kind_name == "urlset":
        entries: List[SitemapEntry] = []
        for node in root:
            if not (isinstance(node.tag, str) and etree.QName(node).localname == "url"):
                continue
            loc = _child_text(node, "loc")
            if not loc:
                continue
            try:
                canonical = normalize(urljoin(url, loc))
            except InvalidUrlError:
                _log.debug("Skipping invalid sitemap URL %r in %s", loc, url)
                continue
            entries.append(
                SitemapEntry(
                    url=canonical,
                    last_modified=parse_lastmod(_child_text(node, "lastmod")),
                    change_frequency=_child_text(node, "changefreq"),
                    priority=_parse_priority(_child_text(node, "priority")),
                )
            )
        return SitemapDocument(url=url, kind=SitemapKind.URLSET, entries=entries)

    _log.debug("Sitemap %s has unexpected root <%s>", url, kind_name)
    return SitemapDocument(url=url, kind=SitemapKind.EMPTY)


class SitemapParser:
    """Finds a site's sitemaps and flattens them into :class:`SitemapEntry` objects."""

    def __init__(self, http: HttpFetcher, *, max_depth: int = 5, user_agent: Optional[str] = None) -> None:
        self.http = http
        self.max_depth = max_depth
        self.user_agent = user_agent

    async def discover(self, base_url: str, robots_policy: Optional[RobotsPolicy] = None) -> List[str]:
        """Sitemap URLs: robots-declared ones first, then common paths that answer HEAD."""
        parts = urlsplit(base_url)
        origin = f"{parts.scheme}://{parts.netloc}"
        found: Dict[str, None] = {}

        declared: Iterable[str]
        if robots_policy is not None:
            declared = robots_policy.sitemap_urls
        else:
            declared = await self._robots_sitemaps(origin)
        for sm in declared:
            found.setdefault(urljoin(origin + "/", sm), None)

        candidates = [f"{origin}{path}" for path in COMMON_SITEMAP_PATHS]
        answers = await asyncio.gather(*(self.http.head_ok(u) for u in candidates))
        for candidate, ok in zip(candidates, answers):
            if ok:
                found.setdefault(candidate, None)

        _log.debug("Discovered %d sitemap(s) for %s", len(found), origin)
        return list(found)

    async def _robots_sitemaps(self, origin: str) -> List[str]:
        try:
            status, text = await self.http.get_text(f"{origin}/robots.txt", user_agent=self.user_agent, timeout=10.0)
        except (ClientError, asyncio.TimeoutError) as exc:
            _log.debug("robots.txt unavailable for sitemap discovery on %s: %s", origin, exc)
            return []
        if not 200 <= status < 300:
            return []
        return RobotsTxtRules(text).sitemaps

    async def parse(self, sitemap_url: str) -> SitemapDocument:
        """Fetch and parse a single node; failures yield an empty document."""
        try:
            result = await self.http.fetch_page(sitemap_url, user_agent=self.user_agent)
        except FetchError as exc:
            _log.warning("Sitemap %s unavailable: %s", sitemap_url, exc.reason)
            return SitemapDocument(url=sitemap_url, kind=SitemapKind.EMPTY)
        if not result.ok:
            _log.debug("Sitemap %s -> HTTP %s", sitemap_url, result.status_code)
            return SitemapDocument(url=sitemap_url, kind=SitemapKind.EMPTY)
        try:
            return parse_sitemap_xml(result.body or result.html, sitemap_url)
        except MalformedSitemapError as exc:
            _log.warning("Malformed sitemap %s: %s", sitemap_url, exc.reason)
            return SitemapDocument(url=sitemap_url, kind=SitemapKind.EMPTY)

    async def parse_all(
        self,
        base_url: str,
        robots_policy: Optional[RobotsPolicy] = None,
        *,
        sitemap_urls: Optional[Sequence[str]] = None,
    ) -> List[SitemapEntry]:
        """Every page entry reachable from the discovered sitemaps, deduplicated."""
        roots = list(sitemap_urls) if sitemap_urls is not None else await self.discover(base_url, robots_policy)
        visited: Set[str] = set()
        entries: Dict[str, SitemapEntry] = {}

        async def _walk(url: str, depth: int) -> None:
            if depth > self.max_depth or url in visited:
                return
            visited.add(url)
            doc = await self.parse(url)
            for entry in doc.entries:
                entries.setdefault(entry.url.hash, entry)
            for child in doc.children:
                await _walk(child, depth + 1)

        for root in roots:
            await _walk(root, 0)

        _log.info("Sitemaps for %s: %d node(s), %d URL(s)", base_url, len(visited), len(entries))
        return list(entries.values())


def filter_urls(
    entries: Iterable[SitemapEntry],
    *,
    modified_after: Optional[datetime] = None,
    min_priority: Optional[float] = None,
    exclude_patterns: Sequence[str] = (),
) -> List[SitemapEntry]:
    """Entries lacking ``lastmod`` or ``priority`` pass the corresponding filter.

    *exclude_patterns* follow the crawler rules: substrings, or globs when they contain ``*``.
    """
    if modified_after is not None and modified_after.tzinfo is None:
        modified_after = modified_after.replace(tzinfo=timezone.utc)
    result: List[SitemapEntry] = []
    for entry in entries:
        if modified_after is not None and entry.last_modified is not None and entry.last_modified < modified_after:
            continue
        if min_priority is not None and entry.priority is not None and entry.priority < min_priority:
            continue
        if not should_crawl(entry.url.url, exclude=exclude_patterns):
            continue
        result.append(entry)
    return result


def sitemap_stats(entries: Sequence[SitemapEntry]) -> Dict[str, object]:
    """Priority bands (high ≥ 0.8, medium ≥ 0.5, low) and change-frequency counts."""
    bands = {"high": 0, "medium": 0, "low": 0}
    freq: Counter[str] = Counter()
    with_priority = with_lastmod = 0
    for e in entries:
        if e.priority is not None:
            with_priority += 1
            bands["high" if e.priority >= 0.8 else "medium" if e.priority >= 0.5 else "low"] += 1
        if e.last_modified is not None:
            with_lastmod += 1
        if e.change_frequency:
            freq[e.change_frequency] += 1
    return {
        "total": len(entries),
        "with_priority": with_priority,
        "with_lastmod": with_lastmod,
        "with_changefreq": sum(freq.values()),
        "priority_distribution": bands,
        "changefreq_distribution": dict(freq),
    }
