# aeo_scout/crawler/canonicalizer.py
"""
URL canonicalization and deduplication.

Every URL that enters the frontier, the sitemap results or a snapshot goes
through :func:`normalize` first; two URLs are "the same page" exactly when
their normalized forms (and therefore their hashes) are equal.

Normalization steps, in order (each one idempotent):

1. lower-case scheme and host;
2. drop the default port (80 for http, 443 for https);
3. drop the fragment;
4. drop tracking parameters (exact names and ``*`` wildcard patterns);
5. sort the remaining parameters by key, keeping the relative order of
   repeated keys;
6. drop trailing slashes unless the path is the root.
"""
from __future__ import annotations

import fnmatch
import hashlib
import re
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from aeo_scout.crawler.models import CanonicalUrl
from aeo_scout.errors import InvalidUrlError

__all__ = (
    "DEFAULT_TRACKING_PARAMS",
    "PAGINATION_PARAMS",
    "normalize",
    "url_hash",
    "resolve_canonical",
    "extract_canonical_hint",
    "deduplicate",
    "are_equivalent",
    "group_by_canonical",
    "should_crawl",
    "is_same_domain",
    "has_pagination_params",
)

DEFAULT_TRACKING_PARAMS: Sequence[str] = (
    # analytics campaigns
    "utm_*",
    "_ga",
    "_gl",
    # ad click identifiers
    "gclid",
    "gclsrc",
    "dclid",
    "msclkid",
    "twclid",
    "li_fat_id",
    "igshid",
    # facebook
    "fbclid",
    "fb_action_ids",
    "fb_action_types",
    "fb_source",
    "fb_ref",
    # mail campaigns
    "mc_*",
    "mkt_tok",
    "trk_contact",
    "trk_msg",
    "trk_module",
    "trk_sid",
    "mbid",
    # generic referrers
    "ref",
    "referrer",
    "source",
)

PAGINATION_PARAMS: Sequence[str] = ("page", "p", "offset", "start", "pg")

_DEFAULT_PORTS: Dict[str, int] = {"http": 80, "https": 443}
_PATTERN_CACHE: Dict[str, re.Pattern[str]] = {}


def _param_pattern(name: str) -> re.Pattern[str]:
    if name not in _PATTERN_CACHE:
        _PATTERN_CACHE[name] = re.compile(fnmatch.translate(name.lower()))
    return _PATTERN_CACHE[name]


def _is_tracking(key: str, tracking_params: Sequence[str]) -> bool:
    low = key.lower()
    for name in tracking_params:
        if "*" in name:
            if _param_pattern(name).match(low):
                return True
        elif low == name.lower():
            return True
    return False


def url_hash(url: str) -> str:
    """Fixed-length SHA-256 hex identity of an already normalized URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def normalize(url: str, *, tracking_params: Sequence[str] = DEFAULT_TRACKING_PARAMS) -> CanonicalUrl:
    """Return the canonical form of *url*.

    Raises
    ------
    InvalidUrlError
        *url* is not a string, has no host, uses a scheme other than http(s)
        or carries an unparsable port.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrlError(url, "empty or non-string URL")
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError as exc:
        raise InvalidUrlError(url, str(exc)) from exc

    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise InvalidUrlError(url, "unsupported scheme")
    host = (parts.hostname or "").lower()
    if not host:
        raise InvalidUrlError(url, "missing host")

    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"
    if parts.username is not None:
        userinfo = parts.username + (f":{parts.password}" if parts.password is not None else "")
        netloc = f"{userinfo}@{netloc}"

    params = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking(k, tracking_params)
    ]
    params.sort(key=lambda kv: kv[0])
    query = urlencode(params)

    path = parts.path or "/"
    if path != "/":
        path = path.rstrip("/") or "/"

    normalized = urlunsplit((scheme, netloc, path, query, ""))
    return CanonicalUrl(url=normalized, hash=url_hash(normalized))


def extract_canonical_hint(html: str, page_url: str) -> Optional[str]:
    """Absolute URL of ``<link rel=canonical>`` or, failing that, ``og:url``."""
    soup = BeautifulSoup(html or "", "html.parser")
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        rels = [r.lower() for r in (rel if isinstance(rel, list) else str(rel).split())]
        if "canonical" in rels:
            href = str(link["href"]).strip()
            if href:
                return urljoin(page_url, href)
    og = soup.find("meta", attrs={"property": "og:url"})
    if og is not None and og.get("content"):
        return urljoin(page_url, str(og["content"]).strip())
    return None


def resolve_canonical(url: str, html: str) -> CanonicalUrl:
    """Canonical identity of a fetched page.

    The page's own canonical hint wins when it normalizes cleanly; otherwise
    the fetched URL itself is normalized (and may raise ``InvalidUrlError``).
    """
    hint = extract_canonical_hint(html, url)
    if hint:
        try:
            return normalize(hint)
        except InvalidUrlError:
            pass
    return normalize(url)


def deduplicate(urls: Iterable[str], *, skip_invalid: bool = False) -> List[CanonicalUrl]:
    """One :class:`CanonicalUrl` per distinct hash, in first-seen order."""
    seen: "OrderedDict[str, CanonicalUrl]" = OrderedDict()
    for raw in urls:
        try:
            canonical = normalize(raw)
        except InvalidUrlError:
            if skip_invalid:
                continue
            raise
        seen.setdefault(canonical.hash, canonical)
    return list(seen.values())


def are_equivalent(a: str, b: str) -> bool:
    try:
        return normalize(a).hash == normalize(b).hash
    except InvalidUrlError:
        return False


def group_by_canonical(urls: Iterable[str]) -> Dict[str, List[str]]:
    """Map each normalized URL to the raw spellings that produced it."""
    groups: Dict[str, List[str]] = {}
    for raw in urls:
        try:
            key = normalize(raw).url
        except InvalidUrlError:
            continue
        groups.setdefault(key, []).append(raw)
    return groups


def _pattern_matches(url: str, pattern: str) -> bool:
    if "*" in pattern:
        return fnmatch.fnmatchcase(url, pattern) or fnmatch.fnmatchcase(url, f"*{pattern}*")
    return pattern in url


def should_crawl(url: str, include: Sequence[str] = (), exclude: Sequence[str] = ()) -> bool:
    """Exclude patterns win; with include patterns, at least one must match."""
    if any(_pattern_matches(url, p) for p in exclude):
        return False
    if include:
        return any(_pattern_matches(url, p) for p in include)
    return True


def is_same_domain(url: str, base_url: str) -> bool:
    try:
        return urlsplit(url).hostname == urlsplit(base_url).hostname and urlsplit(url).hostname is not None
    except ValueError:
        return False


def has_pagination_params(url: str) -> bool:
    try:
        keys = {k.lower() for k, _ in parse_qsl(urlsplit(url).query, keep_blank_values=True)}
    except ValueError:
        return False
    return any(p in keys for p in PAGINATION_PARAMS)
