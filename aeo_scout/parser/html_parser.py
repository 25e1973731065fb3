# === FILE: aeo_scout/parser/html_parser.py ===
"""HTML content extraction for AEO Scout.

:func:`extract_content` turns raw HTML plus the page URL into a
:class:`ContentExtraction`: title, meta description, canonical hint, heading
outline, main body text, FAQ pairs, links, JSON-LD data, author and publish
date. It is deterministic: the same HTML and URL always produce an equal
extraction.

Besides those fields the extraction carries :class:`PageSignals`, the DOM
facts (list counts, image alt coverage, pricing or author markers, ...) that
the page-type classifier and the rule scorer evaluate. Keeping them on the
extraction means neither of those needs the HTML again.

Body text selection
-------------------
``script``, ``style``, ``nav``, ``footer``, ``header``, ``aside`` and
``[role=navigation]`` are removed, then the first present of ``main``,
``article``, ``[role=main]``, ``#content``, ``#main-content``, ``.content``,
``.main-content`` and ``body`` supplies the text (whitespace collapsed).
"""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, List, Optional, Tuple
from urllib.parse import urldefrag, urljoin, urlsplit

from bs4 import BeautifulSoup, Tag

from aeo_scout.crawler.canonicalizer import extract_canonical_hint
from aeo_scout.crawler.models import RenderMethod
from aeo_scout.logger import LOGGER_NAME
from aeo_scout.utils import collapse_whitespace, word_count

__all__: Sequence[str] = (
    "Heading",
    "FaqPair",
    "Link",
    "PageSignals",
    "ContentExtraction",
    "PageMetrics",
    "extract_content",
    "calculate_metrics",
)

_log = logging.getLogger(LOGGER_NAME)

_MAIN_SELECTORS = ("main", "article", '[role="main"]', "#content", "#main-content", ".content", ".main-content", "body")
_STRIPPED_FOR_BODY = ("script", "style", "nav", "footer", "header", "aside", '[role="navigation"]')
_INVISIBLE = ("script", "style", "noscript", "template")

_AUTHOR_SELECTORS = (
    '[rel="author"]',
    ".author",
    ".byline",
    '[class*="author"]',
    '[id*="author"]',
    ".post-author",
    ".article-author",
    ".writer",
    '[class*="writer"]',
    ".posted-by",
    ".written-by",
)

_UPDATE_SELECTORS = (
    '[property="article:modified_time"]',
    '[name="article:modified_time"]',
    '[property="dateModified"]',
    '[itemprop="dateModified"]',
    'time[datetime][class*="updated"]',
    'time[datetime][class*="modified"]',
    '[class*="updated"]',
    '[class*="modified"]',
    '[class*="last-modified"]',
    ".last-updated",
    ".modified-date",
    ".update-date",
    '[class*="oppdatert"]',
    '[class*="endret"]',
)

_MONTHS_EN = "january|february|march|april|may|june|july|august|september|october|november|december"
_MONTHS_NO = "januar|februar|mars|april|mai|juni|juli|august|september|oktober|november|desember"

_DATE_PATTERNS = (
    re.compile(rf"\d{{1,2}}\.\s?(?:{_MONTHS_NO})\s?\d{{4}}", re.I),
    re.compile(r"\d{1,2}\.\d{1,2}\.\d{4}"),
    re.compile(rf"(?:{_MONTHS_EN})\s+\d{{1,2}},?\s+\d{{4}}", re.I),
    re.compile(r"\d{4}-\d{2}-\d{2}"),
    re.compile(r"\d{1,2}/\d{1,2}/\d{4}"),
)

_UPDATE_PATTERNS = (
    re.compile(rf"oppdatert[:\s]*\d{{1,2}}\.\s?(?:{_MONTHS_NO})\s?\d{{4}}", re.I),
    re.compile(rf"sist endret[:\s]*\d{{1,2}}\.\s?(?:{_MONTHS_NO})\s?\d{{4}}", re.I),
    re.compile(rf"updated[:\s]*(?:{_MONTHS_EN})\s+\d{{1,2}},?\s+\d{{4}}", re.I),
    re.compile(rf"last modified[:\s]*(?:{_MONTHS_EN})\s+\d{{1,2}},?\s+\d{{4}}", re.I),
)

_QUESTION_START_RE = re.compile(r"^(how|what|why|when|where|who|which)", re.I)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Heading:
    level: int
    text: str


@dataclass(slots=True, frozen=True)
class FaqPair:
    question: str
    answer: str


@dataclass(slots=True, frozen=True)
class Link:
    url: str
    anchor: str


@dataclass(slots=True, frozen=True)
class PageSignals:
    """DOM facts consumed by the classifier and the rule scorer."""

    page_text: str = ""
    first_paragraph: str = ""
    paragraph_count: int = 0
    ordered_list_items: int = 0
    unordered_list_items: int = 0
    list_count: int = 0
    table_count: int = 0
    image_count: int = 0
    images_with_alt: int = 0
    responsive_images: int = 0
    has_viewport_meta: bool = False
    has_mobile_css: bool = False
    has_robots_meta: bool = False
    has_og_title: bool = False
    has_canonical_link: bool = False
    faq_element_count: int = 0
    question_headings: int = 0
    headings_with_question_mark: int = 0
    author_elements: Tuple[str, ...] = ()
    has_author_bio: bool = False
    has_contact_link: bool = False
    has_references: bool = False
    update_date: Optional[str] = None
    byline_markers: bool = False
    article_count: int = 0
    conversion_form: bool = False
    price_elements: bool = False
    plan_elements: bool = False
    cta_elements: bool = False
    product_elements: bool = False
    buy_buttons: bool = False
    nav_present: bool = False
    hero_present: bool = False
    value_proposition: bool = False
    header_and_footer: bool = False
    section_count: int = 0
    footer_text_length: int = 0
    footer_mentions_privacy: bool = False
    form_count: int = 0
    search_present: bool = False
    team_images: bool = False
    testimonial_elements: bool = False
    review_elements: bool = False
    award_elements: bool = False
    ssl_markers: bool = False


@dataclass(slots=True, frozen=True)
class ContentExtraction:
    url: str
    title: str = ""
    meta_description: str = ""
    canonical_url: str = ""
    headings: Tuple[Heading, ...] = ()
    body: str = ""
    faq: Tuple[FaqPair, ...] = ()
    internal_links: Tuple[Link, ...] = ()
    outbound_links: Tuple[Link, ...] = ()
    schema_types: Tuple[str, ...] = ()
    structured_data: Tuple[Any, ...] = ()
    author: Optional[str] = None
    date_published: Optional[str] = None
    signals: PageSignals = field(default_factory=PageSignals)

    @property
    def word_count(self) -> int:
        return word_count(self.body)

    def headings_at(self, level: int) -> List[str]:
        return [h.text for h in self.headings if h.level == level]


@dataclass(slots=True, frozen=True)
class PageMetrics:
    load_time_ms: int
    content_length: int
    word_count: int
    render_method: RenderMethod = RenderMethod.STATIC


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _text(node: Optional[Tag]) -> str:
    return collapse_whitespace(node.get_text(" ")) if node is not None else ""


def _meta(soup: BeautifulSoup, **attrs: str) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    return str(tag.get("content") or "").strip()


def _any(soup: BeautifulSoup, selector: str) -> bool:
    return soup.select_one(selector) is not None


def _json_ld_blocks(soup: BeautifulSoup) -> List[Any]:
    """Top-level JSON-LD objects; arrays and ``@graph`` containers are flattened."""
    objects: List[Any] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string if script.string is not None else script.get_text()
        try:
            data = json.loads(raw or "")
        except ValueError:
            _log.debug("Skipping malformed JSON-LD block")
            continue
        stack = data if isinstance(data, list) else [data]
        for item in stack:
            if isinstance(item, dict) and isinstance(item.get("@graph"), list):
                objects.extend(x for x in item["@graph"] if isinstance(x, dict))
                if set(item) - {"@context", "@graph"}:
                    objects.append(item)
            elif isinstance(item, dict):
                objects.append(item)
    return objects


def _walk_types(obj: Any) -> Iterator[str]:
    if isinstance(obj, dict):
        kind = obj.get("@type")
        if isinstance(kind, list):
            yield from (str(k) for k in kind)
        elif kind:
            yield str(kind)
        for value in obj.values():
            if isinstance(value, (dict, list)):
                yield from _walk_types(value)
    elif isinstance(obj, list):
        for item in obj:
            yield from _walk_types(item)


def _walk_nodes(obj: Any) -> Iterator[dict]:
    """Every JSON-LD object at any depth (``mainEntity``, ``@graph``, arrays)."""
    if isinstance(obj, dict):
        yield obj
        for value in obj.values():
            if isinstance(value, (dict, list)):
                yield from _walk_nodes(value)
    elif isinstance(obj, list):
        for item in obj:
            yield from _walk_nodes(item)


def _has_type(obj: Any, name: str) -> bool:
    kind = obj.get("@type") if isinstance(obj, dict) else None
    return kind == name or (isinstance(kind, list) and name in kind)


def _answer_text(answer: Any) -> str:
    if isinstance(answer, list):
        answer = answer[0] if answer else None
    if isinstance(answer, dict):
        return collapse_whitespace(BeautifulSoup(str(answer.get("text") or ""), "html.parser").get_text(" "))
    if isinstance(answer, str):
        return collapse_whitespace(answer)
    return ""


def _extract_faq(soup: BeautifulSoup, structured: Iterable[Any]) -> Tuple[FaqPair, ...]:
    pairs: List[FaqPair] = []
    for obj in _walk_nodes(list(structured)):
        if not _has_type(obj, "FAQPage"):
            continue
        entities = obj.get("mainEntity") or []
        if isinstance(entities, dict):
            entities = [entities]
        for item in entities:
            if isinstance(item, dict) and _has_type(item, "Question"):
                question = collapse_whitespace(str(item.get("name") or ""))
                if question:
                    pairs.append(FaqPair(question, _answer_text(item.get("acceptedAnswer"))))

    for section in soup.select('.faq, [class*="faq"], [id*="faq"]'):
        for dt in section.find_all("dt"):
            dd = dt.find_next_sibling("dd")
            question, answer = _text(dt), _text(dd)
            if question and answer:
                pairs.append(FaqPair(question, answer))
        for q in section.select('[class*="question"]'):
            a = q.find_next_sibling()
            if a is None or not any("answer" in c for c in (a.get("class") or [])):
                continue
            question, answer = _text(q), _text(a)
            if question and answer:
                pairs.append(FaqPair(question, answer))

    seen: set[Tuple[str, str]] = set()
    unique: List[FaqPair] = []
    for pair in pairs:
        key = (pair.question.lower(), pair.answer.lower())
        if key not in seen:
            seen.add(key)
            unique.append(pair)
    return tuple(unique)


def _extract_links(soup: BeautifulSoup, page_url: str) -> Tuple[Tuple[Link, ...], Tuple[Link, ...]]:
    host = urlsplit(page_url).hostname
    internal: List[Link] = []
    outbound: List[Link] = []
    seen: set[str] = set()
    for a in soup.find_all("a", href=True):
        href = str(a["href"]).strip()
        if not href or href.startswith(("#", "javascript:", "mailto:", "tel:")):
            continue
        absolute, _ = urldefrag(urljoin(page_url, href))
        try:
            parts = urlsplit(absolute)
        except ValueError:
            continue
        if parts.scheme not in ("http", "https") or absolute in seen:
            continue
        seen.add(absolute)
        link = Link(absolute, _text(a))
        (internal if parts.hostname == host else outbound).append(link)
    return tuple(internal), tuple(outbound)


def _extract_author(soup: BeautifulSoup, structured: Iterable[Any]) -> Optional[str]:
    for attrs in ({"name": "author"}, {"property": "article:author"}):
        value = _meta(soup, **attrs)
        if value:
            return value
    for selector in ('[rel="author"]', ".author", '[class*="author"]', '[itemprop="author"]'):
        node = soup.select_one(selector)
        if node is None:
            continue
        value = str(node.get("content") or "").strip() or _text(node) or str(node.get("href") or "").strip()
        if value:
            return re.sub(r"^by\s+", "", value, flags=re.I)
    for obj in structured:
        author = obj.get("author") if isinstance(obj, dict) else None
        if isinstance(author, list):
            author = author[0] if author else None
        if isinstance(author, str) and author.strip():
            return author.strip()
        if isinstance(author, dict) and author.get("name"):
            return str(author["name"]).strip()
    return None


def _extract_date(soup: BeautifulSoup, structured: Iterable[Any], page_text: str) -> Optional[str]:
    for attrs in ({"property": "article:published_time"}, {"name": "publication_date"}, {"name": "date"}):
        value = _meta(soup, **attrs)
        if value:
            return value
    node = soup.find("time", attrs={"datetime": True})
    if node is not None and str(node["datetime"]).strip():
        return str(node["datetime"]).strip()
    node = soup.select_one('[itemprop="datePublished"]')
    if node is not None:
        value = str(node.get("content") or node.get("datetime") or "").strip() or _text(node)
        if value:
            return value
    for obj in structured:
        if isinstance(obj, dict) and obj.get("datePublished"):
            return str(obj["datePublished"])
    for pattern in _DATE_PATTERNS:
        match = pattern.search(page_text)
        if match:
            return match.group(0)
    return None


def _extract_update_date(soup: BeautifulSoup, page_text: str) -> Optional[str]:
    for selector in _UPDATE_SELECTORS:
        node = soup.select_one(selector)
        if node is None:
            continue
        value = str(node.get("datetime") or node.get("content") or "").strip() or _text(node)
        if len(value) > 4:
            return value
    for pattern in _UPDATE_PATTERNS:
        match = pattern.search(page_text)
        if match:
            return match.group(0)
    return None


def _signals(soup: BeautifulSoup, page_text: str) -> PageSignals:
    viewport = _meta(soup, name="viewport")
    images = soup.find_all("img")
    footer = soup.find("footer")
    footer_text = _text(footer)
    question_heads = [_text(h) for h in soup.find_all(["h2", "h3", "h4"])]
    first_p = soup.find("p")

    return PageSignals(
        page_text=page_text,
        first_paragraph=_text(first_p),
        paragraph_count=len(soup.find_all("p")),
        ordered_list_items=len(soup.select("ol li")),
        unordered_list_items=len(soup.select("ul li")),
        list_count=len(soup.find_all(["ol", "ul"])),
        table_count=len(soup.find_all("table")),
        image_count=len(images),
        images_with_alt=sum(1 for img in images if str(img.get("alt") or "").strip()),
        responsive_images=sum(1 for img in images if img.has_attr("srcset")),
        has_viewport_meta="width=device-width" in viewport,
        has_mobile_css=_any(soup, 'link[media*="screen"]'),
        has_robots_meta=soup.find("meta", attrs={"name": "robots"}) is not None,
        has_og_title=bool(_meta(soup, property="og:title")),
        has_canonical_link=_any(soup, 'link[rel="canonical"]'),
        faq_element_count=len(soup.select('[class*="faq"], [id*="faq"], [class*="question"], [id*="question"]')),
        question_headings=sum(1 for t in question_heads if _QUESTION_START_RE.match(t) or "?" in t),
        headings_with_question_mark=sum(1 for t in question_heads if "?" in t),
        author_elements=tuple(s for s in _AUTHOR_SELECTORS if _any(soup, s)),
        has_author_bio=_any(soup, '.author-bio, .author-description, [class*="author-bio"]'),
        has_contact_link=_any(soup, 'a[href*="contact"]'),
        has_references=_any(soup, '[class*="reference"], [class*="citation"]'),
        update_date=_extract_update_date(soup, page_text),
        byline_markers=_any(soup, '[class*="author"], [class*="byline"], [class*="date"], [class*="publish"]'),
        article_count=len(soup.find_all("article")),
        conversion_form=_any(soup, 'form[class*="contact"], form[class*="signup"], form[class*="register"]'),
        price_elements=_any(soup, '.price, .pricing, [class*="price"]'),
        plan_elements=_any(soup, '[class*="plan"]'),
        cta_elements=_any(soup, '[class*="cta"], [class*="call-to-action"]'),
        product_elements=_any(soup, '[class*="product"], [class*="item"]'),
        buy_buttons=_any(soup, 'button[class*="buy"], button[class*="cart"], button[class*="purchase"]'),
        nav_present=_any(soup, 'nav, [role="navigation"]'),
        hero_present=_any(soup, '.hero, [class*="hero"], [class*="banner"]'),
        value_proposition=_any(soup, '.hero, [class*="hero"], [class*="value"]'),
        header_and_footer=soup.find("header") is not None and footer is not None,
        section_count=len(soup.find_all("section")),
        footer_text_length=len(footer_text),
        footer_mentions_privacy="privacy" in footer_text.lower(),
        form_count=len(soup.find_all("form")),
        search_present=_any(soup, '[type="search"], .search'),
        team_images=_any(soup, 'img[alt*="team"], img[alt*="person"], .team'),
        testimonial_elements=_any(soup, '.testimonial, [class*="review"], [class*="testimonial"]'),
        review_elements=_any(soup, '.testimonial, [class*="review"]'),
        award_elements=_any(soup, '[class*="award"], [class*="certification"]'),
        ssl_markers=_any(soup, '[src*="ssl"], [href*="https"]'),
    )


def _body_text(soup: BeautifulSoup) -> str:
    """Main content text; mutates *soup*, so it runs last."""
    for node in soup.select(", ".join(_STRIPPED_FOR_BODY)):
        node.decompose()
    for selector in _MAIN_SELECTORS:
        node = soup.select_one(selector)
        if node is not None:
            return _text(node)
    return _text(soup)


# ---------------------------------------------------------------------------
# Public functions
# ---------------------------------------------------------------------------


def extract_content(html: str, url: str) -> ContentExtraction:
    """Parse *html* fetched from *url* into a :class:`ContentExtraction`.

    Parameters
    ----------
    html
        Raw markup, static or rendered. Malformed markup is tolerated by the
        ``html.parser`` backend.
    url
        Final page URL; relative links and the canonical hint resolve against it.
    """
    soup = BeautifulSoup(html or "", "html.parser")

    structured = _json_ld_blocks(soup)
    schema_types = tuple(dict.fromkeys(_walk_types(structured)))

    og_title = _meta(soup, property="og:title")
    title = og_title or _text(soup.find("title"))
    meta_description = _meta(soup, property="og:description") or _meta(soup, name="description")
    canonical_url = extract_canonical_hint(html or "", url) or url

    headings = tuple(
        Heading(int(h.name[1]), t)
        for h in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"])
        if (t := _text(h))
    )
    internal_links, outbound_links = _extract_links(soup, url)

    for node in soup.find_all(_INVISIBLE):
        node.decompose()
    body_node = soup.find("body")
    page_text = _text(body_node) if body_node is not None else _text(soup)

    faq = _extract_faq(soup, structured)
    author = _extract_author(soup, structured)
    date_published = _extract_date(soup, structured, page_text)
    signals = _signals(soup, page_text)
    body = _body_text(soup)

    return ContentExtraction(
        url=url,
        title=title,
        meta_description=meta_description,
        canonical_url=canonical_url,
        headings=headings,
        body=body,
        faq=faq,
        internal_links=internal_links,
        outbound_links=outbound_links,
        schema_types=schema_types,
        structured_data=tuple(structured),
        author=author,
        date_published=date_published,
        signals=signals,
    )


def calculate_metrics(
    html: str,
    extraction: ContentExtraction,
    load_time_ms: int,
    render_method: RenderMethod = RenderMethod.STATIC,
) -> PageMetrics:
    return PageMetrics(
        load_time_ms=load_time_ms,
        content_length=len(html or ""),
        word_count=extraction.word_count,
        render_method=render_method,
    )
