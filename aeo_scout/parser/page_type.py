# File: aeo_scout/parser/page_type.py
"""aeo_scout.parser.page_type: page-type classification.

Classification order:

1. a root or very short path (``len(path) <= 3``) is a homepage;
2. the first URL pattern family that occurs in the URL wins;
3. otherwise the content rules vote, evaluated in table order; the first rule
   whose satisfied predicates reach its threshold wins;
4. anything left over is a resource page.

URL patterns take precedence over content: ``/blog/...`` stays a blog post even
when it embeds product markup.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple
from urllib.parse import urlsplit

from aeo_scout.parser.html_parser import ContentExtraction

__all__ = (
    "PageType",
    "URL_PATTERNS",
    "ContentRule",
    "CONTENT_RULES",
    "Classification",
    "detect_page_type",
    "explain_page_type",
    "has_author_info",
)


class PageType(str, enum.Enum):
    HOMEPAGE = "homepage"
    PRODUCT = "product"
    SOLUTION = "solution"
    BLOG = "blog"
    RESOURCE = "resource"
    CONVERSION = "conversion"


URL_PATTERNS: Sequence[Tuple[PageType, Tuple[str, ...]]] = (
    (PageType.BLOG, ("/blog/", "/blogg/", "/article/", "/post/", "/news/")),
    (PageType.PRODUCT, ("/product/", "/produkt/", "/shop/", "/buy/", "/item/")),
    (PageType.SOLUTION, ("/solution/", "/løsning/", "/service/", "/tjeneste/", "/feature/")),
    (
        PageType.RESOURCE,
        ("/resource/", "/guide/", "/tutorial/", "/documentation/", "/docs/", "/help/", "/support/", "/faq/"),
    ),
    (
        PageType.CONVERSION,
        ("/pricing/", "/price/", "/contact/", "/kontakt/", "/signup/", "/register/", "/demo/", "/trial/", "/get-started/"),
    ),
)

_AUTHOR_TEXT_PATTERNS = tuple(
    re.compile(p, re.I)
    for p in (
        r"\bby\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)",
        r"\bav\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)",
        r"\bforfatter:?\s*([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)",
        r"\bskrevet\s+av\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)",
        r"\bauthor:?\s*([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)",
        r"\bwritten\s+by\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)",
    )
)

Predicate = Callable[[ContentExtraction], bool]


def has_author_info(page: ContentExtraction) -> bool:
    """Author markup, an extracted author, or a "By Jane Doe" style byline."""
    if page.author or page.signals.author_elements:
        return True
    return any(p.search(page.signals.page_text) for p in _AUTHOR_TEXT_PATTERNS)


def _text_matches(pattern: str) -> Predicate:
    rx = re.compile(pattern, re.I)
    return lambda page: bool(rx.search(page.signals.page_text))


@dataclass(slots=True, frozen=True)
class ContentRule:
    page_type: PageType
    threshold: int
    predicates: Tuple[Tuple[str, Predicate], ...]

    def votes(self, page: ContentExtraction) -> List[str]:
        return [name for name, check in self.predicates if check(page)]


CONTENT_RULES: Sequence[ContentRule] = (
    ContentRule(
        PageType.BLOG,
        2,
        (
            ("author", has_author_info),
            ("publish_date", lambda p: p.date_published is not None),
            ("byline_text", _text_matches(r"\b(publisert|published|forfatter|author|av\s+[A-Z]|written by|posted by)")),
            ("byline_markup", lambda p: p.signals.byline_markers),
            ("article_element", lambda p: p.signals.article_count > 0),
        ),
    ),
    ContentRule(
        PageType.CONVERSION,
        2,
        (
            ("conversion_form", lambda p: p.signals.conversion_form),
            ("cta_text", _text_matches(r"\b(get started|sign up|free trial|request demo|contact us|book a demo|start free|subscribe)\b")),
            ("pricing_markup", lambda p: p.signals.price_elements or p.signals.plan_elements),
            ("cta_markup", lambda p: p.signals.cta_elements),
            ("purchase_text", _text_matches(r"\b(kontakt oss|få tilbud|bestill|order now|buy now|purchase)\b")),
        ),
    ),
    ContentRule(
        PageType.PRODUCT,
        2,
        (
            ("product_text", _text_matches(r"\b(produkt|product|buy|kjøp|price|pris|add to cart|legg i handlekurv|specifications|specs)\b")),
            ("price_markup", lambda p: p.signals.price_elements),
            ("product_markup", lambda p: p.signals.product_elements),
            ("feature_text", _text_matches(r"\b(features|benefits|fordeler|technical details|dimensions)\b")),
            ("buy_button", lambda p: p.signals.buy_buttons),
        ),
    ),
    ContentRule(
        PageType.SOLUTION,
        2,
        (
            ("solution_text", _text_matches(r"\b(solution|løsning|service|tjeneste|how we|hvordan vi|our approach|vår tilnærming)\b")),
            ("problem_text", _text_matches(r"\b(problem|utfordring|challenge|need|behov|pain point)\b")),
            ("benefit_text", _text_matches(r"\b(benefit|fordel|advantage|result|resultat|outcome)\b")),
            ("solution_title", lambda p: any(w in p.title.lower() for w in ("solution", "løsning", "service"))),
        ),
    ),
    ContentRule(
        PageType.RESOURCE,
        2,
        (
            ("guide_text", _text_matches(r"\b(guide|veiledning|tutorial|how to|hvordan|documentation|docs|learn|lær|reference)\b")),
            ("instruction_text", _text_matches(r"\b(step|steg|instruction|tips|best practices|examples|eksempler)\b")),
            ("question_headings", lambda p: p.signals.headings_with_question_mark >= 3),
            ("faq_section", lambda p: p.signals.faq_element_count > 0),
            ("download_text", _text_matches(r"\b(download|last ned|pdf|template|mal|worksheet|checklist)\b")),
        ),
    ),
    ContentRule(
        PageType.HOMEPAGE,
        3,
        (
            ("welcome_text", _text_matches(r"\b(velkommen|welcome|hjem|home|hovedside)\b")),
            ("navigation", lambda p: p.signals.nav_present),
            ("hero", lambda p: p.signals.hero_present),
            ("header_footer", lambda p: p.signals.header_and_footer),
            ("sections", lambda p: p.signals.section_count >= 3),
        ),
    ),
)


@dataclass(slots=True, frozen=True)
class Classification:
    page_type: PageType
    source: str
    votes: Tuple[str, ...] = ()


def explain_page_type(url: str, extraction: ContentExtraction) -> Classification:
    """Classify and report which rule decided (``path``, ``url`` or ``content``)."""
    path = urlsplit(url).path or "/"
    if path == "/" or len(path) <= 3:
        return Classification(PageType.HOMEPAGE, "path")

    for page_type, patterns in URL_PATTERNS:
        matched = [p for p in patterns if p in url]
        if matched:
            return Classification(page_type, "url", tuple(matched))

    for rule in CONTENT_RULES:
        votes = rule.votes(extraction)
        if len(votes) >= rule.threshold:
            return Classification(rule.page_type, "content", tuple(votes))

    return Classification(PageType.RESOURCE, "default")


def detect_page_type(url: str, extraction: ContentExtraction) -> PageType:
    return explain_page_type(url, extraction).page_type
