# File: aeo_scout/scoring/rules.py
"""aeo_scout.scoring.rules: deterministic rule-based scoring.

A page is scored on four components, each in ``[0, 100]``:

* **content** – length, direct answer in the opening, format, factual
  backing, heading outline, FAQ coverage, readability, question answering and
  answer-engine phrasing;
* **eat** – expertise / authority / trust signals weighted by the table for
  the page type (see :mod:`aeo_scout.scoring.weights`);
* **technical** – HTTPS, mobile readiness, load time, meta tags, internal
  linking, image alt coverage, canonical and robots meta;
* **structured_data** – JSON-LD presence and FAQ / HowTo / Article /
  Breadcrumb markup.

``overall`` is the weighted sum of the unrounded components (25 % each by
default), rounded half-up. Scoring reads only the extraction (and optional
fetch metrics), so identical input always yields identical scores.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from aeo_scout.parser.html_parser import ContentExtraction, PageMetrics
from aeo_scout.parser.page_type import PageType, has_author_info
from aeo_scout.scoring.weights import EatWeights, award
from aeo_scout.utils import clamp_score, round_half_up, word_count

__all__ = [
    "AI_OVERVIEW_KEYWORDS",
    "AUTHORITY_DOMAINS",
    "DEFAULT_COMPONENT_WEIGHTS",
    "ContentFacts",
    "EatFacts",
    "TechnicalFacts",
    "StructuredDataFacts",
    "PageAnalysis",
    "RuleScore",
    "ScoreCalculator",
]

DEFAULT_COMPONENT_WEIGHTS: Mapping[str, float] = {
    "content": 0.25,
    "eat": 0.25,
    "technical": 0.25,
    "structured_data": 0.25,
}

AI_OVERVIEW_KEYWORDS: Tuple[str, ...] = (
    "how to", "what is", "best way", "steps to", "guide", "tutorial",
    "comparison", "vs", "versus", "benefits", "advantages", "pros and cons",
    "top", "best", "worst", "list", "review", "rating",
)

AUTHORITY_DOMAINS: Tuple[str, ...] = (
    "wikipedia.org", "gov", "edu", "nih.gov", "cdc.gov", "who.int", "nature.com", "science.org",
)

_EXPERTISE_KEYWORDS = (
    "certified", "expert", "specialist", "professional", "years of experience", "degree", "qualification",
)

_COMPARISON_WORDS = ("vs", "versus", "compared to", "difference between", "better than")

_FORMAT_POINTS: Mapping[str, int] = {
    "listicle": 10,
    "step-by-step guide": 9,
    "comparison": 8,
    "review": 7,
    "article": 5,
}

_DIRECT_ANSWER_PATTERNS = (
    re.compile(r"^(To|In order to|The best way to)", re.I),
    re.compile(r"^([A-Z][^.!?]*\s+(is|are|means|refers to))"),
    re.compile(r"^(Here's how|Follow these steps|The answer is)", re.I),
)
_FACTUAL_PATTERNS = tuple(
    re.compile(p, re.I)
    for p in (r"according to", r"study shows", r"research indicates", r"data from", r"statistics", r"\d+%", r"survey")
)
_STEPS_RE = re.compile(r"step \d+|first,|second,|third,|next,|finally,", re.I)
_COMPARISON_RE = re.compile(r"vs\.|versus|compared to|comparison", re.I)
_REVIEW_RE = re.compile(r"review|rating|score|pros and cons", re.I)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_QUESTION_HEAD_RE = re.compile(r"^(how|what|why|when|where|who|which)", re.I)

_CONTACT_PATTERNS = (
    re.compile(r"contact", re.I),
    re.compile(r"email", re.I),
    re.compile(r"phone", re.I),
    re.compile(r"address", re.I),
    re.compile(r"@[\w.-]+\.\w+"),
    re.compile(r"\+?\d{1,4}[\s-]?\(?\d{3}\)?[\s-]?\d{3}[\s-]?\d{4}"),
)
_PHONE_RE = re.compile(r"\+?\d{2,4}[\s-]?\d{2,4}[\s-]?\d{2,4}")
_EMAIL_RE = re.compile(r"@[\w.-]+\.\w+")
_ADDRESS_RE = re.compile(r"\b(addresse|address|location|lokasjon)\b", re.I)
_BACKGROUND_RE = re.compile(r"\b(team|ansatte|grunnlagt|founded|historie|history)\b")
_MISSION_RE = re.compile(r"\b(mission|visjon|vision|values|verdier)\b")
_GUARANTEE_RE = re.compile(r"\b(garantie|guarantee|refund|pengene tilbake)\b", re.I)


# --------------------------------------------------------------------------- #
# Analysis facts                                                              #
# --------------------------------------------------------------------------- #


@dataclass(slots=True, frozen=True)
class ContentFacts:
    word_count: int
    has_direct_answer: bool
    content_format: str
    has_data_backup: bool
    h1_count: int
    h2_count: int
    proper_hierarchy: bool
    question_headings: int
    has_faq_section: bool
    faq_question_count: int
    readability: float
    question_answering: float
    ai_keywords: Tuple[str, ...]
    ai_keyword_score: float
    is_listicle: bool
    comparison_words: Tuple[str, ...]

    @property
    def has_h1(self) -> bool:
        return self.h1_count > 0


@dataclass(slots=True, frozen=True)
class EatFacts:
    table: str
    has_author: bool
    has_author_bio: bool
    has_contact: bool
    authority_citations: int
    has_references: bool
    has_publish_date: bool
    has_last_updated: bool
    expertise_indicators: Tuple[str, ...]
    trust_signals: Tuple[str, ...]
    page_specific_score: float
    page_specific_factors: Tuple[str, ...]

    def signal(self, name: str) -> float:
        values: Dict[str, float] = {
            "has_author": self.has_author,
            "has_author_bio": self.has_author_bio,
            "has_contact": self.has_contact,
            "authority_citations": self.authority_citations,
            "has_authority_citations": self.authority_citations > 0,
            "has_references": self.has_references,
            "has_publish_date": self.has_publish_date,
            "has_last_updated": self.has_last_updated,
            "expertise_indicators": len(self.expertise_indicators),
            "trust_signals": len(self.trust_signals),
            "page_specific": self.page_specific_score,
        }
        return float(values[name])


@dataclass(slots=True, frozen=True)
class TechnicalFacts:
    is_https: bool
    has_viewport_meta: bool
    responsive_image_ratio: float
    has_mobile_css: bool
    load_time_ms: int
    meta_description_length: int
    title_length: int
    internal_link_count: int
    image_count: int
    images_with_alt_percent: float
    has_canonical: bool
    has_robots_meta: bool

    @property
    def has_navigation(self) -> bool:
        return self.internal_link_count > 5


@dataclass(slots=True, frozen=True)
class StructuredDataFacts:
    schema_count: int
    schema_types: Tuple[str, ...]
    faq_schema: bool
    faq_question_count: int
    howto_schema: bool
    howto_step_count: int
    article_schema: bool
    article_has_author: bool
    article_has_date: bool
    breadcrumb_schema: bool
    breadcrumb_items: int

    @property
    def has_structured_data(self) -> bool:
        return self.schema_count > 0


@dataclass(slots=True, frozen=True)
class PageAnalysis:
    page_type: PageType
    content: ContentFacts
    eat: EatFacts
    technical: TechnicalFacts
    structured_data: StructuredDataFacts


@dataclass(slots=True, frozen=True)
class RuleScore:
    content: int
    eat: int
    technical: int
    structured_data: int
    overall: int
    details: Mapping[str, float] = field(default_factory=dict, compare=False)

    def as_dict(self) -> Dict[str, int]:
        return {
            "overall": self.overall,
            "content": self.content,
            "eat": self.eat,
            "technical": self.technical,
            "structured_data": self.structured_data,
        }

    @classmethod
    def zero(cls) -> RuleScore:
        return cls(content=0, eat=0, technical=0, structured_data=0, overall=0)


# --------------------------------------------------------------------------- #
# Fact extraction                                                             #
# --------------------------------------------------------------------------- #


def _has_direct_answer(first_paragraph: str) -> bool:
    if any(p.search(first_paragraph) for p in _DIRECT_ANSWER_PATTERNS):
        return True
    return len(first_paragraph) > 50 and "answer" in first_paragraph


def _content_format(page: ContentExtraction, text: str) -> str:
    list_items = page.signals.ordered_list_items + page.signals.unordered_list_items
    if _STEPS_RE.search(text) and list_items > 3:
        return "step-by-step guide"
    if list_items > 5:
        return "listicle"
    if _COMPARISON_RE.search(text):
        return "comparison"
    if _REVIEW_RE.search(text):
        return "review"
    return "article"


def _readability(text: str) -> float:
    if not text:
        return 0.0
    sentences = [s for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]
    avg = word_count(text) / max(len(sentences), 1)
    if avg < 15:
        return 85.0
    if avg < 20:
        return 75.0
    if avg < 25:
        return 65.0
    return 45.0


def _question_answering(text: str, paragraphs: int) -> float:
    questions = text.count("?")
    if questions == 0:
        return 70.0 if len(text) > 500 else 40.0
    return min(100.0, paragraphs / questions * 80)


def analyze_content(page: ContentExtraction) -> ContentFacts:
    text = page.body
    lower = text.lower()
    h1 = page.headings_at(1)
    h2 = page.headings_at(2)
    upper_heads = [h.text for h in page.headings if h.level <= 3]
    keywords = tuple(k for k in AI_OVERVIEW_KEYWORDS if k in lower)
    signals = page.signals
    return ContentFacts(
        word_count=page.word_count,
        has_direct_answer=_has_direct_answer(signals.first_paragraph),
        content_format=_content_format(page, text),
        has_data_backup=any(p.search(text) for p in _FACTUAL_PATTERNS),
        h1_count=len(h1),
        h2_count=len(h2),
        proper_hierarchy=len(h1) == 1 and len(h2) > 0,
        question_headings=sum(1 for t in upper_heads if _QUESTION_HEAD_RE.match(t) or "?" in t),
        has_faq_section=signals.faq_element_count > 0,
        faq_question_count=signals.question_headings,
        readability=_readability(text),
        question_answering=_question_answering(text, signals.paragraph_count),
        ai_keywords=keywords,
        ai_keyword_score=min(100.0, len(keywords) / len(AI_OVERVIEW_KEYWORDS) * 100),
        is_listicle=signals.ordered_list_items > 3 or signals.unordered_list_items > 5,
        comparison_words=tuple(w for w in _COMPARISON_WORDS if w in lower),
    )


def _trust_signals(page: ContentExtraction) -> Tuple[str, ...]:
    s = page.signals
    found: List[str] = []
    if s.ssl_markers:
        found.append("SSL certificate")
    if s.review_elements:
        found.append("testimonials")
    if s.award_elements:
        found.append("certifications")
    if s.footer_mentions_privacy:
        found.append("privacy policy")
    return tuple(found)


def _page_specific_values(page: ContentExtraction) -> Dict[str, float]:
    s = page.signals
    text = s.page_text
    lower = text.lower()
    return {
        "navigation": s.nav_present,
        "value_proposition": s.value_proposition,
        "comprehensive_footer": s.footer_text_length > 100,
        "company_background": bool(_BACKGROUND_RE.search(lower)),
        "mission_statement": bool(_MISSION_RE.search(lower)),
        "team_photos": s.team_images,
        "phone_number": bool(_PHONE_RE.search(text)),
        "email_address": bool(_EMAIL_RE.search(text)),
        "contact_form": s.form_count > 0,
        "physical_address": bool(_ADDRESS_RE.search(text)),
        "pricing_info": s.price_elements,
        "testimonials": s.testimonial_elements,
        "guarantee": bool(_GUARANTEE_RE.search(text)),
        "editorial_content": True,
        "question_headings": s.headings_with_question_mark,
        "search": s.search_present,
        "standard_page": True,
    }


def analyze_eat(page: ContentExtraction, page_type: PageType, weights: EatWeights) -> EatFacts:
    table = weights.table_name(page_type)
    text = page.signals.page_text
    lower = text.lower()
    values = _page_specific_values(page)
    ps_score = 0.0
    ps_factors: List[str] = []
    for name, spec in weights.page_specific_for(table).items():
        points = award(spec, values[name])
        if points:
            ps_score += points
            ps_factors.append(name)

    citations = sum(
        1 for link in page.outbound_links if any(d in (urlsplit(link.url).hostname or "") for d in AUTHORITY_DOMAINS)
    )
    return EatFacts(
        table=table,
        has_author=has_author_info(page),
        has_author_bio=page.signals.has_author_bio,
        has_contact=any(p.search(text) for p in _CONTACT_PATTERNS) or page.signals.has_contact_link,
        authority_citations=citations,
        has_references=page.signals.has_references,
        has_publish_date=page.date_published is not None,
        has_last_updated=page.signals.update_date is not None,
        expertise_indicators=tuple(k for k in _EXPERTISE_KEYWORDS if k in lower),
        trust_signals=_trust_signals(page),
        page_specific_score=ps_score,
        page_specific_factors=tuple(ps_factors),
    )


def analyze_technical(page: ContentExtraction, metrics: Optional[PageMetrics] = None) -> TechnicalFacts:
    s = page.signals
    return TechnicalFacts(
        is_https=page.url.lower().startswith("https://"),
        has_viewport_meta=s.has_viewport_meta,
        responsive_image_ratio=s.responsive_images / s.image_count if s.image_count else 0.0,
        has_mobile_css=s.has_mobile_css,
        load_time_ms=metrics.load_time_ms if metrics is not None else 0,
        meta_description_length=len(page.meta_description),
        title_length=len(page.title),
        internal_link_count=len(page.internal_links),
        image_count=s.image_count,
        images_with_alt_percent=s.images_with_alt / s.image_count * 100 if s.image_count else 100.0,
        has_canonical=s.has_canonical_link,
        has_robots_meta=s.has_robots_meta,
    )


def _type_of(obj: object) -> object:
    return obj.get("@type") if isinstance(obj, dict) else None


def _find(structured: Tuple[object, ...], *names: str) -> Optional[dict]:
    for obj in structured:
        kind = _type_of(obj)
        kinds = kind if isinstance(kind, list) else [kind]
        if any(k in names for k in kinds):
            return obj  # type: ignore[return-value]
    return None


def _length(value: object) -> int:
    if isinstance(value, list):
        return len(value)
    return 1 if isinstance(value, dict) else 0


def analyze_structured_data(page: ContentExtraction) -> StructuredDataFacts:
    data = page.structured_data
    top_types: List[str] = []
    for obj in data:
        kind = _type_of(obj)
        if kind:
            key = ",".join(kind) if isinstance(kind, list) else str(kind)
            if key not in top_types:
                top_types.append(key)
    faq = _find(data, "FAQPage")
    howto = _find(data, "HowTo")
    article = _find(data, "Article", "BlogPosting", "NewsArticle")
    crumbs = _find(data, "BreadcrumbList")
    return StructuredDataFacts(
        schema_count=len(data),
        schema_types=tuple(top_types),
        faq_schema=faq is not None,
        faq_question_count=_length(faq.get("mainEntity")) if faq else 0,
        howto_schema=howto is not None,
        howto_step_count=_length(howto.get("step")) if howto else 0,
        article_schema=article is not None,
        article_has_author=bool(article and article.get("author")),
        article_has_date=bool(article and article.get("datePublished")),
        breadcrumb_schema=crumbs is not None,
        breadcrumb_items=_length(crumbs.get("itemListElement")) if crumbs else 0,
    )


# --------------------------------------------------------------------------- #
# Calculator                                                                  #
# --------------------------------------------------------------------------- #


class ScoreCalculator:
    """Rule-based scorer; construct once and reuse, it holds no per-page state."""

    def __init__(
        self,
        weights: Optional[EatWeights] = None,
        component_weights: Mapping[str, float] = DEFAULT_COMPONENT_WEIGHTS,
    ) -> None:
        if set(component_weights) != set(DEFAULT_COMPONENT_WEIGHTS):
            raise ValueError(f"component weights must cover {sorted(DEFAULT_COMPONENT_WEIGHTS)}")
        total = sum(component_weights.values())
        if total <= 0:
            raise ValueError("component weights must sum to a positive value")
        self.weights = weights or EatWeights.default()
        self.component_weights = {k: v / total for k, v in component_weights.items()}

    def analyze(
        self, page: ContentExtraction, page_type: PageType, metrics: Optional[PageMetrics] = None
    ) -> PageAnalysis:
        return PageAnalysis(
            page_type=page_type,
            content=analyze_content(page),
            eat=analyze_eat(page, page_type, self.weights),
            technical=analyze_technical(page, metrics),
            structured_data=analyze_structured_data(page),
        )

    def score(
        self, page: ContentExtraction, page_type: PageType, metrics: Optional[PageMetrics] = None
    ) -> RuleScore:
        return self.score_analysis(self.analyze(page, page_type, metrics))

    def score_analysis(self, analysis: PageAnalysis) -> RuleScore:
        raw = {
            "content": self.content_score(analysis.content),
            "eat": self.eat_score(analysis.eat),
            "technical": self.technical_score(analysis.technical),
            "structured_data": self.structured_data_score(analysis.structured_data),
        }
        overall = sum(raw[k] * w for k, w in self.component_weights.items())
        return RuleScore(
            content=round_half_up(raw["content"]),
            eat=round_half_up(raw["eat"]),
            technical=round_half_up(raw["technical"]),
            structured_data=round_half_up(raw["structured_data"]),
            overall=round_half_up(clamp_score(overall)),
            details=raw,
        )

    @staticmethod
    def content_score(c: ContentFacts) -> float:
        score = 0.0
        if c.word_count > 1000:
            score += 10
        elif c.word_count > 500:
            score += 7
        elif c.word_count > 300:
            score += 4
        if c.has_direct_answer:
            score += 15
        score += _FORMAT_POINTS.get(c.content_format, 3)
        if c.has_data_backup:
            score += 10
        if c.has_h1 and c.proper_hierarchy:
            score += 8
        elif c.has_h1:
            score += 5
        score += min(2, c.question_headings)
        if c.has_faq_section:
            score += 5
        score += min(5, c.faq_question_count)
        score += min(10, c.readability / 10)
        score += min(10, c.question_answering / 10)
        score += min(10, c.ai_keyword_score / 10)
        if c.is_listicle:
            score += 3
        if c.comparison_words:
            score += 2
        return clamp_score(score)

    def eat_score(self, e: EatFacts) -> float:
        table = self.weights.tables[e.table]
        return clamp_score(sum(award(spec, e.signal(name)) for name, spec in table.items()))

    @staticmethod
    def technical_score(t: TechnicalFacts) -> float:
        score = 0.0
        if t.is_https:
            score += 15
        if t.has_viewport_meta:
            score += 10
        score += min(10, t.responsive_image_ratio * 10)
        if t.has_mobile_css:
            score += 5
        if t.load_time_ms < 2000:
            score += 20
        elif t.load_time_ms < 3000:
            score += 15
        elif t.load_time_ms < 5000:
            score += 10
        else:
            score += 5
        desc = t.meta_description_length
        if 120 <= desc <= 160:
            score += 8
        elif 100 <= desc <= 180:
            score += 5
        elif desc > 0:
            score += 3
        if 30 <= t.title_length <= 60:
            score += 7
        elif t.title_length > 0:
            score += 4
        if t.has_navigation:
            score += 5
        score += min(5, t.internal_link_count / 5)
        if t.image_count == 0:
            score += 5
        else:
            score += min(10, t.images_with_alt_percent / 10)
        if t.has_canonical:
            score += 3
        if t.has_robots_meta:
            score += 2
        return clamp_score(score)

    @staticmethod
    def structured_data_score(sd: StructuredDataFacts) -> float:
        score = 0.0
        if sd.has_structured_data:
            score += 20
        if sd.faq_schema:
            score += 15 + min(10, sd.faq_question_count * 2)
        if sd.howto_schema:
            score += 10 + min(10, sd.howto_step_count * 2)
        if sd.article_schema:
            score += 10
            if sd.article_has_author:
                score += 5
            if sd.article_has_date:
                score += 5
        if sd.breadcrumb_schema:
            score += 5 + min(5, sd.breadcrumb_items)
        if len(sd.schema_types) >= 3:
            score += 5
        elif len(sd.schema_types) >= 2:
            score += 3
        return clamp_score(score)
