# File: aeo_scout/scoring/recommendations.py
"""Improvement items for components scoring below :data:`RECOMMENDATION_THRESHOLD`."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

from aeo_scout.parser.html_parser import ContentExtraction, PageMetrics
from aeo_scout.parser.page_type import PageType
from aeo_scout.scoring.rules import (
    ContentFacts,
    EatFacts,
    PageAnalysis,
    RuleScore,
    ScoreCalculator,
    StructuredDataFacts,
    TechnicalFacts,
)

__all__ = [
    "RECOMMENDATION_THRESHOLD",
    "PRIORITY_ORDER",
    "CATEGORY_ORDER",
    "Recommendation",
    "generate_recommendations",
    "recommendations_for",
    "prioritize",
]

RECOMMENDATION_THRESHOLD = 70

PRIORITY_ORDER: Dict[str, int] = {"high": 3, "medium": 2, "low": 1}

CATEGORY_ORDER: Dict[str, int] = {
    "AI Optimization": 5,
    "Content Quality": 4,
    "FAQ Schema": 4,
    "Technical SEO": 3,
    "E-A-T (Expertise)": 3,
    "Structured Data": 2,
    "Mobile Optimization": 2,
}

_FAQ_SCHEMA_SNIPPET = """{
  "@context": "https://schema.org",
  "@type": "FAQPage",
  "mainEntity": [
    {
      "@type": "Question",
      "name": "Your question here?",
      "acceptedAnswer": {
        "@type": "Answer",
        "text": "Your answer here."
      }
    }
  ]
}"""


@dataclass(slots=True, frozen=True)
class Recommendation:
    category: str
    priority: str
    issue: str
    recommendation: str
    impact: str
    example: Optional[str] = None
    implementation: Optional[str] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v is not None}


# ---- content ---- #


def _content(c: ContentFacts) -> List[Recommendation]:
    items: List[Recommendation] = []
    if c.word_count < 300:
        items.append(Recommendation(
            "Content Quality", "high", "Content too short",
            "Expand your content to at least 500-1000 words. AI search engines prefer comprehensive "
            "content that thoroughly answers questions.",
            "High - Longer content is 52% more likely to appear in AI overviews",
        ))
    if not c.has_direct_answer:
        items.append(Recommendation(
            "AI Optimization", "high", "No direct answer in opening",
            "Start your content with a direct answer to the main question in the first 2-3 sentences. "
            "This dramatically improves AI overview visibility.",
            "High - Direct answers are crucial for AI search results",
            example='Instead of: "Many people wonder about..." Try: "To optimize for AI search, start with '
            'a clear answer: [Your direct answer here]."',
        ))
    if c.content_format not in ("listicle", "step-by-step guide", "comparison"):
        items.append(Recommendation(
            "Content Structure", "medium", "Content format not optimized for AI",
            "Convert your content into a list format, comparison, or step-by-step guide. These formats "
            "perform 32.5% better in AI overviews.",
            "Medium - Format optimization improves AI visibility",
        ))
    if not c.has_data_backup:
        items.append(Recommendation(
            "Content Authority", "medium", "Lacks factual backing",
            "Add statistics, research citations, or data to support your claims. AI systems favor content "
            "with factual backup.",
            "Medium - Factual content builds authority",
            example='Include phrases like "According to [source]," "Research shows," or specific percentages '
            "and statistics.",
        ))
    if not c.proper_hierarchy:
        items.append(Recommendation(
            "Content Structure", "medium", "Poor heading hierarchy",
            "Use proper H1-H6 hierarchy with one H1 tag and multiple H2 tags for main sections.",
            "Medium - Proper structure helps AI understand content",
        ))
    if c.faq_question_count < 3:
        items.append(Recommendation(
            "AI Optimization", "high", "Insufficient question-answer pairs",
            "Add more question-answer pairs throughout your content. Use H2 or H3 tags for questions.",
            "High - Question-answer format is ideal for AI overviews",
            example='Use headings like "How to [do something]?" or "What is [concept]?" followed by clear answers.',
        ))
    return items


# ---- expertise / authority / trust ---- #


def _eat(e: EatFacts) -> List[Recommendation]:
    items: List[Recommendation] = []
    if not e.has_author:
        items.append(Recommendation(
            "E-A-T (Expertise)", "high", "Missing author information",
            "Add clear author bylines and author bio sections. AI systems heavily favor content with "
            "identifiable experts.",
            "High - Author credibility is crucial for AI search trust",
            implementation="Add author schema markup and visible author information on each page.",
        ))
    if not e.has_contact:
        items.append(Recommendation(
            "E-A-T (Trust)", "medium", "No contact information",
            "Add contact information or a contact page to build trust with AI systems.",
            "Medium - Contact info improves trustworthiness",
        ))
    if e.authority_citations == 0:
        items.append(Recommendation(
            "E-A-T (Authority)", "medium", "No authoritative citations",
            "Link to authoritative sources like .edu, .gov, or reputable industry sources to back up your claims.",
            "Medium - External authority links improve credibility",
            example="Link to studies, government data, or industry research to support your points.",
        ))
    if not e.has_publish_date and not e.has_last_updated:
        items.append(Recommendation(
            "Content Freshness", "medium", "No publication or update dates",
            "Add publication dates and last updated timestamps. Keep content current.",
            "Medium - Fresh content performs better in AI search",
            implementation="Use schema markup for article dates and display visible timestamps.",
        ))
    return items


# ---- technical ---- #


def _technical(t: TechnicalFacts) -> List[Recommendation]:
    items: List[Recommendation] = []
    if not t.is_https:
        items.append(Recommendation(
            "Technical SEO", "high", "Site not using HTTPS",
            "Implement SSL certificate. HTTPS is required for AI search trust and ranking.",
            "High - HTTPS is a baseline requirement",
            detail="Critical security and trust issue",
        ))
    if not t.has_viewport_meta:
        items.append(Recommendation(
            "Mobile Optimization", "high", "Missing viewport meta tag",
            'Add viewport meta tag: <meta name="viewport" content="width=device-width, initial-scale=1">',
            "High - Mobile-first indexing requires proper viewport",
            implementation="Add the viewport meta tag to your HTML head section.",
        ))
    if t.load_time_ms > 3000:
        items.append(Recommendation(
            "Page Speed", "high", "Slow page loading",
            "Optimize page speed to under 2 seconds. Compress images, minify CSS/JS, and use a CDN.",
            "High - Page speed affects AI search rankings",
            detail=f"Current load time: {t.load_time_ms / 1000:.2f}s",
        ))
    if t.meta_description_length == 0:
        items.append(Recommendation(
            "Meta Optimization", "medium", "Missing meta description",
            "Add compelling meta descriptions (120-160 characters) that answer the main question.",
            "Medium - Meta descriptions help AI understand page content",
            example="Write descriptions that directly answer what users are searching for.",
        ))
    if t.image_count > 0 and t.images_with_alt_percent < 80:
        items.append(Recommendation(
            "Image SEO", "medium", "Images missing alt text",
            "Add descriptive alt text to all images. This helps AI systems understand your content.",
            "Medium - Alt text improves accessibility and AI understanding",
            detail=f"{int(t.images_with_alt_percent + 0.5)}% of images have alt text",
        ))
    return items


# ---- structured data ---- #


def _structured_data(sd: StructuredDataFacts) -> List[Recommendation]:
    items: List[Recommendation] = []
    if not sd.has_structured_data:
        items.append(Recommendation(
            "Structured Data", "high", "No structured data markup",
            "Implement JSON-LD structured data, starting with Article or BlogPosting schema.",
            "High - Structured data is crucial for AI search visibility",
            implementation="Add Article schema with author, datePublished, and headline properties.",
        ))
    if not sd.faq_schema and sd.faq_question_count < 3:
        items.append(Recommendation(
            "FAQ Schema", "high", "Missing FAQ structured data",
            "Add FAQ schema markup for question-answer pairs. This dramatically improves AI overview chances.",
            "High - FAQ schema is highly favored by AI search",
            example="Use FAQPage schema for pages with 3+ question-answer pairs.",
            implementation=_FAQ_SCHEMA_SNIPPET,
        ))
    if not sd.howto_schema:
        items.append(Recommendation(
            "HowTo Schema", "medium", "Missing HowTo structured data",
            "For step-by-step content, add HowTo schema markup to improve AI search visibility.",
            "Medium - HowTo schema helps AI understand procedural content",
            detail="Use for instructional or tutorial content",
        ))
    if not sd.article_schema:
        items.append(Recommendation(
            "Article Schema", "medium", "Missing Article structured data",
            "Add Article or BlogPosting schema with author, datePublished, and headline.",
            "Medium - Article schema helps AI understand content type",
            implementation="Include author, publisher, datePublished, and headline properties.",
        ))
    return items


def prioritize(items: List[Recommendation]) -> List[Recommendation]:
    """Priority tier first, then category importance; ties keep their order."""
    return sorted(
        items,
        key=lambda r: (-PRIORITY_ORDER.get(r.priority, 0), -CATEGORY_ORDER.get(r.category, 0)),
    )


def recommendations_for(analysis: PageAnalysis, score: RuleScore) -> List[Recommendation]:
    items: List[Recommendation] = []
    if score.content < RECOMMENDATION_THRESHOLD:
        items.extend(_content(analysis.content))
    if score.eat < RECOMMENDATION_THRESHOLD:
        items.extend(_eat(analysis.eat))
    if score.technical < RECOMMENDATION_THRESHOLD:
        items.extend(_technical(analysis.technical))
    if score.structured_data < RECOMMENDATION_THRESHOLD:
        items.extend(_structured_data(analysis.structured_data))
    return prioritize(items)


def generate_recommendations(
    extraction: ContentExtraction,
    page_type: PageType,
    score: RuleScore,
    metrics: Optional[PageMetrics] = None,
    *,
    calculator: Optional[ScoreCalculator] = None,
) -> List[Recommendation]:
    analysis = (calculator or ScoreCalculator()).analyze(extraction, page_type, metrics)
    return recommendations_for(analysis, score)
