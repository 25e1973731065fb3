# File: tests/test_rules.py
from dataclasses import replace

import pytest
from conftest import ARTICLE_HTML

from aeo_scout.parser.html_parser import calculate_metrics, extract_content
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

BLANK_CONTENT = ContentFacts(
    word_count=0,
    has_direct_answer=False,
    content_format="article",
    has_data_backup=False,
    h1_count=0,
    h2_count=0,
    proper_hierarchy=False,
    question_headings=0,
    has_faq_section=False,
    faq_question_count=0,
    readability=0.0,
    question_answering=0.0,
    ai_keywords=(),
    ai_keyword_score=0.0,
    is_listicle=False,
    comparison_words=(),
)

RICH_CONTENT = replace(
    BLANK_CONTENT,
    word_count=1200,
    has_direct_answer=True,
    content_format="listicle",
    has_data_backup=True,
    h1_count=1,
    h2_count=4,
    proper_hierarchy=True,
    question_headings=5,
    has_faq_section=True,
    faq_question_count=7,
    readability=85.0,
    question_answering=100.0,
    ai_keywords=("how to", "guide", "best"),
    ai_keyword_score=30.0,
    is_listicle=True,
    comparison_words=("vs",),
)

BLOG_EAT = EatFacts(
    table="blog",
    has_author=True,
    has_author_bio=True,
    has_contact=True,
    authority_citations=6,
    has_references=True,
    has_publish_date=True,
    has_last_updated=True,
    expertise_indicators=("expert", "certified", "degree"),
    trust_signals=("SSL certificate", "privacy policy"),
    page_specific_score=100.0,
    page_specific_factors=("editorial_content",),
)

GOOD_TECHNICAL = TechnicalFacts(
    is_https=True,
    has_viewport_meta=True,
    responsive_image_ratio=1.0,
    has_mobile_css=True,
    load_time_ms=1000,
    meta_description_length=150,
    title_length=45,
    internal_link_count=30,
    image_count=0,
    images_with_alt_percent=100.0,
    has_canonical=True,
    has_robots_meta=True,
)

FAQ_ONLY = StructuredDataFacts(
    schema_count=1,
    schema_types=("FAQPage",),
    faq_schema=True,
    faq_question_count=3,
    howto_schema=False,
    howto_step_count=0,
    article_schema=False,
    article_has_author=False,
    article_has_date=False,
    breadcrumb_schema=False,
    breadcrumb_items=0,
)


@pytest.fixture(scope="module")
def calculator():
    return ScoreCalculator()


# ---- content ---- #


def test_content_score_floor_and_rich_page():
    assert ScoreCalculator.content_score(BLANK_CONTENT) == 5
    assert ScoreCalculator.content_score(RICH_CONTENT) == 91.5


def test_content_word_count_bands():
    points = [ScoreCalculator.content_score(replace(BLANK_CONTENT, word_count=n)) - 5 for n in (300, 301, 501, 1001)]
    assert points == [0, 4, 7, 10]


# ---- eat ---- #


def test_eat_blog_table(calculator):
    assert calculator.eat_score(BLOG_EAT) == 93
    bare = replace(
        BLOG_EAT,
        has_author=False,
        has_author_bio=False,
        authority_citations=0,
        expertise_indicators=(),
        trust_signals=(),
    )
    assert calculator.eat_score(bare) == 35


def test_eat_score_is_capped(calculator):
    maxed = replace(BLOG_EAT, expertise_indicators=tuple("abcdef"), trust_signals=tuple("abcdef"))
    assert calculator.eat_score(maxed) == 100


def test_eat_generic_table_uses_page_specific_factor(calculator):
    facts = replace(
        BLOG_EAT,
        table="generic",
        has_author=False,
        has_author_bio=False,
        has_contact=False,
        authority_citations=0,
        has_publish_date=False,
        has_last_updated=False,
        expertise_indicators=(),
        trust_signals=(),
        page_specific_score=50.0,
    )
    assert calculator.eat_score(facts) == 10


# ---- technical ---- #


def test_technical_all_good():
    assert ScoreCalculator.technical_score(GOOD_TECHNICAL) == 95


def test_technical_slow_and_bare():
    slow = replace(GOOD_TECHNICAL, load_time_ms=2500)
    assert ScoreCalculator.technical_score(slow) == 90
    bare = TechnicalFacts(
        is_https=False,
        has_viewport_meta=False,
        responsive_image_ratio=0.0,
        has_mobile_css=False,
        load_time_ms=6000,
        meta_description_length=0,
        title_length=0,
        internal_link_count=0,
        image_count=4,
        images_with_alt_percent=0.0,
        has_canonical=False,
        has_robots_meta=False,
    )
    assert ScoreCalculator.technical_score(bare) == 5


# ---- structured data ---- #


def test_structured_data_faq_only():
    assert ScoreCalculator.structured_data_score(FAQ_ONLY) == 41


def test_structured_data_everything():
    full = replace(
        FAQ_ONLY,
        schema_count=4,
        schema_types=("FAQPage", "HowTo", "Article", "BreadcrumbList"),
        faq_question_count=5,
        howto_schema=True,
        howto_step_count=6,
        article_schema=True,
        article_has_author=True,
        article_has_date=True,
        breadcrumb_schema=True,
        breadcrumb_items=3,
    )
    assert ScoreCalculator.structured_data_score(full) == 98


def test_structured_data_none():
    empty = replace(FAQ_ONLY, schema_count=0, schema_types=(), faq_schema=False, faq_question_count=0)
    assert ScoreCalculator.structured_data_score(empty) == 0


# ---- overall ---- #


def test_overall_uses_unrounded_components(calculator):
    analysis = PageAnalysis(PageType.BLOG, RICH_CONTENT, BLOG_EAT, GOOD_TECHNICAL, FAQ_ONLY)
    score = calculator.score_analysis(analysis)
    assert score.as_dict() == {"overall": 80, "content": 92, "eat": 93, "technical": 95, "structured_data": 41}
    assert score.details["content"] == 91.5


def test_custom_component_weights_are_normalized():
    calc = ScoreCalculator(component_weights={"content": 2, "eat": 1, "technical": 1, "structured_data": 0})
    analysis = PageAnalysis(PageType.BLOG, RICH_CONTENT, BLOG_EAT, GOOD_TECHNICAL, FAQ_ONLY)
    # 91.5 * 0.5 + 93 * 0.25 + 95 * 0.25
    assert calc.score_analysis(analysis).overall == 93


@pytest.mark.parametrize(
    "weights",
    [
        {"content": 1, "eat": 1, "technical": 1},
        {"content": 1, "eat": 1, "technical": 1, "structured_data": 1, "speed": 1},
        {"content": 0, "eat": 0, "technical": 0, "structured_data": 0},
    ],
)
def test_invalid_component_weights(weights):
    with pytest.raises(ValueError):
        ScoreCalculator(component_weights=weights)


def test_zero_score():
    assert RuleScore.zero().as_dict() == {"overall": 0, "content": 0, "eat": 0, "technical": 0, "structured_data": 0}


# ---- end to end on parsed HTML ---- #


def test_article_analysis(calculator):
    page = extract_content(ARTICLE_HTML, "https://example.com/blog/coffee")
    analysis = calculator.analyze(page, PageType.BLOG)
    assert analysis.content.has_direct_answer
    assert analysis.content.content_format == "step-by-step guide"
    assert analysis.content.has_data_backup
    assert analysis.content.proper_hierarchy
    assert analysis.eat.table == "blog"
    assert analysis.eat.has_author and analysis.eat.has_publish_date and analysis.eat.has_contact
    assert analysis.eat.authority_citations == 1
    assert analysis.technical.is_https
    assert analysis.technical.load_time_ms == 0
    assert analysis.structured_data.faq_question_count == 2

    score = calculator.score_analysis(analysis)
    assert score.structured_data == 39
    assert score.eat == 46
    assert all(0 <= v <= 100 for v in score.as_dict().values())


def test_scoring_is_deterministic(calculator):
    page = extract_content(ARTICLE_HTML, "https://example.com/blog/coffee")
    assert calculator.score(page, PageType.BLOG) == calculator.score(page, PageType.BLOG)


@pytest.mark.parametrize(
    "page_type,table",
    [
        (PageType.BLOG, "blog"),
        (PageType.HOMEPAGE, "homepage"),
        (PageType.CONVERSION, "contact"),
        (PageType.PRODUCT, "service"),
        (PageType.SOLUTION, "service"),
        (PageType.RESOURCE, "generic"),
    ],
)
def test_eat_table_selection(calculator, page_type, table):
    page = extract_content("<p>Hello</p>", "https://example.com/x")
    assert calculator.analyze(page, page_type).eat.table == table


# ---- bounds ---- #

MAXIMAL_HTML = (
    "<html><head><title>The complete guide: how to choose the best coffee grinder vs a blender</title>"
    '<meta name="description" content="' + "Everything about grinders. " * 6 + '">'
    '<meta name="viewport" content="width=device-width"><meta name="robots" content="index">'
    '<meta name="author" content="Jane Doe"><link rel="canonical" href="/guide">'
    '<script type="application/ld+json">{"@graph": ['
    + ",".join(
        '{"@type": "FAQPage", "mainEntity": [{"@type": "Question", "name": "Q%d?", '
        '"acceptedAnswer": {"@type": "Answer", "text": "A%d"}}]}' % (i, i)
        for i in range(40)
    )
    + ', {"@type": "HowTo", "step": [' + ",".join('{"@type": "HowToStep"}' for _ in range(30)) + "]}"
    + ', {"@type": "Article", "author": "Jane", "datePublished": "2024-01-01"}'
    + ', {"@type": "BreadcrumbList", "itemListElement": [1, 2, 3, 4, 5, 6]}]}</script>'
    "</head><body><main><h1>How to choose a grinder</h1>"
    + "".join(f"<h2>What about option {i}?</h2><p>{'According to a 2023 study, 87% of experts agree. ' * 20}</p>"
              f'<img src="{i}.jpg" alt="grinder {i}"><a href="/p{i}">p{i}</a>'
              f'<a href="https://source{i}.org/">source</a>' for i in range(60))
    + "<ol>" + "<li>Step</li>" * 50 + "</ol>"
    "<p>Written by Jane Doe, certified expert with a PhD. Contact us: hello@example.com, +1 555 0100. "
    "Privacy policy. Last updated 2024-05-01. References and sources below.</p>"
    "</main></body></html>"
)

DEGENERATE_HTML = (
    "<html><head><title></title></head><body>"
    + "<h1>?</h1>" * 50
    + "<script>var x = 1;</script><nav>menu</nav><<<>>></body>"
)


@pytest.mark.parametrize("html", ["", MAXIMAL_HTML, DEGENERATE_HTML], ids=["empty", "maximal", "degenerate"])
@pytest.mark.parametrize("page_type", list(PageType))
@pytest.mark.parametrize("load_time_ms", [0, 60_000])
def test_scores_stay_in_bounds(calculator, html, page_type, load_time_ms):
    url = "https://example.com/guide"
    page = extract_content(html, url)
    score = calculator.score(page, page_type, calculate_metrics(html, page, load_time_ms))
    assert all(0 <= v <= 100 for v in score.as_dict().values()), score


def test_overflowing_facts_are_clamped(calculator):
    analysis = PageAnalysis(
        page_type=PageType.BLOG,
        content=replace(RICH_CONTENT, word_count=10**6, question_headings=10**4, faq_question_count=10**4,
                        ai_keyword_score=10**4, readability=10**4, question_answering=10**4),
        eat=replace(BLOG_EAT, authority_citations=10**4, expertise_indicators=tuple("x" * 500),
                    trust_signals=tuple("y" * 500), page_specific_score=10**4),
        technical=replace(GOOD_TECHNICAL, internal_link_count=10**4),
        structured_data=replace(FAQ_ONLY, schema_count=10**3, faq_question_count=10**4, howto_schema=True,
                                howto_step_count=10**4, article_schema=True, article_has_author=True,
                                article_has_date=True, breadcrumb_schema=True, breadcrumb_items=10**3),
    )
    score = calculator.score_analysis(analysis)
    assert all(0 <= v <= 100 for v in score.as_dict().values())
    assert score.overall <= 100
