# File: tests/test_page_type.py
import pytest
from conftest import ARTICLE_HTML, html_page

from aeo_scout.parser.html_parser import extract_content
from aeo_scout.parser.page_type import PageType, detect_page_type, explain_page_type, has_author_info


def classify(url, html):
    return explain_page_type(url, extract_content(html, url))


@pytest.mark.parametrize("url", ["https://example.com/", "https://example.com", "https://example.com/en"])
def test_short_paths_are_homepages(url):
    result = classify(url, html_page("Anything"))
    assert result.page_type is PageType.HOMEPAGE
    assert result.source == "path"


@pytest.mark.parametrize(
    "path,expected",
    [
        ("/blog/first-post", PageType.BLOG),
        ("/news/2024/launch", PageType.BLOG),
        ("/product/widget", PageType.PRODUCT),
        ("/shop/cart", PageType.PRODUCT),
        ("/service/consulting", PageType.SOLUTION),
        ("/docs/install", PageType.RESOURCE),
        ("/faq/shipping", PageType.RESOURCE),
        ("/pricing/", PageType.CONVERSION),
        ("/contact/sales", PageType.CONVERSION),
    ],
)
def test_url_patterns(path, expected):
    result = classify(f"https://example.com{path}", html_page("Page"))
    assert result.page_type is expected
    assert result.source == "url"


def test_url_pattern_beats_content():
    html = html_page("Widget", '<div class="price">$20</div><button class="buy">Buy now</button> Add to cart')
    assert detect_page_type("https://example.com/blog/widget-review", extract_content(html, "https://example.com/blog/widget-review")) is PageType.BLOG


def test_content_votes_for_blog():
    result = classify("https://example.com/coffee-at-home", ARTICLE_HTML)
    assert result.page_type is PageType.BLOG
    assert result.source == "content"
    assert {"author", "publish_date"} <= set(result.votes)


def test_content_votes_for_product():
    html = html_page("Widget 3000", '<div class="price">$20</div><p>Add to cart today.</p>')
    result = classify("https://example.com/widget-3000", html)
    assert result.page_type is PageType.PRODUCT
    assert result.votes == ("product_text", "price_markup")


def test_content_votes_for_conversion():
    html = html_page("Plans", '<div class="plan">Pro</div><p>Start your free trial now.</p>')
    result = classify("https://example.com/plans-overview", html)
    assert result.page_type is PageType.CONVERSION


def test_single_vote_is_not_enough():
    html = html_page("Widget", "<p>Our product is made of wood.</p>")
    result = classify("https://example.com/about-widget", html)
    assert result.page_type is PageType.RESOURCE
    assert result.source == "default"


def test_author_detection_from_byline_text():
    page = extract_content(html_page("Notes", "<p>Written by John Smith last spring.</p>"), "https://example.com/notes")
    assert has_author_info(page)
    assert not has_author_info(extract_content(html_page("Notes"), "https://example.com/notes"))
