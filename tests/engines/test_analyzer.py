"""
Tests for the Page Analyzer Engine.
Pages are built directly as FetchResults; no network involved.
"""

import pytest

from seo_audit.core.taxonomy import ErrorCode, WarningCode
from seo_audit.engines.analyzer.engine import (
    PageAnalyzer,
    analyze_crawl_results,
    calculate_text_to_html_ratio,
    detect_orphan_pages,
    extract_text_content,
)
from seo_audit.engines.base import FetchResult, PageData

BASE_URL = "https://example.com"

TITLE_45 = "Acme Widgets - Quality Widgets for Every Home"
DESCRIPTION_100 = (
    "Acme builds durable, affordable widgets for kitchens, garages and "
    "offices, shipped free in two days."
)
OG_TAGS = (
    '<meta property="og:title" content="Acme Widgets">'
    '<meta property="og:description" content="Quality widgets">'
    '<meta property="og:image" content="https://example.com/og.png">'
)


def build_html(
    title: str | None = TITLE_45,
    description: str | None = DESCRIPTION_100,
    h1s: tuple[str, ...] = ("Welcome to Acme",),
    og: str = OG_TAGS,
    head_extra: str = "",
    body_extra: str = "",
) -> str:
    title_tag = f"<title>{title}</title>" if title is not None else ""
    description_tag = f'<meta name="description" content="{description}">' if description is not None else ""
    headings = "".join(f"<h1>{h}</h1>" for h in h1s)
    body_text = "Acme widgets are built to last and backed by a lifetime warranty. " * 12
    return (
        "<!DOCTYPE html><html><head>"
        f"{title_tag}{description_tag}"
        '<meta name="viewport" content="width=device-width, initial-scale=1">'
        '<meta name="robots" content="index, follow">'
        '<link rel="canonical" href="https://example.com/">'
        f"{og}{head_extra}"
        "</head><body>"
        f"{headings}<p>{body_text}</p>"
        '<img src="/widget.png" alt="A widget">'
        '<a href="/about">About</a>'
        '<a href="https://partner.com/shop">Partner</a>'
        f"{body_extra}"
        "</body></html>"
    )


def fetch(html: str = "", status_code: int = 200, url: str = "https://example.com/", **kwargs) -> FetchResult:
    return FetchResult(url=url, final_url=url, status_code=status_code, html=html, response_time_ms=120, **kwargs)


def codes(page: PageData) -> list[str]:
    return [issue.code for issue in page.issues]


@pytest.fixture
def analyzer():
    return PageAnalyzer(BASE_URL)


# ─────────────────────────────────────────────
# Text helpers
# ─────────────────────────────────────────────

class TestTextHelpers:

    def test_extract_text_strips_scripts_styles_and_tags(self):
        html = "<html><style>p{}</style><script>var x = 1;</script><p>Hello   <b>world</b></p></html>"
        assert extract_text_content(html) == "Hello world"

    def test_ratio_of_empty_html_is_zero(self):
        assert calculate_text_to_html_ratio("") == 0.0

    def test_ratio_is_percentage(self):
        html = "<p>" + "a" * 93 + "</p>"  # 100 chars total
        assert calculate_text_to_html_ratio(html) == pytest.approx(93.0)


# ─────────────────────────────────────────────
# Single-page checks
# ─────────────────────────────────────────────

class TestPageAnalyzer:

    def test_clean_page_has_no_issues(self, analyzer):
        page = analyzer.analyze_page(fetch(build_html()))
        assert codes(page) == []
        assert page.title == TITLE_45
        assert page.meta_description == DESCRIPTION_100
        assert page.has_canonical and page.has_viewport and page.has_robots_meta
        assert page.robots_content == "index, follow"

    def test_good_title_and_description_without_og_only_flags_og(self, analyzer):
        assert len(TITLE_45) == 45
        assert len(DESCRIPTION_100) == 100

        page = analyzer.analyze_page(fetch(build_html(og="")))

        assert codes(page) == [WarningCode.MISSING_OG_TAGS]

    def test_single_og_tag_is_enough(self, analyzer):
        og = '<meta property="og:title" content="Acme">'
        page = analyzer.analyze_page(fetch(build_html(og=og)))
        assert WarningCode.MISSING_OG_TAGS not in codes(page)
        assert page.og_tags.title == "Acme"
        assert page.og_tags.image is None

    def test_server_error_without_body(self, analyzer):
        page = analyzer.analyze_page(fetch(status_code=503))

        assert codes(page) == [ErrorCode.SERVER_ERROR]
        assert page.title is None
        assert page.internal_links == []

    def test_three_hop_redirect_only_flags_chain(self, analyzer):
        chain = [
            "https://example.com/step-1",
            "https://example.com/step-2",
            "https://example.com/",
        ]
        page = analyzer.analyze_page(fetch(build_html(), redirect_chain=chain))

        assert codes(page) == [ErrorCode.REDIRECT_CHAIN]

    def test_two_hops_is_not_a_chain(self, analyzer):
        chain = ["https://example.com/step-1", "https://example.com/"]
        page = analyzer.analyze_page(fetch(build_html(), redirect_chain=chain))
        assert ErrorCode.REDIRECT_CHAIN not in codes(page)

    def test_redirect_loop(self, analyzer):
        page = analyzer.analyze_page(fetch(status_code=0, redirect_loop=True))
        assert codes(page) == [ErrorCode.REDIRECT_LOOP]

    def test_missing_title(self, analyzer):
        page = analyzer.analyze_page(fetch(build_html(title=None)))
        assert ErrorCode.MISSING_TITLE in codes(page)
        assert WarningCode.TITLE_TOO_SHORT not in codes(page)

    def test_blank_title_counts_as_missing(self, analyzer):
        page = analyzer.analyze_page(fetch(build_html(title="   ")))
        assert ErrorCode.MISSING_TITLE in codes(page)

    def test_title_length_bounds(self, analyzer):
        short = analyzer.analyze_page(fetch(build_html(title="Acme")))
        long = analyzer.analyze_page(fetch(build_html(title="A" * 61)))
        exact = analyzer.analyze_page(fetch(build_html(title="A" * 60)))

        assert WarningCode.TITLE_TOO_SHORT in codes(short)
        assert WarningCode.TITLE_TOO_LONG in codes(long)
        assert not {WarningCode.TITLE_TOO_SHORT, WarningCode.TITLE_TOO_LONG} & set(codes(exact))

    def test_meta_description_checks(self, analyzer):
        missing = analyzer.analyze_page(fetch(build_html(description=None)))
        short = analyzer.analyze_page(fetch(build_html(description="Widgets.")))
        long = analyzer.analyze_page(fetch(build_html(description="w" * 161)))

        assert codes(missing).count(WarningCode.MISSING_META_DESCRIPTION) == 1
        assert WarningCode.META_DESCRIPTION_TOO_SHORT in codes(short)
        assert WarningCode.META_DESCRIPTION_TOO_LONG in codes(long)

    def test_meta_name_is_case_insensitive(self, analyzer):
        html = build_html(description=None, head_extra=f'<meta name="Description" content="{DESCRIPTION_100}">')
        page = analyzer.analyze_page(fetch(html))
        assert page.meta_description == DESCRIPTION_100

    def test_h1_checks_are_exclusive(self, analyzer):
        none = analyzer.analyze_page(fetch(build_html(h1s=())))
        two = analyzer.analyze_page(fetch(build_html(h1s=("One", "Two"))))

        assert WarningCode.MISSING_H1 in codes(none)
        assert WarningCode.MULTIPLE_H1 not in codes(none)
        assert WarningCode.MULTIPLE_H1 in codes(two)
        assert WarningCode.MISSING_H1 not in codes(two)
        assert two.h1_count == 2
        assert two.h1_tags == ["One", "Two"]

    def test_images_without_alt(self, analyzer):
        html = build_html(body_extra='<img src="/a.png"><img src="/b.png" alt="">')
        page = analyzer.analyze_page(fetch(html))

        assert WarningCode.MISSING_ALT_TEXT in codes(page)
        assert page.images.total == 3
        assert page.images.without_alt == 2

    def test_low_text_ratio(self, analyzer):
        script = "<script>" + "var x = 1;" * 2000 + "</script>"
        page = analyzer.analyze_page(fetch(build_html(body_extra=script)))
        assert WarningCode.LOW_TEXT_HTML_RATIO in codes(page)
        assert page.text_to_html_ratio < 10

    def test_large_page(self, analyzer):
        padding = "<p>" + "x" * (3 * 1024 * 1024) + "</p>"
        page = analyzer.analyze_page(fetch(build_html(body_extra=padding)))
        assert WarningCode.LARGE_PAGE_SIZE in codes(page)

    def test_slow_response(self, analyzer):
        result = FetchResult(url="https://example.com/", status_code=200, html=build_html(), response_time_ms=3500)
        page = analyzer.analyze_page(result)
        assert codes(page) == [WarningCode.SLOW_RESPONSE]

    def test_link_classification(self, analyzer):
        extra = (
            '<a href="/about">Again</a>'
            '<a href="mailto:hello@example.com">Mail</a>'
            '<a href="https://sub.example.com/">Sub</a>'
        )
        page = analyzer.analyze_page(fetch(build_html(body_extra=extra)))

        assert page.internal_links == ["https://example.com/about"]
        assert page.external_links == ["https://partner.com/shop", "https://sub.example.com/"]

    def test_links_resolve_against_requested_url_after_host_redirect(self, analyzer):
        result = FetchResult(
            url="https://example.com/",
            final_url="https://www.example.com/",
            status_code=200,
            html=build_html(),
            redirect_chain=["https://www.example.com/"],
            response_time_ms=120,
        )

        page = analyzer.analyze_page(result)

        assert page.internal_links == ["https://example.com/about"]
        assert page.external_links == ["https://partner.com/shop"]

    def test_markup_failure_degrades_to_status_only(self, analyzer, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("parser blew up")

        monkeypatch.setattr(analyzer, "_classify_links", explode)
        page = analyzer.analyze_page(fetch(build_html(), status_code=500))

        assert codes(page) == [ErrorCode.SERVER_ERROR]
        assert page.title is None

    def test_issue_urls_point_at_page(self, analyzer):
        page = analyzer.analyze_page(fetch(build_html(og=""), url="https://example.com/pricing"))
        assert page.issues[0].urls == ["https://example.com/pricing"]
        assert page.issues[0].count == 1


# ─────────────────────────────────────────────
# Orphan detection
# ─────────────────────────────────────────────

class TestOrphanDetection:

    def test_unlinked_page_is_orphan(self):
        pages = [
            PageData(url="https://example.com/", status_code=200, internal_links=["https://example.com/about"]),
            PageData(url="https://example.com/about", status_code=200),
            PageData(url="https://example.com/hidden", status_code=200),
        ]
        result = detect_orphan_pages(pages, BASE_URL)

        orphans = [p.url for p in result if p.has_issue(WarningCode.ORPHAN_PAGE)]
        assert orphans == ["https://example.com/hidden"]

    def test_homepage_is_never_orphan(self):
        pages = [
            PageData(url="https://example.com/", status_code=200),
            PageData(url="https://example.com", status_code=200),
        ]
        result = detect_orphan_pages(pages, "https://example.com")
        assert not any(p.has_issue(WarningCode.ORPHAN_PAGE) for p in result)

    def test_trailing_slash_variants_count_as_linked(self):
        pages = [
            PageData(url="https://example.com/", status_code=200, internal_links=["https://example.com/blog/"]),
            PageData(url="https://example.com/blog", status_code=200),
        ]
        result = detect_orphan_pages(pages, BASE_URL)
        assert not result[1].has_issue(WarningCode.ORPHAN_PAGE)

    def test_input_pages_are_not_mutated(self):
        pages = [
            PageData(url="https://example.com/", status_code=200),
            PageData(url="https://example.com/lonely", status_code=200),
        ]
        detect_orphan_pages(pages, BASE_URL)
        assert pages[1].issues == []

    def test_analyze_crawl_results_runs_orphan_pass(self):
        results = [
            fetch(build_html(), url="https://example.com/"),
            fetch(build_html(), url="https://example.com/about"),
            fetch(build_html(), url="https://example.com/landing"),
        ]
        pages = analyze_crawl_results(results, BASE_URL)

        assert [p.url for p in pages] == [r.url for r in results]
        assert pages[2].has_issue(WarningCode.ORPHAN_PAGE)
        assert not pages[1].has_issue(WarningCode.ORPHAN_PAGE)
