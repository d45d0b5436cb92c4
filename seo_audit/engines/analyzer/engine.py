"""
Page Analyzer Engine

Runs a fixed battery of independent checks against each fetched page:
- Status (5XX) and redirect chains / loops
- Title tag (presence, length)
- Meta description (presence, length)
- H1 headings (missing, multiple)
- Canonical, viewport and robots meta tags
- Open Graph tags
- Image alt text
- Text-to-HTML ratio, page size, response time
- Internal / external link extraction

Then a second pass over all pages flags orphan pages, which needs the
complete internal link graph.
"""

from __future__ import annotations

import re

import structlog
from bs4 import BeautifulSoup, Tag

from seo_audit.core.taxonomy import ErrorCode, WarningCode, create_issue
from seo_audit.core.urls import URLNormalizer
from seo_audit.engines.base import FetchResult, ImageStats, Issue, OpenGraphTags, PageData

logger = structlog.get_logger(__name__)

_SCRIPT_RE = re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[^>]*>[\s\S]*?</style>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")


def extract_text_content(html: str) -> str:
    """Visible text: script/style blocks and tags removed, whitespace collapsed."""
    text = _SCRIPT_RE.sub("", html)
    text = _STYLE_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def calculate_text_to_html_ratio(html: str) -> float:
    """Visible text length as a percentage of raw HTML length."""
    if not html:
        return 0.0
    return len(extract_text_content(html)) / len(html) * 100


class PageAnalyzer:

    ENGINE_NAME = "analyzer"

    # Thresholds
    TITLE_MIN_LENGTH = 30
    TITLE_MAX_LENGTH = 60
    META_DESC_MIN_LENGTH = 70
    META_DESC_MAX_LENGTH = 160
    REDIRECT_CHAIN_MIN_HOPS = 3
    MIN_TEXT_HTML_RATIO = 10.0
    MAX_PAGE_SIZE_BYTES = 3 * 1024 * 1024
    SLOW_RESPONSE_MS = 3000

    def __init__(self, base_url: str):
        self.base_url = base_url
        self.logger = structlog.get_logger(self.__class__.__name__)

    def analyze_page(self, result: FetchResult) -> PageData:
        issues = self._status_issues(result)
        if not result.html:
            return self._status_only_page(result, issues)

        try:
            return self._analyze_markup(result, issues)
        except Exception as e:
            # One bad document must not take the rest of the audit with it
            self.logger.warning("Page analysis failed", url=result.url, error=str(e), exc_info=True)
            return self._status_only_page(result, issues)

    def _status_issues(self, result: FetchResult) -> list[Issue]:
        issues: list[Issue] = []
        if result.status_code >= 500:
            issues.append(create_issue(ErrorCode.SERVER_ERROR, result.url))
        if len(result.redirect_chain) >= self.REDIRECT_CHAIN_MIN_HOPS:
            issues.append(create_issue(ErrorCode.REDIRECT_CHAIN, result.url))
        if result.redirect_loop:
            issues.append(create_issue(ErrorCode.REDIRECT_LOOP, result.url))
        return issues

    @staticmethod
    def _status_only_page(result: FetchResult, issues: list[Issue]) -> PageData:
        return PageData(
            url=result.url,
            status_code=result.status_code,
            response_time=result.response_time_ms,
            issues=list(issues),
        )

    def _analyze_markup(self, result: FetchResult, issues: list[Issue]) -> PageData:
        html = result.html
        url = result.url
        issues = list(issues)
        soup = BeautifulSoup(html, "lxml")

        # ── Title ──────────────────────────────────
        title_tag = soup.find("title")
        title = title_tag.get_text().strip() if title_tag else ""
        if not title:
            issues.append(create_issue(ErrorCode.MISSING_TITLE, url))
        else:
            if len(title) > self.TITLE_MAX_LENGTH:
                issues.append(create_issue(WarningCode.TITLE_TOO_LONG, url))
            if len(title) < self.TITLE_MIN_LENGTH:
                issues.append(create_issue(WarningCode.TITLE_TOO_SHORT, url))

        # ── Meta Description ───────────────────────
        meta_desc = _meta_content(soup, "name", "description")
        if not meta_desc:
            issues.append(create_issue(WarningCode.MISSING_META_DESCRIPTION, url))
        else:
            if len(meta_desc) > self.META_DESC_MAX_LENGTH:
                issues.append(create_issue(WarningCode.META_DESCRIPTION_TOO_LONG, url))
            if len(meta_desc) < self.META_DESC_MIN_LENGTH:
                issues.append(create_issue(WarningCode.META_DESCRIPTION_TOO_SHORT, url))

        # ── Headings ──────────────────────────────
        h1_elements = soup.find_all("h1")
        h1_tags = [text for text in (h1.get_text(" ", strip=True) for h1 in h1_elements) if text]
        if not h1_elements:
            issues.append(create_issue(WarningCode.MISSING_H1, url))
        elif len(h1_elements) > 1:
            issues.append(create_issue(WarningCode.MULTIPLE_H1, url))

        # ── Canonical / Viewport / Robots ─────────
        canonical_tag = soup.find("link", rel="canonical")
        canonical = canonical_tag.get("href") if isinstance(canonical_tag, Tag) else None
        if not canonical:
            issues.append(create_issue(WarningCode.MISSING_CANONICAL, url))

        viewport = _meta_content(soup, "name", "viewport")
        if not viewport:
            issues.append(create_issue(WarningCode.MISSING_VIEWPORT, url))

        robots = _meta_content(soup, "name", "robots")
        if not robots:
            issues.append(create_issue(WarningCode.MISSING_ROBOTS_META, url))

        # ── Open Graph ────────────────────────────
        og_tags = OpenGraphTags(
            title=_meta_content(soup, "property", "og:title"),
            description=_meta_content(soup, "property", "og:description"),
            image=_meta_content(soup, "property", "og:image"),
        )
        if not (og_tags.title or og_tags.description or og_tags.image):
            issues.append(create_issue(WarningCode.MISSING_OG_TAGS, url))

        # ── Images Alt Text ───────────────────────
        imgs = soup.find_all("img")
        without_alt = len([img for img in imgs if not img.get("alt")])
        if without_alt:
            issues.append(create_issue(WarningCode.MISSING_ALT_TEXT, url))

        # ── Content / Size / Speed ────────────────
        ratio = calculate_text_to_html_ratio(html)
        if ratio < self.MIN_TEXT_HTML_RATIO:
            issues.append(create_issue(WarningCode.LOW_TEXT_HTML_RATIO, url))

        page_size = len(html.encode("utf-8"))
        if page_size > self.MAX_PAGE_SIZE_BYTES:
            issues.append(create_issue(WarningCode.LARGE_PAGE_SIZE, url))

        if result.response_time_ms > self.SLOW_RESPONSE_MS:
            issues.append(create_issue(WarningCode.SLOW_RESPONSE, url))

        internal_links, external_links = self._classify_links(soup, url)

        return PageData(
            url=url,
            status_code=result.status_code,
            response_time=result.response_time_ms,
            title=title or None,
            meta_description=meta_desc,
            h1_tags=h1_tags,
            h1_count=len(h1_elements),
            has_canonical=bool(canonical),
            canonical_url=canonical or None,
            has_viewport=bool(viewport),
            has_robots_meta=bool(robots),
            robots_content=robots,
            og_tags=og_tags,
            images=ImageStats(total=len(imgs), without_alt=without_alt),
            text_to_html_ratio=ratio,
            page_size=page_size,
            internal_links=internal_links,
            external_links=external_links,
            issues=issues,
        )

    def _classify_links(self, soup: BeautifulSoup, page_url: str) -> tuple[list[str], list[str]]:
        internal: dict[str, None] = {}
        external: dict[str, None] = {}
        for anchor in soup.find_all("a", href=True):
            absolute = URLNormalizer.resolve(page_url, anchor["href"])
            if not absolute:
                continue
            if URLNormalizer.is_internal(self.base_url, absolute):
                internal.setdefault(absolute)
            elif absolute.startswith(("http://", "https://")):
                external.setdefault(absolute)
        return list(internal), list(external)


def _meta_content(soup: BeautifulSoup, attr: str, value: str) -> str | None:
    """Stripped content of the first <meta attr=value> tag, or None when empty."""
    tag = soup.find("meta", attrs={attr: re.compile(f"^{re.escape(value)}$", re.IGNORECASE)})
    if not isinstance(tag, Tag):
        return None
    content = tag.get("content")
    if not isinstance(content, str):
        return None
    return content.strip() or None


def _slash_variants(url: str) -> set[str]:
    stripped = url[:-1] if url.endswith("/") else url
    return {stripped, stripped + "/"}


def detect_orphan_pages(pages: list[PageData], base_url: str) -> list[PageData]:
    """
    Flag pages no other crawled page links to.

    The homepage is always treated as linked. Returns new PageData copies;
    the input list is left untouched.
    """
    homepage = _slash_variants(base_url) | _slash_variants(URLNormalizer.sanitize_for_crawl(base_url))
    linked: set[str] = set(homepage)
    for page in pages:
        for link in page.internal_links:
            linked |= _slash_variants(link)

    result: list[PageData] = []
    for page in pages:
        variants = _slash_variants(page.url)
        if not variants & linked:
            page = page.with_issue(create_issue(WarningCode.ORPHAN_PAGE, page.url))
        result.append(page)

    orphans = len([p for p in result if p.has_issue(WarningCode.ORPHAN_PAGE)])
    if orphans:
        logger.info("Orphan pages detected", count=orphans)
    return result


def analyze_crawl_results(fetch_results: list[FetchResult], base_url: str) -> list[PageData]:
    """Analyze every fetched page, then run the cross-page orphan pass."""
    analyzer = PageAnalyzer(base_url)
    pages = [analyzer.analyze_page(result) for result in fetch_results]
    logger.info("Pages analyzed", count=len(pages), base_url=base_url)
    return detect_orphan_pages(pages, base_url)
