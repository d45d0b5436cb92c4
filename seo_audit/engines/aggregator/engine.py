"""
Cross-Page Aggregator

Consumes the complete analyzed page set:
- Broken internal links, resolved against the crawled status codes
- Broken external links, from a bounded HEAD-request sample
- Issue grouping by code (errors / warnings)
- Crawled pages breakdown
- Site health score

Link checks return new page lists; grouping and scoring are pure.
"""

from __future__ import annotations

import asyncio

import httpx
import structlog

from seo_audit.core.config import get_settings
from seo_audit.core.taxonomy import ErrorCode, create_issue, get_issue_definition
from seo_audit.core.urls import URLNormalizer
from seo_audit.engines.base import (
    CrawledPagesBreakdown,
    FetchResult,
    IssueGroup,
    IssueGroups,
    IssueType,
    PageData,
)

logger = structlog.get_logger(__name__)

CHECKS_PER_PAGE = 16
ERROR_WEIGHT = 10
WARNING_WEIGHT = 2


# ─────────────────────────────────────────────
# Broken links
# ─────────────────────────────────────────────

def _without_trailing_slash(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


def check_broken_links(pages: list[PageData], fetch_results: list[FetchResult]) -> list[PageData]:
    """
    Flag pages linking to crawled URLs that answered 4XX/5XX.

    Links never fetched (robots, caps) are not checked.
    """
    status_by_url: dict[str, int] = {}
    for result in fetch_results:
        url = URLNormalizer.sanitize_for_crawl(result.url)
        status_by_url[url] = result.status_code
        if url.endswith("/"):
            status_by_url[url[:-1]] = result.status_code
        else:
            status_by_url[url + "/"] = result.status_code

    updated: list[PageData] = []
    for page in pages:
        for raw_link in page.internal_links:
            # Fragment and tracking-param variants of a crawled URL share its status
            link = URLNormalizer.sanitize_for_crawl(raw_link)
            status_code = (
                status_by_url.get(link)
                or status_by_url.get(link + "/")
                or status_by_url.get(_without_trailing_slash(link))
            )
            if status_code and 400 <= status_code < 600:
                page = page.with_issue(create_issue(ErrorCode.BROKEN_INTERNAL_LINK, page.url))
                break
        updated.append(page)
    return updated


async def _is_broken_external(client: httpx.AsyncClient, link: str) -> bool:
    """True when the link looks broken."""
    try:
        response = await client.head(link)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.debug("External link check failed", url=link, error=str(e) or e.__class__.__name__)
        return True
    return response.status_code >= 400


async def check_external_links(
    pages: list[PageData],
    timeout_ms: int | None = None,
    sample_size: int | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[PageData]:
    """
    Send HEAD requests to the first sample_size distinct external links concurrently.

    Links outside the sample are never checked or flagged.
    """
    settings = get_settings()
    timeout_ms = timeout_ms if timeout_ms is not None else settings.EXTERNAL_LINK_TIMEOUT_MS
    sample_size = sample_size if sample_size is not None else settings.EXTERNAL_LINK_SAMPLE_SIZE

    distinct: dict[str, None] = {}
    for page in pages:
        for link in page.external_links:
            distinct.setdefault(link)
    to_check = list(distinct)[:sample_size]
    if not to_check:
        return list(pages)

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(
            headers={"User-Agent": settings.CRAWLER_USER_AGENT},
            follow_redirects=True,
            max_redirects=settings.EXTERNAL_LINK_MAX_REDIRECTS,
            timeout=httpx.Timeout(timeout_ms / 1000),
        )

    try:
        outcomes = await asyncio.gather(*[_is_broken_external(client, link) for link in to_check])
    finally:
        if owns_client:
            await client.aclose()

    broken = {link for link, is_broken in zip(to_check, outcomes) if is_broken}
    logger.info(
        "External links checked",
        distinct=len(distinct),
        checked=len(to_check),
        broken=len(broken),
    )

    updated: list[PageData] = []
    for page in pages:
        if any(link in broken for link in page.external_links):
            page = page.with_issue(create_issue(ErrorCode.BROKEN_EXTERNAL_LINK, page.url))
        updated.append(page)
    return updated


# ─────────────────────────────────────────────
# Grouping and scoring
# ─────────────────────────────────────────────

def group_issues(pages: list[PageData]) -> IssueGroups:
    """
    Fold every page's issues into one group per code.

    Each bucket is sorted by descending count; equal counts keep the order in
    which the codes were first seen.
    """
    groups: dict[str, IssueGroup] = {}

    for page in pages:
        for issue in page.issues:
            group = groups.get(issue.code)
            if group is None:
                definition = get_issue_definition(issue.code)
                if definition is None:
                    continue
                group = IssueGroup(
                    type=issue.code,
                    code=issue.code,
                    title=definition.title,
                    description=definition.description,
                    issue_type=definition.type,
                )
                groups[issue.code] = group
            group.count += 1
            if page.url not in group.urls:
                group.urls.append(page.url)

    all_groups = list(groups.values())
    errors = sorted((g for g in all_groups if g.issue_type == IssueType.ERROR), key=lambda g: -g.count)
    warnings = sorted((g for g in all_groups if g.issue_type == IssueType.WARNING), key=lambda g: -g.count)
    return IssueGroups(errors=errors, warnings=warnings)


def calculate_site_health_score(errors_count: int, warnings_count: int, total_pages: int) -> int:
    """
    Score from 0-100.

    Formula:
    - Every page runs CHECKS_PER_PAGE checks
    - Errors cost 10 points, warnings 2, normalized by total checks
    """
    if total_pages <= 0:
        return 0

    total_checks = total_pages * CHECKS_PER_PAGE
    deductions = errors_count * ERROR_WEIGHT + warnings_count * WARNING_WEIGHT
    score = max(0.0, 100 - (deductions / total_checks) * 100)
    return min(100, int(score + 0.5))


def calculate_crawled_pages_breakdown(pages: list[PageData]) -> CrawledPagesBreakdown:
    """Partition pages: redirect > broken (incl. unreachable) > with issues > healthy."""
    breakdown = CrawledPagesBreakdown(total=len(pages))

    for page in pages:
        status_code = page.status_code
        if 300 <= status_code < 400:
            breakdown.redirects += 1
        elif status_code >= 400 or status_code == 0:
            # Unreachable (transport failure, redirect loop) is as broken to a visitor as a 4XX
            breakdown.broken += 1
        elif page.issues:
            breakdown.with_issues += 1
        else:
            breakdown.healthy += 1

    return breakdown
