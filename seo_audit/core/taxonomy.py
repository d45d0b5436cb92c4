"""
Issue taxonomy - the single source of truth for issue text and severity.

Both per-page issues (analyzer) and aggregated issue groups (aggregator) are
built from this table, so their titles and descriptions never drift apart.
Bump TAXONOMY_VERSION whenever a code is added, removed or reworded.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, field_validator

from seo_audit.engines.base import Issue, IssueType

TAXONOMY_VERSION = "1.1.0"


class IssueDefinition(BaseModel):
    code: str
    title: str
    description: str
    type: IssueType

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        if not re.match(r"^[a-z][a-z0-9_]{2,63}$", v):
            raise ValueError(f"Issue code '{v}' must be lowercase snake_case")
        return v


# ─────────────────────────────────────────────
# Issue codes
# ─────────────────────────────────────────────

class ErrorCode:
    BROKEN_INTERNAL_LINK = "broken_internal_link"
    BROKEN_EXTERNAL_LINK = "broken_external_link"
    SERVER_ERROR = "server_error_5xx"
    MISSING_TITLE = "missing_title"
    REDIRECT_CHAIN = "redirect_chain"
    REDIRECT_LOOP = "redirect_loop"


class WarningCode:
    MISSING_META_DESCRIPTION = "missing_meta_description"
    MISSING_H1 = "missing_h1"
    MULTIPLE_H1 = "multiple_h1"
    LOW_TEXT_HTML_RATIO = "low_text_html_ratio"
    TITLE_TOO_LONG = "title_too_long"
    TITLE_TOO_SHORT = "title_too_short"
    META_DESCRIPTION_TOO_LONG = "meta_description_too_long"
    META_DESCRIPTION_TOO_SHORT = "meta_description_too_short"
    MISSING_CANONICAL = "missing_canonical"
    MISSING_VIEWPORT = "missing_viewport"
    MISSING_ALT_TEXT = "missing_alt_text"
    LARGE_PAGE_SIZE = "large_page_size"
    SLOW_RESPONSE = "slow_response"
    ORPHAN_PAGE = "orphan_page"
    MISSING_OG_TAGS = "missing_og_tags"
    MISSING_ROBOTS_META = "missing_robots_meta"


def _definition(code: str, title: str, description: str, issue_type: IssueType) -> tuple[str, IssueDefinition]:
    return code, IssueDefinition(code=code, title=title, description=description, type=issue_type)


ISSUE_DEFINITIONS: dict[str, IssueDefinition] = dict([
    # Errors
    _definition(ErrorCode.BROKEN_INTERNAL_LINK, "Broken internal links",
                "Internal links returning 4XX status codes", IssueType.ERROR),
    _definition(ErrorCode.BROKEN_EXTERNAL_LINK, "Broken external links",
                "External links returning 4XX or 5XX status codes", IssueType.ERROR),
    _definition(ErrorCode.SERVER_ERROR, "Pages with server errors",
                "Pages returning 5XX status codes", IssueType.ERROR),
    _definition(ErrorCode.MISSING_TITLE, "Pages missing title tag",
                "Pages without a title tag or with empty title", IssueType.ERROR),
    _definition(ErrorCode.REDIRECT_CHAIN, "Redirect chains detected",
                "URLs with 3 or more redirect hops", IssueType.ERROR),
    _definition(ErrorCode.REDIRECT_LOOP, "Redirect loops detected",
                "URLs with circular redirects", IssueType.ERROR),
    # Warnings
    _definition(WarningCode.MISSING_META_DESCRIPTION, "Pages missing meta description",
                "Pages without a meta description tag", IssueType.WARNING),
    _definition(WarningCode.MISSING_H1, "Pages missing H1 heading",
                "Pages without an H1 heading tag", IssueType.WARNING),
    _definition(WarningCode.MULTIPLE_H1, "Pages with multiple H1 tags",
                "Pages with more than one H1 heading", IssueType.WARNING),
    _definition(WarningCode.LOW_TEXT_HTML_RATIO, "Pages with low text-to-HTML ratio",
                "Pages with less than 10% text content", IssueType.WARNING),
    _definition(WarningCode.TITLE_TOO_LONG, "Title tags too long",
                "Title tags exceeding 60 characters", IssueType.WARNING),
    _definition(WarningCode.TITLE_TOO_SHORT, "Title tags too short",
                "Title tags shorter than 30 characters", IssueType.WARNING),
    _definition(WarningCode.META_DESCRIPTION_TOO_LONG, "Meta descriptions too long",
                "Meta descriptions exceeding 160 characters", IssueType.WARNING),
    _definition(WarningCode.META_DESCRIPTION_TOO_SHORT, "Meta descriptions too short",
                "Meta descriptions shorter than 70 characters", IssueType.WARNING),
    _definition(WarningCode.MISSING_CANONICAL, "Pages missing canonical tag",
                "Pages without a canonical URL specified", IssueType.WARNING),
    _definition(WarningCode.MISSING_VIEWPORT, "Pages missing viewport meta tag",
                "Pages without viewport meta for mobile responsiveness", IssueType.WARNING),
    _definition(WarningCode.MISSING_ALT_TEXT, "Images missing alt text",
                "Pages with images lacking alt attributes", IssueType.WARNING),
    _definition(WarningCode.LARGE_PAGE_SIZE, "Large page size",
                "Pages larger than 3MB", IssueType.WARNING),
    _definition(WarningCode.SLOW_RESPONSE, "Slow page response time",
                "Pages taking more than 3 seconds to respond", IssueType.WARNING),
    _definition(WarningCode.ORPHAN_PAGE, "Orphan pages detected",
                "Pages not linked from any other crawled page", IssueType.WARNING),
    _definition(WarningCode.MISSING_OG_TAGS, "Missing Open Graph tags",
                "Pages without OG tags for social sharing", IssueType.WARNING),
    _definition(WarningCode.MISSING_ROBOTS_META, "Missing robots meta tag",
                "Pages without robots meta tag", IssueType.WARNING),
])


def get_issue_definition(code: str) -> IssueDefinition | None:
    return ISSUE_DEFINITIONS.get(code)


def create_issue(code: str, url: str | None = None) -> Issue:
    """Build a single-occurrence issue for one page."""
    definition = ISSUE_DEFINITIONS.get(code)
    return Issue(
        type=definition.type if definition else IssueType.WARNING,
        code=code,
        title=definition.title if definition else code,
        description=definition.description if definition else "",
        urls=[url] if url else [],
        count=1,
    )
