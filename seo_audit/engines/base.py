"""
Type contracts shared by the crawler, analyzer and aggregator engines.

Design principles:
- FetchResult and PageData are immutable snapshots
- Later pipeline stages return copies with extra issues instead of mutating
- Failures are data: status_code 0, error messages and issues, never exceptions
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# ─────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────

class IssueType(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class AuditStatus(str, Enum):
    PENDING = "pending"
    CRAWLING = "crawling"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    FAILED = "failed"


class ProgressStatus(str, Enum):
    INITIALIZING = "initializing"
    CRAWLING = "crawling"
    ANALYZING = "analyzing"
    GENERATING_REPORT = "generating_report"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressStatus.COMPLETE, ProgressStatus.FAILED)


class CrawlerStatus(str, Enum):
    IDLE = "idle"
    CRAWLING = "crawling"
    COMPLETE = "complete"
    FAILED = "failed"


# ─────────────────────────────────────────────
# Crawl data
# ─────────────────────────────────────────────

@dataclass
class CrawlTarget:
    """URL in the crawl queue."""
    url: str
    depth: int


class FetchResult(BaseModel):
    """Outcome of fetching one URL. status_code 0 means the transport failed."""
    model_config = ConfigDict(frozen=True)

    url: str
    final_url: str | None = None   # Set when the response came back
    status_code: int = 0
    response_time_ms: int = 0
    html: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    redirect_chain: list[str] = Field(default_factory=list)
    redirect_loop: bool = False
    error: str | None = None


# ─────────────────────────────────────────────
# Analysis data
# ─────────────────────────────────────────────

class Issue(BaseModel):
    """A single SEO issue, attached to one page or aggregated across pages."""
    type: IssueType
    code: str
    title: str
    description: str
    urls: list[str] = Field(default_factory=list)
    count: int = 1

    model_config = ConfigDict(use_enum_values=True)


class OpenGraphTags(BaseModel):
    title: str | None = None
    description: str | None = None
    image: str | None = None


class ImageStats(BaseModel):
    total: int = 0
    without_alt: int = 0


class PageData(BaseModel):
    """Signals extracted from one fetched page plus the issues found on it."""
    model_config = ConfigDict(frozen=True)

    url: str
    status_code: int
    response_time: int = 0
    title: str | None = None
    meta_description: str | None = None
    h1_tags: list[str] = Field(default_factory=list)
    h1_count: int = 0
    has_canonical: bool = False
    canonical_url: str | None = None
    has_viewport: bool = False
    has_robots_meta: bool = False
    robots_content: str | None = None
    og_tags: OpenGraphTags = Field(default_factory=OpenGraphTags)
    images: ImageStats = Field(default_factory=ImageStats)
    text_to_html_ratio: float = 0.0
    page_size: int = 0
    internal_links: list[str] = Field(default_factory=list)
    external_links: list[str] = Field(default_factory=list)
    issues: list[Issue] = Field(default_factory=list)

    def has_issue(self, code: str) -> bool:
        return any(issue.code == code for issue in self.issues)

    def with_issue(self, issue: Issue) -> PageData:
        """Copy of this page with issue appended, unless its code is already present."""
        if self.has_issue(issue.code):
            return self
        return self.model_copy(update={"issues": [*self.issues, issue]})


# ─────────────────────────────────────────────
# Aggregates
# ─────────────────────────────────────────────

class IssueGroup(BaseModel):
    """All occurrences of one issue code across the crawled pages."""
    type: str
    code: str
    title: str
    description: str
    issue_type: IssueType
    count: int = 0
    urls: list[str] = Field(default_factory=list)

    model_config = ConfigDict(use_enum_values=True)


class IssueGroups(BaseModel):
    errors: list[IssueGroup] = Field(default_factory=list)
    warnings: list[IssueGroup] = Field(default_factory=list)


class CrawledPagesBreakdown(BaseModel):
    total: int = 0
    healthy: int = 0
    with_issues: int = 0
    redirects: int = 0
    broken: int = 0


class AuditResults(BaseModel):
    """Top-level audit record handed to persistence and reporting."""
    id: str
    url: str
    status: AuditStatus = AuditStatus.PENDING
    created_at: datetime
    completed_at: datetime | None = None
    site_health_score: int = 0
    crawled_pages: CrawledPagesBreakdown = Field(default_factory=CrawledPagesBreakdown)
    total_pages: int = 0
    pages_crawled: int = 0
    errors_count: int = 0
    warnings_count: int = 0
    errors: list[IssueGroup] = Field(default_factory=list)
    warnings: list[IssueGroup] = Field(default_factory=list)
    pages: list[PageData] = Field(default_factory=list)
    error: str | None = None


class AuditProgress(BaseModel):
    """Live view of one in-flight audit."""
    status: ProgressStatus
    pages_crawled: int = 0
    total_pages_found: int = 0
    current_url: str = ""
    percent_complete: int = 0
    error: str | None = None

    @classmethod
    def snapshot(
        cls,
        status: ProgressStatus,
        pages_crawled: int,
        total_pages_found: int,
        current_url: str,
    ) -> AuditProgress:
        percent = round(pages_crawled / total_pages_found * 100) if total_pages_found > 0 else 0
        return cls(
            status=status,
            pages_crawled=pages_crawled,
            total_pages_found=total_pages_found,
            current_url=current_url,
            percent_complete=percent,
        )
