"""
Audit Service - orchestrates one audit end to end.

Flow:
1. start_audit()  → Normalizes + validates the URL, creates a pending record
2. run_audit()    → crawl → analyze → broken internal links → external links
                    → group issues / breakdown / score → complete
3. Progress is written to the ProgressStore at every step:
   initializing → crawling (per page) → analyzing (75%) → complete (100%)

Error handling:
- An invalid URL is rejected before any network activity
- A cancelled audit stops crawling, then analyzes and completes with the
  pages fetched so far
- Any exception during run_audit marks the audit failed with its message;
  no partial results are kept and nothing is retried
"""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache

import httpx
import structlog

from seo_audit.core.config import get_settings
from seo_audit.core.logging import audit_log_context
from seo_audit.core.urls import URLNormalizer
from seo_audit.engines.aggregator.engine import (
    calculate_crawled_pages_breakdown,
    calculate_site_health_score,
    check_broken_links,
    check_external_links,
    group_issues,
)
from seo_audit.engines.analyzer.engine import analyze_crawl_results
from seo_audit.engines.base import AuditProgress, AuditResults, AuditStatus, ProgressStatus
from seo_audit.engines.crawler.engine import CrawlConfig, CrawlerEngine
from seo_audit.services.progress import ProgressStore, get_progress_store
from seo_audit.services.repository import AuditRepository, InMemoryAuditRepository

logger = structlog.get_logger(__name__)

ANALYZING_PERCENT = 75


class InvalidAuditURLError(ValueError):
    pass


class AuditService:

    def __init__(
        self,
        repository: AuditRepository,
        progress_store: ProgressStore,
        crawl_config: CrawlConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.repository = repository
        self.progress_store = progress_store
        self.crawl_config = crawl_config
        self.transport = transport
        self._running: dict[str, CrawlerEngine] = {}
        self._cancelled: set[str] = set()

    async def start_audit(self, raw_url: str) -> AuditResults:
        if not raw_url or not raw_url.strip():
            raise InvalidAuditURLError("URL is required")

        url = URLNormalizer.normalize(raw_url)
        validation = URLNormalizer.validate(url)
        if not validation.valid:
            raise InvalidAuditURLError(validation.error or "Invalid URL format")

        return await self.repository.create(url)

    async def get_audit(self, audit_id: str) -> AuditResults | None:
        return await self.repository.get(audit_id)

    async def get_progress(self, audit_id: str) -> AuditProgress | None:
        return await self.progress_store.get(audit_id)

    def is_running(self, audit_id: str) -> bool:
        return audit_id in self._running

    def cancel_audit(self, audit_id: str) -> bool:
        """Stop the crawl of a running audit. Pages already fetched are still analyzed."""
        crawler = self._running.get(audit_id)
        if crawler is None:
            return False
        self._cancelled.add(audit_id)
        crawler.stop()
        logger.info("Audit cancellation requested", audit_id=audit_id)
        return True

    async def run_audit(self, audit_id: str, url: str) -> AuditResults:
        with audit_log_context(audit_id):
            return await self._run_pipeline(audit_id, url)

    async def _run_pipeline(self, audit_id: str, url: str) -> AuditResults:
        log = logger.bind(url=url)
        crawler = CrawlerEngine(self.crawl_config or CrawlConfig.from_settings(), transport=self.transport)
        self._running[audit_id] = crawler

        try:
            await self.repository.update_status(audit_id, AuditStatus.CRAWLING)
            await self.progress_store.set(audit_id, AuditProgress(status=ProgressStatus.INITIALIZING, current_url=url))

            async def publish(progress: AuditProgress) -> None:
                # The crawl finishing is not the audit finishing
                if ProgressStatus(progress.status).is_terminal:
                    return
                await self.progress_store.set(audit_id, progress)

            crawler.add_listener(publish)
            fetch_results = await crawler.crawl(url)
            if audit_id in self._cancelled:
                log.info("Crawl cancelled, analyzing partial results", pages=len(fetch_results))

            await self.repository.update_status(audit_id, AuditStatus.ANALYZING)
            await self.progress_store.set(audit_id, AuditProgress(
                status=ProgressStatus.ANALYZING,
                pages_crawled=len(fetch_results),
                total_pages_found=len(fetch_results),
                percent_complete=ANALYZING_PERCENT,
            ))

            pages = analyze_crawl_results(fetch_results, url)
            pages = check_broken_links(pages, fetch_results)
            pages = await self._check_external_links(pages)

            grouped = group_issues(pages)
            errors_count = sum(group.count for group in grouped.errors)
            warnings_count = sum(group.count for group in grouped.warnings)
            now = datetime.now(timezone.utc)

            results = await self.repository.complete(AuditResults(
                id=audit_id,
                url=url,
                status=AuditStatus.COMPLETE,
                created_at=now,
                completed_at=now,
                site_health_score=calculate_site_health_score(errors_count, warnings_count, len(pages)),
                crawled_pages=calculate_crawled_pages_breakdown(pages),
                total_pages=len(pages),
                pages_crawled=len(pages),
                errors_count=errors_count,
                warnings_count=warnings_count,
                errors=grouped.errors,
                warnings=grouped.warnings,
                pages=pages,
            ))

            await self.progress_store.set(audit_id, AuditProgress(
                status=ProgressStatus.COMPLETE,
                pages_crawled=len(pages),
                total_pages_found=len(pages),
                percent_complete=100,
            ))
            log.info(
                "Audit complete",
                pages=len(pages),
                errors=errors_count,
                warnings=warnings_count,
                score=results.site_health_score,
            )
            return results

        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            log.error("Audit failed", error=message, exc_info=True)
            failed = await self.repository.fail(audit_id, message)
            await self.progress_store.set(audit_id, AuditProgress(status=ProgressStatus.FAILED, error=message))
            return failed

        finally:
            self._running.pop(audit_id, None)
            self._cancelled.discard(audit_id)

    async def _check_external_links(self, pages):
        if self.transport is None:
            return await check_external_links(pages)

        settings = get_settings()
        async with httpx.AsyncClient(
            transport=self.transport,
            follow_redirects=True,
            max_redirects=settings.EXTERNAL_LINK_MAX_REDIRECTS,
            timeout=httpx.Timeout(settings.EXTERNAL_LINK_TIMEOUT_MS / 1000),
        ) as client:
            return await check_external_links(pages, client=client)


@lru_cache()
def get_audit_service() -> AuditService:
    """Process-wide service instance."""
    return AuditService(InMemoryAuditRepository(), get_progress_store())
