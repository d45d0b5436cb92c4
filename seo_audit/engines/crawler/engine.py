"""
Crawler Engine - bounded, breadth-first, same-site web crawler.

Architecture:
- BFS traversal over a FIFO frontier with page and depth caps
- Async concurrency: up to N fetch tasks in flight, topped up as they finish
- robots.txt allow/disallow enforcement (fetched once per crawl)
- Sanitized-URL visited set so tracking/fragment variants are crawled once
- Progress snapshots published to listeners after every fetch

Only the control loop touches the frontier, the visited set and the result
list. Fetch tasks hand their FetchResult back to it, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable
from urllib.parse import urljoin
from urllib.robotparser import RobotFileParser

import httpx
import structlog
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from seo_audit.core.config import Settings, get_settings
from seo_audit.core.urls import URLNormalizer
from seo_audit.engines.base import (
    AuditProgress,
    CrawlerStatus,
    CrawlTarget,
    FetchResult,
    ProgressStatus,
)

logger = structlog.get_logger(__name__)

ProgressListener = Callable[[AuditProgress], Awaitable[None] | None]

# httpx.InvalidURL is not an HTTPError subclass
TRANSPORT_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


# ─────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────

class CrawlConfig(BaseModel):
    max_pages: int = Field(50, ge=1)
    max_depth: int = Field(3, ge=0)
    timeout_ms: int = Field(10_000, gt=0)
    respect_robots: bool = True
    user_agent: str = "SEOAuditBot/1.0 (+https://github.com/seo-audit-tool)"
    max_concurrent_requests: int = Field(5, ge=1)
    max_redirects: int = Field(10, ge=0)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> CrawlConfig:
        settings = settings or get_settings()
        return cls(
            max_pages=settings.CRAWLER_MAX_PAGES,
            max_depth=settings.CRAWLER_MAX_DEPTH,
            timeout_ms=settings.CRAWLER_REQUEST_TIMEOUT_MS,
            respect_robots=settings.CRAWLER_RESPECT_ROBOTS,
            user_agent=settings.CRAWLER_USER_AGENT,
            max_concurrent_requests=settings.CRAWLER_MAX_CONCURRENCY,
            max_redirects=settings.CRAWLER_MAX_REDIRECTS,
        )

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


@dataclass
class CrawlStats:
    """Live crawl statistics."""
    total_queued: int = 0
    total_crawled: int = 0
    total_failed: int = 0
    total_skipped: int = 0
    start_time: float = field(default_factory=time.time)

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_second(self) -> float:
        elapsed = self.elapsed_seconds
        return self.total_crawled / elapsed if elapsed > 0 else 0


# ─────────────────────────────────────────────
# Robots.txt Handler
# ─────────────────────────────────────────────

class RobotsHandler:
    """Parse and enforce robots.txt rules for the crawled site."""

    def __init__(self):
        self._parser: RobotFileParser | None = None

    @property
    def has_policy(self) -> bool:
        return self._parser is not None

    async def fetch_and_parse(self, start_url: str, client: httpx.AsyncClient, timeout: float) -> None:
        """Fetch robots.txt at the site root. Any failure leaves no policy in place."""
        self._parser = None
        robots_url = urljoin(start_url, "/robots.txt")

        try:
            response = await client.get(robots_url, timeout=timeout)
        except TRANSPORT_ERRORS as e:
            logger.debug("Could not fetch robots.txt", url=robots_url, error=str(e))
            return

        if response.status_code != 200:
            logger.debug("No robots.txt policy", url=robots_url, status_code=response.status_code)
            return

        parser = RobotFileParser(robots_url)
        parser.parse(response.text.splitlines())
        self._parser = parser
        logger.debug("robots.txt loaded", url=robots_url)

    def is_allowed(self, url: str, user_agent: str) -> bool:
        if self._parser is None:
            return True  # No robots.txt = allow all
        return self._parser.can_fetch(user_agent, url) is not False


# ─────────────────────────────────────────────
# Page Fetcher
# ─────────────────────────────────────────────

class PageFetcher:
    """Fetches single pages. Never raises: failures come back as status 0."""

    HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")

    def __init__(self, http_client: httpx.AsyncClient, timeout: float):
        self.http_client = http_client
        self.timeout = timeout

    async def fetch(self, url: str) -> FetchResult:
        start = time.perf_counter()
        try:
            response = await self.http_client.get(url, timeout=self.timeout)
        except httpx.TooManyRedirects as e:
            logger.warning("Too many redirects", url=url)
            return FetchResult(
                url=url,
                response_time_ms=self._elapsed_ms(start),
                redirect_loop=True,
                error=str(e) or "Too many redirects",
            )
        except TRANSPORT_ERRORS as e:
            message = str(e) or e.__class__.__name__
            logger.warning("Page fetch failed", url=url, error=message)
            return FetchResult(url=url, response_time_ms=self._elapsed_ms(start), error=message)

        redirect_chain = self._redirect_chain(response)
        content_type = response.headers.get("content-type", "").lower()
        is_html = not content_type or any(t in content_type for t in self.HTML_CONTENT_TYPES)

        return FetchResult(
            url=url,
            final_url=str(response.url),
            status_code=response.status_code,
            response_time_ms=self._elapsed_ms(start),
            html=response.text if is_html else "",
            headers=dict(response.headers),
            redirect_chain=redirect_chain,
        )

    @staticmethod
    def _redirect_chain(response: httpx.Response) -> list[str]:
        """Target URL of every redirect hop, in the order they were followed."""
        if not response.history:
            return []
        return [str(hop.url) for hop in response.history[1:]] + [str(response.url)]

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return round((time.perf_counter() - start) * 1000)


def extract_links(html: str, page_url: str) -> list[str]:
    """Absolute URLs of every <a href> on the page, deduplicated in document order."""
    links: list[str] = []
    seen: set[str] = set()
    soup = BeautifulSoup(html, "lxml")
    for anchor in soup.find_all("a", href=True):
        absolute = URLNormalizer.resolve(page_url, anchor["href"])
        if absolute and absolute not in seen:
            seen.add(absolute)
            links.append(absolute)
    return links


# ─────────────────────────────────────────────
# Main Crawler
# ─────────────────────────────────────────────

class CrawlerEngine:
    """
    BFS web crawler for a single site.

    Flow:
    1. Fetch robots.txt (when respect_robots is set)
    2. Seed the frontier with the start URL at depth 0
    3. Control loop: dequeue -> check page cap, depth, robots -> mark visited -> fetch
    4. On each completed fetch: record result, enqueue new links, publish progress
    5. Stop when the frontier is empty and nothing is in flight, or on stop()

    State machine: idle -> crawling -> complete, or crawling -> failed.
    """

    ENGINE_NAME = "crawler"

    def __init__(
        self,
        config: CrawlConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or CrawlConfig.from_settings()
        self.transport = transport
        self.logger = structlog.get_logger(self.__class__.__name__)
        self.robots_handler = RobotsHandler()
        self.status = CrawlerStatus.IDLE
        self.stats = CrawlStats()

        self._listeners: list[ProgressListener] = []
        self._start_url = ""
        self._queue: deque[CrawlTarget] = deque()
        self._queued: set[str] = set()
        self._visited: set[str] = set()
        self._results: list[FetchResult] = []
        self._stopped = False

    def add_listener(self, listener: ProgressListener) -> None:
        """Register a sync or async callable that receives every progress snapshot."""
        self._listeners.append(listener)

    def stop(self) -> None:
        """Stop dequeuing. Fetches already in flight are allowed to finish."""
        if not self._stopped:
            self.logger.info("Crawl stop requested", url=self._start_url, crawled=len(self._results))
        self._stopped = True

    @property
    def visited(self) -> frozenset[str]:
        return frozenset(self._visited)

    async def crawl(self, start_url: str) -> list[FetchResult]:
        if self.status == CrawlerStatus.CRAWLING:
            raise RuntimeError("Crawl already in progress")

        self._start_url = start_url
        self._queue.clear()
        self._queued.clear()
        self._visited.clear()
        self._results = []
        self._stopped = False
        self.stats = CrawlStats()
        self.status = CrawlerStatus.CRAWLING

        self.logger.info(
            "Crawl started",
            url=start_url,
            max_pages=self.config.max_pages,
            max_depth=self.config.max_depth,
            concurrency=self.config.max_concurrent_requests,
        )

        try:
            async with self._build_client() as client:
                if self.config.respect_robots:
                    await self.robots_handler.fetch_and_parse(start_url, client, self.config.timeout_seconds)

                self._queue.append(CrawlTarget(url=start_url, depth=0))
                self.stats.total_queued = 1
                await self._emit(ProgressStatus.CRAWLING, 0, 1, start_url)

                await self._process_queue(client)

        except Exception as exc:
            self.status = CrawlerStatus.FAILED
            self.logger.error("Crawl failed", url=start_url, error=str(exc), exc_info=True)
            raise

        self.status = CrawlerStatus.COMPLETE
        crawled = len(self._results)
        await self._emit(ProgressStatus.COMPLETE, crawled, crawled, "")

        self.logger.info(
            "Crawl complete",
            url=start_url,
            crawled=crawled,
            failed=self.stats.total_failed,
            skipped=self.stats.total_skipped,
            stopped=self._stopped,
            elapsed_seconds=round(self.stats.elapsed_seconds, 2),
            pps=round(self.stats.pages_per_second, 2),
        )
        return list(self._results)

    def _build_client(self) -> httpx.AsyncClient:
        headers = {
            "User-Agent": self.config.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }
        concurrency = self.config.max_concurrent_requests
        return httpx.AsyncClient(
            headers=headers,
            follow_redirects=True,
            max_redirects=self.config.max_redirects,
            timeout=httpx.Timeout(self.config.timeout_seconds),
            limits=httpx.Limits(max_connections=concurrency + 1, max_keepalive_connections=concurrency),
            transport=self.transport,
        )

    async def _process_queue(self, client: httpx.AsyncClient) -> None:
        fetcher = PageFetcher(client, self.config.timeout_seconds)
        in_flight: dict[asyncio.Task[FetchResult], CrawlTarget] = {}

        try:
            while True:
                if not self._stopped:
                    self._dispatch(fetcher, in_flight)
                if not in_flight:
                    break

                done, _ = await asyncio.wait(in_flight.keys(), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    target = in_flight.pop(task)
                    await self._collect(target, task.result())
        finally:
            for task in in_flight:
                task.cancel()

    def _dispatch(self, fetcher: PageFetcher, in_flight: dict[asyncio.Task[FetchResult], CrawlTarget]) -> None:
        """Top up in-flight fetches from the frontier."""
        while (
            self._queue
            and len(in_flight) < self.config.max_concurrent_requests
            and len(self._results) + len(in_flight) < self.config.max_pages
        ):
            target = self._queue.popleft()
            url = URLNormalizer.sanitize_for_crawl(target.url)
            self._queued.discard(url)

            if url in self._visited:
                continue

            if target.depth > self.config.max_depth:
                self.stats.total_skipped += 1
                continue

            if self.config.respect_robots and not self.robots_handler.is_allowed(url, self.config.user_agent):
                self.stats.total_skipped += 1
                self.logger.debug("Blocked by robots.txt", url=url)
                continue

            self._visited.add(url)
            task = asyncio.create_task(fetcher.fetch(url))
            in_flight[task] = CrawlTarget(url=url, depth=target.depth)

    async def _collect(self, target: CrawlTarget, result: FetchResult) -> None:
        self._results.append(result)
        self.stats.total_crawled += 1
        if result.status_code == 0:
            self.stats.total_failed += 1

        if (
            result.html
            and 200 <= result.status_code < 400
            and target.depth < self.config.max_depth
            and len(self._results) < self.config.max_pages
        ):
            for link in extract_links(result.html, result.url):
                self._enqueue_link(link, target.depth + 1)

        crawled = len(self._results)
        await self._emit(
            ProgressStatus.CRAWLING,
            crawled,
            max(crawled, len(self._queue) + crawled),
            result.url,
        )

    def _enqueue_link(self, link: str, depth: int) -> None:
        if not URLNormalizer.is_internal(self._start_url, link) or not URLNormalizer.should_crawl(link):
            return

        url = URLNormalizer.sanitize_for_crawl(link)
        if url in self._visited or url in self._queued:
            return

        # Keeps the frontier from growing past what the page cap can use
        if len(self._results) + len(self._queue) >= self.config.max_pages:
            return

        self._queue.append(CrawlTarget(url=url, depth=depth))
        self._queued.add(url)
        self.stats.total_queued += 1

    async def _emit(self, status: ProgressStatus, pages_crawled: int, total_pages_found: int, current_url: str) -> None:
        progress = AuditProgress.snapshot(status, pages_crawled, total_pages_found, current_url)
        for listener in self._listeners:
            outcome = listener(progress)
            if inspect.isawaitable(outcome):
                await outcome


async def crawl_website(
    start_url: str,
    config: CrawlConfig | None = None,
    on_progress: ProgressListener | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[FetchResult]:
    """Crawl start_url and return one FetchResult per fetched page."""
    crawler = CrawlerEngine(config, transport=transport)
    if on_progress:
        crawler.add_listener(on_progress)
    return await crawler.crawl(start_url)
