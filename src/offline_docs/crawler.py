"""Crawler that fetches a docset's entry points and extracts documents."""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum

import aiohttp

from offline_docs.config import Settings
from offline_docs.models import Document, Selectors
from offline_docs.parser import HtmlExtractor

logger = logging.getLogger(__name__)


class FailureCategory(str, Enum):
    """Why a page produced no documents."""

    TIMEOUT = "timeout"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    NETWORK = "network"
    UNKNOWN = "unknown"


def classify_failure(error: BaseException) -> FailureCategory:
    """Map a page fetch or extraction error to a failure category.

    Args:
        error: Exception raised while processing a page.

    Returns:
        The matching FailureCategory.
    """
    # Timeout checks come first: ServerTimeoutError is also a ClientError
    if isinstance(error, asyncio.TimeoutError | aiohttp.ServerTimeoutError):
        return FailureCategory.TIMEOUT
    if isinstance(error, aiohttp.ClientResponseError):
        if 400 <= error.status < 500:
            return FailureCategory.CLIENT_ERROR
        if error.status >= 500:
            return FailureCategory.SERVER_ERROR
        return FailureCategory.UNKNOWN
    if isinstance(error, aiohttp.ClientError | OSError):
        return FailureCategory.NETWORK
    return FailureCategory.UNKNOWN


@dataclass
class CrawlStats:
    """Statistics for one crawl run."""

    total_pages: int = 0
    successful: int = 0
    failed: int = 0
    documents: int = 0
    failures: Counter[FailureCategory] = field(default_factory=Counter)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration(self) -> timedelta | None:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    def record_failure(self, category: FailureCategory) -> None:
        self.failed += 1
        self.failures[category] += 1

    def finish(self) -> None:
        self.end_time = datetime.now(UTC)


class Crawler:
    """Fetches entry points concurrently and turns each page into documents.

    A failing page is logged and contributes no documents; the crawl itself
    never raises for page-level problems.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        extractor: HtmlExtractor | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialise crawler.

        Args:
            settings: Timeout, concurrency and user agent. Defaults to Settings().
            extractor: Extractor applied to every fetched page.
            session: Existing client session. When omitted, a session is
                created and closed for every crawl.
        """
        self.settings = settings or Settings()
        self.extractor = extractor or HtmlExtractor()
        self._session = session

    async def crawl(self, entry_points: list[str], selectors: Selectors) -> list[Document]:
        """Crawl entry points and return every extracted document.

        Args:
            entry_points: Page URLs to fetch.
            selectors: Selector rules passed to the extractor.

        Returns:
            Documents in entry point order. Empty if every page failed.
        """
        documents, _ = await self.crawl_with_stats(entry_points, selectors)
        return documents

    async def crawl_with_stats(
        self, entry_points: list[str], selectors: Selectors
    ) -> tuple[list[Document], CrawlStats]:
        """Crawl entry points and report statistics alongside the documents.

        Args:
            entry_points: Page URLs to fetch.
            selectors: Selector rules passed to the extractor.

        Returns:
            Tuple of (documents, stats).
        """
        urls = list(dict.fromkeys(entry_points))
        stats = CrawlStats(total_pages=len(urls))
        semaphore = asyncio.Semaphore(self.settings.max_concurrency)

        logger.info("Starting crawl of %d pages (max %d concurrent)", len(urls), self.settings.max_concurrency)

        if self._session is not None:
            pages = await self._crawl_pages(self._session, urls, selectors, semaphore, stats)
        else:
            async with self._create_session() as session:
                pages = await self._crawl_pages(session, urls, selectors, semaphore, stats)

        documents = [doc for page in pages for doc in page]
        stats.documents = len(documents)
        stats.finish()

        failures = ", ".join(f"{category.value}={count}" for category, count in sorted(stats.failures.items()))
        logger.info(
            "Crawl completed: %d successful, %d failed, %d documents%s",
            stats.successful,
            stats.failed,
            stats.documents,
            f" ({failures})" if failures else "",
        )
        return documents, stats

    def _create_session(self) -> aiohttp.ClientSession:
        timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)
        connector = aiohttp.TCPConnector(limit=self.settings.max_concurrency)
        return aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers={"User-Agent": self.settings.user_agent},
        )

    async def _crawl_pages(
        self,
        session: aiohttp.ClientSession,
        urls: list[str],
        selectors: Selectors,
        semaphore: asyncio.Semaphore,
        stats: CrawlStats,
    ) -> list[list[Document]]:
        tasks = [self._crawl_page(session, url, selectors, semaphore, stats) for url in urls]
        return await asyncio.gather(*tasks)

    async def _crawl_page(
        self,
        session: aiohttp.ClientSession,
        url: str,
        selectors: Selectors,
        semaphore: asyncio.Semaphore,
        stats: CrawlStats,
    ) -> list[Document]:
        try:
            async with semaphore:
                html = await self._fetch_html(session, url)
            documents = self.extractor.extract(html, url, selectors)
        except Exception as e:
            category = classify_failure(e)
            stats.record_failure(category)
            logger.warning("Failed to crawl %s [%s]: %s", url, category.value, str(e) or type(e).__name__)
            return []

        stats.successful += 1
        if not documents:
            logger.debug("No content matched on %s", url)
        return documents

    async def _fetch_html(self, session: aiohttp.ClientSession, url: str) -> str:
        """Fetch a page body.

        Args:
            session: Client session to use.
            url: Page URL.

        Returns:
            Decoded response body. Undecodable bytes become U+FFFD.

        Raises:
            aiohttp.ClientResponseError: For non-2xx responses.
        """
        logger.debug("Fetching %s", url)
        timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)
        async with session.get(url, timeout=timeout, allow_redirects=True) as response:
            response.raise_for_status()
            return await response.text(errors="replace")


def crawl_sync(entry_points: list[str], selectors: Selectors, settings: Settings | None = None) -> list[Document]:
    """Synchronous wrapper around Crawler.crawl.

    Args:
        entry_points: Page URLs to fetch.
        selectors: Selector rules passed to the extractor.
        settings: Crawler settings.

    Returns:
        Extracted documents.
    """
    return asyncio.run(Crawler(settings).crawl(entry_points, selectors))
