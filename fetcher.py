#!/usr/bin/env python3
"""
Feed fetcher and article enrichment pipeline.

This module pulls each configured feed, skips entries that are already stored,
scrapes the remaining entries for an image and main content, summarizes the
content when a model is configured, and stores the result as an article. Channel
metadata is resolved once per source alongside entry processing.

Entries of one source are drained by a bounded worker pool; sources run with an
outer concurrency bound. A failing entry never affects its siblings and a
failing source never affects the others.
"""

from asyncio import Queue, QueueEmpty, Semaphore, create_task, gather, get_event_loop, wait_for, TimeoutError
from concurrent.futures import ThreadPoolExecutor
from time import time
from typing import List, Optional, Tuple

from aiohttp import ClientSession

from articles import is_known_article, store_article
from channels import ChannelResolver
from config import FeedSource, config, get_logger, select_sources
from errors import (
    ContentFilterError,
    ContentTooLargeError,
    FeedFormatError,
    FeedReaderError,
    FetchError,
    SummaryFormatError,
)
from feeds import ParsedFeed, parse_feed
from models import Article, DatabaseQueue, FeedEntry, FeedReport, Outcome, OutcomeKind, ReadStatus
from scraper import ContentScraper, ScrapeResult
from summarizer import ArticleSummarizer
from telemetry import trace_span
from utils import fetch_bytes, format_duration, run_in_executor

# Module-specific logger
logger = get_logger("fetcher")


def compose_article(source_url: str, entry: FeedEntry, scraped: ScrapeResult,
                    page_fetched: bool = True) -> Tuple[Article, Outcome]:
    """Build the article for an entry from scraped data, falling back to the feed entry.

    Image: page image, else the feed's inline image when the page was fetched, else empty.
    Summary: extracted content, else the feed summary, else empty.

    Returns the article and the content outcome it was built from.
    """
    image = scraped.image
    if image.is_missing and entry.image and page_fetched:
        image = Outcome.fallback(entry.image)

    content = scraped.content
    if content.is_missing and entry.summary:
        content = Outcome.fallback(entry.summary)

    article = Article(
        link=entry.link,
        channel=source_url,
        title=entry.title,
        published=entry.published,
        image=image.value_or(''),
        summary=content.value_or(''),
        read_status=ReadStatus.FRESH,
    )
    return article, content


class FeedFetcher:
    def __init__(
        self,
        db: Optional[DatabaseQueue] = None,
        summarizer: Optional[ArticleSummarizer] = None,
        entry_concurrency: Optional[int] = None,
        source_concurrency: Optional[int] = None,
    ) -> None:
        self.executor = ThreadPoolExecutor()
        self.db = db
        self._owns_db = db is None
        self.summarizer = summarizer
        self.entry_concurrency = entry_concurrency or config.ENTRY_CONCURRENCY
        self.source_concurrency = source_concurrency or config.SOURCE_CONCURRENCY

    async def initialize(self) -> None:
        """Open the database (unless one was injected) and set up the summarizer."""
        if self.db is None:
            self.db = DatabaseQueue(config.DATABASE_PATH)
            await self.db.start()
        if self.summarizer is None:
            summarizer = ArticleSummarizer(self.db)
            if summarizer.enabled:
                self.summarizer = summarizer
            else:
                logger.info("Azure OpenAI not configured; articles keep their scraped or feed summaries")
        logger.info("FeedFetcher initialized")

    @trace_span(
        "fetch_all_feeds",
        tracer_name="fetcher",
        attr_from_args=lambda self, only_slugs=None, session=None: {
            "feed.only_slugs": ",".join(only_slugs) if only_slugs else "",
        },
    )
    async def fetch_all_feeds(self, only_slugs: Optional[List[str]] = None,
                              session: Optional[ClientSession] = None) -> List[FeedReport]:
        """Run one pass over the configured sources.

        Args:
            only_slugs: If provided, only fetch these feed slugs.
            session: Optional client session; one is created for the pass otherwise.
        """
        sources = select_sources(only_slugs)
        logger.info(f"Starting feed fetching for {len(sources)} sources")
        start = time()
        if session is None:
            async with ClientSession() as own_session:
                reports = await self.fetch_sources(sources, own_session)
        else:
            reports = await self.fetch_sources(sources, session)

        total_new = sum(r.new for r in reports)
        total_failed = sum(r.failed for r in reports)
        logger.info(
            f"Feed fetching finished in {format_duration(time() - start)}: "
            f"{total_new} new articles, {total_failed} failed entries across {len(reports)} sources"
        )
        return reports

    async def fetch_sources(self, sources: List[FeedSource], session: ClientSession) -> List[FeedReport]:
        """Process sources concurrently under the outer concurrency bound."""
        semaphore = Semaphore(self.source_concurrency)

        async def fetch_with_semaphore(source: FeedSource) -> FeedReport:
            async with semaphore:
                return await self.fetch_feed(source, session)

        results = await gather(*(fetch_with_semaphore(s) for s in sources), return_exceptions=True)
        reports = []
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                logger.error(f"Unexpected failure processing {source.slug}: {result}")
                result = FeedReport(slug=source.slug, errors=[str(result)])
            reports.append(result)
        return reports

    @trace_span(
        "fetch_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, source, session: {"feed.slug": source.slug, "feed.url": source.rss_url},
    )
    async def fetch_feed(self, source: FeedSource, session: ClientSession) -> FeedReport:
        """One pass over a single source: fetch, resolve channel, process entries."""
        report = FeedReport(slug=source.slug)
        try:
            content = await fetch_bytes(session, source.rss_url)
            feed: ParsedFeed = await run_in_executor(self.executor, parse_feed, content)
        except (FetchError, FeedFormatError) as e:
            logger.error(f"Could not pull feed {source.slug}: {e}")
            report.errors.append(str(e))
            return report

        logger.info(f"Feed {source.slug} parsed as {feed.version or 'unknown'} format with {len(feed.entries)} entries")

        resolver = ChannelResolver(self.db, session, self.executor)
        try:
            await resolver.resolve(source, feed)
        except FeedReaderError as e:
            logger.warning(f"Channel resolution failed for {source.slug}: {e}")

        await self.process_entries(source, feed.entries, session, report)
        logger.info(f"{source.slug}: {report.new} new, {report.skipped} skipped, {report.failed} failed")
        return report

    @trace_span(
        "process_entries",
        tracer_name="fetcher",
        attr_from_args=lambda self, source, entries, session, report=None: {
            "feed.slug": source.slug,
            "feed.entries.count": len(entries) if entries else 0,
        },
    )
    async def process_entries(self, source: FeedSource, entries: List[FeedEntry], session: ClientSession,
                              report: Optional[FeedReport] = None) -> FeedReport:
        """Drain the entries with a pool of workers, containing each entry's failure."""
        report = report or FeedReport(slug=source.slug)
        if not entries:
            logger.warning(f"No entries found in feed {source.slug}")
            return report

        queue: Queue = Queue()
        for entry in entries:
            queue.put_nowait(entry)
        scraper = ContentScraper(session, self.executor)

        async def worker() -> None:
            while True:
                try:
                    entry = queue.get_nowait()
                except QueueEmpty:
                    return
                try:
                    if await self.process_entry(source, entry, scraper):
                        report.new += 1
                    else:
                        report.skipped += 1
                except Exception as e:
                    # Entry is not marked seen; the next pass retries it
                    report.failed += 1
                    report.errors.append(f"{entry.link}: {e}")
                    logger.error(f"Failed to process entry {entry.link} from {source.slug}: {e}")
                finally:
                    queue.task_done()

        workers = [create_task(worker()) for _ in range(min(self.entry_concurrency, len(entries)))]
        await gather(*workers)
        return report

    async def process_entry(self, source: FeedSource, entry: FeedEntry, scraper: ContentScraper) -> bool:
        """Enrich and store one entry. Returns False when the entry was already stored."""
        if await is_known_article(self.db, entry.link):
            return False

        page_fetched = True
        try:
            scraped = await scraper.scrape(entry.link)
        except FetchError as e:
            logger.warning(f"Page fetch failed for {entry.link}; using feed title and summary: {e}")
            scraped = ScrapeResult(image=Outcome.missing(), content=Outcome.missing())
            page_fetched = False

        article, content = compose_article(source.rss_url, entry, scraped, page_fetched)
        logger.debug(f"{entry.link}: image={scraped.image.kind.value} content={content.kind.value}")

        # Only scraped text is summarized; feed fallbacks are stored as-is
        if self.summarizer is not None and content.kind is OutcomeKind.RESOLVED and content.value.strip():
            await self._apply_summary(article, content.value)

        await store_article(self.db, article)
        return True

    async def _apply_summary(self, article: Article, text: str) -> None:
        try:
            summary = await self.summarizer.summarize(article.title, text)
        except (ContentTooLargeError, SummaryFormatError, ContentFilterError) as e:
            logger.warning(f"Keeping unsummarized text for {article.link}: {e}")
            return
        article.title = summary.title
        article.summary = summary.summary

    async def close(self) -> None:
        """Close connections and clean up resources."""
        if self.db and self._owns_db:
            await self.db.stop()
        if self.executor:
            logger.info("Shutting down thread pool executor...")
            try:
                await wait_for(
                    get_event_loop().run_in_executor(
                        None, lambda: self.executor.shutdown(wait=True)
                    ),
                    timeout=30.0
                )
            except TimeoutError:
                logger.warning("Thread pool executor shutdown timed out after 30 seconds")
                self.executor.shutdown(wait=False)
        logger.info("FeedFetcher closed")
