#!/usr/bin/env python3
"""
Content scraping for article pages.

Each candidate URL is classified and handed to an extraction strategy:

- GenericPageExtractor fetches the page, takes the first <img> as the
  representative image and runs readability to extract the main content.
- VideoPlatformExtractor resolves YouTube links through the Piped API,
  using the video thumbnail as image and the subtitle track as content.

Every step degrades independently: results are tagged Outcome values so the
caller can tell which tier produced them.
"""

from abc import ABC, abstractmethod
from concurrent.futures import Executor
from dataclasses import dataclass
from html import unescape
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urljoin, urlparse

from aiohttp import ClientSession
from bs4 import BeautifulSoup
from lxml.etree import ParserError
from readability import Document
from readability.readability import Unparseable

from config import config, get_logger
from errors import ExtractionError, FetchError
from models import Outcome
from telemetry import trace_span
from utils import clean_html_to_markdown, fetch_json, fetch_text, run_in_executor

logger = get_logger("scraper")

VIDEO_HOSTS = {"youtube.com", "youtu.be"}

PAGE = "page"
VIDEO = "video"


@dataclass(frozen=True)
class ScrapeResult:
    """Image and main content scraped for one URL."""

    image: Outcome
    content: Outcome


def _host(url: str) -> str:
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    for prefix in ("www.", "m."):
        if host.startswith(prefix):
            return host[len(prefix):]
    return host


def classify_url(url: str) -> str:
    """Return VIDEO for recognized video hosts, PAGE otherwise."""
    return VIDEO if _host(url) in VIDEO_HOSTS else PAGE


def video_id(url: str) -> Optional[str]:
    """Extract the video id from watch, short-link, shorts and embed URLs."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = _host(url)
    segments = [s for s in parsed.path.split("/") if s]
    if host == "youtu.be":
        return segments[0] if segments else None
    if host == "youtube.com":
        if segments[:1] == ["watch"]:
            return (parse_qs(parsed.query).get("v") or [None])[0]
        if len(segments) >= 2 and segments[0] in ("shorts", "embed", "v", "live"):
            return segments[1]
    return None


def select_subtitle_track(subtitles: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """First manually authored track, else the first auto-generated one."""
    tracks = [t for t in subtitles or [] if isinstance(t, dict) and t.get("url")]
    for track in tracks:
        if not track.get("autoGenerated"):
            return track
    return tracks[0] if tracks else None


def subtitle_text(document: str) -> str:
    """Plain text of a subtitle document: text runs of every <p>, joined by single spaces."""
    soup = BeautifulSoup(document, "html.parser")
    runs = []
    for paragraph in soup.find_all("p"):
        for text in paragraph.find_all(string=True):
            # Caption payloads are often entity-encoded twice
            cleaned = " ".join(unescape(str(text)).split())
            if cleaned:
                runs.append(cleaned)
    return " ".join(runs)


def parse_page(html_content: str, url: str) -> Tuple[Outcome, Outcome]:
    """Extract (image, content) from page HTML. CPU-bound; runs in the executor."""
    soup = BeautifulSoup(html_content, "html.parser")
    img = soup.find("img")
    src = img.get("src") if img else None
    image = Outcome.resolved(urljoin(url, src)) if src else Outcome.missing()

    try:
        content = Outcome.resolved(extract_main_content(html_content, url))
    except ExtractionError as e:
        logger.warning(f"Main content extraction failed for {url}: {e}")
        content = Outcome.missing()
    return image, content


def extract_main_content(html_content: str, url: str) -> str:
    """Readability main-content extraction converted to Markdown.

    Raises:
        ExtractionError: when readability cannot find any content.
    """
    try:
        summary_html = Document(html_content).summary()
    except (Unparseable, ParserError, ValueError, RuntimeError) as e:
        raise ExtractionError(f"readability failed: {e}") from e
    markdown = clean_html_to_markdown(summary_html, base_url=url)
    if not markdown:
        raise ExtractionError("readability returned no content")
    return markdown


class Extractor(ABC):
    """Strategy producing a ScrapeResult for one URL."""

    def __init__(self, session: ClientSession, executor: Optional[Executor] = None):
        self.session = session
        self.executor = executor

    @abstractmethod
    async def extract(self, url: str) -> ScrapeResult:
        """Scrape a URL. Raises FetchError when the primary document cannot be fetched."""


class GenericPageExtractor(Extractor):

    async def extract(self, url: str) -> ScrapeResult:
        html_content = await fetch_text(self.session, url)
        image, content = await run_in_executor(self.executor, parse_page, html_content, url)
        return ScrapeResult(image=image, content=content)


class VideoPlatformExtractor(Extractor):
    """YouTube videos via the Piped API: thumbnail as image, subtitles as content."""

    def __init__(self, session: ClientSession, executor: Optional[Executor] = None,
                 piped_instance: Optional[str] = None):
        super().__init__(session, executor)
        self.piped_instance = (piped_instance or config.PIPED_INSTANCE).rstrip("/")

    async def extract(self, url: str) -> ScrapeResult:
        vid = video_id(url)
        if not vid:
            raise FetchError(url, "Could not determine video id")

        streams = await fetch_json(self.session, f"{self.piped_instance}/streams/{vid}")
        if not isinstance(streams, dict):
            raise FetchError(url, "Unexpected stream metadata payload")

        thumbnail = streams.get("thumbnailUrl")
        image = Outcome.resolved(thumbnail) if thumbnail else Outcome.missing()
        content = await self._subtitle_content(vid, streams.get("subtitles") or [])
        return ScrapeResult(image=image, content=content)

    async def _subtitle_content(self, vid: str, subtitles: List[Dict[str, Any]]) -> Outcome:
        track = select_subtitle_track(subtitles)
        if track is None:
            logger.debug(f"No subtitle tracks for video {vid}")
            return Outcome.missing()
        try:
            document = await fetch_text(self.session, track["url"])
        except FetchError as e:
            logger.warning(f"Subtitle fetch failed for video {vid}: {e}")
            return Outcome.missing()
        text = await run_in_executor(self.executor, subtitle_text, document)
        return Outcome.resolved(text) if text else Outcome.missing()


class ContentScraper:
    """Select an extraction strategy by URL classification and run it."""

    def __init__(self, session: ClientSession, executor: Optional[Executor] = None):
        self.page_extractor = GenericPageExtractor(session, executor)
        self.video_extractor = VideoPlatformExtractor(session, executor)

    def extractor_for(self, url: str) -> Extractor:
        if classify_url(url) == VIDEO and video_id(url):
            return self.video_extractor
        return self.page_extractor

    @trace_span(
        "scraper.scrape",
        tracer_name="scraper",
        attr_from_args=lambda self, url: {"scrape.url": url, "scrape.kind": classify_url(url)},
    )
    async def scrape(self, url: str) -> ScrapeResult:
        """Scrape a URL.

        Raises:
            FetchError: when the page (or video metadata) cannot be fetched.
        """
        return await self.extractor_for(url).extract(url)
