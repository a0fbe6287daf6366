#!/usr/bin/env python3
"""
Channel metadata resolution.

A channel is the display identity of a feed source: title, icon and a
representative color. Configured values win, stored values fill the gaps, and
only when a field is still missing is the feed (and its site) fetched to
derive it. The dominant color is computed from the icon bitmap with Pillow.
"""

from concurrent.futures import Executor
from io import BytesIO
from typing import Dict, Optional, Tuple
from urllib.parse import urljoin

from aiohttp import ClientSession
from bs4 import BeautifulSoup
from PIL import Image, UnidentifiedImageError

from articles import load_channel, store_channel
from config import FeedSource, config, get_logger
from errors import FetchError
from feeds import ParsedFeed, parse_feed
from models import Channel, DatabaseQueue, Outcome
from telemetry import trace_span
from utils import base_url_of, fetch_bytes, fetch_json, fetch_text, run_in_executor

logger = get_logger("channels")

DEFAULT_COLOR = "#000000"


def dominant_color(data: bytes) -> str:
    """Most frequent opaque, non-white RGB color of an image as #rrggbb.

    Ties go to the color encountered first. Returns #000000 when the bytes
    cannot be decoded or no pixel qualifies.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            rgba = img.convert('RGBA')
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.debug(f"Could not decode icon image: {e}")
        return DEFAULT_COLOR

    counts: Dict[Tuple[int, int, int], int] = {}
    pixels = rgba.tobytes()
    for i in range(0, len(pixels), 4):
        r, g, b, a = pixels[i], pixels[i + 1], pixels[i + 2], pixels[i + 3]
        if a == 0 or (r == 255 and g == 255 and b == 255):
            continue
        color = (r, g, b)
        counts[color] = counts.get(color, 0) + 1

    if not counts:
        return DEFAULT_COLOR
    # max() keeps the first maximal key, i.e. the first color encountered
    r, g, b = max(counts, key=counts.get)
    return f"#{r:02x}{g:02x}{b:02x}"


def find_favicon(html_content: Optional[str], base_url: str) -> Outcome:
    """Icon declared by the page, else the conventional /favicon.ico."""
    if html_content:
        soup = BeautifulSoup(html_content, 'html.parser')
        candidates = []
        for link in soup.find_all('link', href=True):
            rel = [r.lower() for r in (link.get('rel') or [])]
            if 'icon' in rel and 'shortcut' in rel:
                candidates.insert(0, link)
            elif any('icon' in r for r in rel):
                candidates.append(link)
        if candidates:
            return Outcome.resolved(urljoin(base_url, candidates[0]['href']))
    return Outcome.fallback(urljoin(base_url, '/favicon.ico'))


def page_title(html_content: Optional[str]) -> Optional[str]:
    if not html_content:
        return None
    soup = BeautifulSoup(html_content, 'html.parser')
    if soup.title and soup.title.string:
        title = soup.title.string.strip()
        return title or None
    return None


def video_channel_id(rss_url: str) -> str:
    """Channel id of a YouTube feed URL (`...feeds/videos.xml?channel_id=<id>`)."""
    return rss_url.split('=')[-1]


class ChannelResolver:
    """Resolve and persist channel records for feed sources."""

    def __init__(self, db: DatabaseQueue, session: ClientSession,
                 executor: Optional[Executor] = None, piped_instance: Optional[str] = None):
        self.db = db
        self.session = session
        self.executor = executor
        self.piped_instance = (piped_instance or config.PIPED_INSTANCE).rstrip('/')

    async def known_channel(self, source: FeedSource) -> Channel:
        """Configured values completed by the stored record."""
        stored = await load_channel(self.db, source.rss_url) or Channel(rss_url=source.rss_url)
        return Channel(
            rss_url=source.rss_url,
            title=source.title or stored.title,
            icon=source.icon or stored.icon,
            dominant_color=source.dominant_color or stored.dominant_color,
            category=source.category or stored.category,
        )

    @trace_span(
        "channels.resolve",
        tracer_name="channels",
        attr_from_args=lambda self, source, feed=None: {"feed.slug": source.slug},
    )
    async def resolve(self, source: FeedSource, feed: Optional[ParsedFeed] = None) -> Channel:
        """Return a complete channel record for a source, persisting it.

        `feed` is the already parsed feed document when the caller has one;
        otherwise it is fetched here when resolution needs it.

        Raises:
            FetchError, FeedFormatError: the feed itself could not be fetched or parsed.
        """
        channel = await self.known_channel(source)
        if channel.is_complete:
            await store_channel(self.db, channel)
            return channel

        logger.info(f"Resolving channel metadata for {source.slug}")
        if feed is None:
            content = await fetch_bytes(self.session, source.rss_url)
            feed = await run_in_executor(self.executor, parse_feed, content)

        base_url = base_url_of(feed.link or source.rss_url)
        is_video = 'youtube.com' in base_url

        try:
            html_content = await fetch_text(self.session, base_url)
        except FetchError as e:
            logger.warning(f"Could not fetch site page for {source.slug}: {e}")
            html_content = None

        if not channel.title:
            if is_video and feed.title:
                channel.title = feed.title
            else:
                channel.title = page_title(html_content) or feed.title

        if not channel.icon:
            icon = find_favicon(html_content, base_url)
            logger.debug(f"Icon for {source.slug} ({icon.kind.value}): {icon.value}")
            channel.icon = icon.value_or('')

        if is_video:
            await self._apply_video_channel(source, channel)

        if not channel.dominant_color:
            channel.dominant_color = await self.icon_color(channel.icon)

        await store_channel(self.db, channel)
        logger.info(f"Channel for {source.slug}: {channel.title} ({channel.dominant_color})")
        return channel

    async def _apply_video_channel(self, source: FeedSource, channel: Channel) -> None:
        """Fill title and icon not supplied by configuration from the Piped channel API."""
        if source.title and source.icon:
            return
        channel_id = video_channel_id(source.rss_url)
        try:
            data = await fetch_json(self.session, f"{self.piped_instance}/channel/{channel_id}")
        except FetchError as e:
            logger.warning(f"Piped channel lookup failed for {source.slug}: {e}")
            return
        if not isinstance(data, dict):
            return
        if not source.title and data.get('name'):
            channel.title = data['name']
        if not source.icon and data.get('avatarUrl'):
            channel.icon = data['avatarUrl']

    async def icon_color(self, icon_url: str) -> str:
        if not icon_url:
            return DEFAULT_COLOR
        try:
            data = await fetch_bytes(self.session, icon_url)
        except FetchError as e:
            logger.warning(f"Could not fetch icon {icon_url}: {e}")
            return DEFAULT_COLOR
        return await run_in_executor(self.executor, dominant_color, data)
