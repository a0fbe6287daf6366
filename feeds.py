#!/usr/bin/env python3
"""
Feed document parsing.

Turns raw RSS/Atom bytes into normalized FeedEntry records using feedparser.
Parsing is CPU-bound, so callers run `parse_feed` in a thread pool executor.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

import feedparser

from config import get_logger
from errors import FeedFormatError
from models import EPOCH_RFC3339, FeedEntry

logger = get_logger("feeds")

# Safer parsing options for feedparser
FEEDPARSER_OPTIONS = {
    'sanitize_html': True,
    'resolve_relative_uris': True,
}


@dataclass
class ParsedFeed:
    """A parsed feed document: feed-level metadata plus its entries in document order."""

    title: str = ""
    link: str = ""
    version: str = ""
    entries: List[FeedEntry] = field(default_factory=list)


def _get(obj: Any, key: str) -> Any:
    """Fetch a feedparser field with dict access, tolerating plain dicts and None."""
    if obj is None:
        return None
    getter = getattr(obj, 'get', None)
    return getter(key) if callable(getter) else None


def _first_link(obj: Any) -> str:
    """First declared link href, falling back to the bare id.

    feedparser also lists enclosures under `links`; those are media, not the entry's link.
    """
    for link in _get(obj, 'links') or []:
        href = _get(link, 'href')
        if href and _get(link, 'rel') != 'enclosure':
            return str(href).strip()
    return str(_get(obj, 'id') or '').strip()


def _to_rfc3339(struct_time: Any) -> Optional[str]:
    """Convert a feedparser UTC struct_time into an RFC 3339 timestamp."""
    if not struct_time:
        return None
    try:
        return datetime(*tuple(struct_time)[:6], tzinfo=timezone.utc).isoformat()
    except (TypeError, ValueError, OverflowError):
        return None


def _published(entry: Any) -> str:
    for key in ('published_parsed', 'updated_parsed', 'created_parsed'):
        value = _to_rfc3339(_get(entry, key))
        if value:
            return value
    return EPOCH_RFC3339


def _is_image(item: Any) -> bool:
    mime = str(_get(item, 'type') or '')
    medium = str(_get(item, 'medium') or '')
    return mime.startswith('image/') or medium == 'image'


def _inline_image(entry: Any) -> Optional[str]:
    """Image carried by the entry itself: media thumbnail, media content or image enclosure."""
    for thumb in _get(entry, 'media_thumbnail') or []:
        url = _get(thumb, 'url')
        if url:
            return str(url)
    for media in _get(entry, 'media_content') or []:
        url = _get(media, 'url')
        if url and _is_image(media):
            return str(url)
    for enclosure in _get(entry, 'enclosures') or []:
        url = _get(enclosure, 'href') or _get(enclosure, 'url')
        if url and _is_image(enclosure):
            return str(url)
    return None


def _entry_from(raw: Any) -> Optional[FeedEntry]:
    link = _first_link(raw)
    if not link:
        return None
    return FeedEntry(
        link=link,
        title=str(_get(raw, 'title') or '').strip(),
        summary=str(_get(raw, 'summary') or ''),
        published=_published(raw),
        image=_inline_image(raw),
    )


def parse_feed(content: bytes) -> ParsedFeed:
    """Parse RSS or Atom bytes into a ParsedFeed.

    Entries with neither a link nor an id are skipped.

    Raises:
        FeedFormatError: when the bytes are not a recognizable feed.
    """
    parsed = feedparser.parse(content, **FEEDPARSER_OPTIONS)
    version = getattr(parsed, 'version', '') or ''
    raw_entries = parsed.get('entries') or []

    if not version and not raw_entries:
        reason = parsed.get('bozo_exception') or 'no feed format detected'
        raise FeedFormatError(f"Not a parseable feed: {reason}")

    if parsed.get('bozo') and parsed.get('bozo_exception'):
        logger.warning(f"Feed parsing warning ({version or 'unknown format'}): {parsed.bozo_exception}")

    entries = []
    for raw in raw_entries:
        entry = _entry_from(raw)
        if entry is None:
            logger.debug("Skipping feed entry without link or id")
            continue
        entries.append(entry)

    feed_meta = parsed.get('feed') or {}
    return ParsedFeed(
        title=str(_get(feed_meta, 'title') or '').strip(),
        link=_first_link(feed_meta),
        version=version,
        entries=entries,
    )
