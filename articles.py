#!/usr/bin/env python3
"""
Article records in the store: dedup gate, listing and the read-status state machine.

Articles live under `article:<canonical-link>`; channels under
`channel:<feed-url>`. Both are written through the shared DatabaseQueue.
"""

from typing import Any, Dict, List, Optional, Tuple

from config import get_logger
from errors import FeedReaderError, NotFoundError, UnknownStatusError
from models import Article, Channel, DatabaseQueue, ReadStatus
from telemetry import trace_span

logger = get_logger("articles")

ARTICLE_PREFIX = "article:"
CHANNEL_PREFIX = "channel:"


def article_key(link: str) -> str:
    return f"{ARTICLE_PREFIX}{link}"


def channel_key(rss_url: str) -> str:
    return f"{CHANNEL_PREFIX}{rss_url}"


async def is_known_article(db: DatabaseQueue, link: str) -> bool:
    """Dedup gate: True when an article is already stored for this canonical link."""
    return await db.contains(article_key(link))


async def store_article(db: DatabaseQueue, article: Article) -> None:
    logger.debug(f"Storing article {article.link}")
    await db.put(article_key(article.link), article.to_dict())


async def load_article(db: DatabaseQueue, link: str) -> Optional[Article]:
    data = await db.get(article_key(link))
    return Article.from_dict(data) if data else None


async def load_channel(db: DatabaseQueue, rss_url: str) -> Optional[Channel]:
    data = await db.get(channel_key(rss_url))
    return Channel.from_dict(data) if data else None


async def store_channel(db: DatabaseQueue, channel: Channel) -> None:
    await db.put(channel_key(channel.rss_url), channel.to_dict())


async def list_articles(db: DatabaseQueue) -> List[Dict[str, Any]]:
    """Return every stored article joined with its channel record.

    Articles whose channel record is missing are left out.
    """
    channels: Dict[str, Dict[str, Any]] = {
        key[len(CHANNEL_PREFIX):]: value
        for key, value in await db.scan_prefix(CHANNEL_PREFIX)
    }
    results = []
    for _, value in await db.scan_prefix(ARTICLE_PREFIX):
        try:
            article = Article.from_dict(value)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping malformed article record: {e}")
            continue
        channel = channels.get(article.channel)
        if channel is None:
            continue
        joined = article.to_dict()
        joined['channel'] = Channel.from_dict(channel).to_dict()
        results.append(joined)
    logger.info(f"Found {len(results)} articles")
    return results


def parse_read_status(name: str) -> ReadStatus:
    """Map a status name (`Fresh`, `Saved`, `Archived`) to ReadStatus."""
    try:
        return ReadStatus(name)
    except ValueError:
        raise UnknownStatusError(f"'{name}' is not a valid read status") from None


@trace_span(
    "articles.set_read_status",
    tracer_name="articles",
    attr_from_args=lambda db, link, status_name: {"article.status": status_name},
)
async def set_read_status(db: DatabaseQueue, link: str, status_name: str) -> Article:
    """Move an article to another read status.

    Any state may move to any named state. The article lookup happens before
    the status name is checked; neither failure writes anything.

    Raises:
        NotFoundError: no article is stored for the link.
        UnknownStatusError: the status name is not recognized.
    """
    article = await load_article(db, link)
    if article is None:
        raise NotFoundError(f"Article not found: {link}")
    article.read_status = parse_read_status(status_name)
    await store_article(db, article)
    logger.info(f"Article {link} moved to {article.read_status.value}")
    return article


async def update_article_status(
    db: DatabaseQueue, link: str, status_name: str
) -> Tuple[Dict[str, str], Optional[FeedReaderError]]:
    """Apply a status transition and report it as a {status, message} envelope.

    Returns the envelope together with the error that caused a failure (or None),
    so callers can map the failure kind onto their own status codes.
    """
    try:
        await set_read_status(db, link, status_name)
    except NotFoundError as e:
        return {"status": "error", "message": f"Failed to get article from database: {e}"}, e
    except UnknownStatusError as e:
        return {"status": "error", "message": f"Failed to convert new status to ReadStatus: {e}"}, e
    return {"status": "success", "message": "Article status updated successfully"}, None


async def count_by_status(db: DatabaseQueue) -> Dict[str, int]:
    """Distribution of stored articles across read statuses."""
    counts = {status.value: 0 for status in ReadStatus}
    for _, value in await db.scan_prefix(ARTICLE_PREFIX):
        status = value.get('read_status', ReadStatus.FRESH.value)
        counts[status] = counts.get(status, 0) + 1
    return counts
