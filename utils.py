#!/usr/bin/env python3
"""
Utility classes and functions for the feed processing system.

This module contains shared utilities used by the fetcher, scraper, channel
resolver and summarizer, including HTTP helpers, rate limiting and HTML
sanitization.
"""

from asyncio import Lock, sleep, get_event_loop, TimeoutError
from concurrent.futures import Executor
from functools import partial
from json import JSONDecodeError, loads
from time import time
from typing import Any, Optional
import re
from urllib.parse import urljoin, urlparse

from aiohttp import ClientError, ClientSession, ClientTimeout
from bs4 import BeautifulSoup
from markdownify import markdownify as md

from config import config, get_logger
from errors import FetchError

# Module-specific logger
logger = get_logger("utils")


class RateLimiter:
    """A simple rate limiter for controlling request rates.

    Ensures requests don't exceed a specified rate by introducing delays when necessary.
    """

    def __init__(self, requests_per_minute: int):
        """Initialize the rate limiter.

        Args:
            requests_per_minute: Maximum number of requests allowed per minute.
                                If 0 or negative, no rate limiting is applied.
        """
        self.requests_per_minute = requests_per_minute
        self.min_interval = 60.0 / requests_per_minute if requests_per_minute > 0 else 0
        self.last_request_time = 0
        self._lock = Lock()

    async def acquire(self):
        """Acquire permission to make a request, waiting if necessary to respect rate limits."""
        if self.min_interval <= 0:
            return

        async with self._lock:
            current_time = time()
            time_since_last = current_time - self.last_request_time

            if time_since_last < self.min_interval:
                wait_time = self.min_interval - time_since_last
                logger.debug(f"Rate limiting: waiting {wait_time:.2f} seconds")
                await sleep(wait_time)

            self.last_request_time = time()


def _format_client_error(error: ClientError) -> str:
    """Describe aiohttp client errors with any available status/errno."""
    parts = [error.__class__.__name__]
    os_error = getattr(error, 'os_error', None)
    if os_error is not None and getattr(os_error, 'errno', None) is not None:
        parts.append(f"errno={os_error.errno}")
    message = str(error)
    if message:
        parts.append(message)
    return " ".join(parts)


async def fetch_bytes(session: ClientSession, url: str, headers: Optional[dict] = None) -> bytes:
    """GET a URL and return the response body.

    Raises:
        FetchError: on network errors, timeouts and non-2xx responses.
    """
    request_headers = {'User-Agent': config.USER_AGENT}
    if headers:
        request_headers.update(headers)
    try:
        async with session.get(
            url,
            headers=request_headers,
            timeout=ClientTimeout(total=config.HTTP_TIMEOUT),
            max_redirects=config.MAX_REDIRECTS,
        ) as response:
            if not 200 <= response.status < 300:
                raise FetchError(url, f"HTTP {response.status}", status=response.status)
            return await response.read()
    except TimeoutError as e:
        raise FetchError(url, f"Timed out after {config.HTTP_TIMEOUT}s") from e
    except ClientError as e:
        raise FetchError(url, _format_client_error(e)) from e
    except ValueError as e:
        # Malformed URLs surface as ValueError/InvalidURL from aiohttp/yarl
        raise FetchError(url, f"Invalid URL: {e}") from e


async def fetch_text(session: ClientSession, url: str, headers: Optional[dict] = None) -> str:
    """GET a URL and decode the body as text (UTF-8 with replacement)."""
    body = await fetch_bytes(session, url, headers=headers)
    return body.decode('utf-8', errors='replace')


async def fetch_json(session: ClientSession, url: str) -> Any:
    """GET a URL and decode the body as JSON.

    Raises:
        FetchError: when the request fails or the body is not valid JSON.
    """
    body = await fetch_bytes(session, url, headers={'Accept': 'application/json'})
    try:
        return loads(body)
    except (JSONDecodeError, UnicodeDecodeError) as e:
        raise FetchError(url, f"Invalid JSON response: {e}") from e


async def run_in_executor(executor: Optional[Executor], func, *args) -> Any:
    """Run a blocking function in a thread pool executor."""
    loop = get_event_loop()
    return await loop.run_in_executor(executor, partial(func, *args))


def base_url_of(url: str) -> str:
    """Return scheme://host for a URL, or the URL itself when it has no host."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if parsed.scheme and parsed.hostname:
        return f"{parsed.scheme}://{parsed.hostname}"
    return url


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string (e.g. "1h 23m 45s")."""
    if seconds < 0:
        return "0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")

    return " ".join(parts)


def clean_html_to_markdown(html_content: str, base_url: Optional[str] = None) -> str:
    """Sanitize HTML content and convert it to Markdown.

    Args:
        html_content: Raw HTML to sanitize
        base_url: Optional base URL used to resolve relative href/src values

    Behavior:
    - Removes dangerous elements (script/style/iframe/etc.)
    - Strips inline event handlers and javascript: URLs
    - Removes common tracking pixels
    - Resolves relative href/src to absolute URLs when ``base_url`` is provided; otherwise
      non-absolute references are neutralized (links -> ``#``, images removed)
    - Converts resulting HTML to Markdown with markdownify
    """
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, 'html.parser')

    for tag in soup([
        "script", "style", "iframe", "form", "object", "embed", "noscript",
        "frame", "frameset", "applet", "meta", "base", "link"
    ]):
        tag.decompose()

    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            if attr.lower().startswith('on'):
                del tag[attr]
            elif attr.lower() in ('href', 'src') and str(tag[attr]).lower().startswith('javascript:'):
                del tag[attr]

    # Tracking pixels / spacer images
    for img in soup.find_all('img'):
        src = img.get('src', '')
        if re.search(r'(pixel|tracker|counter|spacer|blank|trans)', src, re.I) or \
           (re.search(r'\.(gif|png)$', src, re.I) and (img.get('height') in ('0', '1'))):
            img.decompose()

    def _rewrite_url(value: str, attr: str) -> Optional[str]:
        if attr == 'href' and value.startswith('mailto:'):
            return value
        if value.startswith(('http://', 'https://')):
            return value
        if base_url:
            resolved = urljoin(base_url, value)
            if resolved.startswith(('http://', 'https://')):
                return resolved
        return None

    for tag in soup.find_all(['a', 'img']):
        for attr in ('href', 'src'):
            if not tag.has_attr(attr) or not str(tag[attr]):
                continue
            rewritten = _rewrite_url(str(tag[attr]), attr)
            if rewritten:
                tag[attr] = rewritten
            elif attr == 'href':
                tag[attr] = '#'
            else:
                del tag[attr]

    # wrap_width=0 keeps long URLs on one line
    return md(str(soup), heading_style="ATX", wrap_width=0).strip()
