#!/usr/bin/env python3
"""Common error types shared across modules.

Provides the pipeline's exception taxonomy in one place to avoid circular imports.
"""

from typing import Dict, Any, Optional


class FeedReaderError(Exception):
    """Base class for all pipeline errors."""


class FeedFormatError(FeedReaderError):
    """Raised when feed bytes cannot be parsed as RSS or Atom."""


class FetchError(FeedReaderError):
    """Raised on network failures, timeouts and non-2xx responses.

    Attributes:
        url: The URL that failed.
        status: HTTP status code when a response was received.
    """

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status = status


class ExtractionError(FeedReaderError):
    """Raised when main-content extraction fails for a fetched page."""


class ContentTooLargeError(FeedReaderError):
    """Raised when content exceeds the summarizer's hard ceiling."""

    def __init__(self, length: int, limit: int):
        super().__init__(f"Content of {length} characters exceeds the {limit} character limit")
        self.length = length
        self.limit = limit


class SummaryFormatError(FeedReaderError):
    """Raised when a completion cannot be read as a (title, summary) pair."""


class NotFoundError(FeedReaderError):
    """Raised when a referenced article does not exist."""


class UnknownStatusError(FeedReaderError):
    """Raised when a read status name is not recognized."""


class StoreError(FeedReaderError):
    """Raised when a store operation fails."""


class ContentFilterError(FeedReaderError):
    """Raised when Azure OpenAI content filtering blocks a response.

    Attributes:
        details: Optional provider-specific payload for diagnostics.
    """

    def __init__(self, message: str = "Content filtered by Azure OpenAI", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


__all__ = [
    "FeedReaderError",
    "FeedFormatError",
    "FetchError",
    "ExtractionError",
    "ContentTooLargeError",
    "SummaryFormatError",
    "NotFoundError",
    "UnknownStatusError",
    "StoreError",
    "ContentFilterError",
]
