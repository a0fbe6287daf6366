#!/usr/bin/env python3
"""
Content-addressed article summarization.

Summaries are keyed by a hash of the article title and content, so identical
requests are served from the store without another model call. Long content is
routed to a larger-context deployment and truncated to that tier's budget;
content beyond the hard ceiling is rejected before any request is made.
"""

from dataclasses import dataclass
from hashlib import blake2b
from json import loads, JSONDecodeError
from typing import Any, Dict, Optional
import re

import yaml

from config import config, get_logger
from errors import ContentTooLargeError, SummaryFormatError
from llm_client import chat_completion, is_configured
from models import DatabaseQueue, Summary
from telemetry import trace_span
from utils import RateLimiter

logger = get_logger("summarizer")

SUMMARY_PREFIX = "summary:"
PROMPT_KEY = "article_summary"

DEFAULT_ARTICLE_PROMPT = (
    "Provide a concise summary of the following article in JSON format. The JSON should have keys "
    "'title' (rephrased from the original for brevity) and 'summary' (condensed from the original text, "
    "maintaining the tone and style of the original author). Ensure the summary includes all relevant "
    "context so that someone unfamiliar with the topic can understand."
)

CODE_FENCE_PATTERN = re.compile(r'^```(?:json)?\s*(.*?)\s*```$', re.DOTALL | re.IGNORECASE)
JSON_OBJECT_PATTERN = re.compile(r'\{.*\}', re.DOTALL)


def load_prompts() -> Dict[str, str]:
    """Load prompts from prompt.yaml configuration file."""
    try:
        with open(config.PROMPT_CONFIG_PATH, 'r', encoding='utf-8') as f:
            prompts = yaml.safe_load(f)
        return prompts if isinstance(prompts, dict) else {}
    except FileNotFoundError:
        logger.error(f"Prompt configuration file not found at {config.PROMPT_CONFIG_PATH}")
        return {}
    except PermissionError:
        logger.error(f"No permission to read prompt configuration file at {config.PROMPT_CONFIG_PATH}")
        return {}
    except yaml.YAMLError as e:
        logger.error(f"Invalid YAML in prompt configuration file: {e}")
        return {}
    except OSError as e:
        logger.error(f"OS error reading prompt configuration file: {e}")
        return {}


def summary_key(title: str, content: str) -> str:
    """Store key for a summary: a 128-bit blake2b digest of title followed by content."""
    digest = blake2b(f"{title}{content}".encode('utf-8'), digest_size=16).hexdigest()
    return f"{SUMMARY_PREFIX}{digest}"


@dataclass(frozen=True)
class SummaryTier:
    name: str
    deployment: Optional[str]
    char_budget: int


def select_tier(content: str) -> SummaryTier:
    """Pick the model tier for a piece of content.

    Raises:
        ContentTooLargeError: when content exceeds SUMMARY_MAX_CONTENT_CHARS.
    """
    length = len(content)
    if length > config.SUMMARY_MAX_CONTENT_CHARS:
        raise ContentTooLargeError(length, config.SUMMARY_MAX_CONTENT_CHARS)
    if length <= config.SUMMARY_SMALL_CHAR_BUDGET:
        return SummaryTier("small", config.DEPLOYMENT_NAME, config.SUMMARY_SMALL_CHAR_BUDGET)
    return SummaryTier("large", config.LARGE_DEPLOYMENT_NAME, config.SUMMARY_LARGE_CHAR_BUDGET)


def truncate(content: str, budget: int) -> str:
    return content if len(content) <= budget else content[:budget]


def parse_summary_response(raw: Optional[str]) -> Summary:
    """Read a completion as a {title, summary} JSON object, tolerating a Markdown code fence.

    Raises:
        SummaryFormatError: when the completion is empty or not such an object.
    """
    if not raw or not raw.strip():
        raise SummaryFormatError("Empty completion")
    text = raw.strip()
    fenced = CODE_FENCE_PATTERN.match(text)
    if fenced:
        text = fenced.group(1)
    if not text.startswith('{'):
        # Try to extract just the JSON object if it's embedded in other text
        match = JSON_OBJECT_PATTERN.search(text)
        if match:
            text = match.group(0)
    try:
        data: Any = loads(text)
    except JSONDecodeError as e:
        logger.debug(f"Problematic JSON was: {text}")
        raise SummaryFormatError(f"Completion is not valid JSON: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get('title'), str) or not isinstance(data.get('summary'), str):
        raise SummaryFormatError("Completion lacks string 'title' and 'summary' fields")
    return Summary(title=data['title'], summary=data['summary'])


class ArticleSummarizer:
    """Summarization cache in front of the Azure OpenAI client."""

    def __init__(self, db: DatabaseQueue, client: Optional[Any] = None,
                 requests_per_minute: Optional[int] = None):
        self.db = db
        self.client = client
        self.prompts: Dict[str, str] = load_prompts()
        rpm = config.SUMMARIZER_REQUESTS_PER_MINUTE if requests_per_minute is None else requests_per_minute
        self.rate_limiter = RateLimiter(rpm)

    @property
    def enabled(self) -> bool:
        """True when a client was injected or Azure OpenAI is configured."""
        return self.client is not None or is_configured()

    @property
    def system_prompt(self) -> str:
        prompt = self.prompts.get(PROMPT_KEY)
        if not prompt:
            logger.warning(f"No '{PROMPT_KEY}' prompt found in configuration; using built-in prompt")
            return DEFAULT_ARTICLE_PROMPT
        return prompt

    @trace_span(
        "summarizer.summarize",
        tracer_name="summarizer",
        attr_from_args=lambda self, title, content: {"content.length": len(content or "")},
    )
    async def summarize(self, title: str, content: str) -> Summary:
        """Return the cached summary for (title, content), generating it on a miss.

        Raises:
            ContentTooLargeError: content beyond the hard ceiling (no request made).
            SummaryFormatError: the completion could not be read (nothing cached).
            ContentFilterError: the provider blocked the request.
        """
        key = summary_key(title, content)
        cached = await self.db.get(key)
        if cached:
            logger.debug(f"Summary cache hit for {key}")
            return Summary.from_dict(cached)

        tier = select_tier(content)
        text = truncate(content, tier.char_budget)
        if len(text) < len(content):
            logger.info(f"Truncated content from {len(content)} to {len(text)} characters ({tier.name} tier)")

        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": f"Original title: {title}\nOriginal text: {text}"},
        ]
        await self.rate_limiter.acquire()
        raw = await chat_completion(
            messages,
            purpose=f"article_summary[{tier.name}]",
            model=tier.deployment,
            max_tokens=config.SUMMARY_MAX_TOKENS,
            client_override=self.client,
        )
        summary = parse_summary_response(raw)
        await self.db.put(key, summary.to_dict())
        return summary
