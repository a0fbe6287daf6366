#!/usr/bin/env python3
"""Async Azure OpenAI helper providing `chat_completion` with retry, content filter handling
and normalized content extraction. Returns `None` on exhausted retries or non-filter failures."""
from __future__ import annotations
from typing import List, Dict, Any, Optional
from asyncio import sleep

from openai import AsyncAzureOpenAI, OpenAIError

from config import config, get_logger
from errors import ContentFilterError

logger = get_logger("llm_client")

_client: Any = None


def is_configured() -> bool:
    """True when enough Azure OpenAI settings are present to build a client."""
    return bool(config.OPENAI_API_KEY and config.AZURE_ENDPOINT and config.OPENAI_API_VERSION and config.DEPLOYMENT_NAME)


def _get_client() -> Optional[Any]:
    """Instantiate and cache the Azure OpenAI async client if configuration is present."""
    global _client
    if _client is not None:
        return _client
    if not is_configured():
        logger.debug("Missing Azure OpenAI config; client will not initialize")
        return None
    endpoint = (
        f"https://{config.AZURE_ENDPOINT}" if not str(config.AZURE_ENDPOINT).startswith("http") else config.AZURE_ENDPOINT
    )
    _client = AsyncAzureOpenAI(
        api_key=config.OPENAI_API_KEY,
        api_version=config.OPENAI_API_VERSION,
        azure_endpoint=endpoint,
    )
    return _client


def _content_filter_details(error: Exception) -> Optional[Dict[str, Any]]:
    """Return the provider error object when the error is a content-filter block."""
    body = getattr(error, "body", {}) or {}
    error_obj = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error_obj, dict):
        return None
    inner = error_obj.get("innererror")
    inner_code = inner.get("code") if isinstance(inner, dict) else None
    if error_obj.get("code") == "content_filter" or inner_code == "ResponsibleAIPolicyViolation":
        return error_obj
    return None


def _extract_text(choice: Any) -> str:
    message = getattr(choice, "message", {}) or {}
    if isinstance(message, dict) and message.get("refusal"):
        return ""
    content = getattr(message, "content", None) if not isinstance(message, dict) else message.get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        texts: List[str] = []
        for part in content:
            if isinstance(part, dict):
                txt = part.get("text")
                if isinstance(txt, str) and txt.strip():
                    texts.append(txt.strip())
        return "\n".join(texts).strip()
    return ""


async def chat_completion(
    messages: List[Dict[str, str]] = None,
    *,
    purpose: str = "generic",
    model: Optional[str] = None,
    max_tokens: Optional[int] = None,
    retries: Optional[int] = None,
    client_override: Optional[Any] = None,
) -> Optional[str]:
    """Execute an Azure OpenAI chat completion. Raises `ContentFilterError` on policy violations."""
    if messages is None:
        logger.error("chat_completion called without messages list")
        return None

    client = client_override or _get_client()
    if client is None:
        logger.warning("Azure OpenAI client unavailable; skipping %s", purpose)
        return None

    remaining = retries if retries is not None else config.SUMMARIZER_MAX_RETRIES
    attempt = 0
    params: Dict[str, Any] = {
        "model": model or config.DEPLOYMENT_NAME,
        "messages": messages,
    }
    if max_tokens:
        params["max_tokens"] = max_tokens

    while attempt <= remaining:
        try:
            resp = await client.chat.completions.create(**params)
            choices = getattr(resp, "choices", None) or []
            if not choices:
                logger.error("No choices in %s response: %s", purpose, resp)
                return None
            fragments: List[str] = []
            refusal_detected = False
            for ch in choices:
                msg_obj = getattr(ch, "message", {}) or {}
                refusal_flag = msg_obj.get("refusal") if isinstance(msg_obj, dict) else getattr(msg_obj, "refusal", None)
                if refusal_flag:
                    refusal_detected = True
                    logger.warning("Refusal detected in %s response: %s", purpose, refusal_flag)
                txt = _extract_text(ch)
                if txt:
                    fragments.append(txt)
            if refusal_detected and not fragments:
                logger.warning("All choices refused for %s; returning None", purpose)
                return None
            raw = "\n".join(fragments).strip()
            if not raw:
                finish_reasons = {getattr(c, "finish_reason", None) for c in choices}
                logger.error("Empty content in %s response (finish_reasons=%s)", purpose, finish_reasons)
                return None
            return raw
        except Exception as e:
            details = _content_filter_details(e)
            if details is not None:
                raise ContentFilterError(message=details.get("message", "Content filtered"), details=details)
            attempt += 1
            kind = "transient OpenAI error" if isinstance(e, OpenAIError) else "unexpected error"
            if attempt > remaining:
                logger.error("%s request failed after %d retries (%s): %s", purpose, remaining, kind, e)
                return None
            delay = config.SUMMARIZER_RETRY_DELAY_BASE * (2 ** (attempt - 1))
            logger.warning("%s %s: %s. Backoff %ss (attempt %d/%d)", purpose, kind, e, delay, attempt, remaining)
            await sleep(delay)

    return None


__all__ = ["chat_completion", "is_configured"]
