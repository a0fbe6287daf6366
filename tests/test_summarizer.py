import json

import pytest

from config import config
from errors import ContentTooLargeError, SummaryFormatError
from summarizer import ArticleSummarizer, parse_summary_response, select_tier, summary_key


class FakeMessage:
    def __init__(self, content):
        self.content = content
        self.refusal = None


class FakeChoice:
    def __init__(self, content):
        self.message = FakeMessage(content)
        self.finish_reason = "stop"


class FakeResp:
    def __init__(self, content):
        self.choices = [FakeChoice(content)]


class RecordingClient:
    """Fake Azure OpenAI client returning a canned completion and recording requests."""

    def __init__(self, content):
        self.calls = []
        client = self

        class _Completions:
            @staticmethod
            async def create(**kwargs):
                client.calls.append(kwargs)
                return FakeResp(content)

        class _Chat:
            completions = _Completions

        self.chat = _Chat


SUMMARY_JSON = json.dumps({"title": "Short title", "summary": "Condensed body."})


def make_summarizer(db, content=SUMMARY_JSON):
    client = RecordingClient(content)
    return ArticleSummarizer(db, client=client, requests_per_minute=0), client


def test_summary_key_is_stable_and_content_addressed():
    key = summary_key("Title", "Body")
    assert key == summary_key("Title", "Body")
    assert key.startswith("summary:")
    assert len(key) == len("summary:") + 32
    assert key != summary_key("Title", "Other body")


@pytest.mark.asyncio
async def test_identical_requests_make_one_call(db):
    summarizer, client = make_summarizer(db)

    first = await summarizer.summarize("Original", "Some article text")
    second = await summarizer.summarize("Original", "Some article text")

    assert len(client.calls) == 1
    assert first == second
    assert first.title == "Short title"
    assert await db.get(summary_key("Original", "Some article text")) == {
        "title": "Short title",
        "summary": "Condensed body.",
    }


@pytest.mark.asyncio
async def test_request_shape(db):
    summarizer, client = make_summarizer(db)
    await summarizer.summarize("Original", "Text")

    call = client.calls[0]
    assert call["max_tokens"] == config.SUMMARY_MAX_TOKENS
    assert call["messages"][0]["role"] == "system"
    assert call["messages"][1]["content"] == "Original title: Original\nOriginal text: Text"


@pytest.mark.asyncio
async def test_long_content_uses_large_tier_truncated_to_budget(db, monkeypatch):
    monkeypatch.setattr(config, "SUMMARY_SMALL_CHAR_BUDGET", 10)
    monkeypatch.setattr(config, "SUMMARY_LARGE_CHAR_BUDGET", 20)
    monkeypatch.setattr(config, "SUMMARY_MAX_CONTENT_CHARS", 100)
    monkeypatch.setattr(config, "DEPLOYMENT_NAME", "small-model")
    monkeypatch.setattr(config, "LARGE_DEPLOYMENT_NAME", "large-model")
    summarizer, client = make_summarizer(db)

    await summarizer.summarize("T", "x" * 50)

    call = client.calls[0]
    assert call["model"] == "large-model"
    assert call["messages"][1]["content"] == "Original title: T\nOriginal text: " + "x" * 20


@pytest.mark.asyncio
async def test_short_content_uses_small_tier_untruncated(db, monkeypatch):
    monkeypatch.setattr(config, "SUMMARY_SMALL_CHAR_BUDGET", 10)
    monkeypatch.setattr(config, "DEPLOYMENT_NAME", "small-model")
    summarizer, client = make_summarizer(db)

    await summarizer.summarize("T", "y" * 10)

    assert client.calls[0]["model"] == "small-model"
    assert client.calls[0]["messages"][1]["content"].endswith("y" * 10)


@pytest.mark.asyncio
async def test_content_beyond_ceiling_is_rejected_without_call(db, monkeypatch):
    monkeypatch.setattr(config, "SUMMARY_MAX_CONTENT_CHARS", 100)
    summarizer, client = make_summarizer(db)

    with pytest.raises(ContentTooLargeError):
        await summarizer.summarize("T", "z" * 101)
    assert client.calls == []


def test_select_tier_boundaries(monkeypatch):
    monkeypatch.setattr(config, "SUMMARY_SMALL_CHAR_BUDGET", 10)
    monkeypatch.setattr(config, "SUMMARY_LARGE_CHAR_BUDGET", 20)
    monkeypatch.setattr(config, "SUMMARY_MAX_CONTENT_CHARS", 30)

    assert select_tier("a" * 10).name == "small"
    assert select_tier("a" * 11).name == "large"
    assert select_tier("a" * 30).name == "large"
    with pytest.raises(ContentTooLargeError):
        select_tier("a" * 31)


@pytest.mark.asyncio
async def test_unparseable_completion_is_not_cached(db):
    summarizer, client = make_summarizer(db, content="Sorry, I cannot help with that.")

    with pytest.raises(SummaryFormatError):
        await summarizer.summarize("T", "Body")
    assert await db.scan_prefix("summary:") == []

    with pytest.raises(SummaryFormatError):
        await summarizer.summarize("T", "Body")
    assert len(client.calls) == 2


def test_parse_summary_response_accepts_code_fence():
    raw = '```json\n{"title": "A", "summary": "B"}\n```'
    summary = parse_summary_response(raw)
    assert (summary.title, summary.summary) == ("A", "B")


@pytest.mark.parametrize("raw", [None, "", "[1, 2]", '{"title": "A"}', '{"title": 1, "summary": "B"}'])
def test_parse_summary_response_rejects_bad_shapes(raw):
    with pytest.raises(SummaryFormatError):
        parse_summary_response(raw)
