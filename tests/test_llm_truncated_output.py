import pytest
from llm_client import chat_completion


class FakeChoice:
    def __init__(self, content, finish_reason="stop"):
        class Msg:
            pass
        self.message = Msg()
        self.message.content = content
        self.finish_reason = finish_reason


class FakeResp:
    def __init__(self, choices):
        self.choices = choices


def make_client(resp, calls):
    class FakeClient:
        class chat:
            class completions:
                @staticmethod
                async def create(**kwargs):  # type: ignore
                    calls.append(kwargs)
                    return resp
    return FakeClient()


@pytest.mark.asyncio
async def test_truncated_empty_content_returns_none():
    # List-of-parts content with only empty non-text parts, cut off by the token limit
    resp = FakeResp([FakeChoice([{"type": "reasoning", "text": ""}, {"type": "metadata", "text": ""}], "length")])
    result = await chat_completion(
        messages=[{"role": "user", "content": "Test truncated scenario"}],
        purpose="article_summary",
        retries=0,
        client_override=make_client(resp, []),
    )
    assert result is None


@pytest.mark.asyncio
async def test_text_parts_are_joined_and_params_forwarded():
    calls = []
    resp = FakeResp([FakeChoice([{"type": "text", "text": " {\"title\": "}, {"type": "text", "text": "\"A\"} "}])])
    result = await chat_completion(
        messages=[{"role": "user", "content": "Hello"}],
        purpose="article_summary",
        model="large-deployment",
        max_tokens=512,
        retries=0,
        client_override=make_client(resp, calls),
    )
    assert result == '{"title":\n"A"}'
    assert calls[0]["model"] == "large-deployment"
    assert calls[0]["max_tokens"] == 512


@pytest.mark.asyncio
async def test_failures_return_none_after_retries(monkeypatch):
    from config import config
    monkeypatch.setattr(config, "SUMMARIZER_RETRY_DELAY_BASE", 0.01)
    attempts = []

    class FailingClient:
        class chat:
            class completions:
                @staticmethod
                async def create(**kwargs):  # type: ignore
                    attempts.append(kwargs)
                    raise RuntimeError("boom")

    result = await chat_completion(
        messages=[{"role": "user", "content": "Hello"}],
        retries=2,
        client_override=FailingClient(),
    )
    assert result is None
    assert len(attempts) == 3
