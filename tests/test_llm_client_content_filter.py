import pytest

from articles import load_article
from config import FeedSource
from errors import ContentFilterError
from fetcher import FeedFetcher
from llm_client import chat_completion
from summarizer import ArticleSummarizer

BLOCKED_BODY = {
    "error": {
        "code": "content_filter",
        "message": "The response was filtered due to the prompt triggering Azure OpenAI's content management policy",
        "innererror": {"code": "ResponsibleAIPolicyViolation"},
        "param": "prompt",
    }
}


class PolicyViolation(Exception):
    """Shaped like the openai SDK's BadRequestError for a filtered prompt."""

    def __init__(self):
        super().__init__("Error code: 400 - content_filter")
        self.body = BLOCKED_BODY


class FilteringClient:
    def __init__(self):
        self.calls = 0
        client = self

        class _Completions:
            @staticmethod
            async def create(**kwargs):
                client.calls += 1
                raise PolicyViolation()

        class _Chat:
            completions = _Completions

        self.chat = _Chat


@pytest.mark.asyncio
async def test_filtered_prompt_raises_with_provider_details():
    client = FilteringClient()
    with pytest.raises(ContentFilterError) as excinfo:
        await chat_completion(
            [{"role": "user", "content": "Original title: x\nOriginal text: y"}],
            purpose="article_summary[small]",
            retries=2,
            client_override=client,
        )
    assert excinfo.value.details.get("innererror", {}).get("code") == "ResponsibleAIPolicyViolation"
    # Filtered prompts are not retried
    assert client.calls == 1


@pytest.mark.asyncio
async def test_summarizer_propagates_filter_without_caching(db):
    summarizer = ArticleSummarizer(db, client=FilteringClient(), requests_per_minute=0)

    with pytest.raises(ContentFilterError):
        await summarizer.summarize("Riot coverage", "A detailed account of the events downtown.")

    assert await db.scan_prefix("summary:") == []


@pytest.mark.asyncio
async def test_filtered_article_is_stored_with_scraped_text(db, make_session):
    feed_url = "https://news.example.com/rss"
    link = "https://news.example.com/clash"
    paragraph = "Witnesses described the clashes near the square as the worst in a decade, officials said. " * 6
    page = f"<html><body><article><h1>Clash</h1><p>{paragraph}</p><p>{paragraph}</p></article></body></html>"
    feed = f"""<?xml version="1.0"?><rss version="2.0"><channel><title>News</title>
<link>https://news.example.com/</link><description>d</description>
<item><title>Clash</title><link>{link}</link><description>blurb</description></item>
</channel></rss>"""
    session = make_session({feed_url: feed, link: page})
    source = FeedSource(slug="news", rss_url=feed_url, title="News", icon="https://news.example.com/i.png",
                        dominant_color="#000000")
    fetcher = FeedFetcher(db=db, summarizer=ArticleSummarizer(db, client=FilteringClient(), requests_per_minute=0))

    report = await fetcher.fetch_feed(source, session)
    await fetcher.close()

    article = await load_article(db, link)
    assert report.new == 1
    assert article.title == "Clash"
    assert "worst in a decade" in article.summary
    assert await db.scan_prefix("summary:") == []
