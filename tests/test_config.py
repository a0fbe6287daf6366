from config import Config, FeedSource, config, parse_feed_sources, select_sources


def test_parse_feed_sources_accepts_both_forms():
    sources = parse_feed_sources({
        "verge": {"url": "https://www.theverge.com/rss/index.xml", "category": "Tech", "title": " The Verge "},
        "hn": "https://hnrss.org/frontpage",
    })

    assert sources["verge"] == FeedSource(slug="verge", rss_url="https://www.theverge.com/rss/index.xml",
                                          category="Tech", title="The Verge")
    assert sources["hn"].rss_url == "https://hnrss.org/frontpage"
    assert sources["hn"].category is None


def test_invalid_feed_entries_are_skipped():
    sources = parse_feed_sources({"nourl": {"title": "x"}, "bad": 42, "ok": {"url": "https://ok.example/rss"}})
    assert list(sources) == ["ok"]


def test_needs_fresh_until_all_channel_fields_known():
    partial = FeedSource(slug="a", rss_url="u", title="T", icon="i")
    full = FeedSource(slug="a", rss_url="u", title="T", icon="i", dominant_color="#000000")
    assert partial.needs_fresh
    assert not full.needs_fresh


def test_select_sources_filters_by_slug(monkeypatch):
    monkeypatch.setattr(config, "FEED_SOURCES", parse_feed_sources({"a": "https://a/rss", "b": "https://b/rss"}))
    assert [s.slug for s in select_sources()] == ["a", "b"]
    assert [s.slug for s in select_sources(["b"])] == ["b"]


def test_environment_values_are_validated(monkeypatch):
    monkeypatch.setenv("ENTRY_CONCURRENCY", "0")
    monkeypatch.setenv("SOURCE_CONCURRENCY", "three")
    monkeypatch.setenv("DEPLOYMENT_NAME", "gpt-small")
    monkeypatch.delenv("LARGE_DEPLOYMENT_NAME", raising=False)
    monkeypatch.setenv("AZURE_ENDPOINT", "https://my-resource.openai.azure.com/")

    fresh = Config()

    assert fresh.ENTRY_CONCURRENCY == 4
    assert fresh.SOURCE_CONCURRENCY == 2
    assert fresh.LARGE_DEPLOYMENT_NAME == "gpt-small"
    assert fresh.AZURE_ENDPOINT == "my-resource.openai.azure.com"
    assert fresh.SUMMARY_SMALL_CHAR_BUDGET == 12288
    assert fresh.SUMMARY_LARGE_CHAR_BUDGET == 49152
    assert fresh.SUMMARY_MAX_CONTENT_CHARS == 200000
