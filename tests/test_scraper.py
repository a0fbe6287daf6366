import json

import pytest

from config import config
from errors import FetchError
from models import OutcomeKind
from scraper import (
    PAGE,
    VIDEO,
    ContentScraper,
    GenericPageExtractor,
    VideoPlatformExtractor,
    classify_url,
    select_subtitle_track,
    subtitle_text,
    video_id,
)

PARAGRAPH = (
    "The committee met on Tuesday to review the proposal, and after a long debate, "
    "members agreed that the bridge, the tunnel, and the ferry service would all be studied further. "
)

ARTICLE_HTML = f"""
<html>
  <head><title>Bridge news</title></head>
  <body>
    <div class="nav"><img src="/static/logo.png" alt="logo"></div>
    <article>
      <h1>Bridge vote delayed</h1>
      <p>{PARAGRAPH * 4}</p>
      <p>{PARAGRAPH * 4}</p>
      <p>{PARAGRAPH * 4}</p>
    </article>
  </body>
</html>
"""


@pytest.mark.parametrize("url,kind", [
    ("https://www.youtube.com/watch?v=abc123", VIDEO),
    ("https://m.youtube.com/watch?v=abc123", VIDEO),
    ("https://youtu.be/abc123", VIDEO),
    ("https://example.com/youtube.com/watch", PAGE),
    ("https://notyoutube.com/watch?v=abc123", PAGE),
])
def test_classify_url(url, kind):
    assert classify_url(url) == kind


@pytest.mark.parametrize("url,expected", [
    ("https://www.youtube.com/watch?v=abc123&t=10", "abc123"),
    ("https://youtu.be/xyz789", "xyz789"),
    ("https://www.youtube.com/shorts/short1", "short1"),
    ("https://www.youtube.com/embed/emb1", "emb1"),
    ("https://www.youtube.com/channel/UC123", None),
])
def test_video_id(url, expected):
    assert video_id(url) == expected


def test_select_subtitle_track_prefers_authored_tracks():
    tracks = [
        {"url": "https://s/auto", "autoGenerated": True},
        {"url": "https://s/manual", "autoGenerated": False},
    ]
    assert select_subtitle_track(tracks)["url"] == "https://s/manual"
    assert select_subtitle_track(tracks[:1])["url"] == "https://s/auto"
    assert select_subtitle_track([]) is None


def test_subtitle_text_joins_runs_and_decodes_entities():
    document = """<?xml version="1.0" encoding="utf-8"?>
    <tt xmlns="http://www.w3.org/ns/ttml"><body><div>
      <p begin="00:00:01.000" end="00:00:02.000">Hello   there</p>
      <p begin="00:00:02.000" end="00:00:03.000">it&amp;#39;s <span>a</span> test</p>
    </div></body></tt>"""
    assert subtitle_text(document) == "Hello there it's a test"


@pytest.mark.asyncio
async def test_generic_page_extractor_resolves_image_and_content(make_session):
    url = "https://news.example.com/story/1"
    session = make_session({url: ARTICLE_HTML})

    result = await GenericPageExtractor(session).extract(url)

    assert result.image.kind is OutcomeKind.RESOLVED
    assert result.image.value == "https://news.example.com/static/logo.png"
    assert result.content.kind is OutcomeKind.RESOLVED
    assert "ferry service" in result.content.value


@pytest.mark.asyncio
async def test_generic_page_without_images_has_missing_image(make_session):
    url = "https://news.example.com/story/2"
    html = ARTICLE_HTML.replace('<img src="/static/logo.png" alt="logo">', "")
    session = make_session({url: html})

    result = await GenericPageExtractor(session).extract(url)

    assert result.image.is_missing


@pytest.mark.asyncio
async def test_only_the_first_img_element_is_considered(make_session):
    url = "https://news.example.com/story/3"
    html = ARTICLE_HTML.replace('<img src="/static/logo.png" alt="logo">',
                                '<img data-src="/lazy.png" alt="lazy"><img src="/static/logo.png" alt="logo">')
    session = make_session({url: html})

    result = await GenericPageExtractor(session).extract(url)

    assert result.image.is_missing
    assert result.content.kind is OutcomeKind.RESOLVED


@pytest.mark.asyncio
async def test_generic_page_http_error_raises_fetch_error(make_session):
    url = "https://news.example.com/gone"
    session = make_session({url: (404, "not found")})

    with pytest.raises(FetchError) as excinfo:
        await GenericPageExtractor(session).extract(url)
    assert excinfo.value.status == 404


def _streams_url(vid):
    return f"{config.PIPED_INSTANCE}/streams/{vid}"


@pytest.mark.asyncio
async def test_video_extractor_uses_thumbnail_and_subtitles(make_session):
    streams = {
        "thumbnailUrl": "https://img.example/thumb.jpg",
        "subtitles": [
            {"url": "https://subs.example/auto", "autoGenerated": True},
            {"url": "https://subs.example/manual", "autoGenerated": False},
        ],
    }
    session = make_session({
        _streams_url("abc123"): json.dumps(streams),
        "https://subs.example/manual": "<tt><body><p>Manual words</p></body></tt>",
    })

    result = await ContentScraper(session).scrape("https://www.youtube.com/watch?v=abc123")

    assert result.image.value == "https://img.example/thumb.jpg"
    assert result.content.kind is OutcomeKind.RESOLVED
    assert result.content.value == "Manual words"
    assert "https://subs.example/auto" not in session.requested


@pytest.mark.asyncio
async def test_video_subtitle_failure_degrades_to_missing_content(make_session):
    streams = {"thumbnailUrl": "https://img.example/thumb.jpg",
               "subtitles": [{"url": "https://subs.example/broken", "autoGenerated": True}]}
    session = make_session({
        _streams_url("abc123"): json.dumps(streams),
        "https://subs.example/broken": (500, "error"),
    })

    result = await VideoPlatformExtractor(session).extract("https://youtu.be/abc123")

    assert result.image.value == "https://img.example/thumb.jpg"
    assert result.content.is_missing


@pytest.mark.asyncio
async def test_video_metadata_failure_is_fetch_error(make_session):
    session = make_session({_streams_url("abc123"): (503, "down")})

    with pytest.raises(FetchError):
        await ContentScraper(session).scrape("https://youtu.be/abc123")


@pytest.mark.asyncio
async def test_video_metadata_that_is_not_json_is_fetch_error(make_session):
    session = make_session({_streams_url("abc123"): "<html>rate limited</html>"})

    with pytest.raises(FetchError, match="Invalid JSON"):
        await ContentScraper(session).scrape("https://youtu.be/abc123")
