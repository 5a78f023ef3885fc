"""Tests for the HTTP endpoints in main.py"""

from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

from horizonti import main
from horizonti.core import resolver as resolver_module
from horizonti.core.feed import ArticleStore, FeedClient
from horizonti.core.rewriter import ArticleRewriter

RSS2JSON = "https://api.rss2json.com/v1/api.json"
GUID = "https://medium.com/p/1"

ARTICLE_BODY = (
    "<p>Intro</p>"
    '<p><a href="https://medium.com/media/aa11">listen</a></p>'
    '<hr><p><a href="https://medium.com/horizonti/x">X</a> was originally published in '
    '<a href="https://medium.com/horizonti">Horizonti</a> on Medium.</p>'
)


def feed_payload():
    return {
        "status": "ok",
        "feed": {"url": "https://medium.com/feed/horizonti", "title": "Horizonti"},
        "items": [
            {
                "title": "Story",
                "pubDate": "2024-03-05 08:15:00",
                "link": "https://medium.com/horizonti/story",
                "guid": GUID,
                "author": "Horizonti",
                "description": "<p>summary</p>",
                "content": ARTICLE_BODY,
                "categories": ["Music"],
            }
        ],
    }


@pytest.fixture
def client(monkeypatch, web, resolver, settings):
    monkeypatch.setattr(resolver_module, "_resolver", resolver)
    store = ArticleStore(FeedClient(settings, transport=web.transport), ArticleRewriter(resolver, settings), settings)
    monkeypatch.setattr(main, "_store", store)
    with TestClient(main.app) as c:
        yield c


class TestMediaEmbed:
    def test_missing_param(self, client):
        response = client.get("/api/get-media-embed")
        assert response.status_code == 400
        assert response.json() == {"error": "Missing mediaUrl"}

    def test_direct_provider_url(self, client, web):
        response = client.get("/api/get-media-embed", params={"mediaUrl": "https://youtu.be/dQw4w9WgXcQ"})
        data = response.json()
        assert response.status_code == 200
        assert data["status"] == "resolved"
        assert "https://www.youtube.com/embed/dQw4w9WgXcQ?autoplay=0&modestbranding=1&rel=0" in data["embedHtml"]
        assert data["isTwitterEmbed"] is False
        assert web.requests == []

    def test_medium_page_with_tweet(self, client, web):
        web.page("https://medium.com/media/aa11", '<blockquote class="twitter-tweet">t</blockquote>')
        data = client.get("/api/get-media-embed", params={"mediaUrl": "https://medium.com/media/aa11"}).json()
        assert data["isTwitterEmbed"] is True
        assert data["embedHtml"] == '<blockquote class="twitter-tweet">t</blockquote>'

    def test_unresolvable_is_not_an_error(self, client, web):
        web.down("https://medium.com/media/aa11")
        response = client.get("/api/get-media-embed", params={"mediaUrl": "https://medium.com/media/aa11"})
        assert response.status_code == 200
        assert response.json() == {"embedHtml": None, "isTwitterEmbed": False, "status": "failed"}


class TestGetEmbeds:
    def test_missing_param(self, client):
        response = client.get("/api/get-embeds")
        assert response.status_code == 400
        assert response.json() == {"error": "articleUrl is required"}

    def test_collects_fragments(self, client, web):
        frame = '<iframe src="https://www.youtube.com/embed/dQw4w9WgXcQ"></iframe>'
        tweet = '<blockquote class="twitter-tweet">t</blockquote>'
        web.page("https://medium.com/horizonti/story", f"<article>{frame}<p>text</p>{tweet}</article>")

        data = client.get("/api/get-embeds", params={"articleUrl": "https://medium.com/horizonti/story"}).json()

        assert data == {"embeds": [frame, tweet], "hasTwitterEmbed": True}

    def test_fetch_failure(self, client, web):
        web.down("https://medium.com/horizonti/story")
        response = client.get("/api/get-embeds", params={"articleUrl": "https://medium.com/horizonti/story"})
        assert response.status_code == 502
        assert "Failed to fetch article" in response.json()["error"]


class TestFeed:
    def test_feed(self, client, web):
        web.json(RSS2JSON, feed_payload())
        data = client.get("/api/feed").json()
        assert data["feed"]["title"] == "Horizonti"
        assert data["articles"][0]["guid"] == GUID
        assert data["articles"][0]["categories"] == ["music"]

    def test_feed_failure(self, client, web):
        web.json(RSS2JSON, {"status": "error", "message": "Cannot download this RSS feed"})
        response = client.get("/api/feed")
        assert response.status_code == 502
        assert response.json() == {"error": "Cannot download this RSS feed"}

    def test_refresh(self, client, web):
        web.json(RSS2JSON, feed_payload())
        client.get("/api/feed")
        response = client.post("/api/feed/refresh")
        assert response.status_code == 200
        assert len(web.requested(RSS2JSON)) == 2


class TestArticle:
    def test_rewritten_article(self, client, web):
        web.json(RSS2JSON, feed_payload())
        web.redirect("https://medium.com/media/aa11", "https://open.spotify.com/episode/4rOoJ6Egrf8K2IrywzwOMk")
        web.page("https://open.spotify.com/episode/4rOoJ6Egrf8K2IrywzwOMk", "<html></html>")

        data = client.get(f"/api/articles/{quote(GUID, safe='')}").json()

        assert "open.spotify.com/embed/episode/4rOoJ6Egrf8K2IrywzwOMk" in data["html"]
        assert "originally published" not in data["html"]
        assert data["needsTwitterWidget"] is False
        assert data["article"]["embeds"] == data["embeds"]
        assert [r["status"] for r in data["references"]] == ["resolved"]

    def test_unknown_article(self, client, web):
        web.json(RSS2JSON, feed_payload())
        response = client.get(f"/api/articles/{quote('https://medium.com/p/missing', safe='')}")
        assert response.status_code == 404

    def test_stream(self, client, web):
        web.json(RSS2JSON, feed_payload())
        web.down("https://medium.com/media/aa11")

        response = client.get(f"/api/articles/{quote(GUID, safe='')}/stream")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = [line for line in response.text.splitlines() if line.startswith("event:")]
        assert events == ["event: snapshot", "event: complete"]
        assert "embed-fallback" in response.text


class TestYouTubeCard:
    def test_missing_param(self, client):
        assert client.get("/api/youtube-card").status_code == 400

    def test_card(self, client, web):
        web.json(
            "https://www.youtube.com/oembed",
            {"title": "Song", "author_name": "Band", "thumbnail_url": "https://i.ytimg.com/vi/x/hq.jpg"},
        )
        data = client.get("/api/youtube-card", params={"videoId": "dQw4w9WgXcQ"}).json()
        assert data["card"]["title"] == "Song"
        assert data["card"]["watchUrl"] == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

    def test_invalid_id(self, client, web):
        assert client.get("/api/youtube-card", params={"videoId": "nope"}).json() == {"card": None}
        assert web.requests == []
