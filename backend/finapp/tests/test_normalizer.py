import hashlib
from datetime import datetime, timedelta, timezone

import pytest

from finapp.normalizer import make_item_id, normalize


def test_normalize_rss_item():
    raw = {
        "provider": "rss",
        "title": "Fed holds rates",
        "description": "<p>Inflation worries AAPL</p>",
        "link": "https://news.example/a",
        "published": "Mon, 02 Feb 2026 10:00:00 GMT",
        "source": "Reuters",
    }
    item = normalize(raw)

    assert item.title == "Fed holds rates"
    assert item.description == "Inflation worries AAPL"
    assert item.category == "Economic"
    assert item.symbols == ["AAPL"]
    assert item.source == "Reuters"
    assert item.published_at == datetime(2026, 2, 2, 10, 0, tzinfo=timezone.utc)
    assert item.id == "rss-" + hashlib.sha1(b"https://news.example/a").hexdigest()[:12]


def test_normalize_rss_atom_link_and_missing_date():
    raw = {
        "provider": "rss",
        "title": "Weekly outlook",
        "links": [{"rel": "alternate", "href": "https://news.example/atom"}],
    }
    item = normalize(raw)

    assert item.url == "https://news.example/atom"
    assert item.category == "Financial"
    assert datetime.now(timezone.utc) - item.published_at < timedelta(minutes=1)


def test_normalize_drops_items_without_title_or_url():
    assert normalize({"provider": "rss", "title": "", "link": "https://news.example/x"}) is None
    assert normalize({"provider": "rss", "title": "No link"}) is None


def test_normalize_reddit_post():
    raw = {
        "provider": "reddit",
        "id": "abc",
        "title": "$TSLA to the moon",
        "selftext": "",
        "url": "/r/stocks/comments/abc/",
        "permalink": "/r/stocks/comments/abc/",
        "created_utc": 1700000000,
        "subreddit": "stocks",
    }
    item = normalize(raw)

    assert item.id == "reddit-abc"
    assert item.url == "https://reddit.com/r/stocks/comments/abc/"
    assert item.description == "Discussion on Reddit"
    assert item.source == "Reddit r/stocks"
    assert item.category == "Discussion"
    assert item.symbols == ["TSLA"]


def test_normalize_hackernews_story():
    raw = {
        "provider": "hackernews",
        "id": 123,
        "title": "Startup funding hits record",
        "url": "https://hn.example/a",
        "time": 1700000000,
    }
    item = normalize(raw)

    assert item.id == "hn-123"
    assert item.source == "Hacker News"
    assert item.category == "Tech/Finance"


def test_normalize_marketaux_article():
    raw = {
        "provider": "marketaux",
        "uuid": "u1",
        "title": "Apple and Microsoft rally",
        "description": "Tech giants lead",
        "url": "https://news.example/m1",
        "published_at": "2026-02-02T10:00:00.000000Z",
        "image_url": "https://img.example/m1.jpg",
        "source": "example.com",
        "entities": [
            {"symbol": "aapl", "name": "Apple", "country": "us", "type": "equity", "sentiment_score": 0.6},
            {"symbol": "MSFT", "name": "Microsoft", "type": "equity", "sentiment_score": 0.2},
        ],
    }
    item = normalize(raw)

    assert item.id == "marketaux-u1"
    assert item.symbols == ["AAPL", "MSFT"]
    assert item.category == "Stocks"
    assert item.country == "US"
    assert item.sentiment_score == pytest.approx(0.4)
    assert item.sentiment == "positive"
    assert [e.name for e in item.entities] == ["Apple", "Microsoft"]


def test_normalize_uses_hint_and_rejects_garbage():
    raw = {"title": "Gold climbs", "link": "https://news.example/g"}
    assert normalize(raw, "rss").category == "Commodities"
    assert normalize(raw) is None
    assert normalize(["not", "a", "dict"]) is None
    assert normalize({"provider": "telegram", "title": "x", "url": "https://x"}) is None


def test_make_item_id_prefers_original_id():
    assert make_item_id("rss", "guid-1", "https://x") == "rss-guid-1"
    assert make_item_id("rss", "", "https://x") == make_item_id("rss", None, "https://x")
