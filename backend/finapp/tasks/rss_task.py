import logging
import math
from concurrent.futures import ThreadPoolExecutor

import feedparser
import requests

from finapp.errors import sanitize
from finapp.utils.source_catalog import feed_source_name

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; FinApp/1.0)"
MAX_ITEMS_PER_FEED = 50


def _entry_image(entry) -> str | None:
    """Картинка из media:thumbnail / media:content / enclosure."""
    for key in ("media_thumbnail", "media_content"):
        media = entry.get(key) or []
        if media and isinstance(media[0], dict) and media[0].get("url"):
            return media[0]["url"]
    for link in entry.get("links") or []:
        if link.get("rel") == "enclosure" and str(link.get("type", "")).startswith("image"):
            return link.get("href")
    return None


def entry_to_raw(entry, feed_url: str) -> dict:
    """feedparser entry (RSS 2.0 или Atom) -> сырая запись для нормализатора."""
    return {
        "provider": "rss",
        "feed_url": feed_url,
        "source": feed_source_name(feed_url),
        "id": entry.get("id") or entry.get("guid"),
        "title": entry.get("title", ""),
        "description": entry.get("summary") or entry.get("description") or "",
        "link": entry.get("link", ""),
        "links": [dict(link) for link in entry.get("links") or []],
        "published": entry.get("published") or entry.get("updated"),
        "published_parsed": entry.get("published_parsed") or entry.get("updated_parsed"),
        "image_url": _entry_image(entry),
    }


def parse_via_rss(feed_url: str, limit: int, timeout: float = 10.0) -> list:
    """Скачивает и разбирает один фид. Ошибки не пробрасываются: вернётся []."""
    try:
        resp = requests.get(feed_url, timeout=timeout, headers={"User-Agent": USER_AGENT})
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.warning(f"⚠️ RSS fetch failed for {sanitize(feed_url)}: {sanitize(e)}")
        return []

    feed = feedparser.parse(resp.content)
    if feed.bozo and not feed.entries:
        logger.warning(f"⚠️ RSS parse failed for {sanitize(feed_url)}: {feed.get('bozo_exception')}")
        return []

    cap = max(0, min(limit, MAX_ITEMS_PER_FEED))
    return [entry_to_raw(entry, feed_url) for entry in feed.entries[:cap]]


def fetch_rss_news(feed_urls: list, limit: int, timeout: float = 10.0) -> list:
    """Параллельно опрашивает все фиды, лимит делится поровну между ними."""
    if not feed_urls or limit <= 0:
        return []
    per_feed = math.ceil(limit / len(feed_urls))
    logger.info(f"📡 Fetching {len(feed_urls)} RSS feeds, up to {per_feed} items each")

    with ThreadPoolExecutor(max_workers=min(8, len(feed_urls))) as pool:
        batches = list(pool.map(lambda url: parse_via_rss(url, per_feed, timeout), feed_urls))

    results = [item for batch in batches for item in batch]
    logger.info(f"✅ RSS returned {len(results)} items")
    return results
