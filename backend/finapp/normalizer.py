"""Нормализация сырых записей провайдеров в NewsItem.

Каждый адаптер отдаёт dict в «родной» форме своего провайдера с ключом
``provider``. Здесь для каждого провайдера своя функция-маппинг, которая
перебирает синонимы полей, чистит HTML, разбирает дату и проставляет
категорию/тикеры. Запись без заголовка или ссылки отбрасывается (None).
"""
import hashlib
import logging

from pydantic import ValidationError

from finapp.models.news_item import Entity, NewsItem
from finapp.utils.date_utils import parse_published, utc_now
from finapp.utils.news_classifier import (
    categorize,
    categorize_entities,
    extract_symbols,
    sentiment_label,
    strip_html,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = {
    "rss": "Financial",
    "reddit": "Discussion",
    "hackernews": "Tech/Finance",
    "marketaux": "Financial",
}


def _text(value) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def make_item_id(provider: str, original_id, url: str) -> str:
    if original_id not in (None, ""):
        return f"{provider}-{original_id}"
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:12]
    return f"{provider}-{digest}"


def _first_link(raw: dict) -> str:
    """RSS: <link>текст</link> или Atom: <link href="..."/>."""
    link = raw.get("link") or raw.get("url")
    if isinstance(link, str) and link.strip():
        return link.strip()
    for candidate in raw.get("links") or []:
        if isinstance(candidate, dict) and candidate.get("href"):
            if candidate.get("rel", "alternate") == "alternate":
                return str(candidate["href"]).strip()
    return ""


def _build(fields: dict) -> NewsItem | None:
    try:
        return NewsItem(**fields)
    except ValidationError as e:
        logger.debug(f"Dropped invalid item {fields.get('url')!r}: {e.error_count()} errors")
        return None


def normalize_rss(raw: dict) -> NewsItem | None:
    title = _text(raw.get("title"))
    url = _first_link(raw)
    if not title or not url:
        return None

    description = strip_html(raw.get("description") or raw.get("summary") or "")
    text = f"{title} {description}"
    published = parse_published(raw.get("published_parsed") or raw.get("published") or raw.get("updated"))

    return _build({
        "id": make_item_id("rss", raw.get("id") or raw.get("guid"), url),
        "title": title,
        "description": description,
        "url": url,
        "published_at": published or utc_now(),
        "source": raw.get("source") or "RSS Feed",
        "category": categorize(text, DEFAULT_CATEGORIES["rss"]),
        "symbols": extract_symbols(text),
        "image_url": raw.get("image_url") or None,
    })


def normalize_reddit(raw: dict) -> NewsItem | None:
    title = _text(raw.get("title"))
    link = raw.get("url") or ""
    if isinstance(link, str) and link.startswith("http"):
        url = link
    elif raw.get("permalink"):
        url = f"https://reddit.com{raw['permalink']}"
    else:
        url = ""
    if not title or not url:
        return None

    selftext = raw.get("selftext") or ""
    description = f"{_text(selftext)[:200]}..." if selftext else "Discussion on Reddit"
    subreddit = raw.get("subreddit") or "reddit"

    return _build({
        "id": make_item_id("reddit", raw.get("id"), url),
        "title": title,
        "description": description,
        "url": url,
        "published_at": parse_published(raw.get("created_utc")) or utc_now(),
        "source": f"Reddit r/{subreddit}",
        "category": categorize(f"{title} {selftext}", DEFAULT_CATEGORIES["reddit"]),
        "symbols": extract_symbols(f"{title} {selftext}", dollar_prefixed=True),
    })


def normalize_hackernews(raw: dict) -> NewsItem | None:
    title = _text(raw.get("title"))
    story_id = raw.get("id")
    url = raw.get("url") or (f"https://news.ycombinator.com/item?id={story_id}" if story_id else "")
    if not title or not url:
        return None

    body = strip_html(raw.get("text") or "")
    description = f"{body[:200]}..." if body else "Discussion on Hacker News"

    return _build({
        "id": make_item_id("hn", story_id, url),
        "title": title,
        "description": description,
        "url": url,
        "published_at": parse_published(raw.get("time")) or utc_now(),
        "source": "Hacker News",
        "category": categorize(title, DEFAULT_CATEGORIES["hackernews"]),
        "symbols": extract_symbols(title),
    })


def normalize_marketaux(raw: dict) -> NewsItem | None:
    title = _text(raw.get("title"))
    url = (raw.get("url") or "").strip()
    if not title or not url:
        return None

    entities = [e for e in (raw.get("entities") or []) if isinstance(e, dict)]
    description = strip_html(raw.get("description") or raw.get("snippet") or "")

    scores = [e["sentiment_score"] for e in entities if isinstance(e.get("sentiment_score"), (int, float))]
    sentiment_score = sum(scores) / len(scores) if scores else None

    symbols = []
    for e in entities:
        symbol = (e.get("symbol") or "").strip().upper()
        if symbol and symbol not in symbols:
            symbols.append(symbol)

    category = categorize_entities(e.get("type") for e in entities)
    if category is None:
        category = categorize(f"{title} {description}", DEFAULT_CATEGORIES["marketaux"])

    country = next((e["country"].upper() for e in entities if e.get("country")), None)

    return _build({
        "id": make_item_id("marketaux", raw.get("uuid"), url),
        "title": title,
        "description": description,
        "url": url,
        "published_at": parse_published(raw.get("published_at")) or utc_now(),
        "source": raw.get("source") or "MarketAux",
        "category": category,
        "sentiment": sentiment_label(sentiment_score),
        "symbols": symbols[:3],
        "image_url": raw.get("image_url") or None,
        "sentiment_score": sentiment_score,
        "country": country,
        "entities": [Entity(**{k: e.get(k) for k in Entity.model_fields}) for e in entities],
    })


NORMALIZERS = {
    "rss": normalize_rss,
    "reddit": normalize_reddit,
    "hackernews": normalize_hackernews,
    "marketaux": normalize_marketaux,
}


def normalize(raw, provider_hint: str | None = None) -> NewsItem | None:
    """Сырая запись -> NewsItem или None, если запись непригодна."""
    if not isinstance(raw, dict):
        logger.warning(f"⚠️ Skipping non-dict item: {type(raw).__name__}")
        return None
    provider = raw.get("provider") or provider_hint
    normalizer = NORMALIZERS.get(provider)
    if normalizer is None:
        logger.warning(f"⚠️ No normalizer for provider {provider!r}")
        return None
    try:
        return normalizer(raw)
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning(f"⚠️ Failed to normalize {provider} item: {e}")
        return None
