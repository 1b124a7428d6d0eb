import asyncio
import logging
import math
from functools import partial
from typing import Callable

from finapp.models.news_item import NewsItem
from finapp.normalizer import normalize
from finapp.tasks.hackernews_task import fetch_hackernews
from finapp.tasks.reddit_task import fetch_reddit_news
from finapp.tasks.rss_task import fetch_rss_news
from finapp.utils.source_catalog import ALL_SOURCES

logger = logging.getLogger(__name__)

# Источник агрегатора -> провайдер для нормализатора
PROVIDER_BY_SOURCE = {
    "rss": "rss",
    "forum": "reddit",
    "linkagg": "hackernews",
}

Fetcher = Callable[[int], list]


def build_default_fetchers(settings) -> dict[str, Fetcher]:
    subreddits = settings.REDDIT_SUBREDDITS[: settings.REDDIT_MAX_SUBREDDITS]
    return {
        "rss": partial(fetch_rss_news, settings.RSS_FEEDS, timeout=settings.HTTP_TIMEOUT_S),
        "forum": partial(fetch_reddit_news, subreddits, settings=settings),
        "linkagg": partial(fetch_hackernews, settings.HACKERNEWS_API_BASE_URL, timeout=settings.HTTP_TIMEOUT_S),
    }


def filter_by_category(items: list[NewsItem], category: str | None) -> list[NewsItem]:
    if not category:
        return items
    needle = category.lower()
    return [item for item in items if needle in item.category.lower()]


def filter_by_symbols(items: list[NewsItem], symbols: list[str] | None) -> list[NewsItem]:
    """Оставляет новости, у которых хоть один тикер содержит хоть один из запрошенных."""
    wanted = [s.lower() for s in symbols or [] if s and s.strip()]
    if not wanted:
        return items
    return [
        item for item in items
        if any(w in symbol.lower() for symbol in item.symbols for w in wanted)
    ]


class NewsAggregator:
    """Параллельно опрашивает включённые источники и сводит ленту.

    fetchers: имя источника -> функция(limit) -> list[dict] сырых записей.
    Каждая функция выполняется в отдельном потоке и ограничена timeout_s.
    """

    def __init__(self, fetchers: dict[str, Fetcher], timeout_s: float = 10.0):
        self.fetchers = fetchers
        self.timeout_s = timeout_s

    async def _run_fetcher(self, source: str, limit: int) -> list:
        fetcher = self.fetchers.get(source)
        if fetcher is None:
            logger.warning(f"⚠️ Source '{source}' is not configured")
            return []
        try:
            result = await asyncio.wait_for(asyncio.to_thread(fetcher, limit), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ Source '{source}' timed out after {self.timeout_s}s")
            return []
        except Exception as e:
            logger.warning(f"⚠️ Source '{source}' failed: {e}")
            return []
        if not isinstance(result, list):
            logger.warning(f"⚠️ Source '{source}' returned {type(result).__name__}, expected list")
            return []
        return result

    async def fetch_source(self, source: str, limit: int) -> list[NewsItem]:
        raw_items = await self._run_fetcher(source, limit)
        return self._normalize_all(source, raw_items)

    @staticmethod
    def _normalize_all(source: str, raw_items: list) -> list[NewsItem]:
        hint = PROVIDER_BY_SOURCE.get(source)
        items = [normalize(raw, hint) for raw in raw_items]
        return [item for item in items if item is not None]

    async def aggregate(self, limit: int = 50, sources=None, category: str | None = None) -> list[NewsItem]:
        """Сводная лента: не больше limit новостей, свежие сверху."""
        enabled = list(sources or ALL_SOURCES)
        if limit <= 0 or not enabled:
            return []
        per_source = math.ceil(limit / len(enabled))

        batches = await asyncio.gather(*(self.fetch_source(source, per_source) for source in enabled))

        all_items = [item for batch in batches for item in batch]
        # sorted() стабилен: при равных датах сохраняется порядок источников
        all_items = sorted(all_items, key=lambda item: item.published_at, reverse=True)[:limit]
        result = filter_by_category(all_items, category)

        logger.info(
            f"Aggregated {len(result)} items from {enabled} "
            f"(per source {per_source}, category={category!r})"
        )
        return result
