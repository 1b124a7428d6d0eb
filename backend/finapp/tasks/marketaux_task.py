import logging

import requests

from finapp.errors import RateLimitError, sanitize
from finapp.models.news_item import NewsItem
from finapp.models.news_query import NewsQuery
from finapp.normalizer import normalize

logger = logging.getLogger(__name__)


class MarketAuxClient:
    """Клиент MarketAux /news/all.

    Падения провайдера не пробрасываются (вернётся []), кроме 429:
    его отдаём наверх как RateLimitError, чтобы клиент получил 429.
    """

    def __init__(self, api_key: str | None, base_url: str = "https://api.marketaux.com/v1", timeout: float = 10.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def fetch_raw(self, query: NewsQuery) -> list:
        if not self.api_key:
            logger.error("❌ MarketAux API key not configured")
            return []

        params = {**query.to_params(), "api_token": self.api_key}
        url = f"{self.base_url}/news/all"
        logger.info(f"📰 Fetching MarketAux news: {sanitize(query.to_params())}")
        try:
            resp = requests.get(
                url,
                params=params,
                timeout=self.timeout,
                headers={"Accept": "application/json", "User-Agent": "FinApp/1.0"},
            )
        except requests.RequestException as e:
            logger.warning(f"⚠️ MarketAux request failed: {sanitize(e)}")
            return []

        if resp.status_code == 429:
            note = _error_note(resp)
            logger.warning(f"⚠️ MarketAux rate limit: {note}")
            raise RateLimitError("MarketAux rate limit exceeded", provider="marketaux", note=note)
        if resp.status_code != 200:
            logger.warning(f"⚠️ MarketAux error {resp.status_code}: {sanitize(resp.text[:200])}")
            return []

        try:
            payload = resp.json()
        except ValueError:
            logger.warning(f"⚠️ MarketAux returned non-JSON (status={resp.status_code})")
            return []

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            logger.warning(f"⚠️ MarketAux returned unexpected payload shape: {type(data).__name__}")
            return []
        logger.info(f"✅ MarketAux returned {len(data)} articles")
        return [{"provider": "marketaux", **item} for item in data if isinstance(item, dict)]

    def fetch_news(self, query: NewsQuery) -> list[NewsItem]:
        items = [normalize(raw) for raw in self.fetch_raw(query)]
        return [item for item in items if item is not None]

    def fetch_news_by_date(self, date: str, limit: int = 50) -> list[NewsItem]:
        """Финансовые новости США за один день (YYYY-MM-DD)."""
        query = NewsQuery(
            published_on=date,
            countries=["us"],
            languages=["en"],
            filter_entities=True,
            limit=limit,
        )
        logger.info(f"📅 Fetching MarketAux articles for {date}")
        return self.fetch_news(query)


def _error_note(resp) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or "")
    return str(error or body)[:200]
