import os
from dotenv import load_dotenv

load_dotenv()

DEFAULT_RSS_FEEDS = [
    "https://feeds.finance.yahoo.com/rss/2.0/headline",
    "https://feeds.marketwatch.com/marketwatch/topstories/",
    "https://feeds.bloomberg.com/markets/news.rss",
    "https://search.cnbc.com/rs/search/combinedcms/view.xml?partnerId=wrss01&id=15839069",
    "https://news.yahoo.com/rss/business",
    "https://feeds.a.dj.com/rss/RSSMarketsMain.xml",
]

DEFAULT_SUBREDDITS = [
    "stocks",
    "investing",
    "SecurityAnalysis",
    "ValueInvesting",
    "StockMarket",
    "finance",
]


def _env_list(key: str, default: list[str]) -> list[str]:
    raw = os.getenv(key)
    if not raw:
        return list(default)
    return [part.strip() for part in raw.split(",") if part.strip()]


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except (TypeError, ValueError):
        return default


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, str(default)))
    except (TypeError, ValueError):
        return default


class Settings:
    def __init__(self):
        # Новости
        self.MARKETAUX_API_KEY = os.getenv("MARKETAUX_API_KEY")
        self.MARKETAUX_API_BASE_URL = os.getenv("MARKETAUX_API_BASE_URL", "https://api.marketaux.com/v1")
        self.HACKERNEWS_API_BASE_URL = os.getenv("HACKERNEWS_API_BASE_URL", "https://hacker-news.firebaseio.com/v0")
        self.RSS_FEEDS = _env_list("RSS_FEEDS", DEFAULT_RSS_FEEDS)

        # Reddit
        self.REDDIT_SUBREDDITS = _env_list("REDDIT_SUBREDDITS", DEFAULT_SUBREDDITS)
        self.REDDIT_MAX_SUBREDDITS = _env_int("REDDIT_MAX_SUBREDDITS", 3)
        self.REDDIT_CLIENT_ID = os.getenv("REDDIT_CLIENT_ID")
        self.REDDIT_CLIENT_SECRET = os.getenv("REDDIT_CLIENT_SECRET")
        self.REDDIT_USER_AGENT = os.getenv("REDDIT_USER_AGENT", "FinApp/1.0")
        self.REDDIT_USERNAME = os.getenv("REDDIT_USERNAME")
        self.REDDIT_PASSWORD = os.getenv("REDDIT_PASSWORD")

        # LLM
        self.LLM_PROVIDER = os.getenv("LLM_PROVIDER", "gemini").lower()
        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
        self.GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.GEMINI_API_BASE_URL = os.getenv("GEMINI_API_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
        self.GEMINI_GROUNDING = os.getenv("GEMINI_GROUNDING", "1") == "1"
        self.OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")
        self.OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "mistral:7b-instruct-q4_K_M")

        # Таймауты, кэш, батчи
        self.HTTP_TIMEOUT_S = _env_float("HTTP_TIMEOUT_S", 10.0)
        self.ADAPTER_TIMEOUT_S = _env_float("ADAPTER_TIMEOUT_S", 10.0)
        self.LLM_TIMEOUT_S = _env_float("LLM_TIMEOUT_S", 60.0)
        self.CACHE_TTL_SECONDS = _env_float("CACHE_TTL_SECONDS", 60.0)
        self.CACHE_MAX_ENTRIES = _env_int("CACHE_MAX_ENTRIES", 512)
        self.EVENT_BATCH_SIZE = _env_int("EVENT_BATCH_SIZE", 2)

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

settings = Settings()
