from urllib.parse import urlparse

# Фрагмент хоста фида -> человекочитаемое имя источника
FEED_SOURCE_NAMES = [
    ("yahoo", "Yahoo Finance"),
    ("marketwatch", "MarketWatch"),
    ("bloomberg", "Bloomberg"),
    ("cnbc", "CNBC"),
    ("reuters", "Reuters"),
    ("dj.com", "Wall Street Journal"),
    ("wsj", "Wall Street Journal"),
]

SOURCE_ALIASES = {
    "rss": "rss",
    "forum": "forum",
    "reddit": "forum",
    "linkagg": "linkagg",
    "hackernews": "linkagg",
    "hn": "linkagg",
}

ALL_SOURCES = ("rss", "forum", "linkagg")


def feed_source_name(feed_url: str) -> str:
    """Имя источника по адресу RSS-фида."""
    host = (urlparse(feed_url).netloc or feed_url).lower()
    for fragment, name in FEED_SOURCE_NAMES:
        if fragment in host:
            return name
    return "RSS Feed"


def resolve_sources(requested) -> list[str]:
    """'rss,reddit' или ['rss', 'hn'] -> канонические имена без повторов.

    Неизвестное имя -> ValueError.
    """
    if requested is None:
        return list(ALL_SOURCES)
    if isinstance(requested, str):
        requested = requested.split(",")

    resolved = []
    for name in requested:
        key = str(name).strip().lower()
        if not key:
            continue
        if key not in SOURCE_ALIASES:
            raise ValueError(f"Unknown source '{name}'. Use one of: rss, forum, linkagg")
        canonical = SOURCE_ALIASES[key]
        if canonical not in resolved:
            resolved.append(canonical)
    return resolved or list(ALL_SOURCES)
