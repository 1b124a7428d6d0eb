import re
from bs4 import BeautifulSoup

# Порядок важен: срабатывает первое совпадение
CATEGORY_RULES = [
    ("Stocks", ["earnings", "stock", "share"]),
    ("Market", ["market", "trading", "dow", "s&p"]),
    ("Economic", ["fed", "inflation", "gdp", "employment", "interest rate"]),
    ("Crypto", ["crypto", "bitcoin", "ethereum"]),
    ("Commodities", ["oil", "gold", "commodity"]),
    ("Forex", ["currency", "dollar", "euro"]),
    ("Corporate", ["merger", "acquisition", "ipo"]),
]

ENTITY_TYPE_RULES = [
    ("Stocks", {"stock", "equity"}),
    ("Crypto", {"crypto", "cryptocurrency"}),
    ("Forex", {"forex", "currency"}),
    ("Commodities", {"commodity"}),
]

FINANCE_KEYWORDS = [
    "stock", "market", "trading", "investment", "finance", "money", "economy",
    "crypto", "bitcoin", "startup", "funding", "ipo", "earnings", "revenue",
    "bank", "fintech", "valuation", "acquisition", "merger",
]

# Частые английские слова и аббревиатуры, которые похожи на тикеры
SYMBOL_BLACKLIST = frozenset({
    "THE", "AND", "FOR", "ARE", "BUT", "NOT", "YOU", "ALL", "CAN", "HER",
    "WAS", "ONE", "OUR", "HAD", "DAY", "GET", "MAY", "NEW", "NOW", "OLD",
    "SEE", "TWO", "WHO", "BOY", "DID", "ITS", "LET", "PUT", "SAY", "SHE",
    "TOO", "USE", "HIS", "HOW", "MAN", "OUT", "WAY", "WHY", "YES", "HAS",
    "WITH", "FROM", "THIS", "THAT", "WILL", "WHAT", "WHEN", "YOUR", "THEY",
    "HAVE", "BEEN", "MORE", "JUST", "OVER", "INTO", "ALSO", "THAN", "SOME",
    "IS", "IT", "IN", "ON", "OF", "TO", "OR", "AT", "AS", "BY", "BE", "DO",
    "GO", "IF", "NO", "SO", "UP", "WE", "MY", "AN", "ME", "AM", "OK",
    "CEO", "CFO", "CTO", "IPO", "ETF", "GDP", "CPI", "FED", "SEC", "USA",
    "US", "UK", "EU", "AI", "API", "USD", "EUR", "YOY", "QOQ", "EPS",
    "NYSE", "DD", "IMO", "TLDR", "EDIT", "FAQ", "PSA", "ATH", "LOL",
})

_BARE_SYMBOL_RE = re.compile(r"\b[A-Z]{2,5}\b")
_DOLLAR_SYMBOL_RE = re.compile(r"\$([A-Z]{1,5})\b")
MAX_SYMBOLS = 3


def categorize(text: str, default: str = "Financial") -> str:
    content = (text or "").lower()
    for category, keywords in CATEGORY_RULES:
        if any(kw in content for kw in keywords):
            return category
    return default


def categorize_entities(entity_types) -> str | None:
    """Категория по типам сущностей MarketAux (приоритетнее текста)."""
    types = {str(t).lower() for t in entity_types if t}
    for category, names in ENTITY_TYPE_RULES:
        if types & names:
            return category
    return None


def extract_symbols(text: str, dollar_prefixed: bool = False) -> list[str]:
    """Эвристика: до 3 «тикеров» из текста, без проверки по бирже."""
    if not text:
        return []
    candidates = []
    if dollar_prefixed:
        candidates.extend(_DOLLAR_SYMBOL_RE.findall(text))
    candidates.extend(_BARE_SYMBOL_RE.findall(text))

    symbols = []
    for symbol in candidates:
        if symbol in SYMBOL_BLACKLIST or symbol in symbols:
            continue
        symbols.append(symbol)
        if len(symbols) == MAX_SYMBOLS:
            break
    return symbols


def is_finance_related(title: str) -> bool:
    title_lower = (title or "").lower()
    return any(kw in title_lower for kw in FINANCE_KEYWORDS)


def strip_html(text: str) -> str:
    if not text:
        return ""
    if "<" not in text and "&" not in text:
        return " ".join(text.split())
    plain = BeautifulSoup(text, "html.parser").get_text(" ")
    return " ".join(plain.split())


def sentiment_label(score: float | None) -> str | None:
    if score is None:
        return None
    if score > 0.1:
        return "positive"
    if score < -0.1:
        return "negative"
    return "neutral"
