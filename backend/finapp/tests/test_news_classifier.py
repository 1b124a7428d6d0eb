from finapp.utils.news_classifier import (
    categorize,
    categorize_entities,
    extract_symbols,
    is_finance_related,
    sentiment_label,
    strip_html,
)


def test_categorize_keywords():
    assert categorize("Apple earnings beat expectations") == "Stocks"
    assert categorize("Bitcoin hits record") == "Crypto"
    assert categorize("Oil prices jump") == "Commodities"
    assert categorize("Big merger announced") == "Corporate"


def test_categorize_priority_order():
    # Stocks проверяется раньше Economic
    assert categorize("Stock market falls on inflation data") == "Stocks"


def test_categorize_default():
    assert categorize("Weather is nice", "Discussion") == "Discussion"
    assert categorize("") == "Financial"


def test_categorize_entities():
    assert categorize_entities(["equity", "index"]) == "Stocks"
    assert categorize_entities(["cryptocurrency"]) == "Crypto"
    assert categorize_entities([None, "etf"]) is None


def test_extract_symbols_caps_and_filters():
    text = "AAPL and MSFT beat, THE CEO said TSLA NVDA"
    assert extract_symbols(text) == ["AAPL", "MSFT", "TSLA"]


def test_extract_symbols_dollar_prefixed_first():
    assert extract_symbols("Bought $GME and AMC today", dollar_prefixed=True) == ["GME", "AMC"]
    assert extract_symbols("$F rises") == []


def test_is_finance_related():
    assert is_finance_related("Show HN: my startup raised funding")
    assert not is_finance_related("A new Rust compiler")


def test_strip_html():
    assert strip_html("<p>Hello <b>world</b></p>") == "Hello world"
    assert strip_html("  plain   text ") == "plain text"


def test_sentiment_label():
    assert sentiment_label(0.5) == "positive"
    assert sentiment_label(-0.2) == "negative"
    assert sentiment_label(0.05) == "neutral"
    assert sentiment_label(None) is None
