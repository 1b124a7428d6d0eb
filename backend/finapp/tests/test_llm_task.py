import asyncio
import json
import threading
from datetime import datetime, timezone

import pytest

from finapp.errors import LLMError, ModelOutputError, RateLimitError
from finapp.models.news_item import Entity, NewsItem
from finapp.tasks.llm_task import (
    IMPACT_RUBRIC,
    build_event_prompt,
    build_time_machine_prompt,
    heuristic_event,
    impact_from_sentiment,
    parse_model_events,
    synthesize_events,
    synthesize_with_fallback,
    translate_event_fields,
    trim_articles_for_llm,
)
from finapp.utils.geo import COUNTRY_CENTROIDS


def _item(n, country="US", sentiment_score=None, entities=None):
    return NewsItem(
        id=f"marketaux-{n}",
        title=f"Headline {n}",
        description=f"Summary {n}",
        url=f"https://news.example/{n}",
        published_at=datetime(2026, 2, 2, 10, tzinfo=timezone.utc),
        source="example.com",
        category="Stocks",
        sentiment_score=sentiment_score,
        country=country,
        image_url=f"https://img.example/{n}.jpg",
        entities=entities or [],
    )


def _legacy_event(n, **overrides):
    event = {
        "Event_title": f"Event {n}",
        "Event_img": f"https://img.example/{n}.jpg",
        "Event_longtitude": -73.98,
        "event_latitude": 40.75,
        "event_summary": "Something happened",
        "event_category": "Stocks",
        "Article_link": f"https://news.example/{n}",
        "impact_score": 75,
        "Impact_reason": "Broad effect",
        "impact_color": "green",
        "Relevant_stocks": [{"ticker": "aapl", "name": "Apple"}],
        "event_date": "2026-02-02",
    }
    event.update(overrides)
    return event


class FakeLLM:
    provider = "fake"

    def __init__(self, respond):
        self.respond = respond
        self.prompts = []
        self._lock = threading.Lock()

    def generate(self, prompt):
        with self._lock:
            self.prompts.append(prompt)
        return self.respond(prompt)


# --- разбор ответа модели ---

def test_parse_strips_code_fences():
    text = "```json\n" + json.dumps([{"title": "a"}]) + "\n```"
    assert parse_model_events(text) == [{"title": "a"}]


def test_parse_falls_back_to_bracket_span():
    text = 'Sure! Here are the events: [{"title": "a"}, 42] Hope this helps.'
    assert parse_model_events(text) == [{"title": "a"}]


def test_parse_rejects_non_arrays():
    with pytest.raises(ModelOutputError) as exc_info:
        parse_model_events("I could not find any events" * 100)
    assert len(exc_info.value.raw_response) == 500

    with pytest.raises(ModelOutputError):
        parse_model_events('{"title": "a"}')
    with pytest.raises(ModelOutputError):
        parse_model_events("[not json]")


def test_translate_legacy_field_names():
    fields = translate_event_fields(_legacy_event(1, Event_longtitude=None, Event_longitude=-74.0))

    assert fields["title"] == "Event 1"
    assert fields["image_url"] == "https://img.example/1.jpg"
    assert fields["longitude"] == -74.0
    assert fields["latitude"] == 40.75
    assert fields["article_link"] == "https://news.example/1"
    assert fields["impact_reason"] == "Broad effect"
    assert fields["relevant_stocks"] == [{"ticker": "aapl", "name": "Apple"}]


def test_prompts_carry_rubric_and_articles():
    articles = trim_articles_for_llm([_item(1)])
    assert set(articles[0]) >= {"title", "summary", "url", "image_url", "published_at", "entities"}

    for prompt in (build_event_prompt(articles), build_time_machine_prompt(articles, "2026-02-02")):
        assert IMPACT_RUBRIC in prompt
        assert "https://news.example/1" in prompt
    assert "0–9 = negligible" in IMPACT_RUBRIC
    assert "90–100 = systemic" in IMPACT_RUBRIC


# --- пакетный режим ---

def test_synthesize_events_keeps_only_complete_events():
    incomplete = _legacy_event(3)
    del incomplete["impact_score"]
    response = json.dumps([_legacy_event(1), _legacy_event(2, impact_score=20), incomplete])
    llm = FakeLLM(lambda prompt: response)

    events = asyncio.run(synthesize_events(llm, [_item(1), _item(2), _item(3)], llm_limit=8))

    assert [e.article_link for e in events] == ["https://news.example/1", "https://news.example/2"]
    assert [e.impact_color for e in events] == ["red", "green"]
    assert events[0].coordinates.lng == -73.98
    assert events[0].relevant_stocks[0].ticker == "AAPL"
    assert len(llm.prompts) == 1


def test_synthesize_events_accepts_fenced_response():
    incomplete = _legacy_event(3)
    del incomplete["impact_score"]
    body = json.dumps([_legacy_event(1), _legacy_event(2, impact_score=45), incomplete], indent=2)
    llm = FakeLLM(lambda prompt: f"```json\n{body}\n```")

    events = asyncio.run(synthesize_events(llm, [_item(1), _item(2), _item(3)], llm_limit=8))

    assert len(events) == 2
    assert [e.article_link for e in events] == ["https://news.example/1", "https://news.example/2"]
    assert [e.impact_color for e in events] == ["red", "yellow"]


def test_synthesize_events_drops_null_tickers_and_empty_stocks():
    response = json.dumps([
        _legacy_event(1, Relevant_stocks=[{"ticker": None, "name": "Fed"}]),
        _legacy_event(2, Relevant_stocks=[]),
        _legacy_event(3),
    ])
    events = asyncio.run(synthesize_events(FakeLLM(lambda p: response), [_item(1)], llm_limit=1))

    assert [e.article_link for e in events] == ["https://news.example/3"]


def test_synthesize_events_limits_articles_sent():
    llm = FakeLLM(lambda prompt: "[]")
    asyncio.run(synthesize_events(llm, [_item(n) for n in range(5)], llm_limit=2))

    assert "https://news.example/1" in llm.prompts[0]
    assert "https://news.example/2" not in llm.prompts[0]


def test_synthesize_events_propagates_bad_output():
    llm = FakeLLM(lambda prompt: "the model is sleeping")
    with pytest.raises(ModelOutputError):
        asyncio.run(synthesize_events(llm, [_item(1)], llm_limit=1))


def test_synthesize_events_propagates_model_failure():
    def fail(prompt):
        raise LLMError("gemini error 500", provider="gemini", status=500)

    with pytest.raises(LLMError):
        asyncio.run(synthesize_events(FakeLLM(fail), [_item(1)], llm_limit=1))


# --- режим с подстраховкой ---

def test_impact_from_sentiment():
    assert impact_from_sentiment(0.8) == 80
    assert impact_from_sentiment(-0.6) == 60
    assert impact_from_sentiment(0.2) == 50
    assert impact_from_sentiment(None) == 50


def test_heuristic_event_uses_centroid_and_sentiment():
    item = _item(1, country="gb", sentiment_score=-0.75,
                 entities=[Entity(symbol="BP", name="BP plc"), Entity(name="No ticker")])
    event = heuristic_event(item, "2026-02-02")

    lat, lng = COUNTRY_CENTROIDS["GB"]
    assert (event.coordinates.lat, event.coordinates.lng) == (lat, lng)
    assert event.impact_score == 75
    assert event.impact_color == "red"
    assert [s.ticker for s in event.relevant_stocks] == ["BP"]
    assert event.origin == "heuristic"
    assert event.event_date == "2026-02-02"


def test_heuristic_event_unknown_country():
    event = heuristic_event(_item(1, country="ZZ"), "2026-02-02")
    assert (event.coordinates.lat, event.coordinates.lng) == (0.0, 0.0)
    assert event.impact_score == 50


def test_fallback_yields_exactly_one_event_per_input():
    items = [_item(1), _item(2), _item(3), _item(1)]

    def respond(prompt):
        if "https://news.example/3" in prompt:
            raise LLMError("rate limited", provider="gemini")
        return json.dumps([
            {"event_title": "Model 1", "article_link": "https://news.example/1",
             "event_country": "JP", "impact_score": 92, "event_date": "1999-01-01"},
            {"event_title": "Duplicate", "article_link": "https://news.example/1", "impact_score": 10},
            {"event_title": "Stray", "article_link": "https://elsewhere.example/x", "impact_score": 10},
        ])

    llm = FakeLLM(respond)
    events = asyncio.run(synthesize_with_fallback(llm, items, "2026-02-02", batch_size=2))

    assert [e.article_link for e in events] == [
        "https://news.example/1", "https://news.example/2", "https://news.example/3",
    ]
    assert [e.origin for e in events] == ["model", "heuristic", "heuristic"]
    assert all(e.event_date == "2026-02-02" for e in events)
    assert len(llm.prompts) == 2

    first = events[0]
    assert first.title == "Model 1"
    assert first.impact_color == "red"
    assert (first.coordinates.lat, first.coordinates.lng) == COUNTRY_CENTROIDS["JP"]


def test_fallback_with_unparseable_output_degrades_to_heuristics():
    llm = FakeLLM(lambda prompt: "no json here")
    events = asyncio.run(synthesize_with_fallback(llm, [_item(1), _item(2), _item(3)], "2026-02-02"))

    assert [e.origin for e in events] == ["heuristic"] * 3


def test_fallback_model_event_missing_score_uses_sentiment():
    item = _item(1, sentiment_score=0.9)
    llm = FakeLLM(lambda prompt: json.dumps([{"title": "T", "article_link": item.url}]))

    [event] = asyncio.run(synthesize_with_fallback(llm, [item], "2026-02-02"))

    assert event.origin == "model"
    assert event.impact_score == 90
    assert event.summary == "Summary 1"


def test_fallback_empty_input():
    llm = FakeLLM(lambda prompt: "[]")
    assert asyncio.run(synthesize_with_fallback(llm, [], "2026-02-02")) == []
    assert llm.prompts == []


def test_fallback_survives_rate_limit():
    def fail(prompt):
        raise RateLimitError("gemini rate limit exceeded", provider="gemini")

    events = asyncio.run(synthesize_with_fallback(FakeLLM(fail), [_item(1), _item(2)], "2026-02-02"))

    assert [e.article_link for e in events] == ["https://news.example/1", "https://news.example/2"]
    assert [e.origin for e in events] == ["heuristic", "heuristic"]


def test_fallback_survives_unexpected_client_error():
    def fail(prompt):
        raise RuntimeError("client bug")

    events = asyncio.run(synthesize_with_fallback(FakeLLM(fail), [_item(1), _item(2), _item(3)], "2026-02-02",
                                                  batch_size=2))

    assert [e.origin for e in events] == ["heuristic"] * 3


def test_blank_entity_symbols_are_skipped():
    item = _item(1, entities=[Entity(symbol=" ", name="Blank"), Entity(symbol=" msft ", name="Microsoft")])
    event = heuristic_event(item, "2026-02-02")
    assert [(s.ticker, s.name) for s in event.relevant_stocks] == [("MSFT", "Microsoft")]

    only_blank = _item(2, entities=[Entity(symbol=" ")])
    [event] = asyncio.run(synthesize_with_fallback(FakeLLM(lambda p: "[]"), [only_blank], "2026-02-02"))
    assert event.origin == "heuristic"
    assert event.relevant_stocks == []


def test_fallback_ignores_blank_model_tickers():
    item = _item(1, entities=[Entity(symbol="AAPL", name="Apple")])
    llm = FakeLLM(lambda p: json.dumps([{"title": "T", "article_link": item.url, "impact_score": 40,
                                         "relevant_stocks": [{"ticker": "  ", "name": "Nobody"}]}]))

    [event] = asyncio.run(synthesize_with_fallback(llm, [item], "2026-02-02"))

    assert event.origin == "model"
    assert [s.ticker for s in event.relevant_stocks] == ["AAPL"]
