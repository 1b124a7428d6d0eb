import asyncio
import json
import logging
import re

from pydantic import ValidationError

from finapp.errors import LLMError, ModelOutputError, UpstreamError
from finapp.models.market_event import IMPACT_BANDS, MarketEvent, clamp_impact
from finapp.models.news_item import NewsItem
from finapp.utils.geo import country_centroid

logger = logging.getLogger(__name__)

MAX_ENTITIES_FOR_LLM = 3
MAX_STOCKS_PER_EVENT = 3

# Поля, которые обязаны быть непустыми в строгом режиме
REQUIRED_FIELDS = (
    "title", "image_url", "latitude", "longitude", "summary", "category",
    "article_link", "impact_score", "impact_reason", "impact_color",
    "relevant_stocks", "event_date",
)

# Старые написания полей из прежних версий промпта -> канонические имена
FIELD_ALIASES = {
    "event_title": "title",
    "event_summary": "summary",
    "event_category": "category",
    "event_img": "image_url",
    "event_image": "image_url",
    "article_link": "article_link",
    "article_url": "article_link",
    "event_longtitude": "longitude",
    "event_longitude": "longitude",
    "lng": "longitude",
    "event_latitude": "latitude",
    "lat": "latitude",
    "event_country": "country_code",
    "country": "country_code",
    "impact_reason": "impact_reason",
    "relevant_stocks": "relevant_stocks",
}

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _rubric() -> str:
    lines = [f"- {low}–{high} = {label} → \"{color}\"" for low, high, label, color in IMPACT_BANDS]
    return "IMPACT SCORING (0–100) + COLOR\n" + "\n".join(lines)


IMPACT_RUBRIC = _rubric()

EVENT_SCHEMA = """[
  {
    "title": "string",
    "summary": "string",
    "category": "string",
    "article_link": "string (the url of the input article)",
    "image_url": "string (the image_url of the input article)",
    "latitude": number,
    "longitude": number,
    "country_code": "ISO 3166-1 alpha-2 code, e.g. US",
    "impact_score": number (0-100),
    "impact_reason": "string",
    "impact_color": "green" | "yellow" | "red",
    "relevant_stocks": [{"ticker": "string", "name": "string"}],
    "event_date": "ISO 8601 date or datetime"
  }
]"""


def trim_articles_for_llm(items: list[NewsItem]) -> list[dict]:
    """Только то, что нужно модели: без лишних полей промпт короче."""
    trimmed = []
    for item in items:
        trimmed.append({
            "title": item.title,
            "summary": item.description,
            "published_at": item.published_at.isoformat(),
            "url": item.url,
            "image_url": item.image_url or "",
            "entities": [
                {"symbol": e.symbol, "name": e.name, "country": e.country}
                for e in item.entities[:MAX_ENTITIES_FOR_LLM]
            ],
            "symbols": item.symbols,
            "sentiment": item.sentiment,
            "sentiment_score": item.sentiment_score,
            "country": item.country or "",
            "category": item.category,
        })
    return trimmed


def build_event_prompt(articles: list[dict]) -> str:
    return f"""You are a financial news analyst. Analyze the following news articles and convert them into structured event data.

IMPORTANT:
- Only include articles that have POSITIVE or NEGATIVE sentiment/impact on markets or companies. Skip neutral or informational news.
- Only include events where ALL fields can be populated with real data (no null values allowed).
- Skip any article if you cannot determine the location coordinates, image URL, article link, or relevant stock tickers.
- All events must have at least one relevant stock with a valid ticker.

{IMPACT_RUBRIC}

SCORING EXPLANATION (for impact_reason)
Write 2–3 short sentences in plain English describing who or what is affected,
how certain or official the news is, when the effects will happen and how big the consequence is.
Avoid technical or investor jargon.

LOCATION
- Use the city or country most connected to the event (where it occurs or where the company/government is based).
- Return latitude and longitude of that place.

DATE
- Set event_date to a realistic ISO 8601 date or datetime for the event; if unclear, use the article's published date.

INPUT ARTICLES (trimmed):
{json.dumps(articles, indent=2, ensure_ascii=False)}

OUTPUT FORMAT:
Return ONLY a valid JSON array conforming to this schema (all fields are required, no nulls):
{EVENT_SCHEMA}

Return only the JSON array, no markdown formatting or additional text."""


def build_time_machine_prompt(articles: list[dict], target_date: str) -> str:
    return f"""You are a financial and market intelligence analyst. Analyze these {len(articles)} market news articles published on {target_date} and produce structured market-impact events.

Rules:
- Produce at most one event per article and copy the article url into article_link exactly.
- Use the EXACT property names from the schema below.
- Always identify related public companies, sectors or indices; include up to 3 in relevant_stocks.
  If no public ticker is found, leave relevant_stocks empty.
- Always determine the country the event is most relevant to (ISO 2-letter code in country_code).
  Use the headquarters city of the company when the event is tied to one.
  If no city can be determined, use the centre of that country.
- Always use the article's image_url for image_url.
- Do not give every event the same score: most routine news belongs in the lower bands.

{IMPACT_RUBRIC}

The impact_color MUST match the band of impact_score.

Schema:
{EVENT_SCHEMA}

Articles:
{json.dumps(articles, indent=2, ensure_ascii=False)}

Output only valid JSON as an array matching the schema. Do not include explanations or extra text."""


def parse_model_events(text: str) -> list[dict]:
    """Достаёт JSON-массив из ответа модели.

    Сначала снимаем markdown-ограждение и парсим целиком, затем один раз
    пробуем кусок от первой '[' до последней ']'. Иначе ModelOutputError.
    """
    cleaned = _FENCE_RE.sub("", (text or "").strip()).strip()
    parsed = None
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        pass

    if not isinstance(parsed, list):
        start, end = cleaned.find("["), cleaned.rfind("]")
        if start == -1 or end <= start:
            raise ModelOutputError("Response is not a JSON array", raw_response=text or "")
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except ValueError as e:
            raise ModelOutputError(f"Invalid JSON in model response: {e}", raw_response=text) from None
        if not isinstance(parsed, list):
            raise ModelOutputError("Response is not a JSON array", raw_response=text)

    return [element for element in parsed if isinstance(element, dict)]


def translate_event_fields(raw: dict) -> dict:
    """Приводит имена полей к каноническим. Каноническое имя важнее синонима."""
    result = {}
    aliased = {}
    for key, value in raw.items():
        canonical = FIELD_ALIASES.get(str(key).lower())
        if canonical is None or canonical == key:
            result[key] = value
        elif value is not None:
            aliased.setdefault(canonical, value)

    for key, value in aliased.items():
        if result.get(key) is None:
            result[key] = value

    coords = result.pop("coordinates", None)
    if isinstance(coords, dict):
        if result.get("latitude") is None:
            result["latitude"] = coords.get("lat")
        if result.get("longitude") is None:
            result["longitude"] = coords.get("lng")
    return result


def _to_event(fields: dict, origin: str) -> MarketEvent | None:
    data = {
        "title": fields.get("title"),
        "summary": fields.get("summary") or "",
        "category": fields.get("category") or "General",
        "article_link": fields.get("article_link"),
        "image_url": fields.get("image_url") or "",
        "coordinates": {"lat": fields.get("latitude"), "lng": fields.get("longitude")},
        "country_code": fields.get("country_code"),
        "impact_score": fields.get("impact_score"),
        "impact_reason": fields.get("impact_reason") or "",
        "impact_color": fields.get("impact_color") or "green",
        "relevant_stocks": fields.get("relevant_stocks") or [],
        "event_date": str(fields.get("event_date") or ""),
        "origin": origin,
    }
    try:
        return MarketEvent.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Dropping event '{fields.get('title')}': {e.error_count()} validation errors")
        return None


def _stocks_complete(stocks) -> bool:
    if not isinstance(stocks, list) or not stocks:
        return False
    return all(
        isinstance(s, dict) and s.get("ticker") is not None and s.get("name") is not None
        for s in stocks
    )


def validate_strict_events(raw_events: list[dict]) -> list[MarketEvent]:
    """Строгий отбор: все обязательные поля есть и не null, акции полные."""
    events = []
    for raw in raw_events:
        fields = translate_event_fields(raw)
        missing = [name for name in REQUIRED_FIELDS if fields.get(name) is None]
        if missing:
            logger.info(f"⏭️ Skipping event '{fields.get('title')}': missing {missing}")
            continue
        if not _stocks_complete(fields["relevant_stocks"]):
            logger.info(f"⏭️ Skipping event '{fields.get('title')}': incomplete relevant_stocks")
            continue
        event = _to_event(fields, origin="model")
        if event is not None:
            events.append(event)
    return events


async def _call_model(llm, prompt: str, timeout_s: float | None) -> str:
    try:
        return await asyncio.wait_for(asyncio.to_thread(llm.generate, prompt), timeout=timeout_s)
    except asyncio.TimeoutError:
        provider = getattr(llm, "provider", "llm")
        raise LLMError(f"{provider} timed out after {timeout_s}s", provider=provider) from None


async def synthesize_events(llm, items: list[NewsItem], llm_limit: int, timeout_s: float | None = None) -> list[MarketEvent]:
    """Пакетный режим: один вызов модели на первые llm_limit новостей.

    Ошибка модели или нечитаемый ответ пробрасываются наверх.
    """
    if not items:
        return []
    articles = trim_articles_for_llm(items[: max(1, llm_limit)])
    text = await _call_model(llm, build_event_prompt(articles), timeout_s)
    raw_events = parse_model_events(text)
    events = validate_strict_events(raw_events)
    logger.info(f"🤖 Model returned {len(raw_events)} events, {len(events)} passed validation")
    return events


def impact_from_sentiment(score) -> int:
    """Оценка влияния по тональности: чем сильнее тональность, тем сильнее влияние."""
    strength = abs(float(score or 0.0))
    if strength > 0.4:
        return clamp_impact(strength * 100)
    return 50


def _coordinates_for(fields: dict, fallback_country: str | None) -> tuple[float, float, str | None]:
    country = fields.get("country_code") or fallback_country
    lat, lng = fields.get("latitude"), fields.get("longitude")
    if isinstance(lat, (int, float)) and isinstance(lng, (int, float)) and not (lat == 0 and lng == 0):
        return float(lat), float(lng), country
    centroid = country_centroid(country)
    if centroid is None:
        return 0.0, 0.0, country
    return centroid[0], centroid[1], country


def _clean_stocks(stocks) -> list[dict]:
    result = []
    for stock in stocks if isinstance(stocks, list) else []:
        if not isinstance(stock, dict) or not str(stock.get("ticker") or "").strip():
            continue
        ticker = str(stock["ticker"]).strip()
        result.append({"ticker": ticker, "name": str(stock.get("name") or ticker)})
    return result[:MAX_STOCKS_PER_EVENT]


def _stocks_from_item(item: NewsItem) -> list[dict]:
    stocks = []
    for e in item.entities:
        ticker = (e.symbol or "").strip()
        if ticker:
            stocks.append({"ticker": ticker, "name": e.name or ticker})
    if not stocks:
        stocks = [{"ticker": s.strip(), "name": s.strip()} for s in item.symbols if s and s.strip()]
    return stocks[:MAX_STOCKS_PER_EVENT]


def normalize_model_event(raw: dict, item: NewsItem, target_date: str) -> MarketEvent | None:
    """Мягкая нормализация события модели: пробелы заполняются из исходной новости."""
    fields = translate_event_fields(raw)
    lat, lng, country = _coordinates_for(fields, item.country)
    score = fields.get("impact_score")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        score = impact_from_sentiment(item.sentiment_score)

    normalized = {
        "title": fields.get("title") or item.title,
        "summary": fields.get("summary") or item.description,
        "category": fields.get("category") or item.category,
        "article_link": item.url,
        "image_url": fields.get("image_url") or item.image_url or "",
        "latitude": lat,
        "longitude": lng,
        "country_code": country,
        "impact_score": score,
        "impact_reason": fields.get("impact_reason") or f"Estimated from sentiment: {item.sentiment or 'unknown'}",
        "impact_color": "green",
        "relevant_stocks": _clean_stocks(fields.get("relevant_stocks")) or _stocks_from_item(item),
        "event_date": target_date,
    }
    return _to_event(normalized, origin="model")


def heuristic_event(item: NewsItem, target_date: str) -> MarketEvent:
    """Детерминированное событие без модели: тональность + центр страны."""
    centroid = country_centroid(item.country) or (0.0, 0.0)
    return MarketEvent(
        title=item.title,
        summary=item.description,
        category=item.category or "General",
        article_link=item.url,
        image_url=item.image_url or "",
        coordinates={"lat": centroid[0], "lng": centroid[1]},
        country_code=item.country,
        impact_score=impact_from_sentiment(item.sentiment_score),
        impact_reason=f"Estimated from sentiment: {item.sentiment or 'unknown'}",
        impact_color="green",
        relevant_stocks=_stocks_from_item(item),
        event_date=target_date,
        origin="heuristic",
    )


async def _process_batch(llm, batch: list[NewsItem], target_date: str, timeout_s: float | None) -> list[dict]:
    prompt = build_time_machine_prompt(trim_articles_for_llm(batch), target_date)
    try:
        text = await _call_model(llm, prompt, timeout_s)
        return parse_model_events(text)
    except (UpstreamError, ModelOutputError) as e:
        logger.warning(f"⚠️ Model batch of {len(batch)} failed: {e}")
        return []
    except Exception as e:
        # пакет уходит в эвристику, запрос целиком не падает
        logger.warning(f"⚠️ Unexpected error in model batch of {len(batch)}: {e!r}")
        return []


async def synthesize_with_fallback(llm, items: list[NewsItem], target_date: str,
                                   batch_size: int = 2, timeout_s: float | None = None) -> list[MarketEvent]:
    """Режим с подстраховкой: ровно одно событие на каждый URL входа.

    Пакеты по batch_size идут к модели параллельно, упавшие пакеты ничего
    не дают. Новости без события от модели получают эвристическое событие.
    """
    unique: dict[str, NewsItem] = {}
    for item in items:
        unique.setdefault(item.url, item)
    if not unique:
        return []

    inputs = list(unique.values())
    size = max(1, batch_size)
    batches = [inputs[i:i + size] for i in range(0, len(inputs), size)]
    logger.info(f"🤖 Processing {len(batches)} batches for {target_date}")

    # gather сохраняет порядок пакетов
    results = await asyncio.gather(*(_process_batch(llm, b, target_date, timeout_s) for b in batches))

    model_events: dict[str, MarketEvent] = {}
    for raw_events in results:
        for raw in raw_events:
            link = translate_event_fields(raw).get("article_link")
            item = unique.get(link) if isinstance(link, str) else None
            if item is None or item.url in model_events:
                continue
            event = normalize_model_event(raw, item, target_date)
            if event is not None:
                model_events[item.url] = event

    events = [model_events.get(item.url) or heuristic_event(item, target_date) for item in inputs]
    logger.info(
        f"✅ Generated {len(events)} events for {target_date} "
        f"({len(model_events)} from model, {len(events) - len(model_events)} fallback)"
    )
    return events
