import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import List, Literal, Optional, Union

import requests
from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from finapp.config import settings as default_settings
from finapp.errors import ApiError, LLMError, ModelOutputError, RateLimitError, UpstreamError
from finapp.llm_client import build_llm_client
from finapp.models.news_query import NewsQuery
from finapp.repositories.response_cache import ResponseCache, make_cache_key
from finapp.tasks.llm_task import synthesize_events, synthesize_with_fallback
from finapp.tasks.main_workflow import NewsAggregator, build_default_fetchers, filter_by_symbols
from finapp.tasks.marketaux_task import MarketAuxClient
from finapp.utils.date_utils import parse_date_only
from finapp.utils.source_catalog import resolve_sources

logging.basicConfig(
    level=getattr(logging, default_settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

EVENT_CACHE_HEADERS = {"Cache-Control": "s-maxage=60, stale-while-revalidate=300"}
# Сколько RSS-записей берём для /rss-feeds на один фид
RSS_PER_FEED = 50

router = APIRouter()


class NewsRequest(BaseModel):
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)
    category: Optional[str] = None
    sources: Optional[Union[List[str], str]] = None
    symbols: Optional[List[str]] = None


class EventRequest(BaseModel):
    limit: int = Field(default=20, ge=1, le=100)
    page: int = Field(default=1, ge=1)
    symbols: Optional[List[str]] = None
    exchanges: Optional[List[str]] = None
    entity_types: Optional[List[str]] = None
    countries: Optional[List[str]] = None
    min_match_score: Optional[float] = None
    must_have_entities: bool = False
    published_after: Optional[str] = None
    published_before: Optional[str] = None
    filter_entities: bool = True
    llm_limit: int = Field(default=8, ge=1, le=50)


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "model"]
    content: str

    @field_validator("content")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("content must be a non-empty string")
        return v


class GeminiRequest(BaseModel):
    prompt: Optional[str] = None
    messages: Optional[List[ChatMessage]] = None


def _split(value: Optional[str]) -> Optional[list[str]]:
    """'AAPL,MSFT' -> ['AAPL', 'MSFT']; пустое -> None."""
    if not value:
        return None
    parts = [part.strip() for part in value.split(",") if part.strip()]
    return parts or None


def _resolve_sources_or_400(sources) -> list[str]:
    try:
        return resolve_sources(sources)
    except ValueError as e:
        raise ApiError(400, "Invalid sources", str(e)) from None


def _validate_date(value: Optional[str]) -> str:
    if not value:
        raise ApiError(400, "Date parameter is required (format: YYYY-MM-DD)")
    try:
        parse_date_only(value)
    except ValueError:
        raise ApiError(400, "Invalid date format. Use YYYY-MM-DD") from None
    return value


async def _timed_llm_call(fn, arg, timeout_s: float):
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, arg), timeout=timeout_s)
    except asyncio.TimeoutError:
        raise LLMError(f"Model call timed out after {timeout_s}s", provider="llm") from None


def _elapsed_ms(start: float, end: float) -> int:
    return int(round((end - start) * 1000))


# --- Корень и здоровье ---

@router.get("/")
def read_root():
    return {"status": "OK", "service": "FinApp News"}


@router.get("/health/llm")
async def check_llm(request: Request):
    """Проверяет подключение к модели (Gemini или Ollama)."""
    llm = request.app.state.llm
    provider = getattr(llm, "provider", "unknown")
    try:
        info = await asyncio.to_thread(llm.ping)
    except (UpstreamError, requests.RequestException, ValueError) as e:
        return {"status": "error", "provider": provider, "details": str(e)}
    return {"status": "ok", "provider": provider, **info}


# --- Лента новостей ---

async def _news_payload(request: Request, limit: int, offset: int, category, sources, symbols) -> dict:
    state = request.app.state
    enabled = _resolve_sources_or_400(sources)
    key = make_cache_key("news", {
        "limit": limit, "offset": offset, "category": category,
        "sources": enabled, "symbols": symbols,
    })
    cached = state.cache.get(key)
    if cached is not None:
        logger.info("📦 /news served from cache")
        return cached

    items = await state.aggregator.aggregate(limit=offset + limit, sources=enabled, category=category)
    items = filter_by_symbols(items, symbols)
    page = items[offset:offset + limit]

    payload = {
        "success": True,
        "data": jsonable_encoder(page),
        "meta": {
            "found": len(items),
            "returned": len(page),
            "limit": limit,
            "offset": offset,
            "sources": enabled,
            "category": category,
        },
    }
    state.cache.set(key, payload)
    return payload


@router.get("/news")
async def get_news(
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    category: Optional[str] = None,
    sources: Optional[str] = None,
):
    return await _news_payload(request, limit, offset, category, sources, None)


@router.post("/news")
async def post_news(request: Request, body: NewsRequest):
    """То же, что GET, плюс фильтр по тикерам."""
    return await _news_payload(request, body.limit, body.offset, body.category, body.sources, body.symbols)


@router.get("/rss-feeds")
async def get_rss_feeds(request: Request, date: Optional[str] = None, source: Optional[str] = None):
    """Только RSS, с фильтром по дате публикации и имени источника."""
    if date:
        _validate_date(date)
    state = request.app.state
    limit = RSS_PER_FEED * max(1, len(state.settings.RSS_FEEDS))
    items = await state.aggregator.fetch_source("rss", limit)

    if date:
        items = [item for item in items if item.published_at.date().isoformat() == date]
    if source:
        needle = source.lower()
        items = [item for item in items if needle in item.source.lower()]
    items = sorted(items, key=lambda item: item.published_at, reverse=True)

    return {"success": True, "count": len(items), "date": date or None, "items": jsonable_encoder(items)}


# --- События ---

async def _events_response(request: Request, query: NewsQuery, llm_limit: int, filters: dict, prefix: str):
    state = request.app.state
    key = make_cache_key(prefix, {"query": query.to_params(), "llm_limit": llm_limit})
    cached = state.cache.get(key)
    if cached is not None:
        logger.info(f"📦 {prefix} served from cache")
        return JSONResponse(cached, headers=EVENT_CACHE_HEADERS)

    t0 = time.perf_counter()
    news = await asyncio.to_thread(state.market_news.fetch_news, query)
    t1 = time.perf_counter()

    meta = {
        "limit": query.limit,
        "page": query.page,
        "source": f"marketaux + {getattr(state.llm, 'provider', 'llm')}",
        "filters": filters,
    }
    if not news:
        payload = {
            "success": True,
            "data": [],
            "meta": {
                **meta,
                "found": 0,
                "returned": 0,
                "articles_processed": 0,
                "llm_articles_used": 0,
                "message": "No articles found",
                "timings_ms": {"total": _elapsed_ms(t0, t1), "marketaux": _elapsed_ms(t0, t1), "llm": 0},
            },
        }
        state.cache.set(key, payload)
        return JSONResponse(payload, headers=EVENT_CACHE_HEADERS)

    events = await synthesize_events(state.llm, news, llm_limit, timeout_s=state.settings.LLM_TIMEOUT_S)
    t2 = time.perf_counter()

    payload = {
        "success": True,
        "data": [event.model_dump(mode="json") for event in events],
        "meta": {
            **meta,
            "found": len(events),
            "returned": len(events),
            "articles_processed": len(news),
            "llm_articles_used": min(len(news), max(1, llm_limit)),
            "timings_ms": {
                "total": _elapsed_ms(t0, t2),
                "marketaux": _elapsed_ms(t0, t1),
                "llm": _elapsed_ms(t1, t2),
            },
        },
    }
    state.cache.set(key, payload)
    return JSONResponse(payload, headers=EVENT_CACHE_HEADERS)


@router.get("/event")
async def get_events(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    symbols: Optional[str] = None,
    exchanges: Optional[str] = None,
    countries: Optional[str] = None,
    must_have_entities: bool = False,
    published_after: Optional[str] = None,
    published_before: Optional[str] = None,
    llm_limit: int = Query(8, ge=1, le=50),
):
    query = NewsQuery(
        symbols=_split(symbols),
        exchanges=_split(exchanges),
        countries=_split(countries),
        must_have_entities=must_have_entities,
        published_after=published_after,
        published_before=published_before,
        languages=["en"],
        sort="published_desc",
        limit=limit,
        page=page,
    )
    filters = {
        "sentiment": ["positive", "negative"],
        "symbols": query.symbols,
        "exchanges": query.exchanges,
        "countries": query.countries,
        "must_have_entities": must_have_entities,
    }
    return await _events_response(request, query, llm_limit, filters, "events:get")


@router.post("/event")
async def post_events(request: Request, body: EventRequest):
    query = NewsQuery(
        symbols=body.symbols or None,
        exchanges=body.exchanges or None,
        entity_types=body.entity_types or None,
        countries=body.countries or None,
        min_match_score=body.min_match_score,
        must_have_entities=body.must_have_entities,
        published_after=body.published_after,
        published_before=body.published_before,
        filter_entities=body.filter_entities,
        languages=["en"],
        sort="published_desc",
        limit=body.limit,
        page=body.page,
    )
    filters = {
        "sentiment": ["positive", "negative"],
        "symbols": query.symbols,
        "exchanges": query.exchanges,
        "entity_types": query.entity_types,
        "countries": query.countries,
        "min_match_score": query.min_match_score,
        "must_have_entities": body.must_have_entities,
        "filter_entities": body.filter_entities,
    }
    return await _events_response(request, query, body.llm_limit, filters, "events:post")


@router.get("/time-machine")
async def time_machine(request: Request, date: Optional[str] = None):
    """События за конкретный день. Каждая новость дня даёт ровно одно событие."""
    date = _validate_date(date)
    state = request.app.state
    key = make_cache_key("time-machine", {"date": date})
    cached = state.cache.get(key)
    if cached is not None:
        return cached

    logger.info(f"🕰️ Time Machine: fetching events for {date}")
    news = await asyncio.to_thread(state.market_news.fetch_news_by_date, date)
    if not news:
        logger.info(f"⚠️ No articles found for {date}")
        return []

    events = await synthesize_with_fallback(
        state.llm, news, date,
        batch_size=state.settings.EVENT_BATCH_SIZE,
        timeout_s=state.settings.LLM_TIMEOUT_S,
    )
    payload = [event.model_dump(mode="json") for event in events]
    state.cache.set(key, payload)
    return payload


# --- Прямой доступ к модели ---

@router.get("/gemini")
def gemini_health():
    return {"message": "Gemini API endpoint is working", "status": "healthy"}


@router.post("/gemini")
async def gemini_generate(request: Request, body: GeminiRequest):
    state = request.app.state
    timeout_s = state.settings.LLM_TIMEOUT_S
    if body.messages:
        messages = [m.model_dump() for m in body.messages]
        text = await _timed_llm_call(state.llm.generate_from_messages, messages, timeout_s)
    elif body.prompt and body.prompt.strip():
        text = await _timed_llm_call(state.llm.generate, body.prompt, timeout_s)
    else:
        raise ApiError(400, "Prompt or messages are required")
    return {"success": True, "response": text}


# --- Обработчики ошибок ---

async def api_error_handler(request: Request, exc: ApiError):
    content = {"error": exc.error}
    if exc.details is not None:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})


async def rate_limit_handler(request: Request, exc: RateLimitError):
    logger.warning(f"⚠️ {exc.provider} rate limit on {request.url.path}")
    return JSONResponse(
        status_code=429,
        content={"error": "Upstream rate limit exceeded", "details": exc.note or str(exc)},
    )


async def model_output_handler(request: Request, exc: ModelOutputError):
    logger.error(f"❌ Failed to parse model response on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Failed to parse AI response", "details": str(exc), "raw_response": exc.raw_response},
    )


async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.error(f"❌ Upstream {exc.provider or 'provider'} failed on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Upstream provider failed", "details": str(exc)})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"❌ Unhandled error on {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Без ключа Gemini сервис не стартует
    if app.state.llm is None:
        app.state.llm = build_llm_client(app.state.settings)
    logger.info(f"🚀 FinApp News started (llm={getattr(app.state.llm, 'provider', 'custom')})")
    yield
    app.state.cache.clear()
    logger.info("FinApp News shutdown complete")


def create_app(settings=None, *, aggregator=None, market_news=None, llm=None, cache=None) -> FastAPI:
    """Собирает приложение. Зависимости можно подменить (в тестах так и делаем)."""
    settings = settings or default_settings
    app = FastAPI(title="FinApp News API", version="1.0.0", lifespan=lifespan)

    app.state.settings = settings
    app.state.aggregator = aggregator or NewsAggregator(
        build_default_fetchers(settings), timeout_s=settings.ADAPTER_TIMEOUT_S
    )
    app.state.market_news = market_news or MarketAuxClient(
        settings.MARKETAUX_API_KEY, settings.MARKETAUX_API_BASE_URL, timeout=settings.HTTP_TIMEOUT_S
    )
    app.state.llm = llm
    app.state.cache = cache if cache is not None else ResponseCache(
        settings.CACHE_TTL_SECONDS, settings.CACHE_MAX_ENTRIES
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitError, rate_limit_handler)
    app.add_exception_handler(ModelOutputError, model_output_handler)
    app.add_exception_handler(UpstreamError, upstream_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    return app


app = create_app()
