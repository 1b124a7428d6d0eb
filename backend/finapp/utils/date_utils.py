import re
import time
from datetime import date, datetime, timezone
from dateparser import parse as parse_date

DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_DATEPARSER_SETTINGS = {
    "RETURN_AS_TIMEZONE_AWARE": True,
    "TO_TIMEZONE": "UTC",
    "PREFER_DATES_FROM": "past",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_published(value) -> datetime | None:
    """Приводит дату публикации из любого провайдера к aware UTC datetime.

    Понимает datetime, time.struct_time (feedparser), epoch-секунды
    (Reddit, Hacker News) и строки (RFC 822, ISO 8601 и т.п.).
    Возвращает None, если дату разобрать не удалось.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, time.struct_time) or (isinstance(value, tuple) and len(value) >= 6):
        try:
            return datetime(*value[:6], tzinfo=timezone.utc)
        except (TypeError, ValueError):
            return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        try:
            return _as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            pass
        try:
            dt = parse_date(text, settings=_DATEPARSER_SETTINGS)
        except Exception:
            return None
        return _as_utc(dt) if dt else None
    return None


def is_date_only(value: str | None) -> bool:
    return bool(value) and bool(DATE_ONLY_RE.match(value))


def parse_date_only(value: str) -> date:
    """YYYY-MM-DD -> date; ValueError для всего остального."""
    if not is_date_only(value):
        raise ValueError("Invalid date format. Use YYYY-MM-DD")
    return date.fromisoformat(value)
