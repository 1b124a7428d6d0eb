import json
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional


def make_cache_key(prefix: str, payload) -> str:
    """Ключ кэша: префикс маршрута + нормализованные параметры запроса."""
    return f"{prefix}:{json.dumps(payload, sort_keys=True, default=str)}"


class ResponseCache:
    """In-memory кэш ответов с TTL и ограничением размера.

    Просроченные записи удаляются лениво при чтении. При переполнении
    выбрасывается самая давно использованная запись.
    """

    def __init__(self, ttl_seconds: float = 60.0, max_entries: int = 512,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: "OrderedDict[str, tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
