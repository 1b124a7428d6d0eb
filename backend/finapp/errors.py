import re

_SECRET_RE = re.compile(r"(api_token|apikey|api_key|key|token)=[^&\s]+", re.IGNORECASE)


def sanitize(text: str) -> str:
    """Маскирует ключи API в URL и текстах ошибок перед логированием."""
    return _SECRET_RE.sub(r"\1=***", str(text))


class NewsServiceError(Exception):
    """Базовая ошибка сервиса."""


class UpstreamError(NewsServiceError):
    """Внешний провайдер (новости, LLM) ответил ошибкой или недоступен."""

    def __init__(self, message: str, *, provider: str = "", status: int | None = None):
        self.provider = provider
        self.status = status
        super().__init__(sanitize(message))


class RateLimitError(UpstreamError):
    """Провайдер вернул 429."""

    def __init__(self, message: str, *, provider: str = "", note: str = ""):
        self.note = sanitize(note)
        super().__init__(message, provider=provider, status=429)


class LLMError(UpstreamError):
    pass


class ModelOutputError(NewsServiceError):
    """Модель ответила, но это не JSON-массив."""

    def __init__(self, message: str, raw_response: str = ""):
        self.raw_response = raw_response[:500]
        super().__init__(message)


class ApiError(NewsServiceError):
    """Ошибка уровня запроса, которую HTTP-слой отдаёт как {error, details}."""

    def __init__(self, status_code: int, error: str, details=None):
        self.status_code = status_code
        self.error = error
        self.details = details
        super().__init__(error)
