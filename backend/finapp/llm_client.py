import logging

import requests

from finapp.errors import LLMError, RateLimitError, sanitize

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_MODEL = "mistral:7b-instruct-q4_K_M"


def _check_response(resp, provider: str):
    if resp.status_code == 429:
        note = sanitize(resp.text[:200])
        logger.warning(f"⚠️ {provider} rate limit: {note}")
        raise RateLimitError(f"{provider} rate limit exceeded", provider=provider, note=note)
    if resp.status_code != 200:
        logger.error(f"{provider} error {resp.status_code}: {sanitize(resp.text[:300])}")
        raise LLMError(f"{provider} error {resp.status_code}", provider=provider, status=resp.status_code)


class GeminiClient:
    """Gemini через REST generateContent. Ключ идёт в заголовке, не в URL."""

    provider = "gemini"

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash",
                 base_url: str = "https://generativelanguage.googleapis.com/v1beta",
                 timeout: float = 60.0, grounding: bool = True, temperature: float = 0.3):
        if not api_key:
            raise RuntimeError("GEMINI_API_KEY is not configured on the server")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.grounding = grounding
        self.temperature = temperature

    def _post(self, contents: list) -> str:
        payload = {
            "contents": contents,
            "generationConfig": {"temperature": self.temperature},
        }
        if self.grounding:
            payload["tools"] = [{"google_search": {}}]

        url = f"{self.base_url}/models/{self.model}:generateContent"
        try:
            resp = requests.post(url, json=payload, timeout=self.timeout,
                                 headers={"x-goog-api-key": self.api_key})
        except requests.RequestException as e:
            logger.error(f"Gemini request failed: {sanitize(e)}")
            raise LLMError(f"Gemini request failed: {e}", provider=self.provider) from None

        _check_response(resp, self.provider)
        try:
            candidates = resp.json().get("candidates") or []
            parts = candidates[0]["content"]["parts"] if candidates else []
        except (ValueError, KeyError, IndexError, TypeError, AttributeError):
            raise LLMError("Gemini returned an unexpected payload", provider=self.provider) from None

        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()
        if not text:
            raise LLMError("Gemini returned an empty response", provider=self.provider)
        return text

    def generate(self, prompt: str) -> str:
        return self._post([{"role": "user", "parts": [{"text": prompt}]}])

    def generate_from_messages(self, messages: list) -> str:
        contents = [
            {
                "role": "model" if m["role"] in ("assistant", "model") else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in messages
        ]
        return self._post(contents)

    def ping(self) -> dict:
        resp = requests.get(f"{self.base_url}/models/{self.model}", timeout=5,
                            headers={"x-goog-api-key": self.api_key})
        _check_response(resp, self.provider)
        return {"model": self.model}


class OllamaClient:
    """Локальный Ollama."""

    provider = "ollama"

    def __init__(self, host: str = "http://localhost:11434", model: str = DEFAULT_OLLAMA_MODEL,
                 timeout: float = 120.0, temperature: float = 0.3):
        self.host = host.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.temperature = temperature

    def _post(self, path: str, payload: dict) -> dict:
        try:
            resp = requests.post(f"{self.host}{path}", json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Ollama request failed: {e}")
            raise LLMError(f"Ollama request failed: {e}", provider=self.provider) from None
        _check_response(resp, self.provider)
        try:
            return resp.json()
        except ValueError:
            raise LLMError("Ollama returned non-JSON", provider=self.provider) from None

    def generate(self, prompt: str) -> str:
        data = self._post("/api/generate", {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": self.temperature, "num_ctx": 8192},
        })
        text = str(data.get("response", "")).strip()
        if not text:
            raise LLMError("Ollama returned an empty response", provider=self.provider)
        return text

    def generate_from_messages(self, messages: list) -> str:
        data = self._post("/api/chat", {
            "model": self.model,
            "messages": [
                {"role": "assistant" if m["role"] in ("assistant", "model") else "user", "content": m["content"]}
                for m in messages
            ],
            "stream": False,
            "options": {"temperature": self.temperature},
        })
        text = str((data.get("message") or {}).get("content", "")).strip()
        if not text:
            raise LLMError("Ollama returned an empty response", provider=self.provider)
        return text

    def ping(self) -> dict:
        resp = requests.get(f"{self.host}/api/tags", timeout=5)
        _check_response(resp, self.provider)
        models = [m["name"] for m in resp.json().get("models", [])]
        return {"model": self.model, "available_models": models}


def build_llm_client(settings):
    """Клиент по LLM_PROVIDER. Для Gemini без ключа сразу RuntimeError."""
    if settings.LLM_PROVIDER == "ollama":
        return OllamaClient(settings.OLLAMA_HOST, settings.OLLAMA_MODEL, timeout=settings.LLM_TIMEOUT_S)
    if settings.LLM_PROVIDER != "gemini":
        raise RuntimeError(f"Unknown LLM_PROVIDER '{settings.LLM_PROVIDER}'")
    return GeminiClient(
        settings.GEMINI_API_KEY,
        model=settings.GEMINI_MODEL,
        base_url=settings.GEMINI_API_BASE_URL,
        timeout=settings.LLM_TIMEOUT_S,
        grounding=settings.GEMINI_GROUNDING,
    )
