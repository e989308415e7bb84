"""
Ollama provider — local models through Ollama's OpenAI-compatible /v1 endpoint.
Health check uses the native /api/tags listing to confirm the model is pulled.
"""
import httpx

from formbuilder.ai.providers.base import ProviderConfigError, ProviderError
from formbuilder.ai.providers.openai_provider import OpenAICompatibleProvider
from formbuilder.config import Settings
from formbuilder.core.logging import get_logger

logger = get_logger(__name__)


def native_base_url(base_url: str) -> str:
    """http://host:11434/v1 -> http://host:11434"""
    url = base_url.rstrip("/")
    if url.endswith("/v1"):
        url = url[: -len("/v1")]
    return url


def model_available(tags: dict, model: str) -> bool:
    """Match "llama3.2" against listed names such as "llama3.2:latest"."""
    for entry in tags.get("models") or []:
        name = entry.get("name", "") if isinstance(entry, dict) else ""
        if name == model or name.split(":", 1)[0] == model:
            return True
    return False


class OllamaProvider(OpenAICompatibleProvider):

    provider_name = "ollama"
    display_name = "Ollama"

    def __init__(self, settings: Settings):
        if not settings.OLLAMA_BASE_URL:
            raise ProviderConfigError(
                "OLLAMA_BASE_URL is not configured",
                provider=self.provider_name,
                model=settings.OLLAMA_MODEL,
            )
        super().__init__(
            api_key="ollama",  # Ollama ignores the key but the client requires one
            model=settings.OLLAMA_MODEL,
            temperature=settings.LLM_TEMPERATURE,
            base_url=settings.OLLAMA_BASE_URL,
        )
        self._native_url = native_base_url(settings.OLLAMA_BASE_URL)
        self._healthcheck_timeout = settings.LLM_HEALTHCHECK_TIMEOUT_SECONDS

    async def ping(self) -> bool:
        """Confirm the server answers and the configured model is available."""
        try:
            async with httpx.AsyncClient(timeout=self._healthcheck_timeout) as client:
                response = await client.get(f"{self._native_url}/api/tags")
                response.raise_for_status()
                tags = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(
                f"Ollama connectivity check failed: {exc}",
                provider=self.provider_name,
                model=self.model,
            ) from exc

        if not model_available(tags, self.model):
            raise ProviderError(
                f'Model "{self.model}" not found in Ollama',
                provider=self.provider_name,
                model=self.model,
            )

        logger.info(
            "Ollama ping succeeded",
            extra={"event": "ai_ping", "provider": self.provider_name, "model": self.model},
        )
        return True
