"""
OpenRouter provider — OpenAI-compatible gateway to many hosted models.
"""
from formbuilder.ai.providers.base import ProviderConfigError
from formbuilder.ai.providers.openai_provider import OpenAICompatibleProvider
from formbuilder.config import Settings


class OpenRouterProvider(OpenAICompatibleProvider):

    provider_name = "openrouter"
    display_name = "OpenRouter"

    def __init__(self, settings: Settings):
        api_key = settings.openrouter_api_key
        if not api_key:
            raise ProviderConfigError(
                "OPENROUTER_API_KEY is not configured",
                provider=self.provider_name,
                model=settings.OPENROUTER_MODEL,
            )
        super().__init__(
            api_key=api_key,
            model=settings.OPENROUTER_MODEL,
            temperature=settings.LLM_TEMPERATURE,
            base_url=settings.OPENROUTER_BASE_URL,
            default_headers={"X-Title": settings.APP_NAME},
        )
