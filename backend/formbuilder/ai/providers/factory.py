"""
LLM provider factory — returns the configured provider instance.
Supports: openai, openrouter, ollama, gemini. One backend per process,
selected by LLM_PROVIDER; there is no fallback cascade.
"""
from typing import Optional

from formbuilder.ai.providers.base import LLMProvider, ProviderConfigError
from formbuilder.config import Settings, settings as default_settings
from formbuilder.core.logging import get_logger

logger = get_logger(__name__)


def build_provider(settings: Optional[Settings] = None) -> LLMProvider:
    """
    Instantiate the provider named by LLM_PROVIDER.
    Raises ProviderConfigError if the provider is unsupported or misconfigured.
    """
    settings = settings or default_settings
    provider_name = settings.llm_provider

    if provider_name == "openai":
        provider = _make_openai(settings)
    elif provider_name == "openrouter":
        provider = _make_openrouter(settings)
    elif provider_name == "ollama":
        provider = _make_ollama(settings)
    elif provider_name == "gemini":
        provider = _make_gemini(settings)
    else:
        raise ProviderConfigError(
            f"Unsupported LLM provider: '{provider_name}'. "
            f"Must be 'openai', 'openrouter', 'ollama', or 'gemini'.",
            provider=provider_name,
        )

    logger.info(
        f"LLM provider ready: {provider_name}",
        extra={"event": "llm_provider_ready", "provider": provider_name, "model": provider.model},
    )
    return provider


# ═══════════════════════════════════════════════════════════════════
#  Provider constructors
# ═══════════════════════════════════════════════════════════════════

def _make_openai(settings: Settings) -> LLMProvider:
    from formbuilder.ai.providers.openai_provider import OpenAIProvider
    return OpenAIProvider(settings)


def _make_openrouter(settings: Settings) -> LLMProvider:
    from formbuilder.ai.providers.openrouter_provider import OpenRouterProvider
    return OpenRouterProvider(settings)


def _make_ollama(settings: Settings) -> LLMProvider:
    from formbuilder.ai.providers.ollama_provider import OllamaProvider
    return OllamaProvider(settings)


def _make_gemini(settings: Settings) -> LLMProvider:
    from formbuilder.ai.providers.gemini_provider import GeminiProvider
    return GeminiProvider(settings)
