"""
LLM provider abstraction layer.
Supports OpenAI, OpenRouter, Ollama and Google Gemini with a unified interface.
"""
from formbuilder.ai.providers.base import (
    LLMProvider,
    LLMRequest,
    LLMResponse,
    ProviderConfigError,
    ProviderError,
)
from formbuilder.ai.providers.factory import build_provider

__all__ = [
    "LLMProvider",
    "LLMRequest",
    "LLMResponse",
    "ProviderConfigError",
    "ProviderError",
    "build_provider",
]
