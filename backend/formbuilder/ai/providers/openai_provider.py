"""
OpenAI provider — implements LLMProvider over the ChatCompletion API.
The same client drives every OpenAI-compatible backend (OpenRouter, Ollama /v1),
so the shared call logic lives in OpenAICompatibleProvider.
"""
import asyncio
import time
from typing import Dict, Optional

from openai import AsyncOpenAI

from formbuilder.ai.json_extract import extract_json
from formbuilder.ai.llm_audit_logger import hash_prompt
from formbuilder.ai.providers.base import (
    LLMProvider,
    LLMRequest,
    LLMResponse,
    ProviderConfigError,
    ProviderError,
)
from formbuilder.config import Settings
from formbuilder.core.logging import get_logger

logger = get_logger(__name__)


class OpenAICompatibleProvider(LLMProvider):
    """ChatCompletion provider requesting JSON-object output."""

    provider_name = "openai"
    display_name = "OpenAI"

    def __init__(
        self,
        api_key: str,
        model: str,
        temperature: float = 0.3,
        base_url: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ):
        self.model = model
        self._temperature = temperature
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            default_headers=default_headers,
        )

    async def generate(self, request: LLMRequest) -> LLMResponse:
        start = time.perf_counter()
        prompt_hash = hash_prompt(request.message)

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": request.system_prompt},
                    {"role": "user", "content": request.message},
                ],
                temperature=self._temperature,
                response_format={"type": "json_object"},
            )
        except asyncio.CancelledError:
            await self._audit(request, prompt_hash, start, success=False, error="Cancelled")
            raise
        except Exception as exc:
            await self._audit(request, prompt_hash, start, success=False, error=str(exc))
            raise ProviderError(
                f"{self.display_name} call failed: {exc}",
                provider=self.provider_name,
                model=self.model,
            ) from exc

        content = ""
        if response.choices:
            content = (response.choices[0].message.content or "").strip()
        if not content:
            await self._audit(request, prompt_hash, start, success=False, error="Empty response")
            raise ProviderError(
                f"{self.display_name} returned an empty response",
                provider=self.provider_name,
                model=self.model,
            )

        usage = response.usage
        prompt_tokens = usage.prompt_tokens if usage else 0
        completion_tokens = usage.completion_tokens if usage else 0
        total_tokens = usage.total_tokens if usage else 0

        latency = await self._audit(
            request,
            prompt_hash,
            start,
            success=True,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
        )

        return LLMResponse(
            raw_text=content,
            parsed_json=extract_json(content),
            provider=self.provider_name,
            model=self.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            latency_ms=latency,
        )

    async def ping(self) -> bool:
        """Minimal connectivity check with a tiny completion."""
        try:
            await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=5,
            )
        except Exception as exc:
            raise ProviderError(
                f"{self.display_name} connectivity check failed: {exc}",
                provider=self.provider_name,
                model=self.model,
            ) from exc
        logger.info(
            f"{self.display_name} ping succeeded",
            extra={"event": "ai_ping", "provider": self.provider_name, "model": self.model},
        )
        return True


class OpenAIProvider(OpenAICompatibleProvider):
    """api.openai.com backend."""

    provider_name = "openai"
    display_name = "OpenAI"

    def __init__(self, settings: Settings):
        if not settings.OPENAI_API_KEY:
            raise ProviderConfigError(
                "OPENAI_API_KEY is not configured",
                provider=self.provider_name,
                model=settings.OPENAI_MODEL,
            )
        super().__init__(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            temperature=settings.LLM_TEMPERATURE,
        )
