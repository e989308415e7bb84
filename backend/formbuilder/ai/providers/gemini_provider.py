"""
Google Gemini provider — implements LLMProvider via google-generativeai.
JSON output is requested through response_mime_type; all calls audited.
"""
import asyncio
import time

import google.generativeai as genai

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


class GeminiProvider(LLMProvider):
    """Google Gemini provider with JSON output."""

    provider_name = "gemini"

    def __init__(self, settings: Settings):
        if not settings.GEMINI_API_KEY:
            raise ProviderConfigError(
                "GEMINI_API_KEY is not configured",
                provider=self.provider_name,
                model=settings.GEMINI_MODEL,
            )

        genai.configure(api_key=settings.GEMINI_API_KEY)
        self.model = settings.GEMINI_MODEL
        self._temperature = settings.LLM_TEMPERATURE
        self._genai = genai

    async def generate(self, request: LLMRequest) -> LLMResponse:
        start = time.perf_counter()
        prompt_hash = hash_prompt(request.message)

        try:
            model = self._genai.GenerativeModel(
                model_name=self.model,
                system_instruction=request.system_prompt or None,
                generation_config=self._genai.GenerationConfig(
                    response_mime_type="application/json",
                    temperature=self._temperature,
                ),
            )
            response = await model.generate_content_async(request.message)
            content = (response.text or "").strip()
        except asyncio.CancelledError:
            await self._audit(request, prompt_hash, start, success=False, error="Cancelled")
            raise
        except Exception as exc:
            # response.text raises when the candidate was blocked
            await self._audit(request, prompt_hash, start, success=False, error=str(exc))
            raise ProviderError(
                f"Gemini call failed: {exc}",
                provider=self.provider_name,
                model=self.model,
            ) from exc

        if not content:
            await self._audit(request, prompt_hash, start, success=False, error="Empty response")
            raise ProviderError(
                "Gemini returned an empty response",
                provider=self.provider_name,
                model=self.model,
            )

        prompt_tokens = 0
        completion_tokens = 0
        total_tokens = 0
        usage = getattr(response, "usage_metadata", None)
        if usage:
            prompt_tokens = getattr(usage, "prompt_token_count", 0) or 0
            completion_tokens = getattr(usage, "candidates_token_count", 0) or 0
            total_tokens = getattr(usage, "total_token_count", 0) or 0

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
        """Minimal connectivity check."""
        try:
            model = self._genai.GenerativeModel(model_name=self.model)
            await model.generate_content_async("ping")
        except Exception as exc:
            raise ProviderError(
                f"Gemini connectivity check failed: {exc}",
                provider=self.provider_name,
                model=self.model,
            ) from exc
        logger.info(
            "Gemini ping succeeded",
            extra={"event": "ai_ping", "provider": self.provider_name, "model": self.model},
        )
        return True
