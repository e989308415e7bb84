"""
Abstract base class for LLM providers.
All providers must implement generate() and ping(); _audit() is shared.
"""
import abc
import time
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from formbuilder.ai.llm_audit_logger import LLMCallRecord, log_llm_call
from formbuilder.forms.schemas import FormDefinition


class ProviderError(Exception):
    """Raised when a provider call fails (network, auth, quota, empty output)."""

    def __init__(self, message: str, provider: str = "", model: str = ""):
        self.provider = provider
        self.model = model
        super().__init__(message)


class ProviderConfigError(ProviderError):
    """Raised at construction when the selected backend is misconfigured."""


class LLMRequest(BaseModel):
    message: str
    form_definition: FormDefinition = Field(default_factory=FormDefinition)
    system_prompt: str = ""


class LLMResponse(BaseModel):
    """Standardised response from any provider.

    `parsed_json` is None when no JSON value could be recovered from
    `raw_text`; interpreting that is the caller's job.
    """
    raw_text: str
    parsed_json: Optional[Any] = None
    provider: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    latency_ms: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LLMProvider(abc.ABC):
    """Abstract LLM provider. One instance per process, built by the factory."""

    provider_name: str = "base"
    model: str = ""
    _temperature: float = 0.0

    @abc.abstractmethod
    async def generate(self, request: LLMRequest) -> LLMResponse:
        """
        Send the system prompt and user message to the model.

        Returns:
            LLMResponse with raw text and best-effort parsed JSON.

        Raises:
            ProviderError on any transport or backend failure.
        """
        ...

    @abc.abstractmethod
    async def ping(self) -> bool:
        """
        Minimal connectivity check.
        Returns True if the backend is reachable, raises ProviderError otherwise.
        """
        ...

    async def _audit(
        self,
        request: LLMRequest,
        prompt_hash: str,
        start: float,
        success: bool,
        error: Optional[str] = None,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        total_tokens: int = 0,
    ) -> float:
        """Report one generate() call to the audit trail and return its latency in ms."""
        latency = round((time.perf_counter() - start) * 1000, 2)
        await log_llm_call(LLMCallRecord(
            provider=self.provider_name,
            model=self.model,
            operation="generate",
            prompt_hash=prompt_hash,
            prompt_length=len(request.message),
            system_prompt_length=len(request.system_prompt),
            field_count=len(request.form_definition.fields),
            success=success,
            latency_ms=latency,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            temperature=self._temperature,
            error=error,
        ))
        return latency
