"""
AI orchestrator — turns a natural-language instruction plus the current form
definition into a validated candidate definition.

Every failure is reported as a typed AIServiceResponse; nothing propagates.
The orchestrator is stateless: the caller owns the editing buffer.
"""
import asyncio
from typing import List, Optional

from formbuilder.ai.patch import apply_patch
from formbuilder.ai.prompts import build_system_prompt
from formbuilder.ai.providers.base import LLMProvider, LLMRequest, ProviderError
from formbuilder.ai.response_schema import validate_ai_response
from formbuilder.ai.schemas import (
    AIErrorKind,
    AIPatchResponse,
    AIServiceRequest,
    AIServiceResponse,
)
from formbuilder.core.logging import get_logger
from formbuilder.forms.definition import renumber_by_position, validate_definition
from formbuilder.forms.schemas import FormDefinition

logger = get_logger(__name__)


class FormMutationOrchestrator:
    """Prompt → provider → response schema → patch / replace → validated definition."""

    def __init__(self, provider: LLMProvider, timeout_seconds: float = 60.0):
        self._provider = provider
        self._timeout = timeout_seconds

    @property
    def provider(self) -> LLMProvider:
        return self._provider

    async def process(self, request: AIServiceRequest) -> AIServiceResponse:
        if not request.message.strip():
            return self._fail(AIErrorKind.INVALID_REQUEST, "Message must not be empty")

        current = request.form_definition
        llm_request = LLMRequest(
            message=request.message,
            form_definition=current,
            system_prompt=build_system_prompt(current),
        )

        try:
            llm_response = await asyncio.wait_for(
                self._provider.generate(llm_request), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            return self._fail(
                AIErrorKind.PROVIDER_TIMEOUT,
                f"Model did not answer within {self._timeout:g}s",
            )
        except ProviderError as exc:
            return self._fail(AIErrorKind.PROVIDER_ERROR, str(exc))
        except Exception as exc:
            logger.error(
                f"Unexpected provider failure: {exc}",
                extra={"event": "ai_provider_crash", "provider": self._provider.provider_name},
            )
            return self._fail(AIErrorKind.PROVIDER_ERROR, f"Unexpected provider failure: {exc}")

        raw = llm_response.raw_text
        logger.info(
            "AI response received",
            extra={
                "event": "ai_response",
                "provider": llm_response.provider,
                "model": llm_response.model,
                "latency_ms": llm_response.latency_ms,
                "total_tokens": llm_response.total_tokens,
            },
        )

        if llm_response.parsed_json is None:
            return self._fail(
                AIErrorKind.RESPONSE_PARSE_ERROR,
                "Model response did not contain a JSON value",
                raw,
            )

        validation = validate_ai_response(llm_response.parsed_json)
        if not validation.valid:
            return self._fail(
                AIErrorKind.RESPONSE_SCHEMA_ERROR,
                f"Invalid AI response format: {validation.summary}",
                raw,
                validation.issues,
            )

        response = validation.response
        if isinstance(response, AIPatchResponse):
            result = apply_patch(current, response.operations)
            if not result.success:
                return self._fail(result.error_kind, result.error, raw, result.issues)
            candidate = result.form_definition
        else:
            candidate = response.form_definition

        # Array position is the display order the model was told about.
        finalized = FormDefinition(fields=renumber_by_position(candidate.fields))
        check = validate_definition(finalized)
        if not check.valid:
            return self._fail(
                AIErrorKind.RESULT_VALIDATION_FAILED,
                "Resulting form definition is invalid",
                raw,
                check.messages,
            )

        logger.info(
            "AI mutation succeeded",
            extra={
                "event": "ai_mutation",
                "operation": response.type,
                "provider": llm_response.provider,
                "model": llm_response.model,
            },
        )
        return AIServiceResponse.ok(finalized, raw)

    def _fail(
        self,
        kind: AIErrorKind,
        error: str,
        raw: Optional[str] = None,
        issues: Optional[List[str]] = None,
    ) -> AIServiceResponse:
        logger.warning(
            f"AI mutation failed: {error}",
            extra={
                "event": "ai_mutation_failed",
                "error_kind": kind.value,
                "provider": self._provider.provider_name,
                "model": self._provider.model,
            },
        )
        return AIServiceResponse.fail(kind, error, raw_response=raw, issues=issues)
