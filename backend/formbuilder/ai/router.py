"""
AI endpoints: stateless form chat + provider info.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from formbuilder.ai.orchestrator import FormMutationOrchestrator
from formbuilder.ai.schemas import AIChatRequest, AIServiceRequest, AIServiceResponse
from formbuilder.config import settings
from formbuilder.core.dependencies import get_orchestrator
from formbuilder.core.logging import get_logger
from formbuilder.database.postgresql import get_db
from formbuilder.forms import service
from formbuilder.forms.definition import normalize_order, validate_raw_definition
from formbuilder.forms.schemas import FormDefinition

logger = get_logger(__name__)

router = APIRouter()


@router.post("/forms/{form_id}/chat", response_model=AIServiceResponse)
async def form_chat(
    form_id: str,
    data: AIChatRequest,
    db: AsyncSession = Depends(get_db),
    orchestrator: FormMutationOrchestrator = Depends(get_orchestrator),
):
    """Run one AI turn against the caller's unsaved fields (or the stored ones).
    Nothing is persisted; the caller decides what to do with the result."""
    if data.current_fields is not None:
        parsed = validate_raw_definition({"fields": data.current_fields}, check_order=False)
        if not parsed.valid:
            raise HTTPException(
                status_code=422,
                detail={"message": "Invalid current fields", "issues": parsed.messages},
            )
        definition = FormDefinition(fields=normalize_order(parsed.definition.fields))
    else:
        try:
            definition = (await service.load_form_state(db, form_id)).definition
        except service.FormNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc))

    logger.info(
        "AI chat request",
        extra={"event": "ai_chat", "form_id": form_id, "fields": len(definition.fields)},
    )
    return await orchestrator.process(
        AIServiceRequest(message=data.message, form_definition=definition)
    )


@router.get("/provider-info")
async def get_provider_info(request: Request):
    """Return current LLM provider configuration (no secrets)."""
    return {
        "provider": settings.llm_provider,
        "model": settings.active_llm_model,
        "temperature": settings.LLM_TEMPERATURE,
        "timeout_seconds": settings.LLM_TIMEOUT_SECONDS,
        "configured": settings.is_llm_configured,
        "available": getattr(request.app.state, "orchestrator", None) is not None,
        "error": getattr(request.app.state, "llm_error", None) or settings.llm_config_error,
    }
