"""
FastAPI dependencies resolving process-wide singletons from app.state.
"""
from fastapi import HTTPException, Request

from formbuilder.ai.orchestrator import FormMutationOrchestrator
from formbuilder.config import settings
from formbuilder.forms.session_store import SessionStore


def get_orchestrator(request: Request) -> FormMutationOrchestrator:
    """The AI pipeline, or 503 when no provider could be built at startup."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        reason = getattr(request.app.state, "llm_error", None) or settings.llm_config_error
        raise HTTPException(
            status_code=503,
            detail=f"AI service unavailable: {reason or 'LLM provider not configured'}",
        )
    return orchestrator


def get_session_store(request: Request) -> SessionStore:
    store = getattr(request.app.state, "session_store", None)
    if store is None:
        store = SessionStore(ttl_seconds=settings.SESSION_IDLE_TTL_SECONDS)
        request.app.state.session_store = store
    return store
