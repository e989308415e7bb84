"""
Form API endpoints — CRUD, response collection and editing sessions.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from formbuilder.ai.orchestrator import FormMutationOrchestrator
from formbuilder.config import settings
from formbuilder.core.dependencies import get_orchestrator, get_session_store
from formbuilder.core.logging import get_logger
from formbuilder.database.postgresql import get_db
from formbuilder.forms import service
from formbuilder.forms.schemas import (
    CamelModel,
    FieldType,
    FormChangeSet,
    FormCreate,
    FormField,
    FormMetadata,
    FormRead,
    FormResponseRead,
    FormSummary,
    SubmissionRequest,
)
from formbuilder.forms.session import (
    AITurnInProgressError,
    ApproveInProgressError,
    AITurnResult,
    DefinitionInvalidError,
    EditingSession,
    NoPendingProposalError,
    SessionNotFoundError,
    SessionView,
    StaleTurnError,
    run_ai_turn,
)
from formbuilder.forms.session_store import SessionStore

logger = get_logger(__name__)

router = APIRouter()
sessions_router = APIRouter()


class FieldsUpdateRequest(CamelModel):
    fields: List[dict]


class AITurnRequest(CamelModel):
    message: str = Field(..., min_length=1)


class AddFieldRequest(CamelModel):
    type: FieldType = FieldType.TEXT


class MoveFieldRequest(CamelModel):
    index: int = Field(..., ge=0)


class ApproveResponse(CamelModel):
    form: FormRead
    change_set: FormChangeSet
    session: SessionView


def _not_found(exc: LookupError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


def _invalid(exc: DefinitionInvalidError) -> HTTPException:
    return HTTPException(status_code=422, detail={"message": str(exc), "issues": exc.issues})


def _conflict(exc: Exception) -> HTTPException:
    return HTTPException(status_code=409, detail=str(exc))


def _session(store: SessionStore, session_id: str) -> EditingSession:
    try:
        return store.get(session_id)
    except SessionNotFoundError as exc:
        raise _not_found(exc)


# ── Forms CRUD ────────────────────────────────────────────────────

@router.post("", response_model=FormRead, status_code=201)
async def create_form(data: FormCreate, db: AsyncSession = Depends(get_db)):
    """Create a form, optionally with an initial set of fields."""
    try:
        return await service.create_form(db, data)
    except service.InvalidFormError as exc:
        raise HTTPException(status_code=422, detail={"message": str(exc), "issues": exc.issues})


@router.get("", response_model=List[FormSummary])
async def list_forms(
    published: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await service.list_forms(db, published_only=bool(published))


@router.get("/{form_id}", response_model=FormRead)
async def get_form(form_id: str, db: AsyncSession = Depends(get_db)):
    try:
        return await service.get_form(db, form_id)
    except service.FormNotFoundError as exc:
        raise _not_found(exc)


@router.delete("/{form_id}")
async def delete_form(
    form_id: str,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
):
    try:
        await service.delete_form(db, form_id)
    except service.FormNotFoundError as exc:
        raise _not_found(exc)
    store.discard_form(form_id)
    return {"detail": "Form deleted"}


# ── Responses ─────────────────────────────────────────────────────

@router.post("/{form_id}/responses", response_model=FormResponseRead, status_code=201)
async def submit_response(
    form_id: str,
    data: SubmissionRequest,
    db: AsyncSession = Depends(get_db),
):
    """Validate and store a submission to a published form."""
    try:
        return await service.submit_response(db, form_id, data.values)
    except service.FormNotFoundError as exc:
        raise _not_found(exc)
    except service.FormNotPublishedError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except service.SubmissionInvalidError as exc:
        raise HTTPException(status_code=422, detail={"message": str(exc), "errors": exc.errors})


@router.get("/{form_id}/responses", response_model=List[FormResponseRead])
async def list_responses(form_id: str, db: AsyncSession = Depends(get_db)):
    try:
        return await service.list_responses(db, form_id)
    except service.FormNotFoundError as exc:
        raise _not_found(exc)


# ── Editing sessions ──────────────────────────────────────────────

@router.post("/{form_id}/sessions", response_model=SessionView, status_code=201)
async def open_session(
    form_id: str,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
):
    """Start editing a form: the buffer begins as the persisted state."""
    try:
        baseline = await service.load_form_state(db, form_id)
    except service.FormNotFoundError as exc:
        raise _not_found(exc)
    return store.create(form_id, baseline).view()


@sessions_router.get("/{session_id}", response_model=SessionView)
async def get_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    return _session(store, session_id).view()


@sessions_router.put("/{session_id}/fields", response_model=SessionView)
async def update_fields(
    session_id: str,
    data: FieldsUpdateRequest,
    store: SessionStore = Depends(get_session_store),
):
    """Manual edit: replace the buffer's fields."""
    session = _session(store, session_id)
    try:
        session.update_fields(data.fields)
    except DefinitionInvalidError as exc:
        raise _invalid(exc)
    except ApproveInProgressError as exc:
        raise _conflict(exc)
    return session.view()


@sessions_router.post("/{session_id}/fields", response_model=FormField, status_code=201)
async def add_field(
    session_id: str,
    data: AddFieldRequest,
    store: SessionStore = Depends(get_session_store),
):
    try:
        return _session(store, session_id).add_field(data.type)
    except ApproveInProgressError as exc:
        raise _conflict(exc)


@sessions_router.delete("/{session_id}/fields/{field_id}", response_model=SessionView)
async def remove_field(
    session_id: str,
    field_id: str,
    store: SessionStore = Depends(get_session_store),
):
    session = _session(store, session_id)
    try:
        session.remove_field(field_id)
    except DefinitionInvalidError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ApproveInProgressError as exc:
        raise _conflict(exc)
    return session.view()


@sessions_router.post("/{session_id}/fields/{field_id}/move", response_model=SessionView)
async def move_field(
    session_id: str,
    field_id: str,
    data: MoveFieldRequest,
    store: SessionStore = Depends(get_session_store),
):
    session = _session(store, session_id)
    try:
        session.move_field(field_id, data.index)
    except DefinitionInvalidError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ApproveInProgressError as exc:
        raise _conflict(exc)
    return session.view()


@sessions_router.put("/{session_id}/metadata", response_model=SessionView)
async def update_metadata(
    session_id: str,
    data: FormMetadata,
    store: SessionStore = Depends(get_session_store),
):
    session = _session(store, session_id)
    try:
        session.update_metadata(data)
    except ApproveInProgressError as exc:
        raise _conflict(exc)
    return session.view()


@sessions_router.post("/{session_id}/ai", response_model=AITurnResult)
async def ai_turn(
    session_id: str,
    data: AITurnRequest,
    store: SessionStore = Depends(get_session_store),
    orchestrator: FormMutationOrchestrator = Depends(get_orchestrator),
):
    """Ask the model to edit the buffer. Failures leave the buffer unchanged."""
    session = _session(store, session_id)
    try:
        return await run_ai_turn(
            session, orchestrator, data.message, allow_recovery=settings.AI_RAW_RECOVERY
        )
    except (AITurnInProgressError, ApproveInProgressError, StaleTurnError) as exc:
        raise _conflict(exc)


@sessions_router.post("/{session_id}/revert", response_model=SessionView)
async def revert(session_id: str, store: SessionStore = Depends(get_session_store)):
    """Undo the most recent AI proposal."""
    session = _session(store, session_id)
    try:
        session.revert()
    except (NoPendingProposalError, ApproveInProgressError) as exc:
        raise _conflict(exc)
    return session.view()


@sessions_router.post("/{session_id}/approve", response_model=ApproveResponse)
async def approve(
    session_id: str,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
):
    """Persist the buffer atomically and make it the new baseline."""
    session = _session(store, session_id)
    try:
        change_set = await session.approve(service.SqlFormStore(db))
        form = await service.get_form(db, session.form_id)
    except DefinitionInvalidError as exc:
        raise _invalid(exc)
    except (AITurnInProgressError, ApproveInProgressError) as exc:
        raise _conflict(exc)
    except service.FormNotFoundError as exc:
        raise _not_found(exc)
    except service.InvalidFormError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return ApproveResponse(form=form, change_set=change_set, session=session.view())


@sessions_router.delete("/{session_id}")
async def close_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    if store.discard(session_id) is None:
        raise HTTPException(status_code=404, detail=f"Editing session '{session_id}' not found")
    return {"detail": "Session closed"}
