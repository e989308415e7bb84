"""
Two-stage commit for form editing.

An EditingSession owns an unsaved buffer (metadata + definition) layered over
the persisted baseline. AI results are staged into the buffer with a snapshot
of what they replaced, so they can be reverted one turn at a time; nothing
reaches storage until approve() hands a change set to the store.

    Clean ──AI success──▶ AIProposed ──AI success──▶ AIProposed (deeper undo)
      ▲                      │   │
      └──────revert (last)───┘   └──approve──▶ Clean (baseline = buffer)
"""
from __future__ import annotations

import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError

from formbuilder.ai.orchestrator import FormMutationOrchestrator
from formbuilder.ai.recovery import recover_from_raw_response
from formbuilder.ai.schemas import AIErrorKind, AIServiceRequest, AIServiceResponse
from formbuilder.core.logging import get_logger
from formbuilder.forms.definition import (
    issues_from_validation_error,
    normalize_order,
    validate_definition,
)
from formbuilder.forms.schemas import (
    PLACEHOLDER_LABEL,
    CamelModel,
    FieldType,
    FieldUpdate,
    FormChangeSet,
    FormDefinition,
    FormField,
    FormMetadata,
    FormState,
)

logger = get_logger(__name__)

# Failures where the raw text may still hold a salvageable definition.
RECOVERABLE_KINDS = (
    AIErrorKind.RESPONSE_SCHEMA_ERROR,
    AIErrorKind.RESULT_VALIDATION_FAILED,
)


class SessionState(str, Enum):
    CLEAN = "clean"
    AI_PROPOSED = "ai_proposed"


class SessionError(Exception):
    """Base class for editing-protocol violations."""


class StaleTurnError(SessionError):
    """An AI result arrived for a turn the buffer has moved past."""


class AITurnInProgressError(SessionError):
    """A second AI turn was requested while one is in flight."""


class NoPendingProposalError(SessionError):
    """revert() was called with no AI proposal to undo."""


class ApproveInProgressError(SessionError):
    """The buffer is being persisted and cannot change until approve() returns."""


class DefinitionInvalidError(SessionError):
    def __init__(self, message: str, issues: Optional[List[str]] = None):
        self.issues = issues or []
        super().__init__(message)


class SessionNotFoundError(LookupError):
    pass


class FormStore(Protocol):
    """Persistence collaborator used by approve()."""

    async def apply_change_set(self, form_id: str, change_set: FormChangeSet) -> Any:
        ...


class SessionView(CamelModel):
    id: str
    form_id: str
    state: SessionState
    metadata: FormMetadata
    definition: FormDefinition
    has_unsaved_changes: bool
    has_pending_ai_changes: bool
    pending_ai_turns: int
    ai_turn_in_flight: bool
    revision: int


class AITurnResult(CamelModel):
    success: bool
    recovered: bool = False
    error: Optional[str] = None
    error_kind: Optional[AIErrorKind] = None
    issues: List[str] = []
    raw_response: Optional[str] = None
    session: SessionView


def _field_wire(field: FormField) -> Dict[str, Any]:
    return field.model_dump(mode="json", by_alias=True)


def _metadata_equal(a: FormMetadata, b: FormMetadata) -> bool:
    return (
        a.title == b.title
        and (a.description or "") == (b.description or "")
        and a.published == b.published
    )


class EditingSession:
    def __init__(self, form_id: str, baseline: FormState, session_id: Optional[str] = None):
        self.id = session_id or str(uuid.uuid4())
        self.form_id = form_id
        self._baseline = baseline.model_copy(deep=True)
        self._buffer = baseline.model_copy(deep=True)
        self._undo: List[FormDefinition] = []
        self._revision = 0
        self._turn_id: Optional[str] = None
        self._turn_revision = 0
        self._approving = False

    # ── Read side ─────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return SessionState.AI_PROPOSED if self._undo else SessionState.CLEAN

    @property
    def baseline(self) -> FormState:
        return self._baseline

    @property
    def definition(self) -> FormDefinition:
        return self._buffer.definition

    @property
    def metadata(self) -> FormMetadata:
        return self._buffer.metadata

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def has_pending_ai_changes(self) -> bool:
        return bool(self._undo)

    @property
    def ai_turn_in_flight(self) -> bool:
        return self._turn_id is not None

    @property
    def has_unsaved_changes(self) -> bool:
        if not _metadata_equal(self._buffer.metadata, self._baseline.metadata):
            return True
        current = [_field_wire(f) for f in self._buffer.definition.fields]
        persisted = [_field_wire(f) for f in self._baseline.definition.fields]
        return current != persisted

    def view(self) -> SessionView:
        return SessionView(
            id=self.id,
            form_id=self.form_id,
            state=self.state,
            metadata=self.metadata,
            definition=self.definition,
            has_unsaved_changes=self.has_unsaved_changes,
            has_pending_ai_changes=self.has_pending_ai_changes,
            pending_ai_turns=len(self._undo),
            ai_turn_in_flight=self.ai_turn_in_flight,
            revision=self._revision,
        )

    def _ensure_editable(self) -> None:
        if self._approving:
            raise ApproveInProgressError("The form is being saved; try again once it completes")

    # ── AI turns ──────────────────────────────────────────────────

    def begin_ai_turn(self) -> str:
        self._ensure_editable()
        if self._turn_id is not None:
            raise AITurnInProgressError("An AI request is already in progress for this form")
        self._turn_id = str(uuid.uuid4())
        self._turn_revision = self._revision
        return self._turn_id

    def cancel_ai_turn(self, turn_id: str) -> None:
        if self._turn_id == turn_id:
            self._turn_id = None

    def stage_ai_result(self, turn_id: str, definition: FormDefinition) -> None:
        """Replace the buffer definition with an AI result, keeping a snapshot to revert to."""
        if turn_id != self._turn_id:
            raise StaleTurnError(f"AI turn {turn_id} is no longer current")
        self._turn_id = None
        if self._revision != self._turn_revision:
            raise StaleTurnError("The form changed while the AI request was running")

        self._undo.append(self._buffer.definition.model_copy(deep=True))
        self._buffer.definition = definition.model_copy(deep=True)
        self._revision += 1
        logger.info(
            "AI proposal staged",
            extra={
                "event": "ai_proposal_staged",
                "session_id": self.id,
                "form_id": self.form_id,
                "turn_id": turn_id,
            },
        )

    def revert(self) -> FormDefinition:
        """Undo the most recent AI proposal."""
        self._ensure_editable()
        if not self._undo:
            raise NoPendingProposalError("There are no AI changes to revert")
        self._buffer.definition = self._undo.pop()
        self._revision += 1
        return self._buffer.definition

    # ── Manual edits ──────────────────────────────────────────────

    def update_fields(self, fields: List[Any]) -> FormDefinition:
        """Replace the buffer's fields with a manually edited list."""
        self._ensure_editable()
        try:
            definition = FormDefinition.model_validate({"fields": fields})
        except ValidationError as exc:
            raise DefinitionInvalidError(
                "Invalid form fields",
                [str(issue) for issue in issues_from_validation_error(exc)],
            ) from exc

        definition = FormDefinition(fields=normalize_order(definition.fields))
        result = validate_definition(definition)
        if not result.valid:
            raise DefinitionInvalidError("Invalid form fields", result.messages)

        self._buffer.definition = definition
        self._revision += 1
        return definition

    def update_metadata(self, metadata: FormMetadata) -> FormMetadata:
        self._ensure_editable()
        self._buffer.metadata = metadata.model_copy()
        self._revision += 1
        return self._buffer.metadata

    def add_field(self, field_type: FieldType = FieldType.TEXT) -> FormField:
        fields = list(self._buffer.definition.fields)
        field = FormField(
            id=f"field-{uuid.uuid4().hex[:8]}",
            type=field_type,
            label=PLACEHOLDER_LABEL,
            required=False,
            order=len(fields),
        )
        self.update_fields(fields + [field])
        return field

    def remove_field(self, field_id: str) -> None:
        fields = [f for f in self._buffer.definition.fields if f.id != field_id]
        if len(fields) == len(self._buffer.definition.fields):
            raise DefinitionInvalidError(f"Field '{field_id}' not found")
        self.update_fields([f.model_copy(update={"order": i}) for i, f in enumerate(fields)])

    def move_field(self, field_id: str, new_index: int) -> None:
        fields = list(self._buffer.definition.fields)
        positions = [i for i, f in enumerate(fields) if f.id == field_id]
        if not positions:
            raise DefinitionInvalidError(f"Field '{field_id}' not found")
        moved = fields.pop(positions[0])
        fields.insert(max(0, min(new_index, len(fields))), moved)
        self.update_fields([f.model_copy(update={"order": i}) for i, f in enumerate(fields)])

    # ── Commit ────────────────────────────────────────────────────

    def build_change_set(self) -> FormChangeSet:
        """Diff the buffer against the persisted baseline."""
        persisted = {f.id: _field_wire(f) for f in self._baseline.definition.fields}
        current = {f.id: f for f in self._buffer.definition.fields}

        created: List[FormField] = []
        updated: List[FieldUpdate] = []
        for field_id, field in current.items():
            if field_id not in persisted:
                created.append(field)
                continue
            before = persisted[field_id]
            after = _field_wire(field)
            patch = {key: value for key, value in after.items() if before.get(key) != value}
            if patch:
                updated.append(FieldUpdate(id=field_id, patch=patch))

        deleted = [field_id for field_id in persisted if field_id not in current]

        metadata = None
        if not _metadata_equal(self._buffer.metadata, self._baseline.metadata):
            metadata = self._buffer.metadata

        return FormChangeSet(created=created, updated=updated, deleted=deleted, metadata=metadata)

    async def approve(self, store: FormStore) -> FormChangeSet:
        """Persist the buffer. On failure the session is left exactly as it was."""
        self._ensure_editable()
        if self._turn_id is not None:
            raise AITurnInProgressError("Wait for the AI request to finish before saving")

        result = validate_definition(self._buffer.definition, committed=True)
        if not result.valid:
            raise DefinitionInvalidError("Form cannot be saved", result.messages)

        change_set = self.build_change_set()
        persisted = self._buffer.model_copy(deep=True)
        self._approving = True
        try:
            if not change_set.is_empty:
                await store.apply_change_set(self.form_id, change_set)
        finally:
            self._approving = False

        self._baseline = persisted
        self._undo.clear()
        self._revision += 1
        logger.info(
            "Form changes approved",
            extra={
                "event": "form_approved",
                "session_id": self.id,
                "form_id": self.form_id,
                "created_count": len(change_set.created),
                "updated_count": len(change_set.updated),
                "deleted_count": len(change_set.deleted),
            },
        )
        return change_set


async def run_ai_turn(
    session: EditingSession,
    orchestrator: FormMutationOrchestrator,
    message: str,
    allow_recovery: bool = True,
) -> AITurnResult:
    """Drive one AI turn against a session's buffer and stage the outcome."""
    turn_id = session.begin_ai_turn()
    try:
        response: AIServiceResponse = await orchestrator.process(
            AIServiceRequest(message=message, form_definition=session.definition)
        )
    except BaseException:
        session.cancel_ai_turn(turn_id)
        raise

    recovered = False
    definition = response.form_definition if response.success else None
    if (
        definition is None
        and allow_recovery
        and response.raw_response
        and response.error_kind in RECOVERABLE_KINDS
    ):
        definition = recover_from_raw_response(session.definition, response.raw_response)
        recovered = definition is not None

    if definition is None:
        session.cancel_ai_turn(turn_id)
        return AITurnResult(
            success=False,
            error=response.error,
            error_kind=response.error_kind,
            issues=response.issues,
            raw_response=response.raw_response,
            session=session.view(),
        )

    session.stage_ai_result(turn_id, definition)
    return AITurnResult(
        success=True,
        recovered=recovered,
        raw_response=response.raw_response,
        session=session.view(),
    )
