"""
Form persistence service — CRUD, atomic change-set application and
response collection.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic.alias_generators import to_camel
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from formbuilder.core.logging import get_logger
from formbuilder.forms.definition import normalize_order, validate_definition
from formbuilder.forms.models import Form, FormFieldRecord, FormResponse
from formbuilder.forms.schemas import (
    FormChangeSet,
    FormCreate,
    FormDefinition,
    FormField,
    FormMetadata,
    FormRead,
    FormResponseRead,
    FormState,
    FormSummary,
)
from formbuilder.forms.submission import validate_submission

logger = get_logger(__name__)

# Wire attribute name (camelCase) -> column / model attribute name.
_COLUMN_BY_WIRE = {to_camel(name): name for name in FormField.model_fields}


class FormNotFoundError(LookupError):
    pass


class FormNotPublishedError(ValueError):
    pass


class InvalidFormError(ValueError):
    def __init__(self, message: str, issues: Optional[List[str]] = None):
        self.issues = issues or []
        super().__init__(message)


class SubmissionInvalidError(ValueError):
    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("Submission failed validation")


# ── Row mapping ───────────────────────────────────────────────────

def field_from_record(record: FormFieldRecord) -> FormField:
    return FormField(
        id=record.id,
        type=record.type,
        label=record.label,
        required=record.required,
        order=record.order,
        placeholder=record.placeholder,
        min_length=record.min_length,
        max_length=record.max_length,
        min=record.min,
        max=record.max,
        step=record.step,
        rows=record.rows,
    )


def record_from_field(form_id: str, field: FormField) -> FormFieldRecord:
    return FormFieldRecord(form_id=form_id, **field.model_dump(mode="json"))


async def _get_form_row(db: AsyncSession, form_id: str) -> Form:
    form = await db.get(Form, form_id)
    if form is None:
        raise FormNotFoundError(f"Form '{form_id}' not found")
    return form


async def _field_rows(db: AsyncSession, form_id: str) -> List[FormFieldRecord]:
    result = await db.execute(
        select(FormFieldRecord)
        .where(FormFieldRecord.form_id == form_id)
        .order_by(FormFieldRecord.order)
    )
    return list(result.scalars().all())


async def _load_fields(db: AsyncSession, form_id: str) -> List[FormField]:
    return [field_from_record(r) for r in await _field_rows(db, form_id)]


def _to_read(form: Form, fields: List[FormField]) -> FormRead:
    return FormRead(
        id=form.id,
        title=form.title,
        description=form.description,
        published=form.published,
        fields=fields,
        created_at=form.created_at,
        updated_at=form.updated_at,
    )


# ── CRUD ──────────────────────────────────────────────────────────

async def create_form(db: AsyncSession, data: FormCreate) -> FormRead:
    definition = FormDefinition(fields=normalize_order(data.fields))
    check = validate_definition(definition, committed=True)
    if not check.valid:
        raise InvalidFormError("Invalid form definition", check.messages)

    form = Form(title=data.title, description=data.description, published=False)
    db.add(form)
    await db.flush()
    for field in definition.fields:
        db.add(record_from_field(form.id, field))
    await db.flush()
    await db.refresh(form)

    logger.info(
        "Form created",
        extra={"event": "form_created", "form_id": form.id, "fields": len(definition.fields)},
    )
    return _to_read(form, definition.fields)


async def get_form(db: AsyncSession, form_id: str) -> FormRead:
    form = await _get_form_row(db, form_id)
    return _to_read(form, await _load_fields(db, form_id))


async def load_form_state(db: AsyncSession, form_id: str) -> FormState:
    """Persisted metadata + definition, the baseline of an editing session."""
    form = await _get_form_row(db, form_id)
    return FormState(
        metadata=FormMetadata(
            title=form.title,
            description=form.description,
            published=form.published,
        ),
        definition=FormDefinition(fields=await _load_fields(db, form_id)),
    )


async def list_forms(db: AsyncSession, published_only: bool = False) -> List[FormSummary]:
    field_counts = (
        select(FormFieldRecord.form_id, func.count().label("n"))
        .group_by(FormFieldRecord.form_id)
        .subquery()
    )
    response_counts = (
        select(FormResponse.form_id, func.count().label("n"))
        .group_by(FormResponse.form_id)
        .subquery()
    )
    query = (
        select(
            Form,
            func.coalesce(field_counts.c.n, 0),
            func.coalesce(response_counts.c.n, 0),
        )
        .outerjoin(field_counts, field_counts.c.form_id == Form.id)
        .outerjoin(response_counts, response_counts.c.form_id == Form.id)
        .order_by(Form.updated_at.desc())
    )
    if published_only:
        query = query.where(Form.published.is_(True))

    result = await db.execute(query)
    return [
        FormSummary(
            id=form.id,
            title=form.title,
            published=form.published,
            field_count=n_fields,
            response_count=n_responses,
            updated_at=form.updated_at,
        )
        for form, n_fields, n_responses in result.all()
    ]


async def delete_form(db: AsyncSession, form_id: str) -> None:
    form = await _get_form_row(db, form_id)
    await db.execute(delete(FormResponse).where(FormResponse.form_id == form_id))
    await db.execute(delete(FormFieldRecord).where(FormFieldRecord.form_id == form_id))
    await db.delete(form)
    await db.flush()
    logger.info("Form deleted", extra={"event": "form_deleted", "form_id": form_id})


# ── Change sets ───────────────────────────────────────────────────

async def apply_change_set(db: AsyncSession, form_id: str, change_set: FormChangeSet) -> FormRead:
    """Apply inserts, updates, deletes and metadata in one transaction.

    Nothing is written unless every part succeeds; on failure the session is
    rolled back and the error re-raised.
    """
    try:
        form = await _get_form_row(db, form_id)
        rows = {r.id: r for r in await _field_rows(db, form_id)}

        for field_id in change_set.deleted:
            row = rows.pop(field_id, None)
            if row is None:
                raise InvalidFormError(f"Cannot delete unknown field '{field_id}'")
            await db.delete(row)

        for update in change_set.updated:
            row = rows.get(update.id)
            if row is None:
                raise InvalidFormError(f"Cannot update unknown field '{update.id}'")
            for key, value in update.patch.items():
                column = _COLUMN_BY_WIRE.get(key)
                if column is None or column == "id":
                    raise InvalidFormError(f"Unknown field attribute '{key}'")
                setattr(row, column, value)

        for field in change_set.created:
            if field.id in rows:
                raise InvalidFormError(f"Field '{field.id}' already exists")
            db.add(record_from_field(form_id, field))

        if change_set.metadata is not None:
            form.title = change_set.metadata.title
            form.description = change_set.metadata.description
            form.published = change_set.metadata.published
        form.updated_at = datetime.now(timezone.utc)

        await db.flush()
    except Exception:
        await db.rollback()
        logger.error(
            "Change set rejected, transaction rolled back",
            extra={"event": "change_set_failed", "form_id": form_id},
        )
        raise

    logger.info(
        "Change set applied",
        extra={
            "event": "change_set_applied",
            "form_id": form_id,
            "created_count": len(change_set.created),
            "updated_count": len(change_set.updated),
            "deleted_count": len(change_set.deleted),
        },
    )
    return await get_form(db, form_id)


class SqlFormStore:
    """FormStore backed by an AsyncSession; commits so approve() only
    succeeds once the change set is durable."""

    def __init__(self, db: AsyncSession):
        self._db = db

    async def apply_change_set(self, form_id: str, change_set: FormChangeSet) -> FormRead:
        form = await apply_change_set(self._db, form_id, change_set)
        await self._db.commit()
        return form


# ── Responses ─────────────────────────────────────────────────────

async def submit_response(db: AsyncSession, form_id: str, values: Dict[str, Any]) -> FormResponseRead:
    form = await _get_form_row(db, form_id)
    if not form.published:
        raise FormNotPublishedError(f"Form '{form_id}' is not published")

    validation = validate_submission(await _load_fields(db, form_id), values)
    if not validation.valid:
        raise SubmissionInvalidError(validation.errors)

    response = FormResponse(form_id=form_id, values=validation.values)
    db.add(response)
    await db.flush()
    await db.refresh(response)

    logger.info(
        "Form response stored",
        extra={"event": "response_stored", "form_id": form_id},
    )
    return FormResponseRead(
        id=response.id,
        form_id=form_id,
        values=response.values,
        created_at=response.created_at,
    )


async def list_responses(db: AsyncSession, form_id: str) -> List[FormResponseRead]:
    await _get_form_row(db, form_id)
    result = await db.execute(
        select(FormResponse)
        .where(FormResponse.form_id == form_id)
        .order_by(FormResponse.created_at.desc())
    )
    return [
        FormResponseRead(id=r.id, form_id=r.form_id, values=r.values, created_at=r.created_at)
        for r in result.scalars().all()
    ]
