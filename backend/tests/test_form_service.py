"""
Tests for the persistence service on SQLite: CRUD, atomic change sets,
approve through the session, and response collection.
"""
import logging

import pytest

from conftest import make_field
from formbuilder.forms import service
from formbuilder.forms.schemas import (
    FieldUpdate,
    FormChangeSet,
    FormCreate,
    FormField,
    FormMetadata,
)
from formbuilder.forms.session import EditingSession


async def _create(db, *fields, title="Signup"):
    form = await service.create_form(db, FormCreate(
        title=title,
        fields=[FormField.model_validate(f) for f in fields],
    ))
    await db.commit()
    return form


# ═══════════════════════════════════════════════════════════════════
#  CRUD
# ═══════════════════════════════════════════════════════════════════

class TestFormCrud:

    @pytest.mark.asyncio
    async def test_create_and_get(self, db):
        created = await _create(db, make_field("name", 1, "Name"), make_field("email", 0, "Email"))
        assert [f.id for f in created.fields] == ["email", "name"]

        loaded = await service.get_form(db, created.id)
        assert loaded.title == "Signup"
        assert loaded.published is False
        assert [(f.id, f.order) for f in loaded.fields] == [("email", 0), ("name", 1)]

    @pytest.mark.asyncio
    async def test_create_rejects_placeholder_label(self, db):
        with pytest.raises(service.InvalidFormError):
            await service.create_form(db, FormCreate(
                title="Bad", fields=[FormField.model_validate(make_field("x", 0, "New Field"))],
            ))

    @pytest.mark.asyncio
    async def test_get_missing_raises(self, db):
        with pytest.raises(service.FormNotFoundError):
            await service.get_form(db, "missing")

    @pytest.mark.asyncio
    async def test_load_form_state(self, db):
        created = await _create(db, make_field("bio", 0, "Bio", type="textarea", rows=4))
        state = await service.load_form_state(db, created.id)
        assert state.metadata.title == "Signup"
        assert state.definition.fields[0].rows == 4

    @pytest.mark.asyncio
    async def test_list_forms_with_counts(self, db):
        first = await _create(db, make_field("a", 0, "A"), title="First")
        await _create(db, title="Second")

        summaries = {s.title: s for s in await service.list_forms(db)}
        assert summaries["First"].field_count == 1
        assert summaries["Second"].field_count == 0
        assert summaries["First"].id == first.id
        assert await service.list_forms(db, published_only=True) == []

    @pytest.mark.asyncio
    async def test_delete_form(self, db):
        created = await _create(db, make_field("a", 0, "A"))
        await service.delete_form(db, created.id)
        await db.commit()
        with pytest.raises(service.FormNotFoundError):
            await service.get_form(db, created.id)


# ═══════════════════════════════════════════════════════════════════
#  Change sets
# ═══════════════════════════════════════════════════════════════════

class TestApplyChangeSet:

    @pytest.mark.asyncio
    async def test_applies_every_part(self, db):
        created = await _create(db, make_field("a", 0, "A"), make_field("b", 1, "B"))
        change_set = FormChangeSet(
            created=[FormField.model_validate(make_field("c", 1, "C", type="number", min=0))],
            updated=[FieldUpdate(id="a", patch={"label": "Alpha", "minLength": 2})],
            deleted=["b"],
            metadata=FormMetadata(title="Renamed", description="Now live", published=True),
        )
        form = await service.apply_change_set(db, created.id, change_set)
        await db.commit()

        assert form.title == "Renamed"
        assert form.published is True
        assert [(f.id, f.label) for f in form.fields] == [("a", "Alpha"), ("c", "C")]
        assert form.fields[0].min_length == 2
        assert form.fields[1].min == 0

    @pytest.mark.asyncio
    async def test_failure_rolls_back_everything(self, db):
        created = await _create(db, make_field("a", 0, "A"), make_field("b", 1, "B"))
        change_set = FormChangeSet(
            updated=[FieldUpdate(id="a", patch={"label": "Changed"})],
            created=[FormField.model_validate(make_field("b", 2, "Duplicate"))],
            metadata=FormMetadata(title="Should not stick"),
        )
        with pytest.raises(service.InvalidFormError):
            await service.apply_change_set(db, created.id, change_set)

        form = await service.get_form(db, created.id)
        assert form.title == "Signup"
        assert [f.label for f in form.fields] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_unknown_attribute_rejected(self, db):
        created = await _create(db, make_field("a", 0, "A"))
        with pytest.raises(service.InvalidFormError):
            await service.apply_change_set(db, created.id, FormChangeSet(
                updated=[FieldUpdate(id="a", patch={"colour": "red"})],
            ))

    @pytest.mark.asyncio
    async def test_approve_through_session(self, db, db_sessionmaker, caplog):
        caplog.set_level(logging.INFO)
        created = await _create(db, make_field("a", 0, "A"), make_field("b", 1, "B"))
        session = EditingSession(created.id, await service.load_form_state(db, created.id))
        session.move_field("b", 0)
        session.update_metadata(FormMetadata(title="Reordered", published=True))

        await session.approve(service.SqlFormStore(db))

        form = await service.get_form(db, created.id)
        assert [f.id for f in form.fields] == ["b", "a"]
        assert form.title == "Reordered"
        assert not session.has_unsaved_changes

        async with db_sessionmaker() as fresh:
            stored = await service.get_form(fresh, created.id)
        assert [f.id for f in stored.fields] == ["b", "a"]
        events = [getattr(r, "event", None) for r in caplog.records]
        assert "change_set_applied" in events
        assert "form_approved" in events


# ═══════════════════════════════════════════════════════════════════
#  Responses
# ═══════════════════════════════════════════════════════════════════

class TestResponses:

    async def _published(self, db):
        created = await _create(
            db,
            make_field("name", 0, "Name", required=True),
            make_field("age", 1, "Age", type="number", min=18),
        )
        await service.apply_change_set(db, created.id, FormChangeSet(
            metadata=FormMetadata(title=created.title, published=True),
        ))
        await db.commit()
        return created

    @pytest.mark.asyncio
    async def test_submit_and_list(self, db):
        form = await self._published(db)
        stored = await service.submit_response(db, form.id, {"name": "Ada", "age": "36"})
        await db.commit()

        assert stored.values == {"name": "Ada", "age": 36.0}
        responses = await service.list_responses(db, form.id)
        assert [r.id for r in responses] == [stored.id]

        summary = (await service.list_forms(db))[0]
        assert summary.response_count == 1

    @pytest.mark.asyncio
    async def test_invalid_submission(self, db):
        form = await self._published(db)
        with pytest.raises(service.SubmissionInvalidError) as exc_info:
            await service.submit_response(db, form.id, {"age": 3})
        assert exc_info.value.errors == {
            "name": "This field is required",
            "age": "Minimum value is 18",
        }

    @pytest.mark.asyncio
    async def test_unpublished_form_rejects_submissions(self, db):
        form = await _create(db, make_field("name", 0, "Name"))
        with pytest.raises(service.FormNotPublishedError):
            await service.submit_response(db, form.id, {"name": "Ada"})
