"""
Tests for the two-stage commit protocol: AI staging, undo stack, stale turn
rejection, manual edits, change sets and approve.
"""
import asyncio
import logging

import pytest
from unittest.mock import AsyncMock, patch

from conftest import FakeProvider, make_field
from formbuilder.ai.orchestrator import FormMutationOrchestrator
from formbuilder.forms.schemas import FormDefinition, FormMetadata, FormState
from formbuilder.forms.session import (
    AITurnInProgressError,
    ApproveInProgressError,
    DefinitionInvalidError,
    EditingSession,
    NoPendingProposalError,
    SessionNotFoundError,
    SessionState,
    StaleTurnError,
    run_ai_turn,
)
from formbuilder.forms.session_store import SessionStore


@pytest.fixture
def baseline(abc_definition) -> FormState:
    return FormState(
        metadata=FormMetadata(title="Survey", description="Quarterly", published=False),
        definition=abc_definition,
    )


@pytest.fixture
def session(baseline) -> EditingSession:
    return EditingSession("form-1", baseline)


def _definition(*ids) -> FormDefinition:
    return FormDefinition.model_validate({"fields": [make_field(i, n) for n, i in enumerate(ids)]})


def _ids(session: EditingSession):
    return [f.id for f in session.definition.fields]


# ═══════════════════════════════════════════════════════════════════
#  State machine
# ═══════════════════════════════════════════════════════════════════

class TestAIStaging:

    def test_starts_clean(self, session):
        assert session.state == SessionState.CLEAN
        assert not session.has_unsaved_changes

    def test_stage_moves_to_ai_proposed(self, session):
        turn = session.begin_ai_turn()
        session.stage_ai_result(turn, _definition("x"))
        assert session.state == SessionState.AI_PROPOSED
        assert _ids(session) == ["x"]
        assert session.has_unsaved_changes

    def test_revert_restores_snapshot(self, session):
        turn = session.begin_ai_turn()
        session.stage_ai_result(turn, _definition("x"))
        session.revert()
        assert session.state == SessionState.CLEAN
        assert _ids(session) == ["a", "b", "c"]
        assert not session.has_unsaved_changes

    def test_revert_without_proposal_raises(self, session):
        with pytest.raises(NoPendingProposalError):
            session.revert()

    def test_second_turn_pushes_undo_stack(self, session):
        session.stage_ai_result(session.begin_ai_turn(), _definition("x"))
        session.stage_ai_result(session.begin_ai_turn(), _definition("x", "y"))
        assert session.view().pending_ai_turns == 2

        session.revert()
        assert _ids(session) == ["x"]
        assert session.state == SessionState.AI_PROPOSED
        session.revert()
        assert _ids(session) == ["a", "b", "c"]
        assert session.state == SessionState.CLEAN

    def test_only_one_turn_in_flight(self, session):
        session.begin_ai_turn()
        with pytest.raises(AITurnInProgressError):
            session.begin_ai_turn()

    def test_stale_turn_after_manual_edit(self, session):
        turn = session.begin_ai_turn()
        session.update_fields([make_field("m", 0)])
        with pytest.raises(StaleTurnError):
            session.stage_ai_result(turn, _definition("x"))
        assert _ids(session) == ["m"]
        assert not session.ai_turn_in_flight

    def test_stale_turn_after_revert(self, session):
        session.stage_ai_result(session.begin_ai_turn(), _definition("x"))
        turn = session.begin_ai_turn()
        session.revert()
        with pytest.raises(StaleTurnError):
            session.stage_ai_result(turn, _definition("late"))
        assert _ids(session) == ["a", "b", "c"]

    def test_unknown_turn_id_is_stale(self, session):
        session.begin_ai_turn()
        with pytest.raises(StaleTurnError):
            session.stage_ai_result("not-the-turn", _definition("x"))

    def test_cancel_releases_turn(self, session):
        turn = session.begin_ai_turn()
        session.cancel_ai_turn(turn)
        assert not session.ai_turn_in_flight
        session.begin_ai_turn()


# ═══════════════════════════════════════════════════════════════════
#  Manual edits
# ═══════════════════════════════════════════════════════════════════

class TestManualEdits:

    def test_update_fields_normalizes_order(self, session):
        session.update_fields([make_field("b", 7), make_field("a", 3)])
        assert [(f.id, f.order) for f in session.definition.fields] == [("a", 0), ("b", 1)]

    def test_update_fields_rejects_duplicates(self, session):
        with pytest.raises(DefinitionInvalidError) as exc_info:
            session.update_fields([make_field("a", 0), make_field("a", 1)])
        assert exc_info.value.issues
        assert _ids(session) == ["a", "b", "c"]

    def test_update_fields_rejects_bad_schema(self, session):
        with pytest.raises(DefinitionInvalidError):
            session.update_fields([{"id": "a", "type": "date", "label": "A", "required": False, "order": 0}])

    def test_add_field_uses_placeholder_label(self, session):
        field = session.add_field()
        assert field.label == "New Field"
        assert field.order == 3
        assert session.definition.fields[-1].id == field.id

    def test_remove_and_move(self, session):
        session.remove_field("b")
        assert [(f.id, f.order) for f in session.definition.fields] == [("a", 0), ("c", 1)]
        session.move_field("c", 0)
        assert _ids(session) == ["c", "a"]
        with pytest.raises(DefinitionInvalidError):
            session.remove_field("zzz")

    def test_metadata_change_is_unsaved(self, session):
        session.update_metadata(FormMetadata(title="Survey", description="Quarterly", published=True))
        assert session.has_unsaved_changes
        assert session.state == SessionState.CLEAN

    def test_empty_and_missing_description_are_equal(self, baseline):
        baseline.metadata.description = None
        session = EditingSession("form-1", baseline)
        session.update_metadata(FormMetadata(title="Survey", description="", published=False))
        assert not session.has_unsaved_changes


# ═══════════════════════════════════════════════════════════════════
#  Change sets and approve
# ═══════════════════════════════════════════════════════════════════

class TestApprove:

    def test_change_set_diff(self, session):
        session.update_fields([
            make_field("c", 0, "C"),
            make_field("a", 1, "Renamed A"),
            make_field("d", 2, "D"),
        ])
        change_set = session.build_change_set()

        assert [f.id for f in change_set.created] == ["d"]
        assert change_set.deleted == ["b"]
        updates = {u.id: u.patch for u in change_set.updated}
        assert updates["a"] == {"label": "Renamed A", "order": 1}
        assert updates["c"] == {"order": 0}
        assert change_set.metadata is None

    @pytest.mark.asyncio
    async def test_approve_persists_and_clears(self, session):
        store = AsyncMock()
        session.stage_ai_result(session.begin_ai_turn(), _definition("a", "b", "c", "d"))

        change_set = await session.approve(store)

        store.apply_change_set.assert_awaited_once()
        assert store.apply_change_set.call_args[0][0] == "form-1"
        assert [f.id for f in change_set.created] == ["d"]
        assert session.state == SessionState.CLEAN
        assert not session.has_unsaved_changes
        with pytest.raises(NoPendingProposalError):
            session.revert()

    @pytest.mark.asyncio
    async def test_approve_rejects_placeholder_label(self, session):
        store = AsyncMock()
        session.add_field()
        with pytest.raises(DefinitionInvalidError):
            await session.approve(store)
        store.apply_change_set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_failure_leaves_session_untouched(self, session):
        store = AsyncMock()
        store.apply_change_set.side_effect = RuntimeError("db down")
        session.stage_ai_result(session.begin_ai_turn(), _definition("x"))

        with pytest.raises(RuntimeError):
            await session.approve(store)

        assert session.state == SessionState.AI_PROPOSED
        assert session.has_unsaved_changes
        session.revert()
        assert _ids(session) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_noop_approve_skips_store(self, session):
        store = AsyncMock()
        change_set = await session.approve(store)
        assert change_set.is_empty
        store.apply_change_set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_buffer_frozen_while_approve_runs(self, session):
        class GatedStore:
            def __init__(self):
                self.started = asyncio.Event()
                self.release = asyncio.Event()
                self.change_sets = []

            async def apply_change_set(self, form_id, change_set):
                self.change_sets.append(change_set)
                self.started.set()
                await self.release.wait()

        store = GatedStore()
        session.update_fields([make_field("a", 0, "A"), make_field("b", 1, "B")])
        approving = asyncio.create_task(session.approve(store))
        await store.started.wait()

        with pytest.raises(ApproveInProgressError):
            session.update_fields([make_field("a", 0, "A"), make_field("z", 1, "Z")])
        with pytest.raises(ApproveInProgressError):
            session.begin_ai_turn()
        with pytest.raises(ApproveInProgressError):
            session.update_metadata(FormMetadata(title="Changed mid-save"))
        with pytest.raises(ApproveInProgressError):
            await session.approve(store)

        store.release.set()
        change_set = await approving

        assert change_set.deleted == ["c"]
        assert len(store.change_sets) == 1
        assert _ids(session) == ["a", "b"]
        assert [f.id for f in session.baseline.definition.fields] == ["a", "b"]
        assert not session.has_unsaved_changes
        session.update_fields([make_field("a", 0, "A")])
        assert session.has_unsaved_changes

    @pytest.mark.asyncio
    async def test_approve_logs_change_counts(self, session, caplog):
        caplog.set_level(logging.INFO, logger="formbuilder.forms.session")
        session.remove_field("c")

        await session.approve(AsyncMock())

        approved = [r for r in caplog.records if getattr(r, "event", None) == "form_approved"]
        assert len(approved) == 1
        assert approved[0].deleted_count == 1
        assert approved[0].created_count == 0

    @pytest.mark.asyncio
    async def test_approve_blocked_while_turn_in_flight(self, session):
        session.begin_ai_turn()
        with pytest.raises(AITurnInProgressError):
            await session.approve(AsyncMock())


# ═══════════════════════════════════════════════════════════════════
#  Driving a turn through the orchestrator
# ═══════════════════════════════════════════════════════════════════

class TestRunAITurn:

    @pytest.mark.asyncio
    async def test_success_is_staged(self, session):
        provider = FakeProvider([{"type": "patch", "operations": [{"op": "remove", "path": "/fields/0"}]}])
        result = await run_ai_turn(session, FormMutationOrchestrator(provider), "Drop the first field")

        assert result.success
        assert result.session.state == SessionState.AI_PROPOSED
        assert result.session.pending_ai_turns == 1
        assert session.state == SessionState.AI_PROPOSED
        assert _ids(session) == ["b", "c"]
        assert [f.order for f in session.definition.fields] == [0, 1]

    @pytest.mark.asyncio
    async def test_failure_leaves_buffer_and_creates_no_snapshot(self, session):
        provider = FakeProvider(["I cannot do that"])
        result = await run_ai_turn(session, FormMutationOrchestrator(provider), "Do something")

        assert not result.success
        assert result.error_kind == "ResponseParseError"
        assert session.state == SessionState.CLEAN
        assert _ids(session) == ["a", "b", "c"]
        assert not session.ai_turn_in_flight

    @pytest.mark.asyncio
    async def test_recovery_salvages_lenient_replace(self, session):
        provider = FakeProvider([{
            "type": "replace",
            "formDefinition": {"fields": [
                {"id": "age", "type": "number", "label": "Age", "required": "true", "min": "18"},
            ]},
        }])
        result = await run_ai_turn(session, FormMutationOrchestrator(provider), "Only ask for age")

        assert result.success
        assert result.recovered
        assert session.definition.fields[0].min == 18
        assert session.definition.fields[0].required is True

    @pytest.mark.asyncio
    async def test_recovery_can_be_disabled(self, session):
        provider = FakeProvider([{
            "type": "replace",
            "formDefinition": {"fields": [{"id": "age", "type": "number", "label": "Age", "required": "true"}]},
        }])
        result = await run_ai_turn(
            session, FormMutationOrchestrator(provider), "Only ask for age", allow_recovery=False
        )
        assert not result.success
        assert result.error_kind == "ResponseSchemaError"


# ═══════════════════════════════════════════════════════════════════
#  Session store
# ═══════════════════════════════════════════════════════════════════

class TestSessionStore:

    def test_create_get_discard(self, baseline):
        store = SessionStore()
        session = store.create("form-1", baseline)
        assert store.get(session.id) is session
        assert session.id in store
        store.discard(session.id)
        with pytest.raises(SessionNotFoundError):
            store.get(session.id)

    def test_discard_form(self, baseline):
        store = SessionStore()
        store.create("form-1", baseline)
        store.create("form-1", baseline)
        keep = store.create("form-2", baseline)
        assert store.discard_form("form-1") == 2
        assert len(store) == 1
        assert store.get(keep.id) is keep

    def test_idle_sessions_pruned_on_create(self, baseline):
        store = SessionStore(ttl_seconds=60)
        with patch("formbuilder.forms.session_store.time") as clock:
            clock.monotonic.return_value = 1000.0
            idle = store.create("form-1", baseline)
            active = store.create("form-1", baseline)

            clock.monotonic.return_value = 1050.0
            store.get(active.id)

            clock.monotonic.return_value = 1070.0
            fresh = store.create("form-2", baseline)

        assert idle.id not in store
        assert active.id in store
        assert fresh.id in store
        with pytest.raises(SessionNotFoundError):
            store.get(idle.id)

    def test_session_with_ai_turn_in_flight_survives_pruning(self, baseline):
        store = SessionStore(ttl_seconds=60)
        with patch("formbuilder.forms.session_store.time") as clock:
            clock.monotonic.return_value = 0.0
            busy = store.create("form-1", baseline)
            busy.begin_ai_turn()

            clock.monotonic.return_value = 500.0
            assert store.prune_idle() == 0
        assert busy.id in store

    def test_zero_ttl_disables_expiry(self, baseline):
        store = SessionStore(ttl_seconds=0)
        with patch("formbuilder.forms.session_store.time") as clock:
            clock.monotonic.return_value = 0.0
            session = store.create("form-1", baseline)
            clock.monotonic.return_value = 10 ** 9
            store.create("form-1", baseline)
        assert session.id in store
        assert len(store) == 2
