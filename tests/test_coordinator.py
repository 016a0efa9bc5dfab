"""Tests for SpecCoordinator: create, transition with rollback, delete."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from specflow.constants import ENTITY_SPEC, SPEC_NAME_MAX_LENGTH
from specflow.infra.errors import (
    AmbiguousSpecIdError,
    EventBusError,
    ExternalServiceError,
    InvalidPhaseError,
    PhaseTransitionError,
    RollbackFailedError,
    SpecNotFoundError,
    SpecValidationError,
)
from specflow.storage.documents import read_phase_marker
from specflow.storage.sync_records import SyncStatus
from specflow.workflow.coordinator import SpecCoordinator
from specflow.workflow.event_bus import EventBus
from specflow.workflow.events import EventType
from specflow.workflow.phases import Phase

LOGIN_ID = "abc123de-5f6a-4b7c-8d9e-0123456789ab"


class TestCreateSpec:
    @pytest.mark.asyncio
    async def test_creates_record_document_branch_and_issue(
        self, coordinator, specs, documents, sync_records, tracker, vcs
    ) -> None:
        result = await coordinator.create_spec("Add login", "Users can sign in")

        spec = result.spec
        assert spec.phase is Phase.requirements
        assert spec.branch_name == f"spec/{spec.id[:8]}"
        assert vcs.current == spec.branch_name
        assert (await specs.get(spec.id)).name == "Add login"
        assert read_phase_marker(documents.read(result.document_path)) == "requirements"
        assert len(tracker.create_calls) == 1
        record = await sync_records.get(ENTITY_SPEC, spec.id)
        assert record.sync_status is SyncStatus.success
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_protected_branch_fallback(self, coordinator, vcs) -> None:
        vcs.current = "main"
        result = await coordinator.create_spec("Add login", branch_name="login form")
        assert result.spec.branch_name == f"feature/spec-{result.spec.id[:8]}-login-form"

    @pytest.mark.asyncio
    async def test_outside_repository_warns(self, coordinator, vcs) -> None:
        vcs.inside = False
        result = await coordinator.create_spec("Add login")
        assert result.spec.branch_name is None
        assert result.branch.skipped
        assert len(result.warnings) == 1

    @pytest.mark.asyncio
    async def test_without_branch(self, coordinator, vcs) -> None:
        result = await coordinator.create_spec("Add login", create_branch=False)
        assert result.branch is None
        assert vcs.current == "feature/work"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "   ", "x" * (SPEC_NAME_MAX_LENGTH + 1)])
    async def test_invalid_name(self, coordinator, specs, name: str) -> None:
        with pytest.raises(SpecValidationError):
            await coordinator.create_spec(name)
        assert await specs.list_specs() == []

    @pytest.mark.asyncio
    async def test_document_failure_removes_record(self, coordinator, specs, documents) -> None:
        with patch.object(documents, "write_durable", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                await coordinator.create_spec("Add login", create_branch=False)
        assert await specs.list_specs() == []

    @pytest.mark.asyncio
    async def test_tracker_failure_is_warning_only(self, coordinator, specs, tracker, action_log) -> None:
        tracker.fail_create = ExternalServiceError("GitHub down", status_code=503)

        result = await coordinator.create_spec("Add login", create_branch=False)

        assert await specs.get(result.spec.id) is not None
        actions = [e.action for e in await action_log.entries(spec_id=result.spec.id)]
        assert "auto_recover_issue_failed" in actions
        assert "spec.created" in actions


class TestTransitionPhase:
    @pytest.mark.asyncio
    async def test_end_to_end_add_login(
        self, coordinator, specs, documents, sync_records, tracker
    ) -> None:
        with patch("specflow.workflow.coordinator.new_spec_id", return_value=LOGIN_ID):
            created = await coordinator.create_spec("Add login", create_branch=False)
        assert created.spec.phase is Phase.requirements

        result = await coordinator.transition_phase("abc123de", "design")

        assert result.old_phase is Phase.requirements
        assert result.new_phase is Phase.design
        assert result.warnings == []
        assert (await specs.get(LOGIN_ID)).phase is Phase.design
        assert await sync_records.count(ENTITY_SPEC, LOGIN_ID) == 1
        record = await sync_records.get(ENTITY_SPEC, LOGIN_ID)
        assert record.sync_status is SyncStatus.success
        assert read_phase_marker(documents.read(documents.path_for(LOGIN_ID))) == "design"
        assert tracker.update_calls[-1][1]["labels"] == ["phase:design", "status:In Progress"]

    @pytest.mark.asyncio
    async def test_alias_is_normalized(self, coordinator, specs, add_spec) -> None:
        spec = await add_spec()
        result = await coordinator.transition_phase(spec.id[:8], "impl")
        assert result.new_phase is Phase.implementation
        assert (await specs.get(spec.id)).phase is Phase.implementation

    @pytest.mark.asyncio
    async def test_invalid_phase_changes_nothing(self, coordinator, specs, tracker, add_spec) -> None:
        spec = await add_spec()
        with pytest.raises(InvalidPhaseError):
            await coordinator.transition_phase(spec.id, "shipping")
        assert (await specs.get(spec.id)).phase is Phase.requirements
        assert tracker.create_calls == []

    @pytest.mark.asyncio
    async def test_unknown_and_ambiguous_prefix(self, coordinator, add_spec) -> None:
        await add_spec(spec_id="abcdef12-0000-4000-8000-000000000001")
        await add_spec(spec_id="abcdef12-0000-4000-8000-000000000002")

        with pytest.raises(AmbiguousSpecIdError):
            await coordinator.transition_phase("abcdef12", "design")
        with pytest.raises(SpecNotFoundError):
            await coordinator.transition_phase("99999999", "design")

    @pytest.mark.asyncio
    async def test_linkage_self_heals_before_update(
        self, coordinator, sync_records, tracker, add_spec
    ) -> None:
        spec = await add_spec()

        await coordinator.transition_phase(spec.id, "design")

        assert len(tracker.create_calls) == 1
        assert await sync_records.count(ENTITY_SPEC, spec.id) == 1

    @pytest.mark.asyncio
    async def test_linkage_failure_does_not_block(self, coordinator, specs, tracker, add_spec) -> None:
        spec = await add_spec()
        tracker.fail_create = ExternalServiceError("GitHub down")

        result = await coordinator.transition_phase(spec.id, "design")

        assert (await specs.get(spec.id)).phase is Phase.design
        assert any("GitHub down" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_linkage_bookkeeping_failure_does_not_block(
        self, coordinator, specs, tracker, action_log, add_spec
    ) -> None:
        spec = await add_spec()

        with patch.object(
            action_log, "record", AsyncMock(side_effect=RuntimeError("logs table locked"))
        ):
            result = await coordinator.transition_phase(spec.id, "design")

        assert len(tracker.create_calls) == 1
        assert (await specs.get(spec.id)).phase is Phase.design
        assert any("logs table locked" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_document_write_failure_rolls_back(
        self, coordinator, specs, documents, add_spec
    ) -> None:
        spec = await add_spec()
        path = documents.path_for(spec.id)

        with patch.object(documents, "write_durable", side_effect=OSError("disk full")):
            with pytest.raises(PhaseTransitionError) as exc_info:
                await coordinator.transition_phase(spec.id, "design")

        assert exc_info.value.code == "ROLLED_BACK"
        assert exc_info.value.restored_phase == "requirements"
        assert isinstance(exc_info.value.__cause__, OSError)
        assert (await specs.get(spec.id)).phase is Phase.requirements
        assert read_phase_marker(documents.read(path)) == "requirements"

    @pytest.mark.asyncio
    async def test_publish_failure_restores_record_and_document(
        self, coordinator, specs, documents, bus, add_spec
    ) -> None:
        spec = await add_spec()
        path = documents.path_for(spec.id)

        with patch.object(bus, "publish", AsyncMock(side_effect=EventBusError("bad event"))):
            with pytest.raises(PhaseTransitionError):
                await coordinator.transition_phase(spec.id, "design")

        assert (await specs.get(spec.id)).phase is Phase.requirements
        assert read_phase_marker(documents.read(path)) == "requirements"

    @pytest.mark.asyncio
    async def test_failed_rollback_still_restores_document(
        self, coordinator, specs, documents, bus, add_spec
    ) -> None:
        spec = await add_spec()
        path = documents.path_for(spec.id)
        real_update = specs.update_phase
        calls = 0

        async def update_then_fail(*args, **kwargs):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise RuntimeError("database is locked")
            return await real_update(*args, **kwargs)

        with (
            patch.object(specs, "update_phase", AsyncMock(side_effect=update_then_fail)),
            patch.object(bus, "publish", AsyncMock(side_effect=EventBusError("bad event"))),
        ):
            with pytest.raises(RollbackFailedError) as exc_info:
                await coordinator.transition_phase(spec.id, "design")

        err = exc_info.value
        assert isinstance(err, PhaseTransitionError)
        assert err.code == "ROLLBACK_FAILED"
        assert err.restored_phase is None
        assert isinstance(err.__cause__, RuntimeError)
        assert isinstance(err.original_error, EventBusError)
        assert err.__cause__.__context__ is err.original_error
        assert (await specs.get(spec.id)).phase is Phase.design
        assert read_phase_marker(documents.read(path)) == "requirements"

    @pytest.mark.asyncio
    async def test_handler_failure_is_warning_not_rollback(
        self, coordinator, specs, sync_records, tracker, add_spec
    ) -> None:
        spec = await add_spec()
        await coordinator.transition_phase(spec.id, "design")
        tracker.fail_update = ExternalServiceError("label update failed", status_code=502)

        result = await coordinator.transition_phase(spec.id, "implementation")

        assert (await specs.get(spec.id)).phase is Phase.implementation
        assert any("issue_sync.on_phase_changed" in w for w in result.warnings)
        record = await sync_records.get(ENTITY_SPEC, spec.id)
        assert record.error_message == "label update failed"

    @pytest.mark.asyncio
    async def test_missing_document_is_warning(self, coordinator, specs, add_spec) -> None:
        spec = await add_spec(with_document=False)
        result = await coordinator.transition_phase(spec.id, "design")
        assert (await specs.get(spec.id)).phase is Phase.design
        assert any("document not found" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_backward_move_allowed_with_warning(self, coordinator, specs, add_spec) -> None:
        spec = await add_spec(phase=Phase.review)
        result = await coordinator.transition_phase(spec.id, "design")
        assert result.new_phase is Phase.design
        assert any("backward" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_deprecated_tasks_phase_warns(self, coordinator, add_spec) -> None:
        spec = await add_spec(phase=Phase.design)
        result = await coordinator.transition_phase(spec.id, "tasks")
        assert result.new_phase is Phase.tasks
        assert any("deprecated" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_ready_timeout_still_publishes(self, specs, documents, add_spec) -> None:
        bus = EventBus(required_handlers={"never_registered"})
        seen: list[str] = []
        bus.register(EventType.spec_phase_changed, lambda e: seen.append(e.spec_id))
        coordinator = SpecCoordinator(specs, documents, bus, ready_timeout_s=0.01)
        spec = await add_spec()

        result = await coordinator.transition_phase(spec.id, "design")

        assert seen == [spec.id]
        assert any("never_registered" in w for w in result.warnings)


class TestDeleteSpec:
    @pytest.mark.asyncio
    async def test_deletes_everything_and_closes_issue(
        self, coordinator, specs, documents, sync_records, tracker
    ) -> None:
        created = await coordinator.create_spec("Add login", create_branch=False)

        result = await coordinator.delete_spec(created.spec.short_id)

        assert result.sync_records_removed == 1
        assert result.document_removed
        assert await specs.get(created.spec.id) is None
        assert await sync_records.count(ENTITY_SPEC, created.spec.id) == 0
        assert not documents.exists(created.document_path)
        assert tracker.update_calls[-1] == (
            1,
            {"title": None, "body": None, "labels": None, "state": "closed"},
        )


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_and_resolve(self, coordinator, add_spec) -> None:
        a = await add_spec("one")
        await add_spec("two", phase=Phase.review)

        assert len(await coordinator.list_specs()) == 2
        assert [s.name for s in await coordinator.list_specs("rev")] == ["two"]
        assert (await coordinator.resolve_spec(a.id)).name == "one"

    @pytest.mark.asyncio
    async def test_without_branch_manager_or_sync(self, specs, documents) -> None:
        coordinator = SpecCoordinator(specs, documents, EventBus())
        result = await coordinator.create_spec("Bare", create_branch=True)
        assert result.branch is None
        moved = await coordinator.transition_phase(result.spec.id, "design")
        assert moved.new_phase is Phase.design
