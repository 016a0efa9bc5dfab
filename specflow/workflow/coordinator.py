"""Spec lifecycle coordinator.

Owns the write path for specs: creation (branch, record, document), phase
transitions with bounded rollback, and deletion. Every mutation is followed
by a lifecycle event published through the injected EventBus; the caller
gets back once all handlers have run.

Transition order:
  resolve → validate → snapshot → linkage self-heal → record update →
  document rewrite (durable) → publish
A failure after the record update and before handlers run restores the
snapshot in the record store and the document, then raises
PhaseTransitionError. Handler failures never roll back; they come back as
warnings on the result.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import structlog

from specflow.constants import SPEC_NAME_MAX_LENGTH
from specflow.infra.errors import (
    EventBusError,
    PhaseTransitionError,
    RollbackFailedError,
    SpecValidationError,
)
from specflow.infra.logging import spec_log_context
from specflow.integrations.github.sync import IssueSyncService
from specflow.storage.documents import SpecDocumentStore, render_spec_document, update_phase_markers
from specflow.storage.specs import Spec, SpecRepository, new_spec_id
from specflow.vcs.branches import BranchCreationResult, BranchLifecycleManager
from specflow.workflow.event_bus import EventBus
from specflow.workflow.events import (
    EventPayload,
    EventType,
    PhaseChanged,
    SpecCreated,
    SpecDeleted,
)
from specflow.workflow.phases import DEPRECATED_PHASES, Phase, describe_transition, validate_phase

logger = structlog.get_logger()


@dataclass
class SpecCreationResult:
    spec: Spec
    document_path: Path
    branch: BranchCreationResult | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class PhaseTransitionResult:
    spec_id: str
    spec_name: str
    old_phase: Phase
    new_phase: Phase
    warnings: list[str] = field(default_factory=list)


@dataclass
class SpecDeletionResult:
    spec_id: str
    spec_name: str
    sync_records_removed: int
    document_removed: bool
    warnings: list[str] = field(default_factory=list)


class SpecCoordinator:
    def __init__(
        self,
        specs: SpecRepository,
        documents: SpecDocumentStore,
        bus: EventBus,
        *,
        sync_service: IssueSyncService | None = None,
        branch_manager: BranchLifecycleManager | None = None,
        ready_timeout_s: float = 5.0,
    ) -> None:
        self._specs = specs
        self._documents = documents
        self._bus = bus
        self._sync = sync_service
        self._branches = branch_manager
        self._ready_timeout_s = ready_timeout_s

    # ── queries ──

    async def resolve_spec(self, prefix: str) -> Spec:
        return await self._specs.resolve(prefix)

    async def list_specs(self, phase: str | None = None) -> list[Spec]:
        return await self._specs.list_specs(phase=validate_phase(phase) if phase else None)

    # ── creation ──

    async def create_spec(
        self,
        name: str,
        description: str | None = None,
        *,
        branch_name: str | None = None,
        create_branch: bool = True,
    ) -> SpecCreationResult:
        """Create a spec in phase requirements, with its branch and document."""
        name = (name or "").strip()
        if not name:
            raise SpecValidationError("Spec name must not be empty", field="name")
        if len(name) > SPEC_NAME_MAX_LENGTH:
            raise SpecValidationError(
                f"Spec name must be at most {SPEC_NAME_MAX_LENGTH} characters", field="name"
            )

        spec_id = new_spec_id()
        warnings: list[str] = []

        branch: BranchCreationResult | None = None
        if create_branch and self._branches is not None:
            loop = asyncio.get_running_loop()
            branch = await loop.run_in_executor(
                None, self._branches.create_spec_branch, spec_id, branch_name
            )
            if branch.skipped and branch.reason:
                warnings.append(branch.reason)

        now = datetime.now(UTC)
        spec = Spec(
            id=spec_id,
            name=name,
            description=description,
            phase=Phase.requirements,
            branch_name=branch.branch_name if branch and branch.created else None,
            created_at=now,
            updated_at=now,
        )
        await self._specs.insert(spec)

        path = self._documents.path_for(spec.id)
        try:
            self._documents.write_durable(path, render_spec_document(spec))
        except OSError:
            logger.exception("spec_document_create_failed", spec_id=spec.id, path=str(path))
            await self._specs.delete(spec.id)
            raise

        logger.info("spec_created", spec_id=spec.id, name=name, branch=spec.branch_name)
        warnings.extend(
            await self._publish(
                EventType.spec_created,
                spec.id,
                SpecCreated(
                    name=spec.name,
                    description=spec.description,
                    phase=spec.phase.value,
                    branch_name=spec.branch_name,
                ),
            )
        )
        return SpecCreationResult(spec=spec, document_path=path, branch=branch, warnings=warnings)

    # ── transition ──

    async def transition_phase(self, spec_id_prefix: str, target_phase: str) -> PhaseTransitionResult:
        """Move a spec to target_phase.

        Raises SpecNotFoundError / AmbiguousSpecIdError / SpecValidationError /
        InvalidPhaseError before any change, PhaseTransitionError after a
        rolled-back partial change, and RollbackFailedError when the rollback
        itself failed and the new phase may still be stored.
        """
        spec = await self._specs.resolve(spec_id_prefix)
        new_phase = validate_phase(target_phase)
        with spec_log_context(spec.id, operation="transition_phase"):
            return await self._transition(spec, new_phase)

    async def _transition(self, spec: Spec, new_phase: Phase) -> PhaseTransitionResult:
        old_phase, old_updated_at = spec.phase, spec.updated_at

        result = PhaseTransitionResult(
            spec_id=spec.id, spec_name=spec.name, old_phase=old_phase, new_phase=new_phase
        )
        if new_phase in DEPRECATED_PHASES:
            result.warnings.append(
                f"Phase '{new_phase.value}' is deprecated; use '{Phase.implementation.value}'"
            )
        note = describe_transition(old_phase, new_phase)
        if note:
            logger.warning("phase_transition_unusual", spec_id=spec.id, note=note)
            result.warnings.append(f"Unusual transition: {note}")

        if self._sync is not None:
            linkage = await self._sync.ensure_remote_linkage(spec.id)
            if linkage.warning:
                result.warnings.append(linkage.warning)

        stamp = await self._specs.update_phase(spec.id, new_phase)

        path = self._documents.path_for(spec.id)
        previous_text: str | None = None
        try:
            if self._documents.exists(path):
                previous_text = self._documents.read(path)
                self._documents.write_durable(
                    path, update_phase_markers(previous_text, new_phase.value, stamp)
                )
            else:
                logger.warning("spec_document_missing", spec_id=spec.id, path=str(path))
                result.warnings.append(f"Spec document not found: {path}")

            result.warnings.extend(
                await self._publish(
                    EventType.spec_phase_changed,
                    spec.id,
                    PhaseChanged(old_phase=old_phase.value, new_phase=new_phase.value),
                )
            )
        except Exception as exc:
            try:
                await self._rollback(spec.id, old_phase, old_updated_at, path, previous_text)
            except Exception as rollback_exc:
                logger.exception(
                    "phase_transition_rollback_failed",
                    spec_id=spec.id,
                    new_phase=new_phase.value,
                    error=str(exc),
                )
                raise RollbackFailedError(
                    f"Transition of spec {spec.id} to {new_phase.value} failed ({exc}) and "
                    f"restoring {old_phase.value} also failed: {rollback_exc}",
                    spec_id=spec.id,
                    original_error=exc,
                ) from rollback_exc
            raise PhaseTransitionError(
                f"Transition of spec {spec.id} to {new_phase.value} failed and was rolled back "
                f"to {old_phase.value}: {exc}",
                spec_id=spec.id,
                restored_phase=old_phase.value,
            ) from exc

        logger.info(
            "phase_transitioned",
            spec_id=spec.id,
            old_phase=old_phase.value,
            new_phase=new_phase.value,
            warnings=len(result.warnings),
        )
        return result

    async def _rollback(
        self,
        spec_id: str,
        phase: Phase,
        updated_at: datetime,
        path: Path,
        previous_text: str | None,
    ) -> None:
        """Restore the record and the document. The document is restored even if the record fails."""
        logger.warning("phase_transition_rollback", spec_id=spec_id, restored_phase=phase.value)
        try:
            await self._specs.update_phase(spec_id, phase, updated_at=updated_at)
        finally:
            if previous_text is not None:
                try:
                    self._documents.write_durable(path, previous_text)
                except OSError:
                    logger.exception("spec_document_restore_failed", spec_id=spec_id, path=str(path))

    # ── deletion ──

    async def delete_spec(self, spec_id_prefix: str) -> SpecDeletionResult:
        """Delete the spec, its sync records and its document. The branch is left alone."""
        spec = await self._specs.resolve(spec_id_prefix)
        issue_number = await self._sync.linked_issue_number(spec.id) if self._sync else None

        removed = await self._specs.delete(spec.id)
        document_removed = self._documents.remove(self._documents.path_for(spec.id))

        warnings = await self._publish(
            EventType.spec_deleted,
            spec.id,
            SpecDeleted(name=spec.name, issue_number=issue_number),
            related_id=str(issue_number) if issue_number is not None else None,
        )
        return SpecDeletionResult(
            spec_id=spec.id,
            spec_name=spec.name,
            sync_records_removed=removed,
            document_removed=document_removed,
            warnings=warnings,
        )

    # ── publishing ──

    async def _publish(
        self,
        event_type: str,
        spec_id: str,
        payload: EventPayload,
        related_id: str | None = None,
    ) -> list[str]:
        """Publish after the ready barrier and return handler failures as warnings."""
        warnings: list[str] = []
        try:
            await self._bus.wait_ready(self._ready_timeout_s)
        except EventBusError as exc:
            if exc.code != "READY_TIMEOUT":
                raise
            logger.warning("event_bus_not_ready", event_type=event_type, spec_id=spec_id)
            warnings.append(str(exc))

        event = self._bus.create_event(event_type, spec_id, payload, related_id)
        report = await self._bus.publish(event)
        warnings.extend(
            f"Handler {failure.handler_name} failed: {failure.message}" for failure in report.failures
        )
        return warnings
