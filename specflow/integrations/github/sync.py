"""Idempotent spec → issue synchronization.

Invariant: at most one github_sync row per (entity_type, entity_id). Any
existing row blocks a new issue creation, whatever its stored status: a
failed attempt may still have created the issue remotely, so retrying
requires an explicit reset of the row first.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog
from sqlalchemy.exc import IntegrityError

from specflow.config.settings import StatusSettings
from specflow.constants import ENTITY_SPEC
from specflow.infra.errors import (
    DuplicateSyncError,
    ExternalServiceError,
    SpecNotFoundError,
    SpecValidationError,
)
from specflow.integrations.github.client import IssueTracker, RemoteIssue
from specflow.integrations.github.status import issue_state, issue_title, labels_for
from specflow.storage.action_log import ActionLog
from specflow.storage.documents import SpecDocumentStore
from specflow.storage.specs import Spec, SpecRepository
from specflow.storage.sync_records import SyncRecordRepository, SyncStatus
from specflow.workflow.events import LifecycleEvent, PhaseChanged, SpecDeleted
from specflow.workflow.phases import Phase

logger = structlog.get_logger()


@dataclass(frozen=True)
class LinkageResult:
    issue_number: int | None
    was_created: bool
    warning: str | None = None


@dataclass
class LinkageReport:
    """Comparison of the local spec with its remote issue."""

    spec_id: str
    issue_number: int | None
    problems: list[str] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not self.problems


class IssueSyncService:
    def __init__(
        self,
        specs: SpecRepository,
        records: SyncRecordRepository,
        documents: SpecDocumentStore,
        tracker: IssueTracker | None,
        status_settings: StatusSettings,
        action_log: ActionLog,
    ) -> None:
        self._specs = specs
        self._records = records
        self._documents = documents
        self._tracker = tracker
        self._status = status_settings
        self._action_log = action_log

    @property
    def enabled(self) -> bool:
        return self._tracker is not None

    async def linked_issue_number(self, spec_id: str) -> int | None:
        record = await self._records.get(ENTITY_SPEC, spec_id)
        return record.github_number if record else None

    async def sync_spec_to_issue(self, spec_id: str, *, create_if_not_exists: bool = True) -> int:
        """Create the remote issue for a spec and record the binding.

        Returns the issue number. Raises DuplicateSyncError without any remote
        call when a sync record already exists.
        """
        spec = await self._specs.get(spec_id)
        if spec is None:
            raise SpecNotFoundError(spec_id)

        existing = await self._records.get(ENTITY_SPEC, spec_id)
        if existing is not None:
            logger.warning(
                "issue_sync_duplicate",
                spec_id=spec_id,
                issue_number=existing.github_number,
                sync_status=existing.sync_status.value,
            )
            raise DuplicateSyncError(
                spec_id,
                issue_number=existing.github_number,
                sync_status=existing.sync_status.value,
            )

        if not create_if_not_exists:
            raise SpecValidationError(
                f"Spec {spec_id} has no linked issue and creation was not requested",
                field="create_if_not_exists",
            )
        if self._tracker is None:
            raise ExternalServiceError("Issue tracker is not configured", code="TRACKER_DISABLED")

        try:
            issue = await self._tracker.create_issue(
                title=issue_title(spec.name, spec.phase),
                body=self._issue_body(spec),
                labels=labels_for(spec.phase, self._status),
            )
        except Exception as exc:
            await self.record_sync_log(spec_id, status=SyncStatus.failed, error_message=str(exc))
            raise

        await self.record_sync_log(spec_id, status=SyncStatus.success, issue=issue)
        logger.info("issue_synced", spec_id=spec_id, issue_number=issue.number)
        return issue.number

    async def record_sync_log(
        self,
        spec_id: str,
        *,
        status: SyncStatus,
        issue: RemoteIssue | None = None,
        error_message: str | None = None,
    ) -> None:
        """Persist a sync outcome. A concurrent insert for the same key turns into an update."""
        remote_fields: dict[str, object] = {}
        if issue is not None:
            remote_fields = {
                "github_id": issue.id,
                "github_number": issue.number,
                "github_node_id": issue.node_id,
            }

        try:
            await self._records.insert(
                ENTITY_SPEC,
                spec_id,
                github_id=issue.id if issue else "",
                github_number=issue.number if issue else None,
                github_node_id=issue.node_id if issue else None,
                sync_status=status,
                error_message=error_message,
            )
        except IntegrityError:
            logger.info("sync_record_conflict_update", spec_id=spec_id, sync_status=status.value)
            await self._records.update(
                ENTITY_SPEC,
                spec_id,
                sync_status=status,
                error_message=error_message,
                **remote_fields,
            )

    async def ensure_remote_linkage(self, spec_id: str) -> LinkageResult:
        """Create the issue if the spec has none. Never raises; failures become a warning."""
        number: int | None = None
        try:
            existing = await self._records.get(ENTITY_SPEC, spec_id)
            if existing is not None:
                return LinkageResult(issue_number=existing.github_number, was_created=False)
            if self._tracker is None:
                return LinkageResult(issue_number=None, was_created=False)

            number = await self.sync_spec_to_issue(spec_id, create_if_not_exists=True)
            await self._action_log.record(
                "auto_recover_issue",
                f"Linked spec to issue #{number}",
                spec_id=spec_id,
                details={"issue_number": number},
            )
        except Exception as exc:
            warning = f"Could not link spec to an issue: {exc}"
            logger.warning(
                "issue_linkage_recovery_failed",
                spec_id=spec_id,
                issue_number=number,
                error=str(exc),
            )
            await self._record_recovery_failure(spec_id, warning, exc)
            return LinkageResult(issue_number=number, was_created=number is not None, warning=warning)

        return LinkageResult(issue_number=number, was_created=True)

    async def _record_recovery_failure(self, spec_id: str, warning: str, exc: Exception) -> None:
        try:
            await self._action_log.record(
                "auto_recover_issue_failed",
                warning,
                spec_id=spec_id,
                level="warning",
                details={"error_type": type(exc).__name__},
            )
        except Exception:
            logger.exception("action_log_write_failed", spec_id=spec_id, action="auto_recover_issue_failed")

    # ── event handlers ──

    async def on_spec_created(self, event: LifecycleEvent) -> None:
        await self.ensure_remote_linkage(event.spec_id)

    async def on_phase_changed(self, event: LifecycleEvent) -> None:
        """Mirror the new phase onto the linked issue (title, labels, state).

        Re-raises tracker failures so the bus reports them; the local phase
        is already committed and stays.
        """
        if self._tracker is None or not isinstance(event.payload, PhaseChanged):
            return
        record = await self._records.get(ENTITY_SPEC, event.spec_id)
        if record is None or record.github_number is None:
            logger.debug("issue_update_skipped_unlinked", spec_id=event.spec_id)
            return
        spec = await self._specs.get(event.spec_id)
        if spec is None:
            return

        phase = Phase(event.payload.new_phase)
        try:
            await self._tracker.update_issue(
                record.github_number,
                title=issue_title(spec.name, phase),
                body=self._issue_body(spec),
                labels=labels_for(phase, self._status),
                state=issue_state(phase),
            )
        except Exception as exc:
            await self._records.update(
                ENTITY_SPEC,
                event.spec_id,
                error_message=str(exc),
                last_synced_at=record.last_synced_at,
            )
            raise

        await self._records.update(
            ENTITY_SPEC, event.spec_id, sync_status=SyncStatus.success, error_message=None
        )
        logger.info(
            "issue_phase_updated",
            spec_id=event.spec_id,
            issue_number=record.github_number,
            phase=phase.value,
        )

    async def on_spec_deleted(self, event: LifecycleEvent) -> None:
        """Close the issue of a deleted spec."""
        if self._tracker is None or not isinstance(event.payload, SpecDeleted):
            return
        if event.payload.issue_number is None:
            return
        await self._tracker.update_issue(event.payload.issue_number, state="closed")
        logger.info("issue_closed_for_deleted_spec", spec_id=event.spec_id, issue_number=event.payload.issue_number)

    # ── drift check ──

    async def check_linkage(self, spec_id: str) -> LinkageReport:
        spec = await self._specs.get(spec_id)
        if spec is None:
            raise SpecNotFoundError(spec_id)

        record = await self._records.get(ENTITY_SPEC, spec_id)
        if record is None:
            return LinkageReport(spec_id=spec_id, issue_number=None, problems=["no sync record"])

        report = LinkageReport(spec_id=spec_id, issue_number=record.github_number)
        if record.github_number is None:
            report.problems.append(f"sync record has no issue number (status: {record.sync_status.value})")
            return report
        if self._tracker is None:
            report.problems.append("issue tracker is not configured")
            return report

        issue = await self._tracker.get_issue(record.github_number)
        if issue is None:
            report.problems.append(f"issue #{record.github_number} not found")
            return report

        phase_label = labels_for(spec.phase, self._status)[0]
        if phase_label not in issue.labels:
            report.problems.append(f"issue is missing label {phase_label}")
        expected_state = issue_state(spec.phase)
        if issue.state != expected_state:
            report.problems.append(f"issue is {issue.state}, expected {expected_state}")

        if report.in_sync:
            await self._records.update(
                ENTITY_SPEC, spec_id, sync_status=SyncStatus.synced, error_message=None
            )
        return report

    def _issue_body(self, spec: Spec) -> str:
        path = self._documents.path_for(spec.id)
        if self._documents.exists(path):
            return self._documents.read(path)
        return (
            f"# {spec.name}\n\n"
            f"**Spec ID:** {spec.id}\n"
            f"**Phase:** {spec.phase.value}\n\n"
            f"{spec.description or ''}"
        ).rstrip() + "\n"
