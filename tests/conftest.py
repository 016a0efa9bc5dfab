"""Shared pytest fixtures for specflow tests.

Each test gets its own SQLite file under tmp_path, a document store under
tmp_path/specs, an in-memory issue tracker and an in-memory version control
adapter. The coordinator fixture wires them together the same way
open_runtime() does.
"""

from __future__ import annotations

import dataclasses
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from specflow.config.settings import StatusSettings
from specflow.infra.errors import VersionControlError
from specflow.integrations.github.client import RemoteIssue
from specflow.integrations.github.sync import IssueSyncService
from specflow.storage.action_log import ActionLog
from specflow.storage.database import ensure_schema, make_session_factory
from specflow.storage.documents import SpecDocumentStore, render_spec_document
from specflow.storage.specs import Spec, SpecRepository, new_spec_id
from specflow.storage.sync_records import SyncRecordRepository
from specflow.vcs.branches import BranchLifecycleManager
from specflow.workflow.coordinator import SpecCoordinator
from specflow.workflow.event_bus import EventBus
from specflow.workflow.handlers import CORE_HANDLER_NAMES, register_core_handlers
from specflow.workflow.phases import Phase


class FakeTracker:
    """In-memory IssueTracker. Records every call, fails on demand."""

    def __init__(self) -> None:
        self.issues: dict[int, RemoteIssue] = {}
        self.create_calls: list[dict] = []
        self.update_calls: list[tuple[int, dict]] = []
        self.fail_create: Exception | None = None
        self.fail_update: Exception | None = None
        self._next_number = 1

    async def create_issue(self, *, title: str, body: str, labels: list[str]) -> RemoteIssue:
        self.create_calls.append({"title": title, "body": body, "labels": list(labels)})
        if self.fail_create is not None:
            raise self.fail_create
        number = self._next_number
        self._next_number += 1
        issue = RemoteIssue(
            id=str(1000 + number),
            number=number,
            node_id=f"I_node{number}",
            html_url=f"https://github.test/acme/specs/issues/{number}",
            title=title,
            labels=list(labels),
        )
        self.issues[number] = issue
        return issue

    async def update_issue(
        self,
        number: int,
        *,
        title: str | None = None,
        body: str | None = None,
        labels: list[str] | None = None,
        state: str | None = None,
    ) -> RemoteIssue:
        self.update_calls.append(
            (number, {"title": title, "body": body, "labels": labels, "state": state})
        )
        if self.fail_update is not None:
            raise self.fail_update
        issue = self.issues[number]
        fields = {"title": title, "labels": labels, "state": state}
        changes = {k: v for k, v in fields.items() if v is not None}
        issue = dataclasses.replace(issue, **changes)
        self.issues[number] = issue
        return issue

    async def get_issue(self, number: int) -> RemoteIssue | None:
        return self.issues.get(number)


class FakeVersionControl:
    """In-memory VersionControl with one checked-out branch."""

    def __init__(self, current: str = "feature/work", *, inside: bool = True) -> None:
        self.inside = inside
        self.current = current
        self.branches: set[str] = {current, "main"}
        self.lose_created_branch = False

    def is_inside_repository(self) -> bool:
        return self.inside

    def current_branch(self) -> str:
        return self.current

    def create_branch(self, name: str) -> None:
        if name in self.branches:
            raise VersionControlError(f"a branch named '{name}' already exists")
        if self.lose_created_branch:
            return
        self.branches.add(name)
        self.current = name

    def verify_branch(self, name: str) -> bool:
        return name in self.branches

    def checkout(self, name: str) -> None:
        if name not in self.branches:
            raise VersionControlError(f"pathspec '{name}' did not match")
        self.current = name

    def delete_branch(self, name: str) -> None:
        self.branches.discard(name)


def make_spec(
    name: str = "Add login", *, spec_id: str | None = None, phase: Phase = Phase.requirements
) -> Spec:
    now = datetime.now(UTC)
    return Spec(
        id=spec_id or new_spec_id(),
        name=name,
        description="Users can sign in",
        phase=phase,
        branch_name=None,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def add_spec(specs: SpecRepository, documents: SpecDocumentStore):
    """Insert a spec and its document directly, without publishing events."""

    async def _add(
        name: str = "Add login",
        *,
        spec_id: str | None = None,
        phase: Phase = Phase.requirements,
        with_document: bool = True,
    ) -> Spec:
        spec = make_spec(name, spec_id=spec_id, phase=phase)
        await specs.insert(spec)
        if with_document:
            documents.write_durable(documents.path_for(spec.id), render_spec_document(spec))
        return spec

    return _add


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'specflow.db'}")
    await ensure_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(db_engine)


@pytest.fixture
def specs(db_session_factory) -> SpecRepository:
    return SpecRepository(db_session_factory)


@pytest.fixture
def sync_records(db_session_factory) -> SyncRecordRepository:
    return SyncRecordRepository(db_session_factory)


@pytest.fixture
def action_log(db_session_factory) -> ActionLog:
    return ActionLog(db_session_factory)


@pytest.fixture
def documents(tmp_path: Path) -> SpecDocumentStore:
    return SpecDocumentStore(tmp_path / "specs")


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()


@pytest.fixture
def vcs() -> FakeVersionControl:
    return FakeVersionControl()


@pytest.fixture
def status_settings() -> StatusSettings:
    return StatusSettings()


@pytest.fixture
def sync_service(specs, sync_records, documents, tracker, status_settings, action_log) -> IssueSyncService:
    return IssueSyncService(specs, sync_records, documents, tracker, status_settings, action_log)


@pytest.fixture
def bus(sync_service, action_log) -> EventBus:
    event_bus = EventBus(required_handlers=CORE_HANDLER_NAMES)
    register_core_handlers(event_bus, sync_service=sync_service, action_log=action_log)
    return event_bus


@pytest.fixture
def coordinator(specs, documents, bus, sync_service, vcs) -> SpecCoordinator:
    return SpecCoordinator(
        specs,
        documents,
        bus,
        sync_service=sync_service,
        branch_manager=BranchLifecycleManager(vcs),
        ready_timeout_s=0.5,
    )
