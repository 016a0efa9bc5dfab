"""Composition root: build the spec lifecycle runtime from Settings."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from specflow.config.settings import Settings, get_settings
from specflow.constants import SPECS_DIRNAME
from specflow.infra.logging import setup_logging
from specflow.integrations.github.client import GitHubIssueClient
from specflow.integrations.github.sync import IssueSyncService
from specflow.storage.action_log import ActionLog
from specflow.storage.database import create_db_engine, ensure_schema, make_session_factory
from specflow.storage.documents import SpecDocumentStore
from specflow.storage.specs import SpecRepository
from specflow.storage.sync_records import SyncRecordRepository
from specflow.vcs.branches import BranchLifecycleManager
from specflow.vcs.git import GitCLI
from specflow.workflow.coordinator import SpecCoordinator
from specflow.workflow.event_bus import EventBus
from specflow.workflow.handlers import CORE_HANDLER_NAMES, register_core_handlers

logger = structlog.get_logger()


@dataclass
class SpecFlowRuntime:
    settings: Settings
    engine: AsyncEngine
    bus: EventBus
    coordinator: SpecCoordinator
    sync_service: IssueSyncService
    action_log: ActionLog
    specs: SpecRepository
    sync_records: SyncRecordRepository
    documents: SpecDocumentStore


@asynccontextmanager
async def open_runtime(settings: Settings | None = None) -> AsyncIterator[SpecFlowRuntime]:
    """Initialize shared state, yield the runtime, release it on exit."""
    settings = settings or get_settings()
    setup_logging(json_output=settings.log_json, log_level=settings.log_level)

    engine = await create_db_engine(settings.database)
    await ensure_schema(engine)
    db_session_factory = make_session_factory(engine)

    specs = SpecRepository(db_session_factory)
    sync_records = SyncRecordRepository(db_session_factory)
    action_log = ActionLog(db_session_factory)
    documents = SpecDocumentStore(settings.workspace.path / SPECS_DIRNAME)

    branch_manager = None
    if settings.branch.create_on_spec:
        branch_manager = BranchLifecycleManager(
            GitCLI(Path.cwd()), protected_branches=settings.branch.protected_set
        )

    # Remote sync only when token, owner and repo are all configured
    tracker = GitHubIssueClient(settings.github) if settings.github.enabled else None
    if tracker is None:
        logger.info("issue_sync_disabled")

    sync_service = IssueSyncService(
        specs, sync_records, documents, tracker, settings.status, action_log
    )

    bus = EventBus(required_handlers=CORE_HANDLER_NAMES)
    register_core_handlers(bus, sync_service=sync_service, action_log=action_log)

    coordinator = SpecCoordinator(
        specs,
        documents,
        bus,
        sync_service=sync_service,
        branch_manager=branch_manager,
        ready_timeout_s=settings.workflow.ready_timeout_s,
    )

    logger.info("runtime_started", workspace=str(settings.workspace.path))
    try:
        yield SpecFlowRuntime(
            settings=settings,
            engine=engine,
            bus=bus,
            coordinator=coordinator,
            sync_service=sync_service,
            action_log=action_log,
            specs=specs,
            sync_records=sync_records,
            documents=documents,
        )
    finally:
        if tracker is not None:
            await tracker.aclose()
        await engine.dispose()
        logger.info("runtime_stopped")
