"""Core event handlers and their registration.

CORE_HANDLER_NAMES is the ready set of the bus: publishers that need
guaranteed delivery wait until every name below is registered.
"""

from __future__ import annotations

import dataclasses

import structlog

from specflow.integrations.github.sync import IssueSyncService
from specflow.storage.action_log import ActionLog
from specflow.workflow.event_bus import EventBus
from specflow.workflow.events import EventType, LifecycleEvent

logger = structlog.get_logger()

ACTION_LOG_HANDLER = "action_log"
ISSUE_CREATE_HANDLER = "issue_sync.on_spec_created"
ISSUE_PHASE_HANDLER = "issue_sync.on_phase_changed"
ISSUE_DELETE_HANDLER = "issue_sync.on_spec_deleted"

CORE_HANDLER_NAMES: frozenset[str] = frozenset(
    {ACTION_LOG_HANDLER, ISSUE_CREATE_HANDLER, ISSUE_PHASE_HANDLER, ISSUE_DELETE_HANDLER}
)

_LOGGED_EVENT_TYPES = (EventType.spec_created, EventType.spec_phase_changed, EventType.spec_deleted)


def make_action_log_handler(action_log: ActionLog):
    """Handler recording every lifecycle event in the logs table."""

    async def record_event(event: LifecycleEvent) -> None:
        await action_log.record(
            str(event.type),
            f"{event.type} for spec {event.spec_id}",
            spec_id=event.spec_id,
            details=dataclasses.asdict(event.payload),
        )

    return record_event


def register_core_handlers(
    bus: EventBus,
    *,
    sync_service: IssueSyncService,
    action_log: ActionLog,
) -> None:
    """Register the core handler set. The action log runs first for every event type."""
    record_event = make_action_log_handler(action_log)
    for event_type in _LOGGED_EVENT_TYPES:
        bus.register(event_type, record_event, name=ACTION_LOG_HANDLER)

    bus.register(EventType.spec_created, sync_service.on_spec_created, name=ISSUE_CREATE_HANDLER)
    bus.register(EventType.spec_phase_changed, sync_service.on_phase_changed, name=ISSUE_PHASE_HANDLER)
    bus.register(EventType.spec_deleted, sync_service.on_spec_deleted, name=ISSUE_DELETE_HANDLER)
    logger.info("core_handlers_registered", handlers=sorted(CORE_HANDLER_NAMES))
