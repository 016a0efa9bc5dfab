from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum


class EventType(StrEnum):
    spec_created = "spec.created"
    spec_phase_changed = "spec.phase_changed"
    spec_deleted = "spec.deleted"


@dataclass(frozen=True)
class SpecCreated:
    name: str
    description: str | None
    phase: str
    branch_name: str | None


@dataclass(frozen=True)
class PhaseChanged:
    old_phase: str
    new_phase: str


@dataclass(frozen=True)
class SpecDeleted:
    name: str
    issue_number: int | None = None


EventPayload = SpecCreated | PhaseChanged | SpecDeleted


@dataclass(frozen=True)
class LifecycleEvent:
    """Immutable fact about a spec state change. Handlers must not mutate it."""

    type: str
    spec_id: str
    payload: EventPayload
    related_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
