from __future__ import annotations

from specflow.config.settings import StatusSettings
from specflow.workflow.phases import Phase

PHASE_LABEL_PREFIX = "phase:"
STATUS_LABEL_PREFIX = "status:"


def status_for(phase: Phase, settings: StatusSettings) -> str:
    return settings.status_for(phase.value)


def labels_for(phase: Phase, settings: StatusSettings) -> list[str]:
    return [f"{PHASE_LABEL_PREFIX}{phase.value}", f"{STATUS_LABEL_PREFIX}{status_for(phase, settings)}"]


def issue_title(name: str, phase: Phase) -> str:
    return f"[{phase.value}] {name}"


def issue_state(phase: Phase) -> str:
    return "closed" if phase is Phase.completed else "open"
