"""Spec lifecycle phases.

Phase is a closed enum. Abbreviations are normalized through PHASE_ALIASES;
FORWARD_TRANSITIONS is advisory (the coordinator allows any valid target but
reports moves outside the table).
"""

from __future__ import annotations

from enum import StrEnum

import structlog

from specflow.infra.errors import InvalidPhaseError

logger = structlog.get_logger()


class Phase(StrEnum):
    requirements = "requirements"
    design = "design"
    tasks = "tasks"  # deprecated alias stage of design
    implementation = "implementation"
    review = "review"
    completed = "completed"


PHASE_ORDER: tuple[Phase, ...] = tuple(Phase)

DEPRECATED_PHASES: frozenset[Phase] = frozenset({Phase.tasks})

PHASE_ALIASES: dict[str, Phase] = {
    "req": Phase.requirements,
    "reqs": Phase.requirements,
    "des": Phase.design,
    "task": Phase.tasks,
    "impl": Phase.implementation,
    "imp": Phase.implementation,
    "rev": Phase.review,
    "comp": Phase.completed,
    "done": Phase.completed,
}

FORWARD_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.requirements: frozenset({Phase.design}),
    Phase.design: frozenset({Phase.tasks, Phase.implementation}),
    Phase.tasks: frozenset({Phase.implementation}),
    Phase.implementation: frozenset({Phase.review}),
    Phase.review: frozenset({Phase.completed}),
    Phase.completed: frozenset(),
}


def normalize_phase(value: str) -> str:
    """Lower-case, strip, and expand a known abbreviation. Does not validate."""
    key = value.strip().lower()
    alias = PHASE_ALIASES.get(key)
    return alias.value if alias is not None else key


def validate_phase(value: str) -> Phase:
    """Return the canonical Phase for value or raise InvalidPhaseError."""
    normalized = normalize_phase(value)
    try:
        phase = Phase(normalized)
    except ValueError:
        raise InvalidPhaseError(value, [p.value for p in PHASE_ORDER]) from None

    if phase in DEPRECATED_PHASES:
        logger.warning("phase_deprecated", phase=phase.value, use=Phase.implementation.value)
    return phase


def is_forward_transition(old: Phase, new: Phase) -> bool:
    return new in FORWARD_TRANSITIONS[old]


def describe_transition(old: Phase, new: Phase) -> str | None:
    """Advisory note for a move outside the forward table, or None."""
    if old == new or is_forward_transition(old, new):
        return None
    if PHASE_ORDER.index(new) < PHASE_ORDER.index(old):
        return f"moving backward from {old.value} to {new.value}"
    return f"skipping phases from {old.value} to {new.value}"
