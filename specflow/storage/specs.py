"""Spec persistence: read model and repository over the specs table."""

from __future__ import annotations

import re
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from specflow.constants import ENTITY_SPEC, SPEC_ID_MIN_PREFIX
from specflow.infra.errors import AmbiguousSpecIdError, SpecNotFoundError, SpecValidationError
from specflow.storage.models import GitHubSyncRecord, SpecRecord
from specflow.workflow.phases import Phase

logger = structlog.get_logger()

_PREFIX_RE = re.compile(r"^[0-9a-fA-F-]+$")


@dataclass(frozen=True)
class Spec:
    """Spec read model."""

    id: str
    name: str
    description: str | None
    phase: Phase
    branch_name: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def short_id(self) -> str:
        return self.id[:SPEC_ID_MIN_PREFIX]


def new_spec_id() -> str:
    return str(uuid.uuid4())


def validate_spec_id(spec_id: str) -> None:
    """Raise SpecValidationError unless spec_id is a full UUID."""
    try:
        parsed = uuid.UUID(spec_id)
    except (ValueError, AttributeError, TypeError):
        raise SpecValidationError(
            f"Invalid spec ID format. Expected UUID, got: {spec_id}", field="spec_id"
        ) from None
    if str(parsed) != spec_id.lower():
        raise SpecValidationError(
            f"Invalid spec ID format. Expected UUID, got: {spec_id}", field="spec_id"
        )


def validate_id_prefix(prefix: str) -> str:
    """Check a user-supplied id prefix and return it lower-cased."""
    candidate = (prefix or "").strip()
    if len(candidate) < SPEC_ID_MIN_PREFIX:
        raise SpecValidationError(
            f"Invalid spec ID: '{prefix}'. Must be at least {SPEC_ID_MIN_PREFIX} characters.",
            field="spec_id",
        )
    if not _PREFIX_RE.match(candidate):
        raise SpecValidationError(
            f"Invalid spec ID: '{prefix}'. Only hex digits and hyphens are allowed.",
            field="spec_id",
        )
    return candidate.lower()


class SpecRepository:
    """Spec store: insert, update-by-id, select-by-prefix, delete, transaction."""

    def __init__(self, db_session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._db = db_session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """All-or-nothing unit of work: commits on exit, rolls back on error."""
        async with self._db() as db, db.begin():
            yield db

    async def insert(self, spec: Spec) -> None:
        async with self.transaction() as db:
            db.add(
                SpecRecord(
                    id=spec.id,
                    name=spec.name,
                    description=spec.description,
                    phase=spec.phase.value,
                    branch_name=spec.branch_name,
                    created_at=spec.created_at,
                    updated_at=spec.updated_at,
                )
            )
        logger.info("spec_inserted", spec_id=spec.id, phase=spec.phase.value)

    async def get(self, spec_id: str) -> Spec | None:
        async with self._db() as db:
            result = await db.execute(select(SpecRecord).where(SpecRecord.id == spec_id))
            row = result.scalars().first()
            return self._to_spec(row) if row else None

    async def select_by_prefix(self, prefix: str, *, limit: int = 2) -> list[Spec]:
        """Return up to `limit` specs whose id starts with prefix."""
        async with self._db() as db:
            result = await db.execute(
                select(SpecRecord)
                .where(SpecRecord.id.startswith(prefix, autoescape=True))
                .order_by(SpecRecord.id)
                .limit(limit)
            )
            return [self._to_spec(r) for r in result.scalars().all()]

    async def resolve(self, prefix: str) -> Spec:
        """Resolve an id prefix to exactly one spec.

        Raises SpecValidationError for a malformed prefix, SpecNotFoundError for
        zero matches, AmbiguousSpecIdError for several.
        """
        normalized = validate_id_prefix(prefix)
        matches = await self.select_by_prefix(normalized, limit=5)
        if not matches:
            raise SpecNotFoundError(prefix)
        if len(matches) > 1:
            raise AmbiguousSpecIdError(prefix, [m.id for m in matches])
        return matches[0]

    async def list_specs(self, *, phase: Phase | None = None) -> list[Spec]:
        async with self._db() as db:
            stmt = select(SpecRecord).order_by(SpecRecord.created_at)
            if phase is not None:
                stmt = stmt.where(SpecRecord.phase == phase.value)
            result = await db.execute(stmt)
            return [self._to_spec(r) for r in result.scalars().all()]

    async def update_phase(
        self, spec_id: str, phase: Phase, *, updated_at: datetime | None = None
    ) -> datetime:
        """Set phase and updated_at in a single UPDATE. Returns the timestamp written."""
        stamp = updated_at or datetime.now(UTC)
        async with self.transaction() as db:
            result = await db.execute(
                update(SpecRecord)
                .where(SpecRecord.id == spec_id)
                .values(phase=phase.value, updated_at=stamp)
            )
            if result.rowcount == 0:
                raise SpecNotFoundError(spec_id)
        return stamp

    async def delete(self, spec_id: str) -> int:
        """Delete a spec and its Sync Records together. Returns sync rows removed."""
        async with self.transaction() as db:
            sync_result = await db.execute(
                delete(GitHubSyncRecord).where(
                    GitHubSyncRecord.entity_type == ENTITY_SPEC,
                    GitHubSyncRecord.entity_id == spec_id,
                )
            )
            spec_result = await db.execute(delete(SpecRecord).where(SpecRecord.id == spec_id))
            if spec_result.rowcount == 0:
                raise SpecNotFoundError(spec_id)
        logger.info("spec_deleted", spec_id=spec_id, sync_records=sync_result.rowcount)
        return sync_result.rowcount

    @staticmethod
    def _to_spec(record: SpecRecord) -> Spec:
        return Spec(
            id=record.id,
            name=record.name,
            description=record.description,
            phase=Phase(record.phase),
            branch_name=record.branch_name,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
