"""Sync Record persistence: one row per (entity_type, entity_id)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from specflow.storage.models import GitHubSyncRecord


class SyncStatus(StrEnum):
    pending = "pending"
    success = "success"
    failed = "failed"
    synced = "synced"


@dataclass(frozen=True)
class SyncRecord:
    """Sync Record read model."""

    id: int
    entity_type: str
    entity_id: str
    github_id: str
    github_number: int | None
    github_node_id: str | None
    sync_status: SyncStatus
    last_synced_at: datetime
    error_message: str | None


class SyncRecordRepository:
    """Plain reads/writes on github_sync.

    insert() lets the (entity_type, entity_id) IntegrityError propagate; the
    sync service decides how to recover from it.
    """

    def __init__(self, db_session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._db = db_session_factory

    async def get(self, entity_type: str, entity_id: str) -> SyncRecord | None:
        async with self._db() as db:
            result = await db.execute(
                select(GitHubSyncRecord).where(
                    GitHubSyncRecord.entity_type == entity_type,
                    GitHubSyncRecord.entity_id == entity_id,
                )
            )
            row = result.scalars().first()
            return self._to_sync_record(row) if row else None

    async def count(self, entity_type: str, entity_id: str) -> int:
        async with self._db() as db:
            result = await db.execute(
                select(func.count())
                .select_from(GitHubSyncRecord)
                .where(
                    GitHubSyncRecord.entity_type == entity_type,
                    GitHubSyncRecord.entity_id == entity_id,
                )
            )
            return int(result.scalar_one())

    async def insert(
        self,
        entity_type: str,
        entity_id: str,
        *,
        github_id: str,
        github_number: int | None,
        github_node_id: str | None,
        sync_status: SyncStatus,
        error_message: str | None = None,
    ) -> None:
        async with self._db() as db:
            db.add(
                GitHubSyncRecord(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    github_id=github_id,
                    github_number=github_number,
                    github_node_id=github_node_id,
                    sync_status=sync_status.value,
                    last_synced_at=datetime.now(UTC),
                    error_message=error_message,
                )
            )
            await db.commit()

    async def update(self, entity_type: str, entity_id: str, **values: object) -> int:
        """Update the record in place; last_synced_at is always refreshed."""
        if isinstance(values.get("sync_status"), SyncStatus):
            values["sync_status"] = values["sync_status"].value
        values.setdefault("last_synced_at", datetime.now(UTC))
        async with self._db() as db:
            result = await db.execute(
                update(GitHubSyncRecord)
                .where(
                    GitHubSyncRecord.entity_type == entity_type,
                    GitHubSyncRecord.entity_id == entity_id,
                )
                .values(**values)
            )
            await db.commit()
            return result.rowcount

    @staticmethod
    def _to_sync_record(record: GitHubSyncRecord) -> SyncRecord:
        return SyncRecord(
            id=record.id,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            github_id=record.github_id,
            github_number=record.github_number,
            github_node_id=record.github_node_id,
            sync_status=SyncStatus(record.sync_status),
            last_synced_at=record.last_synced_at,
            error_message=record.error_message,
        )
