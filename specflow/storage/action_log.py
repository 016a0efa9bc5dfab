from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from specflow.storage.models import ActionLogRecord

logger = structlog.get_logger()


@dataclass(frozen=True)
class ActionLogEntry:
    id: int
    spec_id: str | None
    action: str
    level: str
    message: str
    details: dict[str, Any] | None
    created_at: datetime


class ActionLog:
    """Append-only audit trail stored in the logs table."""

    def __init__(self, db_session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._db = db_session_factory

    async def record(
        self,
        action: str,
        message: str,
        *,
        spec_id: str | None = None,
        level: str = "info",
        details: dict[str, Any] | None = None,
    ) -> None:
        async with self._db() as db:
            db.add(
                ActionLogRecord(
                    spec_id=spec_id,
                    action=action,
                    level=level,
                    message=message,
                    details=json.dumps(details, default=str, sort_keys=True) if details else None,
                    created_at=datetime.now(UTC),
                )
            )
            await db.commit()
        logger.debug("action_logged", action=action, spec_id=spec_id, level=level)

    async def entries(self, *, spec_id: str | None = None, limit: int = 50) -> list[ActionLogEntry]:
        """Most recent entries first."""
        async with self._db() as db:
            stmt = select(ActionLogRecord).order_by(ActionLogRecord.id.desc()).limit(limit)
            if spec_id is not None:
                stmt = stmt.where(ActionLogRecord.spec_id == spec_id)
            result = await db.execute(stmt)
            return [
                ActionLogEntry(
                    id=r.id,
                    spec_id=r.spec_id,
                    action=r.action,
                    level=r.level,
                    message=r.message,
                    details=json.loads(r.details) if r.details else None,
                    created_at=r.created_at,
                )
                for r in result.scalars().all()
            ]
