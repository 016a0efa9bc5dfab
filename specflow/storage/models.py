"""SQLAlchemy 2.0 models for the local record store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SpecRecord(Base):
    __tablename__ = "specs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    phase: Mapped[str] = mapped_column(String(32), index=True)
    branch_name: Mapped[str | None] = mapped_column(String(255), nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class GitHubSyncRecord(Base):
    """Durable binding between a local entity and one remote issue.

    (entity_type, entity_id) is unique: this is what prevents a second
    remote issue from being created for the same spec.
    """

    __tablename__ = "github_sync"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_github_sync_entity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(16))
    entity_id: Mapped[str] = mapped_column(String(36))
    github_id: Mapped[str] = mapped_column(String(64), default="")
    github_number: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    github_node_id: Mapped[str | None] = mapped_column(String(128), nullable=True, default=None)
    sync_status: Mapped[str] = mapped_column(String(16), default="pending")
    last_synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)


class ActionLogRecord(Base):
    """Append-only audit trail of lifecycle events and recovery attempts."""

    __tablename__ = "logs"
    __table_args__ = (Index("idx_logs_spec", "spec_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    spec_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    action: Mapped[str] = mapped_column(String(64))
    level: Mapped[str] = mapped_column(String(8), default="info")
    message: Mapped[str] = mapped_column(Text, default="")
    details: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON text
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
