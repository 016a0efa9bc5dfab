"""create specs, github_sync and logs tables

Revision ID: 3f1c2a9d7e10
Revises:
Create Date: 2026-10-19

github_sync carries the (entity_type, entity_id) unique constraint that
keeps issue creation idempotent per spec.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "3f1c2a9d7e10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the record store tables."""
    op.create_table(
        "specs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("phase", sa.String(length=32), nullable=False),
        sa.Column("branch_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_specs_phase", "specs", ["phase"])

    op.create_table(
        "github_sync",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("entity_type", sa.String(length=16), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("github_id", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("github_number", sa.Integer(), nullable=True),
        sa.Column("github_node_id", sa.String(length=128), nullable=True),
        sa.Column("sync_status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_type", "entity_id", name="uq_github_sync_entity"),
    )

    op.create_table(
        "logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("spec_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("level", sa.String(length=8), nullable=False, server_default="info"),
        sa.Column("message", sa.Text(), nullable=False, server_default=""),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_logs_spec", "logs", ["spec_id"])


def downgrade() -> None:
    """Drop the record store tables."""
    op.drop_index("idx_logs_spec", table_name="logs")
    op.drop_table("logs")
    op.drop_table("github_sync")
    op.drop_index("ix_specs_phase", table_name="specs")
    op.drop_table("specs")
