"""tenant registry

Revision ID: 0001_tenants
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# Revision identifiers, used by Alembic.
revision = "0001_tenants"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        # Nullable so legacy rows (name kept in `data`) can load and be backfilled
        sa.Column("database_name", sa.String(length=63), nullable=True),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_tenants"),
        sa.UniqueConstraint("database_name", name="uq_tenants_database_name"),
    )
    op.create_index("ix_tenants_name", "tenants", ["name"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_tenants_name", table_name="tenants")
    op.drop_table("tenants")
