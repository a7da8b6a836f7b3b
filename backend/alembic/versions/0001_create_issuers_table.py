"""create issuers table

Revision ID: 0001_create_issuers_table
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_create_issuers_table"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "issuers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("public_key", sa.String(length=128), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("website", sa.String(length=512), nullable=True),
        sa.Column("contact_email", sa.String(length=256), nullable=True),
        sa.Column("tier", sa.String(length=16), nullable=True, server_default="free"),
        sa.Column("api_key_hash", sa.String(length=64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_issuers_api_key_hash", "issuers", ["api_key_hash"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_issuers_api_key_hash", table_name="issuers")
    op.drop_table("issuers")
