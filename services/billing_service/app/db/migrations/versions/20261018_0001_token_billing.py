"""token wallets and ledger

Revision ID: billing_20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "billing_20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "token_wallets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("wallet_type", sa.String(length=20), nullable=False, server_default="STANDARD"),
        sa.Column("balance_tokens", sa.Numeric(18, 2), nullable=False, server_default="0.00"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_token_reset", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint("balance_tokens >= 0", name="ck_token_wallet_balance_non_negative"),
    )
    op.create_index("ix_token_wallets_user_id", "token_wallets", ["user_id"])
    op.create_index("ix_token_wallet_user_type", "token_wallets", ["user_id", "wallet_type"])
    op.create_index(
        "uq_token_wallet_active_type",
        "token_wallets",
        ["user_id", "wallet_type"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )

    op.create_table(
        "token_ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "wallet_id",
            sa.Integer(),
            sa.ForeignKey("token_wallets.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_token_ledger_user_created", "token_ledger_entries", ["user_id", "created_at"])
    op.create_index("ix_token_ledger_wallet_created", "token_ledger_entries", ["wallet_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_token_ledger_wallet_created", table_name="token_ledger_entries")
    op.drop_index("ix_token_ledger_user_created", table_name="token_ledger_entries")
    op.drop_table("token_ledger_entries")
    op.drop_index("uq_token_wallet_active_type", table_name="token_wallets")
    op.drop_index("ix_token_wallet_user_type", table_name="token_wallets")
    op.drop_index("ix_token_wallets_user_id", table_name="token_wallets")
    op.drop_table("token_wallets")
