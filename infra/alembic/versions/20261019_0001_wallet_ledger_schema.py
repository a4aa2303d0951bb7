"""wallet ledger schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("picture", sa.Text(), nullable=True),
        sa.Column("wallet_balance", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("auto_recharge_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("auto_recharge_threshold", sa.Numeric(18, 4), nullable=False, server_default=sa.text("100")),
        sa.Column("auto_recharge_amount", sa.Numeric(18, 4), nullable=False, server_default=sa.text("500")),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False
        ),
        sa.CheckConstraint("wallet_balance >= 0", name="ck_users_wallet_balance_non_negative"),
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("credits_added", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("balance_after", sa.Numeric(18, 4), nullable=False),
        sa.Column("description", sa.String(length=256), nullable=True),
        sa.Column("reference_id", sa.String(length=128), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.CheckConstraint("type IN ('topup', 'deduct', 'bonus', 'refund')", name="ck_wallet_transactions_type"),
        sa.UniqueConstraint("user_id", "type", "reference_id", name="uq_wallet_transactions_reference"),
    )
    op.create_index("ix_wallet_transactions_user_id", "wallet_transactions", ["user_id"])

    op.create_table(
        "generated_images",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("original_prompt", sa.Text(), nullable=False),
        sa.Column("enhanced_prompt", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=False),
        sa.Column("resolution", sa.String(length=16), nullable=False),
        sa.Column("generation_type", sa.String(length=32), nullable=False),
        sa.Column("credits_used", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("idempotency_key", sa.String(length=128), nullable=False),
        sa.Column("failure_reason", sa.String(length=256), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint("status IN ('pending', 'completed', 'failed')", name="ck_generated_images_status"),
        sa.UniqueConstraint("user_id", "idempotency_key", name="uq_generated_images_idempotency_key"),
    )
    op.create_index("ix_generated_images_user_id", "generated_images", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_generated_images_user_id", table_name="generated_images")
    op.drop_table("generated_images")
    op.drop_index("ix_wallet_transactions_user_id", table_name="wallet_transactions")
    op.drop_table("wallet_transactions")
    op.drop_table("users")
