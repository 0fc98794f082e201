"""Loyalty ledger core tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


_NOW = sa.text("CURRENT_TIMESTAMP")

merchant_status = sa.Enum("active", "suspended", name="merchant_status")
transaction_type = sa.Enum("purchase", "points_redemption", "operation", name="loyalty_transaction_type")
transaction_status = sa.Enum("completed", name="loyalty_transaction_status")
session_code_status = sa.Enum("active", "used", "expired", name="loyalty_session_code_status")


def upgrade() -> None:
    op.create_table(
        "merchants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", merchant_status, nullable=False, server_default="active"),
        sa.Column("timezone", sa.String(), nullable=True),
        sa.Column("earn_rate_per_1000", sa.Integer(), nullable=True),
        sa.Column("redeem_max_percent", sa.Integer(), nullable=True),
        sa.Column("min_receipt_amount_for_earn", sa.Numeric(14, 2), nullable=True),
        sa.Column("redeem_min_points", sa.Integer(), nullable=True),
        sa.Column("redeem_step", sa.Integer(), nullable=True),
        sa.Column("max_points_per_receipt", sa.Integer(), nullable=True),
        sa.Column("max_points_per_day", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_NOW, nullable=False),
    )
    op.create_index("ix_merchants_code", "merchants", ["code"], unique=True)

    op.create_table(
        "merchant_api_keys",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("merchant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("api_key", sa.String(), nullable=False),
        sa.Column("label", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_NOW, nullable=False),
        sa.ForeignKeyConstraint(["merchant_id"], ["merchants.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_merchant_api_keys_api_key", "merchant_api_keys", ["api_key"], unique=True)

    op.create_table(
        "customers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_NOW, nullable=False),
    )
    op.create_index("ix_customers_external_id", "customers", ["external_id"], unique=True)

    op.create_table(
        "customer_merchants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("merchant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_NOW, nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["merchant_id"], ["merchants.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("customer_id", "merchant_id", name="uq_customer_merchants_customer_merchant"),
    )

    op.create_table(
        "loyalty_balances",
        sa.Column("customer_merchant_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level", sa.String(), nullable=False, server_default="bronze"),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_NOW, nullable=False),
        sa.ForeignKeyConstraint(["customer_merchant_id"], ["customer_merchants.id"], ondelete="CASCADE"),
        sa.CheckConstraint("points >= 0", name="ck_loyalty_balances_points_non_negative"),
    )

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("customer_merchant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("points_earned", sa.Integer(), nullable=False),
        sa.Column("points_spent", sa.Integer(), nullable=False),
        sa.Column("transaction_type", transaction_type, nullable=False),
        sa.Column("status", transaction_status, nullable=False),
        sa.Column("receipt_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_NOW, nullable=False),
        sa.ForeignKeyConstraint(["customer_merchant_id"], ["customer_merchants.id"], ondelete="CASCADE"),
        sa.CheckConstraint("points_earned >= 0", name="ck_loyalty_transactions_earned_non_negative"),
        sa.CheckConstraint("points_spent >= 0", name="ck_loyalty_transactions_spent_non_negative"),
    )
    op.create_index(
        "ix_loyalty_transactions_customer_merchant_id",
        "loyalty_transactions",
        ["customer_merchant_id"],
    )

    op.create_table(
        "loyalty_session_codes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("merchant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("customer_merchant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("subject_identity", sa.String(), nullable=True),
        sa.Column("session_code", sa.String(16), nullable=False),
        sa.Column("status", session_code_status, nullable=False, server_default="active"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_NOW, nullable=False),
        sa.ForeignKeyConstraint(["merchant_id"], ["merchants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["customer_merchant_id"], ["customer_merchants.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_loyalty_session_codes_merchant_code_status",
        "loyalty_session_codes",
        ["merchant_id", "session_code", "status"],
    )


def downgrade() -> None:
    op.drop_index("ix_loyalty_session_codes_merchant_code_status", table_name="loyalty_session_codes")
    op.drop_table("loyalty_session_codes")
    op.drop_index("ix_loyalty_transactions_customer_merchant_id", table_name="loyalty_transactions")
    op.drop_table("loyalty_transactions")
    op.drop_table("loyalty_balances")
    op.drop_table("customer_merchants")
    op.drop_index("ix_customers_external_id", table_name="customers")
    op.drop_table("customers")
    op.drop_index("ix_merchant_api_keys_api_key", table_name="merchant_api_keys")
    op.drop_table("merchant_api_keys")
    op.drop_index("ix_merchants_code", table_name="merchants")
    op.drop_table("merchants")

    bind = op.get_bind()
    for enum_type in (session_code_status, transaction_status, transaction_type, merchant_status):
        enum_type.drop(bind, checkfirst=True)
