"""Point balances and the append-only transaction ledger."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from loyalty_api.db.base import Base
from loyalty_api.models.merchant import enum_values


class LoyaltyTransactionType(str, Enum):
    """Kinds of ledger entries."""

    PURCHASE = "purchase"
    POINTS_REDEMPTION = "points_redemption"
    OPERATION = "operation"


class LoyaltyTransactionStatus(str, Enum):
    """Ledger entry status; every committed entry is ``completed``."""

    COMPLETED = "completed"


class LoyaltyBalance(Base):
    """Denormalised projection of the ledger for one enrollment.

    ``points == total_earned - total_spent`` holds after every commit.
    """

    __tablename__ = "loyalty_balances"
    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_loyalty_balances_points_non_negative"),
    )

    customer_merchant_id = Column(
        UUID(as_uuid=True),
        ForeignKey("customer_merchants.id", ondelete="CASCADE"),
        primary_key=True,
    )
    points = Column(Integer, nullable=False, default=0, server_default="0")
    total_earned = Column(Integer, nullable=False, default=0, server_default="0")
    total_spent = Column(Integer, nullable=False, default=0, server_default="0")
    level = Column(String, nullable=False, default="bronze", server_default="bronze")
    last_activity = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    customer_merchant = relationship("CustomerMerchant", back_populates="balance")


class LoyaltyTransaction(Base):
    """Immutable ledger entry. Rows are inserted once and never updated."""

    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        CheckConstraint("points_earned >= 0", name="ck_loyalty_transactions_earned_non_negative"),
        CheckConstraint("points_spent >= 0", name="ck_loyalty_transactions_spent_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_merchant_id = Column(
        UUID(as_uuid=True),
        ForeignKey("customer_merchants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount = Column(Numeric(14, 2), nullable=False, default=0)
    points_earned = Column(Integer, nullable=False, default=0)
    points_spent = Column(Integer, nullable=False, default=0)
    transaction_type = Column(
        SqlEnum(LoyaltyTransactionType, name="loyalty_transaction_type", values_callable=enum_values),
        nullable=False,
        default=LoyaltyTransactionType.OPERATION,
    )
    status = Column(
        SqlEnum(LoyaltyTransactionStatus, name="loyalty_transaction_status", values_callable=enum_values),
        nullable=False,
        default=LoyaltyTransactionStatus.COMPLETED,
    )
    receipt_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
