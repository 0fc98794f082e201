"""Customer identities and their merchant enrollments."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from loyalty_api.db.base import Base


class Customer(Base):
    """External customer identity, independent of any merchant."""

    __tablename__ = "customers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    external_id = Column(String, nullable=False, unique=True, index=True)
    phone = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    enrollments = relationship("CustomerMerchant", back_populates="customer")


class CustomerMerchant(Base):
    """Enrollment of one customer in one merchant's program; owns the balance."""

    __tablename__ = "customer_merchants"
    __table_args__ = (
        UniqueConstraint("customer_id", "merchant_id", name="uq_customer_merchants_customer_merchant"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    customer = relationship("Customer", back_populates="enrollments")
    merchant = relationship("Merchant", back_populates="enrollments")
    balance = relationship("LoyaltyBalance", back_populates="customer_merchant", uselist=False)
