"""Short-lived numeric codes binding an in-store customer to a merchant."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Index, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from loyalty_api.db.base import Base
from loyalty_api.models.merchant import enum_values


class SessionCodeStatus(str, Enum):
    """Stored lifecycle states. Lapsed codes stay ``active`` until read."""

    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class LoyaltySessionCode(Base):
    """Session code issued to a customer for a single POS checkout."""

    __tablename__ = "loyalty_session_codes"
    __table_args__ = (
        Index("ix_loyalty_session_codes_merchant_code_status", "merchant_id", "session_code", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False)
    customer_merchant_id = Column(
        UUID(as_uuid=True),
        ForeignKey("customer_merchants.id", ondelete="CASCADE"),
        nullable=False,
    )
    subject_identity = Column(String, nullable=True)
    session_code = Column(String(16), nullable=False)
    status = Column(
        SqlEnum(SessionCodeStatus, name="loyalty_session_code_status", values_callable=enum_values),
        nullable=False,
        default=SessionCodeStatus.ACTIVE,
        server_default=SessionCodeStatus.ACTIVE.value,
    )
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    customer_merchant = relationship("CustomerMerchant")
