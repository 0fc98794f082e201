"""Merchant identity, loyalty configuration and API credentials."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
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


def enum_values(enum_cls: type[Enum]) -> list[str]:
    """Persist enum values rather than member names."""

    return [member.value for member in enum_cls]


class MerchantStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Merchant(Base):
    """A merchant running a loyalty program.

    ``code`` and the API keys are fixed at registration; the loyalty rule columns
    are edited by the settings surface and read here on every ledger operation.
    ``max_points_per_day`` is stored for that surface but no ledger path enforces it.
    """

    __tablename__ = "merchants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    code = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    status = Column(
        SqlEnum(MerchantStatus, name="merchant_status", values_callable=enum_values),
        nullable=False,
        default=MerchantStatus.ACTIVE,
        server_default=MerchantStatus.ACTIVE.value,
    )
    timezone = Column(String, nullable=True)

    earn_rate_per_1000 = Column(Integer, nullable=True, default=1)
    redeem_max_percent = Column(Integer, nullable=True, default=100)
    min_receipt_amount_for_earn = Column(Numeric(14, 2), nullable=True, default=0)
    redeem_min_points = Column(Integer, nullable=True, default=0)
    redeem_step = Column(Integer, nullable=True, default=1)
    max_points_per_receipt = Column(Integer, nullable=True)
    max_points_per_day = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    api_keys = relationship("MerchantApiKey", back_populates="merchant", cascade="all, delete-orphan")
    enrollments = relationship("CustomerMerchant", back_populates="merchant")


class MerchantApiKey(Base):
    """Opaque credential a POS integration presents as ``X-API-Key``."""

    __tablename__ = "merchant_api_keys"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False)
    api_key = Column(String, nullable=False, unique=True, index=True)
    label = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="1")
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    merchant = relationship("Merchant", back_populates="api_keys")
