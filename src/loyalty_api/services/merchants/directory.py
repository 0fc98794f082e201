"""Merchant lookup by API credential."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from loyalty_api.models.merchant import Merchant, MerchantApiKey, MerchantStatus
from loyalty_api.services.ledger.rules import MerchantLoyaltySettings


class MerchantAuthenticationError(Exception):
    """Raised when a request carries no usable merchant credential."""

    def __init__(self, message: str, *, missing: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.missing = missing


class MerchantService:
    """Resolves merchants and their loyalty rules for the ledger engine."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_by_api_key(self, api_key: str | None, *, now: datetime | None = None) -> Merchant:
        """Return the merchant owning an active key and stamp the key's last use.

        The stamp is written in the caller's transaction and commits with it.
        """

        if not api_key:
            raise MerchantAuthenticationError("API key required", missing=True)

        stmt = (
            select(MerchantApiKey)
            .options(selectinload(MerchantApiKey.merchant))
            .where(MerchantApiKey.api_key == api_key, MerchantApiKey.is_active.is_(True))
        )
        result = await self._db.execute(stmt)
        key = result.scalar_one_or_none()
        if key is None or key.merchant is None:
            logger.warning("Rejected unknown merchant API key")
            raise MerchantAuthenticationError("Invalid API key")

        merchant = key.merchant
        if MerchantStatus(merchant.status) is not MerchantStatus.ACTIVE:
            logger.warning("Rejected API key for inactive merchant", merchant_id=str(merchant.id))
            raise MerchantAuthenticationError("Merchant is not active")

        key.last_used_at = now or datetime.now(timezone.utc)
        await self._db.flush()
        return merchant

    async def get_by_code(self, code: str) -> Merchant | None:
        stmt = select(Merchant).where(Merchant.code == code)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, merchant_id: UUID) -> Merchant | None:
        return await self._db.get(Merchant, merchant_id)

    @staticmethod
    def loyalty_settings(merchant: Merchant) -> MerchantLoyaltySettings:
        return MerchantLoyaltySettings.from_merchant(merchant)


def public_merchant(merchant: Merchant, *, include_rules: bool = False) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": str(merchant.id),
        "code": merchant.code,
        "name": merchant.name,
    }
    if include_rules:
        payload["status"] = MerchantStatus(merchant.status).value
        payload["timezone"] = merchant.timezone
        payload.update(MerchantLoyaltySettings.from_merchant(merchant).as_public_dict())
    return payload


__all__ = ["MerchantAuthenticationError", "MerchantService", "public_merchant"]
