"""Read side of the ledger: recent entries for one enrollment."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.core.settings import settings
from loyalty_api.models.ledger import LoyaltyTransaction


class TransactionHistory:
    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def list_recent(self, customer_merchant_id: UUID, *, limit: int | None = None) -> list[LoyaltyTransaction]:
        """Newest first, bounded by ``history_max_limit``."""

        requested = limit if limit is not None else settings.history_default_limit
        bounded = max(1, min(requested, settings.history_max_limit))
        stmt = (
            select(LoyaltyTransaction)
            .where(LoyaltyTransaction.customer_merchant_id == customer_merchant_id)
            .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
            .limit(bounded)
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())
