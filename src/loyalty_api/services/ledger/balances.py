"""Balance store: keyed access to the per-enrollment points row."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.core.settings import settings
from loyalty_api.models.ledger import LoyaltyBalance


@dataclass(frozen=True)
class BalanceSnapshot:
    """Point-in-time copy of a balance row, safe to hand across the session boundary."""

    customer_merchant_id: UUID
    points: int
    total_earned: int
    total_spent: int
    level: str
    last_activity: datetime | None

    @classmethod
    def empty(cls, customer_merchant_id: UUID) -> "BalanceSnapshot":
        return cls(
            customer_merchant_id=customer_merchant_id,
            points=0,
            total_earned=0,
            total_spent=0,
            level=settings.default_level,
            last_activity=None,
        )

    @classmethod
    def from_row(cls, row: LoyaltyBalance) -> "BalanceSnapshot":
        return cls(
            customer_merchant_id=row.customer_merchant_id,
            points=int(row.points or 0),
            total_earned=int(row.total_earned or 0),
            total_spent=int(row.total_spent or 0),
            level=row.level or settings.default_level,
            last_activity=row.last_activity,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "points": self.points,
            "totalEarned": self.total_earned,
            "totalSpent": self.total_spent,
            "level": self.level,
            "lastActivity": self.last_activity.isoformat() if self.last_activity else None,
        }


class BalanceStore:
    """Reads and locks balance rows inside the caller's unit of work."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get(self, customer_merchant_id: UUID) -> BalanceSnapshot:
        """Unlocked read; a missing row reads as an empty balance."""

        stmt = select(LoyaltyBalance).where(LoyaltyBalance.customer_merchant_id == customer_merchant_id)
        result = await self._db.execute(stmt.execution_options(populate_existing=True))
        row = result.scalar_one_or_none()
        if row is None:
            return BalanceSnapshot.empty(customer_merchant_id)
        return BalanceSnapshot.from_row(row)

    async def lock(self, customer_merchant_id: UUID) -> LoyaltyBalance:
        """Return the balance row holding an exclusive lock until the unit of work ends.

        A missing row is materialised with a zero balance first, in the same
        transaction, so the lock always targets a real row and concurrent first
        writers converge on it instead of racing separate inserts.
        """

        row = await self._select_for_update(customer_merchant_id)
        if row is not None:
            return row

        await self._insert_if_absent(customer_merchant_id)
        row = await self._select_for_update(customer_merchant_id)
        if row is None:  # pragma: no cover - insert-if-absent guarantees a row
            raise RuntimeError("Balance row vanished after insert")
        return row

    async def _select_for_update(self, customer_merchant_id: UUID) -> LoyaltyBalance | None:
        stmt = (
            select(LoyaltyBalance)
            .where(LoyaltyBalance.customer_merchant_id == customer_merchant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _insert_if_absent(self, customer_merchant_id: UUID) -> None:
        values = {
            "customer_merchant_id": customer_merchant_id,
            "points": 0,
            "total_earned": 0,
            "total_spent": 0,
            "level": settings.default_level,
        }
        dialect = self._db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(LoyaltyBalance).values(**values).on_conflict_do_nothing(
                index_elements=[LoyaltyBalance.customer_merchant_id]
            )
            await self._db.execute(stmt)
            return
        if dialect == "sqlite":
            stmt = sqlite.insert(LoyaltyBalance).values(**values).on_conflict_do_nothing(
                index_elements=[LoyaltyBalance.customer_merchant_id]
            )
            await self._db.execute(stmt)
            return

        try:
            async with self._db.begin_nested():
                self._db.add(LoyaltyBalance(**values))
        except IntegrityError:
            logger.debug(
                "Balance row created by a concurrent writer",
                customer_merchant_id=str(customer_merchant_id),
            )


__all__ = ["BalanceSnapshot", "BalanceStore"]
