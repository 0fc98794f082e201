"""Atomic read-validate-write-record primitive for loyalty balances."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.models.ledger import (
    LoyaltyTransaction,
    LoyaltyTransactionStatus,
    LoyaltyTransactionType,
)
from loyalty_api.observability.ledger import get_ledger_store
from loyalty_api.services.ledger.balances import BalanceSnapshot, BalanceStore
from loyalty_api.services.ledger.errors import (
    InsufficientPointsError,
    LedgerValidationError,
    StorageFailureError,
)


@dataclass(frozen=True)
class LedgerApplyResult:
    """Ledger entry written by :meth:`LedgerApplier.apply` and the balance after it."""

    transaction: LoyaltyTransaction
    balance: BalanceSnapshot


def serialize_transaction(transaction: LoyaltyTransaction) -> dict[str, Any]:
    created_at = transaction.created_at
    return {
        "id": str(transaction.id),
        "customerMerchantId": str(transaction.customer_merchant_id),
        "amount": float(transaction.amount or 0),
        "pointsEarned": int(transaction.points_earned or 0),
        "pointsSpent": int(transaction.points_spent or 0),
        "transactionType": LoyaltyTransactionType(transaction.transaction_type).value,
        "status": LoyaltyTransactionStatus(transaction.status).value,
        "receiptId": transaction.receipt_id,
        "createdAt": created_at.isoformat() if created_at else None,
    }


def record_committed(results: Iterable[LedgerApplyResult]) -> None:
    """Count ledger entries once the enclosing unit of work has committed."""

    store = get_ledger_store()
    for result in results:
        entry = result.transaction
        store.record_transaction(
            LoyaltyTransactionType(entry.transaction_type).value,
            points_earned=int(entry.points_earned or 0),
            points_spent=int(entry.points_spent or 0),
        )


def _coerce_points(value: Any, *, field: str) -> int:
    if isinstance(value, bool):
        raise LedgerValidationError(f"{field} must be an integer")
    try:
        decimal_value = Decimal(str(value if value is not None else 0))
    except (ArithmeticError, ValueError) as exc:
        raise LedgerValidationError(f"{field} must be an integer") from exc
    if not decimal_value.is_finite() or decimal_value != decimal_value.to_integral_value():
        raise LedgerValidationError(f"{field} must be an integer")
    points = int(decimal_value)
    if points < 0:
        raise LedgerValidationError(f"{field} must be >= 0")
    return points


def _coerce_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value if value is not None else 0))
    except (ArithmeticError, ValueError) as exc:
        raise LedgerValidationError("amount must be a number") from exc
    if not amount.is_finite() or amount < 0:
        raise LedgerValidationError("amount must be a non-negative number")
    return amount


class LedgerApplier:
    """Applies one earn/spend entry against a locked balance row.

    The applier never commits. It runs inside the caller's unit of work so that
    several entries (a checkout's redemption and earn) commit or roll back
    together; the balance row lock is held until that unit ends.
    """

    def __init__(self, db_session: AsyncSession, *, balances: BalanceStore | None = None) -> None:
        self._db = db_session
        self._balances = balances or BalanceStore(db_session)

    async def apply(
        self,
        customer_merchant_id: UUID,
        *,
        amount: Decimal | int | float | None = 0,
        points_earned: int = 0,
        points_spent: int = 0,
        transaction_type: LoyaltyTransactionType | str = LoyaltyTransactionType.OPERATION,
        status: LoyaltyTransactionStatus | str = LoyaltyTransactionStatus.COMPLETED,
        receipt_id: str | None = None,
        now: datetime | None = None,
    ) -> LedgerApplyResult:
        earned = _coerce_points(points_earned, field="pointsEarned")
        spent = _coerce_points(points_spent, field="pointsSpent")
        receipt_amount = _coerce_amount(amount)
        try:
            entry_type = LoyaltyTransactionType(transaction_type)
            entry_status = LoyaltyTransactionStatus(status)
        except ValueError as exc:
            raise LedgerValidationError(str(exc)) from exc

        timestamp = now or datetime.now(timezone.utc)

        try:
            row = await self._balances.lock(customer_merchant_id)

            current_points = int(row.points or 0)
            new_points = current_points + earned - spent
            if new_points < 0:
                get_ledger_store().record_rejection("insufficient_points")
                logger.info(
                    "Rejected ledger debit",
                    customer_merchant_id=str(customer_merchant_id),
                    current_points=current_points,
                    requested_spend=spent,
                )
                raise InsufficientPointsError(current_points=current_points, requested_spend=spent)

            entry = LoyaltyTransaction(
                customer_merchant_id=customer_merchant_id,
                amount=receipt_amount,
                points_earned=earned,
                points_spent=spent,
                transaction_type=entry_type,
                status=entry_status,
                receipt_id=receipt_id,
                created_at=timestamp,
            )
            self._db.add(entry)

            row.points = new_points
            row.total_earned = int(row.total_earned or 0) + earned
            row.total_spent = int(row.total_spent or 0) + spent
            row.last_activity = timestamp
            await self._db.flush()
        except SQLAlchemyError as exc:
            logger.exception(
                "Ledger storage failure",
                customer_merchant_id=str(customer_merchant_id),
                error=str(exc),
            )
            raise StorageFailureError("ledger apply") from exc

        logger.info(
            "Applied ledger transaction",
            customer_merchant_id=str(customer_merchant_id),
            transaction_id=str(entry.id),
            transaction_type=entry_type.value,
            points_earned=earned,
            points_spent=spent,
            balance=new_points,
        )
        return LedgerApplyResult(transaction=entry, balance=BalanceSnapshot.from_row(row))


__all__ = ["LedgerApplier", "LedgerApplyResult", "record_committed", "serialize_transaction"]
