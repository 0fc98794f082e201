"""Session-code checkout: redemption and earn committed as one unit."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from loyalty_api.models.customer import CustomerMerchant
from loyalty_api.models.ledger import LoyaltyTransactionType
from loyalty_api.observability.ledger import get_ledger_store
from loyalty_api.services.ledger.applier import (
    LedgerApplier,
    LedgerApplyResult,
    record_committed,
    serialize_transaction,
)
from loyalty_api.services.ledger.balances import BalanceSnapshot
from loyalty_api.services.ledger.errors import (
    LedgerError,
    LedgerValidationError,
    RuleViolationError,
    StorageFailureError,
)
from loyalty_api.services.ledger.rules import (
    MerchantLoyaltySettings,
    check_redeem_request,
    compute_points_earned,
)
from loyalty_api.services.ledger.session_codes import SessionCodeIssuer
from loyalty_api.services.notifications import CheckoutNotifier


@dataclass(frozen=True)
class CheckoutSummary:
    amount: Decimal
    points_earned: int
    points_spent: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "amount": float(self.amount),
            "pointsEarned": self.points_earned,
            "pointsSpent": self.points_spent,
        }


@dataclass(frozen=True)
class CheckoutResult:
    """Committed checkout: entries in application order plus the final balance."""

    merchant_id: UUID
    customer_merchant_id: UUID
    subject_identity: str | None
    receipt_id: str | None
    results: list[LedgerApplyResult]
    balance: BalanceSnapshot
    summary: CheckoutSummary
    customer: dict[str, Any] = field(default_factory=dict)

    @property
    def transactions(self) -> list[Any]:
        return [result.transaction for result in self.results]

    def notification_payload(self) -> dict[str, Any]:
        return {
            "merchantId": str(self.merchant_id),
            "customerMerchantId": str(self.customer_merchant_id),
            "receiptId": self.receipt_id,
            **self.summary.as_dict(),
            "balance": self.balance.as_dict(),
        }

    def as_dict(self) -> dict[str, Any]:
        return {
            "customer": {"customerMerchantId": str(self.customer_merchant_id), **self.customer},
            "transactions": [serialize_transaction(entry) for entry in self.transactions],
            "balance": self.balance.as_dict(),
            "receiptId": self.receipt_id,
            "summary": self.summary.as_dict(),
        }


class CheckoutOrchestrator:
    """Closes a POS receipt against a session code.

    Order inside the unit of work: lock the code, validate the redemption,
    apply the redemption, compute and apply the earn as a separate entry, mark
    the code used, commit. Notifying the customer channel is left to the caller
    through :func:`deliver_checkout_notification`.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        applier: LedgerApplier | None = None,
        issuer: SessionCodeIssuer | None = None,
    ) -> None:
        self._db = db_session
        self._applier = applier or LedgerApplier(db_session)
        self._issuer = issuer or SessionCodeIssuer(db_session)

    async def checkout(
        self,
        merchant: MerchantLoyaltySettings,
        code: str,
        receipt_amount: Decimal | int | float,
        redeem_points: int = 0,
        receipt_id: str | None = None,
        *,
        now: datetime | None = None,
    ) -> CheckoutResult:
        try:
            amount = Decimal(str(receipt_amount))
        except (ArithmeticError, ValueError) as exc:
            raise LedgerValidationError("amount must be a positive number") from exc
        if not amount.is_finite() or amount <= 0:
            raise LedgerValidationError("amount must be a positive number")
        if redeem_points < 0:
            raise LedgerValidationError("redeemPoints must be non-negative")
        if merchant.merchant_id is None:
            raise LedgerValidationError("merchant is required")

        timestamp = now or datetime.now(timezone.utc)
        store = get_ledger_store()
        results: list[LedgerApplyResult] = []

        try:
            session_code = await self._issuer.lock_for_checkout(merchant.merchant_id, code, now=timestamp)
            customer_merchant_id = session_code.customer_merchant_id

            if redeem_points > 0:
                violation = check_redeem_request(merchant, redeem_points, amount)
                if violation is not None:
                    store.record_rejection(violation.kind.value)
                    raise RuleViolationError(violation)

                results.append(
                    await self._applier.apply(
                        customer_merchant_id,
                        amount=amount,
                        points_spent=redeem_points,
                        transaction_type=LoyaltyTransactionType.POINTS_REDEMPTION,
                        receipt_id=receipt_id,
                        now=timestamp,
                    )
                )

            points_earned = compute_points_earned(merchant, amount)
            results.append(
                await self._applier.apply(
                    customer_merchant_id,
                    amount=amount,
                    points_earned=points_earned,
                    transaction_type=LoyaltyTransactionType.PURCHASE,
                    receipt_id=receipt_id,
                    now=timestamp,
                )
            )

            await self._issuer.mark_used(session_code, now=timestamp)
            customer = await self._describe_customer(customer_merchant_id)
            subject_identity = session_code.subject_identity
            await self._db.commit()
        except LedgerError as exc:
            await self._db.rollback()
            store.record_checkout("rejected")
            logger.info(
                "Checkout rejected",
                merchant_id=str(merchant.merchant_id),
                kind=exc.kind.value,
                receipt_id=receipt_id,
            )
            raise
        except SQLAlchemyError as exc:
            await self._db.rollback()
            store.record_checkout("failed")
            logger.exception("Checkout storage failure", merchant_id=str(merchant.merchant_id), error=str(exc))
            raise StorageFailureError("checkout") from exc

        record_committed(results)
        store.record_checkout("completed")

        result = CheckoutResult(
            merchant_id=merchant.merchant_id,
            customer_merchant_id=customer_merchant_id,
            subject_identity=subject_identity,
            receipt_id=receipt_id,
            results=results,
            balance=results[-1].balance,
            summary=CheckoutSummary(
                amount=amount,
                points_earned=points_earned,
                points_spent=redeem_points,
            ),
            customer=customer,
        )
        logger.info(
            "Checkout committed",
            merchant_id=str(merchant.merchant_id),
            customer_merchant_id=str(customer_merchant_id),
            receipt_id=receipt_id,
            points_earned=points_earned,
            points_spent=redeem_points,
            balance=result.balance.points,
        )
        return result

    async def _describe_customer(self, customer_merchant_id: UUID) -> dict[str, Any]:
        stmt = (
            select(CustomerMerchant)
            .options(selectinload(CustomerMerchant.customer))
            .where(CustomerMerchant.id == customer_merchant_id)
        )
        enrollment = (await self._db.execute(stmt)).scalar_one_or_none()
        if enrollment is None or enrollment.customer is None:
            return {}
        return {
            "id": str(enrollment.customer.id),
            "externalId": enrollment.customer.external_id,
            "phone": enrollment.customer.phone,
        }


async def deliver_checkout_notification(notifier: CheckoutNotifier, result: CheckoutResult) -> None:
    """Send a committed checkout to the customer channel. Failures are logged and counted only."""

    if not result.subject_identity:
        return
    store = get_ledger_store()
    try:
        await notifier.notify(result.subject_identity, result.notification_payload())
    except Exception as exc:  # noqa: BLE001
        store.record_notification("failed")
        logger.exception(
            "Checkout notification failed",
            customer_merchant_id=str(result.customer_merchant_id),
            receipt_id=result.receipt_id,
            error=str(exc),
        )
        return
    store.record_notification("sent")


__all__ = ["CheckoutOrchestrator", "CheckoutResult", "CheckoutSummary", "deliver_checkout_notification"]
