"""POS integration endpoints: earn, spend, session-code lookup and checkout."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.api.dependencies.notifications import get_checkout_notifier
from loyalty_api.api.dependencies.security import require_merchant
from loyalty_api.api.errors import ledger_http_error
from loyalty_api.db.session import get_session
from loyalty_api.models.customer import Customer
from loyalty_api.models.ledger import LoyaltyTransactionType
from loyalty_api.models.merchant import Merchant
from loyalty_api.services.ledger import (
    BalanceStore,
    CheckoutOrchestrator,
    LedgerApplier,
    LedgerError,
    SessionCodeIssuer,
    compute_points_earned,
    deliver_checkout_notification,
    evaluate_redeem_request,
    normalize_session_code,
    record_committed,
    serialize_transaction,
)
from loyalty_api.services.ledger.session_codes import ensure_aware
from loyalty_api.services.merchants import EnrollmentService, MerchantService, public_merchant
from loyalty_api.services.notifications import CheckoutNotifier


router = APIRouter(prefix="/integration", tags=["Integration"])


class IntegrationPurchaseRequest(BaseModel):
    externalCustomerId: str = Field(..., min_length=1, description="Customer identity in the merchant's system")
    phone: Optional[str] = Field(None, description="Phone number stored on first enrollment")
    amount: Decimal = Field(..., gt=0, description="Receipt amount")
    receiptId: Optional[str] = Field(None, max_length=128)


class IntegrationRedeemRequest(BaseModel):
    externalCustomerId: str = Field(..., min_length=1)
    phone: Optional[str] = None
    points: int = Field(..., gt=0, description="Points to spend")
    amount: Decimal = Field(Decimal("0"), ge=0, description="Receipt amount the points are spent against")
    receiptId: Optional[str] = Field(None, max_length=128)


class SessionCodeLookupRequest(BaseModel):
    sessionCode: str = Field(..., description="Code shown by the customer, 1-6 digits")


class IntegrationCheckoutRequest(BaseModel):
    sessionCode: str
    amount: Decimal = Field(..., gt=0)
    redeemPoints: int = Field(0, ge=0)
    receiptId: Optional[str] = Field(None, max_length=128)


@router.post("/purchase", summary="Earn points for a receipt")
async def integration_purchase(
    payload: IntegrationPurchaseRequest,
    merchant: Merchant = Depends(require_merchant),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    config = MerchantService.loyalty_settings(merchant)
    try:
        enrollment = await EnrollmentService(db).ensure_customer_merchant(
            merchant.id, payload.externalCustomerId, payload.phone
        )
        points = compute_points_earned(config, payload.amount)
        result = await LedgerApplier(db).apply(
            enrollment.customer_merchant_id,
            amount=payload.amount,
            points_earned=points,
            transaction_type=LoyaltyTransactionType.PURCHASE,
            receipt_id=payload.receiptId,
        )
        await db.commit()
    except LedgerError as exc:
        await db.rollback()
        raise ledger_http_error(exc) from exc

    record_committed([result])
    return {
        "status": "OK",
        "customer": enrollment.as_dict(),
        "transaction": serialize_transaction(result.transaction),
        "balance": result.balance.as_dict(),
    }


@router.post("/redeem", summary="Spend points against a receipt")
async def integration_redeem(
    payload: IntegrationRedeemRequest,
    merchant: Merchant = Depends(require_merchant),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    config = MerchantService.loyalty_settings(merchant)
    try:
        if payload.amount > 0:
            evaluate_redeem_request(config, payload.points, payload.amount)
        enrollment = await EnrollmentService(db).ensure_customer_merchant(
            merchant.id, payload.externalCustomerId, payload.phone
        )
        result = await LedgerApplier(db).apply(
            enrollment.customer_merchant_id,
            amount=payload.amount,
            points_spent=payload.points,
            transaction_type=LoyaltyTransactionType.POINTS_REDEMPTION,
            receipt_id=payload.receiptId,
        )
        await db.commit()
    except LedgerError as exc:
        await db.rollback()
        raise ledger_http_error(exc) from exc

    record_committed([result])
    return {
        "status": "OK",
        "customer": enrollment.as_dict(),
        "transaction": serialize_transaction(result.transaction),
        "balance": result.balance.as_dict(),
    }


@router.post("/lookup", summary="Resolve a session code to a customer")
async def integration_lookup(
    payload: SessionCodeLookupRequest,
    merchant: Merchant = Depends(require_merchant),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    try:
        code = normalize_session_code(payload.sessionCode)
        session_code = await SessionCodeIssuer(db).find_active(merchant.id, code)
        enrollment = await EnrollmentService(db).get_owned(merchant.id, session_code.customer_merchant_id)
        balance = await BalanceStore(db).get(enrollment.id)
    except LedgerError as exc:
        await db.rollback()
        raise ledger_http_error(exc) from exc

    customer = await db.get(Customer, enrollment.customer_id)
    # Committing releases the write transaction opened for the key stamp.
    await db.commit()
    return {
        "status": "OK",
        "merchant": public_merchant(merchant, include_rules=True),
        "customer": {
            "id": str(customer.id),
            "customerMerchantId": str(enrollment.id),
            "externalId": customer.external_id,
            "phone": customer.phone,
        },
        "balance": {**balance.as_dict(), "maxRedeemByBalance": balance.points},
        "expiresAt": ensure_aware(session_code.expires_at).isoformat(),
    }


@router.post("/checkout", summary="Close a receipt against a session code")
async def integration_checkout(
    payload: IntegrationCheckoutRequest,
    background: BackgroundTasks,
    merchant: Merchant = Depends(require_merchant),
    db: AsyncSession = Depends(get_session),
    notifier: CheckoutNotifier = Depends(get_checkout_notifier),
) -> dict[str, Any]:
    config = MerchantService.loyalty_settings(merchant)
    orchestrator = CheckoutOrchestrator(db)
    try:
        code = normalize_session_code(payload.sessionCode)
        result = await orchestrator.checkout(
            config,
            code,
            payload.amount,
            payload.redeemPoints,
            payload.receiptId,
        )
    except LedgerError as exc:
        await db.rollback()
        raise ledger_http_error(exc) from exc

    # Runs after the response is sent.
    background.add_task(deliver_checkout_notification, notifier, result)
    return {"status": "OK", **result.as_dict()}
