"""Ledger endpoints addressed by customer-merchant enrollment id."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.api.dependencies.security import require_merchant
from loyalty_api.api.errors import ledger_http_error
from loyalty_api.db.session import get_session
from loyalty_api.models.ledger import LoyaltyTransactionStatus, LoyaltyTransactionType
from loyalty_api.models.merchant import Merchant
from loyalty_api.services.ledger import (
    BalanceStore,
    LedgerApplier,
    LedgerApplyResult,
    LedgerError,
    TransactionHistory,
    compute_points_earned,
    evaluate_redeem_request,
    record_committed,
    serialize_transaction,
)
from loyalty_api.services.merchants import EnrollmentService, MerchantService


router = APIRouter(prefix="/loyalty", tags=["Loyalty"])


class LedgerTransactionRequest(BaseModel):
    customerMerchantId: UUID
    amount: Decimal = Field(Decimal("0"), ge=0)
    pointsEarned: int = Field(0, ge=0)
    pointsSpent: int = Field(0, ge=0)
    transactionType: LoyaltyTransactionType = LoyaltyTransactionType.OPERATION
    status: LoyaltyTransactionStatus = LoyaltyTransactionStatus.COMPLETED
    receiptId: Optional[str] = Field(None, max_length=128)


class LoyaltyPurchaseRequest(BaseModel):
    customerMerchantId: UUID
    amount: Decimal = Field(..., gt=0)
    receiptId: Optional[str] = Field(None, max_length=128)


class LoyaltyRedeemRequest(BaseModel):
    customerMerchantId: UUID
    points: int = Field(..., gt=0)
    amount: Decimal = Field(Decimal("0"), ge=0)
    receiptId: Optional[str] = Field(None, max_length=128)


def _applied(result: LedgerApplyResult) -> dict[str, Any]:
    return {
        "status": "OK",
        "transaction": serialize_transaction(result.transaction),
        "balance": result.balance.as_dict(),
    }


@router.post("/transactions", summary="Apply a raw ledger entry")
async def apply_transaction(
    payload: LedgerTransactionRequest,
    merchant: Merchant = Depends(require_merchant),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    try:
        await EnrollmentService(db).get_owned(merchant.id, payload.customerMerchantId)
        result = await LedgerApplier(db).apply(
            payload.customerMerchantId,
            amount=payload.amount,
            points_earned=payload.pointsEarned,
            points_spent=payload.pointsSpent,
            transaction_type=payload.transactionType,
            status=payload.status,
            receipt_id=payload.receiptId,
        )
        await db.commit()
    except LedgerError as exc:
        await db.rollback()
        raise ledger_http_error(exc) from exc

    record_committed([result])
    return _applied(result)


@router.post("/purchase", summary="Earn points for an enrolled customer")
async def loyalty_purchase(
    payload: LoyaltyPurchaseRequest,
    merchant: Merchant = Depends(require_merchant),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    config = MerchantService.loyalty_settings(merchant)
    try:
        await EnrollmentService(db).get_owned(merchant.id, payload.customerMerchantId)
        result = await LedgerApplier(db).apply(
            payload.customerMerchantId,
            amount=payload.amount,
            points_earned=compute_points_earned(config, payload.amount),
            transaction_type=LoyaltyTransactionType.PURCHASE,
            receipt_id=payload.receiptId,
        )
        await db.commit()
    except LedgerError as exc:
        await db.rollback()
        raise ledger_http_error(exc) from exc

    record_committed([result])
    return _applied(result)


@router.post("/redeem", summary="Spend points for an enrolled customer")
async def loyalty_redeem(
    payload: LoyaltyRedeemRequest,
    merchant: Merchant = Depends(require_merchant),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    config = MerchantService.loyalty_settings(merchant)
    try:
        if payload.amount > 0:
            evaluate_redeem_request(config, payload.points, payload.amount)
        await EnrollmentService(db).get_owned(merchant.id, payload.customerMerchantId)
        result = await LedgerApplier(db).apply(
            payload.customerMerchantId,
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
    return _applied(result)


@router.get("/balance/{customer_merchant_id}", summary="Balance snapshot")
async def get_balance(
    customer_merchant_id: UUID,
    merchant: Merchant = Depends(require_merchant),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    try:
        await EnrollmentService(db).get_owned(merchant.id, customer_merchant_id)
        balance = await BalanceStore(db).get(customer_merchant_id)
    except LedgerError as exc:
        await db.rollback()
        raise ledger_http_error(exc) from exc

    await db.commit()
    return {"customerMerchantId": str(customer_merchant_id), **balance.as_dict()}


@router.get("/history/{customer_merchant_id}", summary="Most recent ledger entries")
async def get_history(
    customer_merchant_id: UUID,
    limit: Optional[int] = Query(None, ge=1, description="Entries to return, capped by the server"),
    merchant: Merchant = Depends(require_merchant),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    try:
        await EnrollmentService(db).get_owned(merchant.id, customer_merchant_id)
        entries = await TransactionHistory(db).list_recent(customer_merchant_id, limit=limit)
    except LedgerError as exc:
        await db.rollback()
        raise ledger_http_error(exc) from exc

    await db.commit()
    return {
        "customerMerchantId": str(customer_merchant_id),
        "transactions": [serialize_transaction(entry) for entry in entries],
    }
