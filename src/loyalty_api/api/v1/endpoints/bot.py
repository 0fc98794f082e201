"""Customer channel (chat bot) endpoints."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.api.dependencies.security import require_bot_token
from loyalty_api.api.errors import ledger_http_error
from loyalty_api.db.session import get_session
from loyalty_api.models.merchant import Merchant, MerchantStatus
from loyalty_api.services.ledger import (
    BalanceStore,
    LedgerError,
    SessionCodeIssuer,
    TransactionHistory,
    serialize_transaction,
)
from loyalty_api.services.merchants import EnrollmentService, MerchantService


router = APIRouter(prefix="/bot", tags=["Bot"], dependencies=[Depends(require_bot_token)])


class JoinByMerchantCodeRequest(BaseModel):
    merchantCode: str = Field(..., min_length=1, description="Merchant code carried by the join link or QR code")
    externalCustomerId: str = Field(..., min_length=1, description="Customer identity in the channel")
    phone: Optional[str] = None


class SessionCodeRequest(BaseModel):
    merchantCode: str = Field(..., min_length=1)
    externalCustomerId: str = Field(..., min_length=1)
    subjectIdentity: Optional[str] = Field(
        None, description="Channel identity notified after checkout, for example a Telegram user id"
    )


async def _active_merchant(db: AsyncSession, merchant_code: str) -> Merchant:
    merchant = await MerchantService(db).get_by_code(merchant_code.strip())
    if merchant is None or MerchantStatus(merchant.status) is not MerchantStatus.ACTIVE:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"status": "ERROR", "message": "Merchant not found"},
        )
    return merchant


def _merchant_summary(merchant: Merchant) -> dict[str, Any]:
    return {"code": merchant.code, "name": merchant.name}


@router.post("/join-by-merchant-code", summary="Enroll a channel customer with a merchant")
async def join_by_merchant_code(
    payload: JoinByMerchantCodeRequest,
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """Idempotent: joining the same merchant twice returns the existing enrollment."""

    merchant = await _active_merchant(db, payload.merchantCode)
    try:
        enrollment = await EnrollmentService(db).ensure_customer_merchant(
            merchant.id, payload.externalCustomerId, payload.phone
        )
        balance = await BalanceStore(db).get(enrollment.customer_merchant_id)
        await db.commit()
    except LedgerError as exc:
        await db.rollback()
        raise ledger_http_error(exc) from exc

    return {
        "status": "OK",
        "merchant": _merchant_summary(merchant),
        "customer": enrollment.as_dict(),
        "balance": balance.as_dict(),
    }


@router.get("/balance", summary="Customer's own balance with a merchant")
async def bot_balance(
    merchantCode: str = Query(..., min_length=1),
    externalCustomerId: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    merchant = await _active_merchant(db, merchantCode)
    try:
        enrollment = await EnrollmentService(db).find(merchant.id, externalCustomerId)
        balance = await BalanceStore(db).get(enrollment.customer_merchant_id)
    except LedgerError as exc:
        await db.rollback()
        raise ledger_http_error(exc) from exc

    await db.commit()
    return {
        "status": "OK",
        "merchant": _merchant_summary(merchant),
        "customer": enrollment.as_dict(),
        "balance": balance.as_dict(),
    }


@router.get("/history", summary="Customer's most recent ledger entries with a merchant")
async def bot_history(
    merchantCode: str = Query(..., min_length=1),
    externalCustomerId: str = Query(..., min_length=1),
    limit: Optional[int] = Query(None, ge=1, description="Entries to return, capped by the server"),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    merchant = await _active_merchant(db, merchantCode)
    try:
        enrollment = await EnrollmentService(db).find(merchant.id, externalCustomerId)
        entries = await TransactionHistory(db).list_recent(enrollment.customer_merchant_id, limit=limit)
    except LedgerError as exc:
        await db.rollback()
        raise ledger_http_error(exc) from exc

    await db.commit()
    return {
        "status": "OK",
        "merchant": _merchant_summary(merchant),
        "customerMerchantId": str(enrollment.customer_merchant_id),
        "transactions": [serialize_transaction(entry) for entry in entries],
    }


@router.post("/session-code", status_code=status.HTTP_201_CREATED, summary="Issue a POS session code")
async def issue_session_code(
    payload: SessionCodeRequest,
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    merchant = await _active_merchant(db, payload.merchantCode)
    try:
        enrollment = await EnrollmentService(db).find(merchant.id, payload.externalCustomerId)
        issued = await SessionCodeIssuer(db).issue(
            merchant.id,
            enrollment.customer_merchant_id,
            payload.subjectIdentity,
        )
        await db.commit()
    except LedgerError as exc:
        await db.rollback()
        raise ledger_http_error(exc) from exc

    return {
        "status": "OK",
        "sessionCode": issued.code,
        "expiresAt": issued.expires_at.isoformat(),
        "expiresInSeconds": issued.expires_in_seconds,
        "merchant": _merchant_summary(merchant),
    }
