"""Issue and resolve the short numeric codes customers show at the till."""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from random import Random
from typing import Iterator
from uuid import UUID

from loguru import logger
from sqlalchemy import Select, and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_api.core.settings import settings
from loyalty_api.models.merchant import Merchant
from loyalty_api.models.session_code import LoyaltySessionCode, SessionCodeStatus
from loyalty_api.observability.ledger import get_ledger_store
from loyalty_api.services.ledger.errors import (
    CodeGenerationExhaustedError,
    LedgerValidationError,
    SessionCodeNotFoundError,
    SessionCodeUnavailableError,
    StorageFailureError,
)


def ensure_aware(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored here is UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def candidate_codes(attempts: int, *, length: int = 6, rng: Random | None = None) -> Iterator[str]:
    """Yield at most ``attempts`` uniformly random zero-padded decimal codes."""

    source = rng or secrets.SystemRandom()
    upper = 10**length
    for _ in range(max(attempts, 0)):
        yield f"{source.randrange(upper):0{length}d}"


def normalize_session_code(raw: object, *, length: int | None = None) -> str:
    """Accept 1..length digits (surrounding whitespace ignored) and zero-pad them."""

    width = length or settings.session_code_length
    text = str(raw).strip() if raw is not None else ""
    if not re.fullmatch(rf"\d{{1,{width}}}", text):
        raise LedgerValidationError(f"sessionCode must contain 1 to {width} digits")
    return text.zfill(width)


def is_redeemable(code: LoyaltySessionCode, now: datetime) -> bool:
    status = SessionCodeStatus(code.status)
    return status is SessionCodeStatus.ACTIVE and ensure_aware(now) < ensure_aware(code.expires_at)


def merchant_issue_lock(merchant_id: UUID) -> Select:
    """Row lock on the merchant; code allocation for one merchant runs one at a time."""

    return select(Merchant.id).where(Merchant.id == merchant_id).with_for_update()


@dataclass(frozen=True)
class IssuedSessionCode:
    id: UUID
    merchant_id: UUID
    customer_merchant_id: UUID
    subject_identity: str | None
    code: str
    expires_at: datetime
    expires_in_seconds: int


class SessionCodeIssuer:
    """Allocates session codes unique per merchant among live codes."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ttl: timedelta | None = None,
        max_attempts: int | None = None,
        code_length: int | None = None,
        rng: Random | None = None,
    ) -> None:
        self._db = db_session
        self._ttl = ttl or timedelta(seconds=settings.session_code_ttl_seconds)
        self._max_attempts = max_attempts if max_attempts is not None else settings.session_code_max_attempts
        self._code_length = code_length or settings.session_code_length
        self._rng = rng

    async def issue(
        self,
        merchant_id: UUID,
        customer_merchant_id: UUID,
        subject_identity: str | None,
        *,
        now: datetime | None = None,
    ) -> IssuedSessionCode:
        """Persist a new active code. The caller commits."""

        issued_at = now or datetime.now(timezone.utc)
        try:
            await self._db.execute(merchant_issue_lock(merchant_id))
            for candidate in candidate_codes(self._max_attempts, length=self._code_length, rng=self._rng):
                if await self._is_live(merchant_id, candidate, issued_at):
                    logger.debug("Session code collision", merchant_id=str(merchant_id))
                    continue
                record = LoyaltySessionCode(
                    merchant_id=merchant_id,
                    customer_merchant_id=customer_merchant_id,
                    subject_identity=subject_identity,
                    session_code=candidate,
                    status=SessionCodeStatus.ACTIVE,
                    expires_at=issued_at + self._ttl,
                    created_at=issued_at,
                )
                self._db.add(record)
                await self._db.flush()
                break
            else:
                get_ledger_store().record_session_code("exhausted")
                logger.warning(
                    "Session code space exhausted",
                    merchant_id=str(merchant_id),
                    attempts=self._max_attempts,
                )
                raise CodeGenerationExhaustedError(self._max_attempts)
        except SQLAlchemyError as exc:
            logger.exception("Session code storage failure", merchant_id=str(merchant_id), error=str(exc))
            raise StorageFailureError("session code issue") from exc

        get_ledger_store().record_session_code("issued")
        logger.info(
            "Issued session code",
            merchant_id=str(merchant_id),
            customer_merchant_id=str(customer_merchant_id),
            session_code_id=str(record.id),
        )
        return IssuedSessionCode(
            id=record.id,
            merchant_id=merchant_id,
            customer_merchant_id=customer_merchant_id,
            subject_identity=subject_identity,
            code=candidate,
            expires_at=record.expires_at,
            expires_in_seconds=int(self._ttl.total_seconds()),
        )

    async def find_active(self, merchant_id: UUID, code: str, *, now: datetime | None = None) -> LoyaltySessionCode:
        """Unlocked lookup of a live code (the POS "who is this" step)."""

        reference = now or datetime.now(timezone.utc)
        stmt = (
            select(LoyaltySessionCode)
            .where(
                and_(
                    LoyaltySessionCode.merchant_id == merchant_id,
                    LoyaltySessionCode.session_code == code,
                    LoyaltySessionCode.status == SessionCodeStatus.ACTIVE,
                    LoyaltySessionCode.expires_at > reference,
                )
            )
            .order_by(LoyaltySessionCode.created_at.desc())
            .limit(1)
        )
        result = await self._db.execute(stmt)
        record = result.scalar_one_or_none()
        if record is None:
            raise SessionCodeNotFoundError()
        return record

    async def lock_for_checkout(
        self,
        merchant_id: UUID,
        code: str,
        *,
        now: datetime | None = None,
    ) -> LoyaltySessionCode:
        """Lock every row carrying this value for the merchant and return the live one.

        Older used or lapsed rows may share the value; they are locked too so a
        concurrent checkout on the same value serialises behind this one.
        """

        reference = now or datetime.now(timezone.utc)
        stmt = (
            select(LoyaltySessionCode)
            .where(
                LoyaltySessionCode.merchant_id == merchant_id,
                LoyaltySessionCode.session_code == code,
            )
            .order_by(LoyaltySessionCode.created_at.desc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        records = list(result.scalars().all())
        if not records:
            raise SessionCodeNotFoundError()

        for record in records:
            if is_redeemable(record, reference):
                return record
        raise SessionCodeUnavailableError()

    async def mark_used(self, record: LoyaltySessionCode, *, now: datetime | None = None) -> None:
        record.status = SessionCodeStatus.USED
        record.used_at = now or datetime.now(timezone.utc)
        await self._db.flush()

    async def _is_live(self, merchant_id: UUID, code: str, now: datetime) -> bool:
        stmt = select(LoyaltySessionCode.id).where(
            LoyaltySessionCode.merchant_id == merchant_id,
            LoyaltySessionCode.session_code == code,
            LoyaltySessionCode.status == SessionCodeStatus.ACTIVE,
            LoyaltySessionCode.expires_at > now,
        )
        result = await self._db.execute(stmt.limit(1))
        return result.first() is not None


__all__ = [
    "IssuedSessionCode",
    "SessionCodeIssuer",
    "candidate_codes",
    "ensure_aware",
    "is_redeemable",
    "merchant_issue_lock",
    "normalize_session_code",
]
