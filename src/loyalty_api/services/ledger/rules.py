"""Merchant redemption rules and the earn formula.

Everything in this module is pure: no session, no clock, no logging. The
checkout orchestrator and the HTTP layer call into it before any lock is taken.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Any
from uuid import UUID

from loyalty_api.core.settings import settings
from loyalty_api.services.ledger.errors import (
    LedgerValidationError,
    RuleViolation,
    RuleViolationError,
    RuleViolationKind,
)

DEFAULT_EARN_RATE_PER_1000 = 1
DEFAULT_REDEEM_MAX_PERCENT = 100
DEFAULT_REDEEM_STEP = 1


@dataclass(frozen=True)
class MerchantLoyaltySettings:
    """Loyalty rule fields of a merchant, with unset columns resolved to defaults."""

    merchant_id: UUID | None
    earn_rate_per_1000: int = DEFAULT_EARN_RATE_PER_1000
    redeem_max_percent: int | None = DEFAULT_REDEEM_MAX_PERCENT
    min_receipt_amount_for_earn: Decimal = Decimal("0")
    redeem_min_points: int = 0
    redeem_step: int = DEFAULT_REDEEM_STEP
    max_points_per_receipt: int | None = None
    # Accepted and exposed, not enforced anywhere in the ledger.
    max_points_per_day: int | None = None

    @classmethod
    def from_merchant(cls, merchant: Any) -> "MerchantLoyaltySettings":
        def _int_or(value: Any, default: int | None) -> int | None:
            return int(value) if value is not None else default

        return cls(
            merchant_id=merchant.id,
            earn_rate_per_1000=_int_or(merchant.earn_rate_per_1000, settings.default_earn_rate_per_1000),
            redeem_max_percent=_int_or(merchant.redeem_max_percent, DEFAULT_REDEEM_MAX_PERCENT),
            min_receipt_amount_for_earn=Decimal(str(merchant.min_receipt_amount_for_earn or 0)),
            redeem_min_points=_int_or(merchant.redeem_min_points, 0),
            redeem_step=_int_or(merchant.redeem_step, DEFAULT_REDEEM_STEP),
            max_points_per_receipt=_int_or(merchant.max_points_per_receipt, None),
            max_points_per_day=_int_or(merchant.max_points_per_day, None),
        )

    def as_public_dict(self) -> dict[str, Any]:
        return {
            "earnRatePer1000": self.earn_rate_per_1000,
            "redeemMaxPercent": self.redeem_max_percent,
            "minReceiptAmountForEarn": float(self.min_receipt_amount_for_earn),
            "redeemMinPoints": self.redeem_min_points,
            "redeemStep": self.redeem_step,
            "maxPointsPerReceipt": self.max_points_per_receipt,
            "maxPointsPerDay": self.max_points_per_day,
        }


def _as_decimal(value: Decimal | int | float | str, *, field: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (ArithmeticError, ValueError) as exc:
        raise LedgerValidationError(f"{field} must be a number") from exc
    if not result.is_finite():
        raise LedgerValidationError(f"{field} must be a finite number")
    return result


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def percent_cap(receipt_amount: Decimal | int | float, redeem_max_percent: int) -> int:
    """Largest redemption allowed by a percent-of-receipt cap."""

    amount = _as_decimal(receipt_amount, field="receipt_amount")
    return _floor(amount * Decimal(redeem_max_percent) / Decimal(100))


def check_redeem_request(
    config: MerchantLoyaltySettings,
    points: int,
    receipt_amount: Decimal | int | float,
) -> RuleViolation | None:
    """Return the first rule the request violates, or ``None``.

    Checks run in a fixed order: minimum, step, percent cap, receipt cap.
    """

    if points < 0:
        raise LedgerValidationError("Redeem points must be non-negative")

    if points > 0 and points < config.redeem_min_points:
        return RuleViolation(RuleViolationKind.BELOW_MINIMUM, requested=points, limit=config.redeem_min_points)

    if config.redeem_step > 1 and points % config.redeem_step != 0:
        return RuleViolation(RuleViolationKind.NOT_STEP_ALIGNED, requested=points, limit=config.redeem_step)

    max_percent = config.redeem_max_percent
    if max_percent is not None and 0 <= max_percent <= 100:
        cap = percent_cap(receipt_amount, max_percent)
        if points > cap:
            return RuleViolation(RuleViolationKind.EXCEEDS_PERCENT_CAP, requested=points, limit=cap)

    receipt_cap = config.max_points_per_receipt
    if receipt_cap is not None and receipt_cap >= 0 and points > receipt_cap:
        return RuleViolation(RuleViolationKind.EXCEEDS_RECEIPT_CAP, requested=points, limit=receipt_cap)

    return None


def evaluate_redeem_request(
    config: MerchantLoyaltySettings,
    points: int,
    receipt_amount: Decimal | int | float,
) -> None:
    """Raise :class:`RuleViolationError` when the redeem request breaks a merchant rule."""

    violation = check_redeem_request(config, points, receipt_amount)
    if violation is not None:
        raise RuleViolationError(violation)


def compute_points_earned(config: MerchantLoyaltySettings, amount: Decimal | int | float) -> int:
    """Points granted for a receipt: ``floor(amount / 1000 * rate)`` above the threshold."""

    receipt = _as_decimal(amount, field="amount")
    if receipt <= 0:
        return 0
    threshold = config.min_receipt_amount_for_earn
    if threshold and receipt < threshold:
        return 0
    return _floor(receipt * Decimal(config.earn_rate_per_1000) / Decimal(1000))


__all__ = [
    "MerchantLoyaltySettings",
    "check_redeem_request",
    "compute_points_earned",
    "evaluate_redeem_request",
    "percent_cap",
]
