"""Typed failures raised by the ledger engine.

Every class carries a :class:`LedgerErrorKind` so the HTTP layer can map
failures exhaustively, plus the computed context a caller needs to render an
actionable message. Nothing here carries storage driver text.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class LedgerErrorKind(str, Enum):
    VALIDATION = "validation"
    RULE_VIOLATION = "rule_violation"
    INSUFFICIENT_POINTS = "insufficient_points"
    CODE_NOT_FOUND = "code_not_found"
    CODE_ALREADY_USED_OR_EXPIRED = "code_already_used_or_expired"
    CODE_GENERATION_EXHAUSTED = "code_generation_exhausted"
    ENROLLMENT_NOT_FOUND = "enrollment_not_found"
    MERCHANT_ACCESS = "merchant_access"
    STORAGE_FAILURE = "storage_failure"


class RuleViolationKind(str, Enum):
    BELOW_MINIMUM = "below_minimum"
    NOT_STEP_ALIGNED = "not_step_aligned"
    EXCEEDS_PERCENT_CAP = "exceeds_percent_cap"
    EXCEEDS_RECEIPT_CAP = "exceeds_receipt_cap"


@dataclass(frozen=True)
class RuleViolation:
    """First merchant rule a redeem request failed, with the computed limit."""

    kind: RuleViolationKind
    requested: int
    limit: int

    @property
    def message(self) -> str:
        if self.kind is RuleViolationKind.BELOW_MINIMUM:
            return f"Minimum redemption is {self.limit} points"
        if self.kind is RuleViolationKind.NOT_STEP_ALIGNED:
            return f"Redemption must be a multiple of {self.limit} points"
        if self.kind is RuleViolationKind.EXCEEDS_PERCENT_CAP:
            return f"Cannot redeem more than {self.limit} points for this receipt"
        return f"Cannot redeem more than {self.limit} points per receipt"

    def as_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "requested": self.requested, "limit": self.limit}


class LedgerError(Exception):
    """Base class for all ledger engine failures."""

    kind: LedgerErrorKind = LedgerErrorKind.STORAGE_FAILURE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def context(self) -> dict[str, Any]:
        return {}


class LedgerValidationError(LedgerError):
    kind = LedgerErrorKind.VALIDATION


class RuleViolationError(LedgerError):
    kind = LedgerErrorKind.RULE_VIOLATION

    def __init__(self, violation: RuleViolation) -> None:
        super().__init__(violation.message)
        self.violation = violation

    def context(self) -> dict[str, Any]:
        return self.violation.as_dict()


class InsufficientPointsError(LedgerError):
    kind = LedgerErrorKind.INSUFFICIENT_POINTS

    def __init__(self, *, current_points: int, requested_spend: int) -> None:
        super().__init__("Insufficient points for redemption")
        self.current_points = current_points
        self.requested_spend = requested_spend

    def context(self) -> dict[str, Any]:
        return {"currentPoints": self.current_points, "requestedSpend": self.requested_spend}


class SessionCodeError(LedgerError):
    """Session code lifecycle failures."""


class SessionCodeNotFoundError(SessionCodeError):
    kind = LedgerErrorKind.CODE_NOT_FOUND

    def __init__(self) -> None:
        super().__init__("Session code not found")


class SessionCodeUnavailableError(SessionCodeError):
    kind = LedgerErrorKind.CODE_ALREADY_USED_OR_EXPIRED

    def __init__(self) -> None:
        super().__init__("Session code already used or expired")


class CodeGenerationExhaustedError(SessionCodeError):
    kind = LedgerErrorKind.CODE_GENERATION_EXHAUSTED

    def __init__(self, attempts: int) -> None:
        super().__init__("Could not allocate a unique session code, retry later")
        self.attempts = attempts

    def context(self) -> dict[str, Any]:
        return {"attempts": self.attempts}


class EnrollmentNotFoundError(LedgerError):
    kind = LedgerErrorKind.ENROLLMENT_NOT_FOUND

    def __init__(self, message: str = "Customer is not enrolled in this loyalty program") -> None:
        super().__init__(message)


class MerchantAccessError(LedgerError):
    kind = LedgerErrorKind.MERCHANT_ACCESS

    def __init__(self, message: str = "Customer enrollment belongs to another merchant") -> None:
        super().__init__(message)


class StorageFailureError(LedgerError):
    kind = LedgerErrorKind.STORAGE_FAILURE

    def __init__(self, operation: str) -> None:
        super().__init__(f"Ledger storage failure during {operation}")
        self.operation = operation


__all__ = [
    "CodeGenerationExhaustedError",
    "EnrollmentNotFoundError",
    "InsufficientPointsError",
    "LedgerError",
    "LedgerErrorKind",
    "LedgerValidationError",
    "MerchantAccessError",
    "RuleViolation",
    "RuleViolationError",
    "RuleViolationKind",
    "SessionCodeError",
    "SessionCodeNotFoundError",
    "SessionCodeUnavailableError",
    "StorageFailureError",
]
