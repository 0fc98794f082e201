"""Translate ledger failures into HTTP errors with actionable context."""

from __future__ import annotations

from fastapi import HTTPException, status

from loyalty_api.services.ledger.errors import LedgerError, LedgerErrorKind

_STATUS_BY_KIND: dict[LedgerErrorKind, int] = {
    LedgerErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    LedgerErrorKind.RULE_VIOLATION: status.HTTP_400_BAD_REQUEST,
    LedgerErrorKind.INSUFFICIENT_POINTS: status.HTTP_400_BAD_REQUEST,
    LedgerErrorKind.CODE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    LedgerErrorKind.CODE_ALREADY_USED_OR_EXPIRED: status.HTTP_400_BAD_REQUEST,
    LedgerErrorKind.CODE_GENERATION_EXHAUSTED: status.HTTP_503_SERVICE_UNAVAILABLE,
    LedgerErrorKind.ENROLLMENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    LedgerErrorKind.MERCHANT_ACCESS: status.HTTP_403_FORBIDDEN,
    LedgerErrorKind.STORAGE_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def ledger_http_error(exc: LedgerError) -> HTTPException:
    """Build the HTTPException for a ledger failure.

    Storage failures only ever carry a generic message; the driver text stays
    in the logs.
    """

    if exc.kind is LedgerErrorKind.STORAGE_FAILURE:
        detail = {"status": "ERROR", "kind": exc.kind.value, "message": "Internal ledger error"}
    else:
        detail = {"status": "ERROR", "kind": exc.kind.value, "message": exc.message, **exc.context()}

    headers = None
    if exc.kind is LedgerErrorKind.CODE_GENERATION_EXHAUSTED:
        headers = {"Retry-After": "1"}
    return HTTPException(status_code=_STATUS_BY_KIND[exc.kind], detail=detail, headers=headers)


__all__ = ["ledger_http_error"]
