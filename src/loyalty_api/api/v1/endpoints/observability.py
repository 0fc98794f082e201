"""Observability endpoints for the loyalty ledger."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from loyalty_api.api.dependencies.security import require_ops_api_key
from loyalty_api.observability.ledger import get_ledger_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/ledger",
    dependencies=[Depends(require_ops_api_key)],
    summary="Ledger observability snapshot",
)
async def get_ledger_snapshot() -> dict[str, object]:
    """Counters since process start (requires the ops API key when configured)."""
    return get_ledger_store().snapshot().as_dict()
