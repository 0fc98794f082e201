#!/usr/bin/env python3
"""Smoke test for the session-code checkout flow.

Usage (HTTP, against an already seeded merchant):
    python tooling/scripts/smoke_checkout.py --base-url http://localhost:8000 \
        --api-key <MERCHANT_API_KEY> --merchant-code <CODE> --customer <EXTERNAL_ID>

Usage (in-process, seeds its own merchant into DATABASE_URL):
    python tooling/scripts/smoke_checkout.py --in-process

The script checks:
1. API health (`/healthz`)
2. Earn for the customer (`POST /api/v1/integration/purchase`)
3. Session code issue (`POST /api/v1/bot/session-code`)
4. Code lookup (`POST /api/v1/integration/lookup`)
5. Checkout with a redemption (`POST /api/v1/integration/checkout`)
6. Ledger observability snapshot (`/api/v1/observability/ledger`)
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
from httpx import ASGITransport, Response


@dataclass
class SmokeTarget:
    api_key: str
    merchant_code: str
    external_customer_id: str
    bot_token: str | None = None


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Loyalty ledger checkout smoke test")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="Base URL of the FastAPI service (ignored with --in-process)",
    )
    parser.add_argument("--api-key", help="Merchant X-API-Key (defaults to LOYALTY_SMOKE_API_KEY)")
    parser.add_argument("--merchant-code", help="Merchant code used by the bot endpoint")
    parser.add_argument("--customer", help="External customer id enrolled with the merchant")
    parser.add_argument("--bot-token", help="X-Bot-Token value when the service requires one")
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Request timeout in seconds",
    )
    parser.add_argument(
        "--in-process",
        action="store_true",
        help="Run requests directly against the ASGI app without binding network sockets.",
    )
    return parser.parse_args()


async def _get_json(client: httpx.AsyncClient, path: str, headers: dict[str, str] | None = None) -> dict[str, Any]:
    response: Response = await client.get(path, headers=headers)
    response.raise_for_status()
    return response.json()


async def _post_json(
    client: httpx.AsyncClient,
    path: str,
    payload: dict[str, Any],
    headers: dict[str, str],
) -> dict[str, Any]:
    response: Response = await client.post(path, json=payload, headers=headers)
    if response.is_error:
        raise RuntimeError(f"{path} failed with {response.status_code}: {response.text}")
    return response.json()


async def _run_checks(client: httpx.AsyncClient, target: SmokeTarget) -> dict[str, Any]:
    health = await _get_json(client, "/healthz")
    if health.get("status") != "ok":
        raise RuntimeError(f"Unexpected health response: {health}")

    merchant_headers = {"X-API-Key": target.api_key}
    purchase = await _post_json(
        client,
        "/api/v1/integration/purchase",
        {"externalCustomerId": target.external_customer_id, "amount": 5000},
        headers=merchant_headers,
    )
    starting_points = int(purchase["balance"]["points"])

    bot_headers = {"X-Bot-Token": target.bot_token} if target.bot_token else {}
    issued = await _post_json(
        client,
        "/api/v1/bot/session-code",
        {
            "merchantCode": target.merchant_code,
            "externalCustomerId": target.external_customer_id,
            "subjectIdentity": f"smoke-{uuid.uuid4().hex[:8]}",
        },
        headers=bot_headers,
    )
    code = issued["sessionCode"]

    lookup = await _post_json(client, "/api/v1/integration/lookup", {"sessionCode": code}, headers=merchant_headers)
    if lookup["balance"]["points"] != starting_points:
        raise RuntimeError(f"Lookup balance mismatch: expected {starting_points}, got {lookup['balance']}")

    redeem = 1 if starting_points >= 1 else 0
    checkout = await _post_json(
        client,
        "/api/v1/integration/checkout",
        {
            "sessionCode": code,
            "amount": 1000,
            "redeemPoints": redeem,
            "receiptId": f"smoke-{uuid.uuid4().hex[:12]}",
        },
        headers=merchant_headers,
    )
    expected = starting_points - redeem + int(checkout["summary"]["pointsEarned"])
    if checkout["balance"]["points"] != expected:
        raise RuntimeError(f"Checkout balance mismatch: expected {expected}, got {checkout['balance']}")

    ops_key = os.environ.get("OPS_API_KEY")
    snapshot = await _get_json(
        client,
        "/api/v1/observability/ledger",
        headers={"X-API-Key": ops_key} if ops_key else None,
    )
    if not snapshot.get("checkouts", {}).get("completed"):
        raise RuntimeError(f"Ledger observability snapshot missing checkout counters: {snapshot}")

    return checkout


async def _ensure_merchant_fixture() -> SmokeTarget:
    from sqlalchemy import select  # type: ignore import-position

    from loyalty_api.db.base import Base  # type: ignore import-position
    from loyalty_api.db.session import async_session, engine  # type: ignore import-position
    from loyalty_api.models import Merchant, MerchantApiKey  # type: ignore import-position
    from loyalty_api.services.merchants import EnrollmentService  # type: ignore import-position

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    target = SmokeTarget(api_key="loyalty-smoke-key", merchant_code="smoke-shop", external_customer_id="smoke-customer")
    async with async_session() as session:
        merchant = (await session.execute(select(Merchant).where(Merchant.code == target.merchant_code))).scalar_one_or_none()
        if merchant is None:
            merchant = Merchant(code=target.merchant_code, name="Smoke Shop", earn_rate_per_1000=10)
            session.add(merchant)
            await session.flush()
            session.add(MerchantApiKey(merchant_id=merchant.id, api_key=target.api_key, label="smoke"))
        await EnrollmentService(session).ensure_customer_merchant(merchant.id, target.external_customer_id)
        await session.commit()
    return target


async def run_http(base_url: str, timeout: float, target: SmokeTarget) -> dict[str, Any]:
    async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as client:
        return await _run_checks(client, target)


async def run_in_process(timeout: float, bot_token: str | None) -> dict[str, Any]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from loyalty_api.app import create_app  # type: ignore import-position

    app = create_app()
    lifespan = app.router.lifespan_context(app)
    await lifespan.__aenter__()
    try:
        target = await _ensure_merchant_fixture()
        target.bot_token = bot_token
        transport = ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver", timeout=timeout) as client:
            return await _run_checks(client, target)
    finally:
        await lifespan.__aexit__(None, None, None)


def resolve_target(args: argparse.Namespace) -> SmokeTarget:
    api_key = args.api_key or os.environ.get("LOYALTY_SMOKE_API_KEY")
    merchant_code = args.merchant_code or os.environ.get("LOYALTY_SMOKE_MERCHANT_CODE")
    customer = args.customer or os.environ.get("LOYALTY_SMOKE_CUSTOMER")
    if not (api_key and merchant_code and customer):
        raise SystemExit("HTTP smoke test needs --api-key, --merchant-code and --customer (or LOYALTY_SMOKE_* env vars).")
    return SmokeTarget(
        api_key=api_key,
        merchant_code=merchant_code,
        external_customer_id=customer,
        bot_token=args.bot_token or os.environ.get("BOT_API_TOKEN"),
    )


def main() -> int:
    args = parse_args()

    if args.in_process:
        checkout = asyncio.run(run_in_process(args.timeout, args.bot_token or os.environ.get("BOT_API_TOKEN")))
    else:
        checkout = asyncio.run(run_http(args.base_url, args.timeout, resolve_target(args)))

    summary = checkout.get("summary") or {}
    print(
        "Checkout smoke test passed: "
        f"earned {summary.get('pointsEarned')} spent {summary.get('pointsSpent')} "
        f"balance {checkout['balance']['points']}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
