import asyncio
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi import BackgroundTasks
from sqlalchemy import select

from loyalty_api.api.v1.endpoints.integration import IntegrationCheckoutRequest, integration_checkout
from loyalty_api.models import (
    LoyaltyBalance,
    LoyaltySessionCode,
    LoyaltyTransaction,
    LoyaltyTransactionType,
    Merchant,
    SessionCodeStatus,
)
from loyalty_api.observability.ledger import get_ledger_store
from loyalty_api.services.ledger import (
    CheckoutOrchestrator,
    InsufficientPointsError,
    LedgerValidationError,
    MerchantLoyaltySettings,
    RuleViolationError,
    RuleViolationKind,
    SessionCodeIssuer,
    SessionCodeNotFoundError,
    SessionCodeUnavailableError,
    deliver_checkout_notification,
)


NOW = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


async def _issue_code(session_factory, seeded, *, subject_identity="tg-42", now=NOW) -> str:
    async with session_factory() as session:
        issued = await SessionCodeIssuer(session).issue(
            seeded.merchant_id,
            seeded.customer_merchant_id,
            subject_identity,
            now=now,
        )
        await session.commit()
    return issued.code


async def _merchant_settings(session_factory, seeded) -> MerchantLoyaltySettings:
    async with session_factory() as session:
        merchant = await session.get(Merchant, seeded.merchant_id)
        await session.commit()
    return MerchantLoyaltySettings.from_merchant(merchant)


async def _ledger_state(session_factory, seeded):
    async with session_factory() as session:
        balance = await session.get(LoyaltyBalance, seeded.customer_merchant_id)
        entries = (
            await session.execute(
                select(LoyaltyTransaction)
                .where(LoyaltyTransaction.customer_merchant_id == seeded.customer_merchant_id)
                .order_by(LoyaltyTransaction.created_at)
            )
        ).scalars().all()
        await session.commit()
    return balance, entries


@pytest.mark.asyncio
async def test_checkout_applies_redemption_then_purchase(session_factory, seed_merchant, make_notifier) -> None:
    seeded = await seed_merchant(points=200, earn_rate_per_1000=1)
    code = await _issue_code(session_factory, seeded)
    config = await _merchant_settings(session_factory, seeded)
    notifier = make_notifier()

    async with session_factory() as session:
        result = await CheckoutOrchestrator(session).checkout(
            config,
            code,
            Decimal("1000"),
            50,
            "R-100",
            now=NOW + timedelta(seconds=30),
        )

    assert [entry.transaction_type for entry in result.transactions] == [
        LoyaltyTransactionType.POINTS_REDEMPTION,
        LoyaltyTransactionType.PURCHASE,
    ]
    assert [(entry.points_spent, entry.points_earned) for entry in result.transactions] == [(50, 0), (0, 1)]
    assert result.balance.points == 151
    assert result.summary.as_dict() == {"amount": 1000.0, "pointsEarned": 1, "pointsSpent": 50}

    payload = result.as_dict()
    assert payload["customer"]["externalId"] == seeded.external_id
    assert payload["receiptId"] == "R-100"
    assert [entry["transactionType"] for entry in payload["transactions"]] == ["points_redemption", "purchase"]

    balance, entries = await _ledger_state(session_factory, seeded)
    assert balance.points == balance.total_earned - balance.total_spent == 151
    assert len(entries) == 3

    await deliver_checkout_notification(notifier, result)
    assert len(notifier.sent) == 1
    subject, summary = notifier.sent[0]
    assert subject == "tg-42"
    assert summary["pointsSpent"] == 50
    assert summary["balance"]["points"] == 151

    snapshot = get_ledger_store().snapshot()
    assert snapshot.checkouts == {"completed": 1}
    assert snapshot.notifications == {"sent": 1}
    assert snapshot.transactions["points_redemption"] == 1
    assert snapshot.transactions["purchase"] == 1


@pytest.mark.asyncio
async def test_checkout_without_redemption_only_earns(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant(earn_rate_per_1000=5)
    code = await _issue_code(session_factory, seeded)
    config = await _merchant_settings(session_factory, seeded)

    async with session_factory() as session:
        result = await CheckoutOrchestrator(session).checkout(config, code, Decimal("2500"), now=NOW)

    assert len(result.transactions) == 1
    assert result.transactions[0].points_earned == 12
    assert result.balance.points == 12


@pytest.mark.asyncio
async def test_session_code_is_single_use(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant()
    code = await _issue_code(session_factory, seeded)
    config = await _merchant_settings(session_factory, seeded)

    async with session_factory() as session:
        await CheckoutOrchestrator(session).checkout(config, code, Decimal("1000"), now=NOW)

    async with session_factory() as session:
        with pytest.raises(SessionCodeUnavailableError):
            await CheckoutOrchestrator(session).checkout(config, code, Decimal("1000"), now=NOW)

    async with session_factory() as session:
        record = (
            await session.execute(select(LoyaltySessionCode).where(LoyaltySessionCode.session_code == code))
        ).scalar_one()
        await session.commit()
    assert record.status is SessionCodeStatus.USED
    assert record.used_at is not None
    assert get_ledger_store().snapshot().checkouts == {"completed": 1, "rejected": 1}


@pytest.mark.asyncio
async def test_expired_and_unknown_codes_are_rejected(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant()
    code = await _issue_code(session_factory, seeded)
    config = await _merchant_settings(session_factory, seeded)

    async with session_factory() as session:
        with pytest.raises(SessionCodeUnavailableError):
            await CheckoutOrchestrator(session).checkout(
                config, code, Decimal("1000"), now=NOW + timedelta(minutes=3)
            )

    unknown = "000000" if code != "000000" else "000001"
    async with session_factory() as session:
        with pytest.raises(SessionCodeNotFoundError):
            await CheckoutOrchestrator(session).checkout(config, unknown, Decimal("1000"), now=NOW)


@pytest.mark.asyncio
async def test_rule_violation_rolls_back_everything(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant(points=500, redeem_step=50)
    code = await _issue_code(session_factory, seeded)
    config = await _merchant_settings(session_factory, seeded)

    async with session_factory() as session:
        with pytest.raises(RuleViolationError) as excinfo:
            await CheckoutOrchestrator(session).checkout(config, code, Decimal("1000"), 120, now=NOW)

    assert excinfo.value.violation.kind is RuleViolationKind.NOT_STEP_ALIGNED

    balance, entries = await _ledger_state(session_factory, seeded)
    assert balance.points == 500
    assert len(entries) == 1

    # The code survives a rejected checkout.
    async with session_factory() as session:
        result = await CheckoutOrchestrator(session).checkout(config, code, Decimal("1000"), 100, now=NOW)
    assert result.balance.points == 401
    assert get_ledger_store().snapshot().rejections == {"not_step_aligned": 1}


@pytest.mark.asyncio
async def test_insufficient_points_keeps_code_active(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant(points=20)
    code = await _issue_code(session_factory, seeded)
    config = await _merchant_settings(session_factory, seeded)

    async with session_factory() as session:
        with pytest.raises(InsufficientPointsError):
            await CheckoutOrchestrator(session).checkout(config, code, Decimal("1000"), 50, now=NOW)

    async with session_factory() as session:
        record = await SessionCodeIssuer(session).find_active(seeded.merchant_id, code, now=NOW)
        await session.commit()
    assert record.status is SessionCodeStatus.ACTIVE

    balance, entries = await _ledger_state(session_factory, seeded)
    assert balance.points == 20
    assert len(entries) == 1


@pytest.mark.asyncio
async def test_concurrent_checkouts_of_one_code_book_once(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant(points=100)
    code = await _issue_code(session_factory, seeded)
    config = await _merchant_settings(session_factory, seeded)

    async def attempt():
        async with session_factory() as session:
            return await CheckoutOrchestrator(session).checkout(config, code, Decimal("1000"), 10, now=NOW)

    outcomes = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

    assert sorted(type(outcome).__name__ for outcome in outcomes) == [
        "CheckoutResult",
        "SessionCodeUnavailableError",
    ]
    balance, entries = await _ledger_state(session_factory, seeded)
    assert balance.points == 91
    assert [entry.transaction_type for entry in entries].count(LoyaltyTransactionType.PURCHASE) == 1

    async with session_factory() as session:
        record = (
            await session.execute(select(LoyaltySessionCode).where(LoyaltySessionCode.session_code == code))
        ).scalar_one()
        await session.commit()
    assert record.status is SessionCodeStatus.USED


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_checkout(session_factory, seed_merchant, make_notifier) -> None:
    seeded = await seed_merchant(points=100)
    code = await _issue_code(session_factory, seeded)
    config = await _merchant_settings(session_factory, seeded)
    notifier = make_notifier(fail_with=RuntimeError("bot offline"))

    async with session_factory() as session:
        result = await CheckoutOrchestrator(session).checkout(config, code, Decimal("3000"), 10, now=NOW)

    await deliver_checkout_notification(notifier, result)

    assert result.balance.points == 93
    balance, entries = await _ledger_state(session_factory, seeded)
    assert balance.points == 93
    assert len(entries) == 3
    assert get_ledger_store().snapshot().notifications == {"failed": 1}


@pytest.mark.asyncio
async def test_code_without_subject_identity_skips_notification(session_factory, seed_merchant, make_notifier) -> None:
    seeded = await seed_merchant()
    code = await _issue_code(session_factory, seeded, subject_identity=None)
    config = await _merchant_settings(session_factory, seeded)
    notifier = make_notifier()

    async with session_factory() as session:
        result = await CheckoutOrchestrator(session).checkout(config, code, Decimal("1000"), now=NOW)

    await deliver_checkout_notification(notifier, result)

    assert notifier.sent == []
    assert get_ledger_store().snapshot().notifications == {}


@pytest.mark.asyncio
async def test_checkout_endpoint_responds_before_notifying(session_factory, seed_merchant, make_notifier) -> None:
    seeded = await seed_merchant(points=100)
    code = await _issue_code(session_factory, seeded, now=None)
    notifier = make_notifier(delay_seconds=1.0)
    background = BackgroundTasks()

    async with session_factory() as session:
        merchant = await session.get(Merchant, seeded.merchant_id)
        started = time.monotonic()
        response = await integration_checkout(
            IntegrationCheckoutRequest(sessionCode=code, amount=Decimal("1000"), redeemPoints=10),
            background,
            merchant=merchant,
            db=session,
            notifier=notifier,
        )
        elapsed = time.monotonic() - started

    assert elapsed < 1.0
    assert response["status"] == "OK"
    assert response["balance"]["points"] == 91
    assert notifier.sent == []
    assert len(background.tasks) == 1

    await background()

    assert notifier.sent[0][0] == "tg-42"
    assert notifier.sent[0][1]["balance"]["points"] == 91

@pytest.mark.asyncio
@pytest.mark.parametrize(("amount", "redeem"), [(Decimal("0"), 0), (Decimal("-5"), 0), (Decimal("100"), -1)])
async def test_checkout_rejects_invalid_input(session_factory, seed_merchant, amount, redeem) -> None:
    seeded = await seed_merchant()
    config = await _merchant_settings(session_factory, seeded)

    async with session_factory() as session:
        with pytest.raises(LedgerValidationError):
            await CheckoutOrchestrator(session).checkout(config, "123456", amount, redeem, now=NOW)
