import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from loyalty_api.models import LoyaltyBalance, LoyaltyTransaction, LoyaltyTransactionType
from loyalty_api.observability.ledger import get_ledger_store
from loyalty_api.services.ledger import (
    BalanceStore,
    InsufficientPointsError,
    LedgerApplier,
    LedgerValidationError,
    TransactionHistory,
    record_committed,
)


async def _balance_row(session_factory, customer_merchant_id) -> LoyaltyBalance:
    async with session_factory() as session:
        row = await session.get(LoyaltyBalance, customer_merchant_id)
        await session.commit()
        return row


async def _transaction_count(session_factory, customer_merchant_id) -> int:
    async with session_factory() as session:
        count = await session.scalar(
            select(func.count())
            .select_from(LoyaltyTransaction)
            .where(LoyaltyTransaction.customer_merchant_id == customer_merchant_id)
        )
        await session.commit()
        return int(count)


@pytest.mark.asyncio
async def test_apply_creates_balance_and_keeps_invariant(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant()

    async with session_factory() as session:
        applier = LedgerApplier(session)
        earned = await applier.apply(
            seeded.customer_merchant_id,
            amount=Decimal("1500"),
            points_earned=120,
            transaction_type=LoyaltyTransactionType.PURCHASE,
            receipt_id="R-1",
        )
        spent = await applier.apply(
            seeded.customer_merchant_id,
            points_spent=45,
            transaction_type=LoyaltyTransactionType.POINTS_REDEMPTION,
        )
        await session.commit()

    assert earned.balance.points == 120
    assert spent.balance.points == 75
    assert spent.balance.total_earned == 120
    assert spent.balance.total_spent == 45
    assert earned.transaction.receipt_id == "R-1"

    row = await _balance_row(session_factory, seeded.customer_merchant_id)
    assert row.points == row.total_earned - row.total_spent == 75
    assert row.level == "bronze"
    assert row.last_activity is not None


@pytest.mark.asyncio
async def test_insufficient_points_leaves_state_unchanged(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant(points=30)

    async with session_factory() as session:
        with pytest.raises(InsufficientPointsError) as excinfo:
            await LedgerApplier(session).apply(seeded.customer_merchant_id, points_spent=50)
        await session.rollback()

    assert excinfo.value.context() == {"currentPoints": 30, "requestedSpend": 50}
    row = await _balance_row(session_factory, seeded.customer_merchant_id)
    assert (row.points, row.total_earned, row.total_spent) == (30, 30, 0)
    assert await _transaction_count(session_factory, seeded.customer_merchant_id) == 1
    assert get_ledger_store().snapshot().rejections == {"insufficient_points": 1}


@pytest.mark.asyncio
async def test_exact_spend_to_zero_is_allowed(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant(points=40)

    async with session_factory() as session:
        result = await LedgerApplier(session).apply(seeded.customer_merchant_id, points_spent=40)
        await session.commit()

    assert result.balance.points == 0


@pytest.mark.asyncio
async def test_first_debit_on_new_enrollment_is_rejected(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant()

    async with session_factory() as session:
        with pytest.raises(InsufficientPointsError) as excinfo:
            await LedgerApplier(session).apply(seeded.customer_merchant_id, points_spent=1)
        await session.rollback()

    assert excinfo.value.current_points == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [{"points_earned": -5}, {"points_spent": 1.5}, {"amount": Decimal("-1")}])
async def test_invalid_arguments_raise_validation_error(session_factory, seed_merchant, kwargs) -> None:
    seeded = await seed_merchant()

    async with session_factory() as session:
        with pytest.raises(LedgerValidationError):
            await LedgerApplier(session).apply(seeded.customer_merchant_id, **kwargs)
        await session.rollback()


@pytest.mark.asyncio
async def test_concurrent_double_spend_allows_exactly_one(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant(points=100)

    async def redeem() -> int:
        async with session_factory() as session:
            try:
                result = await LedgerApplier(session).apply(
                    seeded.customer_merchant_id,
                    points_spent=80,
                    transaction_type=LoyaltyTransactionType.POINTS_REDEMPTION,
                )
                # Yield while holding the lock so the other writer has to wait on it.
                await asyncio.sleep(0.05)
                await session.commit()
            except InsufficientPointsError:
                await session.rollback()
                raise
            return result.balance.points

    outcomes = await asyncio.gather(redeem(), redeem(), return_exceptions=True)

    successes = [outcome for outcome in outcomes if isinstance(outcome, int)]
    failures = [outcome for outcome in outcomes if isinstance(outcome, InsufficientPointsError)]
    assert successes == [20]
    assert len(failures) == 1
    assert failures[0].current_points == 20

    row = await _balance_row(session_factory, seeded.customer_merchant_id)
    assert (row.points, row.total_spent) == (20, 80)


@pytest.mark.asyncio
async def test_balance_store_reads_missing_row_as_empty(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant()

    async with session_factory() as session:
        snapshot = await BalanceStore(session).get(seeded.customer_merchant_id)
        await session.commit()

    assert snapshot.as_dict() == {
        "points": 0,
        "totalEarned": 0,
        "totalSpent": 0,
        "level": "bronze",
        "lastActivity": None,
    }


@pytest.mark.asyncio
async def test_history_is_newest_first_and_bounded(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant()

    async with session_factory() as session:
        applier = LedgerApplier(session)
        started = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for index in range(3):
            await applier.apply(
                seeded.customer_merchant_id,
                points_earned=index + 1,
                receipt_id=f"R-{index}",
                now=started + timedelta(minutes=index),
            )
            await session.commit()

    async with session_factory() as session:
        entries = await TransactionHistory(session).list_recent(seeded.customer_merchant_id, limit=2)
        capped = await TransactionHistory(session).list_recent(seeded.customer_merchant_id, limit=500)
        await session.commit()

    assert [entry.receipt_id for entry in entries] == ["R-2", "R-1"]
    assert len(capped) == 3


@pytest.mark.asyncio
async def test_counters_are_recorded_after_commit(session_factory, seed_merchant) -> None:
    seeded = await seed_merchant()

    async with session_factory() as session:
        result = await LedgerApplier(session).apply(
            seeded.customer_merchant_id,
            points_earned=10,
            transaction_type=LoyaltyTransactionType.PURCHASE,
        )
        assert get_ledger_store().snapshot().transactions == {}
        await session.commit()

    record_committed([result])
    assert get_ledger_store().snapshot().transactions == {"purchase": 1, "points_earned": 10, "points_spent": 0}
