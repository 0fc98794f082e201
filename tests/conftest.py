import asyncio
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from loyalty_api.api.dependencies.notifications import get_checkout_notifier  # noqa: E402
from loyalty_api.app import create_app  # noqa: E402
from loyalty_api.db.base import Base  # noqa: E402
from loyalty_api.db.session import build_engine, build_session_factory, get_session  # noqa: E402
from loyalty_api.models import Customer, CustomerMerchant, Merchant, MerchantApiKey  # noqa: E402
from loyalty_api.observability.ledger import get_ledger_store  # noqa: E402
from loyalty_api.services.ledger import LedgerApplier  # noqa: E402


@pytest.fixture(autouse=True)
def reset_ledger_store():
    get_ledger_store().reset()
    yield
    get_ledger_store().reset()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    # File-backed so that concurrent sessions hold separate connections.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = build_session_factory(engine)

    try:
        yield factory
    finally:
        await engine.dispose()


@dataclass
class RecordingNotifier:
    """Records notifications instead of sending them."""

    sent: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    fail_with: Exception | None = None
    delay_seconds: float = 0.0

    async def notify(self, subject_identity: str, summary: dict[str, Any]) -> None:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((subject_identity, summary))


@pytest.fixture
def make_notifier():
    return RecordingNotifier


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def app_with_db(session_factory, notifier):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_checkout_notifier] = lambda: notifier

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@dataclass
class SeededMerchant:
    merchant_id: UUID
    code: str
    api_key: str
    customer_id: UUID
    customer_merchant_id: UUID
    external_id: str


@pytest.fixture
def seed_merchant(session_factory):
    """Create a merchant with one API key and one enrolled customer."""

    async def _seed(*, points: int = 0, **rules) -> SeededMerchant:
        suffix = uuid4().hex[:8]
        async with session_factory() as session:
            merchant = Merchant(code=f"shop-{suffix}", name=f"Shop {suffix}", **rules)
            session.add(merchant)
            await session.flush()

            api_key = MerchantApiKey(merchant_id=merchant.id, api_key=f"key-{suffix}", label="pos")
            customer = Customer(external_id=f"cust-{suffix}", phone="+10000000000")
            session.add_all([api_key, customer])
            await session.flush()

            enrollment = CustomerMerchant(customer_id=customer.id, merchant_id=merchant.id)
            session.add(enrollment)
            await session.flush()

            if points:
                await LedgerApplier(session).apply(enrollment.id, points_earned=points)
            await session.commit()

            return SeededMerchant(
                merchant_id=merchant.id,
                code=merchant.code,
                api_key=api_key.api_key,
                customer_id=customer.id,
                customer_merchant_id=enrollment.id,
                external_id=customer.external_id,
            )

    return _seed
