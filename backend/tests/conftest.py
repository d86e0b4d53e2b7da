"""Shared fixtures: a throwaway SQLite database, a frozen clock and a fake billing provider."""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Optional

import pytest
import pytest_asyncio

from canvascue.core.database import Database
from canvascue.core.retry import RetryConfig, TransientError
from canvascue.modules.billing.gateway import BillingGateway
from canvascue.modules.billing.provider import (
    BillingProvider,
    CheckoutRequest,
    CheckoutSession,
    ProviderSubscription,
)
from canvascue.modules.subscription.projector import add_months
from canvascue.modules.subscription.repository import SubscriptionRepository
from canvascue.modules.tiers.catalog import TierCatalog


FIXED_NOW = datetime(2024, 3, 15, 12, 0, 0)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeBillingProvider(BillingProvider):
    """In-memory billing provider recording every call.

    ``fail_times`` makes the next N calls raise ``TransientError``;
    ``delay`` makes every call sleep that many seconds first. Write calls
    also record their idempotency key in ``idempotency_keys``.
    """

    def __init__(self):
        self.calls: list[tuple] = []
        self.idempotency_keys: list[tuple[str, Optional[str]]] = []
        self.subscriptions: dict[str, ProviderSubscription] = {}
        self.fail_times = 0
        self.delay: Optional[float] = None

    def add_subscription(
        self,
        subscription_id: str,
        period_start: datetime,
        period_end: datetime,
        status: str = "active",
    ) -> ProviderSubscription:
        remote = ProviderSubscription(
            id=subscription_id,
            customer_id="cus_test",
            status=status,
            current_period_start=period_start,
            current_period_end=period_end,
            price_id="price_starter_monthly",
            item_id=f"si_{subscription_id}",
        )
        self.subscriptions[subscription_id] = remote
        return remote

    async def _enter(self, *call) -> None:
        self.calls.append(call)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise TransientError("provider unavailable")

    async def create_checkout_session(
        self, request: CheckoutRequest, idempotency_key=None
    ) -> CheckoutSession:
        self.idempotency_keys.append(("create_checkout_session", idempotency_key))
        await self._enter("create_checkout_session", request)
        return CheckoutSession(session_id="cs_test_1", url="https://checkout.test/cs_test_1")

    async def update_subscription(self, subscription_id, price_id, item_id=None, idempotency_key=None):
        self.idempotency_keys.append(("update_subscription", idempotency_key))
        await self._enter("update_subscription", subscription_id, price_id, item_id)
        remote = self.subscriptions[subscription_id]
        remote.price_id = price_id
        return remote

    async def cancel_subscription(self, subscription_id, at_period_end=True, idempotency_key=None):
        self.idempotency_keys.append(("cancel_subscription", idempotency_key))
        await self._enter("cancel_subscription", subscription_id, at_period_end)
        remote = self.subscriptions.get(subscription_id)
        if remote is None:
            remote = self.add_subscription(subscription_id, FIXED_NOW, add_months(FIXED_NOW, 1))
        if at_period_end:
            remote.cancel_at_period_end = True
        else:
            remote.status = "canceled"
        return remote

    async def retrieve_subscription(self, subscription_id):
        await self._enter("retrieve_subscription", subscription_id)
        return self.subscriptions[subscription_id]


async def _no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(FIXED_NOW)


@pytest.fixture
def fake_provider() -> FakeBillingProvider:
    return FakeBillingProvider()


@pytest.fixture
def gateway(fake_provider) -> BillingGateway:
    return BillingGateway(
        fake_provider,
        retry_config=RetryConfig(max_attempts=3, initial_delay=0.01, max_delay=0.05),
        timeout=1.0,
        sleep=_no_sleep,
    )


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'canvascue-test.db'}")
    await db.create_all()
    yield db
    await db.drop_all()
    await db.dispose()


@pytest_asyncio.fixture
async def session(database):
    async with database.session() as session:
        yield session


@pytest_asyncio.fixture
async def tiers(session):
    """Default tiers in display order: starter, professional, enterprise."""
    return await TierCatalog(session).seed_default_tiers()


@pytest.fixture
def starter(tiers):
    return tiers[0]


@pytest.fixture
def professional(tiers):
    return tiers[1]


@pytest.fixture
def enterprise(tiers):
    return tiers[2]


@pytest.fixture
def make_subscription(session, clock):
    """Factory persisting an active monthly subscription on a tier."""
    repo = SubscriptionRepository(session)

    async def _make(tier, user_id: Optional[uuid.UUID] = None, **overrides):
        now = clock()
        data = dict(
            user_id=user_id or uuid.uuid4(),
            tier_id=tier.id,
            billing_period="monthly",
            amount_cents=tier.monthly_price,
            currency="USD",
            status="active",
            start_date=now,
            current_period_start=now,
            current_period_end=add_months(now, 1),
            next_billing_date=add_months(now, 2),
            usage_last_reset_at=now,
        )
        data.update(overrides)
        return await repo.create(**data)

    return _make
