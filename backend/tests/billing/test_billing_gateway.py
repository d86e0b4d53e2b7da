"""Tests for the billing gateway and the Stripe provider."""

from datetime import datetime
from unittest.mock import patch

import pytest
import stripe

from canvascue.core.config import Settings
from canvascue.core.metrics import REGISTRY
from canvascue.core.retry import RetryConfig, TransientError
from canvascue.modules.billing.gateway import BillingGateway, build_billing_gateway
from canvascue.modules.billing.provider import CheckoutRequest, ProviderError
from canvascue.modules.billing.stripe_provider import StripeBillingProvider


MARCH_15_NOON = 1710504000
APRIL_15_NOON = 1713182400


async def _skip_sleep(delay: float) -> None:
    return None


def provider_calls(operation: str, status: str) -> float:
    return REGISTRY.get_sample_value(
        "canvascue_billing_provider_calls_total",
        {"operation": operation, "status": status},
    ) or 0.0


def stripe_subscription(**overrides) -> dict:
    data = {
        "id": "sub_1",
        "customer": "cus_1",
        "status": "active",
        "cancel_at_period_end": False,
        "trial_start": None,
        "trial_end": None,
        "items": {
            "data": [{
                "id": "si_1",
                "price": {"id": "price_starter_monthly"},
                "current_period_start": MARCH_15_NOON,
                "current_period_end": APRIL_15_NOON,
            }],
        },
    }
    data.update(overrides)
    return data


class TestBillingGatewayRetry:
    """Tests for retry and timeout handling in the gateway."""

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, gateway, fake_provider, clock):
        fake_provider.add_subscription("sub_1", clock(), clock())
        fake_provider.fail_times = 2
        before = provider_calls("retrieve_subscription", "success")

        remote = await gateway.retrieve_subscription("sub_1")

        assert remote.id == "sub_1"
        assert len(fake_provider.calls) == 3
        assert provider_calls("retrieve_subscription", "success") == before + 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, gateway, fake_provider, clock):
        fake_provider.add_subscription("sub_1", clock(), clock())
        fake_provider.fail_times = 5
        before = provider_calls("cancel_subscription", "transient_error")

        with pytest.raises(TransientError):
            await gateway.cancel_subscription("sub_1")

        assert len(fake_provider.calls) == 3
        assert provider_calls("cancel_subscription", "transient_error") == before + 1

    @pytest.mark.asyncio
    async def test_slow_provider_times_out(self, fake_provider, clock):
        fake_provider.add_subscription("sub_1", clock(), clock())
        fake_provider.delay = 0.5
        sleeps = []

        async def record_sleep(delay: float) -> None:
            sleeps.append(delay)

        gateway = BillingGateway(
            fake_provider,
            retry_config=RetryConfig(max_attempts=2, initial_delay=0.01),
            timeout=0.02,
            sleep=record_sleep,
        )

        with pytest.raises(TransientError, match="timed out"):
            await gateway.retrieve_subscription("sub_1")

        assert len(fake_provider.calls) == 2
        assert sleeps == [0.01]

    @pytest.mark.asyncio
    async def test_provider_errors_are_not_retried(self, gateway, fake_provider):
        attempts = []

        async def reject(subscription_id):
            attempts.append(subscription_id)
            raise ProviderError("No such subscription", code="resource_missing")

        fake_provider.retrieve_subscription = reject
        before = provider_calls("retrieve_subscription", "error")

        with pytest.raises(ProviderError):
            await gateway.retrieve_subscription("sub_missing")

        assert attempts == ["sub_missing"]
        assert provider_calls("retrieve_subscription", "error") == before + 1

    @pytest.mark.asyncio
    async def test_retried_write_reuses_its_idempotency_key(self, gateway, fake_provider, clock):
        fake_provider.add_subscription("sub_1", clock(), clock())
        fake_provider.fail_times = 2

        await gateway.cancel_subscription("sub_1", at_period_end=False)
        await gateway.cancel_subscription("sub_1", at_period_end=False)

        keys = [key for _, key in fake_provider.idempotency_keys]
        assert len(keys) == 4
        assert keys[0] == keys[1] == keys[2]
        assert keys[0].startswith("canvascue-cancel_subscription-")
        assert keys[3] != keys[0]

    @pytest.mark.asyncio
    async def test_timed_out_checkout_is_resent_with_same_key(self, fake_provider):
        fake_provider.delay = 0.5
        gateway = BillingGateway(
            fake_provider,
            retry_config=RetryConfig(max_attempts=2, initial_delay=0.01),
            timeout=0.02,
            sleep=_skip_sleep,
        )
        request = CheckoutRequest(
            customer_id="cus_1",
            price_id="price_starter_monthly",
            success_url="https://app.test/ok",
            cancel_url="https://app.test/cancel",
        )

        with pytest.raises(TransientError, match="timed out"):
            await gateway.create_checkout_session(request)

        assert [name for name, _ in fake_provider.idempotency_keys] == [
            "create_checkout_session",
            "create_checkout_session",
        ]
        assert len({key for _, key in fake_provider.idempotency_keys}) == 1

    def test_build_gateway_from_settings(self, fake_provider):
        settings = Settings(BILLING_RETRY_MAX_ATTEMPTS=5, BILLING_PROVIDER_TIMEOUT_SECONDS=3.0)

        gateway = build_billing_gateway(settings, provider=fake_provider)

        assert gateway.provider is fake_provider
        assert gateway.retry_config.max_attempts == 5
        assert gateway.timeout == 3.0


class TestStripeBillingProvider:
    """Tests for the Stripe SDK mapping."""

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            StripeBillingProvider("")

    @pytest.mark.asyncio
    async def test_update_subscription_swaps_price(self):
        provider = StripeBillingProvider("sk_test_123")
        returned = stripe_subscription()
        returned["items"]["data"][0]["price"]["id"] = "price_professional_monthly"

        with patch("stripe.Subscription.modify", return_value=returned) as modify:
            remote = await provider.update_subscription(
                "sub_1", "price_professional_monthly", item_id="si_1"
            )

        modify.assert_called_once_with(
            "sub_1",
            api_key="sk_test_123",
            items=[{"id": "si_1", "price": "price_professional_monthly"}],
            proration_behavior="create_prorations",
        )
        assert remote.price_id == "price_professional_monthly"
        assert remote.item_id == "si_1"
        assert remote.current_period_start == datetime(2024, 3, 15, 12, 0)
        assert remote.current_period_end == datetime(2024, 4, 15, 12, 0)

    @pytest.mark.asyncio
    async def test_update_without_item_looks_it_up(self):
        provider = StripeBillingProvider("sk_test_123")

        with patch("stripe.Subscription.retrieve", return_value=stripe_subscription()) as retrieve, \
                patch("stripe.Subscription.modify", return_value=stripe_subscription()) as modify:
            await provider.update_subscription("sub_1", "price_professional_monthly")

        retrieve.assert_called_once_with("sub_1", api_key="sk_test_123")
        assert modify.call_args.kwargs["items"] == [
            {"id": "si_1", "price": "price_professional_monthly"}
        ]

    @pytest.mark.asyncio
    async def test_cancel_at_period_end_and_immediately(self):
        provider = StripeBillingProvider("sk_test_123")

        with patch(
            "stripe.Subscription.modify",
            return_value=stripe_subscription(cancel_at_period_end=True),
        ) as modify:
            remote = await provider.cancel_subscription("sub_1")
        modify.assert_called_once_with("sub_1", api_key="sk_test_123", cancel_at_period_end=True)
        assert remote.cancel_at_period_end is True

        with patch(
            "stripe.Subscription.cancel",
            return_value=stripe_subscription(status="canceled"),
        ) as cancel:
            remote = await provider.cancel_subscription("sub_1", at_period_end=False)
        cancel.assert_called_once_with("sub_1", api_key="sk_test_123")
        assert remote.status == "canceled"

    @pytest.mark.asyncio
    async def test_idempotency_key_is_forwarded_to_stripe(self):
        provider = StripeBillingProvider("sk_test_123")

        with patch(
            "stripe.Subscription.cancel",
            return_value=stripe_subscription(status="canceled"),
        ) as cancel:
            await provider.cancel_subscription(
                "sub_1", at_period_end=False, idempotency_key="canvascue-cancel-1"
            )
        cancel.assert_called_once_with(
            "sub_1", api_key="sk_test_123", idempotency_key="canvascue-cancel-1"
        )

        with patch("stripe.Subscription.modify", return_value=stripe_subscription()) as modify:
            await provider.update_subscription(
                "sub_1", "price_professional_monthly", item_id="si_1", idempotency_key="canvascue-update-1"
            )
        assert modify.call_args.kwargs["idempotency_key"] == "canvascue-update-1"

    @pytest.mark.asyncio
    async def test_period_on_subscription_takes_precedence(self):
        provider = StripeBillingProvider("sk_test_123")
        returned = stripe_subscription(
            current_period_start=APRIL_15_NOON,
            current_period_end=APRIL_15_NOON + 30 * 86400,
            status="trialing",
            trial_end=APRIL_15_NOON,
        )

        with patch("stripe.Subscription.retrieve", return_value=returned):
            remote = await provider.retrieve_subscription("sub_1")

        assert remote.current_period_start == datetime(2024, 4, 15, 12, 0)
        assert remote.current_period_end == datetime(2024, 5, 15, 12, 0)
        assert remote.trial_end == datetime(2024, 4, 15, 12, 0)
        assert remote.trial_start is None

    @pytest.mark.asyncio
    async def test_checkout_session(self):
        provider = StripeBillingProvider("sk_test_123")
        request = CheckoutRequest(
            customer_id="cus_1",
            price_id="price_starter_monthly",
            success_url="https://app.test/ok",
            cancel_url="https://app.test/cancel",
            trial_days=7,
            metadata={"user_id": "u1"},
        )

        with patch(
            "stripe.checkout.Session.create",
            return_value={"id": "cs_1", "url": "https://checkout.stripe.test/cs_1"},
        ) as create:
            session = await provider.create_checkout_session(request, idempotency_key="canvascue-checkout-1")

        assert session.session_id == "cs_1"
        assert session.url == "https://checkout.stripe.test/cs_1"
        kwargs = create.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_starter_monthly", "quantity": 1}]
        assert kwargs["subscription_data"] == {"trial_period_days": 7}
        assert kwargs["metadata"] == {"user_id": "u1"}
        assert kwargs["idempotency_key"] == "canvascue-checkout-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            stripe.APIConnectionError("connection reset"),
            stripe.RateLimitError("slow down"),
            stripe.APIError("internal error"),
        ],
    )
    async def test_retryable_stripe_errors(self, error):
        provider = StripeBillingProvider("sk_test_123")

        with patch("stripe.Subscription.retrieve", side_effect=error):
            with pytest.raises(TransientError):
                await provider.retrieve_subscription("sub_1")

    @pytest.mark.asyncio
    async def test_invalid_request_is_a_provider_error(self):
        provider = StripeBillingProvider("sk_test_123")
        error = stripe.InvalidRequestError(
            "No such subscription: 'sub_x'", "id", code="resource_missing"
        )

        with patch("stripe.Subscription.retrieve", side_effect=error):
            with pytest.raises(ProviderError) as exc_info:
                await provider.retrieve_subscription("sub_x")

        assert exc_info.value.code == "resource_missing"
        assert "No such subscription" in str(exc_info.value)
