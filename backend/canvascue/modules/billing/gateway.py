"""Billing gateway: the resilient front of a billing provider.

Every provider call runs inside a tracing span, under a per-attempt
timeout, and is retried with exponential backoff on ``TransientError``.
A timed-out attempt may still complete at the provider, so every write
sends one idempotency key for all of its attempts.
Outcomes and latency are exported as Prometheus metrics.
"""

import logging
import time
import uuid
from typing import Awaitable, Callable, Optional, TypeVar

from canvascue.core.config import Settings
from canvascue.core.logging import log_error
from canvascue.core.metrics import (
    BILLING_PROVIDER_CALL_DURATION_SECONDS,
    BILLING_PROVIDER_CALLS_TOTAL,
)
from canvascue.core.retry import RetryConfig, TransientError, retry_async
from canvascue.core.tracing import billing_span, record_exception
from canvascue.modules.billing.provider import (
    BillingProvider,
    CheckoutRequest,
    CheckoutSession,
    ProviderSubscription,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BillingGateway:
    """Wraps a BillingProvider with timeout, retry, tracing and metrics."""

    def __init__(
        self,
        provider: BillingProvider,
        retry_config: Optional[RetryConfig] = None,
        timeout: Optional[float] = 10.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.provider = provider
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self._sleep = sleep

    async def _invoke(self, operation: str, call: Callable[[], Awaitable[T]], **attributes) -> T:
        retry_kwargs = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep

        start = time.perf_counter()
        with billing_span(operation, **attributes):
            try:
                result = await retry_async(
                    call,
                    config=self.retry_config,
                    retry_on=(TransientError,),
                    timeout=self.timeout,
                    description=f"billing provider {operation}",
                    **retry_kwargs,
                )
            except TransientError as e:
                BILLING_PROVIDER_CALLS_TOTAL.labels(operation=operation, status="transient_error").inc()
                record_exception(e)
                log_error(
                    logger,
                    f"Billing provider {operation} gave up: {e}",
                    billing_operation=operation,
                    attempts=self.retry_config.max_attempts,
                )
                raise
            except Exception as e:
                BILLING_PROVIDER_CALLS_TOTAL.labels(operation=operation, status="error").inc()
                record_exception(e)
                log_error(
                    logger,
                    f"Billing provider {operation} failed",
                    exception=e,
                    billing_operation=operation,
                )
                raise
            finally:
                BILLING_PROVIDER_CALL_DURATION_SECONDS.labels(operation=operation).observe(
                    time.perf_counter() - start
                )

        BILLING_PROVIDER_CALLS_TOTAL.labels(operation=operation, status="success").inc()
        return result

    @staticmethod
    def _idempotency_key(operation: str) -> str:
        return f"canvascue-{operation}-{uuid.uuid4().hex}"

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        key = self._idempotency_key("create_checkout_session")
        return await self._invoke(
            "create_checkout_session",
            lambda: self.provider.create_checkout_session(request, idempotency_key=key),
            **{"billing.idempotency_key": key},
        )

    async def update_subscription(
        self,
        subscription_id: str,
        price_id: str,
        item_id: Optional[str] = None,
    ) -> ProviderSubscription:
        key = self._idempotency_key("update_subscription")
        return await self._invoke(
            "update_subscription",
            lambda: self.provider.update_subscription(
                subscription_id, price_id, item_id, idempotency_key=key
            ),
            **{"billing.subscription_id": subscription_id, "billing.idempotency_key": key},
        )

    async def cancel_subscription(
        self,
        subscription_id: str,
        at_period_end: bool = True,
    ) -> ProviderSubscription:
        key = self._idempotency_key("cancel_subscription")
        return await self._invoke(
            "cancel_subscription",
            lambda: self.provider.cancel_subscription(
                subscription_id, at_period_end, idempotency_key=key
            ),
            **{"billing.subscription_id": subscription_id, "billing.idempotency_key": key},
        )

    async def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        return await self._invoke(
            "retrieve_subscription",
            lambda: self.provider.retrieve_subscription(subscription_id),
            **{"billing.subscription_id": subscription_id},
        )


def build_billing_gateway(
    settings: Settings,
    provider: Optional[BillingProvider] = None,
) -> BillingGateway:
    """Create a gateway from settings, defaulting to the Stripe provider."""
    if provider is None:
        from canvascue.modules.billing.stripe_provider import StripeBillingProvider

        provider = StripeBillingProvider(settings.STRIPE_SECRET_KEY)

    return BillingGateway(
        provider,
        retry_config=RetryConfig.from_settings(settings),
        timeout=settings.BILLING_PROVIDER_TIMEOUT_SECONDS,
    )
