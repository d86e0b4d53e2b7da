"""Stripe implementation of the billing provider.

The Stripe SDK is synchronous; calls run in a worker thread so the event
loop keeps serving other handlers while Stripe answers.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import stripe

from canvascue.core.retry import TransientError
from canvascue.modules.billing.provider import (
    BillingProvider,
    CheckoutRequest,
    CheckoutSession,
    ProviderError,
    ProviderSubscription,
)

logger = logging.getLogger(__name__)


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or plain dict."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


class StripeBillingProvider(BillingProvider):
    """Billing provider backed by Stripe subscriptions and Checkout."""

    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError("STRIPE_SECRET_KEY is not configured")
        self.api_key = api_key

    async def _call(self, func, *args, idempotency_key: Optional[str] = None, **kwargs):
        """Run a Stripe SDK call in a thread, classifying its errors."""
        if idempotency_key:
            kwargs["idempotency_key"] = idempotency_key
        try:
            return await asyncio.to_thread(func, *args, api_key=self.api_key, **kwargs)
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            raise TransientError(f"Stripe unavailable: {e.user_message or e}") from e
        except stripe.APIError as e:
            # 5xx from Stripe
            raise TransientError(f"Stripe error: {e.user_message or e}") from e
        except stripe.StripeError as e:
            raise ProviderError(str(e.user_message or e), code=e.code) from e

    # ==================== Checkout ====================

    async def create_checkout_session(
        self, request: CheckoutRequest, idempotency_key: Optional[str] = None
    ) -> CheckoutSession:
        params = {
            "customer": request.customer_id,
            "line_items": [{"price": request.price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
            "metadata": request.metadata,
        }
        if request.trial_days:
            params["subscription_data"] = {"trial_period_days": request.trial_days}

        session = await self._call(
            stripe.checkout.Session.create, idempotency_key=idempotency_key, **params
        )
        return CheckoutSession(session_id=_get(session, "id"), url=_get(session, "url"))

    # ==================== Subscriptions ====================

    async def update_subscription(
        self,
        subscription_id: str,
        price_id: str,
        item_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> ProviderSubscription:
        if item_id is None:
            current = await self.retrieve_subscription(subscription_id)
            item_id = current.item_id

        subscription = await self._call(
            stripe.Subscription.modify,
            subscription_id,
            items=[{"id": item_id, "price": price_id}],
            proration_behavior="create_prorations",
            idempotency_key=idempotency_key,
        )
        return self._to_provider_subscription(subscription)

    async def cancel_subscription(
        self,
        subscription_id: str,
        at_period_end: bool = True,
        idempotency_key: Optional[str] = None,
    ) -> ProviderSubscription:
        if at_period_end:
            subscription = await self._call(
                stripe.Subscription.modify,
                subscription_id,
                cancel_at_period_end=True,
                idempotency_key=idempotency_key,
            )
        else:
            subscription = await self._call(
                stripe.Subscription.cancel, subscription_id, idempotency_key=idempotency_key
            )
        return self._to_provider_subscription(subscription)

    async def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        subscription = await self._call(stripe.Subscription.retrieve, subscription_id)
        return self._to_provider_subscription(subscription)

    def _to_provider_subscription(self, sub: Any) -> ProviderSubscription:
        """Convert a Stripe subscription into a ProviderSubscription.

        Newer API versions moved the period fields onto the subscription
        item, so both places are checked.
        """
        items = _get(_get(sub, "items"), "data", [])
        item = items[0] if items else None

        period_start = _get(sub, "current_period_start") or _get(item, "current_period_start")
        period_end = _get(sub, "current_period_end") or _get(item, "current_period_end")

        return ProviderSubscription(
            id=_get(sub, "id"),
            customer_id=_get(sub, "customer"),
            status=_get(sub, "status"),
            current_period_start=_from_timestamp(period_start),
            current_period_end=_from_timestamp(period_end),
            cancel_at_period_end=bool(_get(sub, "cancel_at_period_end", False)),
            price_id=_get(_get(item, "price"), "id"),
            item_id=_get(item, "id"),
            trial_start=_from_timestamp(_get(sub, "trial_start")),
            trial_end=_from_timestamp(_get(sub, "trial_end")),
        )
