"""Billing provider interface.

Defines the contract for the external payment platform that owns
recurring charges. Implementations raise ``TransientError`` for failures
worth retrying and ``ProviderError`` for everything else.

Writes accept an ``idempotency_key``: a retried call carries the key of
the first attempt, and the provider must apply it at most once.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from canvascue.modules.subscription.errors import SubscriptionError


class ProviderError(SubscriptionError):
    """Non-retryable billing provider failure (bad request, auth, not found)."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


@dataclass
class CheckoutRequest:
    """Data for a hosted checkout of a new subscription."""
    customer_id: str
    price_id: str
    success_url: str
    cancel_url: str
    trial_days: Optional[int] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class CheckoutSession:
    """Result from checkout session creation."""
    session_id: str
    url: Optional[str]


@dataclass
class ProviderSubscription:
    """Subscription state as reported by the billing provider."""
    id: str
    customer_id: Optional[str]
    status: str
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool = False
    price_id: Optional[str] = None
    item_id: Optional[str] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None


class BillingProvider(ABC):
    """Abstract interface for billing provider implementations."""

    @abstractmethod
    async def create_checkout_session(
        self, request: CheckoutRequest, idempotency_key: Optional[str] = None
    ) -> CheckoutSession:
        """Create a hosted checkout session for a new subscription."""
        pass

    @abstractmethod
    async def update_subscription(
        self,
        subscription_id: str,
        price_id: str,
        item_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> ProviderSubscription:
        """Switch a subscription to another price, prorating on the provider side."""
        pass

    @abstractmethod
    async def cancel_subscription(
        self,
        subscription_id: str,
        at_period_end: bool = True,
        idempotency_key: Optional[str] = None,
    ) -> ProviderSubscription:
        """Cancel immediately or at the end of the current period."""
        pass

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        """Fetch the provider's view of a subscription."""
        pass
