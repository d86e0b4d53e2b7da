"""Usage accounting for subscription quotas.

Enforces the monthly design quota and the simultaneous request quota of a
subscription's tier. All quota checks are folded into the database write
itself; see ``SubscriptionRepository``.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

from canvascue.core.database import utcnow
from canvascue.core.logging import log_quota_rejection
from canvascue.core.metrics import (
    DESIGN_USAGE_INCREMENTS_TOTAL,
    MONTHLY_USAGE_RESETS_TOTAL,
    QUOTA_REJECTIONS_TOTAL,
    USAGE_CAS_CONFLICTS_TOTAL,
)
from canvascue.core.retry import RetryConfig, retry_async
from canvascue.core.tracing import usage_span
from canvascue.modules.subscription.errors import (
    QuotaExceededError,
    QuotaKind,
    StaleUsageError,
    UnresolvedReferenceError,
)
from canvascue.modules.subscription.models import Subscription
from canvascue.modules.subscription.projector import month_bounds
from canvascue.modules.subscription.repository import SubscriptionRepository
from canvascue.modules.tiers.models import SubscriptionTier

logger = logging.getLogger(__name__)


class ActiveRequestCounter(Protocol):
    """Counts a user's design requests in a non-terminal status."""

    async def count_active(self, user_id: uuid.UUID) -> int:
        ...


@dataclass(frozen=True)
class UsageSummary:
    """Usage against quota, as shown on the client dashboard."""
    designs_used: int
    designs_limit: int
    designs_remaining: int
    active_requests: int
    active_requests_limit: int
    has_reached_monthly_limit: bool
    can_add_request: bool
    last_reset_at: Optional[datetime]


class UsageAccounting:
    """Quota-enforcing usage mutations for one subscription at a time."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        clock: Callable[[], datetime] = utcnow,
        cas_retry: Optional[RetryConfig] = None,
    ):
        self.repository = repository
        self.clock = clock
        self.cas_retry = cas_retry or RetryConfig(
            max_attempts=3, initial_delay=0.01, max_delay=0.1
        )

    @staticmethod
    def _check_tier(subscription: Subscription, tier: Optional[SubscriptionTier]) -> SubscriptionTier:
        if tier is None or tier.id != subscription.tier_id:
            raise UnresolvedReferenceError(
                f"Subscription {subscription.id} requires its tier {subscription.tier_id}"
            )
        return tier

    async def reset_monthly_usage_if_due(self, subscription: Subscription) -> bool:
        """Zero this month's design usage on the first touch of a new calendar month.

        The check compares calendar month and year only: an account not
        touched for two months is reset once, not twice.

        Returns:
            True if the counter was reset by this call
        """
        now = self.clock()
        month_start, next_month_start = month_bounds(now)
        reset = await self.repository.reset_usage_if_stale(
            subscription, now, month_start, next_month_start
        )
        if reset:
            MONTHLY_USAGE_RESETS_TOTAL.inc()
            logger.info(f"Monthly usage reset for subscription {subscription.id}")
        return reset

    @staticmethod
    def _rejection(
        subscription: Subscription, kind: QuotaKind, used: int, limit: int
    ) -> QuotaExceededError:
        QUOTA_REJECTIONS_TOTAL.labels(kind=kind.value).inc()
        log_quota_rejection(logger, subscription.id, kind.value, used, limit)
        return QuotaExceededError(kind, used=used, limit=limit)

    async def increment_design_usage(
        self, subscription: Subscription, tier: SubscriptionTier
    ) -> int:
        """Consume one design from this month's quota.

        Returns:
            The new monthly design count

        Raises:
            QuotaExceededError: If the monthly quota is used up
        """
        tier = self._check_tier(subscription, tier)
        limit_attr = {"quota.limit": tier.designs_per_month}
        with usage_span("increment_design", subscription, **limit_attr) as span:
            await self.reset_monthly_usage_if_due(subscription)

            new_count = await self.repository.increment_designs_used(
                subscription, tier.designs_per_month
            )
            if new_count is None:
                span.set_attribute("quota.rejected", True)
                raise self._rejection(
                    subscription,
                    QuotaKind.MONTHLY,
                    subscription.designs_used_this_month,
                    tier.designs_per_month,
                )
            span.set_attribute("quota.used", new_count)

        DESIGN_USAGE_INCREMENTS_TOTAL.inc()
        return new_count

    async def release_design_usage(self, subscription: Subscription) -> int:
        """Return one design to this month's quota after a request was rolled back."""
        with usage_span("release_design", subscription):
            new_count = await self.repository.decrement_designs_used(subscription)
        if new_count is None:
            return 0
        logger.info(f"Released one design of subscription {subscription.id} ({new_count} used)")
        return new_count

    def ensure_concurrent_capacity(self, subscription: Subscription, tier: SubscriptionTier) -> None:
        """Reject a new request when every simultaneous slot is taken.

        Raises:
            QuotaExceededError: If no slot is free
        """
        tier = self._check_tier(subscription, tier)
        if not subscription.can_add_concurrent_request(tier):
            raise self._rejection(
                subscription,
                QuotaKind.CONCURRENT,
                subscription.active_design_requests,
                tier.simultaneous_designs,
            )

    async def set_active_request_count(
        self,
        subscription: Subscription,
        tier: SubscriptionTier,
        count: int,
        expected: Optional[int] = None,
        enforce_quota: bool = True,
    ) -> int:
        """Overwrite the active request count with a freshly counted value.

        The write only applies if the stored count still equals ``expected``
        (by default the value last read into ``subscription``). Without
        ``enforce_quota`` a count above the tier limit is stored as is, which
        happens after a downgrade while older requests are still open.

        Raises:
            QuotaExceededError: If ``count`` exceeds the simultaneous quota
            StaleUsageError: If another writer changed the count first
        """
        tier = self._check_tier(subscription, tier)
        if count < 0:
            raise ValueError("Active request count cannot be negative")
        if enforce_quota and count > tier.simultaneous_designs:
            raise self._rejection(
                subscription, QuotaKind.CONCURRENT, count, tier.simultaneous_designs
            )

        if expected is None:
            expected = subscription.active_design_requests
        swap_attrs = {"usage.expected": expected, "usage.count": count}
        with usage_span("set_active_requests", subscription, **swap_attrs):
            swapped = await self.repository.set_active_requests(subscription, count, expected)
        if not swapped:
            USAGE_CAS_CONFLICTS_TOTAL.inc()
            raise StaleUsageError(
                f"Active request count of subscription {subscription.id} changed "
                f"from {expected} to {subscription.active_design_requests}"
            )
        return count

    async def sync_active_requests(
        self,
        subscription: Subscription,
        tier: SubscriptionTier,
        counter: ActiveRequestCounter,
        enforce_quota: bool = True,
    ) -> int:
        """Recount open design requests and store the result.

        The recount is retried when a concurrent writer wins the swap.
        Pass ``enforce_quota=False`` when the caller only frees slots.
        """

        async def recount_and_store() -> int:
            expected = subscription.active_design_requests
            count = await counter.count_active(subscription.user_id)
            return await self.set_active_request_count(
                subscription, tier, count, expected=expected, enforce_quota=enforce_quota
            )

        return await retry_async(
            recount_and_store,
            config=self.cas_retry,
            retry_on=(StaleUsageError,),
            description=f"active request sync for subscription {subscription.id}",
        )

    def usage_summary(self, subscription: Subscription, tier: SubscriptionTier) -> UsageSummary:
        """Usage against quota for display."""
        tier = self._check_tier(subscription, tier)
        usage = subscription.usage
        return UsageSummary(
            designs_used=usage.designs_used_this_month,
            designs_limit=tier.designs_per_month,
            designs_remaining=max(0, tier.designs_per_month - usage.designs_used_this_month),
            active_requests=usage.active_design_requests,
            active_requests_limit=tier.simultaneous_designs,
            has_reached_monthly_limit=subscription.has_reached_monthly_limit(tier),
            can_add_request=subscription.can_add_concurrent_request(tier),
            last_reset_at=usage.last_reset_at,
        )
