"""Subscription service.

Orchestrates subscription accounts for request handlers: activation after
checkout, plan changes with proration, cancellation, pause and resume,
payment bookkeeping, and quota-checked design request creation.

The billing provider is only reached through the injected gateway; every
mutating operation persists the account before returning.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from canvascue.core.config import Settings
from canvascue.core.database import utcnow
from canvascue.core.logging import account_context, bind_account, log_info
from canvascue.core.numbering import NumberTakenError
from canvascue.core.metrics import SUBSCRIPTION_TRANSITIONS_TOTAL
from canvascue.core.retry import RetryConfig
from canvascue.modules.billing.gateway import BillingGateway
from canvascue.modules.billing.provider import CheckoutRequest
from canvascue.modules.design_requests.models import (
    DesignCategory,
    DesignRequest,
    DesignRequestStatus,
)
from canvascue.modules.design_requests.repository import DesignRequestRepository
from canvascue.modules.subscription.accounting import UsageAccounting
from canvascue.modules.subscription.errors import (
    ActiveSubscriptionExistsError,
    CustomTierError,
    InvalidTransitionError,
    NotFoundError,
    QuotaExceededError,
)
from canvascue.modules.subscription.models import (
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
)
from canvascue.modules.subscription.projector import (
    BillingCycleProjector,
    ProrationQuote,
    add_months,
    to_money,
)
from canvascue.modules.subscription.repository import SubscriptionRepository
from canvascue.modules.subscription.schemas import (
    CheckoutResponse,
    SubscriptionSummary,
    UsageResponse,
)
from canvascue.modules.tiers.catalog import TierCatalog
from canvascue.modules.tiers.models import BillingPeriod, SubscriptionTier

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Service for subscription lifecycle and quota-checked usage."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: BillingGateway,
        clock: Callable[[], datetime] = utcnow,
        app_url: str = "http://localhost:3000",
        usage_cas_max_attempts: int = 3,
        expiring_soon_days: int = 7,
    ):
        self.session = session
        self.gateway = gateway
        self.clock = clock
        self.app_url = app_url.rstrip("/")
        self.expiring_soon_days = expiring_soon_days
        write_retry = RetryConfig(
            max_attempts=usage_cas_max_attempts,
            initial_delay=0.01,
            max_delay=0.1,
        )
        self.subscription_repo = SubscriptionRepository(session)
        self.request_repo = DesignRequestRepository(session, number_retry=write_retry)
        self.catalog = TierCatalog(session)
        self.projector = BillingCycleProjector(clock)
        self.accounting = UsageAccounting(
            self.subscription_repo,
            clock=clock,
            cas_retry=write_retry,
        )

    @classmethod
    def from_settings(
        cls,
        session: AsyncSession,
        gateway: BillingGateway,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> "SubscriptionService":
        return cls(
            session,
            gateway,
            clock=clock,
            app_url=settings.APP_URL,
            usage_cas_max_attempts=settings.USAGE_CAS_MAX_ATTEMPTS,
            expiring_soon_days=settings.EXPIRING_SOON_DAYS,
        )

    @staticmethod
    def _record_transition(from_status: str, to_status: str) -> None:
        SUBSCRIPTION_TRANSITIONS_TOTAL.labels(
            from_status=from_status, to_status=to_status
        ).inc()
        log_info(
            logger,
            f"Subscription status {from_status} -> {to_status}",
            from_status=from_status,
            to_status=to_status,
        )

    async def _reload_expired(self, *rows) -> None:
        """Reload rows expired by a rollback inside a repository call."""
        for row in rows:
            if inspect(row).expired:
                await self.session.refresh(row)

    # ==================== Lookups ====================

    async def get_active_account(
        self, user_id: uuid.UUID
    ) -> tuple[Subscription, SubscriptionTier]:
        """Get the user's live subscription together with its tier.

        Records logged for the rest of the call carry the account ids.

        Raises:
            NotFoundError: If the user has no active or trialing subscription
        """
        subscription = await self.subscription_repo.get_active_by_user(user_id)
        if subscription is None:
            raise NotFoundError("Active subscription", user_id)
        bind_account(user_id, subscription.id)
        tier = await self.catalog.get_tier_by_id(subscription.tier_id)
        return subscription, tier

    async def _get_purchasable_tier(self, tier_id: uuid.UUID) -> SubscriptionTier:
        tier = await self.catalog.get_tier_by_id(tier_id)
        if not tier.is_active:
            raise NotFoundError("SubscriptionTier", tier_id)
        if tier.is_custom:
            raise CustomTierError(
                tier.custom_message or "Please contact sales for custom pricing"
            )
        return tier

    # ==================== Checkout & Activation ====================

    async def start_checkout(
        self,
        user_id: uuid.UUID,
        customer_id: str,
        tier_id: uuid.UUID,
        billing_period: BillingPeriod,
    ) -> CheckoutResponse:
        """Create a hosted checkout session for a new subscription.

        Raises:
            CustomTierError: If the tier is contact-sales only
            ActiveSubscriptionExistsError: If the user already has a live subscription
        """
        billing_period = BillingPeriod(billing_period)
        tier = await self._get_purchasable_tier(tier_id)

        if await self.subscription_repo.get_active_by_user(user_id):
            raise ActiveSubscriptionExistsError(
                f"User {user_id} already has an active subscription"
            )

        price_id = tier.provider_price_id_for(billing_period)
        if not price_id:
            raise ValueError(
                f"No provider price configured for tier {tier.name} ({billing_period.value})"
            )

        session = await self.gateway.create_checkout_session(
            CheckoutRequest(
                customer_id=customer_id,
                price_id=price_id,
                success_url=f"{self.app_url}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self.app_url}/subscription",
                metadata={
                    "user_id": str(user_id),
                    "tier_id": str(tier.id),
                    "billing_period": billing_period.value,
                },
            )
        )
        logger.info(f"Checkout session created for user {user_id}")
        return CheckoutResponse(session_id=session.session_id, checkout_url=session.url)

    async def activate_subscription(
        self,
        user_id: uuid.UUID,
        tier_id: uuid.UUID,
        billing_period: BillingPeriod,
        provider_subscription_id: str,
    ) -> Subscription:
        """Create the local subscription after a completed checkout.

        Calling again with the same provider subscription returns the
        existing account.

        Raises:
            ActiveSubscriptionExistsError: If the user already has another live subscription
        """
        existing = await self.subscription_repo.get_by_provider_subscription_id(
            provider_subscription_id
        )
        if existing is not None:
            return existing

        billing_period = BillingPeriod(billing_period)
        tier = await self._get_purchasable_tier(tier_id)

        if await self.subscription_repo.get_active_by_user(user_id):
            raise ActiveSubscriptionExistsError(
                f"User {user_id} already has an active subscription"
            )

        remote = await self.gateway.retrieve_subscription(provider_subscription_id)

        now = self.clock()
        period_start = remote.current_period_start or now
        period_end = remote.current_period_end or add_months(period_start, billing_period.months)
        status = (
            SubscriptionStatus.TRIALING
            if remote.status == SubscriptionStatus.TRIALING.value
            else SubscriptionStatus.ACTIVE
        )

        subscription = Subscription(
            user_id=user_id,
            tier_id=tier.id,
            billing_period=billing_period.value,
            amount_cents=tier.price_for(billing_period),
            currency=tier.currency,
            status=status.value,
            start_date=now,
            current_period_start=period_start,
            current_period_end=period_end,
            usage_last_reset_at=now,
            trial_start=remote.trial_start,
            trial_end=remote.trial_end,
            provider_customer_id=remote.customer_id,
            provider_subscription_id=remote.id,
            provider_subscription_item_id=remote.item_id,
        )
        subscription.next_billing_date = self.projector.next_billing_date(subscription)

        try:
            self.session.add(subscription)
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise ActiveSubscriptionExistsError(
                f"User {user_id} already has an active subscription"
            ) from e
        await self.session.refresh(subscription)

        self._record_transition("none", status.value)
        logger.info(f"Subscription created for user {user_id} on tier {tier.name}")
        return subscription

    # ==================== Plan Changes ====================

    async def quote_tier_change(
        self,
        user_id: uuid.UUID,
        tier_id: uuid.UUID,
        billing_period: BillingPeriod,
    ) -> ProrationQuote:
        """Proration for switching the user's subscription to another tier or period."""
        subscription, _ = await self.get_active_account(user_id)
        new_tier = await self._get_purchasable_tier(tier_id)
        return self.projector.calculate_proration(subscription, new_tier, billing_period)

    async def change_tier(
        self,
        user_id: uuid.UUID,
        tier_id: uuid.UUID,
        billing_period: BillingPeriod,
    ) -> tuple[Subscription, ProrationQuote]:
        """Switch the user's subscription to another tier or billing period.

        The provider is updated first; the local account only changes once
        the provider accepted the new price.
        """
        billing_period = BillingPeriod(billing_period)
        subscription, current_tier = await self.get_active_account(user_id)
        new_tier = await self._get_purchasable_tier(tier_id)
        quote = self.projector.calculate_proration(subscription, new_tier, billing_period)

        if subscription.provider_subscription_id:
            price_id = new_tier.provider_price_id_for(billing_period)
            if not price_id:
                raise ValueError(
                    f"No provider price configured for tier {new_tier.name} "
                    f"({billing_period.value})"
                )
            remote = await self.gateway.update_subscription(
                subscription.provider_subscription_id,
                price_id,
                subscription.provider_subscription_item_id,
            )
            if remote.item_id:
                subscription.provider_subscription_item_id = remote.item_id

        subscription.tier_id = new_tier.id
        subscription.billing_period = billing_period.value
        subscription.amount_cents = new_tier.price_for(billing_period)
        subscription = await self.subscription_repo.save(subscription)

        logger.info(
            f"Subscription {subscription.id} changed from {current_tier.name} to "
            f"{new_tier.name} ({billing_period.value}), proration {quote.proration}"
        )
        return subscription, quote

    # ==================== Lifecycle ====================

    async def cancel_subscription(
        self,
        user_id: uuid.UUID,
        reason: Optional[str] = None,
        immediate: bool = False,
    ) -> Subscription:
        """Cancel the user's subscription and withdraw unstarted design requests.

        Without ``immediate`` the provider stops billing at the end of the
        current period. Canceling an already canceled subscription changes
        nothing.
        """
        subscription = await self.subscription_repo.get_active_by_user(user_id)
        if subscription is None:
            subscription = await self.subscription_repo.get_latest_by_user(user_id)
        if subscription is None:
            raise NotFoundError("Subscription", user_id)

        if subscription.status == SubscriptionStatus.CANCELED.value:
            logger.warning(
                f"Subscription {subscription.id} is already canceled; keeping "
                f"cancellation from {subscription.canceled_at}"
            )
            return subscription

        previous = subscription.status
        if previous == SubscriptionStatus.EXPIRED.value:
            raise InvalidTransitionError(previous, SubscriptionStatus.CANCELED.value)

        if subscription.provider_subscription_id:
            await self.gateway.cancel_subscription(
                subscription.provider_subscription_id,
                at_period_end=not immediate,
            )

        now = self.clock()
        subscription.cancel(reason, now=now, at_period_end=not immediate)
        subscription = await self.subscription_repo.save(subscription)
        self._record_transition(previous, subscription.status)

        withdrawn = await self.request_repo.cancel_open_requests(user_id, now)
        logger.info(
            f"Subscription canceled for user {user_id} "
            f"({'immediately' if immediate else 'at period end'}), "
            f"{withdrawn} open design request(s) canceled"
        )
        return subscription

    async def pause_subscription(
        self, user_id: uuid.UUID, resume_date: Optional[datetime] = None
    ) -> Subscription:
        """Pause the user's active subscription.

        Raises:
            InvalidTransitionError: If the subscription is not active
        """
        subscription = await self.subscription_repo.get_active_by_user(user_id)
        if subscription is None:
            raise NotFoundError("Active subscription", user_id)

        previous = subscription.status
        subscription.pause(resume_date, now=self.clock())
        subscription = await self.subscription_repo.save(subscription)
        self._record_transition(previous, subscription.status)
        logger.info(f"Subscription {subscription.id} paused until {resume_date}")
        return subscription

    async def resume_subscription(self, user_id: uuid.UUID) -> Subscription:
        """Resume the user's paused subscription.

        Raises:
            InvalidTransitionError: If the subscription is not paused
        """
        subscription = await self.subscription_repo.get_latest_by_user(user_id)
        if subscription is None:
            raise NotFoundError("Subscription", user_id)

        previous = subscription.status
        subscription.resume()
        try:
            subscription = await self.subscription_repo.save(subscription)
        except IntegrityError as e:
            await self.session.rollback()
            raise ActiveSubscriptionExistsError(
                f"User {user_id} already has an active subscription"
            ) from e
        self._record_transition(previous, subscription.status)
        logger.info(f"Subscription {subscription.id} resumed")
        return subscription

    async def record_payment(
        self,
        provider_subscription_id: str,
        amount_cents: int,
        succeeded: bool,
        period_end: Optional[datetime] = None,
    ) -> Subscription:
        """Book a payment attempt reported by the billing provider.

        A success clears failed attempts, reactivates a past due account
        and, when ``period_end`` is given, rolls the billing period forward.
        A failure counts the attempt and marks a live account past due.
        """
        subscription = await self.subscription_repo.get_by_provider_subscription_id(
            provider_subscription_id
        )
        if subscription is None:
            raise NotFoundError("Subscription", provider_subscription_id)

        with account_context(subscription.user_id, subscription.id):
            now = self.clock()
            previous = subscription.status
            subscription.last_payment_at = now
            subscription.last_payment_amount_cents = amount_cents

            if succeeded:
                subscription.last_payment_status = PaymentStatus.SUCCEEDED.value
                subscription.failed_payment_attempts = 0
                if previous == SubscriptionStatus.PAST_DUE.value:
                    subscription.reactivate()
                if period_end is not None and period_end > subscription.current_period_end:
                    subscription.current_period_start = subscription.current_period_end
                    subscription.current_period_end = period_end
                    subscription.next_billing_date = self.projector.next_billing_date(subscription)
            else:
                subscription.last_payment_status = PaymentStatus.FAILED.value
                subscription.failed_payment_attempts = (subscription.failed_payment_attempts or 0) + 1
                if subscription.is_active():
                    subscription.mark_past_due()
                logger.warning(
                    f"Payment failed for subscription {subscription.id} "
                    f"(attempt {subscription.failed_payment_attempts})"
                )

            subscription = await self.subscription_repo.save(subscription)
            if subscription.status != previous:
                self._record_transition(previous, subscription.status)
            return subscription

    # ==================== Design Requests ====================

    async def open_design_request(
        self,
        user_id: uuid.UUID,
        title: str,
        description: str,
        category: str = DesignCategory.OTHER.value,
    ) -> DesignRequest:
        """Submit a design request against the user's quotas.

        The monthly unit is consumed atomically before the request exists.
        If a concurrent submission takes the last simultaneous slot first, or
        no request number can be drawn, the monthly unit is given back.

        Raises:
            QuotaExceededError: If either quota is used up
            NumberTakenError: If concurrent submissions kept taking the request number
        """
        subscription, tier = await self.get_active_account(user_id)
        category = DesignCategory(category).value

        await self.accounting.sync_active_requests(
            subscription, tier, self.request_repo, enforce_quota=False
        )
        self.accounting.ensure_concurrent_capacity(subscription, tier)

        await self.accounting.increment_design_usage(subscription, tier)

        now = self.clock()
        try:
            request = await self.request_repo.create(
                client_id=user_id,
                subscription_id=subscription.id,
                title=title,
                description=description,
                category=category,
                now=now,
            )
        except NumberTakenError:
            await self._reload_expired(subscription)
            await self.accounting.release_design_usage(subscription)
            raise
        await self._reload_expired(subscription, tier)

        try:
            await self.accounting.sync_active_requests(subscription, tier, self.request_repo)
        except QuotaExceededError:
            await self.request_repo.update_status(request, DesignRequestStatus.CANCELED, now)
            await self.accounting.release_design_usage(subscription)
            raise

        logger.info(f"Design request {request.request_number} created for user {user_id}")
        return request

    async def close_design_request(
        self,
        user_id: uuid.UUID,
        request_id: uuid.UUID,
        status: DesignRequestStatus = DesignRequestStatus.COMPLETED,
    ) -> DesignRequest:
        """Complete or cancel a design request and free its simultaneous slot.

        The stored active count is corrected even when it stays above the
        tier limit, as after a downgrade with older requests still open.
        """
        status = DesignRequestStatus(status)
        if status not in (DesignRequestStatus.COMPLETED, DesignRequestStatus.CANCELED):
            raise ValueError(f"Cannot close a design request as {status.value}")

        request = await self.request_repo.get_by_id(request_id)
        if request is None or request.client_id != user_id:
            raise NotFoundError("DesignRequest", request_id)

        request = await self.request_repo.update_status(request, status, self.clock())

        subscription = await self.subscription_repo.get_active_by_user(user_id)
        if subscription is not None:
            tier = await self.catalog.get_tier_by_id(subscription.tier_id)
            await self.accounting.sync_active_requests(
                subscription, tier, self.request_repo, enforce_quota=False
            )
        return request

    # ==================== Reporting ====================

    async def describe(self, user_id: uuid.UUID) -> SubscriptionSummary:
        """Dashboard summary of the user's live subscription."""
        subscription, tier = await self.get_active_account(user_id)
        await self.accounting.reset_monthly_usage_if_due(subscription)
        usage = self.accounting.usage_summary(subscription, tier)

        return SubscriptionSummary(
            id=subscription.id,
            user_id=subscription.user_id,
            tier_id=tier.id,
            tier_name=tier.name,
            tier_display_name=tier.display_name,
            billing_period=subscription.period,
            amount=to_money(subscription.amount_cents),
            currency=subscription.currency,
            status=SubscriptionStatus(subscription.status),
            is_active=subscription.is_active(),
            is_in_trial=subscription.is_in_trial(self.clock()),
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            next_billing_date=subscription.next_billing_date,
            days_until_next_billing=self.projector.days_until_next_billing(subscription),
            is_overdue=self.projector.is_overdue(subscription),
            cancel_at_period_end=subscription.cancel_at_period_end,
            canceled_at=subscription.canceled_at,
            paused_at=subscription.paused_at,
            resume_date=subscription.resume_date,
            usage=UsageResponse(
                designs_used_this_month=usage.designs_used,
                designs_limit=usage.designs_limit,
                designs_remaining=usage.designs_remaining,
                active_design_requests=usage.active_requests,
                active_requests_limit=usage.active_requests_limit,
                last_reset_at=usage.last_reset_at,
                has_reached_monthly_limit=usage.has_reached_monthly_limit,
                can_add_request=usage.can_add_request,
            ),
        )

    async def find_expiring_soon(self, days_ahead: Optional[int] = None) -> list[Subscription]:
        """Active subscriptions billing within ``days_ahead`` days (the configured window by default)."""
        if days_ahead is None:
            days_ahead = self.expiring_soon_days
        return await self.subscription_repo.find_expiring_soon(self.clock(), days_ahead)

    async def find_past_due(self) -> list[Subscription]:
        return await self.subscription_repo.find_past_due()
