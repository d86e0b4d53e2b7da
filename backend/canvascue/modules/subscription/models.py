"""Subscription account model.

One row per purchased subscription. A user holds at most one row in a live
status (active or trialing); canceled and expired rows are kept for history.
Status changes go through the transition methods, which consult
``ALLOWED_TRANSITIONS``.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from canvascue.core.database import Base, utcnow
from canvascue.modules.subscription.errors import (
    InvalidTransitionError,
    UnresolvedReferenceError,
)
from canvascue.modules.tiers.models import BillingPeriod

if TYPE_CHECKING:
    from canvascue.modules.tiers.models import SubscriptionTier


class SubscriptionStatus(str, Enum):
    """Subscription status values."""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    PAUSED = "paused"
    CANCELED = "canceled"
    EXPIRED = "expired"


class PaymentStatus(str, Enum):
    """Outcome of the most recent payment attempt."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


LIVE_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})

ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.ACTIVE: frozenset({
        SubscriptionStatus.PAUSED,
        SubscriptionStatus.CANCELED,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.TRIALING: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.PAST_DUE: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.PAUSED: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
    }),
    SubscriptionStatus.CANCELED: frozenset(),
    SubscriptionStatus.EXPIRED: frozenset(),
}


def can_transition(from_status: SubscriptionStatus, to_status: SubscriptionStatus) -> bool:
    """Check a status change against the transition table."""
    return SubscriptionStatus(to_status) in ALLOWED_TRANSITIONS[SubscriptionStatus(from_status)]


@dataclass(frozen=True)
class UsageSnapshot:
    """Usage counters as last read from the database."""
    designs_used_this_month: int
    active_design_requests: int
    last_reset_at: Optional[datetime]


class Subscription(Base):
    """User subscription account."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        # At most one live subscription per user
        Index(
            "uq_subscriptions_live_user",
            "user_id",
            unique=True,
            sqlite_where=text("status IN ('active', 'trialing')"),
            postgresql_where=text("status IN ('active', 'trialing')"),
        ),
        Index("ix_subscriptions_user_status", "user_id", "status"),
        Index("ix_subscriptions_next_billing_status", "next_billing_date", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )

    # Ownership
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    tier_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("subscription_tiers.id"), nullable=False
    )

    # Billing
    billing_period: Mapped[str] = mapped_column(
        String(20), default=BillingPeriod.MONTHLY.value, nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # Status
    status: Mapped[str] = mapped_column(
        String(20), default=SubscriptionStatus.ACTIVE.value, nullable=False, index=True
    )

    # Usage
    designs_used_this_month: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active_design_requests: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    usage_last_reset_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    # Dates
    start_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    current_period_start: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    current_period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    next_billing_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Cancellation
    canceled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False)

    # Pause
    paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resume_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Trial
    trial_start: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    trial_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Billing provider integration
    provider_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    provider_subscription_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )
    provider_subscription_item_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )

    # Payment history
    last_payment_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_payment_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_payment_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    failed_payment_attempts: Mapped[int] = mapped_column(Integer, default=0)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, "
            f"status={self.status})>"
        )

    @property
    def period(self) -> BillingPeriod:
        return BillingPeriod(self.billing_period)

    @property
    def usage(self) -> UsageSnapshot:
        return UsageSnapshot(
            designs_used_this_month=self.designs_used_this_month or 0,
            active_design_requests=self.active_design_requests or 0,
            last_reset_at=self.usage_last_reset_at,
        )

    # ==================== Predicates ====================

    def is_active(self) -> bool:
        """Check if subscription is active or trialing."""
        return self.status in (s.value for s in LIVE_STATUSES)

    def is_in_trial(self, now: datetime) -> bool:
        """Check if subscription is trialing and the trial has not ended."""
        if not self.trial_end:
            return False
        return self.status == SubscriptionStatus.TRIALING.value and now < self.trial_end

    def _require_tier(self, tier: Optional["SubscriptionTier"]) -> "SubscriptionTier":
        if tier is None:
            raise UnresolvedReferenceError(
                f"Tier {self.tier_id} must be loaded before checking quotas"
            )
        if tier.id != self.tier_id:
            raise UnresolvedReferenceError(
                f"Tier {tier.id} is not the tier of subscription {self.id} ({self.tier_id})"
            )
        return tier

    def has_reached_monthly_limit(self, tier: Optional["SubscriptionTier"]) -> bool:
        """Check if this month's design quota is used up.

        Raises:
            UnresolvedReferenceError: If ``tier`` is missing or not this account's tier
        """
        tier = self._require_tier(tier)
        return self.usage.designs_used_this_month >= tier.designs_per_month

    def can_add_concurrent_request(self, tier: Optional["SubscriptionTier"]) -> bool:
        """Check if another design request may be open at the same time.

        Raises:
            UnresolvedReferenceError: If ``tier`` is missing or not this account's tier
        """
        tier = self._require_tier(tier)
        return self.usage.active_design_requests < tier.simultaneous_designs

    # ==================== Lifecycle ====================

    def transition_to(self, new_status: SubscriptionStatus) -> SubscriptionStatus:
        """Move to ``new_status`` if the transition table allows it.

        Returns:
            The previous status

        Raises:
            InvalidTransitionError: If the change is not allowed
        """
        current = SubscriptionStatus(self.status)
        new_status = SubscriptionStatus(new_status)
        if not can_transition(current, new_status):
            raise InvalidTransitionError(current.value, new_status.value)
        self.status = new_status.value
        return current

    def cancel(
        self,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
        at_period_end: bool = False,
    ) -> bool:
        """Cancel the subscription.

        A second cancel keeps the original timestamp and reason.

        Returns:
            True if the status changed, False if already canceled
        """
        if self.status == SubscriptionStatus.CANCELED.value:
            return False
        self.transition_to(SubscriptionStatus.CANCELED)
        self.canceled_at = now or utcnow()
        self.cancellation_reason = reason
        self.cancel_at_period_end = at_period_end
        return True

    def pause(self, resume_date: Optional[datetime] = None, now: Optional[datetime] = None) -> None:
        """Pause an active subscription.

        Raises:
            InvalidTransitionError: If the subscription is not active
        """
        if self.status != SubscriptionStatus.ACTIVE.value:
            raise InvalidTransitionError(
                self.status,
                SubscriptionStatus.PAUSED.value,
                "Only active subscriptions can be paused",
            )
        self.transition_to(SubscriptionStatus.PAUSED)
        self.paused_at = now or utcnow()
        self.resume_date = resume_date

    def resume(self) -> None:
        """Resume a paused subscription.

        Raises:
            InvalidTransitionError: If the subscription is not paused
        """
        if self.status != SubscriptionStatus.PAUSED.value:
            raise InvalidTransitionError(
                self.status,
                SubscriptionStatus.ACTIVE.value,
                "Subscription is not paused",
            )
        self.transition_to(SubscriptionStatus.ACTIVE)
        self.paused_at = None
        self.resume_date = None

    def mark_past_due(self) -> None:
        self.transition_to(SubscriptionStatus.PAST_DUE)

    def expire(self) -> None:
        self.transition_to(SubscriptionStatus.EXPIRED)

    def reactivate(self) -> None:
        """Return a past-due subscription to active after a successful payment."""
        if self.status != SubscriptionStatus.PAST_DUE.value:
            raise InvalidTransitionError(
                self.status,
                SubscriptionStatus.ACTIVE.value,
                "Only past due subscriptions can be reactivated",
            )
        self.transition_to(SubscriptionStatus.ACTIVE)
