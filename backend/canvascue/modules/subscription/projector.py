"""Billing cycle projection.

Derives time-based billing facts from a subscription and its tier without
touching the database: next billing date, days until billing, proration
on a tier change, overdue and expiry detection.
"""

import calendar
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable

from canvascue.core.database import utcnow
from canvascue.modules.subscription.models import Subscription, SubscriptionStatus
from canvascue.modules.tiers.models import BillingPeriod, SubscriptionTier

CENT = Decimal("0.01")
SECONDS_PER_DAY = 86400


def add_months(value: datetime, months: int) -> datetime:
    """Advance ``value`` by calendar months.

    Days past the end of a shorter target month roll over into the next
    month, so 2024-01-31 plus one month is 2024-03-02.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    overflow = max(0, value.day - last_day)
    return value.replace(year=year, month=month, day=value.day - overflow) + timedelta(days=overflow)


def month_bounds(value: datetime) -> tuple[datetime, datetime]:
    """Start of ``value``'s calendar month and start of the following month."""
    start = value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start, add_months(start, 1)


def ceil_days(delta: timedelta) -> int:
    """Whole days in ``delta``, rounded up."""
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def to_money(cents) -> Decimal:
    """Cents to a Decimal amount rounded to the cent."""
    return (Decimal(cents) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ProrationQuote:
    """Amounts owed or credited when switching plans mid-period.

    A positive ``proration`` is owed by the customer; a negative one is a
    credit.
    """
    credit: Decimal
    charge: Decimal
    proration: Decimal
    days_remaining: int
    currency: str = "USD"

    def to_dict(self) -> dict:
        return {
            "credit": str(self.credit),
            "charge": str(self.charge),
            "proration": str(self.proration),
            "days_remaining": self.days_remaining,
            "currency": self.currency,
        }


class BillingCycleProjector:
    """Pure billing-cycle calculations against an injected clock."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def next_billing_date(self, subscription: Subscription) -> datetime:
        """Current period end advanced by one billing period."""
        return add_months(subscription.current_period_end, subscription.period.months)

    def days_until_next_billing(self, subscription: Subscription) -> int:
        """Days until the next billing date; negative once overdue."""
        return ceil_days(subscription.next_billing_date - self.clock())

    def days_remaining_in_period(self, subscription: Subscription) -> int:
        """Whole days left in the current period, never negative."""
        return max(0, ceil_days(subscription.current_period_end - self.clock()))

    def calculate_proration(
        self,
        subscription: Subscription,
        new_tier: SubscriptionTier,
        new_billing_period: BillingPeriod,
    ) -> ProrationQuote:
        """Quote a switch to ``new_tier`` billed every ``new_billing_period``.

        Daily rates use a fixed 30 day month and 90 day quarter rather than
        the account's real calendar period.
        """
        new_billing_period = BillingPeriod(new_billing_period)
        days_remaining = self.days_remaining_in_period(subscription)

        current_amount = Decimal(subscription.amount_cents)
        new_amount = Decimal(new_tier.price_for(new_billing_period))

        credit = to_money(current_amount / subscription.period.days * days_remaining)
        charge = to_money(new_amount / new_billing_period.days * days_remaining)

        return ProrationQuote(
            credit=credit,
            charge=charge,
            proration=charge - credit,
            days_remaining=days_remaining,
            currency=subscription.currency or new_tier.currency,
        )

    def is_overdue(self, subscription: Subscription) -> bool:
        """Past the next billing date without a settled status."""
        if subscription.status == SubscriptionStatus.PAST_DUE.value:
            return True
        if subscription.status not in (
            SubscriptionStatus.ACTIVE.value,
            SubscriptionStatus.TRIALING.value,
        ):
            return False
        return self.clock() > subscription.next_billing_date

    def is_expired(self, subscription: Subscription) -> bool:
        """Status expired, or a canceled subscription whose period has ended."""
        if subscription.status == SubscriptionStatus.EXPIRED.value:
            return True
        if subscription.status == SubscriptionStatus.CANCELED.value:
            return self.clock() >= subscription.current_period_end
        return False
