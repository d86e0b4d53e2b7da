"""Pydantic schemas for subscription accounting responses."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from canvascue.modules.subscription.models import SubscriptionStatus
from canvascue.modules.tiers.models import BillingPeriod


class UsageResponse(BaseModel):
    """Usage against quota for the current month."""
    designs_used_this_month: int
    designs_limit: int
    designs_remaining: int
    active_design_requests: int
    active_requests_limit: int
    last_reset_at: Optional[datetime] = None
    has_reached_monthly_limit: bool
    can_add_request: bool


class ProrationResponse(BaseModel):
    """Proration quote for a plan change."""
    credit: Decimal
    charge: Decimal
    proration: Decimal = Field(..., description="Positive is owed, negative is credited")
    days_remaining: int
    currency: str = "USD"


class SubscriptionSummary(BaseModel):
    """Subscription as shown on the client dashboard."""
    id: uuid.UUID
    user_id: uuid.UUID
    tier_id: uuid.UUID
    tier_name: str
    tier_display_name: str
    billing_period: BillingPeriod
    amount: Decimal = Field(..., description="Price per billing period")
    currency: str
    status: SubscriptionStatus
    is_active: bool
    is_in_trial: bool
    current_period_start: datetime
    current_period_end: datetime
    next_billing_date: datetime
    days_until_next_billing: int
    is_overdue: bool
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    resume_date: Optional[datetime] = None
    usage: UsageResponse


class CheckoutResponse(BaseModel):
    """Hosted checkout session for a new subscription."""
    session_id: str
    checkout_url: Optional[str] = None


class TierChangeResponse(BaseModel):
    """Result of switching tier or billing period."""
    subscription_id: uuid.UUID
    tier_id: uuid.UUID
    billing_period: BillingPeriod
    amount: Decimal
    proration: ProrationResponse
