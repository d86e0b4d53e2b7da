"""Subscription tier models.

A tier fixes the price of a plan per billing period and the two quotas the
accounting layer enforces: designs per calendar month and simultaneous
open design requests.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, JSON, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from canvascue.core.database import Base, utcnow


class BillingPeriod(str, Enum):
    """Billing periods offered for every purchasable tier."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"

    @property
    def months(self) -> int:
        """Calendar months covered by one period."""
        return 1 if self is BillingPeriod.MONTHLY else 3

    @property
    def days(self) -> int:
        """Nominal day count used as the proration denominator."""
        return 30 if self is BillingPeriod.MONTHLY else 90


# Feature flag column -> display bullet
FEATURE_LABELS = {
    "unlimited_revisions": "Unlimited revisions",
    "priority_support": "Priority support",
    "dedicated_designer": "Dedicated designer",
    "brand_guidelines": "Brand guidelines",
    "source_files": "Source files included",
    "rush_delivery": "Rush delivery available",
    "video_designs": "Video designs included",
}


class SubscriptionTier(Base):
    """Subscription tier (plan) definition.

    Prices are stored in cents. ``level`` orders tiers by capability and
    price and is unique across the catalog.
    """

    __tablename__ = "subscription_tiers"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )

    # Identification
    name: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)

    # Pricing (in cents)
    monthly_price: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quarterly_price: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quarterly_discount_percent: Mapped[int] = mapped_column(Integer, default=15)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # Quotas
    designs_per_month: Mapped[int] = mapped_column(Integer, nullable=False)
    simultaneous_designs: Mapped[int] = mapped_column(Integer, nullable=False)

    # Feature flags
    unlimited_revisions: Mapped[bool] = mapped_column(Boolean, default=True)
    priority_support: Mapped[bool] = mapped_column(Boolean, default=False)
    dedicated_designer: Mapped[bool] = mapped_column(Boolean, default=False)
    brand_guidelines: Mapped[bool] = mapped_column(Boolean, default=False)
    source_files: Mapped[bool] = mapped_column(Boolean, default=True)
    rush_delivery: Mapped[bool] = mapped_column(Boolean, default=False)
    video_designs: Mapped[bool] = mapped_column(Boolean, default=False)

    # Display
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    highlights: Mapped[list] = mapped_column(JSON, default=list)
    badge_text: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    badge_color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_popular: Mapped[bool] = mapped_column(Boolean, default=False)

    # Contact-sales tiers are listed but never checked out directly
    is_custom: Mapped[bool] = mapped_column(Boolean, default=False)
    custom_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Billing provider integration
    provider_product_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    provider_monthly_price_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    provider_quarterly_price_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<SubscriptionTier(id={self.id}, name={self.name}, level={self.level})>"

    def price_for(self, billing_period: BillingPeriod) -> int:
        """Price in cents for one billing period."""
        if BillingPeriod(billing_period) is BillingPeriod.QUARTERLY:
            return self.quarterly_price
        return self.monthly_price

    def provider_price_id_for(self, billing_period: BillingPeriod) -> Optional[str]:
        """Billing provider price id for a billing period, if configured."""
        if BillingPeriod(billing_period) is BillingPeriod.QUARTERLY:
            return self.provider_quarterly_price_id
        return self.provider_monthly_price_id

    @property
    def quarterly_savings(self) -> int:
        """Cents saved per quarter by paying quarterly instead of monthly."""
        return self.monthly_price * 3 - self.quarterly_price

    @property
    def quarterly_monthly_rate(self) -> int:
        """Effective monthly price in cents when billed quarterly."""
        return round(self.quarterly_price / 3)

    def feature_list(self) -> list[str]:
        """Display bullets for pricing pages."""
        features = []
        if self.designs_per_month:
            features.append(f"Up to {self.designs_per_month} designs per month")

        plural = "s" if self.simultaneous_designs > 1 else ""
        features.append(f"{self.simultaneous_designs} design{plural} at a time")

        for flag, label in FEATURE_LABELS.items():
            if getattr(self, flag):
                features.append(label)
        return features

    def to_dict(self) -> dict:
        """Convert tier to dictionary for API response."""
        return {
            "id": str(self.id),
            "name": self.name,
            "display_name": self.display_name,
            "level": self.level,
            "description": self.description,
            "pricing": {
                "monthly": self.monthly_price / 100,  # Convert cents to dollars
                "quarterly": self.quarterly_price / 100,
                "quarterly_monthly_rate": self.quarterly_monthly_rate / 100,
                "quarterly_savings": self.quarterly_savings / 100,
                "quarterly_discount_percent": self.quarterly_discount_percent,
                "currency": self.currency,
            },
            "limits": {
                "designs_per_month": self.designs_per_month,
                "simultaneous_designs": self.simultaneous_designs,
            },
            "features": self.feature_list(),
            "highlights": self.highlights or [],
            "badge": {"text": self.badge_text, "color": self.badge_color}
            if self.badge_text else None,
            "is_popular": self.is_popular,
            "is_custom": self.is_custom,
            "custom_message": self.custom_message,
        }
