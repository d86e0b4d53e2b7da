"""Tier catalog: read access to tiers plus default tier seeding."""

import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from canvascue.modules.subscription.errors import NotFoundError
from canvascue.modules.tiers.models import SubscriptionTier
from canvascue.modules.tiers.repository import TierRepository

logger = logging.getLogger(__name__)


# Default tiers, upserted by level
DEFAULT_TIERS = [
    {
        "name": "starter",
        "display_name": "Starter",
        "level": 1,
        "monthly_price": 29900,  # $299.00
        "quarterly_price": 76425,  # $764.25, 15% off monthly * 3
        "quarterly_discount_percent": 15,
        "designs_per_month": 10,
        "simultaneous_designs": 1,
        "unlimited_revisions": True,
        "priority_support": False,
        "dedicated_designer": False,
        "source_files": True,
        "rush_delivery": False,
        "video_designs": False,
        "description": (
            "Perfect for small businesses and individuals getting started "
            "with professional design."
        ),
        "highlights": [
            "Up to 10 designs monthly",
            "1 active design request",
            "Unlimited revisions",
            "48-hour turnaround",
        ],
        "is_popular": False,
        "sort_order": 1,
    },
    {
        "name": "professional",
        "display_name": "Professional",
        "level": 2,
        "monthly_price": 39900,  # $399.00
        "quarterly_price": 101745,  # $1017.45
        "quarterly_discount_percent": 15,
        "designs_per_month": 20,
        "simultaneous_designs": 3,
        "unlimited_revisions": True,
        "priority_support": True,
        "dedicated_designer": False,
        "source_files": True,
        "rush_delivery": True,
        "video_designs": False,
        "description": "Ideal for growing businesses with regular design needs.",
        "highlights": [
            "Up to 20 designs monthly",
            "3 active design requests",
            "Priority support",
            "Rush delivery available",
            "24-hour turnaround",
        ],
        "badge_text": "Most Popular",
        "badge_color": "#3b82f6",
        "is_popular": True,
        "sort_order": 2,
    },
    {
        "name": "enterprise",
        "display_name": "Enterprise",
        "level": 3,
        "is_custom": True,
        "custom_message": (
            "Contact us for custom pricing and features tailored to your "
            "business needs."
        ),
        "monthly_price": 0,
        "quarterly_price": 0,
        "quarterly_discount_percent": 0,
        "designs_per_month": 999,
        "simultaneous_designs": 999,
        "unlimited_revisions": True,
        "priority_support": True,
        "dedicated_designer": True,
        "source_files": True,
        "rush_delivery": True,
        "video_designs": True,
        "description": (
            "Custom solutions for large organizations with extensive design "
            "requirements."
        ),
        "highlights": [
            "Unlimited designs",
            "Unlimited active requests",
            "Dedicated design team",
            "Custom integrations",
            "White-glove service",
        ],
        "is_popular": False,
        "sort_order": 3,
    },
]


class TierCatalog:
    """Read-only view of the tier catalog used by subscription accounting."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = TierRepository(session)

    async def get_tier_by_id(self, tier_id: uuid.UUID) -> SubscriptionTier:
        """Get a tier by ID.

        Raises:
            NotFoundError: If no tier has this ID
        """
        tier = await self.repository.get_by_id(tier_id)
        if tier is None:
            raise NotFoundError("SubscriptionTier", tier_id)
        return tier

    async def find_tier_by_id(self, tier_id: uuid.UUID) -> Optional[SubscriptionTier]:
        """Get a tier by ID, or None."""
        return await self.repository.get_by_id(tier_id)

    async def get_active_tiers(self) -> list[SubscriptionTier]:
        """Active, available tiers in display order."""
        return await self.repository.get_all_active()

    async def get_by_level(self, level: int) -> Optional[SubscriptionTier]:
        """Active tier at a given level."""
        return await self.repository.get_by_level(level)

    async def seed_default_tiers(self) -> list[SubscriptionTier]:
        """Upsert the default tiers by level and return the active catalog."""
        for tier_data in DEFAULT_TIERS:
            existing = await self.repository.get_by_level(
                tier_data["level"], active_only=False
            )
            if existing:
                await self.repository.update(existing, **tier_data)
                logger.info(f"Updated tier: {tier_data['name']}")
            else:
                await self.repository.create(**tier_data)
                logger.info(f"Created tier: {tier_data['name']}")

        return await self.get_active_tiers()
