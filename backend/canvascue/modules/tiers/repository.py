"""Repository for subscription tier database operations."""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from canvascue.modules.tiers.models import SubscriptionTier


class TierRepository:
    """Repository for tier operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, tier_id: uuid.UUID) -> Optional[SubscriptionTier]:
        """Get tier by ID."""
        result = await self.session.execute(
            select(SubscriptionTier).where(SubscriptionTier.id == tier_id)
        )
        return result.scalar_one_or_none()

    async def get_by_name(self, name: str) -> Optional[SubscriptionTier]:
        """Get tier by name."""
        result = await self.session.execute(
            select(SubscriptionTier).where(SubscriptionTier.name == name)
        )
        return result.scalar_one_or_none()

    async def get_by_level(
        self, level: int, active_only: bool = True
    ) -> Optional[SubscriptionTier]:
        """Get tier by level."""
        query = select(SubscriptionTier).where(SubscriptionTier.level == level)
        if active_only:
            query = query.where(SubscriptionTier.is_active == True)  # noqa: E712
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_all_active(self) -> list[SubscriptionTier]:
        """Get active, available tiers ordered by sort_order then level."""
        result = await self.session.execute(
            select(SubscriptionTier)
            .where(
                SubscriptionTier.is_active == True,  # noqa: E712
                SubscriptionTier.is_available == True,  # noqa: E712
            )
            .order_by(SubscriptionTier.sort_order, SubscriptionTier.level)
        )
        return list(result.scalars().all())

    async def create(self, **kwargs) -> SubscriptionTier:
        """Create a new tier."""
        tier = SubscriptionTier(**kwargs)
        self.session.add(tier)
        await self.session.commit()
        await self.session.refresh(tier)
        return tier

    async def update(self, tier: SubscriptionTier, **kwargs) -> SubscriptionTier:
        """Update a tier in place."""
        for key, value in kwargs.items():
            if hasattr(tier, key):
                setattr(tier, key, value)
        await self.session.commit()
        await self.session.refresh(tier)
        return tier
