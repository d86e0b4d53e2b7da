"""Repository for subscription database operations.

Usage counters are only ever changed through single conditional UPDATE
statements so that concurrent handlers cannot overshoot a quota. After
each statement the in-memory row is brought in line with the database
via ``set_committed_value`` so a later flush never writes a stale counter.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from canvascue.modules.subscription.models import (
    LIVE_STATUSES,
    Subscription,
    SubscriptionStatus,
)


class SubscriptionRepository:
    """Repository for subscription operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== Reads ====================

    async def get_by_id(self, subscription_id: uuid.UUID) -> Optional[Subscription]:
        """Get subscription by ID."""
        result = await self.session.execute(
            select(Subscription).where(Subscription.id == subscription_id)
        )
        return result.scalar_one_or_none()

    async def get_active_by_user(self, user_id: uuid.UUID) -> Optional[Subscription]:
        """Get the user's active or trialing subscription."""
        result = await self.session.execute(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.status.in_([s.value for s in LIVE_STATUSES]),
            )
        )
        return result.scalar_one_or_none()

    async def get_latest_by_user(self, user_id: uuid.UUID) -> Optional[Subscription]:
        """Get the user's most recently created subscription in any status."""
        result = await self.session.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_provider_subscription_id(
        self, provider_subscription_id: str
    ) -> Optional[Subscription]:
        """Get subscription by billing provider subscription ID."""
        result = await self.session.execute(
            select(Subscription).where(
                Subscription.provider_subscription_id == provider_subscription_id
            )
        )
        return result.scalar_one_or_none()

    async def find_expiring_soon(
        self, now: datetime, days_ahead: int = 7
    ) -> list[Subscription]:
        """Active subscriptions billing within the next ``days_ahead`` days."""
        result = await self.session.execute(
            select(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.next_billing_date >= now,
                Subscription.next_billing_date <= now + timedelta(days=days_ahead),
            )
            .order_by(Subscription.next_billing_date)
        )
        return list(result.scalars().all())

    async def find_past_due(self) -> list[Subscription]:
        """All past due subscriptions."""
        result = await self.session.execute(
            select(Subscription)
            .where(Subscription.status == SubscriptionStatus.PAST_DUE.value)
            .order_by(Subscription.next_billing_date)
        )
        return list(result.scalars().all())

    # ==================== Writes ====================

    async def create(self, **kwargs) -> Subscription:
        """Create a new subscription."""
        subscription = Subscription(**kwargs)
        self.session.add(subscription)
        await self.session.commit()
        await self.session.refresh(subscription)
        return subscription

    async def save(self, subscription: Subscription) -> Subscription:
        """Persist changes made through the model's transition methods."""
        self.session.add(subscription)
        await self.session.commit()
        await self.session.refresh(subscription)
        return subscription

    # ==================== Atomic usage updates ====================

    async def reset_usage_if_stale(
        self,
        subscription: Subscription,
        now: datetime,
        month_start: datetime,
        next_month_start: datetime,
    ) -> bool:
        """Zero the monthly counter unless it was already reset this month.

        Returns:
            True if this call performed the reset
        """
        result = await self.session.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription.id,
                or_(
                    Subscription.usage_last_reset_at < month_start,
                    Subscription.usage_last_reset_at >= next_month_start,
                ),
            )
            .values(designs_used_this_month=0, usage_last_reset_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        reset = result.rowcount == 1
        if reset:
            set_committed_value(subscription, "designs_used_this_month", 0)
            set_committed_value(subscription, "usage_last_reset_at", now)
        return reset

    async def increment_designs_used(
        self, subscription: Subscription, quota: int
    ) -> Optional[int]:
        """Add one design to this month's usage if under ``quota``.

        Returns:
            The new count, or None if the quota was already reached
        """
        result = await self.session.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription.id,
                Subscription.designs_used_this_month < quota,
            )
            .values(designs_used_this_month=Subscription.designs_used_this_month + 1)
            .returning(Subscription.designs_used_this_month)
            .execution_options(synchronize_session=False)
        )
        new_count = result.scalar_one_or_none()
        await self.session.commit()

        if new_count is None:
            await self.refresh_usage(subscription)
        else:
            set_committed_value(subscription, "designs_used_this_month", new_count)
        return new_count

    async def decrement_designs_used(self, subscription: Subscription) -> Optional[int]:
        """Give back one design of this month's usage, never going below zero.

        Returns:
            The new count, or None if the count was already zero
        """
        result = await self.session.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription.id,
                Subscription.designs_used_this_month > 0,
            )
            .values(designs_used_this_month=Subscription.designs_used_this_month - 1)
            .returning(Subscription.designs_used_this_month)
            .execution_options(synchronize_session=False)
        )
        new_count = result.scalar_one_or_none()
        await self.session.commit()

        if new_count is not None:
            set_committed_value(subscription, "designs_used_this_month", new_count)
        return new_count

    async def set_active_requests(
        self, subscription: Subscription, count: int, expected: int
    ) -> bool:
        """Overwrite the active request count if it still equals ``expected``.

        Returns:
            True if the swap was applied
        """
        result = await self.session.execute(
            update(Subscription)
            .where(
                and_(
                    Subscription.id == subscription.id,
                    Subscription.active_design_requests == expected,
                )
            )
            .values(active_design_requests=count)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        swapped = result.rowcount == 1
        if swapped:
            set_committed_value(subscription, "active_design_requests", count)
        else:
            await self.refresh_usage(subscription)
        return swapped

    async def refresh_usage(self, subscription: Subscription) -> None:
        """Reload the usage columns of ``subscription`` from the database."""
        result = await self.session.execute(
            select(
                Subscription.designs_used_this_month,
                Subscription.active_design_requests,
                Subscription.usage_last_reset_at,
            ).where(Subscription.id == subscription.id)
        )
        row = result.one_or_none()
        if row is None:
            return
        set_committed_value(subscription, "designs_used_this_month", row.designs_used_this_month)
        set_committed_value(subscription, "active_design_requests", row.active_design_requests)
        set_committed_value(subscription, "usage_last_reset_at", row.usage_last_reset_at)
