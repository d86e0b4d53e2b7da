"""Tests for the tier catalog and default tier seeding."""

import uuid

import pytest

from canvascue.modules.subscription.errors import NotFoundError
from canvascue.modules.tiers.catalog import DEFAULT_TIERS, TierCatalog
from canvascue.modules.tiers.models import BillingPeriod
from canvascue.modules.tiers.repository import TierRepository
from canvascue.modules.tiers.schemas import TierListResponse, TierResponse


class TestSeeding:
    """Tests for default tier seeding."""

    @pytest.mark.asyncio
    async def test_seed_creates_default_tiers_in_display_order(self, tiers):
        assert [t.name for t in tiers] == ["starter", "professional", "enterprise"]
        assert [t.level for t in tiers] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_seed_is_an_upsert(self, session, tiers):
        starter = tiers[0]
        await TierRepository(session).update(starter, monthly_price=1)

        reseeded = await TierCatalog(session).seed_default_tiers()

        assert len(reseeded) == len(DEFAULT_TIERS)
        assert reseeded[0].id == starter.id
        assert reseeded[0].monthly_price == 29900

    @pytest.mark.asyncio
    async def test_inactive_tier_is_hidden_until_reactivated(self, session, tiers):
        professional = tiers[1]
        await TierRepository(session).update(professional, is_active=False)
        catalog = TierCatalog(session)

        assert [t.name for t in await catalog.get_active_tiers()] == ["starter", "enterprise"]
        assert await catalog.get_by_level(2) is None

        await TierRepository(session).update(professional, is_active=True)
        assert (await catalog.get_by_level(2)).id == professional.id


class TestLookup:
    """Tests for tier lookups."""

    @pytest.mark.asyncio
    async def test_get_tier_by_id(self, session, starter):
        catalog = TierCatalog(session)

        assert (await catalog.get_tier_by_id(starter.id)).name == "starter"
        assert (await TierRepository(session).get_by_name("starter")).id == starter.id
        assert await catalog.find_tier_by_id(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_unknown_tier_raises(self, session, tiers):
        missing = uuid.uuid4()

        with pytest.raises(NotFoundError) as exc_info:
            await TierCatalog(session).get_tier_by_id(missing)

        assert exc_info.value.entity == "SubscriptionTier"
        assert exc_info.value.key == missing


class TestTierModel:
    """Tests for pricing and display helpers."""

    @pytest.mark.asyncio
    async def test_prices_by_billing_period(self, starter, professional):
        assert starter.price_for(BillingPeriod.MONTHLY) == 29900
        assert starter.price_for(BillingPeriod.QUARTERLY) == 76425
        assert professional.price_for("quarterly") == 101745

    @pytest.mark.asyncio
    async def test_quarterly_savings(self, starter):
        assert starter.quarterly_savings == 29900 * 3 - 76425
        assert starter.quarterly_monthly_rate == 25475

    @pytest.mark.asyncio
    async def test_feature_lists(self, starter, professional):
        assert starter.feature_list() == [
            "Up to 10 designs per month",
            "1 design at a time",
            "Unlimited revisions",
            "Source files included",
        ]
        assert professional.feature_list() == [
            "Up to 20 designs per month",
            "3 designs at a time",
            "Unlimited revisions",
            "Priority support",
            "Source files included",
            "Rush delivery available",
        ]

    @pytest.mark.asyncio
    async def test_enterprise_is_custom(self, enterprise):
        assert enterprise.is_custom is True
        assert enterprise.custom_message.startswith("Contact us")
        assert "Video designs included" in enterprise.feature_list()

    @pytest.mark.asyncio
    async def test_to_dict_converts_cents(self, professional):
        data = professional.to_dict()

        assert data["pricing"]["monthly"] == 399.0
        assert data["limits"] == {"designs_per_month": 20, "simultaneous_designs": 3}
        assert data["badge"] == {"text": "Most Popular", "color": "#3b82f6"}

    @pytest.mark.asyncio
    async def test_response_schema_from_model(self, tiers):
        response = TierListResponse(tiers=[TierResponse.model_validate(t) for t in tiers])

        assert response.tiers[1].limits.simultaneous_designs == 3
        assert response.tiers[1].is_popular is True
        assert response.tiers[0].badge_text is None
