"""Pydantic schemas for the tier catalog."""

import uuid
from typing import Optional

from pydantic import BaseModel, Field


class TierLimits(BaseModel):
    """Quotas enforced for a tier."""
    designs_per_month: int = Field(..., description="Designs allowed per calendar month")
    simultaneous_designs: int = Field(..., description="Open design requests allowed at once")


class TierResponse(BaseModel):
    """Tier as shown on pricing pages."""
    id: uuid.UUID
    name: str
    display_name: str
    level: int
    description: Optional[str] = None
    monthly_price: int = Field(..., description="Monthly price in cents")
    quarterly_price: int = Field(..., description="Quarterly price in cents")
    quarterly_discount_percent: int = 0
    currency: str = "USD"
    designs_per_month: int
    simultaneous_designs: int
    highlights: list[str] = Field(default_factory=list)
    badge_text: Optional[str] = None
    badge_color: Optional[str] = None
    is_popular: bool = False
    is_custom: bool = False
    custom_message: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def limits(self) -> TierLimits:
        return TierLimits(
            designs_per_month=self.designs_per_month,
            simultaneous_designs=self.simultaneous_designs,
        )


class TierListResponse(BaseModel):
    """Active tier catalog."""
    tiers: list[TierResponse]
