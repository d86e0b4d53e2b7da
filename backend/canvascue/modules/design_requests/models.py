"""Design request model.

Only the fields subscription accounting needs: who opened the request,
which subscription it consumed quota from, and its status.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from canvascue.core.database import Base, utcnow


class DesignRequestStatus(str, Enum):
    """Design request status values."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    IN_REVIEW = "in-review"
    IN_PROGRESS = "in-progress"
    REVISION_REQUESTED = "revision-requested"
    PENDING_APPROVAL = "pending-approval"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELED = "canceled"


class DesignCategory(str, Enum):
    """Design request categories."""
    SOCIAL_MEDIA = "social-media"
    PRINT = "print"
    WEB_GRAPHICS = "web-graphics"
    PRESENTATION = "presentation"
    EMAIL_TEMPLATE = "email-template"
    BANNER_ADS = "banner-ads"
    LOGO_BRANDING = "logo-branding"
    PACKAGING = "packaging"
    MERCHANDISE = "merchandise"
    OTHER = "other"


# Statuses that occupy a simultaneous-request slot
ACTIVE_REQUEST_STATUSES = frozenset({
    DesignRequestStatus.SUBMITTED,
    DesignRequestStatus.IN_REVIEW,
    DesignRequestStatus.IN_PROGRESS,
    DesignRequestStatus.REVISION_REQUESTED,
})

# Statuses withdrawn when the subscription is canceled
CANCELABLE_ON_UNSUBSCRIBE = frozenset({
    DesignRequestStatus.DRAFT,
    DesignRequestStatus.SUBMITTED,
})


class DesignRequest(Base):
    """Client design request."""

    __tablename__ = "design_requests"
    __table_args__ = (
        Index("ix_design_requests_client_status", "client_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    request_number: Mapped[str] = mapped_column(
        String(20), nullable=False, unique=True, index=True
    )

    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("subscriptions.id"), nullable=False
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(
        String(50), default=DesignCategory.OTHER.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(30), default=DesignRequestStatus.DRAFT.value, nullable=False, index=True
    )

    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<DesignRequest(number={self.request_number}, status={self.status})>"

    def is_active(self) -> bool:
        return DesignRequestStatus(self.status) in ACTIVE_REQUEST_STATUSES
