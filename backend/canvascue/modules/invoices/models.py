"""Invoice model.

Invoices are numbered ``YYYYMM####`` with the sequence restarting every
calendar month. Amounts are stored in cents.
"""

import math
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, JSON, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from canvascue.core.database import Base, utcnow


class InvoiceStatus(str, Enum):
    """Invoice payment status values."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIAL_REFUND = "partial_refund"
    VOID = "void"


UNPAID_STATUSES = frozenset({InvoiceStatus.PENDING, InvoiceStatus.FAILED})


class Invoice(Base):
    """Subscription invoice."""

    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_status_due", "payment_status", "due_date"),
        Index("ix_invoices_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    invoice_number: Mapped[str] = mapped_column(
        String(20), nullable=False, unique=True, index=True
    )

    # References
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("subscriptions.id"), nullable=False
    )
    tier_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("subscription_tiers.id"), nullable=False
    )

    # Billing details
    billing_period: Mapped[str] = mapped_column(String(20), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Amounts (in cents)
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_amount: Mapped[int] = mapped_column(Integer, default=0)
    tax_amount: Mapped[int] = mapped_column(Integer, default=0)
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    refunded_amount: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # Payment
    payment_status: Mapped[str] = mapped_column(
        String(20), default=InvoiceStatus.PENDING.value, nullable=False, index=True
    )
    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    due_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    # Billing provider references
    provider_invoice_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )
    provider_charge_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    provider_receipt_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Line items: [{description, quantity, unit_price, amount, type}]
    line_items: Mapped[list] = mapped_column(JSON, default=list)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Invoice(number={self.invoice_number}, status={self.payment_status})>"

    @property
    def formatted_number(self) -> str:
        return f"INV-{self.invoice_number}"

    def is_overdue(self, now: datetime) -> bool:
        """Unsettled and past its due date."""
        if self.payment_status in (InvoiceStatus.PAID.value, InvoiceStatus.VOID.value):
            return False
        return now > self.due_date

    def days_until_due(self, now: datetime) -> Optional[int]:
        """Whole days until due, rounded up; None once paid."""
        if self.payment_status == InvoiceStatus.PAID.value:
            return None
        return math.ceil((self.due_date - now).total_seconds() / 86400)
