"""Invoice service.

Issues invoices for subscription billing periods and tracks their payment
status through payment, refund and voiding.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from canvascue.core.database import utcnow
from canvascue.modules.invoices.models import Invoice, InvoiceStatus
from canvascue.modules.invoices.repository import InvoiceRepository
from canvascue.modules.subscription.errors import NotFoundError, SubscriptionError
from canvascue.modules.subscription.models import Subscription
from canvascue.modules.subscription.projector import to_money
from canvascue.modules.tiers.models import SubscriptionTier

logger = logging.getLogger(__name__)


class InvoiceError(SubscriptionError):
    """Raised when an invoice operation is not allowed in its current status."""
    pass


@dataclass(frozen=True)
class RevenueStats:
    """Paid revenue over a date range."""
    total_revenue: Decimal
    invoice_count: int
    avg_invoice_amount: Decimal


class InvoiceService:
    """Service for subscription invoices."""

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock
        self.invoice_repo = InvoiceRepository(session)

    async def get_invoice(self, invoice_id: uuid.UUID) -> Invoice:
        invoice = await self.invoice_repo.get_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def create_from_subscription(
        self,
        subscription: Subscription,
        tier: SubscriptionTier,
        provider_invoice_id: Optional[str] = None,
    ) -> Invoice:
        """Issue an invoice for the subscription's current period.

        The invoice is due on the subscription's next billing date and
        carries a single subscription line item.
        """
        amount = subscription.amount_cents
        invoice = await self.invoice_repo.create(
            now=self.clock(),
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            tier_id=tier.id,
            billing_period=subscription.billing_period,
            period_start=subscription.current_period_start,
            period_end=subscription.current_period_end,
            subtotal=amount,
            total=amount,
            currency=subscription.currency,
            due_date=subscription.next_billing_date,
            provider_invoice_id=provider_invoice_id,
            line_items=[{
                "description": f"{tier.display_name} - {subscription.billing_period} subscription",
                "quantity": 1,
                "unit_price": amount,
                "amount": amount,
                "type": "subscription",
            }],
        )
        logger.info(
            f"Created invoice {invoice.invoice_number} for subscription {invoice.subscription_id}"
        )
        return invoice

    async def mark_paid(
        self,
        invoice: Invoice,
        charge_id: Optional[str] = None,
        receipt_url: Optional[str] = None,
    ) -> Invoice:
        """Record payment of an invoice."""
        if invoice.payment_status == InvoiceStatus.VOID.value:
            raise InvoiceError(f"Invoice {invoice.invoice_number} is void")

        invoice.payment_status = InvoiceStatus.PAID.value
        invoice.payment_date = self.clock()
        if charge_id:
            invoice.provider_charge_id = charge_id
        if receipt_url:
            invoice.provider_receipt_url = receipt_url
        return await self.invoice_repo.save(invoice)

    async def issue_refund(
        self,
        invoice: Invoice,
        amount: Optional[int] = None,
        reason: str = "",
    ) -> Invoice:
        """Refund an invoice in full, or in part when ``amount`` (cents) is given.

        Partial refunds add up; once they reach the total the invoice is
        fully refunded. The refunded total never exceeds the invoice total.
        """
        if invoice.payment_status not in (
            InvoiceStatus.PAID.value,
            InvoiceStatus.PARTIAL_REFUND.value,
        ):
            raise InvoiceError(
                f"Only paid invoices can be refunded (invoice {invoice.invoice_number} "
                f"is {invoice.payment_status})"
            )
        if amount is not None and amount <= 0:
            raise ValueError("Refund amount must be positive")

        already_refunded = invoice.refunded_amount or 0
        if amount is None:
            refunded = invoice.total
        else:
            refunded = min(already_refunded + amount, invoice.total)

        invoice.refunded_amount = refunded
        if refunded < invoice.total:
            invoice.payment_status = InvoiceStatus.PARTIAL_REFUND.value
        else:
            invoice.payment_status = InvoiceStatus.REFUNDED.value
        invoice.notes = reason or invoice.notes

        logger.info(
            f"Refunded {invoice.refunded_amount} cents of invoice {invoice.invoice_number}"
        )
        return await self.invoice_repo.save(invoice)

    async def void(self, invoice: Invoice, reason: str = "") -> Invoice:
        """Void an unpaid invoice."""
        if invoice.payment_status == InvoiceStatus.PAID.value:
            raise InvoiceError(
                f"Invoice {invoice.invoice_number} is paid; refund it instead"
            )
        invoice.payment_status = InvoiceStatus.VOID.value
        invoice.internal_notes = reason or "Invoice voided"
        return await self.invoice_repo.save(invoice)

    def is_overdue(self, invoice: Invoice) -> bool:
        return invoice.is_overdue(self.clock())

    def days_until_due(self, invoice: Invoice) -> Optional[int]:
        return invoice.days_until_due(self.clock())

    async def find_unpaid(self, user_id: Optional[uuid.UUID] = None) -> list[Invoice]:
        """Pending or failed invoices that are due."""
        return await self.invoice_repo.find_unpaid(self.clock(), user_id=user_id)

    async def revenue_stats(self, start: datetime, end: datetime) -> RevenueStats:
        """Revenue from invoices paid between ``start`` and ``end``."""
        total, count = await self.invoice_repo.revenue_totals(start, end)
        average = to_money(Decimal(total) / count) if count else Decimal("0.00")
        return RevenueStats(
            total_revenue=to_money(total),
            invoice_count=count,
            avg_invoice_amount=average,
        )
