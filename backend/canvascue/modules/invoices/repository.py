"""Repository for invoice database operations."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from canvascue.core.numbering import NumberTakenError, commit_numbered, next_monthly_number
from canvascue.core.retry import RetryConfig, retry_async
from canvascue.modules.invoices.models import Invoice, InvoiceStatus, UNPAID_STATUSES


class InvoiceRepository:
    """Repository for invoice operations."""

    def __init__(self, session: AsyncSession, number_retry: Optional[RetryConfig] = None):
        self.session = session
        self.number_retry = number_retry or RetryConfig(
            max_attempts=5, initial_delay=0.01, max_delay=0.1
        )

    async def get_by_id(self, invoice_id: uuid.UUID) -> Optional[Invoice]:
        """Get invoice by ID."""
        result = await self.session.execute(
            select(Invoice).where(Invoice.id == invoice_id)
        )
        return result.scalar_one_or_none()

    async def get_by_number(self, invoice_number: str) -> Optional[Invoice]:
        """Get invoice by invoice number."""
        result = await self.session.execute(
            select(Invoice).where(Invoice.invoice_number == invoice_number)
        )
        return result.scalar_one_or_none()

    async def create(self, now: datetime, **kwargs) -> Invoice:
        """Create an invoice with the next number of ``now``'s month.

        A number taken by a concurrent writer is drawn again.
        """

        async def insert() -> Invoice:
            number = await next_monthly_number(self.session, Invoice.invoice_number, now)
            invoice = Invoice(invoice_number=number, created_at=now, **kwargs)
            await commit_numbered(self.session, invoice, Invoice.invoice_number, number)
            return invoice

        invoice = await retry_async(
            insert,
            config=self.number_retry,
            retry_on=(NumberTakenError,),
            description="invoice numbering",
        )
        await self.session.refresh(invoice)
        return invoice

    async def save(self, invoice: Invoice) -> Invoice:
        self.session.add(invoice)
        await self.session.commit()
        await self.session.refresh(invoice)
        return invoice

    async def get_user_invoices(
        self, user_id: uuid.UUID, limit: int = 50
    ) -> list[Invoice]:
        """Get a user's invoices, newest first."""
        result = await self.session.execute(
            select(Invoice)
            .where(Invoice.user_id == user_id)
            .order_by(Invoice.created_at.desc(), Invoice.invoice_number.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def find_unpaid(
        self, now: datetime, user_id: Optional[uuid.UUID] = None
    ) -> list[Invoice]:
        """Pending or failed invoices already due, oldest due date first."""
        query = select(Invoice).where(
            Invoice.payment_status.in_([s.value for s in UNPAID_STATUSES]),
            Invoice.due_date <= now,
        )
        if user_id is not None:
            query = query.where(Invoice.user_id == user_id)
        result = await self.session.execute(query.order_by(Invoice.due_date))
        return list(result.scalars().all())

    async def revenue_totals(
        self, start: datetime, end: datetime
    ) -> tuple[int, int]:
        """Sum and count of invoices paid between ``start`` and ``end``."""
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(Invoice.total), 0),
                func.count(Invoice.id),
            ).where(
                Invoice.payment_status == InvoiceStatus.PAID.value,
                Invoice.payment_date >= start,
                Invoice.payment_date <= end,
            )
        )
        total, count = result.one()
        return int(total), int(count)
