"""Tests for subscription invoices."""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from canvascue.modules.invoices.models import InvoiceStatus
from canvascue.modules.invoices.service import InvoiceError, InvoiceService
from canvascue.modules.subscription.errors import NotFoundError


@pytest.fixture
def invoice_service(session, clock) -> InvoiceService:
    return InvoiceService(session, clock=clock)


class TestInvoiceCreation:
    """Tests for issuing invoices."""

    @pytest.mark.asyncio
    async def test_numbers_are_sequential_within_the_month(
        self, invoice_service, clock, starter, make_subscription
    ):
        subscription = await make_subscription(starter)

        first = await invoice_service.create_from_subscription(subscription, starter)
        second = await invoice_service.create_from_subscription(subscription, starter)

        assert first.invoice_number == "2024030001"
        assert second.invoice_number == "2024030002"
        assert first.formatted_number == "INV-2024030001"

        clock.advance(days=20)
        april = await invoice_service.create_from_subscription(subscription, starter)
        assert april.invoice_number == "2024040001"

        repo = invoice_service.invoice_repo
        assert (await repo.get_by_number("2024030002")).id == second.id
        history = await repo.get_user_invoices(subscription.user_id)
        assert [i.invoice_number for i in history] == ["2024040001", "2024030002", "2024030001"]

    @pytest.mark.asyncio
    async def test_invoice_mirrors_subscription_period(
        self, invoice_service, professional, make_subscription
    ):
        subscription = await make_subscription(professional)

        invoice = await invoice_service.create_from_subscription(
            subscription, professional, provider_invoice_id="in_1"
        )

        assert invoice.total == 39900
        assert invoice.subtotal == 39900
        assert invoice.payment_status == InvoiceStatus.PENDING.value
        assert invoice.period_start == subscription.current_period_start
        assert invoice.period_end == subscription.current_period_end
        assert invoice.due_date == subscription.next_billing_date
        assert invoice.provider_invoice_id == "in_1"
        assert invoice.line_items == [{
            "description": "Professional - monthly subscription",
            "quantity": 1,
            "unit_price": 39900,
            "amount": 39900,
            "type": "subscription",
        }]

    @pytest.mark.asyncio
    async def test_get_unknown_invoice(self, invoice_service, tiers):
        with pytest.raises(NotFoundError):
            await invoice_service.get_invoice(uuid.uuid4())


class TestInvoicePayment:
    """Tests for payment, refunds and voiding."""

    @pytest.mark.asyncio
    async def test_mark_paid(self, invoice_service, clock, starter, make_subscription):
        invoice = await invoice_service.create_from_subscription(
            await make_subscription(starter), starter
        )

        paid = await invoice_service.mark_paid(invoice, charge_id="ch_1", receipt_url="https://r.test/1")

        assert paid.payment_status == InvoiceStatus.PAID.value
        assert paid.payment_date == clock()
        assert paid.provider_charge_id == "ch_1"
        assert invoice_service.days_until_due(paid) is None
        assert invoice_service.is_overdue(paid) is False

    @pytest.mark.asyncio
    async def test_partial_then_full_refund(self, invoice_service, starter, make_subscription):
        invoice = await invoice_service.create_from_subscription(
            await make_subscription(starter), starter
        )
        await invoice_service.mark_paid(invoice)

        partial = await invoice_service.issue_refund(invoice, amount=10000, reason="Late delivery")
        assert partial.payment_status == InvoiceStatus.PARTIAL_REFUND.value
        assert partial.refunded_amount == 10000
        assert partial.notes == "Late delivery"

        full = await invoice_service.issue_refund(invoice)
        assert full.payment_status == InvoiceStatus.REFUNDED.value
        assert full.refunded_amount == 29900

        with pytest.raises(InvoiceError):
            await invoice_service.issue_refund(invoice)

    @pytest.mark.asyncio
    async def test_partial_refunds_add_up_to_the_total(self, invoice_service, starter, make_subscription):
        invoice = await invoice_service.create_from_subscription(
            await make_subscription(starter), starter
        )
        await invoice_service.mark_paid(invoice)

        await invoice_service.issue_refund(invoice, amount=5000)
        second = await invoice_service.issue_refund(invoice, amount=5000)
        assert second.refunded_amount == 10000
        assert second.payment_status == InvoiceStatus.PARTIAL_REFUND.value

        # 10000 + 25000 would pass the 29900 total
        capped = await invoice_service.issue_refund(invoice, amount=25000)
        assert capped.refunded_amount == 29900
        assert capped.payment_status == InvoiceStatus.REFUNDED.value

    @pytest.mark.asyncio
    async def test_partial_refund_reaching_total_exactly(self, invoice_service, starter, make_subscription):
        invoice = await invoice_service.create_from_subscription(
            await make_subscription(starter), starter
        )
        await invoice_service.mark_paid(invoice)

        await invoice_service.issue_refund(invoice, amount=20000)
        rest = await invoice_service.issue_refund(invoice, amount=9900)

        assert rest.refunded_amount == 29900
        assert rest.payment_status == InvoiceStatus.REFUNDED.value

    @pytest.mark.asyncio
    async def test_refund_requires_payment(self, invoice_service, starter, make_subscription):
        invoice = await invoice_service.create_from_subscription(
            await make_subscription(starter), starter
        )

        with pytest.raises(InvoiceError):
            await invoice_service.issue_refund(invoice)

    @pytest.mark.asyncio
    async def test_refund_amount_must_be_positive(self, invoice_service, starter, make_subscription):
        invoice = await invoice_service.create_from_subscription(
            await make_subscription(starter), starter
        )
        await invoice_service.mark_paid(invoice)

        with pytest.raises(ValueError):
            await invoice_service.issue_refund(invoice, amount=0)

    @pytest.mark.asyncio
    async def test_void(self, invoice_service, starter, make_subscription):
        invoice = await invoice_service.create_from_subscription(
            await make_subscription(starter), starter
        )

        voided = await invoice_service.void(invoice)

        assert voided.payment_status == InvoiceStatus.VOID.value
        assert voided.internal_notes == "Invoice voided"
        assert invoice_service.is_overdue(voided) is False
        with pytest.raises(InvoiceError):
            await invoice_service.mark_paid(voided)

    @pytest.mark.asyncio
    async def test_paid_invoice_cannot_be_voided(self, invoice_service, starter, make_subscription):
        invoice = await invoice_service.create_from_subscription(
            await make_subscription(starter), starter
        )
        await invoice_service.mark_paid(invoice)

        with pytest.raises(InvoiceError, match="refund it instead"):
            await invoice_service.void(invoice)


class TestInvoiceReporting:
    """Tests for due dates, unpaid lookups and revenue."""

    @pytest.mark.asyncio
    async def test_due_date_tracking(self, invoice_service, clock, starter, make_subscription):
        subscription = await make_subscription(
            starter, next_billing_date=clock() + timedelta(days=2, hours=3)
        )
        invoice = await invoice_service.create_from_subscription(subscription, starter)

        assert invoice_service.days_until_due(invoice) == 3
        assert invoice_service.is_overdue(invoice) is False

        clock.advance(days=3)
        assert invoice_service.is_overdue(invoice) is True
        assert invoice_service.days_until_due(invoice) == 0

    @pytest.mark.asyncio
    async def test_find_unpaid(self, invoice_service, clock, starter, make_subscription):
        overdue_subscription = await make_subscription(
            starter, next_billing_date=clock() - timedelta(days=1)
        )
        overdue = await invoice_service.create_from_subscription(overdue_subscription, starter)
        later = await invoice_service.create_from_subscription(
            await make_subscription(starter), starter
        )
        settled = await invoice_service.create_from_subscription(overdue_subscription, starter)
        await invoice_service.mark_paid(settled)

        unpaid = await invoice_service.find_unpaid()

        assert [i.id for i in unpaid] == [overdue.id]
        assert await invoice_service.find_unpaid(user_id=later.user_id) == []

    @pytest.mark.asyncio
    async def test_revenue_stats(
        self, invoice_service, clock, starter, professional, make_subscription
    ):
        for tier in (starter, professional):
            invoice = await invoice_service.create_from_subscription(
                await make_subscription(tier), tier
            )
            await invoice_service.mark_paid(invoice)
        await invoice_service.create_from_subscription(await make_subscription(starter), starter)

        stats = await invoice_service.revenue_stats(
            clock() - timedelta(days=1), clock() + timedelta(days=1)
        )

        assert stats.invoice_count == 2
        assert stats.total_revenue == Decimal("698.00")
        assert stats.avg_invoice_amount == Decimal("349.00")

    @pytest.mark.asyncio
    async def test_revenue_stats_without_payments(self, invoice_service, clock, tiers):
        stats = await invoice_service.revenue_stats(clock() - timedelta(days=30), clock())

        assert stats.invoice_count == 0
        assert stats.total_revenue == Decimal("0.00")
        assert stats.avg_invoice_amount == Decimal("0.00")
