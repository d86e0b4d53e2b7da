"""Tests for usage and billing spans."""

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import SpanKind, StatusCode

from canvascue.core import tracing
from canvascue.core.tracing import (
    billing_span,
    get_span_id,
    get_trace_id,
    record_exception,
    subscription_attributes,
    usage_span,
)
from canvascue.modules.subscription.accounting import UsageAccounting
from canvascue.modules.subscription.errors import QuotaExceededError
from canvascue.modules.subscription.repository import SubscriptionRepository


@pytest.fixture
def exporter(monkeypatch) -> InMemorySpanExporter:
    """Route spans from ``get_tracer`` into memory."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    monkeypatch.setattr(tracing, "_tracer", provider.get_tracer("canvascue-tests"))
    return exporter


def finished(exporter: InMemorySpanExporter, name: str) -> list:
    return [span for span in exporter.get_finished_spans() if span.name == name]


class _Account:
    def __init__(self, **fields):
        self.__dict__.update(fields)


class TestSpanHelpers:
    """Tests for the span context managers."""

    def test_usage_span_carries_account_ids(self, exporter):
        account = _Account(id="sub-1", user_id="user-1", tier_id="tier-1")

        with usage_span("increment_design", account, **{"quota.limit": 10}):
            assert get_trace_id() is not None
            assert len(get_span_id()) == 16

        [span] = finished(exporter, "usage.increment_design")
        assert span.attributes["subscription.id"] == "sub-1"
        assert span.attributes["user.id"] == "user-1"
        assert span.attributes["tier.id"] == "tier-1"
        assert span.attributes["quota.limit"] == 10

    def test_missing_ids_are_left_out(self):
        assert subscription_attributes(_Account(id="sub-1")) == {"subscription.id": "sub-1"}

    def test_billing_span_is_a_client_span(self, exporter):
        with billing_span("cancel_subscription", **{"billing.subscription_id": "sub_1"}):
            pass

        [span] = finished(exporter, "billing.cancel_subscription")
        assert span.kind == SpanKind.CLIENT
        assert span.attributes["billing.operation"] == "cancel_subscription"
        assert span.attributes["billing.subscription_id"] == "sub_1"

    def test_record_exception_marks_span_failed(self, exporter):
        with billing_span("retrieve_subscription"):
            record_exception(RuntimeError("provider unavailable"))

        [span] = finished(exporter, "billing.retrieve_subscription")
        assert span.status.status_code == StatusCode.ERROR
        assert span.events[0].name == "exception"

    def test_no_ids_outside_a_span(self):
        assert get_trace_id() is None
        assert get_span_id() is None


class TestUsageSpans:
    """Tests for spans emitted by usage accounting."""

    @pytest.mark.asyncio
    async def test_increment_span_records_usage(self, exporter, session, clock, starter, make_subscription):
        subscription = await make_subscription(starter, designs_used_this_month=3)
        accounting = UsageAccounting(SubscriptionRepository(session), clock=clock)

        await accounting.increment_design_usage(subscription, starter)

        [span] = finished(exporter, "usage.increment_design")
        assert span.attributes["subscription.id"] == str(subscription.id)
        assert span.attributes["user.id"] == str(subscription.user_id)
        assert span.attributes["tier.id"] == str(starter.id)
        assert span.attributes["quota.limit"] == starter.designs_per_month
        assert span.attributes["quota.used"] == 4

    @pytest.mark.asyncio
    async def test_rejected_increment_fails_the_span(
        self, exporter, session, clock, starter, make_subscription
    ):
        subscription = await make_subscription(
            starter, designs_used_this_month=starter.designs_per_month
        )
        accounting = UsageAccounting(SubscriptionRepository(session), clock=clock)

        with pytest.raises(QuotaExceededError):
            await accounting.increment_design_usage(subscription, starter)

        [span] = finished(exporter, "usage.increment_design")
        assert span.attributes["quota.rejected"] is True
        assert span.status.status_code == StatusCode.ERROR

    @pytest.mark.asyncio
    async def test_active_count_swap_span(self, exporter, session, clock, professional, make_subscription):
        subscription = await make_subscription(professional, active_design_requests=1)
        accounting = UsageAccounting(SubscriptionRepository(session), clock=clock)

        await accounting.set_active_request_count(subscription, professional, 2)

        [span] = finished(exporter, "usage.set_active_requests")
        assert span.attributes["usage.expected"] == 1
        assert span.attributes["usage.count"] == 2


class TestBillingSpans:
    """Tests for spans emitted by the billing gateway."""

    @pytest.mark.asyncio
    async def test_cancel_span_carries_idempotency_key(self, exporter, gateway, fake_provider):
        await gateway.cancel_subscription("sub_1")

        [span] = finished(exporter, "billing.cancel_subscription")
        [(_, key)] = fake_provider.idempotency_keys
        assert span.kind == SpanKind.CLIENT
        assert span.attributes["billing.subscription_id"] == "sub_1"
        assert span.attributes["billing.idempotency_key"] == key
