"""OpenTelemetry tracing for usage mutations and billing provider calls.

Usage writes run in ``usage.*`` spans tagged with the subscription, its user
and its tier. Provider calls run in ``billing.*`` spans, so a slow provider
round trip shows up next to the handler that waited on it.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, SpanContext, Status, StatusCode

logger = logging.getLogger(__name__)

_tracer: Optional[trace.Tracer] = None
_provider: Optional[TracerProvider] = None


def setup_tracing(
    service_name: str,
    service_version: str,
    environment: str = "development",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False,
) -> trace.Tracer:
    """Install a tracer provider for this process.

    Args:
        service_name: Reported service name
        service_version: Reported service version
        environment: Deployment environment attribute
        otlp_endpoint: Collector endpoint; needs the ``otlp`` extra
        enable_console_export: Print finished spans to stdout

    Returns:
        The tracer later returned by ``get_tracer``
    """
    global _tracer, _provider

    _provider = TracerProvider(resource=Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
        "deployment.environment": environment,
    }))

    if otlp_endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        except ImportError:
            logger.warning("OTLP endpoint configured but the otlp extra is not installed")
        else:
            _provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
            logger.info(f"Exporting spans to {otlp_endpoint}")

    if enable_console_export:
        _provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(_provider)
    _tracer = trace.get_tracer(service_name, service_version)
    logger.info(f"Tracing initialized for {service_name} v{service_version}")
    return _tracer


def get_tracer() -> trace.Tracer:
    """The configured tracer, or a no-op tracer before ``setup_tracing``."""
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer


def _current_context() -> Optional[SpanContext]:
    context = trace.get_current_span().get_span_context()
    return context if context.is_valid else None


def get_trace_id() -> Optional[str]:
    context = _current_context()
    return format(context.trace_id, "032x") if context else None


def get_span_id() -> Optional[str]:
    context = _current_context()
    return format(context.span_id, "016x") if context else None


@contextmanager
def create_span(
    name: str,
    attributes: Optional[dict] = None,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
) -> Iterator[Span]:
    """Run the block inside a new current span."""
    with get_tracer().start_as_current_span(name, kind=kind, attributes=attributes or {}) as span:
        yield span


def subscription_attributes(subscription: Any) -> dict[str, str]:
    """Span attributes identifying a subscription, its user and its tier."""
    attributes = {"subscription.id": str(subscription.id)}
    user_id = getattr(subscription, "user_id", None)
    if user_id is not None:
        attributes["user.id"] = str(user_id)
    tier_id = getattr(subscription, "tier_id", None)
    if tier_id is not None:
        attributes["tier.id"] = str(tier_id)
    return attributes


@contextmanager
def usage_span(operation: str, subscription: Any, **attributes: Any) -> Iterator[Span]:
    """Span ``usage.<operation>`` around a quota counter write."""
    with create_span(
        f"usage.{operation}",
        attributes={**subscription_attributes(subscription), **attributes},
    ) as span:
        yield span


@contextmanager
def billing_span(operation: str, **attributes: Any) -> Iterator[Span]:
    """Client span ``billing.<operation>`` around a billing provider call."""
    with create_span(
        f"billing.{operation}",
        attributes={"billing.operation": operation, **attributes},
        kind=trace.SpanKind.CLIENT,
    ) as span:
        yield span


def record_exception(exception: Exception, attributes: Optional[dict] = None) -> None:
    """Attach ``exception`` to the current span and mark the span failed."""
    span = trace.get_current_span()
    span.record_exception(exception, attributes=attributes)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


def shutdown_tracing() -> None:
    """Flush pending spans and drop the provider."""
    global _provider, _tracer
    if _provider:
        _provider.shutdown()
        _provider = None
        _tracer = None
        logger.info("Tracing shutdown complete")
