"""Prometheus metrics for subscription accounting.

Tracks quota enforcement, usage mutations, lifecycle transitions and
billing provider calls.
"""

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    multiprocess,
)
import os

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., with gunicorn)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "canvascue_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# Usage Accounting Metrics
# ============================================
QUOTA_REJECTIONS_TOTAL = Counter(
    "canvascue_quota_rejections_total",
    "Usage changes rejected because a tier quota was reached",
    ["kind"],
    registry=REGISTRY,
)

DESIGN_USAGE_INCREMENTS_TOTAL = Counter(
    "canvascue_design_usage_increments_total",
    "Monthly design slots consumed",
    registry=REGISTRY,
)

MONTHLY_USAGE_RESETS_TOTAL = Counter(
    "canvascue_monthly_usage_resets_total",
    "Monthly usage counters reset at a calendar month boundary",
    registry=REGISTRY,
)

USAGE_CAS_CONFLICTS_TOTAL = Counter(
    "canvascue_usage_cas_conflicts_total",
    "Active request count updates that lost a compare-and-swap race",
    registry=REGISTRY,
)


# ============================================
# Subscription Lifecycle Metrics
# ============================================
SUBSCRIPTION_TRANSITIONS_TOTAL = Counter(
    "canvascue_subscription_transitions_total",
    "Subscription status transitions",
    ["from_status", "to_status"],
    registry=REGISTRY,
)


# ============================================
# Billing Provider Metrics
# ============================================
BILLING_PROVIDER_CALLS_TOTAL = Counter(
    "canvascue_billing_provider_calls_total",
    "Billing provider calls by outcome",
    ["operation", "status"],
    registry=REGISTRY,
)

BILLING_PROVIDER_CALL_DURATION_SECONDS = Histogram(
    "canvascue_billing_provider_call_duration_seconds",
    "Billing provider call duration in seconds, retries included",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics."""
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
