"""Tests for process observability setup and the metrics registry."""

import logging

import pytest

from canvascue.core import tracing
from canvascue.core.config import Settings
from canvascue.core.logging import StructuredFormatter
from canvascue.core.metrics import (
    QUOTA_REJECTIONS_TOTAL,
    REGISTRY,
    get_content_type,
    get_metrics,
)
from canvascue.core.observability import setup_observability, shutdown_observability


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestMetricsExposition:
    """Tests for the Prometheus text output."""

    def test_quota_rejections_are_exported(self):
        QUOTA_REJECTIONS_TOTAL.labels(kind="monthly").inc()

        output = get_metrics()

        assert b"canvascue_quota_rejections_total" in output
        assert b'kind="monthly"' in output

    def test_content_type(self):
        assert get_content_type().startswith("text/plain")


class TestObservabilitySetup:
    """Tests for setup_observability."""

    def test_configures_json_logging_and_app_info(self, restore_root_logger):
        settings = Settings(LOG_JSON=True, LOG_LEVEL="WARNING", ENVIRONMENT="test")

        try:
            setup_observability(settings)

            assert restore_root_logger.level == logging.WARNING
            assert len(restore_root_logger.handlers) == 1
            assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)
            assert tracing._provider is not None
            assert REGISTRY.get_sample_value(
                "canvascue_app_info",
                {"version": settings.VERSION, "environment": "test"},
            ) == 1.0
        finally:
            shutdown_observability()

        assert tracing._provider is None

    def test_debug_overrides_log_level(self, restore_root_logger):
        try:
            setup_observability(Settings(DEBUG=True, LOG_LEVEL="ERROR", LOG_JSON=False))

            assert restore_root_logger.level == logging.DEBUG
            assert not isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)
        finally:
            shutdown_observability()
