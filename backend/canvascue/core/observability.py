"""Process-wide logging, tracing and metrics setup.

Called once by whatever process hosts the library (the handler process or
a script) before any subscription operation runs.
"""

from canvascue.core.config import Settings
from canvascue.core.logging import setup_logging
from canvascue.core.metrics import set_app_info
from canvascue.core.tracing import setup_tracing, shutdown_tracing


def setup_observability(settings: Settings) -> None:
    """Configure structured logging, the tracer provider and app info metrics."""
    setup_logging(
        level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
        json_format=settings.LOG_JSON,
        include_stack_trace=True,
    )

    setup_tracing(
        service_name=settings.PROJECT_NAME,
        service_version=settings.VERSION,
        environment=settings.ENVIRONMENT,
        otlp_endpoint=settings.OTLP_ENDPOINT,
        enable_console_export=settings.TRACE_CONSOLE_EXPORT,
    )

    set_app_info(version=settings.VERSION, environment=settings.ENVIRONMENT)


def shutdown_observability() -> None:
    """Flush pending spans."""
    shutdown_tracing()
