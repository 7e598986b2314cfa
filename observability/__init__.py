"""
Conduit - Observability Package

Tracing and structured logging for the service lifecycle.

Components:
- tracing: OpenTelemetry spans around startup phases and shutdown
- logging: structlog with trace context, plus the AppLogger sink

Usage:
    from observability import setup_observability, get_logger

    setup_observability(service_name="offers")
    logger = get_logger(__name__)
"""
from .logging import (
    AppLogger,
    LogContext,
    LoggingConfig,
    StructlogAppLogger,
    get_logger,
    setup_logging,
    shutdown_logging,
)
from .tracing import (
    TracingConfig,
    create_span,
    get_tracer,
    setup_tracing,
    shutdown_tracing,
)

__all__ = [
    # Tracing
    "setup_tracing",
    "get_tracer",
    "create_span",
    "TracingConfig",
    "shutdown_tracing",
    # Logging
    "setup_logging",
    "get_logger",
    "LoggingConfig",
    "LogContext",
    "AppLogger",
    "StructlogAppLogger",
    "shutdown_logging",
    # Combined setup
    "setup_observability",
    "shutdown_observability",
]


def setup_observability(
    service_name: str = "conduit",
    service_version: str = "0.1.0",
    tracing_enabled: bool = False,
    otlp_endpoint: str = "http://localhost:4317",
    sample_rate: float = 1.0,
    log_level: str = "INFO",
    json_logs: bool = True,
    environment: str = "development",
) -> None:
    """
    Initialize logging and tracing for a service.

    Logging is configured first so tracing setup can log through it.
    """
    setup_logging(LoggingConfig(
        service_name=service_name,
        level=log_level,
        json_format=json_logs,
        environment=environment,
    ))

    setup_tracing(TracingConfig(
        service_name=service_name,
        service_version=service_version,
        otlp_endpoint=otlp_endpoint,
        enabled=tracing_enabled,
        sample_rate=sample_rate,
        environment=environment,
    ))


def shutdown_observability() -> None:
    """Flush spans and log handlers."""
    shutdown_tracing()
    shutdown_logging()
