"""
Conduit - Lifecycle Tracing

OpenTelemetry spans for the startup steps (discovery init, registration,
listen, plugin hooks) and for the shutdown drain. Nothing is exported unless
tracing is switched on; until then the global no-op provider answers.

Usage:
    from observability.tracing import setup_tracing, create_span

    setup_tracing(TracingConfig(service_name="offers", enabled=True))

    with create_span("lifecycle.register_service", attributes={"service.name": "offers"}):
        ...
"""
from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.sampling import (
    ALWAYS_OFF,
    ALWAYS_ON,
    ParentBased,
    Sampler,
    TraceIdRatioBased,
)
from opentelemetry.trace import Status, StatusCode

from observability.logging import get_logger

logger = get_logger(__name__)

LIFECYCLE_TRACER = "conduit.lifecycle"

_tracer_provider: Optional[TracerProvider] = None
_initialized: bool = False


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass
class TracingConfig:
    """Settings for setup_tracing.

    ``exporter`` is ``"otlp"`` (gRPC, batched) or ``"console"`` (printed as
    each span ends).
    """

    service_name: str = "conduit"
    service_version: str = "0.1.0"
    enabled: bool = field(default_factory=lambda: _env_flag("CONDUIT_TRACING", "false"))
    exporter: str = field(default_factory=lambda: os.getenv("CONDUIT_TRACE_EXPORTER", "otlp"))
    otlp_endpoint: str = field(
        default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    )
    sample_rate: float = field(
        default_factory=lambda: float(os.getenv("CONDUIT_TRACE_SAMPLE_RATE", "1.0"))
    )
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))


def _sampler(rate: float) -> Sampler:
    if rate >= 1.0:
        return ALWAYS_ON
    if rate <= 0.0:
        return ALWAYS_OFF
    # child spans follow whatever the root decided
    return ParentBased(root=TraceIdRatioBased(rate))


def _span_processors(config: TracingConfig) -> List[SpanProcessor]:
    if config.exporter == "console":
        return [SimpleSpanProcessor(ConsoleSpanExporter())]
    if config.exporter == "otlp":
        return [BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True))]
    raise ValueError(f"Unknown trace exporter: {config.exporter!r}")


def setup_tracing(config: Optional[TracingConfig] = None) -> trace.TracerProvider:
    """
    Install a TracerProvider for this process and return it.

    Disabled tracing returns the provider already installed, normally the
    no-op default. Calling again before ``shutdown_tracing`` is a no-op.
    """
    global _tracer_provider, _initialized

    if _initialized:
        return _tracer_provider or trace.get_tracer_provider()

    config = config or TracingConfig()

    if not config.enabled:
        _initialized = True
        return trace.get_tracer_provider()

    processors = _span_processors(config)

    provider = TracerProvider(
        resource=Resource.create({
            SERVICE_NAME: config.service_name,
            SERVICE_VERSION: config.service_version,
            "deployment.environment": config.environment,
        }),
        sampler=_sampler(config.sample_rate),
    )
    for processor in processors:
        provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    _initialized = True
    logger.debug(
        "Lifecycle tracing enabled",
        service=config.service_name,
        exporter=config.exporter,
        sample_rate=config.sample_rate,
    )
    return provider


def get_tracer(name: str = LIFECYCLE_TRACER) -> trace.Tracer:
    return trace.get_tracer(name)


def shutdown_tracing() -> None:
    """Flush spans still queued in the exporter and forget the provider."""
    global _tracer_provider, _initialized

    provider, _tracer_provider = _tracer_provider, None
    _initialized = False
    if provider is not None:
        provider.shutdown()


@contextmanager
def create_span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[trace.Span]:
    """
    Open a lifecycle span. ``None`` attribute values are skipped.

    An exception leaving the block marks the span as failed, is recorded on
    it and then propagates unchanged.
    """
    with get_tracer().start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
