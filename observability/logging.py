"""
Conduit - Structured Logging

structlog configured once per process. Every event carries the service name,
environment and process id; events written inside a span also carry its
trace_id and span_id, so a failed startup step can be matched to its trace.

Features:
- JSON lines for aggregation, or a coloured console renderer for local runs
- Service, process and OpenTelemetry context on every event
- uvicorn's own loggers routed through the same handler
- The AppLogger sink used by ServiceLifecycle.log

Usage:
    from observability.logging import LoggingConfig, setup_logging, get_logger

    setup_logging(LoggingConfig(service_name="offers", json_format=False))

    logger = get_logger(__name__)
    logger.info("Listener bound", port=5000)
"""
from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Protocol

import structlog
from structlog.types import EventDict, WrappedLogger

_configured: bool = False
_active_config: Optional[LoggingConfig] = None

# Loggers owned by the HTTP stack; their levels follow the service level
# except the access log, which the listener disables.
SERVER_LOGGERS = ("uvicorn", "uvicorn.error")
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "opentelemetry", "asyncio")


@dataclass
class LoggingConfig:
    """Settings for setup_logging."""

    service_name: str = "conduit"
    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    json_format: bool = field(
        default_factory=lambda: os.getenv("LOG_FORMAT", "json").lower() == "json"
    )
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))
    enable_trace_context: bool = True
    include_timestamp: bool = True
    stream: Any = None


def add_trace_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Copy the current span's ids into the event."""
    from opentelemetry import trace

    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        if ctx.is_valid:
            event_dict["trace_id"] = format(ctx.trace_id, "032x")
            event_dict["span_id"] = format(ctx.span_id, "016x")

    return event_dict


def add_service_context(service_name: str, environment: str) -> structlog.types.Processor:
    """Processor stamping service, environment and pid. Explicit values win."""
    pid = os.getpid()

    def processor(
        logger: WrappedLogger,
        method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        event_dict.setdefault("service", service_name)
        event_dict.setdefault("environment", environment)
        event_dict.setdefault("pid", pid)
        return event_dict

    return processor


def add_utc_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Without a config, only the first call has any effect. An explicit config
    that differs from the active one reconfigures; loggers look up the
    processor chain on every call, so existing module loggers follow.
    """
    global _configured, _active_config

    if _configured and (config is None or config == _active_config):
        return

    config = config or LoggingConfig()

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_context(config.service_name, config.environment),
    ]
    if config.include_timestamp:
        processors.append(add_utc_timestamp)
    if config.enable_trace_context:
        processors.append(add_trace_context)

    processors.extend([
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(default=str)
        if config.json_format
        else structlog.dev.ConsoleRenderer(colors=True),
    ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    _configure_root_logger(config)
    _active_config = config
    _configured = True


def _configure_root_logger(config: LoggingConfig) -> None:
    level = getattr(logging, config.level, logging.INFO)

    # structlog has already rendered the line
    handler = logging.StreamHandler(config.stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.propagate = True
        server_logger.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Logger for ``name``, configuring logging with defaults on first use.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Service registered", service="offers")
    """
    if not _configured:
        setup_logging()

    return structlog.get_logger(name)


def shutdown_logging() -> None:
    """Flush the root handlers and allow setup_logging to run again."""
    global _configured, _active_config

    for handler in logging.getLogger().handlers:
        handler.flush()

    _configured = False
    _active_config = None


class LogContext:
    """
    Bind key/values to every event logged inside the block.

    Example:
        >>> with LogContext(lifecycle_step="register_service"):
        ...     logger.info("Registering")
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs

    def __enter__(self) -> "LogContext":
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())


# =============================================================================
# APPLICATION LOG SINK
# =============================================================================


class AppLogger(Protocol):
    """Sink receiving ``{"event": type, "message": ...}`` entries from the lifecycle."""

    def fatal(self, entry: Mapping[str, Any]) -> None: ...

    def error(self, entry: Mapping[str, Any]) -> None: ...

    def debug(self, entry: Mapping[str, Any]) -> None: ...

    def info(self, entry: Mapping[str, Any]) -> None: ...


class StructlogAppLogger:
    """Default AppLogger writing through structlog."""

    def __init__(self, name: str = "conduit.service"):
        self._logger = get_logger(name)

    @staticmethod
    def _split(entry: Mapping[str, Any], default: str) -> tuple:
        data: Dict[str, Any] = dict(entry)
        log_type = data.pop("event", default)
        message = data.pop("message", None)
        if message is None:
            message = data.pop("error", log_type)
        return str(message), log_type, data

    def fatal(self, entry: Mapping[str, Any]) -> None:
        message, log_type, data = self._split(entry, "fatal")
        self._logger.critical(message, log_type=log_type, **data)

    def error(self, entry: Mapping[str, Any]) -> None:
        message, log_type, data = self._split(entry, "error")
        self._logger.error(message, log_type=log_type, **data)

    def debug(self, entry: Mapping[str, Any]) -> None:
        message, log_type, data = self._split(entry, "debug")
        self._logger.debug(message, log_type=log_type, **data)

    def info(self, entry: Mapping[str, Any]) -> None:
        message, log_type, data = self._split(entry, "info")
        self._logger.info(message, log_type=log_type, **data)
