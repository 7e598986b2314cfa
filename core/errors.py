"""
Conduit - Error Taxonomy

Startup failures reach the caller of ``ServiceLifecycle.init`` as one of the
ConduitError subclasses below. Failures while serving a request only need a
status code; the terminal error handler reads it with ``error_status``.

Every ConduitError marks the active OpenTelemetry span as failed when it is
created, so a broken startup step shows up in the trace even when the
exception is later translated.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode


HTTP_NOT_FOUND = 404
HTTP_SERVER_ERROR = 500


class ErrorSeverity(Enum):
    """How loudly an error is reported; values name AppLogger methods."""

    DEBUG = "debug"
    INFO = "info"
    ERROR = "error"
    FATAL = "fatal"


@dataclass
class ErrorContext:
    """Where a lifecycle error happened, plus the span it happened in."""

    operation: str
    component: str
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {"operation": self.operation, "component": self.component, **self.details}
        if self.trace_id:
            data["trace_id"] = self.trace_id
            data["span_id"] = self.span_id
        return data

    @classmethod
    def from_current_span(cls, operation: str, component: str, **details: Any) -> "ErrorContext":
        span_context = trace.get_current_span().get_span_context()
        if not span_context.is_valid:
            return cls(operation=operation, component=component, details=details)
        return cls(
            operation=operation,
            component=component,
            trace_id=format(span_context.trace_id, "032x"),
            span_id=format(span_context.span_id, "016x"),
            details=details,
        )


class ConduitError(Exception):
    """Base class for lifecycle errors.

    ``cause`` keeps the collaborator exception that was translated; raise
    with ``from`` as well so the traceback chain survives.
    """

    error_code: str = "CONDUIT_ERROR"
    default_severity: ErrorSeverity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        severity: Optional[ErrorSeverity] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context
        self.severity = severity or self.default_severity
        self.cause = cause
        self._mark_span()

    def _mark_span(self) -> None:
        span = trace.get_current_span()
        if not span.is_recording():
            return
        span.set_status(Status(StatusCode.ERROR, self.message))
        span.set_attribute("conduit.error_code", self.error_code)
        if self.context:
            span.set_attribute("conduit.error_component", self.context.component)

    def to_dict(self) -> Dict[str, Any]:
        """Entry shape handed to the AppLogger."""
        data: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
        }
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        if self.context:
            data["context"] = self.context.to_dict()
        return data

    def __str__(self) -> str:
        return self.message


class ConfigError(ConduitError):
    """Config is missing required blocks or fields, or could not be loaded."""

    error_code = "CONFIG_ERROR"
    default_severity = ErrorSeverity.FATAL

    def __init__(
        self,
        message: str,
        missing_fields: Optional[List[str]] = None,
        source: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.missing_fields = missing_fields or []
        self.source = source


class RegistrationError(ConduitError):
    """Discovery client init or service registration failed."""

    error_code = "REGISTRATION_ERROR"
    default_severity = ErrorSeverity.FATAL


class PluginError(ConduitError):
    """Plugin rejected at ``use`` time or raised inside a hook."""

    error_code = "PLUGIN_ERROR"
    default_severity = ErrorSeverity.FATAL

    def __init__(
        self,
        message: str,
        plugin_name: Optional[str] = None,
        phase_name: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.plugin_name = plugin_name
        self.phase_name = phase_name


class ListenError(ConduitError):
    """Listener failed to bind; ``errno`` is the socket error number."""

    error_code = "LISTEN_ERROR"
    default_severity = ErrorSeverity.FATAL

    def __init__(
        self,
        message: str,
        port: Optional[int] = None,
        errno: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.port = port
        self.errno = errno


class ServiceStateError(ConduitError):
    """Call made in the wrong lifecycle phase."""

    error_code = "STATE_ERROR"


class RequestError(ConduitError):
    """Raised by handlers to answer with ``status`` instead of 500."""

    error_code = "REQUEST_ERROR"

    def __init__(self, message: str, status: int = HTTP_SERVER_ERROR, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status = status


class NotFoundError(RequestError):
    error_code = "NOT_FOUND"
    default_severity = ErrorSeverity.INFO

    def __init__(self, message: str = "Not Found", **kwargs: Any):
        super().__init__(message, status=HTTP_NOT_FOUND, **kwargs)


def error_status(error: BaseException) -> int:
    """``status`` or ``status_code`` of an error when it is a valid HTTP code, else 500."""
    for attr in ("status", "status_code"):
        status = getattr(error, attr, None)
        if status is not None:
            break
    if isinstance(status, int) and 100 <= status <= 599:
        return status
    return HTTP_SERVER_ERROR


def format_error_stack(error: BaseException) -> str:
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))
