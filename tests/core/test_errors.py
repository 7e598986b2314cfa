"""
Tests for core/errors.py - Error Taxonomy.

Covers:
- error_status resolution
- RequestError / NotFoundError status codes
- Structured error output and ErrorContext
"""
import pytest

from core.errors import (
    ConduitError,
    ConfigError,
    ErrorContext,
    ListenError,
    NotFoundError,
    PluginError,
    RegistrationError,
    RequestError,
    error_status,
    format_error_stack,
)


class TestErrorStatus:
    """Tests for error_status."""

    def test_default_is_500(self):
        assert error_status(RuntimeError("boom")) == 500

    def test_status_attribute(self):
        error = RuntimeError("missing")
        error.status = 404
        assert error_status(error) == 404

    def test_status_code_attribute(self):
        error = RuntimeError("teapot")
        error.status_code = 418
        assert error_status(error) == 418

    def test_invalid_status_falls_back(self):
        error = RuntimeError("weird")
        error.status = "404"
        assert error_status(error) == 500

    def test_request_errors(self):
        assert error_status(RequestError("conflict", status=409)) == 409
        assert error_status(NotFoundError()) == 404


class TestConduitError:
    """Tests for the error base class."""

    def test_to_dict(self):
        error = ConfigError("Config missing fields: x", missing_fields=["x"])
        data = error.to_dict()

        assert data["error_code"] == "CONFIG_ERROR"
        assert data["message"] == "Config missing fields: x"
        assert error.missing_fields == ["x"]

    def test_str_is_message(self):
        assert str(PluginError("plugin failed", plugin_name="audit")) == "plugin failed"

    def test_cause_is_kept(self):
        cause = OSError(98, "Address already in use")
        error = ListenError("bind failed", port=5000, errno=98, cause=cause)

        assert error.cause is cause
        assert error.port == 5000
        assert isinstance(error, ConduitError)

    def test_format_error_stack(self):
        try:
            raise ValueError("trace me")
        except ValueError as e:
            stack = format_error_stack(e)

        assert "ValueError: trace me" in stack
        assert "test_format_error_stack" in stack

    def test_not_found_message(self):
        with pytest.raises(RequestError, match="Not Found"):
            raise NotFoundError()

    def test_to_dict_names_cause(self):
        error = ListenError("bind failed", cause=PermissionError("denied"))

        assert error.to_dict()["cause"] == "PermissionError: denied"
        assert error.to_dict()["severity"] == "fatal"


class TestErrorContext:
    """Tests for ErrorContext."""

    def test_outside_span_has_no_trace_ids(self):
        context = ErrorContext.from_current_span("config_validation", "config", source="inline")

        assert context.trace_id is None
        assert context.to_dict() == {
            "operation": "config_validation",
            "component": "config",
            "source": "inline",
        }

    def test_attached_to_error(self):
        context = ErrorContext(operation="register_service", component="discovery", trace_id="ab", span_id="cd")
        error = RegistrationError("registry down", context=context)

        assert error.to_dict()["context"]["trace_id"] == "ab"
        assert error.to_dict()["context"]["span_id"] == "cd"
