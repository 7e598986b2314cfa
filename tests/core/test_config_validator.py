"""
Tests for core/config_validator.py - Configuration Validation.

Covers:
- validate_config dotted-path reporting
- check_registry_block messages
- ValidationResult error aggregation
- ConfigValidator.check ordering
"""
import pytest

from core.config_validator import (
    REQUIRED_MEMBERS,
    ConfigValidator,
    ValidationResult,
    check_registry_block,
    validate_config,
)
from core.errors import ConfigError
from tests.conftest import make_config


# =============================================================================
# validate_config
# =============================================================================

class TestValidateConfig:
    """Tests for the schema walk."""

    def test_valid_config_has_no_missing_fields(self):
        assert validate_config(make_config()) == []

    def test_missing_service_name(self):
        assert validate_config(make_config(name=None)) == ["service_descriptor.service_name"]

    def test_missing_description(self):
        missing = validate_config(make_config(description=None))
        assert missing == ["service_descriptor.service_description"]

    def test_missing_route_callback(self):
        config = make_config()
        del config["route_registration_callback"]
        assert validate_config(config) == ["route_registration_callback"]

    def test_none_counts_as_missing(self):
        config = make_config(route_registration_callback=None)
        assert validate_config(config) == ["route_registration_callback"]

    def test_reports_every_missing_path(self):
        config = make_config(name=None, description=None)
        del config["route_registration_callback"]
        assert validate_config(config) == [
            "service_descriptor.service_name",
            "service_descriptor.service_description",
            "route_registration_callback",
        ]

    def test_missing_block_reported_once(self):
        assert validate_config({"route_registration_callback": print}) == ["service_descriptor"]

    def test_does_not_modify_input(self):
        config = make_config(name=None)
        snapshot = {key: value for key, value in config.items()}
        validate_config(config)
        assert config == snapshot

    def test_schema_shape(self):
        assert set(REQUIRED_MEMBERS) == {"service_descriptor", "route_registration_callback"}


# =============================================================================
# Registry block
# =============================================================================

class TestRegistryBlock:
    """Tests for check_registry_block."""

    def test_missing_service_descriptor(self):
        with pytest.raises(ConfigError, match="Config missing service_descriptor block"):
            check_registry_block({"route_registration_callback": print})

    def test_missing_redis(self):
        config = make_config()
        del config["service_descriptor"]["redis"]
        with pytest.raises(ConfigError, match="Config missing redis block"):
            check_registry_block(config)

    def test_present_blocks_pass(self):
        check_registry_block(make_config())


# =============================================================================
# ValidationResult / ConfigValidator
# =============================================================================

class TestValidationResult:
    """Tests for ValidationResult."""

    def test_raise_if_invalid_joins_paths(self):
        result = ValidationResult(
            missing_fields=["service_descriptor.service_name", "route_registration_callback"]
        )

        with pytest.raises(ConfigError) as exc_info:
            result.raise_if_invalid()

        assert str(exc_info.value) == (
            "Config missing fields: service_descriptor.service_name route_registration_callback"
        )
        assert exc_info.value.missing_fields == [
            "service_descriptor.service_name",
            "route_registration_callback",
        ]

    def test_empty_result_is_valid(self):
        result = ValidationResult()

        result.raise_if_invalid()
        assert result.valid


class TestConfigValidator:
    """Tests for ConfigValidator.check."""

    def test_registry_block_checked_before_walk(self):
        config = make_config(name=None)
        del config["service_descriptor"]["redis"]

        with pytest.raises(ConfigError, match="redis block"):
            ConfigValidator().check(config)

    def test_walk_errors_after_block_check(self):
        with pytest.raises(ConfigError, match="Config missing fields: service_descriptor.service_name"):
            ConfigValidator().check(make_config(name=None))

    def test_rejects_non_mapping(self):
        with pytest.raises(ConfigError, match="must be a mapping"):
            ConfigValidator().check(["not", "a", "mapping"])

    def test_validate_returns_result(self):
        result = ConfigValidator().validate(make_config(description=None))
        assert not result.valid
        assert result.missing_fields == ["service_descriptor.service_description"]
