"""
Conduit - Configuration Validation

Checks a service configuration against the fixed required-field schema before
any side effect happens:

- The registry connection block is checked first and fails with its own message
- The required-field schema is walked one level deep and missing dotted paths
  are collected
- All missing paths are reported together in one ``ConfigError``
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from core.errors import ConfigError, ErrorContext

SERVICE_BLOCK = "service_descriptor"
REGISTRY_BLOCK = "redis"

# Mapping values expand to their own required sub-keys; string values mark a
# key that only has to be present.
REQUIRED_MEMBERS: Dict[str, Any] = {
    SERVICE_BLOCK: {
        "service_name": "",
        "service_description": "",
    },
    "route_registration_callback": "",
}


@dataclass
class ValidationResult:
    """Missing required fields found by one validation pass."""

    missing_fields: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.missing_fields

    def raise_if_invalid(self) -> None:
        """Raise ConfigError naming every missing field."""
        if not self.valid:
            missing = self.missing_fields
            raise ConfigError(
                f"Config missing fields: {' '.join(missing)}",
                missing_fields=missing,
                context=ErrorContext.from_current_span(
                    operation="config_validation",
                    component="config",
                ),
            )


def _is_missing(config: Mapping[str, Any], key: str) -> bool:
    return config.get(key) is None


def validate_config(config: Mapping[str, Any]) -> List[str]:
    """
    Return the dotted paths of required fields missing from ``config``.

    An empty list means the config passed. The input is not modified.
    """
    missing: List[str] = []

    for key, schema in REQUIRED_MEMBERS.items():
        if _is_missing(config, key):
            missing.append(key)
            continue

        if isinstance(schema, Mapping):
            block = config[key]
            if not isinstance(block, Mapping):
                missing.extend(f"{key}.{sub_key}" for sub_key in schema)
                continue
            for sub_key in schema:
                if _is_missing(block, sub_key):
                    missing.append(f"{key}.{sub_key}")

    return missing


def check_registry_block(config: Mapping[str, Any]) -> None:
    """Fail fast when the service or registry connection block is absent."""
    block = config.get(SERVICE_BLOCK)
    if not isinstance(block, Mapping):
        raise ConfigError(
            f"Config missing {SERVICE_BLOCK} block",
            missing_fields=[SERVICE_BLOCK],
        )
    if not block.get(REGISTRY_BLOCK):
        raise ConfigError(
            f"Config missing {REGISTRY_BLOCK} block",
            missing_fields=[f"{SERVICE_BLOCK}.{REGISTRY_BLOCK}"],
        )


class ConfigValidator:
    """Validation gate run by ``ServiceLifecycle`` before startup."""

    def validate(self, config: Mapping[str, Any]) -> ValidationResult:
        return ValidationResult(missing_fields=validate_config(config))

    def check(self, config: Mapping[str, Any]) -> None:
        """Raise ConfigError if ``config`` cannot be used to start a service."""
        if not isinstance(config, Mapping):
            raise ConfigError(f"Config must be a mapping, got {type(config).__name__}")
        check_registry_block(config)
        self.validate(config).raise_if_invalid()
