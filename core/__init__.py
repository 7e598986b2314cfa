"""
Conduit - Core Module

Lifecycle orchestration for an HTTP microservice:
- Config validation
- Plugin registry and its two barrier phases
- ServiceLifecycle: ordered startup, route registration, logging
- ShutdownCoordinator: signal-driven drain with a watchdog
- Error taxonomy and shared types

Usage:
    from core import ServiceLifecycle, PluginBase

    lifecycle = ServiceLifecycle()
    await lifecycle.use(MyPlugin())
    descriptor = await lifecycle.init(config, "1.0.0", register_routes)
"""

from core.errors import (
    ConduitError,
    ConfigError,
    ErrorContext,
    ErrorSeverity,
    ListenError,
    NotFoundError,
    PluginError,
    RegistrationError,
    RequestError,
    ServiceStateError,
    error_status,
)
from core.async_utils import (
    ReadySignal,
    maybe_await,
    run_barrier,
    schedule,
)
from core.config_validator import (
    REQUIRED_MEMBERS,
    ConfigValidator,
    ValidationResult,
    check_registry_block,
    validate_config,
)
from core.types import (
    RouteInfo,
    ServiceConfig,
    ServiceDescriptor,
    copy_config,
    descriptor_from,
)
from core.serialization import safe_stringify
from core.plugins import (
    PluginBase,
    PluginRegistry,
    ServicePlugin,
)
from core.shutdown import ShutdownCoordinator, ShutdownState
from core.lifecycle import (
    LifecyclePhase,
    ServiceLifecycle,
    resolve_init_arguments,
)

__all__ = [
    # Errors
    "ConduitError",
    "ConfigError",
    "RegistrationError",
    "PluginError",
    "ListenError",
    "RequestError",
    "NotFoundError",
    "ServiceStateError",
    "ErrorContext",
    "ErrorSeverity",
    "error_status",
    # Async
    "ReadySignal",
    "maybe_await",
    "run_barrier",
    "schedule",
    # Config validation
    "REQUIRED_MEMBERS",
    "ConfigValidator",
    "ValidationResult",
    "check_registry_block",
    "validate_config",
    # Types
    "RouteInfo",
    "ServiceConfig",
    "ServiceDescriptor",
    "copy_config",
    "descriptor_from",
    "safe_stringify",
    # Plugins
    "PluginBase",
    "PluginRegistry",
    "ServicePlugin",
    # Lifecycle
    "LifecyclePhase",
    "ServiceLifecycle",
    "resolve_init_arguments",
    "ShutdownCoordinator",
    "ShutdownState",
]
