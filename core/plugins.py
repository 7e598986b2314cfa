"""
Conduit - Plugin Registry

Plugins extend a service with behavior that has to see the resolved
configuration and know when the service is ready. Every plugin implements
three operations:

    set_lifecycle_owner(owner)   called once, at registration
    set_config(config)           phase 1, after the discovery client resolved the config
    on_service_ready()           phase 2, after the listener is live

Each may return a value or an awaitable. Within a phase, calls start in
registration order and every plugin finishes the phase before the next phase
begins.

Usage:
    class AuditPlugin(PluginBase):
        async def on_service_ready(self) -> None:
            self.owner.log("info", "audit plugin ready")

    await lifecycle.use(AuditPlugin())
"""
from __future__ import annotations

from abc import ABC
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from core.async_utils import maybe_await, run_barrier
from core.errors import PluginError
from observability.logging import get_logger

if TYPE_CHECKING:
    from core.lifecycle import ServiceLifecycle

logger = get_logger(__name__)

PLUGIN_CAPABILITIES = ("set_lifecycle_owner", "set_config", "on_service_ready")


@runtime_checkable
class ServicePlugin(Protocol):
    """Interface every registered plugin satisfies."""

    def set_lifecycle_owner(self, owner: "ServiceLifecycle") -> Any:
        ...

    def set_config(self, config: Mapping[str, Any]) -> Any:
        ...

    def on_service_ready(self) -> Any:
        ...


class PluginBase(ABC):
    """
    Convenience base class with no-op phase handlers.

    Keeps a reference to the owning lifecycle and the last config it was given
    so subclasses only override the phases they care about.
    """

    def __init__(self, name: Optional[str] = None):
        self._name = name or self.__class__.__name__
        self.owner: Optional["ServiceLifecycle"] = None
        self.config: Dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._name

    def set_lifecycle_owner(self, owner: "ServiceLifecycle") -> Any:
        self.owner = owner

    def set_config(self, config: Mapping[str, Any]) -> Any:
        self.config = dict(config)

    def on_service_ready(self) -> Any:
        return None


def plugin_name(plugin: Any) -> str:
    name = getattr(plugin, "name", None)
    return name if isinstance(name, str) and name else type(plugin).__name__


def missing_capabilities(plugin: Any) -> List[str]:
    """Names of required plugin operations ``plugin`` does not provide."""
    return [
        capability
        for capability in PLUGIN_CAPABILITIES
        if not callable(getattr(plugin, capability, None))
    ]


class PluginRegistry:
    """Ordered plugin list driving the two plugin phases."""

    def __init__(self) -> None:
        self._plugins: List[ServicePlugin] = []

    def __len__(self) -> int:
        return len(self._plugins)

    def __iter__(self):
        return iter(list(self._plugins))

    @property
    def plugins(self) -> List[ServicePlugin]:
        return list(self._plugins)

    def validate(self, plugins: List[Any]) -> None:
        """Reject objects that do not implement every plugin operation."""
        for plugin in plugins:
            missing = missing_capabilities(plugin)
            if missing:
                raise PluginError(
                    f"Plugin {plugin_name(plugin)} is missing required operations: "
                    f"{', '.join(missing)}",
                    plugin_name=plugin_name(plugin),
                    phase_name="register",
                )

    async def register(self, owner: "ServiceLifecycle", *plugins: Any) -> List[Any]:
        """
        Validate then register ``plugins`` in order.

        Nothing is registered when any plugin is malformed. Each plugin is
        handed the owning lifecycle as soon as it is registered.
        """
        self.validate(list(plugins))

        results = []
        for plugin in plugins:
            self._plugins.append(plugin)
            try:
                results.append(await maybe_await(plugin.set_lifecycle_owner(owner)))
            except Exception as e:
                raise PluginError(
                    f"Plugin {plugin_name(plugin)} failed to bind: {e}",
                    plugin_name=plugin_name(plugin),
                    phase_name="register",
                    cause=e,
                ) from e
            logger.debug("Registered plugin", plugin=plugin_name(plugin))
        return results

    async def apply_config(self, config: Mapping[str, Any]) -> List[Any]:
        """Phase 1: hand the resolved config to every plugin."""
        return await self._run_phase("set_config", lambda plugin: plugin.set_config(config))

    async def notify_ready(self) -> List[Any]:
        """Phase 2: tell every plugin the service is listening."""
        return await self._run_phase("on_service_ready", lambda plugin: plugin.on_service_ready())

    async def _run_phase(self, phase: str, call) -> List[Any]:
        async def invoke(plugin: ServicePlugin) -> Any:
            try:
                return await maybe_await(call(plugin))
            except Exception as e:
                raise PluginError(
                    f"Plugin {plugin_name(plugin)} failed in {phase}: {e}",
                    plugin_name=plugin_name(plugin),
                    phase_name=phase,
                    cause=e,
                ) from e

        logger.debug("Running plugin phase", phase=phase, plugins=len(self._plugins))
        return await run_barrier(self._plugins, invoke)
