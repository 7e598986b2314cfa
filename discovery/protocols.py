"""
Conduit - Discovery Client Protocol

The operations ServiceLifecycle needs from a service registry client. Any
method may return a plain value or an awaitable; the lifecycle awaits
awaitables.
"""
from __future__ import annotations

from typing import Any, Callable, List, Mapping, Protocol, TypedDict, runtime_checkable


class LogEntry(TypedDict, total=False):
    """Payload of a client ``log`` event. ``msg`` wins over ``message``."""
    type: str
    msg: str
    message: Any
    classification: str


LogHandler = Callable[[LogEntry], Any]


@runtime_checkable
class DiscoveryClient(Protocol):
    """Service registry client driven by ServiceLifecycle."""

    def init(self, config: Mapping[str, Any], test_mode: bool = False) -> Any:
        """
        Connect to the registry.

        Returns the resolved config mapping, which replaces the one the
        lifecycle captured. Clients fill ``service_ip`` and ``service_port``
        when the caller left them empty.
        """
        ...

    def register_service(self) -> Any:
        """Register this instance and return its service descriptor."""
        ...

    def register_routes(self, routes: List[str]) -> Any:
        """Advertise ``[METHOD]path`` strings for this service."""
        ...

    def send_to_health_log(self, level: str, message: Any, suppress_emit: bool = False) -> Any:
        """Append to the instance health log without re-emitting a ``log`` event."""
        ...

    def shutdown(self) -> Any:
        """Deregister and disconnect. The result is handed back to the caller."""
        ...

    def on(self, event: str, handler: LogHandler) -> Any:
        """Subscribe to client events. Conduit only listens to ``log``."""
        ...

    def get_service_name(self) -> str:
        ...

    def get_instance_version(self) -> str:
        ...
