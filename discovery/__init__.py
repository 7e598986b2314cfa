"""
Conduit - Service Discovery

Conduit does not implement a registry. This package defines the client
protocol the lifecycle talks to, an in-memory client for tests and local
runs, and the filter applied to the client's log events.

Testing:
    from discovery import InMemoryDiscoveryClient

    client = InMemoryDiscoveryClient()
    lifecycle = ServiceLifecycle(discovery=client)
    await lifecycle.init(config)

    assert client.registered
"""

from discovery.log_filter import (
    DEFAULT_RULES,
    OPTIONAL_COLLABORATOR_UNAVAILABLE,
    ROUTER_UNAVAILABLE_MESSAGE,
    DiscoveryLogFilter,
    LogFilterRule,
)
from discovery.memory import HealthLogEntry, InMemoryDiscoveryClient, find_free_port
from discovery.protocols import DiscoveryClient, LogEntry

__all__ = [
    # Protocol
    "DiscoveryClient",
    "LogEntry",
    # Clients
    "InMemoryDiscoveryClient",
    "HealthLogEntry",
    "find_free_port",
    # Log filtering
    "DiscoveryLogFilter",
    "LogFilterRule",
    "DEFAULT_RULES",
    "ROUTER_UNAVAILABLE_MESSAGE",
    "OPTIONAL_COLLABORATOR_UNAVAILABLE",
]
