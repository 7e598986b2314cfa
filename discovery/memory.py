"""
Conduit - In-Memory Discovery Client

Registry client that keeps everything in process. Used by the test suite and
for running a service locally without a registry. It records what the
lifecycle asked of it so tests can assert on registrations, routes, health
log entries and shutdown calls.

Usage:
    client = InMemoryDiscoveryClient()
    lifecycle = ServiceLifecycle(discovery=client)
    await lifecycle.init(config)

    assert client.registered
    assert "[GET]/v1/offers/" in client.routes
"""
from __future__ import annotations

import socket
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, DefaultDict, Dict, List, Mapping, Optional

from core.errors import RegistrationError
from core.types import ServiceDescriptor, copy_config
from observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SERVICE_IP = "127.0.0.1"


def find_free_port(host: str = DEFAULT_SERVICE_IP) -> int:
    """Ask the OS for an unused TCP port on ``host``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


@dataclass
class HealthLogEntry:
    """One line of the instance health log."""

    level: str
    message: Any
    suppress_emit: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryDiscoveryClient:
    """
    Discovery client backed by plain attributes.

    Args:
        instance_id: fixed instance id; random when omitted
        default_ip: address filled in when the config leaves ``service_ip`` empty
    """

    def __init__(self, instance_id: Optional[str] = None, default_ip: str = DEFAULT_SERVICE_IP):
        self.instance_id = instance_id or uuid.uuid4().hex
        self.default_ip = default_ip

        self.config: Dict[str, Any] = {}
        self.test_mode = False
        self.initialized = False
        self.registered = False
        self.routes: List[str] = []
        self.health_log: List[HealthLogEntry] = []
        self.shutdown_calls = 0
        self._listeners: DefaultDict[str, List[Callable[[Any], Any]]] = defaultdict(list)

    # ------------------------------------------------------------------
    # DiscoveryClient
    # ------------------------------------------------------------------

    async def init(self, config: Mapping[str, Any], test_mode: bool = False) -> Dict[str, Any]:
        resolved = copy_config(config)
        block = resolved.get("service_descriptor")
        if not isinstance(block, dict):
            raise RegistrationError("Discovery client needs a service_descriptor block")

        if not block.get("service_ip"):
            block["service_ip"] = self.default_ip
        if not block.get("service_port"):
            block["service_port"] = find_free_port(self.default_ip)

        self.config = resolved
        self.test_mode = test_mode
        self.initialized = True
        self.emit("log", {"type": "debug", "msg": f"Discovery client ready for {block.get('service_name')}"})
        return resolved

    async def register_service(self) -> ServiceDescriptor:
        if not self.initialized:
            raise RegistrationError("Discovery client used before init")

        block = self.config["service_descriptor"]
        self.registered = True
        logger.debug("Service registered", service=block.get("service_name"), instance=self.instance_id)
        return ServiceDescriptor(
            service_name=block.get("service_name", ""),
            instance_id=self.instance_id,
            service_ip=block.get("service_ip", ""),
            service_port=int(block.get("service_port") or 0),
            service_version=block.get("service_version"),
        )

    def register_routes(self, routes: List[str]) -> None:
        for route in routes:
            if route not in self.routes:
                self.routes.append(route)

    def send_to_health_log(self, level: str, message: Any, suppress_emit: bool = False) -> None:
        self.health_log.append(HealthLogEntry(level=level, message=message, suppress_emit=suppress_emit))
        if not suppress_emit:
            self.emit("log", {"type": level, "message": message})

    async def shutdown(self) -> Dict[str, Any]:
        self.shutdown_calls += 1
        was_registered = self.registered
        self.registered = False
        return {"instance_id": self.instance_id, "deregistered": was_registered}

    def on(self, event: str, handler: Callable[[Any], Any]) -> None:
        self._listeners[event].append(handler)

    def get_service_name(self) -> str:
        return str(self.config.get("service_descriptor", {}).get("service_name", ""))

    def get_instance_version(self) -> str:
        return str(self.config.get("service_descriptor", {}).get("service_version") or "")

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def emit(self, event: str, entry: Any) -> None:
        """Deliver ``entry`` to every handler subscribed to ``event``."""
        for handler in list(self._listeners[event]):
            handler(entry)

    def listener_count(self, event: str) -> int:
        return len(self._listeners[event])
