"""
Conduit - Test Configuration

Pytest fixtures and configuration for all tests.
"""
import pytest
from typing import Any, Dict, List, Mapping, Optional
from unittest.mock import MagicMock

from config import LifecycleSettings
from core.lifecycle import ServiceLifecycle
from discovery import InMemoryDiscoveryClient


class RecordingAppLogger:
    """AppLogger that keeps every entry it receives."""

    def __init__(self):
        self.entries: List[tuple] = []

    def _record(self, level: str, entry: Mapping[str, Any]) -> None:
        self.entries.append((level, dict(entry)))

    def fatal(self, entry):
        self._record("fatal", entry)

    def error(self, entry):
        self._record("error", entry)

    def debug(self, entry):
        self._record("debug", entry)

    def info(self, entry):
        self._record("info", entry)

    def at(self, level: str) -> List[Dict[str, Any]]:
        return [entry for lvl, entry in self.entries if lvl == level]


class FakeListener:
    """Listener stand-in that never opens a socket."""

    def __init__(self, host: str, port: int, assigned_port: int = 8080):
        self.host = host
        self.requested_port = port
        self.port = port or assigned_port
        self.app = None
        self.listening = False
        self.close_calls = 0

    async def listen(self, app) -> None:
        self.app = app
        self.listening = True

    async def close(self) -> None:
        self.close_calls += 1
        self.listening = False


@pytest.fixture
def settings() -> LifecycleSettings:
    """Settings with no drain delay so shutdown tests run fast."""
    return LifecycleSettings(
        host="127.0.0.1",
        drain_delay=0.0,
        force_exit_timeout=5.0,
        tracing_enabled=False,
    )


@pytest.fixture
def app_logger() -> RecordingAppLogger:
    return RecordingAppLogger()


@pytest.fixture
def discovery() -> InMemoryDiscoveryClient:
    return InMemoryDiscoveryClient(instance_id="instance-1")


@pytest.fixture
def listeners() -> List[FakeListener]:
    """Every FakeListener created by the lifecycle fixture."""
    return []


@pytest.fixture
def lifecycle(discovery, app_logger, settings, listeners) -> ServiceLifecycle:
    """Lifecycle wired to in-memory collaborators."""

    def make_listener(host: str, port: int) -> FakeListener:
        listener = FakeListener(host, port)
        listeners.append(listener)
        return listener

    return ServiceLifecycle(
        discovery=discovery,
        app_logger=app_logger,
        listener_factory=make_listener,
        settings=settings,
        exit_func=MagicMock(name="exit"),
        force_exit=MagicMock(name="force_exit"),
    )


@pytest.fixture
def service_config(tmp_path) -> Dict[str, Any]:
    """Minimal valid service configuration."""
    return {
        "service_descriptor": {
            "service_name": "svc",
            "service_description": "Test service",
            "service_port": 5000,
            "redis": {"url": "redis://localhost:6379/15"},
        },
        "route_registration_callback": lambda: None,
        "public_folder_path": str(tmp_path / "public"),
        "test_mode": True,
    }


def make_config(
    name: Optional[str] = "svc",
    description: Optional[str] = "Test service",
    **overrides: Any,
) -> Dict[str, Any]:
    """Build a config, leaving out any field passed as None."""
    descriptor: Dict[str, Any] = {"redis": {"url": "redis://localhost:6379/15"}}
    if name is not None:
        descriptor["service_name"] = name
    if description is not None:
        descriptor["service_description"] = description
    config: Dict[str, Any] = {
        "service_descriptor": descriptor,
        "route_registration_callback": lambda: None,
        "test_mode": True,
    }
    config.update(overrides)
    return config
