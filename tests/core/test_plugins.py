"""
Tests for core/plugins.py - Plugin Registry.

Covers:
- Capability validation at registration
- Owner binding in registration order
- Barrier semantics of the set_config / on_service_ready phases
- Error attribution to the failing plugin
"""
import asyncio

import pytest
from unittest.mock import MagicMock

from core.errors import PluginError
from core.plugins import PluginBase, PluginRegistry, ServicePlugin, missing_capabilities


class RecordingPlugin(PluginBase):
    """Plugin that records phase events into a shared list."""

    def __init__(self, name, events, delay=0.0):
        super().__init__(name)
        self.events = events
        self.delay = delay

    async def set_config(self, config):
        self.events.append(f"{self.name}:set_config:start")
        await asyncio.sleep(self.delay)
        super().set_config(config)
        self.events.append(f"{self.name}:set_config:end")

    async def on_service_ready(self):
        self.events.append(f"{self.name}:ready:start")
        await asyncio.sleep(self.delay)
        self.events.append(f"{self.name}:ready:end")


class SyncPlugin:
    """Plain object implementing the plugin operations synchronously."""

    def __init__(self):
        self.owner = None
        self.config = None
        self.ready = False

    def set_lifecycle_owner(self, owner):
        self.owner = owner

    def set_config(self, config):
        self.config = config

    def on_service_ready(self):
        self.ready = True


# =============================================================================
# Registration
# =============================================================================

class TestRegistration:
    """Tests for PluginRegistry.register."""

    @pytest.mark.asyncio
    async def test_binds_owner(self):
        registry = PluginRegistry()
        owner = MagicMock()
        plugin = SyncPlugin()

        await registry.register(owner, plugin)

        assert plugin.owner is owner
        assert registry.plugins == [plugin]

    @pytest.mark.asyncio
    async def test_malformed_plugin_rejects_whole_batch(self):
        registry = PluginRegistry()

        class Incomplete:
            def set_lifecycle_owner(self, owner):
                pass

        with pytest.raises(PluginError, match="set_config, on_service_ready"):
            await registry.register(MagicMock(), SyncPlugin(), Incomplete())

        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_registration_order_preserved(self):
        registry = PluginRegistry()
        first, second = SyncPlugin(), SyncPlugin()

        await registry.register(MagicMock(), first, second)

        assert list(registry) == [first, second]

    def test_missing_capabilities(self):
        assert missing_capabilities(object()) == [
            "set_lifecycle_owner",
            "set_config",
            "on_service_ready",
        ]
        assert missing_capabilities(SyncPlugin()) == []

    def test_protocol_check(self):
        assert isinstance(SyncPlugin(), ServicePlugin)
        assert isinstance(PluginBase(), ServicePlugin)


# =============================================================================
# Phases
# =============================================================================

class TestPhases:
    """Tests for the two barrier phases."""

    @pytest.mark.asyncio
    async def test_set_config_completes_before_ready(self):
        events = []
        registry = PluginRegistry()
        a = RecordingPlugin("A", events, delay=0.02)
        b = RecordingPlugin("B", events, delay=0.0)
        await registry.register(MagicMock(), a, b)

        await registry.apply_config({"service_descriptor": {"service_name": "svc"}})
        await registry.notify_ready()

        last_config = max(i for i, e in enumerate(events) if "set_config:end" in e)
        first_ready = min(i for i, e in enumerate(events) if "ready:start" in e)
        assert last_config < first_ready

    @pytest.mark.asyncio
    async def test_calls_start_in_registration_order(self):
        events = []
        registry = PluginRegistry()
        await registry.register(
            MagicMock(),
            RecordingPlugin("A", events, delay=0.01),
            RecordingPlugin("B", events),
        )

        await registry.apply_config({})
        await registry.notify_ready()

        starts = [e for e in events if e.endswith(":start")]
        assert starts == [
            "A:set_config:start",
            "B:set_config:start",
            "A:ready:start",
            "B:ready:start",
        ]

    @pytest.mark.asyncio
    async def test_config_is_handed_to_each_plugin(self):
        registry = PluginRegistry()
        plugin = SyncPlugin()
        await registry.register(MagicMock(), plugin)

        await registry.apply_config({"environment_name": "development"})

        assert plugin.config == {"environment_name": "development"}

    @pytest.mark.asyncio
    async def test_failure_names_plugin_and_phase(self):
        registry = PluginRegistry()

        class Broken(PluginBase):
            def on_service_ready(self):
                raise RuntimeError("boom")

        await registry.register(MagicMock(), SyncPlugin(), Broken("broken"))

        with pytest.raises(PluginError) as exc_info:
            await registry.notify_ready()

        assert exc_info.value.plugin_name == "broken"
        assert exc_info.value.phase_name == "on_service_ready"
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_empty_registry(self):
        registry = PluginRegistry()
        assert await registry.apply_config({}) == []
        assert await registry.notify_ready() == []
