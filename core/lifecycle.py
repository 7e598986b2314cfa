"""
Conduit - Service Lifecycle

ServiceLifecycle turns a declarative config into a registered, listening
service and takes it down again on termination:

    CREATED -> STARTING -> READY -> SHUTTING_DOWN -> TERMINATED
                   \\-> FAILED

Startup is strictly ordered and stops at the first failure:

    1. discovery.init(config, test_mode)      resolved config replaces ours
    2. plugins: set_config(config)            barrier
    3. discovery.register_service()           -> ServiceDescriptor
    4. build request pipeline, bind listener, register routes
    5. plugins: on_service_ready()            barrier
    6. resolve the ready signal

Usage:
    lifecycle = ServiceLifecycle(discovery=InMemoryDiscoveryClient())
    await lifecycle.use(AuditPlugin())

    descriptor = await lifecycle.init(
        {
            "service_descriptor": {
                "service_name": "offers",
                "service_description": "Offer management",
                "redis": {"url": "redis://localhost:6379/15"},
            },
        },
        "1.2.0",
        lambda: lifecycle.register_routes("/v1/offers", router),
    )
"""
from __future__ import annotations

import errno
import os
import sys
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from fastapi import FastAPI
from starlette.responses import JSONResponse

from api.pipeline import RequestPipeline
from api.responses import ServerResponse
from api.server import HttpListener
from config import ConfigLoader, FileConfigLoader, LifecycleSettings, get_settings
from core.async_utils import ReadySignal, maybe_await, schedule
from core.config_validator import ConfigValidator
from core.errors import (
    ConduitError,
    ConfigError,
    ListenError,
    RegistrationError,
    ServiceStateError,
)
from core.plugins import PluginRegistry
from core.serialization import safe_stringify
from core.shutdown import ShutdownCoordinator
from core.types import ServiceDescriptor, copy_config, descriptor_from
from discovery.log_filter import DiscoveryLogFilter
from discovery.protocols import DiscoveryClient
from observability.logging import AppLogger, LogContext, StructlogAppLogger, get_logger
from observability import setup_observability
from observability.tracing import create_span

logger = get_logger(__name__)

DEFAULT_ENVIRONMENT = "development"
SERVICE_DEFAULTS = (("service_ip", ""), ("service_port", 0), ("service_type", ""))

ListenerFactory = Callable[[str, int], Any]


class LifecyclePhase(Enum):
    CREATED = "created"
    STARTING = "starting"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"
    FAILED = "failed"


def resolve_init_arguments(
    version: Any,
    route_callback: Optional[Callable[[], Any]],
    middleware_callback: Optional[Callable[[], Any]],
) -> Tuple[Optional[str], Optional[Callable[[], Any]], Optional[Callable[[], Any]]]:
    """
    Normalize ``init``'s positional forms.

    ``init(config, version, routes, middleware)`` and
    ``init(config, routes, middleware)`` are both accepted: a callable in the
    version slot is the route callback and everything after it shifts left.
    """
    if callable(version):
        return None, version, route_callback
    return version, route_callback, middleware_callback


class ServiceLifecycle:
    """
    Owns one service's config, plugins, FastAPI app, listener and shutdown.

    An instance starts at most once. A config that fails validation leaves it
    unstarted so ``init`` can be retried.

    Args:
        discovery: registry client; an in-memory client when omitted
        app: FastAPI application to serve; created when omitted
        app_logger: sink for ``log``; writes through structlog by default
        config_loader: resolves string or path config sources
        listener_factory: ``(host, port) -> listener``; HttpListener by default
        settings: process settings; ``get_settings()`` by default
        exit_func: called with 1 on EACCES/EADDRINUSE bind failures
        force_exit: called by the shutdown watchdog
    """

    def __init__(
        self,
        discovery: Optional[DiscoveryClient] = None,
        app: Optional[FastAPI] = None,
        app_logger: Optional[AppLogger] = None,
        config_loader: Optional[ConfigLoader] = None,
        listener_factory: Optional[ListenerFactory] = None,
        settings: Optional[LifecycleSettings] = None,
        exit_func: Callable[[int], Any] = sys.exit,
        force_exit: Callable[[int], Any] = os._exit,
    ):
        if discovery is None:
            from discovery.memory import InMemoryDiscoveryClient

            discovery = InMemoryDiscoveryClient()

        self.settings = settings or get_settings()
        self.discovery: DiscoveryClient = discovery
        self.app = app if app is not None else FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
        self.app_logger: AppLogger = app_logger or StructlogAppLogger()
        self.config_loader: ConfigLoader = config_loader or FileConfigLoader()
        self.plugins = PluginRegistry()
        self.validator = ConfigValidator()
        self.ready: ReadySignal[ServiceDescriptor] = ReadySignal()

        self._listener_factory = listener_factory or (lambda host, port: HttpListener(host, port))
        self._exit = exit_func
        self._phase = LifecyclePhase.CREATED
        self._config: Optional[Dict[str, Any]] = None
        self._test_mode = False
        self._descriptor: Optional[ServiceDescriptor] = None
        self._pipeline: Optional[RequestPipeline] = None
        self._listener: Any = None
        self._listening_port: Optional[int] = None
        self._log_filter: Optional[DiscoveryLogFilter] = None
        self._server_response = ServerResponse()

        self._shutdown = ShutdownCoordinator(
            close_listener=self._close_listener,
            deregister=self._deregister,
            log=self.log,
            drain_delay=self.settings.drain_delay,
            force_exit_timeout=self.settings.force_exit_timeout,
            force_exit=force_exit,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def phase(self) -> LifecyclePhase:
        return self._phase

    @property
    def test_mode(self) -> bool:
        return self._test_mode

    @property
    def listening_port(self) -> Optional[int]:
        return self._listening_port

    @property
    def descriptor(self) -> Optional[ServiceDescriptor]:
        return self._descriptor

    @property
    def pipeline(self) -> Optional[RequestPipeline]:
        return self._pipeline

    @property
    def shutdown_coordinator(self) -> ShutdownCoordinator:
        return self._shutdown

    @property
    def service_name(self) -> str:
        if not self._config:
            return ""
        return str(self._config.get("service_descriptor", {}).get("service_name", ""))

    def get_app(self) -> FastAPI:
        return self.app

    def get_discovery(self) -> DiscoveryClient:
        return self.discovery

    def get_runtime_config(self) -> Dict[str, Any]:
        """Copy of the live config; nested mappings are copied too."""
        if self._config is None:
            return {}
        return copy_config(self._config)

    # ------------------------------------------------------------------
    # Plugins
    # ------------------------------------------------------------------

    async def use(self, *plugins: Any) -> List[Any]:
        """Register plugins. Every plugin is checked before any is added."""
        if self._phase != LifecyclePhase.CREATED:
            raise ServiceStateError(
                f"Plugins must be registered before start (phase: {self._phase.value})"
            )
        return await self.plugins.register(self, *plugins)

    # ------------------------------------------------------------------
    # Init / start
    # ------------------------------------------------------------------

    async def init(
        self,
        config_or_source: Union[Mapping[str, Any], str, "os.PathLike[str]"],
        version: Any = None,
        route_callback: Optional[Callable[[], Any]] = None,
        middleware_callback: Optional[Callable[[], Any]] = None,
    ) -> ServiceDescriptor:
        """
        Validate ``config_or_source``, then start the service.

        A string or path is loaded through the config loader first. Explicit
        callbacks override the config's callback keys.
        """
        if isinstance(config_or_source, (str, os.PathLike)):
            source = os.fspath(config_or_source)
            try:
                loaded = self.config_loader.load(config_or_source)
            except Exception as e:
                raise ConfigError(f"Unable to load config from {source}", source=source, cause=e) from e
            return await self.init(loaded, version, route_callback, middleware_callback)

        if self._phase != LifecyclePhase.CREATED:
            raise ServiceStateError(f"Service already started (phase: {self._phase.value})")

        version, route_callback, middleware_callback = resolve_init_arguments(
            version, route_callback, middleware_callback
        )

        if not isinstance(config_or_source, Mapping):
            raise ConfigError(f"Config must be a mapping, got {type(config_or_source).__name__}")

        config = copy_config(config_or_source)
        if version:
            config["version"] = version
        if route_callback is not None:
            config["route_registration_callback"] = route_callback
        if middleware_callback is not None:
            config["middleware_registration_callback"] = middleware_callback

        block = config.get("service_descriptor")
        if isinstance(block, dict):
            for key, default in SERVICE_DEFAULTS:
                block[key] = block.get(key) or default

        self.validator.check(config)

        config["service_descriptor"]["service_version"] = config.get("version")
        config["environment_name"] = config.get("environment_name") or DEFAULT_ENVIRONMENT
        config["app_path"] = os.path.join(
            ".", config.get("public_folder_path") or self.settings.default_public_folder
        )

        self._config = config
        self._test_mode = config.get("test_mode") is True
        self._configure_observability()
        self._install_log_listener()

        return await self.start()

    def _configure_observability(self) -> None:
        setup_observability(
            service_name=self.service_name,
            service_version=self._config.get("version") or "0.0.0",
            tracing_enabled=self.settings.tracing_enabled,
            otlp_endpoint=self.settings.otlp_endpoint,
            sample_rate=self.settings.trace_sample_rate,
            log_level=self.settings.log_level,
            json_logs=self.settings.json_logs,
            environment=self._config["environment_name"],
        )

    def _install_log_listener(self) -> None:
        if self._log_filter is not None:
            return
        self._log_filter = DiscoveryLogFilter(self.log)
        self.discovery.on("log", self._log_filter)

    async def start(self) -> ServiceDescriptor:
        """Run the startup sequence. Only valid once, after ``init``."""
        if self._phase != LifecyclePhase.CREATED:
            raise ServiceStateError(f"Service already started (phase: {self._phase.value})")
        if self._config is None:
            raise ServiceStateError("init must run before start")

        self._phase = LifecyclePhase.STARTING
        logger.info("Starting service", service=self.service_name, test_mode=self._test_mode)

        try:
            resolved = await self._step(
                "discovery_init",
                RegistrationError,
                "Discovery client failed to initialize",
                lambda: self.discovery.init(copy_config(self._config), self._test_mode),
            )
            if isinstance(resolved, Mapping):
                self._config = copy_config(resolved)

            with create_span("lifecycle.plugins_config", attributes={"plugins.count": len(self.plugins)}):
                await self.plugins.apply_config(self.get_runtime_config())

            registration = await self._step(
                "register_service",
                RegistrationError,
                "Service registration failed",
                self.discovery.register_service,
            )
            self._descriptor = descriptor_from(registration)

            with create_span("lifecycle.listen", attributes={"service.name": self.service_name}):
                await self._listen()

            with create_span("lifecycle.plugins_ready", attributes={"plugins.count": len(self.plugins)}):
                await self.plugins.notify_ready()
        except Exception as e:
            self._phase = LifecyclePhase.FAILED
            self.ready.reject(e)
            logger.error("Service failed to start", service=self.service_name, error=str(e))
            self.request_termination()
            raise

        self._phase = LifecyclePhase.READY
        self.ready.resolve(self._descriptor)
        logger.info(
            "Service ready",
            service=self._descriptor.service_name,
            instance=self._descriptor.instance_id,
            port=self._listening_port,
        )
        return self._descriptor

    async def _step(
        self,
        name: str,
        error_type: type,
        message: str,
        call: Callable[[], Any],
    ) -> Any:
        with LogContext(lifecycle_step=name), create_span(
            f"lifecycle.{name}", attributes={"service.name": self.service_name}
        ):
            try:
                return await maybe_await(call())
            except ConduitError:
                raise
            except Exception as e:
                raise error_type(f"{message}: {e}", cause=e) from e

    async def _listen(self) -> None:
        block = self._config["service_descriptor"]
        port = int(block.get("service_port") or 0)

        self._pipeline = RequestPipeline.from_config(
            self.app,
            self._config,
            self.app_logger,
            service_name=self.discovery.get_service_name(),
            service_version=self.discovery.get_instance_version(),
        )
        self._pipeline.build()

        self._listener = self._listener_factory(self.settings.host, port)
        try:
            await self._listener.listen(self.app)
        except ListenError as e:
            self._handle_listen_error(e, port)
            raise

        self._listening_port = self._listener.port
        self._shutdown.arm(install_signal_handlers=not self._test_mode)

        route_callback = self._config.get("route_registration_callback")
        try:
            await maybe_await(route_callback())
        except ConduitError:
            raise
        except Exception as e:
            raise RegistrationError(f"Route registration failed: {e}", cause=e) from e

        self._pipeline.install_fallback()

    def _handle_listen_error(self, error: ListenError, port: int) -> None:
        if error.errno == errno.EACCES:
            self.log("error", f"Port {port} requires elevated privileges")
            self._exit(1)
        elif error.errno == errno.EADDRINUSE:
            self.log("error", f"Port {port} is already in use")
            self._exit(1)

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def register_routes(
        self,
        route_base: Union[str, Mapping[str, Any]],
        router: Any = None,
    ) -> List[str]:
        """
        Mount routers and advertise their routes to discovery.

        Accepts ``register_routes("/v1/offers", router)`` or
        ``register_routes({"/v1/offers": router, ...})``.
        """
        if isinstance(route_base, Mapping):
            routes = dict(route_base)
        else:
            if router is None:
                raise ValueError("register_routes needs a router for a single route base")
            routes = {route_base: router}

        if self._pipeline is None or not self._pipeline.built:
            raise ServiceStateError("Routes can only be registered once the listener is up")

        advertised = self._pipeline.register_routes(routes)
        schedule(self.discovery.register_routes(advertised), "discovery.register_routes")
        logger.debug("Routes registered", count=len(advertised))
        return advertised

    # ------------------------------------------------------------------
    # Logging and responses
    # ------------------------------------------------------------------

    def log(self, log_type: Any, message: Any) -> None:
        """
        Write to the application logger.

        ``fatal`` and ``error`` also go to the discovery health log. Unknown
        types are logged as info.
        """
        text = message if isinstance(message, str) else safe_stringify(message)
        entry = {"event": log_type, "message": text}

        if log_type == "fatal":
            self.app_logger.fatal(entry)
        elif log_type == "error":
            self.app_logger.error(entry)
        elif log_type == "debug":
            self.app_logger.debug(entry)
            return
        else:
            self.app_logger.info(entry)
            return

        try:
            result = self.discovery.send_to_health_log("fatal", message, suppress_emit=True)
        except Exception as e:
            logger.warning("Health log write failed", error=str(e))
            return
        schedule(result, "discovery.send_to_health_log")

    def send_response(self, http_code: int, data: Any = None) -> JSONResponse:
        """JSON response in the ``statusCode/statusMessage/statusDescription/result`` envelope."""
        return self._server_response.send_response(http_code, data)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def request_termination(self) -> None:
        """Start draining if the listener is live; otherwise nothing to do."""
        if self._shutdown.armed:
            self._shutdown.trigger()

    async def shutdown(self) -> Any:
        """Drain the service and return the discovery client's shutdown result."""
        if self._phase not in (LifecyclePhase.FAILED, LifecyclePhase.TERMINATED):
            self._phase = LifecyclePhase.SHUTTING_DOWN
        result = await self._shutdown.drain()
        self._phase = LifecyclePhase.TERMINATED
        return result

    async def _close_listener(self) -> None:
        if self._listener is not None:
            await maybe_await(self._listener.close())

    async def _deregister(self) -> Any:
        return await maybe_await(self.discovery.shutdown())
