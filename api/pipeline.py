"""
Conduit - Request Pipeline

Assembles the FastAPI application's middleware once, at listen time, in a
fixed order (outermost first):

    1. ProcessIdMiddleware
    2. SecurityHeadersMiddleware
    3. CORSMiddleware
    4. BodyParserMiddleware
    5. middleware added by the user's middleware callback, in call order
    6. StaticAssetsMiddleware
    7. TerminalErrorMiddleware

After the user's routes are registered, a catch-all route serves the public
folder's ``index.html`` and answers 404 when there is none. It stays the last
route however many routers are mounted later.
"""

from __future__ import annotations

import inspect
import os
from typing import Any, Callable, Dict, List, Mapping, Optional

from fastapi import APIRouter, FastAPI
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import FileResponse, Response
from starlette.routing import BaseRoute

from api.middleware import (
    BodyParserMiddleware,
    BodyParserOptions,
    ProcessIdMiddleware,
    StaticAssetsMiddleware,
    TerminalErrorMiddleware,
    error_handlers,
)
from api.security.cors import CORSConfig, cors_middleware
from api.security.headers import SecurityHeadersConfig, SecurityHeadersMiddleware
from core.errors import NotFoundError, ServiceStateError
from core.types import RouteInfo, route_strings
from observability.logging import AppLogger, get_logger

logger = get_logger(__name__)

DEFAULT_PUBLIC_FOLDER = "public"
INDEX_DOCUMENT = "index.html"
CATCH_ALL_PATH = "/{full_path:path}"
CATCH_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# =============================================================================
# ROUTE DISCOVERY
# =============================================================================


def normalize_route_base(route_base: str) -> str:
    """``"/"`` becomes ``""`` and trailing slashes are dropped."""
    base = (route_base or "").strip()
    if base and not base.startswith("/"):
        base = "/" + base
    return base.rstrip("/")


def list_router_routes(route_base: str, router: Any) -> List[RouteInfo]:
    """
    The routes ``router`` serves once mounted under ``route_base``.

    Routers that implement ``list_routes()`` are asked directly; it may yield
    ``RouteInfo`` objects or ``(method, path)`` pairs. Otherwise ``router.routes``
    is walked and entries without HTTP methods (mounts, websockets) skipped.
    """
    base = normalize_route_base(route_base)
    found: List[RouteInfo] = []

    lister = getattr(router, "list_routes", None)
    if callable(lister):
        for entry in lister():
            if isinstance(entry, RouteInfo):
                method, path = entry.method, entry.path
            else:
                method, path = entry
            found.append(RouteInfo(method=method.upper(), path=f"{base}{path}"))
        return found

    for route in router.routes:
        methods = getattr(route, "methods", None)
        if not methods:
            continue
        path = getattr(route, "path", "")
        for method in sorted(m.upper() for m in methods):
            found.append(RouteInfo(method=method, path=f"{base}{path}"))
    return found


# =============================================================================
# PIPELINE
# =============================================================================


class RequestPipeline:
    """
    Owns the middleware order and route table of one FastAPI application.

    Args:
        app: application to configure
        app_logger: sink for fatal request errors
        service_name: used in ``X-Powered-By``
        service_version: used in ``X-Powered-By``
        app_path: public folder for static assets and ``index.html``
        cors_options: CORSMiddleware kwargs or cors-package style keys
        body_parser_options: ``{"json": {...}, "urlencoded": {...}}``
        middleware_callback: called once, synchronously, while building
    """

    def __init__(
        self,
        app: FastAPI,
        app_logger: AppLogger,
        service_name: str,
        service_version: Optional[str] = None,
        app_path: str = DEFAULT_PUBLIC_FOLDER,
        cors_options: Optional[Mapping[str, Any]] = None,
        body_parser_options: Optional[Mapping[str, Any]] = None,
        middleware_callback: Optional[Callable[[], Any]] = None,
    ):
        self.app = app
        self.app_logger = app_logger
        self.service_name = service_name
        self.service_version = service_version
        self.app_path = app_path
        self.cors_options = cors_options
        self.body_parser_options = body_parser_options
        self.middleware_callback = middleware_callback

        self._built = False
        self._fallback_route: Optional[BaseRoute] = None
        self.route_table: Dict[str, Any] = {}

    @classmethod
    def from_config(
        cls,
        app: FastAPI,
        config: Mapping[str, Any],
        app_logger: AppLogger,
        service_name: Optional[str] = None,
        service_version: Optional[str] = None,
    ) -> "RequestPipeline":
        """
        Pipeline for a captured config. ``service_name`` and ``service_version``
        override the descriptor block; the lifecycle passes the values the
        discovery client reports.
        """
        descriptor = config.get("service_descriptor") or {}
        return cls(
            app=app,
            app_logger=app_logger,
            service_name=service_name or descriptor.get("service_name", ""),
            service_version=service_version or descriptor.get("service_version"),
            app_path=config.get("app_path") or os.path.join(".", DEFAULT_PUBLIC_FOLDER),
            cors_options=config.get("cors_options"),
            body_parser_options=config.get("body_parser_options"),
            middleware_callback=config.get("middleware_registration_callback"),
        )

    @property
    def built(self) -> bool:
        return self._built

    def build(self) -> None:
        """Install middleware and exception handlers. Runs once."""
        if self._built:
            raise ServiceStateError("Request pipeline is already built")

        app = self.app
        stamped = [
            Middleware(ProcessIdMiddleware),
            Middleware(
                SecurityHeadersMiddleware,
                config=SecurityHeadersConfig.for_service(self.service_name, self.service_version),
            ),
            cors_middleware(CORSConfig.from_options(self.cors_options)),
            Middleware(
                BodyParserMiddleware,
                app_logger=self.app_logger,
                options=BodyParserOptions.from_options(self.body_parser_options),
            ),
        ]

        pre_existing = list(app.user_middleware)
        if self.middleware_callback is not None:
            result = self.middleware_callback()
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                raise TypeError("middleware_registration_callback must be synchronous")

        # add_middleware prepends, so callback additions come back newest first
        added = [m for m in app.user_middleware if not any(m is p for p in pre_existing)]
        added.reverse()

        app.user_middleware = stamped + pre_existing + added + [
            Middleware(StaticAssetsMiddleware, directory=self.app_path),
            Middleware(TerminalErrorMiddleware, app_logger=self.app_logger),
        ]

        for exc_class, handler in error_handlers(self.app_logger):
            app.add_exception_handler(exc_class, handler)

        self._built = True
        logger.debug(
            "Request pipeline built",
            user_middleware=len(pre_existing) + len(added),
            app_path=self.app_path,
        )

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def install_fallback(self) -> None:
        """Add the catch-all route serving ``index.html``."""
        if self._fallback_route is not None:
            return

        index_path = os.path.join(self.app_path, INDEX_DOCUMENT)

        async def serve_index(request: Request) -> Response:
            if not os.path.isfile(index_path):
                raise NotFoundError()
            return FileResponse(os.path.abspath(index_path))

        self.app.add_route(
            CATCH_ALL_PATH,
            serve_index,
            methods=CATCH_ALL_METHODS,
            include_in_schema=False,
        )
        self._fallback_route = self.app.router.routes[-1]

    def _keep_fallback_last(self) -> None:
        routes = self.app.router.routes
        if self._fallback_route is not None and self._fallback_route in routes:
            routes.remove(self._fallback_route)
            routes.append(self._fallback_route)

    def mount(self, route_base: str, router: Any) -> None:
        base = normalize_route_base(route_base)
        if isinstance(router, APIRouter):
            self.app.include_router(router, prefix=base)
        else:
            self.app.mount(base or "/", router)
        self.route_table[route_base] = router
        self._keep_fallback_last()

    def register_routes(self, routes: Mapping[str, Any]) -> List[str]:
        """
        Mount every ``{route_base: router}`` entry and return the advertised routes.

        A router whose routes cannot be listed is still mounted; it is logged
        and left out of the returned list.
        """
        advertised: List[RouteInfo] = []
        for route_base, router in routes.items():
            try:
                advertised.extend(list_router_routes(route_base, router))
            except Exception as e:
                logger.warning(
                    "Unable to list routes",
                    route_base=route_base,
                    router=type(router).__name__,
                    error=str(e),
                )
            self.mount(route_base, router)
        return route_strings(advertised)
