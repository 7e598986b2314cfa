"""
Conduit - Response Hardening Headers

Second middleware in the pipeline. Stamps the hardening set onto every
response and names the service in X-Powered-By. A header the handler already
set is left alone, except X-Powered-By, which always carries
``<service_name>/<service_version>``. The ``server`` header is dropped by the
listener instead (api.server).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

NINETY_DAYS_SECONDS = 7776000
POWERED_BY = "X-Powered-By"


@dataclass
class SecurityHeadersConfig:
    """Values for the hardening headers. Empty strings leave a header out."""

    powered_by: str = ""
    dns_prefetch_control: str = "off"
    frame_options: str = "SAMEORIGIN"
    download_options: str = "noopen"
    content_type_options: str = "nosniff"
    xss_protection: str = "1; mode=block"
    hsts_max_age: Optional[int] = NINETY_DAYS_SECONDS
    hsts_include_subdomains: bool = False

    @classmethod
    def for_service(cls, service_name: str, service_version: Optional[str]) -> "SecurityHeadersConfig":
        return cls(powered_by=f"{service_name}/{service_version or ''}")

    @property
    def hsts(self) -> str:
        if self.hsts_max_age is None:
            return ""
        value = f"max-age={self.hsts_max_age}"
        return f"{value}; includeSubDomains" if self.hsts_include_subdomains else value


def get_security_headers(config: Optional[SecurityHeadersConfig] = None) -> Dict[str, str]:
    """Header name to value for everything ``config`` turns on."""
    config = config or SecurityHeadersConfig()
    candidates = {
        "X-DNS-Prefetch-Control": config.dns_prefetch_control,
        "X-Frame-Options": config.frame_options,
        "X-Download-Options": config.download_options,
        "X-Content-Type-Options": config.content_type_options,
        "X-XSS-Protection": config.xss_protection,
        "Strict-Transport-Security": config.hsts,
        POWERED_BY: config.powered_by,
    }
    return {name: value for name, value in candidates.items() if value}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds ``get_security_headers(config)`` to each response."""

    def __init__(self, app: ASGIApp, config: Optional[SecurityHeadersConfig] = None):
        super().__init__(app)
        self.config = config or SecurityHeadersConfig()
        self._headers = get_security_headers(self.config)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        for name, value in self._headers.items():
            if name == POWERED_BY or name not in response.headers:
                response.headers[name] = value
        return response
