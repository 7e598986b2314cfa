"""
Conduit - API Security Module

Security middleware assembled by the request pipeline:
- CORS configuration over Starlette's CORSMiddleware
- Security headers
"""

from api.security.cors import (
    CORSConfig,
    cors_middleware,
)
from api.security.headers import (
    SecurityHeadersConfig,
    SecurityHeadersMiddleware,
    get_security_headers,
)

__all__ = [
    # CORS
    "CORSConfig",
    "cors_middleware",
    # Headers
    "SecurityHeadersConfig",
    "SecurityHeadersMiddleware",
    "get_security_headers",
]
