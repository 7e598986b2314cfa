"""
Conduit - CORS Configuration

Wraps Starlette's CORSMiddleware. With no options the policy is permissive
(any origin, common methods, no credentials). Options may be given either as
CORSMiddleware keyword arguments or in the keys used by the Node ``cors``
package (``origin``, ``methods``, ``allowedHeaders``, ``exposedHeaders``,
``credentials``, ``maxAge``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware import Middleware

DEFAULT_METHODS = ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"]

# cors-package key -> CORSMiddleware keyword
_CORS_PACKAGE_KEYS = {
    "origin": "allow_origins",
    "methods": "allow_methods",
    "allowedHeaders": "allow_headers",
    "exposedHeaders": "expose_headers",
    "credentials": "allow_credentials",
    "maxAge": "max_age",
}


def _as_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if value is True:
        return ["*"]
    if not value:
        return []
    return [str(item) for item in value]


@dataclass
class CORSConfig:
    """Keyword arguments for CORSMiddleware."""

    allow_origins: List[str] = field(default_factory=lambda: ["*"])
    allow_origin_regex: Optional[str] = None
    allow_methods: List[str] = field(default_factory=lambda: list(DEFAULT_METHODS))
    allow_headers: List[str] = field(default_factory=lambda: ["*"])
    expose_headers: List[str] = field(default_factory=list)
    allow_credentials: bool = False
    max_age: int = 600

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None) -> "CORSConfig":
        """Build a config from either option style; None gives the permissive default."""
        if not options:
            return cls()

        kwargs: Dict[str, Any] = {}
        for key, value in options.items():
            target = _CORS_PACKAGE_KEYS.get(key, key)
            if target in ("allow_origins", "allow_methods", "allow_headers", "expose_headers"):
                kwargs[target] = _as_list(value)
            elif target == "allow_credentials":
                kwargs[target] = bool(value)
            elif target == "max_age":
                kwargs[target] = int(value)
            elif target == "allow_origin_regex":
                kwargs[target] = value
        return cls(**kwargs)

    def to_kwargs(self) -> Dict[str, Any]:
        return {
            "allow_origins": self.allow_origins,
            "allow_origin_regex": self.allow_origin_regex,
            "allow_methods": self.allow_methods,
            "allow_headers": self.allow_headers,
            "expose_headers": self.expose_headers,
            "allow_credentials": self.allow_credentials,
            "max_age": self.max_age,
        }


def cors_middleware(config: Optional[CORSConfig] = None) -> Middleware:
    """CORSMiddleware entry for an application's middleware list."""
    return Middleware(CORSMiddleware, **(config or CORSConfig()).to_kwargs())

