"""
Conduit - Centralized Type Definitions

Type aliases, TypedDicts and models shared by the lifecycle, the request
pipeline and the discovery client.

Usage:
    from core.types import ServiceDescriptor, ServiceConfig

    descriptor = ServiceDescriptor.model_validate(
        {"serviceName": "offers", "instanceID": "a1b2", "servicePort": 5000}
    )
"""
from __future__ import annotations

from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    TypedDict,
    TypeVar,
    Union,
)

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# =============================================================================
# TYPE ALIASES
# =============================================================================

T = TypeVar("T")
MaybeAwaitable = Union[T, Awaitable[T]]

RouteCallback = Callable[[], Any]
MiddlewareCallback = Callable[[], Any]


# =============================================================================
# TYPED DICTS
# =============================================================================


class RedisBlock(TypedDict, total=False):
    """Registry connection parameters."""
    url: str
    host: str
    port: int
    db: int
    password: str


class ServiceDescriptorBlock(TypedDict, total=False):
    """The ``service_descriptor`` block of a service configuration."""
    service_name: str
    service_description: str
    service_ip: str
    service_port: int
    service_type: str
    service_version: str
    redis: RedisBlock


class ServiceConfig(TypedDict, total=False):
    """Declarative configuration accepted by ``ServiceLifecycle.init``."""
    service_descriptor: ServiceDescriptorBlock
    route_registration_callback: RouteCallback
    middleware_registration_callback: MiddlewareCallback
    cors_options: Dict[str, Any]
    body_parser_options: Dict[str, Any]
    public_folder_path: str
    environment_name: str
    test_mode: bool
    version: str
    app_path: str


# =============================================================================
# MODELS
# =============================================================================


class ServiceDescriptor(BaseModel):
    """
    Registry-assigned record identifying a running instance.

    Discovery clients may answer with snake_case or camelCase keys; both are
    accepted and unknown keys are kept.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    service_name: str = Field(
        validation_alias=AliasChoices("service_name", "serviceName"),
    )
    instance_id: str = Field(
        default="",
        validation_alias=AliasChoices("instance_id", "instanceID", "instanceId"),
    )
    service_ip: str = Field(
        default="",
        validation_alias=AliasChoices("service_ip", "serviceIP", "serviceIp"),
    )
    service_port: int = Field(
        default=0,
        validation_alias=AliasChoices("service_port", "servicePort"),
    )
    service_version: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("service_version", "serviceVersion"),
    )

    @property
    def address(self) -> str:
        return f"{self.service_ip}:{self.service_port}"


class RouteInfo(BaseModel):
    """A single advertised route."""

    method: str
    path: str

    def __str__(self) -> str:
        return f"[{self.method.upper()}]{self.path}"


def route_strings(routes: List[RouteInfo]) -> List[str]:
    """Render routes as the ``[METHOD]path`` strings sent to discovery."""
    return [str(route) for route in routes]


def descriptor_from(value: Any) -> ServiceDescriptor:
    """Coerce a discovery client's registration answer into a descriptor."""
    if isinstance(value, ServiceDescriptor):
        return value
    if isinstance(value, Mapping):
        return ServiceDescriptor.model_validate(dict(value))
    return ServiceDescriptor.model_validate(value, from_attributes=True)


def copy_config(config: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Copy a config mapping, recursing into nested mappings.

    Leaf values such as callbacks are shared; only the mapping structure is
    duplicated.
    """
    return {
        key: copy_config(value) if isinstance(value, Mapping) else value
        for key, value in config.items()
    }
