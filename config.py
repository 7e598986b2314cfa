"""
Conduit - Configuration

Process-level settings for the lifecycle, read from environment variables
(with a .env file loaded on import), and the loaders that turn a config
source such as a file path into the mapping passed to ServiceLifecycle.init.
"""
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol, Union, runtime_checkable

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class LifecycleSettings:
    """Settings shared by every ServiceLifecycle in the process."""
    # Listener
    host: str = field(default_factory=lambda: os.getenv("CONDUIT_HOST", "0.0.0.0"))
    default_public_folder: str = field(default_factory=lambda: os.getenv("CONDUIT_PUBLIC_FOLDER", "public"))

    # Shutdown
    drain_delay: float = field(default_factory=lambda: float(os.getenv("CONDUIT_DRAIN_DELAY", "1.0")))
    force_exit_timeout: float = field(
        default_factory=lambda: float(os.getenv("CONDUIT_FORCE_EXIT_TIMEOUT", "30.0"))
    )

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    log_format: str = field(default_factory=lambda: os.getenv("LOG_FORMAT", "json").lower())

    # Tracing
    tracing_enabled: bool = field(
        default_factory=lambda: os.getenv("CONDUIT_TRACING", "false").lower() in ("1", "true", "yes")
    )
    otlp_endpoint: str = field(
        default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    )
    trace_sample_rate: float = field(
        default_factory=lambda: float(os.getenv("CONDUIT_TRACE_SAMPLE_RATE", "1.0"))
    )

    @property
    def json_logs(self) -> bool:
        return self.log_format == "json"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "default_public_folder": self.default_public_folder,
            "drain_delay": self.drain_delay,
            "force_exit_timeout": self.force_exit_timeout,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "tracing_enabled": self.tracing_enabled,
            "otlp_endpoint": self.otlp_endpoint,
            "trace_sample_rate": self.trace_sample_rate,
        }


# Singleton settings instance
_settings: Optional[LifecycleSettings] = None


def get_settings() -> LifecycleSettings:
    """Get or create the settings singleton."""
    global _settings
    if _settings is None:
        _settings = LifecycleSettings()
    return _settings


def reload_settings() -> LifecycleSettings:
    """Reload settings from the environment."""
    global _settings
    load_dotenv(override=True)
    _settings = LifecycleSettings()
    return _settings


# =============================================================================
# CONFIG SOURCES
# =============================================================================


ConfigSource = Union[str, "os.PathLike[str]"]


@runtime_checkable
class ConfigLoader(Protocol):
    """Resolves a config source into a service config mapping."""

    def load(self, source: ConfigSource) -> Mapping[str, Any]:
        ...


class FileConfigLoader:
    """Reads a JSON document from disk."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def load(self, source: ConfigSource) -> Dict[str, Any]:
        path = Path(source)
        with path.open("r", encoding=self.encoding) as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise ValueError(f"Config document {path} is not a JSON object")
        return data
