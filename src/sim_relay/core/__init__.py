"""Shared infrastructure: configuration, errors, and logging setup."""

from .config import ClientConfig, KernelConfig, RelayConfig, ServerConfig, load_config
from .exceptions import ConfigError, ProcessAlreadyRunningError, SimRelayError, SpawnError

__all__ = [
    "ClientConfig",
    "ConfigError",
    "KernelConfig",
    "ProcessAlreadyRunningError",
    "RelayConfig",
    "ServerConfig",
    "SimRelayError",
    "SpawnError",
    "load_config",
]
