"""Relay configuration models and YAML loading.

Configuration is passed explicitly to the server and viewer; there is no
process-wide config singleton.

Example:
    >>> config = load_config({"server": {"port": 8080}})
    >>> config.server.port
    8080

"""

import logging
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sim_relay.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "sim-relay.yaml"
DEFAULT_KERNEL_COMMAND = ("bin/medical_kernel",)


class ServerConfig(BaseModel):
    """Listening endpoint of the relay server.

    Attributes:
        host: Interface to bind.
        port: TCP port to bind.
        path: WebSocket route path.

    """

    model_config = ConfigDict(frozen=True)

    host: str = "127.0.0.1"
    port: int = Field(default=3000, ge=1, le=65535)
    path: str = "/ws"

    @field_validator("path")
    @classmethod
    def ensure_leading_slash(cls, v: str) -> str:
        """Route paths must be absolute."""
        return v if v.startswith("/") else f"/{v}"


class KernelConfig(BaseModel):
    """How to launch and stop the simulation kernel.

    Attributes:
        command: Executable and arguments, spawned without a shell.
        cwd: Working directory for the kernel (None inherits the relay's).
        sigterm_wait: Seconds between SIGTERM and SIGKILL.
        stderr_chunk_size: Maximum bytes per stderr read.

    """

    model_config = ConfigDict(frozen=True)

    command: tuple[str, ...] = DEFAULT_KERNEL_COMMAND
    cwd: Path | None = None
    sigterm_wait: float = Field(default=5.0, ge=0)
    stderr_chunk_size: int = Field(default=4096, ge=1)

    @field_validator("command", mode="before")
    @classmethod
    def coerce_command(cls, v: Any) -> tuple[str, ...]:
        """Accept a single string as a one-element command."""
        if isinstance(v, str):
            return (v,)
        return tuple(v)

    @field_validator("command")
    @classmethod
    def validate_non_empty(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("kernel.command must name an executable")
        return v


class ClientConfig(BaseModel):
    """Viewer-side rendering and buffering limits.

    Attributes:
        chart_capacity: Samples kept in the chart window.
        pause_buffer_limit: Events buffered while paused before dropping.
        pause_buffer_policy: "oldest" drops the oldest buffered event,
            "newest" rejects the incoming one.
        scroll_tolerance: Rows from the bottom still counted as "at bottom".

    """

    model_config = ConfigDict(frozen=True)

    chart_capacity: int = Field(default=50, ge=1)
    pause_buffer_limit: int = Field(default=10_000, ge=1)
    pause_buffer_policy: Literal["oldest", "newest"] = "oldest"
    scroll_tolerance: int = Field(default=1, ge=0)


class RelayConfig(BaseModel):
    """Top-level sim-relay configuration."""

    model_config = ConfigDict(frozen=True)

    server: ServerConfig = Field(default_factory=ServerConfig)
    kernel: KernelConfig = Field(default_factory=KernelConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    log_level: str = "INFO"

    @field_validator("server", "kernel", "client", mode="before")
    @classmethod
    def coerce_none_to_defaults(cls, v: Any) -> Any:
        """YAML parses empty sections as None."""
        return {} if v is None else v


def load_config(source: Path | dict[str, Any] | None = None) -> RelayConfig:
    """Load relay configuration.

    Args:
        source: Path to a YAML file, an already-parsed dict, or None for
            defaults.

    Returns:
        Validated RelayConfig.

    Raises:
        ConfigError: If the file is missing, is not valid YAML, or fails
            validation.

    """
    if source is None:
        return RelayConfig()

    if isinstance(source, dict):
        data = source
    else:
        if not source.is_file():
            raise ConfigError(f"Config file not found: {source}")
        try:
            with source.open(encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {source}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config root must be a mapping: {source}")
        logger.info("Loaded config from %s", source)

    try:
        return RelayConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


_SECTIONS: dict[str, type[BaseModel]] = {
    "server": ServerConfig,
    "kernel": KernelConfig,
    "client": ClientConfig,
}


def with_overrides(config: RelayConfig, section: str, **fields: Any) -> RelayConfig:
    """Return a copy of config with non-None fields of one section replaced.

    Used by the CLI to layer command-line flags over file values.

    Args:
        config: Base configuration.
        section: "server", "kernel" or "client".
        **fields: Section field values (None values are ignored).

    Returns:
        New RelayConfig.

    Raises:
        ConfigError: If the section is unknown or an override is invalid.

    """
    model = _SECTIONS.get(section)
    if model is None:
        raise ConfigError(f"Unknown config section: {section}")

    updates = {k: v for k, v in fields.items() if v is not None}
    if not updates:
        return config

    merged = getattr(config, section).model_dump() | updates
    try:
        return config.model_copy(update={section: model.model_validate(merged)})
    except ValidationError as e:
        raise ConfigError(f"Invalid {section} override: {e}") from e
