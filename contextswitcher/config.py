"""Configuration loading for the ContextSwitcher gateway."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "MCP_CONFIG_PATH"
CONFIG_RELATIVE_PATH = Path(".roo") / "mcp.json"

# The reserved server entry describing the gateway itself
RESERVED_SERVER_NAME = "contextSwitcher"

DEFAULT_TOOL_SUFFIX = "_cs"


class ConfigUnavailableError(Exception):
    """Raised when no usable configuration can be loaded."""

    pass


@dataclass(frozen=True)
class WorkerSpec:
    """Declarative description of one child tool provider."""

    name: str
    command: str
    args: Any
    cwd: str
    env: dict[str, str] | None = None
    disabled: bool = False

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WorkerSpec):
            return NotImplemented
        return self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)


@dataclass(frozen=True)
class GatewaySettings:
    """Gateway-wide settings, always replaced as a whole."""

    switching_enabled: bool = True
    tool_suffix: str = DEFAULT_TOOL_SUFFIX


@dataclass(frozen=True)
class GatewayConfig:
    """A parsed configuration source."""

    servers: list[WorkerSpec] = field(default_factory=list)
    source: Path | None = None

    @property
    def settings(self) -> GatewaySettings:
        return load_gateway_settings(self)

    @property
    def worker_specs(self) -> list[WorkerSpec]:
        """Servers that should run as workers."""
        return [
            s for s in self.servers
            if s.name != RESERVED_SERVER_NAME and not s.disabled
        ]


def load_gateway_settings(config: GatewayConfig) -> GatewaySettings:
    """Derive gateway settings from the reserved server entry's env block.

    Args:
        config: Parsed configuration

    Returns:
        GatewaySettings with defaults applied for anything not overridden
    """
    switching_enabled = True
    tool_suffix = DEFAULT_TOOL_SUFFIX

    reserved = next((s for s in config.servers if s.name == RESERVED_SERVER_NAME), None)
    if reserved is not None and reserved.env:
        if "SWITCHING_ENABLED" in reserved.env:
            switching_enabled = reserved.env["SWITCHING_ENABLED"] != "false"
        if reserved.env.get("TOOL_SUFFIX"):
            tool_suffix = reserved.env["TOOL_SUFFIX"]

    return GatewaySettings(switching_enabled=switching_enabled, tool_suffix=tool_suffix)


def config_search_paths() -> list[Path]:
    """Configuration file candidates in priority order."""
    paths = []
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        paths.append(Path(env_path).expanduser())
    paths.append(Path.cwd() / CONFIG_RELATIVE_PATH)
    paths.append(Path.home() / CONFIG_RELATIVE_PATH)
    return paths


def find_config_path() -> Path:
    """Return the first existing configuration file on the search path."""
    for path in config_search_paths():
        if path.is_file():
            return path
    raise ConfigUnavailableError("No configuration file found")


def parse_config(data: Any, source: Path | None = None) -> GatewayConfig:
    """Build a GatewayConfig from decoded JSON.

    Entries are kept even when command or args are malformed; the
    launcher validates and skips them individually.
    """
    if not isinstance(data, dict) or not isinstance(data.get("mcpServers"), dict):
        raise ConfigUnavailableError("Invalid configuration format")

    servers = []
    for name, entry in data["mcpServers"].items():
        if not isinstance(entry, dict):
            logger.error(f"Ignoring server '{name}': entry is not an object")
            continue
        env = entry.get("env")
        servers.append(
            WorkerSpec(
                name=name,
                command=entry.get("command") or "",
                args=entry.get("args"),
                cwd=entry.get("cwd") or str(Path.cwd()),
                env={k: str(v) for k, v in env.items()} if isinstance(env, dict) else None,
                disabled=bool(entry.get("disabled", False)),
            )
        )

    return GatewayConfig(servers=servers, source=source)


def load_config(source: Path | str | None = None) -> GatewayConfig:
    """Load the gateway configuration.

    Args:
        source: Explicit configuration file; the search path is used when None

    Returns:
        Parsed GatewayConfig

    Raises:
        ConfigUnavailableError: No file found, unreadable, or malformed
    """
    path = Path(source).expanduser() if source else find_config_path()

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigUnavailableError(f"Failed to read configuration file: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigUnavailableError(f"Invalid JSON in configuration file: {e}") from e

    config = parse_config(data, source=path)
    logger.info(f"Loaded {len(config.servers)} server entries from {path}")
    return config
