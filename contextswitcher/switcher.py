"""Context switch coordinator: replaces the worker fleet from a new configuration."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from mcp.types import CallToolResult, Tool
from pydantic import ValidationError

from contextswitcher.config import ConfigUnavailableError, load_config
from contextswitcher.schemas import SwitchMetadata, SwitchRequest, SwitchResult

if TYPE_CHECKING:
    from contextswitcher.gateway import Gateway

logger = logging.getLogger(__name__)

CONTEXT_SWITCH_TOOL_NAME = "context_switch"

CONTEXT_SWITCH_TOOL = Tool(
    name=CONTEXT_SWITCH_TOOL_NAME,
    description=(
        "Switch the active MCP configuration. Stops every running MCP server "
        "and starts the servers listed in the given configuration file."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "configSource": {
                "type": "string",
                "description": "Path to the MCP configuration file to switch to",
            },
        },
        "required": ["configSource"],
    },
)


class SwitchState(str, Enum):
    """Coordinator states."""

    IDLE = "idle"
    SWITCHING = "switching"


def _failure(message: str) -> SwitchResult:
    return SwitchResult(message=message, metadata=SwitchMetadata(success=False, tool_count=0))


class ContextSwitchCoordinator:
    """Serializes context switches and drives the gateway through them."""

    def __init__(self, gateway: Gateway):
        self._gateway = gateway
        self._lock = asyncio.Lock()
        self.state = SwitchState.IDLE

    async def handle(self, arguments: dict[str, Any] | None) -> CallToolResult:
        """Entry point for the context_switch capability."""
        try:
            request = SwitchRequest.model_validate(arguments or {})
        except ValidationError as e:
            return _failure(f"Invalid arguments for {CONTEXT_SWITCH_TOOL_NAME}: {e}").to_call_result()

        result = await self.switch(request.config_source)
        return result.to_call_result()

    async def switch(self, config_source: str | Path) -> SwitchResult:
        """Switch to a new configuration source.

        Rejections and invalid sources are returned as ``success=False``
        results and leave the running fleet untouched.
        """
        async with self._lock:
            self.state = SwitchState.SWITCHING
            try:
                return await self._switch(Path(config_source).expanduser())
            finally:
                self.state = SwitchState.IDLE

    async def _switch(self, source: Path) -> SwitchResult:
        if not self._gateway.snapshot.settings.switching_enabled:
            logger.info(f"Rejected context switch to {source}: switching is disabled")
            return _failure("Context switching is disabled in the current configuration")

        try:
            with source.open("rb"):
                pass
        except OSError as e:
            logger.warning(f"Rejected context switch to {source}: {e}")
            return _failure(str(e))

        # Parse before touching the fleet so a bad target leaves it running
        try:
            config = load_config(source)
        except ConfigUnavailableError as e:
            logger.warning(f"Rejected context switch to {source}: {e}")
            return _failure(str(e))

        logger.info(f"Switching context to {source}")
        self._gateway.active_source = source
        snapshot = await self._gateway.refresh(config)

        tool_count = snapshot.worker_tool_count
        return SwitchResult(
            message=f"Switched context to {source}: {len(snapshot.workers)} server(s), {tool_count} tool(s)",
            metadata=SwitchMetadata(success=True, tool_count=tool_count),
        )
