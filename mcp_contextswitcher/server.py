"""MCP server exposing the aggregated tools of all configured MCP servers."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from pathlib import Path
from typing import Any

from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from contextswitcher.aggregator import DEFAULT_QUERY_TIMEOUT
from contextswitcher.gateway import Gateway
from contextswitcher.launcher import DEFAULT_GRACE_PERIOD, WorkerLauncher
from contextswitcher.router import RoutingError

logger = logging.getLogger(__name__)

# stdout carries the protocol, so logs go to stderr
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


def _error_result(message: str) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=message)],
        isError=True,
    )


async def handle_call(gateway: Gateway, name: str, arguments: dict[str, Any] | None) -> types.CallToolResult:
    """Route a tools/call request, turning failures into error results."""
    logger.info(f"Received tools/call request: {name}")
    try:
        return await gateway.call(name, arguments)
    except RoutingError as e:
        return _error_result(str(e))
    except Exception as e:
        logger.error(f"Error calling tool '{name}': {e}", exc_info=True)
        return _error_result(f"Error calling tool '{name}': {e}")


def create_server(gateway: Gateway) -> Server:
    """Build the MCP server bound to a gateway."""
    server = Server("contextswitcher")

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        snapshot = await gateway.list_catalog()
        return snapshot.tools

    @server.list_resources()
    async def list_resources() -> list[types.Resource]:
        return gateway.snapshot.resources

    # Registered directly so downstream results pass through untouched
    async def call_tool(request: types.CallToolRequest) -> types.ServerResult:
        result = await handle_call(gateway, request.params.name, request.params.arguments)
        return types.ServerResult(result)

    server.request_handlers[types.CallToolRequest] = call_tool
    return server


async def serve(
    config_source: Path | str | None = None,
    grace_period: float = DEFAULT_GRACE_PERIOD,
    query_timeout: float = DEFAULT_QUERY_TIMEOUT,
) -> None:
    """Run the gateway over stdio until the client disconnects or SIGTERM."""
    gateway = Gateway(
        config_source=config_source,
        launcher=WorkerLauncher(grace_period=grace_period),
        query_timeout=query_timeout,
    )
    server = create_server(gateway)

    task = asyncio.current_task()
    with contextlib.suppress(NotImplementedError):
        asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, task.cancel)

    try:
        await gateway.refresh()
        async with stdio_server() as (read_stream, write_stream):
            logger.info("MCP Server started")
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await gateway.shutdown()
        logger.info("Server connection closed")


def main(config_source: Path | str | None = None) -> None:
    asyncio.run(serve(config_source=config_source))


if __name__ == "__main__":
    main()
