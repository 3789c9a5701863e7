"""Worker transport over the MCP client library.

Each connection spawns a short-lived stdio session against the worker's
command; the gateway never shares a session across requests.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Protocol

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.types import CallToolResult, Resource, Tool

from contextswitcher.launcher import RunningWorker, build_worker_env

logger = logging.getLogger(__name__)


class WorkerSession(Protocol):
    """An open connection to one worker."""

    async def list_capabilities(self) -> tuple[list[Tool], list[Resource]]: ...

    async def call(self, name: str, arguments: dict[str, Any] | None) -> CallToolResult: ...


class WorkerConnector(Protocol):
    """Opens transient sessions to running workers."""

    def connect(self, worker: RunningWorker) -> AsyncContextManager[WorkerSession]: ...


class McpWorkerSession:
    """WorkerSession backed by an initialized mcp ClientSession."""

    def __init__(self, session: ClientSession, supports_resources: bool = False) -> None:
        self._session = session
        self._supports_resources = supports_resources

    async def list_capabilities(self) -> tuple[list[Tool], list[Resource]]:
        tools = (await self._session.list_tools()).tools or []
        resources: list[Resource] = []
        if self._supports_resources:
            try:
                resources = (await self._session.list_resources()).resources or []
            except Exception as e:
                logger.warning(f"Failed to list resources, keeping tools only: {e}")
        return list(tools), list(resources)

    async def call(self, name: str, arguments: dict[str, Any] | None) -> CallToolResult:
        return await self._session.call_tool(name, arguments)


def stdio_parameters(worker: RunningWorker) -> StdioServerParameters:
    """Build stdio launch parameters for a worker."""
    spec = worker.spec
    return StdioServerParameters(
        command=spec.command,
        args=list(spec.args),
        env=build_worker_env(spec),
        cwd=spec.cwd,
    )


class StdioConnector:
    """Connects to workers over stdio using the mcp client."""

    @asynccontextmanager
    async def connect(self, worker: RunningWorker) -> AsyncIterator[WorkerSession]:
        params = stdio_parameters(worker)
        logger.debug(f"Opening connection to worker '{worker.name}'")
        try:
            async with stdio_client(params) as (read_stream, write_stream):
                async with ClientSession(read_stream, write_stream) as session:
                    init = await session.initialize()
                    supports_resources = init.capabilities.resources is not None
                    yield McpWorkerSession(session, supports_resources=supports_resources)
        finally:
            logger.debug(f"Closed connection to worker '{worker.name}'")
