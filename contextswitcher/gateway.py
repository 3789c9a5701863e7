"""Gateway: owns the versioned snapshot and drives aggregation passes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from mcp.types import CallToolResult, Resource, Tool

from contextswitcher.aggregator import DEFAULT_QUERY_TIMEOUT, aggregate
from contextswitcher.config import (
    ConfigUnavailableError,
    GatewayConfig,
    GatewaySettings,
    load_config,
)
from contextswitcher.launcher import RunningWorker, WorkerLauncher
from contextswitcher.naming import NameMapper, RoutingTable, SelfRoute, resolve_names
from contextswitcher.router import CallRouter
from contextswitcher.switcher import CONTEXT_SWITCH_TOOL, ContextSwitchCoordinator
from contextswitcher.transport import StdioConnector, WorkerConnector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewaySnapshot:
    """Routing table, settings, workers and catalog from one aggregation pass."""

    version: int
    settings: GatewaySettings
    table: RoutingTable
    tools: list[Tool] = field(default_factory=list)
    resources: list[Resource] = field(default_factory=list)
    workers: Mapping[str, RunningWorker] = field(default_factory=dict)
    failed_workers: list[str] = field(default_factory=list)
    source: Path | None = None

    @property
    def worker_tool_count(self) -> int:
        return sum(1 for t in self.tools if t.name != CONTEXT_SWITCH_TOOL.name)


def empty_snapshot(version: int, settings: GatewaySettings, source: Path | None = None) -> GatewaySnapshot:
    """Snapshot with no workers, exposing only the gateway's own capability."""
    mapper = NameMapper(suffix=settings.tool_suffix, reserved=frozenset({CONTEXT_SWITCH_TOOL.name}))
    table = RoutingTable(
        mapper=mapper,
        routes={CONTEXT_SWITCH_TOOL.name: SelfRoute()},
        displayed={CONTEXT_SWITCH_TOOL.name: CONTEXT_SWITCH_TOOL.name},
    )
    return GatewaySnapshot(
        version=version,
        settings=settings,
        table=table,
        tools=[CONTEXT_SWITCH_TOOL],
        source=source,
    )


class Gateway:
    """Aggregates worker capabilities and routes calls to them.

    The current GatewaySnapshot is replaced wholesale at the end of each
    aggregation pass; readers take one reference and use it throughout.
    """

    def __init__(
        self,
        config_source: Path | str | None = None,
        launcher: WorkerLauncher | None = None,
        connector: WorkerConnector | None = None,
        query_timeout: float = DEFAULT_QUERY_TIMEOUT,
    ):
        self.active_source = Path(config_source).expanduser() if config_source else None
        self.launcher = launcher or WorkerLauncher()
        self.connector = connector or StdioConnector()
        self.query_timeout = query_timeout
        self._snapshot = empty_snapshot(version=0, settings=GatewaySettings())
        self._pass_lock = asyncio.Lock()
        self.switcher = ContextSwitchCoordinator(self)
        self.router = CallRouter(self, self.launcher, self.connector, self.switcher)

    @property
    def snapshot(self) -> GatewaySnapshot:
        return self._snapshot

    def _publish(self, snapshot: GatewaySnapshot) -> GatewaySnapshot:
        self._snapshot = snapshot
        logger.info(
            f"Published snapshot v{snapshot.version}: {len(snapshot.workers)} worker(s), "
            f"{len(snapshot.tools)} tool(s), {len(snapshot.resources)} resource(s)"
        )
        return snapshot

    async def refresh(self, config: GatewayConfig | None = None) -> GatewaySnapshot:
        """Run a full aggregation pass.

        Stops all workers, starts the configured ones, collects their
        capabilities and publishes a new snapshot. A missing or invalid
        configuration, or a pass that fails after the old workers were
        stopped, yields an empty snapshot rather than an error.

        Args:
            config: Preloaded configuration; loaded from the active source if None

        Returns:
            The newly published GatewaySnapshot
        """
        async with self._pass_lock:
            version = self._snapshot.version + 1

            if config is None:
                try:
                    config = load_config(self.active_source)
                except ConfigUnavailableError as e:
                    logger.warning(f"No usable MCP configuration ({e}). Returning empty list.")
                    await self.launcher.stop_all()
                    return self._publish(
                        empty_snapshot(version, self._snapshot.settings, source=self.active_source)
                    )

            settings = config.settings
            specs = config.worker_specs

            await self.launcher.stop_all()
            if not specs:
                logger.warning("No MCP server configurations found. Returning empty list.")
                return self._publish(empty_snapshot(version, settings, source=config.source))

            try:
                workers = await self.launcher.start(specs)
                result = await aggregate(workers, self.connector, timeout=self.query_timeout)
                resolved = resolve_names(result.contributions, settings.tool_suffix, CONTEXT_SWITCH_TOOL)
            except Exception as e:
                logger.error(f"Aggregation pass failed: {e!r}. Returning empty list.", exc_info=True)
                await self.launcher.stop_all()
                return self._publish(empty_snapshot(version, settings, source=config.source))

            return self._publish(
                GatewaySnapshot(
                    version=version,
                    settings=settings,
                    table=resolved.table,
                    tools=resolved.tools,
                    resources=resolved.resources,
                    workers={w.name: w for w in workers},
                    failed_workers=[c.worker for c in result.failures],
                    source=config.source,
                )
            )

    async def list_catalog(self) -> GatewaySnapshot:
        """Answer a catalog query with a fresh aggregation pass."""
        logger.info("Fetching tools from downstream servers...")
        return await self.refresh()

    async def call(self, name: str, arguments: dict[str, Any] | None = None) -> CallToolResult:
        """Route one capability call."""
        return await self.router.route(name, arguments)

    async def shutdown(self) -> None:
        """Stop every worker; must be called before the process exits."""
        await self.launcher.stop_all()
