"""Call router: dispatches capability calls to their owning worker."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from mcp.types import CallToolResult

from contextswitcher.launcher import WorkerLauncher
from contextswitcher.naming import SelfRoute
from contextswitcher.switcher import ContextSwitchCoordinator
from contextswitcher.transport import WorkerConnector

if TYPE_CHECKING:
    from contextswitcher.gateway import Gateway

logger = logging.getLogger(__name__)


class RoutingError(Exception):
    """Base class for errors returned to the caller of a routed call."""

    error_code = "ROUTING_ERROR"


class CapabilityNotFoundError(RoutingError):
    """Raised when no owner is known for a capability name."""

    error_code = "CAPABILITY_NOT_FOUND"


class WorkerUnavailableError(RoutingError):
    """Raised when the owning worker is no longer running."""

    error_code = "WORKER_UNAVAILABLE"


class CallRouter:
    """Routes calls using the gateway's current snapshot."""

    def __init__(
        self,
        gateway: Gateway,
        launcher: WorkerLauncher,
        connector: WorkerConnector,
        switcher: ContextSwitchCoordinator,
    ):
        self._gateway = gateway
        self._launcher = launcher
        self._connector = connector
        self._switcher = switcher

    async def route(self, called_name: str, arguments: dict[str, Any] | None) -> CallToolResult:
        """Forward a call to the worker owning ``called_name``.

        Args:
            called_name: Capability name as seen by the caller, possibly suffixed
            arguments: Call arguments, forwarded unmodified

        Returns:
            The worker's CallToolResult, or the context switch result

        Raises:
            CapabilityNotFoundError: No route for the name
            WorkerUnavailableError: The owning worker is no longer running
        """
        # One snapshot read per call; a concurrent switch cannot tear it
        snapshot = self._gateway.snapshot
        canonical = snapshot.table.canonical(called_name)
        route = snapshot.table.lookup(canonical)

        if route is None:
            logger.error(f'Tool "{called_name}" not found in any connected server.')
            raise CapabilityNotFoundError(f'Tool "{called_name}" not found.')

        if isinstance(route, SelfRoute):
            return await self._switcher.handle(arguments)

        worker = snapshot.workers.get(route.worker)
        if worker is None or not self._launcher.is_live(worker):
            logger.error(f'Server process "{route.worker}" for tool "{canonical}" not found or not running.')
            raise WorkerUnavailableError(f'Server process "{route.worker}" not available.')

        logger.info(f"Forwarding call '{canonical}' to worker '{worker.name}'")
        try:
            async with self._connector.connect(worker) as session:
                result = await session.call(canonical, arguments)
        except Exception as e:
            logger.error(f"Error forwarding call '{canonical}' to worker '{worker.name}': {e}")
            raise

        logger.info(f"Received response for '{canonical}' from worker '{worker.name}'")
        return result
