"""Capability aggregator: collects tool and resource lists from every worker."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from mcp.types import Resource, Tool

from contextswitcher.launcher import RunningWorker
from contextswitcher.transport import WorkerConnector

logger = logging.getLogger(__name__)

# Upper bound for one worker's capability query, in seconds
DEFAULT_QUERY_TIMEOUT = 30.0


class WorkerQueryFailedError(Exception):
    """Raised when a worker cannot report its capabilities."""

    pass


@dataclass
class WorkerContribution:
    """Capabilities reported by one worker."""

    worker: str
    tools: list[Tool] = field(default_factory=list)
    resources: list[Resource] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class AggregationResult:
    """Per-worker contributions from one aggregation pass."""

    contributions: list[WorkerContribution] = field(default_factory=list)

    @property
    def tools(self) -> list[Tool]:
        return [t for c in self.contributions for t in c.tools]

    @property
    def resources(self) -> list[Resource]:
        return [r for c in self.contributions for r in c.resources]

    @property
    def failures(self) -> list[WorkerContribution]:
        return [c for c in self.contributions if c.failed]


async def _list_worker(worker: RunningWorker, connector: WorkerConnector) -> WorkerContribution:
    try:
        async with connector.connect(worker) as session:
            tools, resources = await session.list_capabilities()
    except Exception as e:
        raise WorkerQueryFailedError(f"{type(e).__name__}: {e}") from e
    return WorkerContribution(worker=worker.name, tools=tools, resources=resources)


async def query_worker(
    worker: RunningWorker,
    connector: WorkerConnector,
    timeout: float = DEFAULT_QUERY_TIMEOUT,
) -> WorkerContribution:
    """Query one worker, degrading any failure to an empty contribution."""
    try:
        return await asyncio.wait_for(_list_worker(worker, connector), timeout=timeout)
    except asyncio.TimeoutError:
        reason = f"timed out after {timeout}s"
    except WorkerQueryFailedError as e:
        reason = str(e)

    logger.warning(f"Failed to list capabilities of worker '{worker.name}': {reason}")
    return WorkerContribution(worker=worker.name, error=reason)


async def aggregate(
    workers: list[RunningWorker],
    connector: WorkerConnector,
    timeout: float = DEFAULT_QUERY_TIMEOUT,
) -> AggregationResult:
    """Concurrently collect capabilities from all workers.

    Args:
        workers: Running workers to query
        connector: Opens a transient connection per worker
        timeout: Per-worker query timeout in seconds

    Returns:
        AggregationResult with one contribution per worker, in worker order
    """
    if not workers:
        return AggregationResult()

    contributions = await asyncio.gather(
        *(query_worker(w, connector, timeout) for w in workers)
    )
    result = AggregationResult(contributions=list(contributions))

    logger.info(
        f"Aggregated {len(result.tools)} tools and {len(result.resources)} resources "
        f"from {len(workers)} worker(s), {len(result.failures)} failed"
    )
    return result
