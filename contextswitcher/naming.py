"""Name resolution: collision handling, display suffixes, and the routing table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Union

from mcp.types import Resource, Tool

from contextswitcher.aggregator import WorkerContribution

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkerRoute:
    """Capability owned by a worker process."""

    worker: str


@dataclass(frozen=True)
class SelfRoute:
    """Capability served by the gateway itself."""


Route = Union[WorkerRoute, SelfRoute]


@dataclass(frozen=True)
class NameMapper:
    """Maps canonical capability names to displayed names and back."""

    suffix: str
    reserved: frozenset[str] = frozenset()

    def is_suffixed(self, name: str) -> bool:
        return bool(self.suffix) and name.endswith(self.suffix) and len(name) > len(self.suffix)

    def to_display(self, name: str) -> str:
        if not self.suffix or name in self.reserved or self.is_suffixed(name):
            return name
        return name + self.suffix

    def to_canonical(self, name: str) -> str:
        if self.is_suffixed(name):
            return name[: -len(self.suffix)]
        return name


@dataclass(frozen=True)
class Collision:
    """A displayed capability name claimed by more than one owner in a pass."""

    name: str
    previous: str
    current: str


@dataclass
class RoutingTable:
    """Canonical capability name -> owning route.

    ``displayed`` maps every published name back to exactly one canonical
    name, so a call made with a published name always reaches the tool
    that was listed under it.
    """

    mapper: NameMapper
    routes: dict[str, Route] = field(default_factory=dict)
    displayed: dict[str, str] = field(default_factory=dict)

    def __contains__(self, name: str) -> bool:
        return name in self.routes

    def __len__(self) -> int:
        return len(self.routes)

    def canonical(self, called_name: str) -> str:
        """Recover the canonical name for a name as seen by the caller.

        Published names resolve through ``displayed``. Other names have the
        suffix stripped, unless only the full form is routed.
        """
        if called_name in self.displayed:
            return self.displayed[called_name]
        canonical = self.mapper.to_canonical(called_name)
        if canonical not in self.routes and called_name in self.routes:
            return called_name
        return canonical

    def lookup(self, canonical_name: str) -> Route | None:
        return self.routes.get(canonical_name)


@dataclass
class ResolvedCatalog:
    """Output of one name resolution pass."""

    table: RoutingTable
    tools: list[Tool] = field(default_factory=list)
    resources: list[Resource] = field(default_factory=list)
    collisions: list[Collision] = field(default_factory=list)

    self_name: str = ""

    @property
    def worker_tool_count(self) -> int:
        """Published tools excluding the gateway's own."""
        return sum(1 for t in self.tools if t.name != self.self_name)


def _owner_label(route: Route) -> str:
    return route.worker if isinstance(route, WorkerRoute) else "<gateway>"


def resolve_names(
    contributions: list[WorkerContribution],
    suffix: str,
    self_tool: Tool,
) -> ResolvedCatalog:
    """Build the routing table and the published catalog.

    Contributions are processed in order. Two tools collide when they would
    be published under the same name, which includes ``foo`` and ``foo_cs``
    once the suffix is applied; the later owner wins and the earlier one is
    dropped from both the catalog and the routes. Each colliding name is
    logged once per pass. The self tool is added last, is never suffixed,
    and always owns its name.

    Args:
        contributions: Per-worker capability lists
        suffix: Disambiguation suffix for displayed names
        self_tool: The gateway's own capability

    Returns:
        ResolvedCatalog with routing table, published tools and resources
    """
    mapper = NameMapper(suffix=suffix, reserved=frozenset({self_tool.name}))
    table = RoutingTable(mapper=mapper)
    resolved = ResolvedCatalog(table=table, self_name=self_tool.name)
    published: dict[str, tuple[str, Route, Tool]] = {}
    claimants: dict[str, list[str]] = {}

    def claim(tool: Tool, route: Route) -> None:
        canonical = tool.name
        display = mapper.to_display(canonical)
        previous = published.pop(display, None)
        if previous is not None:
            previous_canonical, previous_route, _ = previous
            collision = Collision(name=display, previous=_owner_label(previous_route), current=_owner_label(route))
            resolved.collisions.append(collision)
            claimants.setdefault(display, [collision.previous]).append(collision.current)
            table.routes.pop(previous_canonical, None)

        table.routes[canonical] = route
        table.displayed[display] = canonical
        published_tool = tool if display == canonical else tool.model_copy(update={"name": display})
        published[display] = (canonical, route, published_tool)

    for contribution in contributions:
        route = WorkerRoute(worker=contribution.worker)
        for tool in contribution.tools:
            if not tool.name:
                continue
            claim(tool, route)
        resolved.resources.extend(contribution.resources)

    claim(self_tool, SelfRoute())

    for name, owners in claimants.items():
        listed = ", ".join(f'"{owner}"' for owner in owners)
        logger.warning(f'Duplicate tool name "{name}" found on {listed}. Overwriting, keeping "{owners[-1]}".')

    resolved.tools = [tool for _, _, tool in published.values()]
    logger.debug(f"Routing table: { {k: _owner_label(v) for k, v in table.routes.items()} }")
    return resolved
