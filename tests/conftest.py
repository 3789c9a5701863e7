"""Pytest configuration and fixtures for ContextSwitcher tests."""

import asyncio
import json
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from mcp.types import CallToolResult, Resource, TextContent, Tool

from contextswitcher.config import WorkerSpec
from contextswitcher.launcher import RunningWorker, WorkerLauncher, WorkerSpawnInvalidError, validate_spec


def make_tool(name: str, description: str = "") -> Tool:
    return Tool(
        name=name,
        description=description or f"{name} tool",
        inputSchema={"type": "object", "properties": {"x": {"type": "integer"}}},
    )


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    _next_pid = 1000

    def __init__(self):
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.returncode = None
        self.signals: list[str] = []
        self.stdin = None

    def terminate(self):
        self.signals.append("SIGTERM")
        self.returncode = -15

    def kill(self):
        self.signals.append("SIGKILL")
        self.returncode = -9

    async def wait(self):
        return self.returncode

    def exit(self, code: int = 0):
        self.returncode = code


class FakeLauncher(WorkerLauncher):
    """WorkerLauncher that creates FakeProcess handles instead of children."""

    def __init__(self, grace_period: float = 0.1):
        super().__init__(grace_period=grace_period)
        self.started: list[RunningWorker] = []

    async def _spawn(self, spec: WorkerSpec) -> RunningWorker:
        valid, reason = validate_spec(spec)
        if not valid:
            raise WorkerSpawnInvalidError(f"Invalid config for '{spec.name}': {reason}")
        worker = RunningWorker(spec=spec, process=FakeProcess())
        self.started.append(worker)
        return worker


class FakeSession:
    def __init__(self, connector: "FakeConnector", worker: RunningWorker):
        self._connector = connector
        self._worker = worker

    async def list_capabilities(self):
        behaviour = self._connector.tools.get(self._worker.name, [])
        if behaviour == "hang":
            await asyncio.sleep(3600)
        if isinstance(behaviour, Exception):
            raise behaviour
        return list(behaviour), list(self._connector.resources.get(self._worker.name, []))

    async def call(self, name, arguments):
        self._connector.calls.append((self._worker.name, name, arguments))
        gate = self._connector.gates.get(self._worker.name)
        if gate is not None:
            await gate.wait()
        error = self._connector.call_errors.get(self._worker.name)
        if error is not None:
            raise error
        return CallToolResult(content=[TextContent(type="text", text=f"{self._worker.name}:{name}")])


class FakeConnector:
    """WorkerConnector with scripted per-worker behaviour.

    ``tools`` maps worker name to a list of Tools, an Exception to raise,
    or "hang" to never answer.
    """

    def __init__(self):
        self.tools: dict = {}
        self.resources: dict = {}
        self.call_errors: dict = {}
        self.gates: dict = {}
        self.calls: list = []
        self.opened: list[str] = []
        self.closed: list[str] = []

    @asynccontextmanager
    async def connect(self, worker: RunningWorker):
        self.opened.append(worker.name)
        try:
            yield FakeSession(self, worker)
        finally:
            self.closed.append(worker.name)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def tool():
    """Factory for Tool objects."""
    return make_tool


@pytest.fixture
def resource():
    def _make(uri: str) -> Resource:
        return Resource(uri=uri, name=uri.rsplit("/", 1)[-1])

    return _make


@pytest.fixture
def write_config(tmp_path: Path):
    """Write an mcp.json file and return its path."""

    def _write(servers: dict, name: str = "mcp.json", settings_env: dict | None = None) -> Path:
        entries = {
            n: {"command": "node", "args": [f"{n}.js"], "cwd": str(tmp_path)} if cfg is None else cfg
            for n, cfg in servers.items()
        }
        if settings_env is not None:
            entries["contextSwitcher"] = {"command": "contextswitcher", "args": ["serve"], "env": settings_env}
        path = tmp_path / name
        path.write_text(json.dumps({"mcpServers": entries}))
        return path

    return _write
