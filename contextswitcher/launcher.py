"""Worker lifecycle manager: spawns and stops child tool-provider processes."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from contextswitcher.config import WorkerSpec

logger = logging.getLogger(__name__)

# Seconds between the graceful and the forced termination signal
DEFAULT_GRACE_PERIOD = 2.0


class WorkerSpawnInvalidError(Exception):
    """Raised when a worker spec cannot be spawned."""

    pass


class WorkerEventKind(str, Enum):
    """Transitions of the live worker set."""

    STARTED = "started"
    EXITED = "exited"
    CLEARED = "cleared"


@dataclass
class RunningWorker:
    """A WorkerSpec bound to a live OS process."""

    spec: WorkerSpec
    process: asyncio.subprocess.Process
    _tasks: list[asyncio.Task] = field(default_factory=list, repr=False)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def running(self) -> bool:
        return self.process.returncode is None


@dataclass(frozen=True)
class WorkerEvent:
    """A change to the live worker set."""

    kind: WorkerEventKind
    worker: RunningWorker | None = None
    returncode: int | None = None


def build_worker_env(spec: WorkerSpec, base_env: Mapping[str, str] | None = None) -> dict[str, str]:
    """Compose a worker's environment.

    The process environment is overlaid with the spec's overrides, except
    PATH, which keeps the process-wide value first and appends the spec's.
    """
    base = dict(os.environ if base_env is None else base_env)
    overrides = spec.env or {}
    env = {**base, **overrides}

    path_parts = [p for p in (base.get("PATH", ""), overrides.get("PATH", "")) if p]
    env["PATH"] = os.pathsep.join(path_parts)
    return env


def validate_spec(spec: WorkerSpec) -> tuple[bool, str]:
    """Check a spec has a command, a well-formed argument list and a usable cwd.

    Returns:
        Tuple of (valid, reason)
    """
    if not isinstance(spec.command, str) or not spec.command.strip():
        return False, "'command' is required"
    if not isinstance(spec.args, (list, tuple)):
        return False, "'args' must be a list"
    if not all(isinstance(a, str) for a in spec.args):
        return False, "'args' must contain only strings"
    if any("\x00" in part for part in (spec.command, *spec.args)):
        return False, "'command' and 'args' must not contain NUL bytes"
    if not isinstance(spec.cwd, str) or "\x00" in spec.cwd:
        return False, "'cwd' must be a path string"
    return True, "ok"


class WorkerLauncher:
    """Owns the live worker set.

    Every mutation of the set goes through ``_transition``, which consumes
    WorkerEvents emitted by ``start``, the exit watchers, and ``stop_all``.
    """

    def __init__(self, grace_period: float = DEFAULT_GRACE_PERIOD):
        self.grace_period = grace_period
        self._live: dict[str, RunningWorker] = {}

    @property
    def live(self) -> Mapping[str, RunningWorker]:
        """Read-only view of running workers by name."""
        return dict(self._live)

    def is_live(self, worker: RunningWorker) -> bool:
        """Whether this exact worker is still the running entry for its name."""
        return self._live.get(worker.name) is worker and worker.running

    def _transition(self, event: WorkerEvent) -> None:
        if event.kind == WorkerEventKind.STARTED:
            previous = self._live.get(event.worker.name)
            if previous is not None and previous is not event.worker:
                logger.warning(f"Worker '{event.worker.name}' replaced a live worker with the same name")
            self._live[event.worker.name] = event.worker
        elif event.kind == WorkerEventKind.EXITED:
            if self._live.get(event.worker.name) is event.worker:
                del self._live[event.worker.name]
        elif event.kind == WorkerEventKind.CLEARED:
            self._live = {}

    async def _spawn(self, spec: WorkerSpec) -> RunningWorker:
        valid, reason = validate_spec(spec)
        if not valid:
            raise WorkerSpawnInvalidError(f"Invalid config for '{spec.name}': {reason}")

        try:
            process = await asyncio.create_subprocess_exec(
                spec.command,
                *spec.args,
                cwd=spec.cwd,
                env=build_worker_env(spec),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError, TypeError) as e:
            raise WorkerSpawnInvalidError(f"Failed to spawn '{spec.name}': {e}") from e

        worker = RunningWorker(spec=spec, process=process)
        worker._tasks = [
            asyncio.create_task(self._drain(worker, process.stdout, logging.DEBUG)),
            asyncio.create_task(self._drain(worker, process.stderr, logging.INFO)),
            asyncio.create_task(self._watch_exit(worker)),
        ]
        return worker

    async def _drain(self, worker: RunningWorker, stream: asyncio.StreamReader | None, level: int) -> None:
        # An unread pipe fills up and blocks the worker
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                logger.debug(f"[{worker.name}] dropped an overlong output line")
                continue
            if not line:
                break
            logger.log(level, f"[{worker.name}] {line.decode('utf-8', errors='replace').rstrip()}")

    async def _watch_exit(self, worker: RunningWorker) -> None:
        returncode = await worker.process.wait()
        logger.info(f"[{worker.name}] exited with code {returncode}")
        self._transition(WorkerEvent(WorkerEventKind.EXITED, worker=worker, returncode=returncode))

    async def start(self, specs: list[WorkerSpec]) -> list[RunningWorker]:
        """Spawn one process per spec.

        Invalid or unspawnable specs are logged and left out of the result.
        """
        started = []
        for spec in specs:
            try:
                worker = await self._spawn(spec)
            except WorkerSpawnInvalidError as e:
                logger.error(str(e))
                continue
            self._transition(WorkerEvent(WorkerEventKind.STARTED, worker=worker))
            logger.info(f"Started worker '{spec.name}' (pid {worker.pid})")
            started.append(worker)
        return started

    async def _stop_one(self, worker: RunningWorker) -> None:
        process = worker.process
        if process.returncode is not None:
            return

        logger.debug(f"Stopping process for worker: {worker.name}")
        try:
            process.terminate()
        except ProcessLookupError:
            logger.debug(f"Worker '{worker.name}' was already gone")
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=self.grace_period)
            return
        except asyncio.TimeoutError:
            logger.warning(f"Worker '{worker.name}' did not terminate gracefully, sending SIGKILL")

        try:
            process.kill()
        except ProcessLookupError:
            return
        await asyncio.wait_for(process.wait(), timeout=self.grace_period)

    async def stop_all(self, workers: list[RunningWorker] | None = None) -> None:
        """Stop workers concurrently; individual failures are logged, never raised."""
        targets = list(self._live.values()) if workers is None else list(workers)
        if not targets:
            logger.debug("No running workers to stop.")
            self._transition(WorkerEvent(WorkerEventKind.CLEARED))
            return

        logger.info(f"Stopping {len(targets)} worker process(es)...")
        results = await asyncio.gather(
            *(self._stop_one(w) for w in targets),
            return_exceptions=True,
        )
        for worker, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.error(f"Error stopping worker '{worker.name}': {result!r}")

        for worker in targets:
            if worker.process.stdin is not None:
                worker.process.stdin.close()
            for task in worker._tasks:
                if not task.done():
                    task.cancel()

        self._transition(WorkerEvent(WorkerEventKind.CLEARED))
        logger.info("Finished stopping worker processes.")
