"""Tests for full aggregation passes and snapshot publication."""

import logging

import pytest

from contextswitcher.gateway import Gateway
from contextswitcher.naming import SelfRoute, WorkerRoute


@pytest.fixture
def gateway_factory(launcher, connector):
    def _make(config_source=None, **kwargs):
        return Gateway(config_source=config_source, launcher=launcher, connector=connector, **kwargs)

    return _make


class TestRefresh:
    """Test catalog queries against configured workers."""

    @pytest.mark.asyncio
    async def test_catalog_is_union_plus_self(self, gateway_factory, write_config, connector, tool):
        connector.tools = {"one": [tool("a"), tool("b")], "two": [tool("c")]}
        gateway = gateway_factory(write_config({"one": None, "two": None}))

        snapshot = await gateway.list_catalog()

        assert sorted(t.name for t in snapshot.tools) == ["a_cs", "b_cs", "c_cs", "context_switch"]
        assert snapshot.worker_tool_count == 3
        assert set(snapshot.workers) == {"one", "two"}
        assert snapshot.version == 1

    @pytest.mark.asyncio
    async def test_suffix_from_reserved_entry(self, gateway_factory, write_config, connector, tool):
        connector.tools = {"one": [tool("a")]}
        gateway = gateway_factory(write_config({"one": None}, settings_env={"TOOL_SUFFIX": "_x"}))

        snapshot = await gateway.refresh()

        assert [t.name for t in snapshot.tools] == ["a_x", "context_switch"]
        assert snapshot.settings.tool_suffix == "_x"

    @pytest.mark.asyncio
    async def test_reserved_entry_is_not_started(self, gateway_factory, write_config, launcher):
        gateway = gateway_factory(write_config({"one": None}, settings_env={}))

        await gateway.refresh()

        assert [w.name for w in launcher.started] == ["one"]

    @pytest.mark.asyncio
    async def test_partial_failure(self, gateway_factory, write_config, connector, tool, caplog):
        connector.tools = {
            "one": [tool("a")],
            "two": RuntimeError("boom"),
            "three": [tool("c"), tool("d")],
        }
        gateway = gateway_factory(write_config({"one": None, "two": None, "three": None}))

        with caplog.at_level(logging.WARNING):
            snapshot = await gateway.refresh()

        assert sorted(t.name for t in snapshot.tools) == ["a_cs", "c_cs", "context_switch", "d_cs"]
        assert snapshot.failed_workers == ["two"]
        assert sum("Failed to list capabilities" in r.getMessage() for r in caplog.records) == 1

    @pytest.mark.asyncio
    async def test_repeated_queries_yield_same_worker_set(self, gateway_factory, write_config, connector, tool):
        connector.tools = {"one": [tool("a")], "two": [tool("b")]}
        gateway = gateway_factory(write_config({"one": None, "two": None}))

        first = await gateway.list_catalog()
        second = await gateway.list_catalog()

        assert set(first.workers) == set(second.workers)
        assert sorted(t.name for t in first.tools) == sorted(t.name for t in second.tools)
        assert second.version == first.version + 1

    @pytest.mark.asyncio
    async def test_refresh_restarts_previous_workers(self, gateway_factory, write_config, launcher):
        gateway = gateway_factory(write_config({"one": None}))

        first = await gateway.refresh()
        old = first.workers["one"]
        second = await gateway.refresh()

        assert old.process.signals == ["SIGTERM"]
        assert second.workers["one"] is not old
        assert launcher.is_live(second.workers["one"])

    @pytest.mark.asyncio
    async def test_missing_config_gives_empty_catalog(self, gateway_factory, tmp_path, launcher):
        gateway = gateway_factory(tmp_path / "missing.json")

        snapshot = await gateway.refresh()

        assert [t.name for t in snapshot.tools] == ["context_switch"]
        assert snapshot.workers == {}
        assert launcher.live == {}

    @pytest.mark.asyncio
    async def test_empty_config_stops_running_workers(self, gateway_factory, write_config, launcher):
        gateway = gateway_factory(write_config({"one": None}))
        running = (await gateway.refresh()).workers["one"]

        gateway.active_source = write_config({}, name="empty.json")
        snapshot = await gateway.refresh()

        assert running.process.signals == ["SIGTERM"]
        assert snapshot.workers == {}
        assert snapshot.table.lookup("context_switch") == SelfRoute()

    @pytest.mark.asyncio
    async def test_snapshot_swapped_as_a_whole(self, gateway_factory, write_config, connector, tool):
        connector.tools = {"one": [tool("a")]}
        gateway = gateway_factory(write_config({"one": None}))

        before = gateway.snapshot
        after = await gateway.refresh()

        assert gateway.snapshot is after
        assert before.table.lookup("a") is None
        assert after.table.lookup("a") == WorkerRoute("one")

    @pytest.mark.asyncio
    async def test_shutdown_stops_workers(self, gateway_factory, write_config, launcher):
        gateway = gateway_factory(write_config({"one": None, "two": None}))
        snapshot = await gateway.refresh()

        await gateway.shutdown()

        assert launcher.live == {}
        assert all(w.process.signals == ["SIGTERM"] for w in snapshot.workers.values())

    @pytest.mark.asyncio
    async def test_failed_start_publishes_empty_snapshot(
        self, gateway_factory, write_config, launcher, connector, tool, caplog
    ):
        connector.tools = {"one": [tool("a")]}
        gateway = gateway_factory(write_config({"one": None, "two": None}))
        before = await gateway.refresh()
        start = launcher.start

        async def start_first_then_fail(specs):
            await start(specs[:1])
            raise RuntimeError("spawn failed midway")

        launcher.start = start_first_then_fail

        with caplog.at_level(logging.ERROR, logger="contextswitcher.gateway"):
            snapshot = await gateway.refresh()

        assert gateway.snapshot is snapshot
        assert snapshot.version == before.version + 1
        assert [t.name for t in snapshot.tools] == ["context_switch"]
        assert snapshot.workers == {}
        assert launcher.live == {}
        assert all(w.process.returncode is not None for w in launcher.started)
        assert "Aggregation pass failed" in caplog.text

    @pytest.mark.asyncio
    async def test_failed_name_resolution_publishes_empty_snapshot(
        self, gateway_factory, write_config, launcher, connector, tool, monkeypatch
    ):
        connector.tools = {"one": [tool("a")]}
        gateway = gateway_factory(write_config({"one": None}))

        def explode(*args, **kwargs):
            raise ValueError("bad catalog")

        monkeypatch.setattr("contextswitcher.gateway.resolve_names", explode)
        snapshot = await gateway.refresh()

        assert snapshot.table.lookup("a") is None
        assert snapshot.table.lookup("context_switch") == SelfRoute()
        assert launcher.live == {}
