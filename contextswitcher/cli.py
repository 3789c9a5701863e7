"""CLI for ContextSwitcher - MCP gateway server and inspection tools."""

from __future__ import annotations

import asyncio
import json

import click

from contextswitcher import __version__
from contextswitcher.aggregator import DEFAULT_QUERY_TIMEOUT
from contextswitcher.launcher import DEFAULT_GRACE_PERIOD

config_option = click.option(
    "--config", "-c",
    "config_source",
    default=None,
    type=click.Path(dir_okay=False, resolve_path=True),
    help="MCP configuration file (defaults to $MCP_CONFIG_PATH, ./.roo/mcp.json, ~/.roo/mcp.json)",
)


@click.group()
@click.version_option(version=__version__, prog_name="contextswitcher")
def main() -> None:
    """ContextSwitcher - one MCP gateway in front of many MCP servers.

    Launches the servers listed in an MCP configuration file, publishes
    their tools as one catalog and routes calls to the owning server.
    """
    pass


@main.command()
@config_option
@click.option("--grace-period", default=DEFAULT_GRACE_PERIOD, show_default=True, help="Seconds before a stopping server is killed")
@click.option("--query-timeout", default=DEFAULT_QUERY_TIMEOUT, show_default=True, help="Seconds allowed for one server's tool listing")
def serve(config_source: str | None, grace_period: float, query_timeout: float) -> None:
    """Run the gateway as an MCP server over stdio.

    \b
    Configure in .roo/mcp.json:
        {
            "mcpServers": {
                "contextSwitcher": {
                    "command": "contextswitcher",
                    "args": ["serve"],
                    "env": {"SWITCHING_ENABLED": "true", "TOOL_SUFFIX": "_cs"}
                }
            }
        }
    """
    from mcp_contextswitcher.server import serve as run_server

    asyncio.run(
        run_server(
            config_source=config_source,
            grace_period=grace_period,
            query_timeout=query_timeout,
        )
    )


@main.command()
@config_option
@click.option("--port", default=8000, help="Port to run the broker on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
def broker(config_source: str | None, port: int, host: str) -> None:
    """Start the HTTP broker for inspecting and driving the gateway."""
    import uvicorn

    from contextswitcher.broker import app, set_gateway
    from contextswitcher.gateway import Gateway

    set_gateway(Gateway(config_source=config_source))
    click.echo(f"Starting ContextSwitcher broker on {host}:{port}")
    uvicorn.run(app, host=host, port=port)


async def _collect_catalog(config_source: str | None, query_timeout: float):
    from contextswitcher.gateway import Gateway

    gateway = Gateway(config_source=config_source, query_timeout=query_timeout)
    try:
        return await gateway.refresh()
    finally:
        await gateway.shutdown()


@main.command()
@config_option
@click.option("--query-timeout", default=DEFAULT_QUERY_TIMEOUT, show_default=True, help="Seconds allowed for one server's tool listing")
@click.option("--raw", is_flag=True, help="Output raw JSON instead of formatted text")
def tools(config_source: str | None, query_timeout: float, raw: bool) -> None:
    """Start every configured server once and list the published tools.

    \b
    Example:
        contextswitcher tools
        contextswitcher tools --config ./other/mcp.json --raw
    """
    snapshot = asyncio.run(_collect_catalog(config_source, query_timeout))

    if raw:
        click.echo(json.dumps({
            "tools": [t.model_dump(exclude_none=True) for t in snapshot.tools],
            "resources": [r.model_dump(mode="json", exclude_none=True) for r in snapshot.resources],
        }, indent=2))
        return

    click.echo(f"\n{'=' * 60}")
    click.echo(f"Source: {snapshot.source or '(none)'}")
    click.echo(f"Servers: {len(snapshot.workers)} | Tools: {snapshot.worker_tool_count}")
    click.echo(f"{'=' * 60}\n")

    for tool in snapshot.tools:
        route = snapshot.table.lookup(snapshot.table.canonical(tool.name))
        owner = getattr(route, "worker", "gateway")
        click.echo(f"  {tool.name}  [{owner}]")
        if tool.description:
            click.echo(f"      {tool.description.splitlines()[0]}")

    if snapshot.failed_workers:
        click.echo(f"\nFailed servers: {', '.join(snapshot.failed_workers)}")


@main.command()
@config_option
def config(config_source: str | None) -> None:
    """Show the resolved configuration and gateway settings."""
    from contextswitcher.config import ConfigUnavailableError, load_config

    try:
        cfg = load_config(config_source)
    except ConfigUnavailableError as e:
        raise click.ClickException(str(e))

    settings = cfg.settings
    click.echo(f"Source: {cfg.source}")
    click.echo(f"Switching enabled: {settings.switching_enabled}")
    click.echo(f"Tool suffix: {settings.tool_suffix}")
    click.echo("Servers:")
    for spec in cfg.servers:
        if spec in cfg.worker_specs:
            status = "worker"
        elif spec.disabled:
            status = "disabled"
        else:
            status = "reserved"
        click.echo(f"  - {spec.name} ({status}): {spec.command} {' '.join(map(str, spec.args or []))}")


if __name__ == "__main__":
    main()
