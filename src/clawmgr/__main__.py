"""CLI entry point: click commands + Rich output."""

from __future__ import annotations

import json
import logging
import threading

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .core.config import Config, load_config
from .core.errors import ClawError
from .core.store import ConfigStore
from .core.utils import short_path
from .mcp import (
    MCPInstaller,
    MCPRegistry,
    ProbeResult,
    RemoteTransport,
    ServerDescriptor,
    StdioTransport,
    SyncResult,
    probe,
)

console = Console()
err_console = Console(stderr=True)


class _ClawGroup(click.Group):
    """Turn library errors into a clean one-line CLI failure."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except ClawError as e:
            raise click.ClickException(str(e)) from e


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_time=False, show_path=False)],
        force=True,
    )


def _registry(ctx: click.Context) -> MCPRegistry:
    return MCPRegistry.from_config(ctx.obj)


def _installer(ctx: click.Context) -> MCPInstaller:
    return MCPInstaller(ctx.obj, _registry(ctx))


def _report_sync(sync: SyncResult | None) -> None:
    if sync is None:
        return
    if sync.degraded:
        console.print(f"[yellow]warning:[/yellow] mcporter sync degraded: {sync.error}")
    else:
        console.print(f"synced to {short_path(sync.path)}", style="dim")


def _print_probe(name: str, result: ProbeResult) -> None:
    if result.reachable:
        label = f" {result.server_name}" if result.server_name else ""
        console.print(f"[green]ok[/green]  [bold]{name}[/bold] reachable{label} [dim]({result.reason})[/dim]")
    else:
        console.print(f"[red]x[/red]   [bold]{name}[/bold] unreachable: {result.reason}")
    if result.detail:
        console.print(result.detail, style="dim", markup=False, highlight=False)


# ── Root ────────────────────────────────────────────────────────────


@click.group(cls=_ClawGroup)
@click.option("--home", default=None, help="OpenClaw home directory (default ~/.openclaw)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(__version__, prog_name="clawmgr")
@click.pass_context
def cli(ctx: click.Context, home: str | None, verbose: bool) -> None:
    """clawmgr: manage MCP servers for OpenClaw."""
    _setup_logging(verbose)
    ctx.obj = load_config(home=home, verbose=verbose)


# ── mcp ─────────────────────────────────────────────────────────────


@cli.group()
def mcp() -> None:
    """Manage MCP servers."""


@mcp.command("list")
@click.pass_context
def mcp_list(ctx: click.Context) -> None:
    """List registered servers."""
    servers = _registry(ctx).load()
    if not servers:
        console.print("no MCP servers configured", style="dim")
        console.print("use `clawmgr mcp add` or `clawmgr mcp install` to add one", style="dim")
        return
    table = Table(show_header=True, header_style="bold", box=None)
    table.add_column("name")
    table.add_column("transport")
    table.add_column("enabled")
    table.add_column("endpoint", style="dim")
    for name, desc in sorted(servers.items()):
        enabled = "[green]yes[/green]" if desc.enabled else "[dim]no[/dim]"
        table.add_row(name, desc.kind, enabled, desc.endpoint)
    console.print(table)


@mcp.command("get")
@click.argument("name")
@click.pass_context
def mcp_get(ctx: click.Context, name: str) -> None:
    """Show a server's stored configuration."""
    desc = _registry(ctx).get(name)
    if desc is None:
        raise click.ClickException(f"server {name!r} not found")
    console.print_json(json.dumps(desc.to_private()))


@mcp.command("add", context_settings={"ignore_unknown_options": True})
@click.argument("name")
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
@click.option("--url", default=None, help="Remote server URL (HTTP/SSE)")
@click.option("--env", "-e", "env_vars", multiple=True, help="KEY=VALUE for stdio servers (repeatable)")
@click.option("--disabled", is_flag=True, help="Register without syncing to mcporter")
@click.pass_context
def mcp_add(
    ctx: click.Context,
    name: str,
    command: tuple[str, ...],
    url: str | None,
    env_vars: tuple[str, ...],
    disabled: bool,
) -> None:
    """Add or replace a server.

    \b
    examples:
      clawmgr mcp add github --url https://api.github.com/mcp
      clawmgr mcp add memory -- npx -y @modelcontextprotocol/server-memory
    """
    if bool(url) == bool(command):
        raise click.UsageError("give exactly one of --url or a command after '--'")
    transport: StdioTransport | RemoteTransport
    if url:
        transport = RemoteTransport(url=url)
    else:
        env: dict[str, str] = {}
        for item in env_vars:
            key, sep, value = item.partition("=")
            if not sep or not key:
                raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="--env")
            env[key] = value
        transport = StdioTransport(command=command[0], args=list(command[1:]), env=env)

    sync = _registry(ctx).put(ServerDescriptor(name=name, transport=transport, enabled=not disabled))
    console.print(f"added [bold]{name}[/bold]")
    _report_sync(sync)


@mcp.command("remove")
@click.argument("name")
@click.pass_context
def mcp_remove(ctx: click.Context, name: str) -> None:
    """Remove a server from the registry (keeps installed files)."""
    found, sync = _registry(ctx).delete(name)
    if not found:
        console.print(f"server [bold]{name}[/bold] not found", style="dim")
        return
    console.print(f"removed [bold]{name}[/bold]")
    _report_sync(sync)


def _toggle(ctx: click.Context, name: str, enabled: bool) -> None:
    try:
        sync = _registry(ctx).set_enabled(name, enabled)
    except KeyError:
        raise click.ClickException(f"server {name!r} not found") from None
    console.print(f"{'enabled' if enabled else 'disabled'} [bold]{name}[/bold]")
    _report_sync(sync)


@mcp.command("enable")
@click.argument("name")
@click.pass_context
def mcp_enable(ctx: click.Context, name: str) -> None:
    """Enable a server (sync it to mcporter)."""
    _toggle(ctx, name, True)


@mcp.command("disable")
@click.argument("name")
@click.pass_context
def mcp_disable(ctx: click.Context, name: str) -> None:
    """Disable a server (remove it from mcporter, keep it here)."""
    _toggle(ctx, name, False)


@mcp.command("install")
@click.argument("url")
@click.pass_context
def mcp_install(ctx: click.Context, url: str) -> None:
    """Clone, build and register a server from a git URL."""
    with console.status(f"installing {url}..."):
        result = _installer(ctx).install(url)
    if not result.ok:
        console.print(f"[red]install failed[/red] at step [bold]{result.failed_step}[/bold]: {result.error}")
        if result.output and result.output not in result.error:
            console.print(result.output, style="dim", markup=False, highlight=False)
        ctx.exit(1)
    console.print(f"installed [bold]{result.name}[/bold]")
    if not result.build_ok:
        console.print("[yellow]warning:[/yellow] build step failed; continuing without it")
    if not result.entry_point_exists:
        console.print(
            f"[yellow]warning:[/yellow] entry point {result.entry_point} not found; "
            "edit the server's args to point at the right file"
        )
    _report_sync(result.sync)


@mcp.command("uninstall")
@click.argument("name")
@click.pass_context
def mcp_uninstall(ctx: click.Context, name: str) -> None:
    """Delete an installed server's files and its registry entry."""
    sync = _installer(ctx).uninstall(name)
    console.print(f"uninstalled [bold]{name}[/bold]")
    _report_sync(sync)


@mcp.command("test")
@click.argument("name")
@click.pass_context
def mcp_test(ctx: click.Context, name: str) -> None:
    """Run an initialize handshake against a server. Ctrl-C cancels."""
    config: Config = ctx.obj
    desc = _registry(ctx).get(name)
    if desc is None:
        raise click.ClickException(f"server {name!r} not found")

    cancel = threading.Event()
    outcome: list[ProbeResult] = []

    def _run() -> None:
        outcome.append(
            probe(desc, timeout=config.http_timeout, grace=config.probe_grace, cancel=cancel)
        )

    worker = threading.Thread(target=_run, daemon=True)
    with console.status(f"testing {name}..."):
        worker.start()
        try:
            while worker.is_alive():
                worker.join(timeout=0.2)
        except KeyboardInterrupt:
            cancel.set()
            worker.join()

    result = outcome[0] if outcome else ProbeResult.unreachable("probe did not complete")
    _print_probe(name, result)
    if not result.reachable:
        ctx.exit(1)


@mcp.command("sync")
@click.pass_context
def mcp_sync(ctx: click.Context) -> None:
    """Re-project enabled servers into mcporter's config."""
    sync = _registry(ctx).sync()
    _report_sync(sync)
    if sync.degraded:
        ctx.exit(1)


# ── companion (mcporter) ────────────────────────────────────────────


@cli.group()
def companion() -> None:
    """Manage the mcporter companion CLI."""


@companion.command("status")
@click.pass_context
def companion_status(ctx: click.Context) -> None:
    config: Config = ctx.obj
    installed = _installer(ctx).companion_installed()
    state = "[green]installed[/green]" if installed else "[dim]not installed[/dim]"
    console.print(f"mcporter: {state}")
    console.print(f"config: {short_path(config.external_store_path)}", style="dim")


@companion.command("install")
@click.pass_context
def companion_install(ctx: click.Context) -> None:
    with console.status("npm install -g mcporter..."):
        _installer(ctx).install_companion()
    console.print("mcporter installed")


@companion.command("uninstall")
@click.pass_context
def companion_uninstall(ctx: click.Context) -> None:
    with console.status("npm uninstall -g mcporter..."):
        _installer(ctx).uninstall_companion()
    console.print("mcporter uninstalled")


# ── plugin ──────────────────────────────────────────────────────────


@cli.group()
def plugin() -> None:
    """Install MCP servers as OpenClaw plugins."""


@plugin.command("install")
@click.argument("url")
@click.pass_context
def plugin_install(ctx: click.Context, url: str) -> None:
    with console.status(f"openclaw plugins install {url}..."):
        out = _installer(ctx).install_plugin(url)
    console.print(f"installed plugin from [bold]{url}[/bold]")
    if out.stdout.strip():
        console.print(out.stdout.strip(), style="dim", markup=False, highlight=False)


# ── config ──────────────────────────────────────────────────────────


@cli.group("config")
def config_group() -> None:
    """Read or write keys in openclaw.json."""


@config_group.command("get")
@click.argument("key")
@click.pass_context
def config_get(ctx: click.Context, key: str) -> None:
    value = ConfigStore(ctx.obj.document_path).get(key)
    if value is None:
        raise click.ClickException(f"{key} is not set")
    console.print_json(json.dumps(value))


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set KEY to VALUE; VALUE is parsed as JSON when it is valid JSON."""
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    try:
        ConfigStore(ctx.obj.document_path).set(key, parsed)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="KEY") from e
    console.print(f"set [bold]{key}[/bold]")


def main():
    cli()


if __name__ == "__main__":
    main()
