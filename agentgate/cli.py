"""
AgentGate CLI

Command-line interface for agent registration and activation.

Registry and audit commands work directly on the local project; session
commands talk to a running server, which owns the live sessions.
"""

import sys
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from . import __version__
from .agents.catalog import DirectoryCatalogSource
from .agents.models import RegistrationState
from .agents.registry import AgentRegistry
from .audit.trail import AuditTrail
from .config import GateConfig, load_config, create_default_config
from .errors import NotFoundError


console = Console()

DEFAULT_CONFIG = "agentgate.yaml"


def _load(ctx) -> GateConfig:
    config_path = ctx.obj.get("config_path")
    if config_path:
        return load_config(config_path)
    if Path(DEFAULT_CONFIG).exists():
        return load_config(DEFAULT_CONFIG)
    return GateConfig()


def _base_url(ctx, port: Optional[int]) -> str:
    config = _load(ctx)
    host = config.server.host if config.server.host not in ("0.0.0.0", "") else "localhost"
    return f"http://{host}:{port or config.server.port}"


def _build_registry(config: GateConfig) -> AgentRegistry:
    catalog = DirectoryCatalogSource(
        root_path=config.catalog.root_path,
        agent_dirs=config.catalog.agent_dirs,
    )
    return AgentRegistry(
        catalog=catalog,
        retry_attempts=config.registry.retry_attempts,
        retry_base_delay=config.registry.retry_base_delay,
    )


def _open_audit(config: GateConfig) -> AuditTrail:
    if config.audit.storage != "sqlite" or not Path(config.audit.path).exists():
        console.print(f"[red]✗[/red] No audit database at {config.audit.path}")
        sys.exit(1)
    return AuditTrail(storage="sqlite", path=config.audit.path)


def _fail_response(response) -> None:
    try:
        detail = response.json().get("detail", response.text)
    except ValueError:
        detail = response.text
    console.print(f"[red]✗[/red] {detail}")
    sys.exit(1)


@click.group()
@click.version_option(__version__, prog_name="agentgate")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config_path: str, verbose: bool):
    """AgentGate - Agent registration and activation"""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# =============================================================================
# Server Commands
# =============================================================================

@cli.command()
@click.option("--path", "-o", default=DEFAULT_CONFIG, type=click.Path(), help="Where to write the config")
def init(path: str):
    """Initialize a new configuration file."""
    config_path = Path(path)

    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return

    config_path.write_text(create_default_config())
    console.print(f"[green]✓[/green] Created {config_path}")
    console.print("\nPoint catalog.root_path at your project, then run:")
    console.print(f"  [cyan]agentgate -c {config_path} serve[/cyan]")


@cli.command()
@click.option("--host", "-h", default=None, help="Host to bind to")
@click.option("--port", "-p", default=None, type=int, help="Port to bind to")
@click.pass_context
def serve(ctx, host: Optional[str], port: Optional[int]):
    """Start the AgentGate server."""
    import uvicorn
    from .server import create_app

    config = _load(ctx)
    if host:
        config.server.host = host
    if port:
        config.server.port = port

    console.print(Panel(
        f"[bold]AgentGate v{__version__}[/bold]\n"
        f"Starting server on [cyan]http://{config.server.host}:{config.server.port}[/cyan]",
        title="🚀 Starting"
    ))

    logging.getLogger().setLevel(getattr(logging, config.logging.level, logging.INFO))
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


@cli.command()
@click.option("--port", "-p", default=None, type=int, help="Server port")
@click.pass_context
def status(ctx, port: Optional[int]):
    """Show server status."""
    import httpx

    try:
        response = httpx.get(f"{_base_url(ctx, port)}/")
        data = response.json()
    except httpx.HTTPError as e:
        console.print(f"[red]✗[/red] Server not running: {e}")
        sys.exit(1)

    console.print(Panel(
        f"[bold green]Running[/bold green]\n\n"
        f"Version: {data.get('version', 'unknown')}\n"
        f"Agents: {data.get('agents', 0)}\n"
        f"Active sessions: {data.get('active_sessions', 0)}\n"
        f"Audit: {'✓' if data.get('audit_enabled') else '✗'}",
        title="📊 AgentGate Status"
    ))


# =============================================================================
# Registry Commands
# =============================================================================

@cli.command()
@click.pass_context
def register(ctx):
    """Discover and register every agent in the catalog."""
    registry = _build_registry(_load(ctx))
    stats = registry.discover_and_register()

    console.print(
        f"[green]✓[/green] Registered {stats.registered} agents "
        f"({stats.by_source.get('core-builtin', 0)} core, "
        f"{stats.by_source.get('expansion-pack', 0)} expansion pack)"
    )
    if stats.failures:
        table = Table(title="Failed Registrations")
        table.add_column("Agent", style="cyan")
        table.add_column("Reason", style="red")
        for agent_id, reason in sorted(stats.failures.items()):
            table.add_row(agent_id, reason)
        console.print(table)
        sys.exit(1)


@cli.group()
def agents():
    """Inspect agents in the catalog."""
    pass


@agents.command("list")
@click.option("--state", "-s", type=click.Choice([s.value for s in RegistrationState]), help="Filter by state")
@click.option("--pack", help="Filter by expansion pack")
@click.pass_context
def agents_list(ctx, state: Optional[str], pack: Optional[str]):
    """List agents."""
    registry = _build_registry(_load(ctx))
    registry.discover_and_register()

    descriptors = registry.list(state=RegistrationState(state) if state else None)
    if pack:
        descriptors = [d for d in descriptors if d.expansion_pack_id == pack]

    if not descriptors:
        console.print("[yellow]No agents found[/yellow]")
        return

    table = Table(title="Agents")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Role")
    table.add_column("Pack")
    table.add_column("State")

    for d in descriptors:
        color = "green" if d.state == RegistrationState.REGISTERED else "red"
        table.add_row(
            d.id or "-",
            d.display_name or "-",
            d.role_group or "-",
            d.expansion_pack_id or "core",
            f"[{color}]{d.state.value}[/{color}]",
        )

    console.print(table)


@agents.command("show")
@click.argument("agent_id")
@click.pass_context
def agents_show(ctx, agent_id: str):
    """Show one agent."""
    registry = _build_registry(_load(ctx))
    registry.discover_and_register()

    try:
        d = registry.get_descriptor(agent_id)
    except NotFoundError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)

    lines = [
        f"[bold]{d.display_name}[/bold] ({d.id})",
        "",
        f"Role group: {d.role_group or '-'}",
        f"Source: {d.source_kind.value}" + (f" ({d.expansion_pack_id})" if d.expansion_pack_id else ""),
        f"File: {d.source_path or '-'}",
        f"State: {d.state.value}",
        f"Hash: {d.content_hash[:16]}",
    ]
    if d.failure_reason:
        lines.append(f"[red]Failure: {d.failure_reason}[/red]")
    if d.dependencies:
        lines.append(f"Dependencies: {', '.join(str(dep) for dep in d.dependencies)}")
    for warning in d.validation_warnings:
        lines.append(f"[yellow]• {warning}[/yellow]")
    console.print(Panel("\n".join(lines), title="🤖 Agent"))


@agents.command("stats")
@click.pass_context
def agents_stats(ctx):
    """Show registry statistics."""
    registry = _build_registry(_load(ctx))
    stats = registry.discover_and_register()

    table = Table(title="Registry Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("total", str(stats.total))
    for key, value in stats.by_state.items():
        table.add_row(key, str(value))
    for key, value in stats.by_source.items():
        table.add_row(key, str(value))
    console.print(table)


# =============================================================================
# Session Commands (server)
# =============================================================================

@cli.command()
@click.argument("agent_id")
@click.option("--owner", "-o", default="cli", help="Owner context")
@click.option("--tag", "-t", "tags", multiple=True, help="Role tag (repeatable)")
@click.option("--port", "-p", default=None, type=int, help="Server port")
@click.pass_context
def activate(ctx, agent_id: str, owner: str, tags: tuple, port: Optional[int]):
    """Activate an agent on the running server."""
    import httpx

    try:
        response = httpx.post(
            f"{_base_url(ctx, port)}/v1/sessions",
            json={"agent_id": agent_id, "owner": owner, "tags": list(tags)},
        )
    except httpx.HTTPError as e:
        console.print(f"[red]✗[/red] Server not reachable: {e}")
        sys.exit(1)

    if response.status_code not in (200, 201):
        _fail_response(response)

    data = response.json()
    session = data["session"]
    verb = "Reused" if data.get("status") == "reused" else "Activated"
    console.print(f"[green]✓[/green] {verb} {agent_id} (session {session['session_id']})")
    if session.get("degraded_capabilities"):
        console.print(
            f"[yellow]![/yellow] Missing dependencies: {', '.join(session['degraded_capabilities'])}"
        )


@cli.command()
@click.argument("agent_id")
@click.option("--port", "-p", default=None, type=int, help="Server port")
@click.pass_context
def deactivate(ctx, agent_id: str, port: Optional[int]):
    """Deactivate an agent on the running server."""
    import httpx

    try:
        response = httpx.delete(f"{_base_url(ctx, port)}/v1/sessions/{agent_id}")
    except httpx.HTTPError as e:
        console.print(f"[red]✗[/red] Server not reachable: {e}")
        sys.exit(1)

    if response.status_code != 200:
        _fail_response(response)
    console.print(f"[green]✓[/green] Deactivated: {agent_id}")


@cli.group()
def sessions():
    """Inspect live sessions on the running server."""
    pass


@sessions.command("list")
@click.option("--port", "-p", default=None, type=int, help="Server port")
@click.pass_context
def sessions_list(ctx, port: Optional[int]):
    """List live sessions."""
    import httpx

    try:
        response = httpx.get(f"{_base_url(ctx, port)}/v1/sessions")
        data = response.json()
    except httpx.HTTPError as e:
        console.print(f"[red]✗[/red] Server not reachable: {e}")
        sys.exit(1)

    if not data.get("sessions"):
        console.print("[yellow]No active sessions[/yellow]")
        return

    table = Table(title=f"Sessions ({data['count']}/{data.get('max_active_sessions', '?')})")
    table.add_column("Agent", style="cyan")
    table.add_column("Session", style="dim")
    table.add_column("State")
    table.add_column("Owner")
    table.add_column("Last activity", style="dim")
    table.add_column("Degraded", justify="right")

    for s in data["sessions"]:
        table.add_row(
            s["agent_id"],
            s["session_id"],
            s["state"],
            s.get("owner_context") or "-",
            (s.get("last_activity_at") or "")[:19],
            str(len(s.get("degraded_capabilities", []))),
        )

    console.print(table)


@sessions.command("cleanup")
@click.option("--port", "-p", default=None, type=int, help="Server port")
@click.pass_context
def sessions_cleanup(ctx, port: Optional[int]):
    """Expire idle sessions now."""
    import httpx

    try:
        response = httpx.post(f"{_base_url(ctx, port)}/v1/sessions/cleanup")
        data = response.json()
    except httpx.HTTPError as e:
        console.print(f"[red]✗[/red] Server not reachable: {e}")
        sys.exit(1)

    console.print(f"[green]✓[/green] Expired {data.get('count', 0)} sessions")


# =============================================================================
# Audit Commands (local database)
# =============================================================================

@cli.group()
def audit():
    """Query and verify the audit trail."""
    pass


@audit.command("list")
@click.option("--agent", "-a", help="Filter by agent ID")
@click.option("--event", "-e", help="Filter by event type")
@click.option("--limit", "-n", default=20, type=int, help="Max entries")
@click.pass_context
def audit_list(ctx, agent: str, event: str, limit: int):
    """List audit entries."""
    trail = _open_audit(_load(ctx))
    entries = trail.query(entity_id=agent, event_type=event, limit=limit)
    trail.close()

    table = Table(title="Audit Log")
    table.add_column("Timestamp", style="dim")
    table.add_column("Event")
    table.add_column("Agent", style="cyan")
    table.add_column("Session", style="dim")
    table.add_column("Reason")

    for entry in entries:
        table.add_row(
            entry.timestamp.isoformat()[:19],
            entry.event_type,
            entry.entity_id,
            entry.session_id or "-",
            entry.reason or "-",
        )

    console.print(table)


@audit.command("verify")
@click.pass_context
def audit_verify(ctx):
    """Verify audit chain integrity."""
    trail = _open_audit(_load(ctx))
    result = trail.verify_chain()
    trail.close()

    if result.valid:
        console.print(Panel(
            f"[bold green]Chain Valid[/bold green]\n\n"
            f"Entries verified: {result.entries_checked}",
            title="✓ Integrity Check"
        ))
    else:
        console.print(Panel(
            f"[bold red]Chain Invalid[/bold red]\n\n"
            f"First invalid: {result.first_invalid or 'unknown'}\n"
            f"Error: {result.error or 'unknown'}",
            title="✗ Integrity Check"
        ))
        sys.exit(1)


@audit.command("export")
@click.option("--output", "-o", type=click.Path(), help="Output file")
@click.option("--format", "-f", "fmt", default="json", type=click.Choice(["json", "jsonl"]))
@click.pass_context
def audit_export(ctx, output: str, fmt: str):
    """Export audit log."""
    trail = _open_audit(_load(ctx))
    content = trail.export(format=fmt)
    count = trail.stats["entry_count"]
    trail.close()

    if output:
        Path(output).write_text(content)
        console.print(f"[green]✓[/green] Exported {count} entries to {output}")
    else:
        click.echo(content)


# =============================================================================
# Main
# =============================================================================

def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
