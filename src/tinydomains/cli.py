"""Tinydomains CLI - Command line interface."""

from __future__ import annotations

import asyncio
import json
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tinydomains.core.config import DomainsConfig, Environment, get_config
from tinydomains.domains import (
    STATUS_LABELS,
    DomainError,
    DomainManager,
    DomainNotFoundError,
    DomainStatus,
    DomainStore,
    VerificationEngine,
    VerificationScheduler,
)
from tinydomains.observability.logging import configure_logging
from tinydomains.routing import NotFound, PassThrough, RequestRouter, Rewrite

console = Console()

BANNER = """
 _   _                 _                       _
| |_(_)_ __  _   _  __| | ___  _ __ ___   __ _(_)_ __  ___
| __| | '_ \\| | | |/ _` |/ _ \\| '_ ` _ \\ / _` | | '_ \\/ __|
| |_| | | | | |_| | (_| | (_) | | | | | | (_| | | | | \\__ \\
 \\__|_|_| |_|\\__, |\\__,_|\\___/|_| |_| |_|\\__,_|_|_| |_|___/
             |___/     custom domains, verified and routed
"""

STATUS_COLORS = {
    DomainStatus.PENDING: "yellow",
    DomainStatus.VERIFYING: "cyan",
    DomainStatus.ACTIVE: "green",
    DomainStatus.FAILED: "red",
}


def _load_config(config_file: str | None, storage: str | None = None) -> DomainsConfig:
    cfg = DomainsConfig.from_file(config_file) if config_file else get_config()
    if storage:
        cfg = cfg.model_copy(update={"storage_path": storage})
    return cfg


def _build(cfg: DomainsConfig) -> tuple[DomainStore, VerificationEngine, DomainManager]:
    store = DomainStore(cfg.storage_path)
    engine = VerificationEngine(cfg, store, tenants=store)
    manager = DomainManager(cfg, store, VerificationScheduler(cfg, engine))
    return store, engine, manager


@click.group()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    help="Log level (default: warning)",
)
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines")
@click.pass_context
def main(ctx: click.Context, config_file: str | None, log_level: str, json_logs: bool):
    """Tinydomains - custom domains for tenant pages.

    All settings can be configured via environment variables with the
    TINYDOMAINS_ prefix, or with a YAML/TOML file passed to --config.
    """
    configure_logging(log_level, json_output=json_logs)
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file


@main.command()
@click.option("--bind", "-b", default=None, help="HTTP bind address (default from config)")
@click.option("--upstream", "-u", default=None, help="Page renderer URL to proxy to")
@click.option("--storage", default=None, help="Path to domain storage file")
@click.option("--no-scheduler", is_flag=True, help="Do not run background verification")
@click.pass_context
def serve(
    ctx: click.Context,
    bind: str | None,
    upstream: str | None,
    storage: str | None,
    no_scheduler: bool,
):
    """Run the edge server."""
    cfg = _load_config(ctx.obj["config_file"], storage)
    updates = {k: v for k, v in {"bind": bind, "upstream_url": upstream}.items() if v}
    if updates:
        cfg = cfg.model_copy(update=updates)

    console.print(BANNER, style="cyan")
    console.print(f"  Platform root: [cyan]{cfg.platform_root}[/cyan]")
    console.print(f"  Listening on:  [cyan]{cfg.bind}[/cyan]")
    console.print(f"  Upstream:      [cyan]{cfg.upstream_url or 'none (API only)'}[/cyan]")
    if cfg.environment != Environment.PRODUCTION:
        console.print(f"  [yellow]Environment: {cfg.environment.value}[/yellow]")
    console.print()

    try:
        asyncio.run(_serve_async(cfg, not no_scheduler))
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


async def _serve_async(cfg: DomainsConfig, run_scheduler: bool):
    """Async implementation of serve command."""
    from tinydomains.server import create_server

    store = DomainStore(cfg.storage_path)
    server = create_server(cfg, store, tenants=store, run_scheduler=run_scheduler)
    await server.serve_forever()


@main.command()
@click.argument("host")
@click.argument("path", default="/")
@click.option("--storage", default=None, help="Path to domain storage file")
@click.pass_context
def route(ctx: click.Context, host: str, path: str, storage: str | None):
    """Show how a request for HOST and PATH would be routed."""
    cfg = _load_config(ctx.obj["config_file"], storage)
    asyncio.run(_route_async(cfg, host, path))


async def _route_async(cfg: DomainsConfig, host: str, path: str):
    """Async implementation of route command."""
    store = DomainStore(cfg.storage_path)
    router = RequestRouter(cfg, VerificationEngine(cfg, store, tenants=store))
    decision = await router.route(host, path)

    if isinstance(decision, PassThrough):
        console.print(f"[green]pass-through[/green] {path}")
    elif isinstance(decision, Rewrite):
        console.print(f"[green]rewrite[/green] {path} -> [cyan]{decision.target_path}[/cyan]")
        console.print(f"[dim]strip headers: {', '.join(decision.strip_headers)}[/dim]")
    elif isinstance(decision, NotFound):
        console.print("[yellow]not found[/yellow] (404)")
    else:
        console.print(f"[red]server error[/red] (502): {decision.reason}")
        sys.exit(1)


@main.command("config")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def config_show(ctx: click.Context, json_output: bool):
    """Show current configuration settings.

    Values come from the config file, environment variables or defaults.
    """
    try:
        cfg = _load_config(ctx.obj["config_file"])
    except Exception as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    display = cfg.to_display_dict()
    if json_output:
        console.print(json.dumps(display, indent=2))
        return

    table = Table(title="Current Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in display.items():
        table.add_row(key, ", ".join(value) if isinstance(value, list) else str(value))
    console.print(table)


@main.group()
def domain():
    """Manage custom domains.

    Custom domains let a tenant serve their page from their own domain
    (e.g., links.mycompany.com) instead of tiny.pm/<username>.

    Examples:

        tinydomains domain add links.mycompany.com --owner tenant-1

        tinydomains domain verify links.mycompany.com

        tinydomains domain list

        tinydomains domain status links.mycompany.com

        tinydomains domain remove links.mycompany.com
    """
    pass


@domain.command("add")
@click.argument("domain_name")
@click.option("--owner", "-o", required=True, help="Tenant ID that owns this domain")
@click.option("--storage", default=None, help="Path to domain storage file")
@click.pass_context
def domain_add(ctx: click.Context, domain_name: str, owner: str, storage: str | None):
    """Register a new custom domain.

    After registration, you'll receive the DNS record to configure.
    """
    cfg = _load_config(ctx.obj["config_file"], storage)
    asyncio.run(_domain_add_async(cfg, domain_name, owner))


async def _domain_add_async(cfg: DomainsConfig, domain_name: str, owner: str):
    """Async implementation of domain add command."""
    _, _, manager = _build(cfg)

    try:
        record = await manager.register_domain(domain_name, owner)
    except DomainError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    instruction = manager.dns_instructions(record.domain)
    console.print(
        Panel(
            f"[green]Domain registered successfully![/green]\n\n"
            f"[bold]Domain:[/bold] {record.domain}\n"
            f"[bold]Owner:[/bold] {record.owner_id}\n"
            f"[bold]Status:[/bold] {STATUS_LABELS[record.status]}\n\n"
            f"[yellow]Configure this DNS record:[/yellow]\n\n"
            f"   Type:  {instruction.type}\n"
            f"   Name:  {instruction.name}\n"
            f"   Value: {instruction.value}\n\n"
            f"After configuring DNS, run:\n"
            f"  [cyan]tinydomains domain verify {record.domain}[/cyan]",
            title="Domain Registration",
            border_style="green",
        )
    )


@domain.command("verify")
@click.argument("domain_name")
@click.option("--storage", default=None, help="Path to domain storage file")
@click.pass_context
def domain_verify(ctx: click.Context, domain_name: str, storage: str | None):
    """Check a domain now (restarts verification of failed domains)."""
    cfg = _load_config(ctx.obj["config_file"], storage)
    asyncio.run(_domain_verify_async(cfg, domain_name))


async def _domain_verify_async(cfg: DomainsConfig, domain_name: str):
    """Async implementation of domain verify command."""
    _, engine, manager = _build(cfg)

    console.print(f"Verifying [cyan]{domain_name}[/cyan]...", style="yellow")
    try:
        info = await manager.request_verification(domain_name)
    except DomainError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        await engine.close()

    color = STATUS_COLORS[info.status]
    content = (
        f"[bold]Domain:[/bold] {info.domain}\n"
        f"[bold]Status:[/bold] [{color}]{info.status_label}[/{color}]\n"
        f"[bold]Last result:[/bold] {info.last_result or 'N/A'}"
    )
    if info.status == DomainStatus.ACTIVE:
        content += "\n\nYour domain is now active and ready to use!"
    else:
        content += f"\n\n[yellow]DNS Setup Required:[/yellow]\n{manager.render_dns_instructions(info.domain)}"

    console.print(
        Panel(
            content,
            title="Verification Status",
            border_style=color,
        )
    )
    if info.status != DomainStatus.ACTIVE:
        sys.exit(1)


@domain.command("list")
@click.option("--owner", "-o", default=None, help="Only domains owned by this tenant")
@click.option("--storage", default=None, help="Path to domain storage file")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def domain_list(ctx: click.Context, owner: str | None, storage: str | None, json_output: bool):
    """List registered domains."""
    cfg = _load_config(ctx.obj["config_file"], storage)
    asyncio.run(_domain_list_async(cfg, owner, json_output))


async def _domain_list_async(cfg: DomainsConfig, owner: str | None, json_output: bool):
    """Async implementation of domain list command."""
    _, _, manager = _build(cfg)

    try:
        infos = await manager.list_domains(owner)
    except DomainError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if json_output:
        console.print(json.dumps([i.to_dict() for i in infos], indent=2, default=str))
        return

    if not infos:
        console.print("[dim]No domains registered[/dim]")
        return

    table = Table(title="Registered Domains")
    table.add_column("Domain", style="cyan")
    table.add_column("Owner", style="dim")
    table.add_column("Status")
    table.add_column("Last Attempt")
    table.add_column("Created At")

    for info in infos:
        color = STATUS_COLORS[info.status]
        last = info.last_attempt_at.strftime("%Y-%m-%d %H:%M") if info.last_attempt_at else "N/A"
        table.add_row(
            info.domain,
            info.owner_id[:12] + "..." if len(info.owner_id) > 12 else info.owner_id,
            f"[{color}]{info.status_label}[/{color}]",
            last,
            info.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@domain.command("status")
@click.argument("domain_name")
@click.option("--storage", default=None, help="Path to domain storage file")
@click.pass_context
def domain_status(ctx: click.Context, domain_name: str, storage: str | None):
    """Show detailed status for a domain."""
    cfg = _load_config(ctx.obj["config_file"], storage)
    asyncio.run(_domain_status_async(cfg, domain_name))


async def _domain_status_async(cfg: DomainsConfig, domain_name: str):
    """Async implementation of domain status command."""
    _, _, manager = _build(cfg)

    try:
        info = await manager.get_domain_info(domain_name)
    except DomainNotFoundError:
        console.print(f"[red]Domain not found:[/red] {domain_name}")
        sys.exit(1)
    except DomainError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    color = STATUS_COLORS[info.status]
    content = (
        f"[bold]Domain:[/bold] {info.domain}\n"
        f"[bold]Status:[/bold] [{color}]{info.status_label}[/{color}]\n"
        f"[bold]Owner:[/bold] {info.owner_id}\n"
        f"[bold]Created At:[/bold] {info.created_at.strftime('%Y-%m-%d %H:%M')}"
    )
    if info.last_attempt_at:
        content += f"\n[bold]Last Attempt:[/bold] {info.last_attempt_at.strftime('%Y-%m-%d %H:%M')}"
    if info.last_result:
        content += f"\n[bold]Last Result:[/bold] {info.last_result}"
    if info.estimate is not None:
        content += (
            f"\n\n[yellow]DNS propagation usually takes "
            f"{info.estimate.min_minutes}-{info.estimate.max_minutes} minutes "
            f"(about {info.estimate.remaining_minutes} left).[/yellow]"
        )

    console.print(
        Panel(
            content,
            title=f"Domain Status: {info.domain}",
            border_style=color,
        )
    )


@domain.command("instructions")
@click.argument("domain_name")
@click.pass_context
def domain_instructions(ctx: click.Context, domain_name: str):
    """Show the DNS record a domain needs."""
    cfg = _load_config(ctx.obj["config_file"])
    _, _, manager = _build(cfg)
    console.print(manager.render_dns_instructions(domain_name))


@domain.command("remove")
@click.argument("domain_name")
@click.option("--storage", default=None, help="Path to domain storage file")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def domain_remove(ctx: click.Context, domain_name: str, storage: str | None, yes: bool):
    """Remove a registered domain."""
    if not yes and not click.confirm(f"Are you sure you want to remove '{domain_name}'?"):
        console.print("[dim]Cancelled[/dim]")
        return

    cfg = _load_config(ctx.obj["config_file"], storage)
    asyncio.run(_domain_remove_async(cfg, domain_name))


async def _domain_remove_async(cfg: DomainsConfig, domain_name: str):
    """Async implementation of domain remove command."""
    _, _, manager = _build(cfg)

    try:
        deleted = await manager.delete_domain(domain_name)
    except DomainError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if deleted:
        console.print(f"[green]Domain removed:[/green] {domain_name}")
    else:
        console.print(f"[red]Domain not found:[/red] {domain_name}")
        sys.exit(1)


@main.group()
def tenant():
    """Manage the tenant -> username directory used for routing."""
    pass


@tenant.command("set")
@click.argument("tenant_id")
@click.argument("username")
@click.option("--storage", default=None, help="Path to domain storage file")
@click.pass_context
def tenant_set(ctx: click.Context, tenant_id: str, username: str, storage: str | None):
    """Map TENANT_ID to USERNAME."""
    cfg = _load_config(ctx.obj["config_file"], storage)
    try:
        asyncio.run(DomainStore(cfg.storage_path).save_tenant(tenant_id, username))
    except DomainError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print(f"[green]Tenant saved:[/green] {tenant_id} -> {username}")


if __name__ == "__main__":
    main()
