"""
Click-based CLI for server-optimizer.

This module only ORCHESTRATES:
- Loads settings and server profiles
- Picks a connector
- Invokes the pipeline
- Formats output
"""

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from server_optimizer import __version__
from server_optimizer.actions.report import ReportAction
from server_optimizer.config import ConfigError, ConfigManager, OptimizerSettings, normalize_log_level
from server_optimizer.connector.base import Connector
from server_optimizer.connector.local import LocalConnector
from server_optimizer.connector.ssh import SSHConfig, SSHConnector
from server_optimizer.errors import OptimizerError
from server_optimizer.logging_setup import configure_logging
from server_optimizer.model.server import ModuleResult, ServerClass
from server_optimizer.modules import get_all_modules, select_modules
from server_optimizer.pipeline import build_context, plan_modules, preflight, run_modules

console = Console()


def _log_level(ctx: click.Context, param: click.Parameter, value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return normalize_log_level(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _server_class(ctx: click.Context, param: click.Parameter, value: str | None) -> ServerClass | None:
    if value is None:
        return None
    try:
        return ServerClass.parse(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


@click.group()
@click.version_option(version=__version__, prog_name="server-optimizer")
@click.option("--config", "-c", type=click.Path(), help="Path to config directory")
@click.option("--log-level", callback=_log_level, help="DEBUG, INFO, WARNING or ERROR")
@click.option("--log-file", type=click.Path(), help="Log file (default from settings.yaml)")
@click.pass_context
def main(ctx: click.Context, config: str | None, log_level: str | None, log_file: str | None) -> None:
    """server-optimizer: tune cPanel servers by size class.

    Sizes Apache, MySQL, Redis, LSAPI, swap and kernel limits from the
    host's CPU, RAM and disk, then applies them with backups and rollback.
    """
    ctx.ensure_object(dict)
    config_mgr = ConfigManager(Path(config) if config else None)
    try:
        settings = config_mgr.load_settings()
    except ConfigError as e:
        console.print(f"[bold red]Error:[/] {escape(str(e))}")
        sys.exit(1)
    if log_level:
        settings = settings.model_copy(update={"log_level": log_level})
    if log_file:
        settings = settings.model_copy(update={"log_file": log_file})

    configure_logging(settings.log_level, settings.log_file)
    ctx.obj["config_mgr"] = config_mgr
    ctx.obj["settings"] = settings


def _connector(ctx: click.Context, host: str | None) -> Connector:
    """The local host, or a saved profile / bare hostname over SSH."""
    settings: OptimizerSettings = ctx.obj["settings"]
    if not host:
        return LocalConnector(timeout=settings.command_timeout)
    cfg = ctx.obj["config_mgr"].get_profile(host) or SSHConfig(host=host, user="root")
    return SSHConnector(cfg, command_timeout=settings.command_timeout)


def _modules(selection: str | None) -> list:
    try:
        return select_modules(selection)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--modules") from e


host_option = click.option("--host", "-H", help="Server profile name or IP (default: this machine)")
server_type_option = click.option(
    "--server-type", "-t", callback=_server_class, help="Server class override, e.g. VPS3 or DSCPU2"
)


@main.command()
@host_option
@click.option("--non-interactive", "-n", is_flag=True, help="Never prompt; continue past failures")
@server_type_option
@click.option("--modules", "-m", "selection", help="Comma separated numbers or names, e.g. 1,3,redis")
@click.option("--yes", "-y", is_flag=True, help="Answer yes to every confirmation")
@click.pass_context
def run(
    ctx: click.Context,
    host: str | None,
    non_interactive: bool,
    server_type: ServerClass | None,
    selection: str | None,
    yes: bool,
) -> None:
    """Apply the selected optimization modules.

    ⚠️  WARNING: This modifies the server!
    """
    settings: OptimizerSettings = ctx.obj["settings"]
    interactive = not (non_interactive or settings.non_interactive)
    modules = _modules(selection)
    explicit = server_type or settings.server_class()
    report = ReportAction(console)

    def confirm(question: str) -> bool:
        if yes or not interactive:
            return True
        return click.confirm(question, default=True)

    def continue_after_failure(result: ModuleResult) -> bool:
        return confirm("Do you want to continue with the next module?")

    try:
        with _connector(ctx, host) as connector:
            preflight(connector)
            module_ctx, warnings = build_context(
                connector,
                settings,
                report,
                explicit_class=explicit,
                interactive=interactive,
                confirm=confirm,
            )
            report.report_profile(module_ctx.server_class, module_ctx.facts, warnings)

            if interactive and not yes:
                console.print("The following modules will be executed:")
                for module in modules:
                    console.print(f"  {module.number}. {module.title}")
                if not click.confirm("Do you want to continue?", default=True):
                    console.print("[dim]Execution cancelled.[/]")
                    return

            outcome = run_modules(module_ctx, modules, continue_after_failure=continue_after_failure)
    except (OptimizerError, ConnectionError) as e:
        console.print(f"[bold red]Error:[/] {escape(str(e))}")
        sys.exit(1)

    report.report_summary(outcome.results)
    if settings.log_file:
        console.print(f"[dim]Log file: {settings.log_file}[/]")
    sys.exit(outcome.exit_code)


@main.command()
@host_option
@server_type_option
@click.pass_context
def detect(ctx: click.Context, host: str | None, server_type: ServerClass | None) -> None:
    """Show measured resources and the resolved server class."""
    settings: OptimizerSettings = ctx.obj["settings"]
    report = ReportAction(console)
    try:
        with _connector(ctx, host) as connector:
            module_ctx, warnings = build_context(
                connector, settings, report, explicit_class=server_type or settings.server_class()
            )
    except (OptimizerError, ConnectionError) as e:
        console.print(f"[bold red]Error:[/] {escape(str(e))}")
        sys.exit(1)
    report.report_profile(module_ctx.server_class, module_ctx.facts, warnings)


@main.command()
@host_option
@server_type_option
@click.option("--modules", "-m", "selection", help="Comma separated numbers or names")
@click.pass_context
def plan(ctx: click.Context, host: str | None, server_type: ServerClass | None, selection: str | None) -> None:
    """Print the validated parameters each module would write. Read-only."""
    settings: OptimizerSettings = ctx.obj["settings"]
    modules = _modules(selection)
    report = ReportAction(console)
    try:
        with _connector(ctx, host) as connector:
            module_ctx, warnings = build_context(
                connector, settings, report, explicit_class=server_type or settings.server_class()
            )
            entries = plan_modules(module_ctx, modules)
    except (OptimizerError, ConnectionError) as e:
        console.print(f"[bold red]Error:[/] {escape(str(e))}")
        sys.exit(1)

    report.report_profile(module_ctx.server_class, module_ctx.facts, warnings)
    for entry in entries:
        if entry.error:
            console.print(f"[bold]{entry.module}[/]: [red]{escape(entry.error)}[/]")
            continue
        if not entry.parameters:
            console.print(f"[bold]{entry.module}[/]: [dim]no sized parameters[/]")
            continue
        for params in entry.parameters:
            report.report_parameters(params)


@main.command("modules")
@click.pass_context
def list_modules(ctx: click.Context) -> None:
    """List the optimization modules."""
    settings: OptimizerSettings = ctx.obj["settings"]
    table = Table(title="Modules")
    table.add_column("#", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Description")
    table.add_column("Enabled")
    for module in get_all_modules():
        enabled = "[green]yes[/]" if settings.module_enabled(module.name) else "[dim]no[/]"
        table.add_row(str(module.number), module.name, module.title, enabled)
    console.print(table)


@main.group()
def config() -> None:
    """Manage server connection profiles."""
    pass


@config.command("add")
@click.argument("name")
@click.option("--host", "-h", required=True, help="Server hostname or IP")
@click.option("--user", "-u", default="root", help="SSH username")
@click.option("--port", "-p", default=22, help="SSH port")
@click.option("--password", "-pass", help="SSH password")
@click.option("--key", "-k", type=click.Path(), help="Path to SSH private key")
@click.option("--sudo/--no-sudo", default=True, help="Use sudo for commands")
@click.pass_context
def config_add(
    ctx: click.Context, name: str, host: str, user: str, port: int, password: str | None, key: str | None, sudo: bool
) -> None:
    """Add a new server profile."""
    config_mgr = ctx.obj["config_mgr"]
    cfg = SSHConfig(host=host, user=user, port=port, password=password, key_path=key, use_sudo=sudo)
    config_mgr.add_profile(name, cfg)
    console.print(f"[bold green]✓ Added server profile:[/] {name}")


@config.command("list")
@click.pass_context
def config_list(ctx: click.Context) -> None:
    """List all server profiles."""
    profiles = ctx.obj["config_mgr"].list_profiles()
    if not profiles:
        console.print("[dim]No profiles configured yet.[/]")
        return

    for name, data in profiles.items():
        console.print(f"[bold green]{name}[/]: {data['user']}@{data['host']}:{data['port']}")


@config.command("remove")
@click.argument("name")
@click.pass_context
def config_remove(ctx: click.Context, name: str) -> None:
    """Remove a server profile."""
    if ctx.obj["config_mgr"].remove_profile(name):
        console.print(f"[bold green]✓ Removed profile:[/] {name}")
    else:
        console.print(f"[bold red]Error:[/] Profile {name} not found.")
        sys.exit(1)


if __name__ == "__main__":
    main()
