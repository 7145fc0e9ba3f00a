"""Report Action - Terminal output for detection, plans and run results.

CONTRACT:
- read_only: True
- requires_backup: False
- rollback_support: N/A
- prerequisites: None
"""

from dataclasses import dataclass

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from server_optimizer.model.server import ModuleResult, ParameterSet, ResourceFacts, ServerClass


@dataclass
class ActionContract:
    """Explicit contract for an action."""

    read_only: bool
    requires_backup: bool
    rollback_support: bool
    prerequisites: list[str]


class ReportAction:
    """Read-only rendering of optimizer state with rich."""

    CONTRACT = ActionContract(
        read_only=True,
        requires_backup=False,
        rollback_support=False,
        prerequisites=[],
    )

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def report_profile(
        self, server_class: ServerClass, facts: ResourceFacts, warnings: list[str] | None = None
    ) -> None:
        """Print the resolved class next to the measured resources."""
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Key", style="bold")
        table.add_column("Value")
        table.add_row("Server class", f"[cyan]{server_class}[/]")
        table.add_row("CPU cores", f"{facts.cpu_cores} (nominal {server_class.nominal_cpu_cores})")
        table.add_row("RAM", f"{facts.total_ram_mb}MB (nominal {server_class.nominal_ram_gb}GB)")
        table.add_row("Disk", f"{facts.available_disk_gb}GB free of {facts.total_disk_gb}GB")
        self.console.print(Panel(table, title="Server Profile", border_style="blue"))

        for warning in warnings or []:
            self.console.print(f"  [yellow]WARNING:[/] {warning}")

    def report_parameters(self, params: ParameterSet) -> None:
        table = Table(title=f"{params.subsystem} ({params.server_class or 'host'})", show_lines=False)
        table.add_column("Setting", style="bold")
        table.add_column("Value", justify="right")
        for key, value in params.values.items():
            table.add_row(key, str(value))
        self.console.print(table)
        for note in params.corrections:
            self.console.print(f"  [dim]correction:[/] {note}")

    def report_module_start(self, number: int, title: str) -> None:
        self.console.print(f"\n[bold blue]==> {number}. {title}[/]")

    def report_module_result(self, result: ModuleResult) -> None:
        if result.success:
            self.console.print(f"   [green][bold]OK:[/] {result.reason or result.name + ' complete'}[/]")
        else:
            self.console.print(f"   [red][bold]FAILED:[/] {result.reason}[/]")
        for warning in result.warnings:
            self.console.print(f"   [yellow]WARNING:[/] {warning}")
        for record in result.backups:
            if record.had_original:
                self.console.print(f"   [dim]backup: {record.backup_path}[/]")

    def report_summary(self, results: list[ModuleResult]) -> None:
        table = Table(title="Run Summary")
        table.add_column("Module", style="bold")
        table.add_column("Status")
        table.add_column("Detail")
        for result in results:
            status = "[green]OK[/]" if result.success else "[red]FAILED[/]"
            table.add_row(result.name, status, result.reason)
        self.console.print()
        self.console.print(table)
