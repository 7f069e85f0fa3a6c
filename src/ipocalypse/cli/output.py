"""
Rich console output helpers for the CLI.
"""

from rich.console import Console
from rich.table import Table

from ipocalypse.models.lease import PoolRunResult
from ipocalypse.models.topology import NetworkTopology

console = Console()
err_console = Console(stderr=True)


def print_error(message: str) -> None:
    err_console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    console.print(f"[green]{message}[/green]")


def format_topology_table(topology: NetworkTopology) -> Table:
    """Render a topology as a two-column table."""
    table = Table(title="Detected Network Configuration", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("Interface", topology.interface)
    table.add_row("Host address", topology.host_address)
    table.add_row("Subnet", topology.subnet)
    table.add_row("Gateway", topology.gateway)
    table.add_row("Leasable addresses", str(topology.address_capacity))
    return table


def format_run_summary(result: PoolRunResult) -> str:
    """Render the final run summary with markup."""
    if result.exhausted:
        reason = "[yellow]address space exhausted[/yellow]"
    else:
        reason = "[dim]cancelled[/dim]"

    text = (
        f"[bold]Finished launching containers:[/bold] "
        f"{result.leases} lease(s) from {result.attempts} attempt(s) "
        f"in {result.elapsed:.1f}s, {reason}"
    )
    if result.cause is not None:
        text += f"\n  cause: {result.cause}"
    return text
