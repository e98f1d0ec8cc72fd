"""Rich terminal renderer for ``hubforge agent status``.

Color scheme
------------
- green     : passed
- red       : failed
- yellow    : warned / started (interrupted)
- cyan      : skipped
- dim       : not reached
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from hubforge.models.ledger import LedgerEvent
from hubforge.models.steps import ProvisioningState
from hubforge.monitor.projection import RunSnapshot

_EVENT_LABELS: dict[LedgerEvent, str] = {
    LedgerEvent.PASSED: "[green]PASSED[/green]",
    LedgerEvent.FAILED: "[bold red]FAILED[/bold red]",
    LedgerEvent.WARNED: "[yellow]WARNED[/yellow]",
    LedgerEvent.SKIPPED: "[cyan]SKIPPED[/cyan]",
    LedgerEvent.STARTED: "[yellow]INTERRUPTED[/yellow]",
}

_STATE_STYLES: dict[ProvisioningState, str] = {
    ProvisioningState.COMPLETED: "bold green",
    ProvisioningState.FAILED: "bold red",
}


class StatusRenderer:
    """Renders a ``RunSnapshot`` as a Rich Panel.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_snapshot(self, snapshot: RunSnapshot) -> Panel:
        table = Table(show_header=True, header_style="bold", expand=True)
        table.add_column("#", justify="right", style="dim", width=3)
        table.add_column("Step", min_width=22)
        table.add_column("Status", justify="center", min_width=12)
        table.add_column("Warnings", justify="right")
        table.add_column("Detail", overflow="fold")

        for idx, step in enumerate(snapshot.steps):
            label = _EVENT_LABELS[step.event] if step.event else "[dim]NOT REACHED[/dim]"
            warnings = f"[yellow]{step.warning_count}[/yellow]" if step.warning_count else ""
            table.add_row(str(idx), step.display_name, label, warnings, step.detail)

        style = _STATE_STYLES.get(snapshot.state, "bold yellow")
        chain = "[green]valid[/green]" if snapshot.chain_valid else "[bold red]BROKEN[/bold red]"
        summary = "  |  ".join(
            [
                f"[bold]Run:[/bold] {snapshot.run_id}",
                f"[bold]State:[/bold] [{style}]{snapshot.state.value}[/{style}]",
                f"[bold]Entries:[/bold] {snapshot.entry_count}",
                f"[bold]Chain:[/bold] {chain}",
            ]
        )
        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title="[bold]HomeHub Provisioning[/bold]",
            border_style=style,
        )

    def print_snapshot(self, snapshot: RunSnapshot) -> None:
        self.console.print(self.render_snapshot(snapshot))
        if not snapshot.chain_valid:
            self.console.print(f"[bold red]Ledger integrity:[/bold red] {snapshot.chain_error}")
