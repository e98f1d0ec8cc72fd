"""``hubforge agent`` — the on-device provisioning agent and its status view."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from hubforge.config import settings
from hubforge.core.agent import ProvisioningAgent
from hubforge.core.command import CommandRunner
from hubforge.core.context import AgentContext, ProfileLoadError, load_profile
from hubforge.core.run_ledger import RunLedger
from hubforge.logging_setup import configure_logging
from hubforge.models.layout import DeviceLayout
from hubforge.monitor.projection import StatusProjection
from hubforge.monitor.renderer import StatusRenderer

console = Console()

agent_app = typer.Typer(
    name="agent",
    help="Run or inspect the first-boot provisioning agent.",
    no_args_is_help=True,
)


def _ledger_path(root: Path, ledger_db: Optional[Path]) -> Path:
    return ledger_db or DeviceLayout(root=root).under_root(settings.ledger_path)


@agent_app.command(name="run", help="Provision this device from the staged profile.")
def run_cmd(
    boot_dir: Path = typer.Option(
        settings.device_boot_dir, "--boot-dir", help="Where the boot partition is mounted."
    ),
    root: Path = typer.Option(
        Path("/"), "--root", help="Device root; a scratch tree for rehearsals."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Log commands instead of executing them."
    ),
    ledger_db: Optional[Path] = typer.Option(
        None, "--ledger", "-l", help="Path to the ledger SQLite database."
    ),
) -> None:
    layout = DeviceLayout(root=root, boot_dir=boot_dir)
    log_file = configure_logging(layout.under_root(settings.agent_log_path), settings.log_level)

    try:
        profile = load_profile(layout)
    except ProfileLoadError as exc:
        console.print(f"[bold red]Cannot start:[/bold red] {exc}")
        raise typer.Exit(code=1)

    context = AgentContext(
        profile=profile,
        layout=layout.model_copy(update={"os_username": profile.os_username}),
        runner=CommandRunner(
            dry_run=dry_run, default_timeout=settings.command_timeout_seconds
        ),
        settings=settings,
    )
    agent = ProvisioningAgent(context, ledger=RunLedger(_ledger_path(root, ledger_db)))
    result = agent.run()

    if result.succeeded:
        body = [f"[bold green]Provisioning completed[/bold green] (run {result.run_id})"]
        style = "green"
    else:
        body = [
            f"[bold red]Provisioning FAILED[/bold red] at {result.failed_step} (run {result.run_id})",
            f"[red]{result.failure_reason}[/red]",
            "[dim]The trigger stays armed; the next boot retries.[/dim]",
        ]
        style = "red"
    body.append(
        f"Ran {len(result.ran_steps)}, skipped {len(result.skipped_steps)}, "
        f"warnings {len(result.warnings)}"
    )
    for warning in result.warnings:
        body.append(f"[yellow]- {warning}[/yellow]")
    if log_file is not None:
        body.append(f"[dim]Log: {log_file}[/dim]")
    console.print(Panel("\n".join(body), title="[bold]hubforge agent[/bold]", border_style=style))

    if not result.succeeded:
        raise typer.Exit(code=1)


@agent_app.command(name="status", help="Show the ledger view of a provisioning run.")
def status_cmd(
    run_id: Optional[str] = typer.Option(
        None, "--run-id", help="Run to show (default: the most recent)."
    ),
    root: Path = typer.Option(Path("/"), "--root", help="Device root."),
    ledger_db: Optional[Path] = typer.Option(
        None, "--ledger", "-l", help="Path to the ledger SQLite database."
    ),
) -> None:
    db_path = _ledger_path(root, ledger_db)
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        raise typer.Exit(code=1)

    ledger = RunLedger(db_path)
    target = run_id or ledger.get_latest_run_id()
    if target is None or not ledger.get_run_entries(target):
        console.print(f"[bold red]Run not found:[/bold red] {target or '(none recorded)'}")
        all_runs = ledger.get_all_run_ids()
        if all_runs:
            console.print("\n[bold]Available runs:[/bold]")
            for rid in all_runs[:10]:
                console.print(f"  [cyan]{rid}[/cyan]")
        raise typer.Exit(code=1)

    StatusRenderer(console=console).print_snapshot(StatusProjection(ledger).snapshot(target))
