"""``hubforge stage`` — stage first-boot files onto a mounted boot partition."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from hubforge.cli.commands import profile_options as opts
from hubforge.config import settings
from hubforge.core.boot_media import BootMediaError, BootPartitionWriter, StagedFiles
from hubforge.logging_setup import configure_logging

console = Console()


def staged_table(staged: StagedFiles) -> Table:
    table = Table(title=f"Staged on {staged.boot_dir}")
    table.add_column("File", style="cyan")
    for path in staged.files:
        table.add_row(str(path.relative_to(staged.boot_dir)))
    return table


def stage_cmd(
    boot_dir: Path = typer.Option(
        settings.boot_mount_point, "--boot-dir", "-b", help="Mounted boot partition."
    ),
    username: str = opts.USERNAME,
    password: Optional[str] = opts.PASSWORD,
    password_hash: Optional[str] = opts.PASSWORD_HASH,
    wifi_ssid: Optional[str] = opts.WIFI_SSID,
    wifi_password: Optional[str] = opts.WIFI_PASSWORD,
    wifi_country: str = opts.WIFI_COUNTRY,
    repo: str = opts.REPO,
    branch: str = opts.BRANCH,
    deploy_key: Path = opts.DEPLOY_KEY,
    runtime_version: str = opts.RUNTIME_VERSION,
    workload: Optional[list[str]] = opts.WORKLOAD,
    wheelhouse: Path = opts.WHEELHOUSE,
) -> None:
    """Stage credentials, network config and the first-boot trigger."""
    configure_logging(level=settings.log_level)
    profile = opts.profile_or_exit(
        console,
        username=username,
        password=password,
        password_hash=password_hash,
        wifi_ssid=wifi_ssid,
        wifi_password=wifi_password,
        wifi_country=wifi_country,
        repo=repo,
        branch=branch,
        deploy_key=deploy_key,
        runtime_version=runtime_version,
        workload=workload,
    )
    writer = BootPartitionWriter(boot_dir, device_boot_dir=settings.device_boot_dir)
    try:
        staged = writer.write(profile, wheelhouse=wheelhouse)
    except BootMediaError as exc:
        console.print(f"[bold red]Staging failed:[/bold red] {exc}")
        raise typer.Exit(code=1)
    console.print(staged_table(staged))
    console.print("[bold green]Boot partition staged.[/bold green]")
