"""``hubforge prepare`` — flash an SD card and stage it for first boot.

Order of operations:
    validate inputs -> refuse unsafe target -> check wheelhouse -> resolve image
        -> decompress -> confirm -> unmount -> flash -> mount boot -> stage -> unmount
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from hubforge.cli.commands import profile_options as opts
from hubforge.cli.commands.image import artifact_table
from hubforge.config import settings
from hubforge.core.boot_media import BootMediaError, BootPartitionWriter, check_wheelhouse
from hubforge.core.command import CommandError, CommandRunner
from hubforge.core.disk import DiskError, DiskUtility
from hubforge.core.image_cache import ImageCache, ImageCacheError, ImageStager
from hubforge.logging_setup import configure_logging

console = Console()


def prepare_cmd(
    disk: str = typer.Option(..., "--disk", "-d", help="Target device, e.g. /dev/disk4 or /dev/sdb."),
    image: str = typer.Option(
        settings.default_image_url, "--image", "-i", help="Image URL or local file path."
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
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Image cache directory."),
    force_download: bool = typer.Option(
        False, "--force-download", "-f", help="Ignore the cache and download again."
    ),
    mount_point: Path = typer.Option(
        settings.boot_mount_point, "--mount-point", help="Where to mount the boot partition."
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Flash an image to removable storage and stage first-boot provisioning."""
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

    runner = CommandRunner(default_timeout=settings.command_timeout_seconds)
    disks = DiskUtility(runner, flash_timeout=settings.long_command_timeout_seconds)
    if not disks.device_exists(disk):
        console.print(f"[bold red]Device not found:[/bold red] {disk}")
        raise typer.Exit(code=1)
    try:
        system_volume = disks.is_system_volume(disk)
    except DiskError as exc:
        console.print(f"[bold red]Refusing to flash {disk}:[/bold red] {exc}")
        raise typer.Exit(code=1)
    if system_volume:
        console.print(f"[bold red]Refusing to flash the system disk:[/bold red] {disk}")
        raise typer.Exit(code=1)
    try:
        check_wheelhouse(wheelhouse)
    except BootMediaError as exc:
        console.print(f"[bold red]Invalid input:[/bold red] {exc}")
        raise typer.Exit(code=1)

    work_dir = settings.work_dir
    try:
        with ImageCache(
            cache_dir or settings.cache_dir,
            min_size_bytes=settings.min_image_bytes,
            timeout=settings.http_timeout_seconds,
        ) as cache:
            artifact = cache.resolve(image, force_refresh=force_download)
        console.print(artifact_table(artifact))
        raw_image = ImageStager(work_dir).stage(artifact)

        console.print(Panel(disks.describe(disk), title=f"Disk details for {disk}"))
        if not yes and not typer.confirm(
            "You are about to erase and flash this disk. Proceed?", default=False
        ):
            console.print("Aborting.")
            raise typer.Exit(code=1)

        disks.unmount_disk(disk)
        disks.flash(raw_image, disk)
        disks.mount_boot(disks.boot_partition(disk), mount_point)
        try:
            BootPartitionWriter(
                mount_point, device_boot_dir=settings.device_boot_dir
            ).write(profile, wheelhouse=wheelhouse)
        finally:
            disks.unmount(mount_point)
    except (ImageCacheError, BootMediaError, CommandError) as exc:
        console.print(f"[bold red]Preparation failed:[/bold red] {exc}")
        raise typer.Exit(code=1)
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)

    lines = [
        f"[bold green]{disk} is flashed and staged.[/bold green]",
        "",
        f"[bold]User:[/bold]       {profile.os_username}",
        f"[bold]Repository:[/bold] {profile.repository_uri} ({profile.repository_branch})",
        f"[bold]Workloads:[/bold]  {len(profile.workloads)}",
    ]
    if profile.wifi is not None:
        lines.append(f"[bold]Wi-Fi:[/bold]      {profile.wifi.ssid} ({profile.wifi.country_code})")
    else:
        lines.append("[dim]No Wi-Fi configured; connect the device via Ethernet.[/dim]")
    console.print(Panel("\n".join(lines), title="[bold]hubforge[/bold]", border_style="green"))
