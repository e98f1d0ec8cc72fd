"""Profile options shared by ``prepare`` and ``stage``."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from hubforge.config import settings
from hubforge.core.profile_builder import ProfileValidationError, build_profile
from hubforge.models.profile import ProvisioningProfile

USERNAME = typer.Option("pi", "--username", "-u", help="OS user to create.")
PASSWORD = typer.Option(
    None, "--password", "-p", help="Plaintext login password (hashed before staging)."
)
PASSWORD_HASH = typer.Option(
    None, "--password-hash", help="Pre-computed crypt(3) password hash."
)
WIFI_SSID = typer.Option(None, "--wifi-ssid", "-w", help="Wi-Fi network name.")
WIFI_PASSWORD = typer.Option(None, "--wifi-password", "-k", help="Wi-Fi passphrase.")
WIFI_COUNTRY = typer.Option(
    settings.default_wifi_country, "--wifi-country", "-c", help="Wi-Fi country code."
)
REPO = typer.Option(
    settings.default_repository_uri, "--repo", "-r", help="Application git repository."
)
BRANCH = typer.Option("main", "--branch", help="Branch the device tracks.")
DEPLOY_KEY = typer.Option(
    ..., "--deploy-key", "-K", help="Private SSH deploy key for the repository."
)
RUNTIME_VERSION = typer.Option(
    settings.default_runtime_version,
    "--runtime-version",
    help="Portainer CE image tag.",
)
WORKLOAD = typer.Option(
    None,
    "--workload",
    help="Workload directory in the repository (repeatable; default: standard stack).",
)
WHEELHOUSE = typer.Option(
    ...,
    "--wheelhouse",
    help=(
        "Directory of wheels the device installs the agent from, offline: a "
        "hubforge wheel, its dependencies for the device platform, and pip."
    ),
)


def profile_or_exit(
    console: Console,
    *,
    username: str,
    password: Optional[str],
    password_hash: Optional[str],
    wifi_ssid: Optional[str],
    wifi_password: Optional[str],
    wifi_country: str,
    repo: str,
    branch: str,
    deploy_key: Path,
    runtime_version: str,
    workload: Optional[list[str]],
) -> ProvisioningProfile:
    """Build the profile or print every validation error and exit 1."""
    try:
        return build_profile(
            deploy_key=deploy_key,
            repository_uri=repo,
            username=username,
            password=password,
            password_hash=password_hash,
            wifi_ssid=wifi_ssid,
            wifi_password=wifi_password,
            wifi_country=wifi_country,
            branch=branch,
            runtime_version=runtime_version,
            workloads=workload or None,
        )
    except ProfileValidationError as exc:
        console.print("[bold red]Invalid input:[/bold red]")
        for error in exc.errors:
            console.print(f"  [red]-[/red] {error}")
        raise typer.Exit(code=1)
