"""Network bring-up from staged Wi-Fi configuration."""

from __future__ import annotations

import logging
import os
import shutil
import time
from pathlib import Path

from hubforge.core.command import CommandError
from hubforge.core.context import AgentContext
from hubforge.steps.base import BaseStep, StepOutcome

logger = logging.getLogger(__name__)

CONNECTIVITY_PROBE_HOST = "github.com"


def staged_connections(ctx: AgentContext) -> list[Path]:
    network_dir = ctx.layout.boot_network_dir
    if not network_dir.is_dir():
        return []
    return sorted(network_dir.glob("*.nmconnection"))


def is_online(ctx: AgentContext) -> bool:
    """One ICMP echo against the repository host (which also exercises DNS)."""
    try:
        result = ctx.runner.run(
            ["ping", "-c", "1", "-W", "5", CONNECTIVITY_PROBE_HOST],
            check=False,
            timeout=30,
        )
    except CommandError as exc:
        logger.debug("Connectivity check failed: %s", exc)
        return False
    return result.ok


def wait_online(ctx: AgentContext, attempts: int = 6, interval: float = 5.0) -> bool:
    for attempt in range(attempts):
        if is_online(ctx):
            return True
        if attempt < attempts - 1:
            time.sleep(interval)
    return False


class NetworkBringupStep(BaseStep):
    """Installs staged Wi-Fi profiles (NetworkManager first, wpa_supplicant legacy)."""

    @property
    def step_id(self) -> str:
        return "network_bringup"

    def is_satisfied(self, ctx: AgentContext) -> bool:
        installed_dir = ctx.layout.nm_connections_dir
        for profile in staged_connections(ctx):
            if not (installed_dir / profile.name).is_file():
                return False
        if not staged_connections(ctx) and ctx.layout.boot_wpa_supplicant.is_file():
            if not ctx.layout.wpa_supplicant_conf.is_file():
                return False
        return is_online(ctx)

    def execute(self, ctx: AgentContext) -> StepOutcome:
        profiles = staged_connections(ctx)
        if profiles:
            warnings = self._install_networkmanager(ctx, profiles)
            detail = f"{len(profiles)} NetworkManager profile(s) installed"
        elif ctx.layout.boot_wpa_supplicant.is_file():
            warnings = self._install_wpa_supplicant(ctx)
            detail = "legacy wpa_supplicant configuration installed"
        else:
            return StepOutcome(detail="no Wi-Fi configuration staged, using Ethernet")

        if not wait_online(ctx):
            warnings.append(f"device is still offline ({CONNECTIVITY_PROBE_HOST} unreachable)")
        return StepOutcome(detail=detail, warnings=warnings)

    @staticmethod
    def _install_networkmanager(ctx: AgentContext, profiles: list[Path]) -> list[str]:
        warnings: list[str] = []
        if not ctx.runner.which("nmcli"):
            logger.info("Installing NetworkManager...")
            result = ctx.sh(
                ["apt-get", "-y", "install", "network-manager"], long=True, check=False
            )
            if not result.ok:
                warnings.append("failed to install NetworkManager")

        target_dir = ctx.layout.nm_connections_dir
        target_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(target_dir, 0o700)
        for profile in profiles:
            logger.info("Installing Wi-Fi profile: %s", profile.name)
            dst = target_dir / profile.name
            shutil.copyfile(profile, dst)
            os.chmod(dst, 0o600)

        if not ctx.sh(["nmcli", "connection", "reload"], check=False).ok:
            if not ctx.sh(["systemctl", "restart", "NetworkManager"], check=False).ok:
                warnings.append("failed to reload NetworkManager")
        return warnings

    @staticmethod
    def _install_wpa_supplicant(ctx: AgentContext) -> list[str]:
        dst = ctx.layout.wpa_supplicant_conf
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(ctx.layout.boot_wpa_supplicant, dst)
        os.chmod(dst, 0o600)
        if not ctx.sh(["systemctl", "restart", "wpa_supplicant"], check=False).ok:
            return ["failed to restart wpa_supplicant"]
        return []
