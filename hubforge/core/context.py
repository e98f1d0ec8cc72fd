"""Run-wide context handed to every provisioning step."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from pydantic import BaseModel, ConfigDict, ValidationError

from hubforge.config import HubforgeSettings
from hubforge.core.command import CmdResult, CommandRunner
from hubforge.models.layout import DeviceLayout
from hubforge.models.profile import ProvisioningProfile

logger = logging.getLogger(__name__)


class ProfileLoadError(RuntimeError):
    """Raised when the staged profile is missing or unreadable."""


class AgentContext(BaseModel):
    """What a step may touch: the profile, the device tree, and the shell.

    Parameters
    ----------
    profile:
        The device copy of the provisioning profile.
    layout:
        Resolved device paths (possibly under a scratch root).
    runner:
        Executes every external command.
    settings:
        Timeouts and other tunables.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    profile: ProvisioningProfile
    layout: DeviceLayout
    runner: CommandRunner
    settings: HubforgeSettings

    @property
    def user(self) -> str:
        return self.profile.os_username

    def boot_file(self, path: Path) -> Path:
        """Resolve a boot-relative profile path against the mounted boot dir."""
        return path if path.is_absolute() else self.layout.boot_dir / path

    def sh(
        self,
        argv: Sequence[str],
        *,
        long: bool = False,
        check: bool = True,
        cwd: Path | None = None,
        as_user: bool = False,
        env: dict[str, str] | None = None,
    ) -> CmdResult:
        """Run a device command with the configured timeout.

        ``long`` selects the timeout for package installs, clones and pulls.
        """
        timeout = (
            self.settings.long_command_timeout_seconds
            if long
            else self.settings.command_timeout_seconds
        )
        return self.runner.run(
            argv,
            check=check,
            cwd=cwd,
            env=env,
            timeout=timeout,
            user=self.user if as_user else None,
        )


def load_profile(layout: DeviceLayout) -> ProvisioningProfile:
    """Read the profile staged at ``<boot>/hubforge/profile.json``."""
    path = layout.profile_path
    if not path.is_file():
        raise ProfileLoadError(f"No provisioning profile found at {path}")
    try:
        profile = ProvisioningProfile.model_validate_json(
            path.read_text(encoding="utf-8")
        )
    except (OSError, ValidationError) as exc:
        raise ProfileLoadError(f"Cannot load provisioning profile {path}: {exc}") from exc
    logger.info(
        "Loaded profile for user %s (repository %s, %d workloads)",
        profile.os_username,
        profile.repository_uri,
        len(profile.workloads),
    )
    return profile
