"""First-boot trigger: how the agent gets started on the device.

Two mechanisms are staged together:

* a one-shot kernel directive in ``cmdline.txt`` (``systemd.run=``) that runs
  the entry point on the very first boot, and
* a persistent systemd unit that re-runs it on later boots until the agent
  disables itself.

The first run hands over from the directive to the unit, so a failed run is
retried on the next boot without re-executing the kernel directive.
"""

from __future__ import annotations

import logging
import os
import shutil
from importlib import resources
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from hubforge.models.layout import FIRSTBOOT_UNIT

if TYPE_CHECKING:
    from pathlib import Path

    from hubforge.core.context import AgentContext

logger = logging.getLogger(__name__)

_DIRECTIVE_PREFIXES = ("systemd.run=", "systemd.run_success_action=", "systemd.run_failure_action=")
_DIRECTIVE_TARGET = "systemd.unit=kernel-command-line.target"


class KernelDirective(BaseModel):
    """The ``systemd.run`` tokens appended to the kernel command line."""

    model_config = ConfigDict(frozen=True)

    entry_point: PurePosixPath
    success_action: str = "reboot"
    failure_action: str = "emergency"

    def render(self) -> str:
        return " ".join(
            [
                f"systemd.run={self.entry_point}",
                f"systemd.run_success_action={self.success_action}",
                f"systemd.run_failure_action={self.failure_action}",
                _DIRECTIVE_TARGET,
            ]
        )


class TriggerUnit(BaseModel):
    """Persistent one-shot unit that runs the entry point while it exists."""

    model_config = ConfigDict(frozen=True)

    entry_point: PurePosixPath
    description: str = "HomeHub first-boot provisioning"

    def render(self) -> str:
        return (
            "[Unit]\n"
            f"Description={self.description}\n"
            "After=network-online.target\n"
            "Wants=network-online.target\n"
            f"ConditionPathExists={self.entry_point}\n"
            "\n"
            "[Service]\n"
            "Type=oneshot\n"
            f"ExecStart={self.entry_point}\n"
            "TimeoutStartSec=0\n"
            "StandardOutput=journal+console\n"
            "StandardError=journal+console\n"
            "\n"
            "[Install]\n"
            "WantedBy=multi-user.target\n"
        )


def entry_point_script() -> str:
    """The fixed entry-point shell shim shipped with the package."""
    return (
        resources.files("hubforge")
        .joinpath("resources", "firstboot.sh")
        .read_text(encoding="utf-8")
    )


# ---------------------------------------------------------------------------
# cmdline.txt editing
# ---------------------------------------------------------------------------


def _read_cmdline(cmdline_path: Path) -> list[str]:
    # cmdline.txt is a single line; anything after the first newline is ignored
    # by the firmware, so only the first line is kept.
    text = cmdline_path.read_text(encoding="utf-8")
    first = text.splitlines()[0] if text.strip() else ""
    return first.split()


def _is_directive_token(token: str) -> bool:
    return token.startswith(_DIRECTIVE_PREFIXES) or token == _DIRECTIVE_TARGET


def install_kernel_directive(cmdline_path: Path, directive: KernelDirective) -> bool:
    """Append *directive* unless a ``systemd.run=`` token is already present.

    Returns whether the file was changed.
    """
    tokens = _read_cmdline(cmdline_path)
    if any(t.startswith("systemd.run=") for t in tokens):
        logger.info("Kernel directive already present in %s", cmdline_path)
        return False
    tokens.extend(directive.render().split())
    cmdline_path.write_text(" ".join(tokens) + "\n", encoding="utf-8")
    logger.info("Added first-boot directive to %s", cmdline_path)
    return True


def remove_kernel_directive(cmdline_path: Path) -> bool:
    """Strip every first-boot token from ``cmdline.txt``.

    Returns whether the file was changed. A missing file is not an error.
    """
    if not cmdline_path.is_file():
        return False
    tokens = _read_cmdline(cmdline_path)
    kept = [t for t in tokens if not _is_directive_token(t)]
    if kept == tokens:
        return False
    cmdline_path.write_text(" ".join(kept) + "\n", encoding="utf-8")
    logger.info("Removed first-boot directive from %s", cmdline_path)
    return True


# ---------------------------------------------------------------------------
# Device side
# ---------------------------------------------------------------------------


def arm_persistent_unit(ctx: AgentContext) -> bool:
    """Install and enable the persistent unit; returns whether enable succeeded.

    The staged unit file is copied when present, otherwise it is rendered
    for the boot entry point. The entry point is also copied into
    ``/usr/local/sbin`` for manual re-runs.
    """
    layout = ctx.layout
    layout.systemd_dir.mkdir(parents=True, exist_ok=True)
    if layout.boot_unit.is_file():
        shutil.copyfile(layout.boot_unit, layout.installed_unit)
    else:
        unit = TriggerUnit(
            entry_point=PurePosixPath(layout.device_path(layout.boot_entry_point))
        )
        layout.installed_unit.write_text(unit.render(), encoding="utf-8")
    os.chmod(layout.installed_unit, 0o644)

    if layout.boot_entry_point.is_file():
        layout.installed_entry_point.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(layout.boot_entry_point, layout.installed_entry_point)
        os.chmod(layout.installed_entry_point, 0o755)

    result = ctx.sh(["systemctl", "enable", FIRSTBOOT_UNIT], check=False)
    if not result.ok:
        logger.warning("Failed to enable %s: %s", FIRSTBOOT_UNIT, result.stderr.strip())
    return result.ok


def disarm(ctx: AgentContext) -> bool:
    """Disable and remove the unit and entry points; returns whether disable succeeded."""
    layout = ctx.layout
    result = ctx.sh(["systemctl", "disable", FIRSTBOOT_UNIT], check=False)
    for path in (
        layout.installed_unit,
        layout.installed_entry_point,
        layout.boot_entry_point,
    ):
        path.unlink(missing_ok=True)
    logger.info("First-boot trigger removed")
    return result.ok
