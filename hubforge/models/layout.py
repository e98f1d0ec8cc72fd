"""Filesystem layout on the target device.

Every device path is derived from ``root`` so the agent can run against a
scratch tree (tests, dry runs) exactly as it runs against ``/``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict

FIRSTBOOT_UNIT = "firstboot.service"
FIRSTBOOT_SCRIPT = "firstboot.sh"
PORTAINER_UNIT = "portainer.service"
COMPOSE_UNIT = "homehub-compose.service"


class DeviceLayout(BaseModel):
    """Resolved paths on the SBC for a given OS user."""

    model_config = ConfigDict(frozen=True)

    root: Path = Path("/")
    boot_dir: Path = Path("/boot")
    os_username: str = "pi"

    def under_root(self, absolute: str | Path) -> Path:
        """Map an absolute device path into the tree rooted at ``root``."""
        return self.root / str(absolute).lstrip("/")

    # --- boot partition -------------------------------------------------

    @property
    def cmdline_path(self) -> Path:
        return self.boot_dir / "cmdline.txt"

    @property
    def boot_unit(self) -> Path:
        return self.boot_dir / FIRSTBOOT_UNIT

    @property
    def boot_entry_point(self) -> Path:
        return self.boot_dir / FIRSTBOOT_SCRIPT

    @property
    def boot_keys_dir(self) -> Path:
        return self.boot_dir / "keys"

    @property
    def boot_network_dir(self) -> Path:
        return self.boot_dir / "network"

    @property
    def boot_wpa_supplicant(self) -> Path:
        return self.boot_dir / "wpa_supplicant.conf"

    @property
    def profile_path(self) -> Path:
        return self.boot_dir / "hubforge" / "profile.json"

    @property
    def boot_wheels_dir(self) -> Path:
        return self.boot_dir / "hubforge" / "wheels"

    # --- root filesystem ------------------------------------------------

    @property
    def systemd_dir(self) -> Path:
        return self.under_root("/etc/systemd/system")

    @property
    def installed_unit(self) -> Path:
        return self.systemd_dir / FIRSTBOOT_UNIT

    @property
    def installed_entry_point(self) -> Path:
        return self.under_root("/usr/local/sbin") / FIRSTBOOT_SCRIPT

    @property
    def nm_connections_dir(self) -> Path:
        return self.under_root("/etc/NetworkManager/system-connections")

    @property
    def wpa_supplicant_conf(self) -> Path:
        return self.under_root("/etc/wpa_supplicant/wpa_supplicant.conf")

    @property
    def home_dir(self) -> Path:
        return self.under_root(f"/home/{self.os_username}")

    @property
    def ssh_dir(self) -> Path:
        return self.home_dir / ".ssh"

    @property
    def app_dir(self) -> Path:
        return self.home_dir / "homehub"

    @property
    def portainer_data_dir(self) -> Path:
        return self.home_dir / "config" / "portainer-ce"

    def device_path(self, path: Path) -> Path:
        """Translate a scratch-tree path back to its absolute on-device form.

        Used when a path is written into a unit file or passed to a command
        that runs on the device itself.
        """
        try:
            return Path("/") / path.relative_to(self.root)
        except ValueError:
            return path
