"""Boot-partition writer: stages credentials, network config and the trigger.

Everything the device needs on first boot is written onto the small FAT boot
partition of a freshly flashed image, at fixed paths the agent knows:

    ssh                          empty marker, enables sshd
    userconf                     user:hash for the OS account
    network/<ssid>.nmconnection  NetworkManager Wi-Fi profile (optional)
    wpa_supplicant.conf          legacy Wi-Fi config (optional)
    firstboot.service            persistent one-shot unit
    firstboot.sh                 fixed entry point
    keys/id_ed25519[.pub]        deploy key pair
    hubforge/profile.json        device copy of the profile
    hubforge/wheels/*.whl        offline agent bundle (hubforge + pip wheels)
    cmdline.txt                  kernel directive appended once

Writing is idempotent: a second ``write`` with the same profile leaves the
same tree and never duplicates the kernel directive.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import uuid
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, ConfigDict

from hubforge.core.trigger import (
    KernelDirective,
    TriggerUnit,
    entry_point_script,
    install_kernel_directive,
)
from hubforge.models.layout import DeviceLayout
from hubforge.models.profile import (
    BOOT_PRIVATE_KEY,
    BOOT_PUBLIC_KEY,
    ProvisioningProfile,
    WifiCredentials,
)

logger = logging.getLogger(__name__)

# Namespace for deterministic connection UUIDs, so re-staging is byte-stable.
_NM_NAMESPACE = uuid.UUID("6d1f5a0e-8d3b-4c52-9f1e-2b7c8a4e0f13")
_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")

# Offline agent bundle: the wheels the entry point installs from, no index.
REQUIRED_WHEELS = ("hubforge-*.whl", "pip-*.whl")


class BootMediaError(RuntimeError):
    """Raised when the boot partition cannot be staged."""


class StagedFiles(BaseModel):
    """What a ``write`` put on the boot partition."""

    model_config = ConfigDict(frozen=True)

    boot_dir: Path
    files: list[Path]
    directive_added: bool


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def connection_filename(ssid: str) -> str:
    name = _UNSAFE_NAME.sub("_", ssid).strip("._") or "wifi"
    return f"{name}.nmconnection"


def derive_psk(wifi: WifiCredentials) -> str:
    """The 256-bit WPA pre-shared key as 64 hex digits, as ``wpa_passphrase`` prints it."""
    key = hashlib.pbkdf2_hmac(
        "sha1", wifi.psk.encode("ascii"), wifi.ssid.encode("utf-8"), 4096, 32
    )
    return key.hex()


def _keyfile_value(value: str) -> str:
    # GKeyFile string escapes; control characters are rejected by the model.
    escaped = value.replace("\\", "\\\\")
    if escaped.startswith(" "):
        escaped = "\\s" + escaped[1:]
    return escaped


def _wpa_ssid(ssid: str) -> str:
    # wpa_supplicant's own rule: quoted when printable ASCII without '"', hex otherwise.
    if ssid.isascii() and ssid.isprintable() and '"' not in ssid:
        return f'"{ssid}"'
    return ssid.encode("utf-8").hex()


def render_nmconnection(wifi: WifiCredentials) -> str:
    conn_uuid = uuid.uuid5(_NM_NAMESPACE, wifi.ssid)
    ssid = _keyfile_value(wifi.ssid)
    return (
        "[connection]\n"
        f"id={ssid}\n"
        f"uuid={conn_uuid}\n"
        "type=wifi\n"
        "autoconnect=true\n"
        "\n"
        "[wifi]\n"
        "mode=infrastructure\n"
        f"ssid={ssid}\n"
        "\n"
        "[wifi-security]\n"
        "key-mgmt=wpa-psk\n"
        f"psk={derive_psk(wifi)}\n"
        "\n"
        "[ipv4]\n"
        "method=auto\n"
        "\n"
        "[ipv6]\n"
        "addr-gen-mode=default\n"
        "method=auto\n"
    )


def render_wpa_supplicant(wifi: WifiCredentials) -> str:
    return (
        "ctrl_interface=DIR=/var/run/wpa_supplicant GROUP=netdev\n"
        "update_config=1\n"
        f"country={wifi.country_code}\n"
        "\n"
        "network={\n"
        f"    ssid={_wpa_ssid(wifi.ssid)}\n"
        f"    psk={derive_psk(wifi)}\n"
        "    key_mgmt=WPA-PSK\n"
        "}\n"
    )


def render_userconf(profile: ProvisioningProfile) -> str:
    return f"{profile.os_username}:{profile.password_hash}\n"


def check_wheelhouse(wheelhouse: Path) -> None:
    """Raise ``BootMediaError`` unless *wheelhouse* holds the agent and pip wheels."""
    wheelhouse = Path(wheelhouse)
    if not wheelhouse.is_dir():
        raise BootMediaError(f"Wheelhouse directory not found: {wheelhouse}")
    # The entry point installs offline: agent and pip both come from here.
    for pattern in REQUIRED_WHEELS:
        if not any(wheelhouse.glob(pattern)):
            raise BootMediaError(f"Wheelhouse {wheelhouse} has no {pattern}")


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------


class BootPartitionWriter:
    """Stages first-boot artifacts onto a mounted boot partition.

    Parameters
    ----------
    boot_dir:
        Where the boot partition is mounted on this machine.
    device_boot_dir:
        Where the same partition is mounted on the running device; used for
        every path written into the kernel directive and the unit.
    """

    def __init__(self, boot_dir: Path, *, device_boot_dir: Path = Path("/boot")) -> None:
        self.boot_dir = Path(boot_dir)
        self.device_boot_dir = PurePosixPath(device_boot_dir)
        self.layout = DeviceLayout(boot_dir=self.boot_dir)
        self._written: list[Path] = []

    @property
    def device_entry_point(self) -> PurePosixPath:
        return self.device_boot_dir / self.layout.boot_entry_point.name

    def write(
        self, profile: ProvisioningProfile, *, wheelhouse: Path
    ) -> StagedFiles:
        self._preflight(profile, wheelhouse)
        self._written = []
        layout = self.layout

        self._write_text(self.boot_dir / "ssh", "", 0o644)
        self._write_text(self.boot_dir / "userconf", render_userconf(profile), 0o600)

        if profile.wifi is not None:
            logger.info("Configuring Wi-Fi for network %r", profile.wifi.ssid)
            self._write_text(
                layout.boot_network_dir / connection_filename(profile.wifi.ssid),
                render_nmconnection(profile.wifi),
                0o600,
            )
            self._write_text(
                layout.boot_wpa_supplicant, render_wpa_supplicant(profile.wifi), 0o600
            )
        else:
            logger.info("No Wi-Fi configuration provided, device will need Ethernet")

        self._copy(profile.deploy_key.private_key, self.boot_dir / BOOT_PRIVATE_KEY, 0o400)
        if profile.deploy_key.public_key is not None:
            self._copy(profile.deploy_key.public_key, self.boot_dir / BOOT_PUBLIC_KEY, 0o644)

        self._write_text(layout.boot_entry_point, entry_point_script(), 0o755)
        self._write_text(
            layout.boot_unit,
            TriggerUnit(entry_point=self.device_entry_point).render(),
            0o644,
        )
        self._write_text(
            layout.profile_path, profile.for_device().model_dump_json(indent=2) + "\n", 0o644
        )

        for wheel in sorted(Path(wheelhouse).glob("*.whl")):
            self._copy(wheel, layout.boot_wheels_dir / wheel.name, 0o644)

        added = install_kernel_directive(
            layout.cmdline_path, KernelDirective(entry_point=self.device_entry_point)
        )
        logger.info("Staged %d files on %s", len(self._written), self.boot_dir)
        return StagedFiles(
            boot_dir=self.boot_dir, files=list(self._written), directive_added=added
        )

    def _preflight(self, profile: ProvisioningProfile, wheelhouse: Path) -> None:
        if not self.boot_dir.is_dir():
            raise BootMediaError(f"Boot partition not mounted at {self.boot_dir}")
        if not self.layout.cmdline_path.is_file():
            raise BootMediaError(
                f"{self.layout.cmdline_path} not found; is {self.boot_dir} a boot partition?"
            )
        if not profile.password_hash:
            raise BootMediaError("Profile has no password hash; cannot write userconf")
        if not profile.deploy_key.private_key.is_file():
            raise BootMediaError(
                f"Deploy key not found: {profile.deploy_key.private_key}"
            )
        check_wheelhouse(wheelhouse)

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    def _write_text(self, path: Path, content: str, mode: int) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.unlink(missing_ok=True)
        path.write_text(content, encoding="utf-8")
        self._finish(path, mode)

    def _copy(self, src: Path, dst: Path, mode: int) -> None:
        dst.parent.mkdir(parents=True, exist_ok=True)
        # A previous run may have left a read-only copy behind.
        dst.unlink(missing_ok=True)
        shutil.copyfile(src, dst)
        self._finish(dst, mode)

    def _finish(self, path: Path, mode: int) -> None:
        try:
            os.chmod(path, mode)
        except PermissionError:
            # FAT mounts without permission support reject chmod.
            logger.debug("Filesystem does not support mode %o on %s", mode, path)
        self._written.append(path)
