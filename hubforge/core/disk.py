"""Removable-disk operations for the operator workstation.

Thin wrappers over the platform tools (``diskutil`` on macOS, ``lsblk``,
``findmnt``, ``mount`` and ``umount`` on Linux, ``dd`` on both). Raw block
I/O is left to ``dd``.
"""

from __future__ import annotations

import logging
import os
import platform
import plistlib
import re
from pathlib import Path

from hubforge.core.command import CommandError, CommandRunner

logger = logging.getLogger(__name__)

_MAC_WHOLE_DISK = re.compile(r"^(disk\d+)")
_SUBVOLUME_SUFFIX = re.compile(r"\[[^\]]*\]$")


class DiskError(RuntimeError):
    """Raised when a disk operation cannot be performed safely."""


def _privileged(argv: list[str]) -> list[str]:
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        return argv
    return ["sudo", *argv]


class DiskUtility:
    """Platform-specific disk handling.

    Parameters
    ----------
    runner:
        Executes every command.
    system:
        ``platform.system()`` value; detected when omitted.
    flash_timeout:
        Seconds allowed for ``dd`` to write the image.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        system: str | None = None,
        flash_timeout: int = 3600,
    ) -> None:
        self.runner = runner
        self.system = system or platform.system()
        self.flash_timeout = flash_timeout

    @property
    def is_macos(self) -> bool:
        return self.system == "Darwin"

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @staticmethod
    def device_exists(device: str) -> bool:
        return Path(device).exists()

    def describe(self, device: str) -> str:
        if self.is_macos:
            argv = ["diskutil", "info", device]
        else:
            argv = ["lsblk", "-o", "NAME,SIZE,MODEL,TYPE,MOUNTPOINT", device]
        result = self.runner.run(argv, check=False)
        return result.stdout if result.ok else f"(no details available for {device})"

    def backing_disks(self, device: str) -> set[str]:
        """Whole-disk nodes *device* is built on (Linux).

        Walks the inverse dependency tree, so partitions, dm-crypt and LVM
        volumes all resolve to every physical disk underneath them.
        """
        result = self.runner.run(
            ["lsblk", "-s", "-p", "-n", "-r", "-o", "NAME,TYPE", device], check=False
        )
        if not result.ok:
            return set()
        disks = set()
        for line in result.stdout.splitlines():
            fields = line.split()
            if len(fields) == 2 and fields[1] == "disk":
                disks.add(fields[0])
        return disks

    def whole_disk(self, device: str) -> str:
        """Normalise a device or partition node to its whole-disk node."""
        if self.is_macos:
            name = os.path.basename(device).removeprefix("r")
            # disk2s1 -> disk2
            match = _MAC_WHOLE_DISK.match(name)
            return f"/dev/{match.group(1) if match else name}"
        disks = sorted(self.backing_disks(device))
        return disks[0] if len(disks) == 1 else device

    def root_disks(self) -> set[str]:
        """Whole-disk nodes backing ``/``.

        Raises ``DiskError`` when they cannot be determined.
        """
        try:
            if self.is_macos:
                disks = self._macos_root_disks()
            else:
                result = self.runner.run(["findmnt", "-n", "-o", "SOURCE", "/"])
                # btrfs subvolumes are reported as /dev/sda2[/root]
                source = _SUBVOLUME_SUFFIX.sub("", result.stdout.strip())
                disks = self.backing_disks(source) if source else set()
        except (CommandError, plistlib.InvalidFileException) as exc:
            raise DiskError(f"Could not determine the system disk: {exc}") from exc
        if not disks:
            raise DiskError("Could not determine the system disk")
        return disks

    def _macos_root_disks(self) -> set[str]:
        result = self.runner.run(["diskutil", "info", "-plist", "/"])
        info = plistlib.loads(result.stdout.encode("utf-8"))
        names = []
        # APFS volumes live on a synthesized container disk; the physical
        # stores are the disks actually at risk.
        for store in info.get("APFSPhysicalStores") or []:
            names.append(store.get("APFSPhysicalStore", "") if isinstance(store, dict) else store)
        names.append(info.get("ParentWholeDisk", ""))
        return {self.whole_disk(f"/dev/{name}") for name in names if name}

    def is_system_volume(self, device: str) -> bool:
        """Whether *device* shares a disk with ``/``; raises ``DiskError`` if unknown."""
        roots = self.root_disks()
        if self.is_macos:
            targets = {self.whole_disk(device)}
        else:
            targets = self.backing_disks(device) or {device}
        return bool(targets & roots)

    def boot_partition(self, device: str) -> str:
        if self.is_macos:
            return f"{device}s1"
        # mmcblk0 / nvme0n1 / loop0 style names use a "p" separator.
        return f"{device}p1" if device[-1].isdigit() else f"{device}1"

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def unmount_disk(self, device: str) -> None:
        logger.info("Unmounting disk %s...", device)
        if self.is_macos:
            self.runner.run(["diskutil", "unmountDisk", "force", device])
            return
        listing = self.runner.run(["lsblk", "-nro", "MOUNTPOINT", device], check=False)
        for mountpoint in listing.stdout.splitlines():
            if mountpoint.strip():
                self.runner.run(_privileged(["umount", mountpoint.strip()]))

    def flash(self, image: Path, device: str) -> None:
        logger.info("Flashing %s to %s (this may take a while)...", image, device)
        block_size = "bs=4m" if self.is_macos else "bs=4M"
        sync_mode = "conv=sync" if self.is_macos else "conv=fsync"
        self.runner.run(
            _privileged(
                ["dd", f"if={image}", f"of={device}", block_size, sync_mode, "status=progress"]
            ),
            timeout=self.flash_timeout,
        )
        self.runner.run(["sync"])

    def mount_boot(self, partition: str, mount_point: Path) -> None:
        logger.info("Mounting boot partition %s at %s...", partition, mount_point)
        if self.is_macos:
            self.runner.run(["diskutil", "mount", "-mountPoint", str(mount_point), partition])
            return
        self.runner.run(_privileged(["mkdir", "-p", str(mount_point)]))
        options = f"rw,uid={os.getuid()},gid={os.getgid()}"
        self.runner.run(
            _privileged(["mount", "-t", "vfat", "-o", options, partition, str(mount_point)])
        )

    def unmount(self, mount_point: Path) -> None:
        logger.info("Unmounting %s...", mount_point)
        self.runner.run(["sync"])
        if self.is_macos:
            self.runner.run(["diskutil", "unmount", str(mount_point)])
        else:
            self.runner.run(_privileged(["umount", str(mount_point)]))
