"""Secure cleanup of boot-partition secrets and trigger remnants."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from hubforge.core.context import AgentContext
from hubforge.core.trigger import remove_kernel_directive
from hubforge.steps.base import BaseStep, StepOutcome

logger = logging.getLogger(__name__)

SHRED_PASSES = 3


def shred_file(path: Path, passes: int = SHRED_PASSES) -> None:
    """Overwrite *path* with random bytes, flush to disk, then unlink it.

    On flash media with wear levelling this is best effort; it still keeps
    the key out of the readable filesystem.
    """
    size = path.stat().st_size
    # Staged keys are read-only.
    os.chmod(path, 0o600)
    with open(path, "r+b", buffering=0) as fh:
        for _ in range(passes):
            fh.seek(0)
            remaining = size
            while remaining > 0:
                chunk = min(remaining, 64 * 1024)
                fh.write(os.urandom(chunk))
                remaining -= chunk
            os.fsync(fh.fileno())
    path.unlink()


class SecureCleanupStep(BaseStep):
    @property
    def step_id(self) -> str:
        return "secure_cleanup"

    def execute(self, ctx: AgentContext) -> StepOutcome:
        warnings: list[str] = []
        shredded = 0

        key_paths = [ctx.boot_file(ctx.profile.deploy_key.private_key)]
        if ctx.profile.deploy_key.public_key is not None:
            key_paths.append(ctx.boot_file(ctx.profile.deploy_key.public_key))
        for key in key_paths:
            if not key.exists():
                continue
            try:
                shred_file(key)
                shredded += 1
            except OSError as exc:
                warnings.append(f"failed to shred {key}: {exc}")

        keys_dir = ctx.layout.boot_keys_dir
        if keys_dir.is_dir() and not any(keys_dir.iterdir()):
            keys_dir.rmdir()

        remove_kernel_directive(ctx.layout.cmdline_path)
        ctx.layout.boot_unit.unlink(missing_ok=True)

        logger.info("Deploy keys cleaned up from boot partition")
        return StepOutcome(detail=f"{shredded} key file(s) shredded", warnings=warnings)
