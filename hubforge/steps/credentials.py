"""Deploy-key installation for read-only repository access."""

from __future__ import annotations

import logging
import os
import shutil

from hubforge.core.context import AgentContext
from hubforge.steps.base import BaseStep, StepOutcome

logger = logging.getLogger(__name__)

PRIVATE_KEY_NAME = "id_ed25519"
PUBLIC_KEY_NAME = "id_ed25519.pub"


class CredentialMissingError(RuntimeError):
    """Raised when no deploy key is staged and none is installed."""


class CredentialBootstrapStep(BaseStep):
    """Installs the deploy key into ``~/.ssh`` and pins known hosts.

    Re-entrant: once the boot copy has been shredded, an already installed
    key satisfies the step.
    """

    @property
    def step_id(self) -> str:
        return "credential_bootstrap"

    def execute(self, ctx: AgentContext) -> StepOutcome:
        ssh_dir = ctx.layout.ssh_dir
        ssh_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(ssh_dir, 0o700)

        staged_private = ctx.boot_file(ctx.profile.deploy_key.private_key)
        installed_private = ssh_dir / PRIVATE_KEY_NAME

        if staged_private.is_file():
            shutil.copyfile(staged_private, installed_private)
            os.chmod(installed_private, 0o600)
            detail = "deploy key installed"
            if ctx.profile.deploy_key.public_key is not None:
                staged_public = ctx.boot_file(ctx.profile.deploy_key.public_key)
                if staged_public.is_file():
                    installed_public = ssh_dir / PUBLIC_KEY_NAME
                    shutil.copyfile(staged_public, installed_public)
                    os.chmod(installed_public, 0o644)
        elif installed_private.is_file():
            detail = "deploy key already installed"
        else:
            raise CredentialMissingError(
                f"{staged_private} not found and no key installed at "
                f"{installed_private}: an SSH deploy key is required"
            )

        added = self._pin_known_hosts(ctx)
        ctx.sh(["chown", "-R", f"{ctx.user}:{ctx.user}", str(ssh_dir)])
        if added:
            detail += f", {added} known host(s) pinned"
        return StepOutcome(detail=detail)

    @staticmethod
    def _pin_known_hosts(ctx: AgentContext) -> int:
        known_hosts = ctx.layout.ssh_dir / "known_hosts"
        existing: set[str] = set()
        if known_hosts.is_file():
            existing = {
                line.strip()
                for line in known_hosts.read_text(encoding="utf-8").splitlines()
            }
        missing = [h for h in ctx.profile.known_hosts if h.strip() not in existing]
        if missing:
            with open(known_hosts, "a", encoding="utf-8") as fh:
                for line in missing:
                    fh.write(line.strip() + "\n")
            logger.info("Pinned %d host key(s) in %s", len(missing), known_hosts)
        if known_hosts.exists():
            os.chmod(known_hosts, 0o644)
        return len(missing)
