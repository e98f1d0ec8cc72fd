"""Container runtime (Docker Engine with the Compose v2 plugin)."""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from hubforge.core.context import AgentContext
from hubforge.steps.base import BaseStep, StepOutcome

logger = logging.getLogger(__name__)

INSTALL_SCRIPT_URL = "https://get.docker.com"


def compose_available(ctx: AgentContext) -> bool:
    return ctx.sh(["docker", "compose", "version"], check=False).ok


class ContainerRuntimeStep(BaseStep):
    @property
    def step_id(self) -> str:
        return "container_runtime"

    def is_satisfied(self, ctx: AgentContext) -> bool:
        return ctx.runner.which("docker") and compose_available(ctx)

    def execute(self, ctx: AgentContext) -> StepOutcome:
        if ctx.runner.which("docker"):
            # Engine present, only the compose plugin is missing.
            logger.info("Docker present without compose plugin, installing plugin")
            ctx.sh(["apt-get", "-y", "install", "docker-compose-plugin"], long=True)
            return StepOutcome(detail="compose plugin installed")

        with tempfile.TemporaryDirectory(prefix="hubforge-docker-") as tmp:
            script = Path(tmp) / "get-docker.sh"
            ctx.sh(["curl", "-fsSL", INSTALL_SCRIPT_URL, "-o", str(script)])
            ctx.sh(["sh", str(script)], long=True)
        ctx.sh(["usermod", "-aG", "docker", ctx.user])
        ctx.sh(["systemctl", "enable", "docker"])
        return StepOutcome(detail=f"docker installed, {ctx.user} added to docker group")
