"""Base system packages. Runs once per device."""

from __future__ import annotations

from hubforge.core.context import AgentContext
from hubforge.steps.base import BaseStep, StepOutcome

BASE_PACKAGES: list[str] = ["git", "ca-certificates", "curl"]

_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class SystemPackagesStep(BaseStep):
    """apt-get update, full upgrade, then the tools the later steps need."""

    @property
    def step_id(self) -> str:
        return "system_packages"

    def execute(self, ctx: AgentContext) -> StepOutcome:
        ctx.sh(["apt-get", "update"], long=True, env=_APT_ENV)
        ctx.sh(["apt-get", "-y", "upgrade"], long=True, env=_APT_ENV)
        ctx.sh(["apt-get", "-y", "install", *BASE_PACKAGES], long=True, env=_APT_ENV)
        return StepOutcome(detail=f"installed {', '.join(BASE_PACKAGES)}")
