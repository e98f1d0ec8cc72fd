"""Self-disable and scheduled reboot."""

from __future__ import annotations

from hubforge.core.context import AgentContext
from hubforge.core.trigger import disarm
from hubforge.steps.base import BaseStep, StepOutcome


class SelfDisableStep(BaseStep):
    """Removes the first-boot trigger so the agent never runs again, then reboots."""

    @property
    def step_id(self) -> str:
        return "self_disable"

    def execute(self, ctx: AgentContext) -> StepOutcome:
        warnings: list[str] = []
        if not disarm(ctx):
            warnings.append("systemctl disable reported an error")

        delay = ctx.settings.reboot_delay_minutes
        result = ctx.sh(
            [
                "shutdown",
                "-r",
                f"+{delay}",
                f"HomeHub provisioning complete, rebooting in {delay} minute(s)...",
            ],
            check=False,
        )
        if not result.ok:
            warnings.append("failed to schedule reboot")
        return StepOutcome(detail=f"reboot scheduled in {delay} minute(s)", warnings=warnings)
