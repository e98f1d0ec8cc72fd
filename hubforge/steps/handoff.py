"""Trigger hand-off: move from the kernel directive to the persistent unit."""

from __future__ import annotations

from hubforge.core.context import AgentContext
from hubforge.core.trigger import arm_persistent_unit, remove_kernel_directive
from hubforge.steps.base import BaseStep, StepOutcome


class TriggerHandoffStep(BaseStep):
    """Installs the persistent unit and strips the one-shot kernel directive.

    After this step a failed run is retried by the unit on the next boot,
    never by the kernel directive.
    """

    @property
    def step_id(self) -> str:
        return "trigger_handoff"

    def execute(self, ctx: AgentContext) -> StepOutcome:
        warnings: list[str] = []
        if not arm_persistent_unit(ctx):
            warnings.append("could not enable the persistent first-boot unit")
        stripped = remove_kernel_directive(ctx.layout.cmdline_path)
        detail = "kernel directive removed" if stripped else "no kernel directive present"
        return StepOutcome(detail=detail, warnings=warnings)
