"""Abstract base step with an enforced lifecycle.

Every concrete step inherits from BaseStep and implements ``execute()`` and,
for ``install_if_absent`` steps, ``is_satisfied()``. The ``run_step()``
wrapper is **not overridable**: it logs the step boundaries and normalises
every failure into :class:`StepExecutionError` so the engine can apply the
step's fatality class uniformly.
"""

from __future__ import annotations

import abc
import logging
import time
from typing import final

from pydantic import BaseModel, ConfigDict, Field

from hubforge.core.context import AgentContext
from hubforge.models.steps import STEP_DEFINITIONS_BY_ID, StepDefinition

logger = logging.getLogger(__name__)


class StepExecutionError(RuntimeError):
    """Raised when a step's execute() method fails."""

    def __init__(self, step_id: str, message: str) -> None:
        super().__init__(f"Step {step_id} failed: {message}")
        self.step_id = step_id
        self.reason = message


class StepOutcome(BaseModel):
    """What a completed step reports back to the engine."""

    model_config = ConfigDict(frozen=True)

    detail: str = ""
    warnings: list[str] = Field(default_factory=list)


class BaseStep(abc.ABC):
    """Abstract base for all provisioning steps.

    Subclasses **must** implement:
        * ``step_id`` — key into ``STEP_DEFINITIONS_BY_ID``.
        * ``execute(ctx)`` — the step's core logic.

    Subclasses **may** override:
        * ``is_satisfied(ctx)`` — check consulted for ``install_if_absent``
          steps; return True to skip the step.

    Subclasses **must not** override ``run_step()``.
    """

    @property
    @abc.abstractmethod
    def step_id(self) -> str:
        """Unique step identifier (e.g. ``'container_runtime'``)."""
        ...

    @property
    def definition(self) -> StepDefinition:
        return STEP_DEFINITIONS_BY_ID[self.step_id]

    @property
    def display_name(self) -> str:
        return self.definition.display_name

    def is_satisfied(self, ctx: AgentContext) -> bool:
        return False

    @abc.abstractmethod
    def execute(self, ctx: AgentContext) -> StepOutcome:
        """Perform the step against the device described by *ctx*."""
        ...

    @final
    def run_step(self, ctx: AgentContext) -> StepOutcome:
        """Execute the step with logging and error normalisation.  **Do not override.**"""
        logger.info("==> %s [%s]", self.display_name, self.step_id)
        started = time.monotonic()
        try:
            outcome = self.execute(ctx)
        except Exception as exc:
            logger.error("%s [%s] failed: %s", self.display_name, self.step_id, exc)
            raise StepExecutionError(self.step_id, str(exc)) from exc

        for warning in outcome.warnings:
            logger.warning("%s: %s", self.step_id, warning)
        logger.info(
            "<== %s [%s] done in %.1fs%s",
            self.display_name,
            self.step_id,
            time.monotonic() - started,
            f" ({outcome.detail})" if outcome.detail else "",
        )
        return outcome
