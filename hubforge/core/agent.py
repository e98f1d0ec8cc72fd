"""Provisioning agent engine.

Runs the ordered step plan once per boot until the device is provisioned:

    for each step:
        apply idempotency policy (skip?) -> run_step -> apply fatality policy
            -> advance run state

The engine owns run-level state; steps own device effects. Every decision is
written to the provisioning ledger, which is also what makes ``strict_once``
steps survive reboots.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from hubforge.core.command import CommandError
from hubforge.core.context import AgentContext
from hubforge.core.run_ledger import RunLedger
from hubforge.core.state_machine import InvalidTransitionError, RunStateMachine
from hubforge.models.ledger import RUN_STEP_ID, LedgerEvent, ProvisioningRun
from hubforge.models.steps import FatalityClass, IdempotencyClass, ProvisioningState
from hubforge.steps import BaseStep, StepExecutionError, build_steps

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    return f"boot-{stamp}-{uuid.uuid4().hex[:6]}"


class ProvisioningAgent:
    """Drives one provisioning run.

    Parameters
    ----------
    context:
        Profile, device layout, command runner and settings.
    ledger:
        Durable record of runs on this device.
    steps:
        Ordered step instances; defaults to the full plan.
    run_id:
        Identifier for this run; generated when omitted.
    """

    def __init__(
        self,
        context: AgentContext,
        *,
        ledger: RunLedger,
        steps: list[BaseStep] | None = None,
        run_id: str | None = None,
    ) -> None:
        self._ctx = context
        self._ledger = ledger
        self._steps = steps if steps is not None else build_steps()
        self.run_id = run_id or new_run_id()
        self._machine = RunStateMachine(ledger, self.run_id)

    @property
    def state(self) -> ProvisioningState:
        return self._machine.state

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> ProvisioningRun:
        """Execute the step plan and return the run summary.

        A fatal step failure ends the run in FAILED and leaves the trigger in
        place, so the next boot retries. Warnings never stop the run.
        """
        if self._machine.is_terminal:
            raise InvalidTransitionError(
                f"Run {self.run_id} already ended in {self.state.value}"
            )

        logger.info("Provisioning run %s starting", self.run_id)
        self._ledger.record(
            self.run_id,
            RUN_STEP_ID,
            LedgerEvent.STARTED,
            detail=f"state={self.state.value}",
        )

        warnings: list[str] = []
        ran: list[str] = []
        skipped: list[str] = []

        for step in self._steps:
            definition = step.definition
            skip_reason = self._skip_reason(step)
            if skip_reason:
                logger.info("Skipping %s: %s", step.step_id, skip_reason)
                self._ledger.record(
                    self.run_id, step.step_id, LedgerEvent.SKIPPED, detail=skip_reason
                )
                skipped.append(step.step_id)
                self._reach(step)
                continue

            self._ledger.record(self.run_id, step.step_id, LedgerEvent.STARTED)
            try:
                outcome = step.run_step(self._ctx)
            except StepExecutionError as exc:
                if definition.fatality == FatalityClass.FATAL:
                    return self._fail(step, exc.reason, warnings, ran, skipped)
                logger.warning(
                    "%s failed, continuing: %s", definition.display_name, exc.reason
                )
                self._ledger.record(
                    self.run_id, step.step_id, LedgerEvent.WARNED, detail=exc.reason
                )
                warnings.append(f"{step.step_id}: {exc.reason}")
                ran.append(step.step_id)
                self._reach(step)
                continue

            for warning in outcome.warnings:
                self._ledger.record(
                    self.run_id, step.step_id, LedgerEvent.WARNED, detail=warning
                )
                warnings.append(f"{step.step_id}: {warning}")
            self._ledger.record(
                self.run_id, step.step_id, LedgerEvent.PASSED, detail=outcome.detail
            )
            ran.append(step.step_id)
            self._reach(step)

        self._machine.transition(ProvisioningState.COMPLETED)
        logger.info(
            "Provisioning run %s COMPLETED (%d ran, %d skipped, %d warnings)",
            self.run_id,
            len(ran),
            len(skipped),
            len(warnings),
        )
        return ProvisioningRun(
            run_id=self.run_id,
            state=self.state,
            warnings=warnings,
            ran_steps=ran,
            skipped_steps=skipped,
        )

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def _skip_reason(self, step: BaseStep) -> str:
        idempotency = step.definition.idempotency
        if idempotency == IdempotencyClass.STRICT_ONCE:
            if self._ledger.step_passed_in_any_run(step.step_id):
                return "already completed in an earlier run"
        elif idempotency == IdempotencyClass.INSTALL_IF_ABSENT:
            try:
                satisfied = step.is_satisfied(self._ctx)
            except (CommandError, OSError) as exc:
                logger.warning("Probe for %s failed, running step: %s", step.step_id, exc)
                satisfied = False
            if satisfied:
                return "already satisfied"
        return ""

    def _reach(self, step: BaseStep) -> None:
        target = step.definition.reaches
        if target is not None:
            self._machine.advance_to(target)

    def _fail(
        self,
        step: BaseStep,
        reason: str,
        warnings: list[str],
        ran: list[str],
        skipped: list[str],
    ) -> ProvisioningRun:
        logger.error(
            "Provisioning run %s FAILED at %s: %s", self.run_id, step.step_id, reason
        )
        self._ledger.record(self.run_id, step.step_id, LedgerEvent.FAILED, detail=reason)
        self._machine.transition(
            ProvisioningState.FAILED, detail=f"{step.step_id}: {reason}"
        )
        return ProvisioningRun(
            run_id=self.run_id,
            state=self.state,
            failed_step=step.step_id,
            failure_reason=reason,
            warnings=warnings,
            ran_steps=[*ran, step.step_id],
            skipped_steps=skipped,
        )
