"""Point-in-time view of a provisioning run, rebuilt from the ledger on every call."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from hubforge.core.run_ledger import LedgerIntegrityError, RunLedger
from hubforge.models.ledger import RUN_STEP_ID, LedgerEntry, LedgerEvent
from hubforge.models.steps import DEFAULT_STEP_DEFINITIONS, ProvisioningState


class StepStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    display_name: str
    event: LedgerEvent | None = None  # None when the step never started
    detail: str = ""
    warning_count: int = 0


class RunSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    state: ProvisioningState
    steps: list[StepStatus]
    entry_count: int
    chain_valid: bool
    chain_error: str = ""


class StatusProjection:
    """Builds ``RunSnapshot`` objects; holds no state of its own."""

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger

    def snapshot(self, run_id: str) -> RunSnapshot:
        entries = self._ledger.get_run_entries(run_id)
        try:
            self._ledger.verify_chain(run_id)
            chain_valid, chain_error = True, ""
        except LedgerIntegrityError as exc:
            chain_valid, chain_error = False, str(exc)

        return RunSnapshot(
            run_id=run_id,
            state=self._run_state(entries),
            steps=[
                self._step_status(d.step_id, d.display_name, entries)
                for d in DEFAULT_STEP_DEFINITIONS
            ],
            entry_count=len(entries),
            chain_valid=chain_valid,
            chain_error=chain_error,
        )

    @staticmethod
    def _run_state(entries: list[LedgerEntry]) -> ProvisioningState:
        state = ProvisioningState.NOT_STARTED
        for entry in entries:
            if entry.step_id == RUN_STEP_ID and entry.event == LedgerEvent.STATE:
                state = ProvisioningState(entry.state_transition.split("->", 1)[1])
        return state

    @staticmethod
    def _step_status(
        step_id: str, display_name: str, entries: list[LedgerEntry]
    ) -> StepStatus:
        mine = [e for e in entries if e.step_id == step_id]
        warnings = sum(1 for e in mine if e.event == LedgerEvent.WARNED)
        final = [e for e in mine if e.event != LedgerEvent.WARNED] or mine
        if not final:
            return StepStatus(step_id=step_id, display_name=display_name)
        last = final[-1]
        return StepStatus(
            step_id=step_id,
            display_name=display_name,
            event=last.event,
            detail=last.detail,
            warning_count=warnings,
        )
