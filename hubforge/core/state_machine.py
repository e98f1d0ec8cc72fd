"""Run-level state machine for a provisioning run.

Enforces:
- Forward-only transitions (VALID_TRANSITIONS table)
- No transition out of COMPLETED or FAILED
- Every transition recorded in the provisioning ledger
"""

from __future__ import annotations

from hubforge.core.run_ledger import RunLedger
from hubforge.models.ledger import RUN_STEP_ID, LedgerEntry, LedgerEvent
from hubforge.models.steps import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ProvisioningState,
)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class RunStateMachine:
    """Tracks the state of one run and records each move in the ledger.

    Parameters
    ----------
    ledger:
        The provisioning ledger to record transitions into.
    run_id:
        The run whose state this machine owns.
    """

    def __init__(self, ledger: RunLedger, run_id: str) -> None:
        self._ledger = ledger
        self._run_id = run_id
        self._state = self._rebuild_state()

    @property
    def state(self) -> ProvisioningState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def _rebuild_state(self) -> ProvisioningState:
        """Replay ledger STATE entries for this run (for resume and status)."""
        state = ProvisioningState.NOT_STARTED
        for entry in self._ledger.get_run_entries(self._run_id):
            if entry.event != LedgerEvent.STATE or "->" not in entry.state_transition:
                continue
            _, to_state = entry.state_transition.split("->", 1)
            try:
                state = ProvisioningState(to_state)
            except ValueError:
                continue
        return state

    def can_transition(self, target: ProvisioningState) -> bool:
        return target in VALID_TRANSITIONS.get(self._state, set())

    def transition(
        self, target: ProvisioningState, *, detail: str = ""
    ) -> LedgerEntry:
        """Move the run to *target*, recording the transition.

        Returns the sealed LedgerEntry.
        """
        if not self.can_transition(target):
            allowed = sorted(s.value for s in VALID_TRANSITIONS.get(self._state, set()))
            raise InvalidTransitionError(
                f"Cannot transition run {self._run_id} from {self._state.value} "
                f"to {target.value}. Allowed: {allowed}"
            )
        sealed = self._ledger.record(
            self._run_id,
            RUN_STEP_ID,
            LedgerEvent.STATE,
            state_transition=f"{self._state.value}->{target.value}",
            detail=detail,
        )
        self._state = target
        return sealed

    def advance_to(self, target: ProvisioningState) -> bool:
        """Transition to *target* only if it lies ahead; returns whether it moved.

        Used by the engine when a step's declared state was already passed,
        e.g. a skipped step whose state a later step reached first.
        """
        if self._state == target or not self.can_transition(target):
            return False
        self.transition(target)
        return True
