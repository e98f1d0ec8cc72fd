"""Provisioning ledger models (append-only, hash-chained).

The ledger is the machine-readable record of a run; the firstboot log file is
its human-readable twin. Each entry is scoped to run_id + step_id.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from hubforge.models.steps import ProvisioningState

RUN_STEP_ID = "run"  # step_id used for run-level state transitions


class LedgerEvent(str, Enum):
    STARTED = "started"
    PASSED = "passed"
    SKIPPED = "skipped"
    WARNED = "warned"
    FAILED = "failed"
    STATE = "state"


class LedgerEntry(BaseModel):
    """A single entry in the append-only provisioning ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    step_id: str
    event: LedgerEvent
    state_transition: str = ""  # "from_state->to_state" for STATE events
    detail: str = ""
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry


class ProvisioningRun(BaseModel):
    """Summary of one agent run, returned by ``ProvisioningAgent.run()``."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    state: ProvisioningState
    failed_step: str | None = None
    failure_reason: str | None = None
    warnings: list[str] = []
    ran_steps: list[str] = []
    skipped_steps: list[str] = []

    @property
    def succeeded(self) -> bool:
        return self.state == ProvisioningState.COMPLETED
