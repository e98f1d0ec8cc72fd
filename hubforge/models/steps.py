"""Provisioning run state machine and the ordered step plan.

The run moves strictly forward through its states. Each step declares how it
behaves when the whole run is re-triggered (idempotency class) and what its
failure means for the steps after it (fatality class); the agent engine
enforces both.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class ProvisioningState(str, Enum):
    """Run-level progress of a single provisioning run."""

    NOT_STARTED = "not_started"
    NETWORK_READY = "network_ready"
    RUNTIME_INSTALLED = "runtime_installed"
    SOURCE_RETRIEVED = "source_retrieved"
    WORKLOADS_STARTING = "workloads_starting"
    COMPLETED = "completed"
    FAILED = "failed"


_FORWARD_ORDER: list[ProvisioningState] = [
    ProvisioningState.NOT_STARTED,
    ProvisioningState.NETWORK_READY,
    ProvisioningState.RUNTIME_INSTALLED,
    ProvisioningState.SOURCE_RETRIEVED,
    ProvisioningState.WORKLOADS_STARTING,
    ProvisioningState.COMPLETED,
]


def _build_transitions() -> dict[ProvisioningState, set[ProvisioningState]]:
    table: dict[ProvisioningState, set[ProvisioningState]] = {}
    for idx, state in enumerate(_FORWARD_ORDER):
        later = set(_FORWARD_ORDER[idx + 1:])
        if state != ProvisioningState.COMPLETED:
            later.add(ProvisioningState.FAILED)
        table[state] = later
    table[ProvisioningState.FAILED] = set()
    return table


# Forward-only. Terminal states (COMPLETED, FAILED) have no outgoing transitions.
VALID_TRANSITIONS: dict[ProvisioningState, set[ProvisioningState]] = _build_transitions()

TERMINAL_STATES: frozenset[ProvisioningState] = frozenset(
    {ProvisioningState.COMPLETED, ProvisioningState.FAILED}
)


class IdempotencyClass(str, Enum):
    """How a step behaves when the run is triggered again."""

    STRICT_ONCE = "strict_once"  # never repeated once passed on this device
    INSTALL_IF_ABSENT = "install_if_absent"  # checked first, skipped if present
    ALWAYS_SAFE = "always_safe"  # re-executed on every run


class FatalityClass(str, Enum):
    """What a step failure means for the rest of the run."""

    FATAL = "fatal"
    WARN_AND_CONTINUE = "warn_and_continue"


class StepDefinition(BaseModel):
    """Declares one provisioning step and its policies."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    display_name: str
    ordinal: int
    idempotency: IdempotencyClass
    fatality: FatalityClass
    reaches: ProvisioningState | None = None  # run state entered after the step


DEFAULT_STEP_DEFINITIONS: list[StepDefinition] = [
    StepDefinition(
        step_id="trigger_handoff",
        display_name="Trigger Hand-off",
        ordinal=0,
        idempotency=IdempotencyClass.ALWAYS_SAFE,
        fatality=FatalityClass.WARN_AND_CONTINUE,
    ),
    StepDefinition(
        step_id="network_bringup",
        display_name="Network Bring-up",
        ordinal=1,
        idempotency=IdempotencyClass.INSTALL_IF_ABSENT,
        fatality=FatalityClass.WARN_AND_CONTINUE,
        reaches=ProvisioningState.NETWORK_READY,
    ),
    StepDefinition(
        step_id="system_packages",
        display_name="System Packages",
        ordinal=2,
        idempotency=IdempotencyClass.STRICT_ONCE,
        fatality=FatalityClass.FATAL,
    ),
    StepDefinition(
        step_id="container_runtime",
        display_name="Container Runtime",
        ordinal=3,
        idempotency=IdempotencyClass.INSTALL_IF_ABSENT,
        fatality=FatalityClass.FATAL,
        reaches=ProvisioningState.RUNTIME_INSTALLED,
    ),
    StepDefinition(
        step_id="credential_bootstrap",
        display_name="Credential Bootstrap",
        ordinal=4,
        idempotency=IdempotencyClass.ALWAYS_SAFE,
        fatality=FatalityClass.FATAL,
    ),
    StepDefinition(
        step_id="source_retrieval",
        display_name="Source Retrieval",
        ordinal=5,
        idempotency=IdempotencyClass.ALWAYS_SAFE,
        fatality=FatalityClass.FATAL,
        reaches=ProvisioningState.SOURCE_RETRIEVED,
    ),
    StepDefinition(
        step_id="workload_prefetch",
        display_name="Workload Pre-fetch",
        ordinal=6,
        idempotency=IdempotencyClass.ALWAYS_SAFE,
        fatality=FatalityClass.WARN_AND_CONTINUE,
        reaches=ProvisioningState.WORKLOADS_STARTING,
    ),
    StepDefinition(
        step_id="workload_bringup",
        display_name="Workload Bring-up",
        ordinal=7,
        idempotency=IdempotencyClass.ALWAYS_SAFE,
        fatality=FatalityClass.WARN_AND_CONTINUE,
    ),
    StepDefinition(
        step_id="service_units",
        display_name="Service Units",
        ordinal=8,
        idempotency=IdempotencyClass.ALWAYS_SAFE,
        fatality=FatalityClass.WARN_AND_CONTINUE,
    ),
    StepDefinition(
        step_id="secure_cleanup",
        display_name="Secure Cleanup",
        ordinal=9,
        idempotency=IdempotencyClass.ALWAYS_SAFE,
        fatality=FatalityClass.WARN_AND_CONTINUE,
    ),
    StepDefinition(
        step_id="self_disable",
        display_name="Self-disable & Reboot",
        ordinal=10,
        idempotency=IdempotencyClass.ALWAYS_SAFE,
        fatality=FatalityClass.WARN_AND_CONTINUE,
    ),
]

STEP_DEFINITIONS_BY_ID: dict[str, StepDefinition] = {
    d.step_id: d for d in DEFAULT_STEP_DEFINITIONS
}
