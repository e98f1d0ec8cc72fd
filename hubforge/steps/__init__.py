"""Provisioning steps — registry mapping step_id to step class.

Usage::

    from hubforge.steps import build_steps

    for step in build_steps():
        outcome = step.run_step(ctx)
"""

from __future__ import annotations

from hubforge.models.steps import DEFAULT_STEP_DEFINITIONS
from hubforge.steps.base import BaseStep, StepExecutionError, StepOutcome
from hubforge.steps.cleanup import SecureCleanupStep
from hubforge.steps.credentials import CredentialBootstrapStep, CredentialMissingError
from hubforge.steps.finalize import SelfDisableStep
from hubforge.steps.handoff import TriggerHandoffStep
from hubforge.steps.network import NetworkBringupStep
from hubforge.steps.packages import SystemPackagesStep
from hubforge.steps.runtime import ContainerRuntimeStep
from hubforge.steps.services import ServiceUnitsStep
from hubforge.steps.source import SourceRetrievalStep
from hubforge.steps.workloads import WorkloadBringupStep, WorkloadPrefetchStep

# ---------------------------------------------------------------------------
# Step registry: step_id -> step class
# ---------------------------------------------------------------------------

STEP_REGISTRY: dict[str, type[BaseStep]] = {
    "trigger_handoff": TriggerHandoffStep,
    "network_bringup": NetworkBringupStep,
    "system_packages": SystemPackagesStep,
    "container_runtime": ContainerRuntimeStep,
    "credential_bootstrap": CredentialBootstrapStep,
    "source_retrieval": SourceRetrievalStep,
    "workload_prefetch": WorkloadPrefetchStep,
    "workload_bringup": WorkloadBringupStep,
    "service_units": ServiceUnitsStep,
    "secure_cleanup": SecureCleanupStep,
    "self_disable": SelfDisableStep,
}

# Execution order follows the ordinals of the step definitions.
STEP_ORDER: list[str] = [
    d.step_id for d in sorted(DEFAULT_STEP_DEFINITIONS, key=lambda d: d.ordinal)
]


def get_step(step_id: str) -> BaseStep:
    """Instantiate a step by its ``step_id``.

    Raises ``KeyError`` if the step_id is not registered.
    """
    try:
        cls = STEP_REGISTRY[step_id]
    except KeyError:
        raise KeyError(
            f"Unknown step_id {step_id!r}. "
            f"Registered steps: {sorted(STEP_REGISTRY.keys())}"
        ) from None
    return cls()


def build_steps() -> list[BaseStep]:
    """Instantiate the full ordered step plan."""
    return [get_step(sid) for sid in STEP_ORDER]


__all__ = [
    "BaseStep",
    "StepExecutionError",
    "StepOutcome",
    "STEP_REGISTRY",
    "STEP_ORDER",
    "build_steps",
    "get_step",
    "CredentialMissingError",
    "TriggerHandoffStep",
    "NetworkBringupStep",
    "SystemPackagesStep",
    "ContainerRuntimeStep",
    "CredentialBootstrapStep",
    "SourceRetrievalStep",
    "WorkloadPrefetchStep",
    "WorkloadBringupStep",
    "ServiceUnitsStep",
    "SecureCleanupStep",
    "SelfDisableStep",
]
