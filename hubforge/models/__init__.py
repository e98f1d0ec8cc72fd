"""hubforge data models — all Pydantic v2, all frozen (immutable)."""

from hubforge.models.image import (
    ChecksumRecord,
    CompressionFormat,
    ImageArtifact,
    ValidationResult,
)
from hubforge.models.layout import DeviceLayout
from hubforge.models.ledger import LedgerEntry, LedgerEvent, ProvisioningRun
from hubforge.models.profile import (
    DEFAULT_WORKLOADS,
    DeployKeyPair,
    ProvisioningProfile,
    WifiCredentials,
)
from hubforge.models.steps import (
    DEFAULT_STEP_DEFINITIONS,
    VALID_TRANSITIONS,
    FatalityClass,
    IdempotencyClass,
    ProvisioningState,
    StepDefinition,
)

__all__ = [
    # image
    "ChecksumRecord",
    "CompressionFormat",
    "ImageArtifact",
    "ValidationResult",
    # profile
    "DEFAULT_WORKLOADS",
    "DeployKeyPair",
    "ProvisioningProfile",
    "WifiCredentials",
    # steps
    "DEFAULT_STEP_DEFINITIONS",
    "VALID_TRANSITIONS",
    "FatalityClass",
    "IdempotencyClass",
    "ProvisioningState",
    "StepDefinition",
    # ledger
    "LedgerEntry",
    "LedgerEvent",
    "ProvisioningRun",
    # layout
    "DeviceLayout",
]
