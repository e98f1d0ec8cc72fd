"""hubforge: unattended first-boot provisioning for a single-board home hub.

Two halves behind one CLI:
  - Operator side: verified image cache, SD-card flashing, boot-partition
    staging of credentials, Wi-Fi and the first-boot trigger
  - Device side: a step-ordered provisioning agent with per-step idempotency
    and fatality policies, recorded in a hash-chained SQLite ledger
"""

__version__ = "0.1.0"
__description__ = "Unattended first-boot provisioning for a single-board home hub"

from hubforge.core.agent import ProvisioningAgent
from hubforge.core.boot_media import BootPartitionWriter
from hubforge.core.image_cache import ImageCache
from hubforge.cli.app import app as cli

__all__ = [
    "BootPartitionWriter",
    "ImageCache",
    "ProvisioningAgent",
    "cli",
    "__version__",
]
