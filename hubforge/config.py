"""Runtime configuration — env-driven for both the operator tool and the agent.

Centralized settings using pydantic-settings. Values are read from a .env
file and HUBFORGE_* environment variables; CLI flags override them per call.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


class HubforgeSettings(BaseSettings):
    """Settings shared by the operator CLI and the on-device agent.

    Examples
    --------
    Override via environment::

        export HUBFORGE_CACHE_DIR=/data/images
        export HUBFORGE_LOG_LEVEL=DEBUG
        export HUBFORGE_COMMAND_TIMEOUT_SECONDS=600

    Or via .env file::

        HUBFORGE_DEFAULT_WIFI_COUNTRY=GB
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="HUBFORGE_",
        env_file_encoding="utf-8",
    )

    environment: str = "development"
    log_level: str = "INFO"

    # Operator side: image cache and staging
    cache_dir: Path = Path.home() / ".cache" / "hubforge" / "images"
    work_dir: Path = Path("/tmp/hubforge-image-work")
    min_image_bytes: int = 100 * MIB
    http_timeout_seconds: float = 60.0
    default_image_url: str = (
        "https://downloads.raspberrypi.org/raspios_lite_armhf/images/"
        "raspios_lite_armhf-2025-05-13/2025-05-13-raspios-bookworm-armhf-lite.img.xz"
    )
    boot_mount_point: Path = Path("/Volumes/boot")

    # Profile defaults
    default_repository_uri: str = "git@github.com:aafontoura/homehub.git"
    default_runtime_version: str = "2.25.1"
    default_wifi_country: str = "NL"

    # Device side: where the boot partition is mounted on the running SBC
    device_boot_dir: Path = Path("/boot")
    agent_log_path: Path = Path("/var/log/hubforge-firstboot.log")
    ledger_path: Path = Path("/var/lib/hubforge/ledger.db")

    # Explicit bounds for external commands on the device
    command_timeout_seconds: int = 900
    long_command_timeout_seconds: int = 3600
    reboot_delay_minutes: int = 1

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


# Module-level singleton; import as `from hubforge.config import settings`
settings = HubforgeSettings()
