"""Provisioning profile — the complete first-boot configuration contract.

Built once by the operator tool, staged on the boot partition as JSON, and
read exactly once by the agent. It replaces the placeholder tokens the old
shell flow spliced into its entry script: the entry script is fixed and all
variable configuration travels as data.
"""

from __future__ import annotations

import unicodedata
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_WORKLOADS: list[str] = [
    "docker/pihole",
    "docker/mosquitto",
    "docker/zigbee2mqtt",
    "docker/hass-postgres",
    "docker/homeassistant",
]

# github.com Ed25519 host key, pinned to avoid trust-on-first-use prompts.
GITHUB_HOST_KEY = (
    "github.com ssh-ed25519 "
    "AAAAC3NzaC1lZDI1NTE5AAAAIOMqqnkVzrm0SdG6UOoq6lEcdZ8mO8v4ZKFy7v1Z/5vC"
)

# Boot-relative locations of the deploy key pair.
BOOT_PRIVATE_KEY = Path("keys/id_ed25519")
BOOT_PUBLIC_KEY = Path("keys/id_ed25519.pub")


class WifiCredentials(BaseModel):
    """Wi-Fi network; SSID and passphrase are all-or-nothing.

    The SSID is 1-32 bytes without control characters and the passphrase is
    a WPA-PSK passphrase: 8-63 printable ASCII characters.
    """

    model_config = ConfigDict(frozen=True)

    ssid: str
    psk: str
    country_code: str = "NL"

    @field_validator("ssid", "psk")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("Wi-Fi SSID and password must both be non-empty")
        return value

    @field_validator("ssid")
    @classmethod
    def _ssid(cls, value: str) -> str:
        if len(value.encode("utf-8")) > 32:
            raise ValueError("Wi-Fi SSID must be at most 32 bytes")
        if any(unicodedata.category(c) == "Cc" for c in value):
            raise ValueError("Wi-Fi SSID must not contain control characters")
        return value

    @field_validator("psk")
    @classmethod
    def _passphrase(cls, value: str) -> str:
        if not 8 <= len(value) <= 63:
            raise ValueError("Wi-Fi password must be 8-63 characters long")
        if any(not 32 <= ord(c) <= 126 for c in value):
            raise ValueError("Wi-Fi password must be printable ASCII")
        return value

    @field_validator("country_code")
    @classmethod
    def _country(cls, value: str) -> str:
        value = value.strip().upper()
        if len(value) != 2 or not value.isalpha():
            raise ValueError(f"Wi-Fi country code must be two letters, got {value!r}")
        return value


class DeployKeyPair(BaseModel):
    """Read-only repository access key."""

    model_config = ConfigDict(frozen=True)

    private_key: Path
    public_key: Path | None = None


class ProvisioningProfile(BaseModel):
    """Everything the agent needs to turn a bare image into a running hub."""

    model_config = ConfigDict(frozen=True)

    os_username: str = "pi"
    password_hash: str | None = None
    wifi: WifiCredentials | None = None
    repository_uri: str
    repository_branch: str = "main"
    deploy_key: DeployKeyPair
    runtime_component_version: str = "2.25.1"
    workloads: list[str] = Field(default_factory=lambda: list(DEFAULT_WORKLOADS))
    known_hosts: list[str] = Field(default_factory=lambda: [GITHUB_HOST_KEY])

    @field_validator("os_username")
    @classmethod
    def _username(cls, value: str) -> str:
        if not value or ":" in value or any(c.isspace() for c in value):
            raise ValueError(f"Invalid OS username {value!r}")
        return value

    @field_validator("password_hash")
    @classmethod
    def _hash_format(cls, value: str | None) -> str | None:
        if value is not None and not value.startswith("$"):
            raise ValueError("password_hash must be a crypt(3) style hash")
        return value

    @field_validator("repository_uri")
    @classmethod
    def _repo(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("repository_uri must not be empty")
        return value.strip()

    @model_validator(mode="after")
    def _check_workloads(self) -> ProvisioningProfile:
        if any(not w.strip() for w in self.workloads):
            raise ValueError("Workload references must not be empty")
        if len(set(self.workloads)) != len(self.workloads):
            raise ValueError("Workload references must be unique")
        return self

    @property
    def home_dir(self) -> Path:
        return Path("/home") / self.os_username

    @property
    def portainer_image(self) -> str:
        return f"portainer/portainer-ce:{self.runtime_component_version}"

    def for_device(self) -> ProvisioningProfile:
        """Return the copy staged on the boot partition.

        The password hash is dropped (it travels in ``userconf``) and key
        paths point at their boot-relative staging location.
        """
        public = BOOT_PUBLIC_KEY if self.deploy_key.public_key is not None else None
        return self.model_copy(
            update={
                "password_hash": None,
                "deploy_key": DeployKeyPair(
                    private_key=BOOT_PRIVATE_KEY, public_key=public
                ),
            }
        )
