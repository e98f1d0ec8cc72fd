"""Operator-side profile construction and input validation.

Turns CLI flags into a :class:`ProvisioningProfile`, reporting every problem
at once instead of stopping at the first.
"""

from __future__ import annotations

import logging
from pathlib import Path

import bcrypt
from pydantic import ValidationError

from hubforge.models.profile import (
    DEFAULT_WORKLOADS,
    DeployKeyPair,
    ProvisioningProfile,
    WifiCredentials,
)

logger = logging.getLogger(__name__)

# bcrypt only considers the first 72 bytes of a password.
BCRYPT_MAX_BYTES = 72


class ProfileValidationError(ValueError):
    """Raised with every input problem found while building a profile."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


def hash_password(plaintext: str) -> str:
    """Hash a login password as a crypt(3)-compatible bcrypt string."""
    return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt()).decode("ascii")


def build_profile(
    *,
    deploy_key: Path | None,
    repository_uri: str,
    username: str = "pi",
    password: str | None = None,
    password_hash: str | None = None,
    wifi_ssid: str | None = None,
    wifi_password: str | None = None,
    wifi_country: str = "NL",
    branch: str = "main",
    runtime_version: str = "2.25.1",
    workloads: list[str] | None = None,
) -> ProvisioningProfile:
    """Validate operator inputs and build the profile.

    Parameters
    ----------
    deploy_key:
        Private key file; ``<deploy_key>.pub`` is staged too when present.
    password / password_hash:
        Exactly one is required. Plaintext is hashed with bcrypt.
    wifi_ssid / wifi_password:
        Both or neither.
    """
    errors: list[str] = []

    if password and password_hash:
        errors.append("Give either a password or a password hash, not both")
    elif not password and not password_hash:
        errors.append("A password is required (use --password or --password-hash)")
    elif password and len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        errors.append(f"Password must be at most {BCRYPT_MAX_BYTES} bytes")

    if bool(wifi_ssid) != bool(wifi_password):
        if wifi_ssid:
            errors.append("Wi-Fi password is required when an SSID is given")
        else:
            errors.append("Wi-Fi SSID is required when a Wi-Fi password is given")

    public_key: Path | None = None
    if deploy_key is None:
        errors.append("A deploy key is required for repository access")
    elif not deploy_key.expanduser().is_file():
        errors.append(f"Deploy key not found: {deploy_key}")
    else:
        deploy_key = deploy_key.expanduser().resolve()
        candidate = deploy_key.with_name(deploy_key.name + ".pub")
        public_key = candidate if candidate.is_file() else None

    if errors:
        raise ProfileValidationError(errors)

    hashed = password_hash or hash_password(password or "")
    try:
        wifi = (
            WifiCredentials(ssid=wifi_ssid, psk=wifi_password, country_code=wifi_country)
            if wifi_ssid and wifi_password
            else None
        )
        profile = ProvisioningProfile(
            os_username=username,
            password_hash=hashed,
            wifi=wifi,
            repository_uri=repository_uri,
            repository_branch=branch,
            deploy_key=DeployKeyPair(private_key=deploy_key, public_key=public_key),
            runtime_component_version=runtime_version,
            workloads=list(workloads) if workloads else list(DEFAULT_WORKLOADS),
        )
    except ValidationError as exc:
        raise ProfileValidationError(
            [str(err["msg"]).removeprefix("Value error, ") for err in exc.errors()]
        ) from exc

    logger.info(
        "Profile built for user %s (wifi=%s, %d workloads)",
        profile.os_username,
        "yes" if wifi else "no",
        len(profile.workloads),
    )
    return profile
