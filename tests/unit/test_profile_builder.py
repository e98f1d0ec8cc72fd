"""Tests for operator-side profile construction."""

from __future__ import annotations

from pathlib import Path

import bcrypt
import pytest

from hubforge.core.profile_builder import (
    ProfileValidationError,
    build_profile,
    hash_password,
)

REPO = "git@github.com:example/homehub.git"


class TestHashPassword:
    def test_bcrypt_verifies(self):
        hashed = hash_password("raspberry")
        assert hashed.startswith("$2b$")
        assert bcrypt.checkpw(b"raspberry", hashed.encode("ascii"))


class TestBuildProfile:
    def test_minimal(self, deploy_key: Path):
        profile = build_profile(deploy_key=deploy_key, repository_uri=REPO, password="pw")
        assert profile.wifi is None
        assert profile.password_hash.startswith("$2b$")
        assert profile.deploy_key.private_key == deploy_key.resolve()
        assert profile.deploy_key.public_key == deploy_key.resolve().with_name(
            "homehub_deploy.pub"
        )

    def test_missing_public_key_is_fine(self, deploy_key: Path):
        deploy_key.with_name("homehub_deploy.pub").unlink()
        profile = build_profile(deploy_key=deploy_key, repository_uri=REPO, password="pw")
        assert profile.deploy_key.public_key is None

    def test_precomputed_hash_passes_through(self, deploy_key: Path):
        profile = build_profile(
            deploy_key=deploy_key, repository_uri=REPO, password_hash="$6$salt$hash"
        )
        assert profile.password_hash == "$6$salt$hash"

    def test_wifi_and_workloads(self, deploy_key: Path):
        profile = build_profile(
            deploy_key=deploy_key,
            repository_uri=REPO,
            password="pw",
            wifi_ssid="HomeNet",
            wifi_password="correct horse",
            wifi_country="gb",
            workloads=["docker/pihole"],
            branch="release",
        )
        assert profile.wifi.ssid == "HomeNet"
        assert profile.wifi.country_code == "GB"
        assert profile.workloads == ["docker/pihole"]
        assert profile.repository_branch == "release"

    def test_all_errors_reported_together(self, tmp_path: Path):
        with pytest.raises(ProfileValidationError) as excinfo:
            build_profile(
                deploy_key=tmp_path / "missing",
                repository_uri=REPO,
                wifi_ssid="HomeNet",
            )
        errors = excinfo.value.errors
        assert len(errors) == 3
        assert any("password is required" in e for e in errors)
        assert any("Wi-Fi password" in e for e in errors)
        assert any("Deploy key not found" in e for e in errors)

    def test_no_deploy_key(self):
        with pytest.raises(ProfileValidationError, match="deploy key is required"):
            build_profile(deploy_key=None, repository_uri=REPO, password="pw")

    def test_password_and_hash_conflict(self, deploy_key: Path):
        with pytest.raises(ProfileValidationError, match="not both"):
            build_profile(
                deploy_key=deploy_key, repository_uri=REPO, password="pw", password_hash="$6$x"
            )

    def test_password_too_long(self, deploy_key: Path):
        with pytest.raises(ProfileValidationError, match="72 bytes"):
            build_profile(deploy_key=deploy_key, repository_uri=REPO, password="x" * 73)

    def test_ssid_without_password(self, deploy_key: Path):
        with pytest.raises(ProfileValidationError, match="SSID is required"):
            build_profile(
                deploy_key=deploy_key, repository_uri=REPO, password="pw", wifi_password="p"
            )

    def test_model_errors_are_converted(self, deploy_key: Path):
        with pytest.raises(ProfileValidationError, match="country code"):
            build_profile(
                deploy_key=deploy_key,
                repository_uri=REPO,
                password="pw",
                wifi_ssid="a",
                wifi_password="password1",
                wifi_country="Netherlands",
            )

    def test_short_wifi_password_reported(self, deploy_key: Path):
        with pytest.raises(ProfileValidationError, match="8-63 characters"):
            build_profile(
                deploy_key=deploy_key,
                repository_uri=REPO,
                password="pw",
                wifi_ssid="HomeNet",
                wifi_password="short",
            )
