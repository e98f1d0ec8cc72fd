"""Unit tests for the CLI — command registration and end-to-end behaviour
against scratch directories via typer.testing.CliRunner.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

import httpx
import pytest
import respx
from typer.testing import CliRunner

from hubforge.cli.app import app
from hubforge.cli.commands import prepare as prepare_module
from hubforge.config import settings
from hubforge.core.disk import DiskError
from hubforge.models.image import CompressionFormat, ImageArtifact

runner = CliRunner()

SAMPLE_HASH = "$2b$12$abcdefghijklmnopqrstuuJ3E0sFZbH2/x5n8VfNnYJc6kNMaq3m"


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("prepare", "stage", "image", "agent"):
            assert command in result.output

    def test_subcommands_registered(self):
        for argv in (["image", "fetch"], ["image", "validate"], ["agent", "run"], ["agent", "status"]):
            result = runner.invoke(app, [*argv, "--help"])
            assert result.exit_code == 0, argv


# ---------------------------------------------------------------------------
# Test: operator commands
# ---------------------------------------------------------------------------


class TestStageCommand:
    def test_stage_writes_boot_partition(self, boot_dir: Path, deploy_key: Path, wheelhouse: Path):
        result = runner.invoke(
            app,
            [
                "stage",
                "--boot-dir", str(boot_dir),
                "--deploy-key", str(deploy_key),
                "--wheelhouse", str(wheelhouse),
                "--password-hash", SAMPLE_HASH,
                "--wifi-ssid", "HomeNet",
                "--wifi-password", "correct horse",
                "--repo", "git@github.com:example/homehub.git",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "Boot partition staged" in result.output
        assert (boot_dir / "hubforge" / "profile.json").is_file()
        assert (boot_dir / "hubforge" / "wheels" / "pip-24.0-py3-none-any.whl").is_file()
        assert (boot_dir / "network" / "HomeNet.nmconnection").is_file()
        assert "systemd.run=" in (boot_dir / "cmdline.txt").read_text()

    def test_invalid_input_lists_every_error(
        self, boot_dir: Path, deploy_key: Path, wheelhouse: Path
    ):
        result = runner.invoke(
            app,
            ["stage", "--boot-dir", str(boot_dir), "--deploy-key", str(deploy_key),
             "--wheelhouse", str(wheelhouse), "--wifi-ssid", "HomeNet"],
        )
        assert result.exit_code == 1
        assert "Invalid input" in result.output
        assert "password is required" in result.output
        assert not (boot_dir / "ssh").exists()

    def test_not_a_boot_partition(self, tmp_path: Path, deploy_key: Path, wheelhouse: Path):
        empty = tmp_path / "empty"
        empty.mkdir()
        result = runner.invoke(
            app,
            ["stage", "--boot-dir", str(empty), "--deploy-key", str(deploy_key),
             "--wheelhouse", str(wheelhouse), "--password-hash", SAMPLE_HASH],
        )
        assert result.exit_code == 1
        assert "Staging failed" in result.output

    def test_wheelhouse_is_required(self, boot_dir: Path, deploy_key: Path):
        result = runner.invoke(
            app,
            ["stage", "--boot-dir", str(boot_dir), "--deploy-key", str(deploy_key),
             "--password-hash", SAMPLE_HASH],
        )
        assert result.exit_code != 0
        assert not (boot_dir / "firstboot.sh").exists()

    def test_wheelhouse_without_pip_refused(
        self, boot_dir: Path, deploy_key: Path, wheelhouse: Path
    ):
        (wheelhouse / "pip-24.0-py3-none-any.whl").unlink()
        result = runner.invoke(
            app,
            ["stage", "--boot-dir", str(boot_dir), "--deploy-key", str(deploy_key),
             "--wheelhouse", str(wheelhouse), "--password-hash", SAMPLE_HASH],
        )
        assert result.exit_code == 1
        assert "pip-*.whl" in result.output
        assert "systemd.run=" not in (boot_dir / "cmdline.txt").read_text()


@pytest.fixture
def fake_disks(monkeypatch):
    """Replace DiskUtility in ``prepare`` with a recorder; ``system_disk=None`` means unknown."""

    class _Disks:
        calls: list[tuple[str, str]] = []
        system_disk: bool | None = False

        def __init__(self, runner, **kwargs):
            pass

        @staticmethod
        def device_exists(device: str) -> bool:
            return True

        def is_system_volume(self, device: str) -> bool:
            if _Disks.system_disk is None:
                raise DiskError("Could not determine the system disk")
            return _Disks.system_disk

        def describe(self, device: str) -> str:
            return f"{device}  29.7G  SD Card Reader  disk"

        def boot_partition(self, device: str) -> str:
            return f"{device}1"

        def unmount_disk(self, device: str) -> None:
            _Disks.calls.append(("unmount_disk", device))

        def flash(self, image: Path, device: str) -> None:
            _Disks.calls.append(("flash", device))

        def mount_boot(self, partition: str, mount_point: Path) -> None:
            _Disks.calls.append(("mount_boot", partition))

        def unmount(self, mount_point: Path) -> None:
            _Disks.calls.append(("unmount", str(mount_point)))

    _Disks.calls = []
    monkeypatch.setattr(prepare_module, "DiskUtility", _Disks)
    return _Disks


@pytest.fixture
def fake_image(monkeypatch, tmp_path: Path):
    """Serve a ready artifact without touching the network or the cache."""
    resolved: list[str] = []
    artifact = ImageArtifact(
        source_uri="https://downloads.example.org/os.img.xz",
        local_cache_path=tmp_path / "cache" / "os.img.xz",
        size_bytes=4096,
        sha256="0" * 64,
        compression_format=CompressionFormat.XZ,
        from_cache=True,
    )

    class _Cache:
        def __init__(self, cache_dir, **kwargs):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def resolve(self, source: str, *, force_refresh: bool = False) -> ImageArtifact:
            resolved.append(source)
            return artifact

    class _Stager:
        def __init__(self, work_dir: Path):
            self.work_dir = Path(work_dir)

        def stage(self, staged: ImageArtifact) -> Path:
            self.work_dir.mkdir(parents=True, exist_ok=True)
            raw = self.work_dir / "os.img"
            raw.write_bytes(b"\x00" * 512)
            return raw

    monkeypatch.setattr(prepare_module, "ImageCache", _Cache)
    monkeypatch.setattr(prepare_module, "ImageStager", _Stager)
    monkeypatch.setattr(settings, "work_dir", tmp_path / "work")
    return resolved


class TestPrepareCommand:
    def _argv(self, deploy_key: Path, wheelhouse: Path, boot_dir: Path) -> list[str]:
        return [
            "prepare",
            "--disk", "/dev/sdz",
            "--deploy-key", str(deploy_key),
            "--wheelhouse", str(wheelhouse),
            "--password-hash", SAMPLE_HASH,
            "--mount-point", str(boot_dir),
        ]

    def test_missing_device(self, tmp_path: Path, deploy_key: Path, wheelhouse: Path):
        result = runner.invoke(
            app,
            ["prepare", "--disk", str(tmp_path / "no-such-disk"), "--deploy-key", str(deploy_key),
             "--wheelhouse", str(wheelhouse), "--password-hash", SAMPLE_HASH, "--yes"],
        )
        assert result.exit_code == 1
        assert "Device not found" in result.output

    def test_requires_deploy_key(self):
        result = runner.invoke(app, ["prepare", "--disk", "/dev/null"])
        assert result.exit_code != 0

    @pytest.mark.parametrize("answer", ["\n", "n\n", "maybe\nn\n"])
    def test_confirmation_gate_aborts(
        self, answer, fake_disks, fake_image, deploy_key, wheelhouse, boot_dir
    ):
        result = runner.invoke(app, self._argv(deploy_key, wheelhouse, boot_dir), input=answer)

        assert result.exit_code == 1
        assert "Aborting" in result.output
        assert fake_disks.calls == []
        assert "systemd.run=" not in (boot_dir / "cmdline.txt").read_text()

    def test_confirmed_flash_and_stage(
        self, fake_disks, fake_image, deploy_key, wheelhouse, boot_dir
    ):
        result = runner.invoke(app, self._argv(deploy_key, wheelhouse, boot_dir), input="y\n")

        assert result.exit_code == 0, result.output
        assert [name for name, _ in fake_disks.calls] == [
            "unmount_disk", "flash", "mount_boot", "unmount",
        ]
        assert ("mount_boot", "/dev/sdz1") in fake_disks.calls
        assert "systemd.run=" in (boot_dir / "cmdline.txt").read_text()
        assert "is flashed and staged" in result.output

    def test_refuses_system_volume(
        self, fake_disks, fake_image, deploy_key, wheelhouse, boot_dir
    ):
        fake_disks.system_disk = True
        result = runner.invoke(app, [*self._argv(deploy_key, wheelhouse, boot_dir), "--yes"])

        assert result.exit_code == 1
        assert "Refusing to flash the system disk" in result.output
        assert fake_disks.calls == []
        assert fake_image == []

    def test_refuses_when_system_disk_unknown(
        self, fake_disks, fake_image, deploy_key, wheelhouse, boot_dir
    ):
        fake_disks.system_disk = None
        result = runner.invoke(app, [*self._argv(deploy_key, wheelhouse, boot_dir), "--yes"])

        assert result.exit_code == 1
        assert "Could not determine the system disk" in result.output
        assert fake_disks.calls == []

    def test_incomplete_wheelhouse_refused_before_flashing(
        self, fake_disks, fake_image, deploy_key, wheelhouse, boot_dir
    ):
        (wheelhouse / "hubforge-0.1.0-py3-none-any.whl").unlink()
        result = runner.invoke(app, [*self._argv(deploy_key, wheelhouse, boot_dir), "--yes"])

        assert result.exit_code == 1
        assert "hubforge-*.whl" in result.output
        assert fake_disks.calls == []
        assert fake_image == []


class TestImageCommands:
    def test_validate_valid_file(self, tmp_path: Path, xz_payload, monkeypatch):
        monkeypatch.setattr(settings, "min_image_bytes", 1024)
        image = tmp_path / "os.img.xz"
        image.write_bytes(xz_payload())
        result = runner.invoke(
            app, ["image", "validate", str(image), "--cache-dir", str(tmp_path / "cache")]
        )
        assert result.exit_code == 0, result.output
        assert "Valid" in result.output

    def test_validate_rejects_garbage(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr(settings, "min_image_bytes", 1024)
        image = tmp_path / "os.img.xz"
        image.write_bytes(b"<html>" * 1024)
        result = runner.invoke(
            app, ["image", "validate", str(image), "--cache-dir", str(tmp_path / "cache")]
        )
        assert result.exit_code == 1
        assert "Invalid" in result.output

    def test_validate_with_source_leaves_directory_untouched(
        self, tmp_path: Path, xz_payload, monkeypatch
    ):
        monkeypatch.setattr(settings, "min_image_bytes", 1024)
        data = xz_payload()
        image = tmp_path / "os.img.xz"
        image.write_bytes(data)
        url = "https://downloads.example.org/os.img.xz"

        with respx.mock:
            respx.get(url + ".sha256").mock(
                return_value=httpx.Response(200, text=hashlib.sha256(data).hexdigest() + "\n")
            )
            result = runner.invoke(
                app,
                ["image", "validate", str(image), "--source", url,
                 "--cache-dir", str(tmp_path / "cache")],
            )

        assert result.exit_code == 0, result.output
        assert "verified" in result.output
        assert not (tmp_path / "os.img.xz.sha256").exists()

    def test_fetch_missing_local_file(self, tmp_path: Path):
        result = runner.invoke(
            app,
            ["image", "fetch", str(tmp_path / "absent.img.xz"), "--cache-dir", str(tmp_path / "cache")],
        )
        assert result.exit_code == 1
        assert "Image error" in result.output


# ---------------------------------------------------------------------------
# Test: device commands
# ---------------------------------------------------------------------------


class TestAgentCommands:
    def test_dry_run_on_staged_tree_then_status(self, staged_layout, tmp_path: Path):
        ledger_db = tmp_path / "ledger.db"
        result = runner.invoke(
            app,
            [
                "agent", "run",
                "--root", str(staged_layout.root),
                "--boot-dir", str(staged_layout.boot_dir),
                "--ledger", str(ledger_db),
                "--dry-run",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "Provisioning completed" in result.output
        assert (staged_layout.root / "var/log/hubforge-firstboot.log").is_file()
        assert not staged_layout.boot_keys_dir.exists()

        status = runner.invoke(app, ["agent", "status", "--ledger", str(ledger_db)])
        assert status.exit_code == 0, status.output
        assert "completed" in status.output
        assert "valid" in status.output

    def test_run_without_profile(self, boot_dir: Path, tmp_path: Path):
        result = runner.invoke(
            app,
            ["agent", "run", "--root", str(boot_dir.parent), "--boot-dir", str(boot_dir),
             "--ledger", str(tmp_path / "ledger.db"), "--dry-run"],
        )
        assert result.exit_code == 1
        assert "Cannot start" in result.output

    def test_status_without_ledger(self, tmp_path: Path):
        result = runner.invoke(app, ["agent", "status", "--ledger", str(tmp_path / "none.db")])
        assert result.exit_code == 1
        assert "Ledger not found" in result.output

    def test_status_unknown_run(self, ledger, tmp_path: Path):
        from hubforge.models.ledger import LedgerEvent

        ledger.record("boot-1", "run", LedgerEvent.STARTED)
        result = runner.invoke(
            app, ["agent", "status", "--ledger", str(ledger.db_path), "--run-id", "boot-9"]
        )
        assert result.exit_code == 1
        assert "Run not found" in result.output
        assert "boot-1" in result.output
