"""Image artifact models — what the cache hands to the boot-media writer."""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator

_SHA256_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class CompressionFormat(str, Enum):
    """Archive format, detected from magic bytes rather than file names."""

    XZ = "xz"
    GZIP = "gzip"
    ZIP = "zip"
    NONE = "none"


class ChecksumRecord(BaseModel):
    """Expected SHA-256 published next to a remote image as ``<uri>.sha256``."""

    model_config = ConfigDict(frozen=True)

    expected_sha256: str
    source_uri: str = ""
    sidecar_path: Path | None = None

    @field_validator("expected_sha256")
    @classmethod
    def _check_digest(cls, value: str) -> str:
        if not _SHA256_RE.match(value):
            raise ValueError("expected_sha256 must be exactly 64 hex characters")
        return value.lower()

    @classmethod
    def parse(
        cls,
        text: str,
        *,
        source_uri: str = "",
        sidecar_path: Path | None = None,
    ) -> ChecksumRecord | None:
        """Parse the first line of a sidecar file.

        Accepts ``<hash> <name>``, ``<hash>  <name>``, ``<hash> *<name>`` and
        a bare ``<hash>``. Returns ``None`` when no valid digest is found.
        """
        lines = text.strip().splitlines()
        if not lines:
            return None
        fields = lines[0].split()
        if not fields or not _SHA256_RE.match(fields[0]):
            return None
        return cls(
            expected_sha256=fields[0],
            source_uri=source_uri,
            sidecar_path=sidecar_path,
        )


class ImageArtifact(BaseModel):
    """A validated OS image on local disk.

    Immutable once created: reuse re-validates, it never mutates.
    """

    model_config = ConfigDict(frozen=True)

    source_uri: str
    local_cache_path: Path
    size_bytes: int
    sha256: str
    compression_format: CompressionFormat
    checksum_verified: bool = False
    from_cache: bool = False


class ValidationResult(BaseModel):
    """Outcome of the cache integrity predicates for a single file."""

    model_config = ConfigDict(frozen=True)

    passed: bool
    reason: str
    checksum_verified: bool = False
    compression_format: CompressionFormat = CompressionFormat.NONE
    sha256: str = ""  # populated when the digest was computed during the check

    def __bool__(self) -> bool:
        return self.passed
