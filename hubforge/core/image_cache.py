"""Image cache and integrity validator.

Fetches, caches and verifies an OS image before anything is written to the
target storage. Cache integrity gates the whole provisioning flow: a
truncated or tampered image produces a device that never finishes first boot.

Validation predicates, in order:
    exists -> non-empty -> size floor -> archive magic bytes -> checksum

The checksum predicate applies only when a ``<uri>.sha256`` sidecar can be
obtained. Without one the check degrades to the heuristic predicates.

Cache layout::

    {cache_dir}/{cache_key}            the image archive
    {cache_dir}/{cache_key}.sha256     the published checksum, when available
    {cache_dir}/temp_download_*        in-flight download (never the slot)
"""

from __future__ import annotations

import gzip
import logging
import lzma
import os
import shutil
import tempfile
import zipfile
from pathlib import Path
from urllib.parse import urlparse

import httpx

from hubforge.core.hasher import CHUNK_SIZE, sha256_file, short_digest
from hubforge.models.image import (
    ChecksumRecord,
    CompressionFormat,
    ImageArtifact,
    ValidationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_MIN_SIZE_BYTES = 100 * 1024 * 1024

RECOGNISED_SUFFIXES: tuple[str, ...] = (".img.xz", ".img.gz", ".zip")

_MAGIC: list[tuple[bytes, CompressionFormat]] = [
    (b"\xfd7zXZ\x00", CompressionFormat.XZ),
    (b"\x1f\x8b", CompressionFormat.GZIP),
    (b"PK\x03\x04", CompressionFormat.ZIP),
]


class ImageCacheError(RuntimeError):
    """Base class for image cache failures."""


class ImageSourceError(ImageCacheError):
    """Raised when a local image source does not exist."""


class ImageDownloadError(ImageCacheError):
    """Raised when an image cannot be downloaded. Leaves no partial state."""


class ImageIntegrityError(ImageCacheError):
    """Raised when an image still fails validation after the single retry."""


def detect_compression(path: Path) -> CompressionFormat:
    """Identify the archive format from the file's leading bytes."""
    with open(path, "rb") as fh:
        head = fh.read(8)
    for magic, fmt in _MAGIC:
        if head.startswith(magic):
            return fmt
    return CompressionFormat.NONE


def sidecar_for(path: Path) -> Path:
    return path.with_name(path.name + ".sha256")


class ImageCache:
    """Local cache of verified OS images.

    Parameters
    ----------
    cache_dir:
        Directory holding cached images and their checksum sidecars.
    client:
        ``httpx.Client`` used for downloads. One is created (and owned) when
        not provided.
    min_size_bytes:
        Size floor below which an image is treated as truncated.
    timeout:
        Transport timeout for the owned client, in seconds.
    """

    def __init__(
        self,
        cache_dir: Path,
        *,
        client: httpx.Client | None = None,
        min_size_bytes: int = DEFAULT_MIN_SIZE_BYTES,
        timeout: float = 60.0,
    ) -> None:
        self._cache_dir = Path(cache_dir).expanduser()
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self.min_size_bytes = min_size_bytes

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> ImageCache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Cache keys
    # ------------------------------------------------------------------

    @staticmethod
    def is_remote(source: str) -> bool:
        return source.startswith(("http://", "https://"))

    @staticmethod
    def cache_key(uri: str) -> str:
        """Deterministic cache filename for a source URI.

        The URL's own filename is used when it carries a recognised archive
        suffix; anything else gets a synthetic name from the URI's digest.
        """
        name = os.path.basename(urlparse(uri).path)
        if name.endswith(RECOGNISED_SUFFIXES):
            return name
        return f"rpi-image-{short_digest(uri)}.img.xz"

    def cache_path(self, uri: str) -> Path:
        return self._cache_dir / self.cache_key(uri)

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    def resolve(self, source: str, *, force_refresh: bool = False) -> ImageArtifact:
        """Produce a validated local image for *source* or raise.

        Remote sources go through the cache. A cached file that fails
        validation is evicted and downloaded again, once.
        """
        if not self.is_remote(source):
            return self._resolve_local(Path(source).expanduser())

        slot = self.cache_path(source)
        if slot.exists():
            if force_refresh:
                logger.info("Force refresh requested, evicting %s", slot)
                self.evict(slot)
            else:
                logger.info("Found cached image: %s", slot)
                result = self.check(slot, source)
                if result.passed:
                    logger.info("Using validated cached image (%s)", result.reason)
                    return self._artifact(slot, source, result, from_cache=True)
                logger.warning(
                    "Cached image failed validation (%s); evicting and re-downloading",
                    result.reason,
                )
                self.evict(slot)

        self.download(source, slot)
        result = self.check(slot, source, refresh_checksum=False)
        if not result.passed:
            self.evict(slot)
            raise ImageIntegrityError(
                f"Downloaded image from {source} failed validation: {result.reason}"
            )
        logger.info("Image cached at %s (%s)", slot, result.reason)
        return self._artifact(slot, source, result, from_cache=False)

    def _resolve_local(self, path: Path) -> ImageArtifact:
        if not path.is_file():
            raise ImageSourceError(f"Local image file not found: {path}")
        logger.info("Using local image file: %s", path)
        result = self.check(path, str(path), refresh_checksum=False)
        if not result.passed:
            raise ImageIntegrityError(
                f"Local image {path} failed validation: {result.reason}"
            )
        return self._artifact(path, str(path), result, from_cache=False)

    @staticmethod
    def _artifact(
        path: Path, source: str, result: ValidationResult, *, from_cache: bool
    ) -> ImageArtifact:
        return ImageArtifact(
            source_uri=source,
            local_cache_path=path,
            size_bytes=path.stat().st_size,
            sha256=result.sha256 or sha256_file(path),
            compression_format=result.compression_format,
            checksum_verified=result.checksum_verified,
            from_cache=from_cache,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(
        self, path: Path, source: str, *, refresh_checksum: bool = True
    ) -> bool:
        """Boolean form of :meth:`check`."""
        return self.check(path, source, refresh_checksum=refresh_checksum).passed

    def check(
        self,
        path: Path,
        source: str,
        *,
        refresh_checksum: bool = True,
        persist_checksum: bool = True,
    ) -> ValidationResult:
        """Run every integrity predicate against *path*.

        With ``refresh_checksum`` the sidecar is fetched again for remote
        sources; if that fetch fails, a previously persisted sidecar is used.
        ``persist_checksum=False`` leaves the directory of *path* untouched.
        """
        path = Path(path)
        if not path.is_file():
            return ValidationResult(passed=False, reason="file does not exist")

        size = path.stat().st_size
        if size == 0:
            return ValidationResult(passed=False, reason="file is empty")
        if size < self.min_size_bytes:
            return ValidationResult(
                passed=False,
                reason=f"file too small ({size} bytes, minimum {self.min_size_bytes})",
            )

        fmt = detect_compression(path)
        if fmt == CompressionFormat.NONE:
            return ValidationResult(
                passed=False, reason="not a recognised compressed image (xz/gzip/zip)"
            )

        sidecar = sidecar_for(path)
        record: ChecksumRecord | None = None
        if refresh_checksum and self.is_remote(source):
            record = self.fetch_checksum(source, sidecar if persist_checksum else None)
        if record is None and sidecar.is_file():
            record = self._load_sidecar(sidecar, source)

        if record is None:
            return ValidationResult(
                passed=True,
                reason="basic validation passed (no checksum available)",
                compression_format=fmt,
            )

        actual = sha256_file(path)
        if actual != record.expected_sha256:
            return ValidationResult(
                passed=False,
                reason=(
                    f"checksum mismatch (expected {record.expected_sha256}, "
                    f"actual {actual})"
                ),
                compression_format=fmt,
                sha256=actual,
            )
        return ValidationResult(
            passed=True,
            reason="checksum verified",
            checksum_verified=True,
            compression_format=fmt,
            sha256=actual,
        )

    @staticmethod
    def _load_sidecar(sidecar: Path, source: str) -> ChecksumRecord | None:
        record = ChecksumRecord.parse(
            sidecar.read_text(encoding="utf-8", errors="replace"),
            source_uri=source,
            sidecar_path=sidecar,
        )
        if record is None:
            logger.warning(
                "Invalid checksum format in %s, falling back to basic validation",
                sidecar,
            )
        return record

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    def download(self, uri: str, destination: Path) -> Path:
        """Stream *uri* into *destination* through a temporary file.

        The temp file only replaces the cache slot after the size floor
        passes. On any failure the temp file is removed and
        :class:`ImageDownloadError` is raised.
        """
        logger.info("Downloading image from %s", uri)
        fd, tmp_name = tempfile.mkstemp(prefix="temp_download_", dir=self._cache_dir)
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                with self._client.stream("GET", uri) as response:
                    response.raise_for_status()
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        fh.write(chunk)
            size = tmp.stat().st_size
            if size < self.min_size_bytes:
                raise ImageDownloadError(
                    f"Downloaded file too small ({size} bytes), download may have failed"
                )
            os.replace(tmp, destination)
        except httpx.HTTPError as exc:
            raise ImageDownloadError(f"Failed to download image from {uri}: {exc}") from exc
        finally:
            tmp.unlink(missing_ok=True)

        if self.fetch_checksum(uri, sidecar_for(destination)) is not None:
            logger.info("Official checksum stored for future validation")
        else:
            logger.info("No official checksum available, basic validation will be used")
        return destination

    def fetch_checksum(
        self, uri: str, sidecar: Path | None = None
    ) -> ChecksumRecord | None:
        """Best-effort fetch of ``<uri>.sha256``; persists it to *sidecar*."""
        checksum_uri = f"{uri}.sha256"
        try:
            response = self._client.get(checksum_uri)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Could not download checksum from %s: %s", checksum_uri, exc)
            return None

        record = ChecksumRecord.parse(
            response.text, source_uri=uri, sidecar_path=sidecar
        )
        if record is None:
            logger.warning("Invalid checksum format at %s, ignoring", checksum_uri)
            return None
        if sidecar is not None:
            sidecar.write_text(response.text, encoding="utf-8")
        return record

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    @staticmethod
    def evict(path: Path) -> None:
        """Delete a cached image and its checksum sidecar."""
        path = Path(path)
        path.unlink(missing_ok=True)
        sidecar_for(path).unlink(missing_ok=True)
        logger.info("Evicted cache entry %s", path.name)


class ImageStager:
    """Decompresses a validated artifact into a raw ``.img`` for flashing."""

    def __init__(self, work_dir: Path) -> None:
        self.work_dir = Path(work_dir)

    def stage(self, artifact: ImageArtifact) -> Path:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        target = self.work_dir / self._raw_name(artifact.local_cache_path)
        logger.info(
            "Extracting %s (%s) to %s",
            artifact.local_cache_path.name,
            artifact.compression_format.value,
            target,
        )
        try:
            if artifact.compression_format == CompressionFormat.ZIP:
                self._extract_zip(artifact.local_cache_path, target)
            else:
                opener = {
                    CompressionFormat.XZ: lzma.open,
                    CompressionFormat.GZIP: gzip.open,
                    CompressionFormat.NONE: open,
                }[artifact.compression_format]
                with opener(artifact.local_cache_path, "rb") as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst, CHUNK_SIZE)
        except (OSError, EOFError, lzma.LZMAError, zipfile.BadZipFile) as exc:
            target.unlink(missing_ok=True)
            raise ImageCacheError(
                f"Failed to extract {artifact.local_cache_path}: {exc}"
            ) from exc
        return target

    @staticmethod
    def _raw_name(path: Path) -> str:
        name = path.name
        for suffix in (".xz", ".gz", ".zip"):
            if name.endswith(suffix):
                name = name[: -len(suffix)]
                break
        return name if name.endswith(".img") else f"{name}.img"

    @staticmethod
    def _extract_zip(archive: Path, target: Path) -> None:
        with zipfile.ZipFile(archive) as zf:
            members = [m for m in zf.infolist() if not m.is_dir()]
            if not members:
                raise ImageCacheError(f"Zip archive {archive} is empty")
            chosen = next((m for m in members if m.filename.endswith(".img")), members[0])
            with zf.open(chosen) as src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst, CHUNK_SIZE)
