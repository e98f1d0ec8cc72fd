"""``hubforge image`` — fetch and validate OS images in the local cache."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from hubforge.config import settings
from hubforge.core.image_cache import ImageCache, ImageCacheError
from hubforge.logging_setup import configure_logging
from hubforge.models.image import ImageArtifact

console = Console()

image_app = typer.Typer(
    name="image",
    help="Fetch and validate OS images in the local cache.",
    no_args_is_help=True,
)


def open_cache(cache_dir: Optional[Path]) -> ImageCache:
    return ImageCache(
        cache_dir or settings.cache_dir,
        min_size_bytes=settings.min_image_bytes,
        timeout=settings.http_timeout_seconds,
    )


def artifact_table(artifact: ImageArtifact) -> Table:
    table = Table(title="Image", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Source", artifact.source_uri)
    table.add_row("Path", str(artifact.local_cache_path))
    table.add_row("Size", f"{artifact.size_bytes / (1024 * 1024):.1f} MiB")
    table.add_row("Format", artifact.compression_format.value)
    table.add_row("SHA-256", artifact.sha256)
    verified = "[green]yes[/green]" if artifact.checksum_verified else "[yellow]no checksum[/yellow]"
    table.add_row("Checksum", verified)
    table.add_row("From cache", "yes" if artifact.from_cache else "no")
    return table


@image_app.command(name="fetch", help="Download (or reuse) and validate an image.")
def fetch_cmd(
    source: str = typer.Argument(
        settings.default_image_url, help="Image URL or local file path."
    ),
    force_download: bool = typer.Option(
        False, "--force-download", "-f", help="Ignore the cache and download again."
    ),
    cache_dir: Optional[Path] = typer.Option(
        None, "--cache-dir", help="Image cache directory."
    ),
) -> None:
    configure_logging(level=settings.log_level)
    try:
        with open_cache(cache_dir) as cache:
            artifact = cache.resolve(source, force_refresh=force_download)
    except ImageCacheError as exc:
        console.print(f"[bold red]Image error:[/bold red] {exc}")
        raise typer.Exit(code=1)
    console.print(artifact_table(artifact))


@image_app.command(name="validate", help="Run the integrity checks against a file.")
def validate_cmd(
    path: Path = typer.Argument(..., help="Image file to validate."),
    source: Optional[str] = typer.Option(
        None, "--source", help="Original URL, used to fetch its published checksum."
    ),
    cache_dir: Optional[Path] = typer.Option(
        None, "--cache-dir", help="Image cache directory."
    ),
) -> None:
    configure_logging(level=settings.log_level)
    with open_cache(cache_dir) as cache:
        result = cache.check(
            path,
            source or str(path),
            refresh_checksum=source is not None,
            persist_checksum=False,
        )
    if result.passed:
        console.print(f"[bold green]Valid:[/bold green] {path} ({result.reason})")
        return
    console.print(f"[bold red]Invalid:[/bold red] {path} ({result.reason})")
    raise typer.Exit(code=1)
