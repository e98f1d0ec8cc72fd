"""Logging bootstrap — durable file log plus a Rich console stream.

On the device the log file is the only feedback channel once provisioning
starts, so every record goes to an append-only, timestamped file. When a
console is attached the same records are also rendered through Rich.
"""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_FALLBACK_NAME = "hubforge.log"


def configure_logging(
    log_path: Path | None = None,
    level: int | str = logging.INFO,
    *,
    console: bool = True,
) -> Path | None:
    """Configure the root logger once.

    Attempts to open *log_path* in append mode. When that location is not
    writable (a read-only /var/log in a live environment, for example) the
    log falls back to ``hubforge.log`` in the working directory.

    Returns the file actually being written, or ``None`` when no file log
    was requested.
    """
    root = logging.getLogger()
    root.setLevel(level)

    if getattr(root, "_hubforge_configured", False):
        return getattr(root, "_hubforge_log_path", None)

    chosen: Path | None = None
    if log_path is not None:
        handler, chosen = _file_handler(Path(log_path))
        root.addHandler(handler)

    if console:
        rich_handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        rich_handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(rich_handler)

    setattr(root, "_hubforge_configured", True)
    setattr(root, "_hubforge_log_path", chosen)

    logging.getLogger(__name__).debug(
        "Logging initialized (requested=%s, actual=%s)", log_path, chosen
    )
    return chosen


def _file_handler(log_path: Path) -> tuple[logging.Handler, Path]:
    fmt = logging.Formatter(fmt=_FILE_FORMAT, datefmt=_DATE_FORMAT)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        chosen = log_path
    except OSError:
        chosen = Path.cwd() / _FALLBACK_NAME
        handler = logging.FileHandler(chosen, mode="a", encoding="utf-8")
    handler.setFormatter(fmt)
    return handler, chosen


def reset_logging() -> None:
    """Remove handlers installed by :func:`configure_logging`."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, (RichHandler, logging.FileHandler)):
            root.removeHandler(handler)
            handler.close()
    setattr(root, "_hubforge_configured", False)
    setattr(root, "_hubforge_log_path", None)
