"""External command execution with consistent logging and explicit timeouts.

Every platform utility the project drives (apt-get, git, docker, systemctl,
diskutil, dd) goes through :class:`CommandRunner`, so the engine can log each
invocation and tests can substitute a recording runner.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from typing import Mapping, Sequence

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """Raised when a checked command exits non-zero or cannot be started."""


class CommandTimeoutError(CommandError):
    """Raised when a command exceeds its timeout."""


class CmdResult(BaseModel):
    """Outcome of one command invocation."""

    model_config = ConfigDict(frozen=True)

    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


class CommandRunner:
    """Runs commands via ``subprocess`` with logging and bounded run time.

    Parameters
    ----------
    dry_run:
        Log commands without executing them; every call reports success.
    default_timeout:
        Seconds before a command is killed when the caller gives no timeout.
    """

    def __init__(self, *, dry_run: bool = False, default_timeout: int = 900) -> None:
        self.dry_run = dry_run
        self.default_timeout = default_timeout

    def which(self, name: str) -> bool:
        """Return whether *name* resolves to an executable on PATH."""
        return shutil.which(name) is not None

    def run(
        self,
        argv: Sequence[str],
        *,
        check: bool = True,
        cwd: str | os.PathLike[str] | None = None,
        env: Mapping[str, str] | None = None,
        input_text: str | None = None,
        timeout: int | None = None,
        user: str | None = None,
    ) -> CmdResult:
        """Run a command.

        - Always logs the command.
        - ``user`` runs it through ``sudo -H -u <user>``.
        - ``check`` raises :class:`CommandError` on a non-zero exit.
        """
        argv_list = list(argv)
        if user:
            argv_list = ["sudo", "-H", "-u", user, *argv_list]
        logger.info("CMD %s", format_argv(argv_list))

        if self.dry_run:
            return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="")

        limit = timeout if timeout is not None else self.default_timeout
        try:
            p = subprocess.run(
                argv_list,
                input=input_text,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                env=dict(os.environ, **(env or {})),
                timeout=limit,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandTimeoutError(
                f"Command timed out after {limit}s: {format_argv(argv_list)}"
            ) from exc
        except OSError as exc:
            if check:
                raise CommandError(
                    f"Command could not be started: {format_argv(argv_list)}: {exc}"
                ) from exc
            return CmdResult(argv=argv_list, returncode=127, stdout="", stderr=str(exc))

        if p.stdout:
            logger.debug("STDOUT %s", p.stdout.strip())
        if p.stderr:
            logger.debug("STDERR %s", p.stderr.strip())

        if check and p.returncode != 0:
            raise CommandError(
                f"Command failed ({p.returncode}): {format_argv(argv_list)}\n{p.stderr}"
            )

        return CmdResult(
            argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr
        )
