"""Container workloads: image pre-fetch and bring-up.

A workload is a directory of the application repository holding a compose
descriptor. Both steps degrade per workload: a missing directory or a failed
pull is a warning, never a reason to stop the others.
"""

from __future__ import annotations

import logging
from pathlib import Path

from hubforge.core.command import CommandError
from hubforge.core.context import AgentContext
from hubforge.steps.base import BaseStep, StepOutcome

logger = logging.getLogger(__name__)

COMPOSE_FILENAMES: tuple[str, ...] = ("docker-compose.yml", "compose.yml")


def compose_descriptor(workload_dir: Path) -> Path | None:
    for name in COMPOSE_FILENAMES:
        candidate = workload_dir / name
        if candidate.is_file():
            return candidate
    return None


def _service_names(output: str) -> set[str]:
    return {line.strip() for line in output.splitlines() if line.strip()}


def workload_running(ctx: AgentContext, workload_dir: Path) -> bool:
    """True when every service the descriptor declares is already running."""
    declared = ctx.sh(
        ["docker", "compose", "config", "--services"],
        cwd=workload_dir,
        as_user=True,
        check=False,
    )
    if not declared.ok:
        return False
    services = _service_names(declared.stdout)
    if not services:
        return False
    running = ctx.sh(
        ["docker", "compose", "ps", "--services", "--status", "running"],
        cwd=workload_dir,
        as_user=True,
        check=False,
    )
    return running.ok and services <= _service_names(running.stdout)


class WorkloadPrefetchStep(BaseStep):
    """Pulls images for every workload so the first start is fast."""

    @property
    def step_id(self) -> str:
        return "workload_prefetch"

    def execute(self, ctx: AgentContext) -> StepOutcome:
        warnings: list[str] = []
        pulled = 0
        for workload in ctx.profile.workloads:
            workload_dir = ctx.layout.app_dir / workload
            if compose_descriptor(workload_dir) is None:
                warnings.append(f"no compose file found in {workload}, skipping pre-pull")
                continue
            logger.info("Pre-pulling images for %s...", workload)
            try:
                result = ctx.sh(
                    ["docker", "compose", "pull"],
                    long=True,
                    cwd=workload_dir,
                    as_user=True,
                    check=False,
                )
            except CommandError as exc:
                warnings.append(f"pre-pull for {workload} failed: {exc}")
                continue
            if result.ok:
                pulled += 1
            else:
                warnings.append(f"failed to pre-pull images for {workload}")
        return StepOutcome(detail=f"{pulled} workload(s) pre-pulled", warnings=warnings)


class WorkloadBringupStep(BaseStep):
    """Starts each workload that is not already fully running."""

    @property
    def step_id(self) -> str:
        return "workload_bringup"

    def execute(self, ctx: AgentContext) -> StepOutcome:
        warnings: list[str] = []
        started: list[str] = []
        already: list[str] = []
        for workload in ctx.profile.workloads:
            workload_dir = ctx.layout.app_dir / workload
            if compose_descriptor(workload_dir) is None:
                warnings.append(f"no compose file found in {workload}, not started")
                continue
            try:
                if workload_running(ctx, workload_dir):
                    logger.info("%s already running", workload)
                    already.append(workload)
                    continue
                logger.info("Starting %s...", workload)
                result = ctx.sh(
                    ["docker", "compose", "up", "-d"],
                    cwd=workload_dir,
                    as_user=True,
                    check=False,
                )
            except CommandError as exc:
                warnings.append(f"failed to start {workload}: {exc}")
                continue
            if result.ok:
                started.append(workload)
            else:
                warnings.append(f"failed to start {workload}")
        detail = f"{len(started)} started, {len(already)} already running"
        return StepOutcome(detail=detail, warnings=warnings)
