"""Application source retrieval: clone once, hard-reset afterwards."""

from __future__ import annotations

from hubforge.core.context import AgentContext
from hubforge.steps.base import BaseStep, StepOutcome


class SourceRetrievalStep(BaseStep):
    @property
    def step_id(self) -> str:
        return "source_retrieval"

    def execute(self, ctx: AgentContext) -> StepOutcome:
        profile = ctx.profile
        app_dir = ctx.layout.app_dir

        if not (app_dir / ".git").is_dir():
            app_dir.parent.mkdir(parents=True, exist_ok=True)
            ctx.sh(
                [
                    "git",
                    "clone",
                    "--branch",
                    profile.repository_branch,
                    profile.repository_uri,
                    str(app_dir),
                ],
                long=True,
                as_user=True,
            )
            return StepOutcome(detail=f"cloned {profile.repository_uri} into {app_dir}")

        ctx.sh(["git", "fetch", "--all"], long=True, cwd=app_dir, as_user=True)
        ctx.sh(
            ["git", "reset", "--hard", f"origin/{profile.repository_branch}"],
            cwd=app_dir,
            as_user=True,
        )
        return StepOutcome(detail=f"reset to origin/{profile.repository_branch}")
