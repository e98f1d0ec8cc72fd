"""Main Typer application — imports and registers all CLI commands.

Entry point: ``hubforge`` (configured via pyproject.toml project.scripts).
"""

from __future__ import annotations

import typer

from hubforge.cli.commands.agent import agent_app
from hubforge.cli.commands.image import image_app
from hubforge.cli.commands.prepare import prepare_cmd
from hubforge.cli.commands.stage import stage_cmd

app = typer.Typer(
    name="hubforge",
    help="hubforge: unattended first-boot provisioning for a single-board home hub.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="prepare", help="Flash an SD card and stage it for first boot.")(prepare_cmd)
app.command(name="stage", help="Stage first-boot files onto a mounted boot partition.")(stage_cmd)
app.add_typer(image_app, name="image")
app.add_typer(agent_app, name="agent")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
