"""hubforge CLI — Typer-based command-line interface.

Provides the ``hubforge`` command with operator subcommands (image cache,
boot-partition staging, disk preparation) and the on-device agent.

All output uses Rich for formatted terminal display.
"""
