# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""CLI application entry point wiring commands and shared services."""

from __future__ import annotations

from .commands import register_commands
from .typer_ext import create_typer

app = create_typer(help="Polyglot workspace runner with command aliases.")
register_commands(app)


def main() -> None:
    """Console-script entry point."""

    app(prog_name="polyrun")


__all__ = ["app", "main"]
