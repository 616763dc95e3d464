# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Single-project commands: ``run`` and ``alias list``."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Final

import typer

from ...aliases import available_commands, resolve
from ...config import PROJECT_FILE_NAME, find_project_root, load_project_config
from ...executor import compose_environment
from ...installer import ToolchainStore
from ...models import ProjectConfig
from ...plugins import load_convention_table
from ...process import CommandOptions, run_command
from ...reporting import RenderOptions, render_commands
from ..shared import EXIT_CANCELLED, EXIT_CONFIG_ERROR, CLIError, CLILogger, build_cli_logger, translate_errors
from ..typer_ext import create_typer

EXIT_NOT_EXECUTABLE: Final[int] = 127

_PASSTHROUGH_CONTEXT: Final[dict[str, bool]] = {"allow_extra_args": True, "ignore_unknown_options": True}

ProjectOption = Annotated[
    Path | None,
    typer.Option("--project", "-p", help="Project directory; defaults to the nearest polyrun.toml."),
]
NoEmojiOption = Annotated[bool, typer.Option("--no-emoji", help="Disable emoji in output.")]
NoColorOption = Annotated[bool, typer.Option("--no-color", help="Disable coloured output.")]

alias_app = create_typer(name="alias", help="Inspect command aliases.")


def _load_project(project: Path | None, logger: CLILogger) -> tuple[Path, ProjectConfig]:
    root = project if project is not None else find_project_root(Path.cwd())
    if root is None:
        raise CLIError(f"No {PROJECT_FILE_NAME} found in {Path.cwd()} or its parents", exit_code=EXIT_CONFIG_ERROR)
    logger.debug(f"project={root}")
    return root, load_project_config(root, conventions=load_convention_table())


def run(
    command: Annotated[str, typer.Argument(help="Abstract command such as build or test.")],
    ctx: typer.Context,
    project: ProjectOption = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Print the resolved command without running it.")] = False,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", min=0.001, help="Seconds before the command is terminated."),
    ] = None,
    debug: Annotated[bool, typer.Option("--debug", help="Print resolution details.")] = False,
    no_emoji: NoEmojiOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Resolve COMMAND for the current project and execute it.

    Extra arguments after COMMAND are appended verbatim. The process exits
    with the command's own exit status.
    """

    logger = build_cli_logger(emoji=not no_emoji, color=not no_color, debug=debug)
    extra_args = tuple(ctx.args)
    with translate_errors(logger):
        root, config = _load_project(project, logger)
        resolved = resolve(command, config)
        logger.debug(f"command={resolved.display(extra_args)!r} source={resolved.source.value}")
        if dry_run:
            typer.echo(resolved.display(extra_args))
            raise typer.Exit(code=0)
        try:
            argv = resolved.argv(extra_args)
        except ValueError as exc:
            raise CLIError(f"Cannot parse '{resolved.command}': {exc}", exit_code=EXIT_CONFIG_ERROR) from exc
        options = CommandOptions(
            cwd=root,
            env=compose_environment(config, installer=ToolchainStore.from_environment()),
            timeout=timeout,
            capture_output=False,
            discard_stdin=False,
        )
        try:
            result = run_command(argv, options=options)
        except (OSError, ValueError) as exc:
            raise CLIError(f"{command}: {exc}", exit_code=EXIT_NOT_EXECUTABLE) from exc
        except KeyboardInterrupt as exc:
            raise typer.Exit(code=EXIT_CANCELLED) from exc
    if result.timed_out:
        logger.fail(result.stderr.strip())
    # Signal deaths follow the shell convention of 128 + signal number.
    raise typer.Exit(code=result.returncode if result.returncode >= 0 else 128 - result.returncode)


@alias_app.command("list")
def list_aliases(
    project: ProjectOption = None,
    no_emoji: NoEmojiOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Show every command the current project can resolve and where it comes from."""

    logger = build_cli_logger(emoji=not no_emoji, color=not no_color)
    with translate_errors(logger):
        _, config = _load_project(project, logger)
    if not config.enable_aliases:
        logger.info("Aliases are disabled for this project; only scripts are listed.")
    render_commands(available_commands(config), RenderOptions(color=not no_color, emoji=not no_emoji))


def register(app: typer.Typer) -> None:
    """Register the single-project commands on ``app``."""

    app.command("run", context_settings=_PASSTHROUGH_CONTEXT)(run)
    app.add_typer(alias_app, name="alias")


__all__ = ["register"]
