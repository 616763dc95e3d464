# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Workspace commands: run commands and scripts across members and inspect the workspace."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Final

import typer

from ...config import WORKSPACE_FILE_NAME, find_workspace_root, inspect_members, load_workspace
from ...installer import ToolchainStore
from ...models import RunOptions, Workspace, WorkspaceResult
from ...orchestrator import WorkspaceOrchestrator
from ...plugins import load_convention_table
from ...reporting import (
    RenderOptions,
    render_members,
    render_outcome_line,
    render_plan,
    render_result,
    render_scripts,
    render_status,
)
from ..shared import EXIT_CONFIG_ERROR, CLIError, CLILogger, build_cli_logger, exit_code_for, translate_errors
from ..typer_ext import create_typer

_PASSTHROUGH_CONTEXT: Final[dict[str, bool]] = {"allow_extra_args": True, "ignore_unknown_options": True}

workspace_app = create_typer(name="workspace", help="Run commands across workspace members.")

WorkspaceOption = Annotated[
    Path | None,
    typer.Option("--workspace", "-w", help="Workspace directory or descriptor; defaults to the nearest one."),
]
MemberOption = Annotated[
    list[str] | None,
    typer.Option("--member", "-m", help="Restrict the run to this member (repeatable)."),
]
ParallelOption = Annotated[
    bool | None,
    typer.Option("--parallel/--sequential", help="Run members of a wave concurrently."),
]
JobsOption = Annotated[int | None, typer.Option("--jobs", "-j", min=1, help="Maximum concurrent members.")]
ContinueOption = Annotated[
    bool,
    typer.Option("--continue-on-error", help="Keep scheduling later waves after a failure."),
]
SkipDependentsOption = Annotated[
    bool,
    typer.Option("--skip-dependents", help="Skip members whose dependencies did not succeed."),
]
TimeoutOption = Annotated[
    float | None,
    typer.Option("--timeout", min=0.001, help="Per-member timeout in seconds."),
]
StreamOption = Annotated[
    bool,
    typer.Option("--stream", help="Stream member output to the terminal instead of capturing it."),
]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Show captured output of every member.")]
DebugOption = Annotated[bool, typer.Option("--debug", help="Print planning details.")]
NoEmojiOption = Annotated[bool, typer.Option("--no-emoji", help="Disable emoji in output.")]
NoColorOption = Annotated[bool, typer.Option("--no-color", help="Disable coloured output.")]


@dataclass(frozen=True, slots=True)
class WorkspaceRunRequest:
    """Options collected from the command line for one workspace run."""

    workspace: Path | None
    members: tuple[str, ...]
    parallel: bool | None
    jobs: int | None
    continue_on_error: bool
    skip_dependents: bool
    timeout: float | None
    stream: bool
    verbose: bool
    debug: bool
    emoji: bool
    color: bool
    extra_args: tuple[str, ...] = ()

    @property
    def render_options(self) -> RenderOptions:
        return RenderOptions(color=self.color, emoji=self.emoji, verbose=self.verbose)

    def run_options(self, workspace: Workspace) -> RunOptions:
        """Return :class:`RunOptions` falling back to the workspace settings."""

        settings = workspace.settings
        return RunOptions(
            parallel=settings.build_parallel if self.parallel is None else self.parallel,
            concurrency_limit=self.jobs or settings.max_parallel_jobs,
            member_filter=frozenset(self.members) if self.members else None,
            continue_on_error=self.continue_on_error,
            skip_dependents_on_failure=self.skip_dependents,
            timeout_s=self.timeout,
            capture_output=not self.stream,
            extra_args=self.extra_args,
        )


def _load(path: Path | None, logger: CLILogger) -> Workspace:
    target = path if path is not None else find_workspace_root(Path.cwd())
    if target is None:
        raise CLIError(f"No {WORKSPACE_FILE_NAME} found in {Path.cwd()} or its parents", exit_code=EXIT_CONFIG_ERROR)
    workspace = load_workspace(target)
    logger.debug(f"workspace={workspace.root} members={len(workspace.members)}")
    return workspace


def _orchestrator(request: WorkspaceRunRequest) -> WorkspaceOrchestrator:
    render_options = request.render_options
    return WorkspaceOrchestrator(
        conventions=load_convention_table(),
        installer=ToolchainStore.from_environment(),
        after_member_hook=lambda outcome: render_outcome_line(outcome, render_options),
        use_emoji=request.emoji,
        use_color=request.color,
    )


def execute_workspace_command(command: str, request: WorkspaceRunRequest) -> int:
    """Run ``command`` across the requested workspace and return the exit status.

    Args:
        command: Abstract command name.
        request: Collected command-line options.

    Returns:
        int: ``0`` on success, ``1`` on failure, ``3`` on partial failure and
        ``130`` when cancelled.
    """

    return _execute(
        request,
        command,
        lambda orchestrator, workspace, options: orchestrator.run_command(workspace, command, options),
    )


def execute_workspace_script(script: str, request: WorkspaceRunRequest) -> int:
    """Run the workspace script ``script`` and return the exit status."""

    return _execute(
        request,
        script,
        lambda orchestrator, workspace, options: orchestrator.run_script(workspace, script, options),
    )


def _execute(
    request: WorkspaceRunRequest,
    label: str,
    invoke: Callable[[WorkspaceOrchestrator, Workspace, RunOptions], WorkspaceResult],
) -> int:
    logger = build_cli_logger(emoji=request.emoji, color=request.color, debug=request.debug)
    with translate_errors(logger):
        workspace = _load(request.workspace, logger)
        options = request.run_options(workspace)
        logger.debug(
            f"command={label} parallel={options.parallel} jobs={options.effective_concurrency} "
            f"continue_on_error={options.continue_on_error}",
        )
        result = invoke(_orchestrator(request), workspace, options)
    render_result(result, request.render_options)
    return exit_code_for(result)


def _request(
    ctx: typer.Context | None,
    *,
    workspace: Path | None,
    member: list[str] | None,
    parallel: bool | None,
    jobs: int | None,
    continue_on_error: bool,
    skip_dependents: bool,
    timeout: float | None,
    stream: bool,
    verbose: bool,
    debug: bool,
    no_emoji: bool,
    no_color: bool,
) -> WorkspaceRunRequest:
    return WorkspaceRunRequest(
        workspace=workspace,
        members=tuple(member or ()),
        parallel=parallel,
        jobs=jobs,
        continue_on_error=continue_on_error,
        skip_dependents=skip_dependents,
        timeout=timeout,
        stream=stream,
        verbose=verbose,
        debug=debug,
        emoji=not no_emoji,
        color=not no_color,
        extra_args=tuple(ctx.args) if ctx is not None else (),
    )


@workspace_app.command("run", context_settings=_PASSTHROUGH_CONTEXT)
def run_in_workspace(
    command: Annotated[str, typer.Argument(help="Abstract command such as build or lint.")],
    ctx: typer.Context,
    workspace: WorkspaceOption = None,
    member: MemberOption = None,
    parallel: ParallelOption = None,
    jobs: JobsOption = None,
    continue_on_error: ContinueOption = False,
    skip_dependents: SkipDependentsOption = False,
    timeout: TimeoutOption = None,
    stream: StreamOption = False,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
    no_emoji: NoEmojiOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Run COMMAND in every enabled member, respecting dependency order."""

    request = _request(
        ctx,
        workspace=workspace,
        member=member,
        parallel=parallel,
        jobs=jobs,
        continue_on_error=continue_on_error,
        skip_dependents=skip_dependents,
        timeout=timeout,
        stream=stream,
        verbose=verbose,
        debug=debug,
        no_emoji=no_emoji,
        no_color=no_color,
    )
    raise typer.Exit(code=execute_workspace_command(command, request))


@workspace_app.command("build")
def build(
    workspace: WorkspaceOption = None,
    member: MemberOption = None,
    parallel: ParallelOption = None,
    jobs: JobsOption = None,
    continue_on_error: ContinueOption = False,
    skip_dependents: SkipDependentsOption = False,
    timeout: TimeoutOption = None,
    stream: StreamOption = False,
    verbose: VerboseOption = False,
    no_emoji: NoEmojiOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Build every enabled member."""

    request = _request(
        None,
        workspace=workspace,
        member=member,
        parallel=parallel,
        jobs=jobs,
        continue_on_error=continue_on_error,
        skip_dependents=skip_dependents,
        timeout=timeout,
        stream=stream,
        verbose=verbose,
        debug=False,
        no_emoji=no_emoji,
        no_color=no_color,
    )
    raise typer.Exit(code=execute_workspace_command("build", request))


@workspace_app.command("test")
def test(
    workspace: WorkspaceOption = None,
    member: MemberOption = None,
    parallel: ParallelOption = None,
    jobs: JobsOption = None,
    continue_on_error: ContinueOption = False,
    skip_dependents: SkipDependentsOption = False,
    timeout: TimeoutOption = None,
    stream: StreamOption = False,
    verbose: VerboseOption = False,
    no_emoji: NoEmojiOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Test every enabled member."""

    request = _request(
        None,
        workspace=workspace,
        member=member,
        parallel=parallel,
        jobs=jobs,
        continue_on_error=continue_on_error,
        skip_dependents=skip_dependents,
        timeout=timeout,
        stream=stream,
        verbose=verbose,
        debug=False,
        no_emoji=no_emoji,
        no_color=no_color,
    )
    raise typer.Exit(code=execute_workspace_command("test", request))


@workspace_app.command("graph")
def graph(
    workspace: WorkspaceOption = None,
    member: MemberOption = None,
    jobs: JobsOption = None,
    no_emoji: NoEmojiOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Print the execution waves without running anything."""

    logger = build_cli_logger(emoji=not no_emoji, color=not no_color)
    with translate_errors(logger):
        loaded = _load(workspace, logger)
        options = RunOptions(
            concurrency_limit=jobs or loaded.settings.max_parallel_jobs,
            member_filter=frozenset(member) if member else None,
        )
        plan = WorkspaceOrchestrator(use_emoji=not no_emoji, use_color=not no_color).plan(loaded, options)
    render_plan(plan.graph, plan.waves, RenderOptions(color=not no_color, emoji=not no_emoji))


@workspace_app.command("list")
def list_members(
    workspace: WorkspaceOption = None,
    no_emoji: NoEmojiOption = False,
    no_color: NoColorOption = False,
) -> None:
    """List workspace members and their dependencies."""

    logger = build_cli_logger(emoji=not no_emoji, color=not no_color)
    with translate_errors(logger):
        loaded = _load(workspace, logger)
    render_members(loaded, RenderOptions(color=not no_color, emoji=not no_emoji))


@workspace_app.command("script", context_settings=_PASSTHROUGH_CONTEXT)
def run_script(
    name: Annotated[str, typer.Argument(help="Script defined under [scripts] in the workspace descriptor.")],
    ctx: typer.Context,
    workspace: WorkspaceOption = None,
    member: MemberOption = None,
    jobs: JobsOption = None,
    skip_dependents: SkipDependentsOption = False,
    timeout: TimeoutOption = None,
    stream: StreamOption = False,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
    no_emoji: NoEmojiOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Run workspace script NAME in its target members.

    The script decides whether members run in parallel and whether failures
    stop the run.
    """

    request = _request(
        ctx,
        workspace=workspace,
        member=member,
        parallel=None,
        jobs=jobs,
        continue_on_error=False,
        skip_dependents=skip_dependents,
        timeout=timeout,
        stream=stream,
        verbose=verbose,
        debug=debug,
        no_emoji=no_emoji,
        no_color=no_color,
    )
    raise typer.Exit(code=execute_workspace_script(name, request))


@workspace_app.command("scripts")
def list_scripts(
    workspace: WorkspaceOption = None,
    no_emoji: NoEmojiOption = False,
    no_color: NoColorOption = False,
) -> None:
    """List the scripts defined by the workspace."""

    logger = build_cli_logger(emoji=not no_emoji, color=not no_color)
    with translate_errors(logger):
        loaded = _load(workspace, logger)
    if not loaded.scripts:
        logger.info("No workspace scripts defined.")
        return
    render_scripts(loaded, RenderOptions(color=not no_color, emoji=not no_emoji))


@workspace_app.command("status")
def status(
    workspace: WorkspaceOption = None,
    no_emoji: NoEmojiOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Show whether each member exists, has a polyrun.toml and is enabled."""

    logger = build_cli_logger(emoji=not no_emoji, color=not no_color)
    with translate_errors(logger):
        loaded = _load(workspace, logger)
    render_status(loaded, inspect_members(loaded), RenderOptions(color=not no_color, emoji=not no_emoji))


def register(app: typer.Typer) -> None:
    """Register the workspace command group on ``app``."""

    app.add_typer(workspace_app, name="workspace")


__all__ = [
    "WorkspaceRunRequest",
    "execute_workspace_command",
    "execute_workspace_script",
    "register",
    "workspace_app",
]
