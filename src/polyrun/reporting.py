# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Rich rendering of workspace results and execution plans."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Final

from rich import box
from rich.table import Table
from rich.text import Text

from .aliases import ResolvedCommand
from .config import MemberStatus
from .console import get_console_manager
from .graph import DependencyGraph
from .logging import emoji, fail, ok, warn
from .models import Outcome, OutcomeStatus, OverallStatus, Workspace, WorkspaceResult
from .scheduler import ExecutionWave

_STATUS_STYLES: Final[Mapping[OutcomeStatus, str]] = {
    OutcomeStatus.SUCCESS: "green",
    OutcomeStatus.FAILED: "red",
    OutcomeStatus.SKIPPED: "yellow",
}
_STATUS_ICONS: Final[Mapping[OutcomeStatus, str]] = {
    OutcomeStatus.SUCCESS: "✅",
    OutcomeStatus.FAILED: "❌",
    OutcomeStatus.SKIPPED: "⏭️",
}


@dataclass(frozen=True, slots=True)
class RenderOptions:
    """Presentation preferences shared by the renderers."""

    color: bool = True
    emoji: bool = True
    verbose: bool = False


def format_duration(duration_ms: int) -> str:
    """Return ``duration_ms`` formatted for humans."""

    if duration_ms < 1000:
        return f"{duration_ms}ms"
    return f"{duration_ms / 1000:.1f}s"


def render_outcome_line(outcome: Outcome, options: RenderOptions) -> None:
    """Print a one-line progress entry for ``outcome`` as it completes."""

    console = get_console_manager().get(color=options.color, emoji=options.emoji)
    icon = emoji(f"{_STATUS_ICONS[outcome.status]} ", options.emoji)
    text = Text(f"{icon}{outcome.member}: {outcome.status.value}")
    if outcome.reason is not None:
        text.append(f" ({outcome.reason.value})")
    if outcome.status is not OutcomeStatus.SKIPPED:
        text.append(f" in {format_duration(outcome.duration_ms)}")
    if options.color:
        text.stylize(_STATUS_STYLES[outcome.status])
    console.print(text)


def build_result_table(result: WorkspaceResult) -> Table:
    """Return a table listing every member outcome."""

    table = Table(title=f"polyrun {result.command}", box=box.SIMPLE_HEAVY)
    table.add_column("Member", style="bold")
    table.add_column("Status")
    table.add_column("Exit", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Command / reason", overflow="fold")
    for outcome in result.outcomes:
        status = Text(outcome.status.value, style=_STATUS_STYLES[outcome.status])
        exit_repr = "" if outcome.exit_code is None else str(outcome.exit_code)
        detail = outcome.command
        if outcome.message and outcome.status is not OutcomeStatus.SUCCESS:
            detail = f"{detail} [{outcome.message}]" if detail else outcome.message
        duration = "" if outcome.status is OutcomeStatus.SKIPPED else format_duration(outcome.duration_ms)
        table.add_row(outcome.member, status, exit_repr, duration, detail)
    return table


def render_result(result: WorkspaceResult, options: RenderOptions) -> None:
    """Print the outcome table, captured output of failures and a summary line.

    Args:
        result: Aggregated workspace result.
        options: Presentation preferences.
    """

    console = get_console_manager().get(color=options.color, emoji=options.emoji)
    console.print(build_result_table(result))
    for outcome in result.outcomes:
        show_output = options.verbose or outcome.status is OutcomeStatus.FAILED
        if not show_output or not (outcome.stdout or outcome.stderr):
            continue
        console.rule(f"{outcome.member} output")
        if outcome.stdout:
            console.print(Text(outcome.stdout.rstrip()))
        if outcome.stderr:
            console.print(Text(outcome.stderr.rstrip(), style="red" if options.color else ""))

    counts = {status: len(result.by_status(status)) for status in OutcomeStatus}
    summary = (
        f"{counts[OutcomeStatus.SUCCESS]} succeeded, "
        f"{counts[OutcomeStatus.FAILED]} failed, "
        f"{counts[OutcomeStatus.SKIPPED]} skipped"
    )
    if result.cancelled:
        fail(f"Cancelled: {summary}", use_emoji=options.emoji, use_color=options.color)
    elif result.overall_status is OverallStatus.SUCCESS:
        ok(f"'{result.command}' succeeded: {summary}", use_emoji=options.emoji, use_color=options.color)
    elif result.overall_status is OverallStatus.PARTIAL_FAILURE:
        warn(f"'{result.command}' partially failed: {summary}", use_emoji=options.emoji, use_color=options.color)
    else:
        fail(f"'{result.command}' failed: {summary}", use_emoji=options.emoji, use_color=options.color)


def render_plan(graph: DependencyGraph, waves: Sequence[ExecutionWave], options: RenderOptions) -> None:
    """Print the wave layout of an execution plan."""

    console = get_console_manager().get(color=options.color, emoji=options.emoji)
    table = Table(title="Execution plan", box=box.SIMPLE_HEAVY)
    table.add_column("Wave", justify="right")
    table.add_column("Member", style="bold")
    table.add_column("Depends on")
    for wave in waves:
        for name in wave.members:
            table.add_row(str(wave.index), name, ", ".join(graph.dependencies_of(name)))
    console.print(table)


def render_members(workspace: Workspace, options: RenderOptions) -> None:
    """Print the members of ``workspace`` in declaration order."""

    console = get_console_manager().get(color=options.color, emoji=options.emoji)
    table = Table(title=workspace.name, box=box.SIMPLE_HEAVY)
    table.add_column("Member", style="bold")
    table.add_column("Language")
    table.add_column("Path")
    table.add_column("Enabled")
    table.add_column("Depends on")
    for member in workspace.members:
        table.add_row(
            member.name,
            member.language,
            str(member.path),
            _yes_no(member.enabled),
            ", ".join(sorted(member.depends_on)),
        )
    console.print(table)


def render_status(workspace: Workspace, statuses: Sequence[MemberStatus], options: RenderOptions) -> None:
    """Print the on-disk status of every member."""

    console = get_console_manager().get(color=options.color, emoji=options.emoji)
    enabled = sum(1 for status in statuses if status.enabled)
    console.print(f"Workspace: {workspace.name}")
    console.print(f"Root: {workspace.root}")
    console.print(f"Members: {len(statuses)} total, {enabled} enabled")
    table = Table(box=box.SIMPLE_HEAVY)
    table.add_column("Member", style="bold")
    table.add_column("Language")
    table.add_column("Enabled")
    table.add_column("Exists")
    table.add_column("Config")
    table.add_column("Last modified")
    for status in statuses:
        table.add_row(
            status.name,
            status.language,
            _yes_no(status.enabled),
            Text(_yes_no(status.exists), style="" if status.exists else "red"),
            _yes_no(status.has_config),
            status.last_modified.strftime("%Y-%m-%d %H:%M:%S UTC") if status.last_modified else "-",
        )
    console.print(table)


def render_scripts(workspace: Workspace, options: RenderOptions) -> None:
    """Print the scripts defined by ``workspace``."""

    console = get_console_manager().get(color=options.color, emoji=options.emoji)
    table = Table(title="Workspace scripts", box=box.SIMPLE_HEAVY)
    table.add_column("Script", style="bold")
    table.add_column("Runs", overflow="fold")
    table.add_column("Members")
    table.add_column("Mode")
    table.add_column("Description")
    for name, script in workspace.scripts.items():
        table.add_row(
            name,
            script.command,
            ", ".join(script.run_in_members) or "all",
            "parallel" if script.run_parallel else "sequential",
            script.description,
        )
    console.print(table)


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def render_commands(commands: Mapping[str, ResolvedCommand], options: RenderOptions) -> None:
    """Print every resolvable command and the layer that defines it."""

    console = get_console_manager().get(color=options.color, emoji=options.emoji)
    table = Table(box=box.SIMPLE_HEAVY)
    table.add_column("Command", style="bold")
    table.add_column("Runs", overflow="fold")
    table.add_column("Source")
    for name, resolved in commands.items():
        table.add_row(name, resolved.command, resolved.source.value)
    console.print(table)


__all__ = [
    "RenderOptions",
    "build_result_table",
    "format_duration",
    "render_commands",
    "render_members",
    "render_outcome_line",
    "render_plan",
    "render_result",
    "render_scripts",
    "render_status",
]
