# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Execution helpers for running one member's command and recording its outcome."""

from __future__ import annotations

import os
import shlex
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from textwrap import shorten
from typing import Protocol, runtime_checkable

from .aliases import ResolvedCommand, resolve
from .errors import CommandNotFoundError
from .installer import ToolchainInstaller, toolchain_bin_dir
from .logging import warn
from .models import Outcome, OutcomeReason, OutcomeStatus, ProjectConfig, WorkspaceMember
from .process import Cancellation, CommandOptions, ProcessResult, run_command


@runtime_checkable
class CommandRunner(Protocol):
    """Callable protocol for spawning member commands."""

    def __call__(self, args: Sequence[str], *, options: CommandOptions | None = None) -> ProcessResult:
        """Execute ``args`` and return the completed process metadata."""

        raise NotImplementedError


def compose_environment(
    config: ProjectConfig,
    *,
    shared: Mapping[str, str] | None = None,
    installer: ToolchainInstaller | None = None,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return the environment a member command runs with.

    Precedence, lowest first: the inherited process environment, the
    workspace ``shared`` environment, then ``config.environment``. When the
    installer reports the project's toolchain installed, its ``bin`` directory
    is prepended to ``PATH``.

    Args:
        config: Project configuration of the member.
        shared: Workspace-wide environment overrides.
        installer: Optional toolchain installer collaborator.
        base: Inherited environment; defaults to :data:`os.environ`.

    Returns:
        dict[str, str]: Fresh mapping owned by the caller.
    """

    env = dict(os.environ if base is None else base)
    env.update({str(key): str(value) for key, value in (shared or {}).items()})
    env.update({str(key): str(value) for key, value in config.environment.items()})
    bin_dir = toolchain_bin_dir(installer, config.language, config.version)
    if bin_dir is not None:
        inherited = env.get("PATH")
        env["PATH"] = os.pathsep.join([str(bin_dir), inherited]) if inherited else str(bin_dir)
    return env


@dataclass(slots=True)
class MemberExecutor:
    """Resolve and spawn a member's command, producing an :class:`Outcome`."""

    runner: CommandRunner = run_command
    installer: ToolchainInstaller | None = None
    shared_environment: Mapping[str, str] = field(default_factory=dict)
    timeout_s: float | None = None
    capture_output: bool = True
    extra_args: tuple[str, ...] = ()
    cancellation: Cancellation | None = None
    use_emoji: bool = True
    use_color: bool | None = None

    def execute(
        self,
        member: WorkspaceMember,
        command_name: str,
        config: ProjectConfig,
        *,
        cwd: Path | None = None,
    ) -> Outcome:
        """Run ``command_name`` for ``member`` and return its outcome.

        A resolution miss yields a failed outcome without spawning anything.
        Success is decided by the exit code alone.

        Args:
            member: Workspace member being executed.
            command_name: Abstract command to resolve.
            config: Validated project configuration of the member.
            cwd: Working directory; defaults to ``member.path``.

        Returns:
            Outcome: Immutable record of the attempt.
        """

        try:
            resolved = resolve(command_name, config)
        except CommandNotFoundError as exc:
            return Outcome(
                member=member.name,
                command=command_name,
                status=OutcomeStatus.FAILED,
                reason=OutcomeReason.NOT_FOUND,
                message=str(exc),
            )
        return self.execute_resolved(member, resolved, config, cwd=cwd)

    def execute_resolved(
        self,
        member: WorkspaceMember,
        resolved: ResolvedCommand,
        config: ProjectConfig,
        *,
        cwd: Path | None = None,
    ) -> Outcome:
        """Spawn an already resolved command for ``member`` and return its outcome."""

        workdir = cwd if cwd is not None else member.path
        display = resolved.display(self.extra_args)
        started = time.perf_counter()
        try:
            argv = resolved.argv(self.extra_args)
            result = self.runner(
                argv,
                options=CommandOptions(
                    cwd=workdir,
                    env=compose_environment(config, shared=self.shared_environment, installer=self.installer),
                    timeout=self.timeout_s,
                    capture_output=self.capture_output,
                    discard_stdin=self.capture_output,
                    cancellation=self.cancellation,
                ),
            )
        except (OSError, ValueError) as exc:
            outcome = Outcome(
                member=member.name,
                command=display,
                duration_ms=_elapsed_ms(started),
                status=OutcomeStatus.FAILED,
                reason=OutcomeReason.SPAWN_FAILURE,
                message=str(exc),
            )
            self._log_failure(outcome, resolved, workdir)
            return outcome

        outcome = self._outcome_from_result(member, display, result, _elapsed_ms(started))
        if outcome.failed and outcome.reason is not OutcomeReason.CANCELLED:
            self._log_failure(outcome, resolved, workdir)
        return outcome

    @staticmethod
    def _outcome_from_result(member: WorkspaceMember, display: str, result: ProcessResult, duration_ms: int) -> Outcome:
        if result.returncode == 0 and not result.timed_out:
            status, reason, message = OutcomeStatus.SUCCESS, None, None
        elif result.timed_out:
            status, reason, message = OutcomeStatus.FAILED, OutcomeReason.TIMEOUT, "command timed out"
        elif result.cancelled:
            status, reason, message = OutcomeStatus.FAILED, OutcomeReason.CANCELLED, "terminated by cancellation"
        else:
            status = OutcomeStatus.FAILED
            reason = OutcomeReason.NON_ZERO_EXIT
            message = f"exited with status {result.returncode}"
        return Outcome(
            member=member.name,
            command=display,
            exit_code=result.returncode,
            duration_ms=duration_ms,
            stdout=result.stdout,
            stderr=result.stderr,
            status=status,
            reason=reason,
            message=message,
        )

    def _log_failure(self, outcome: Outcome, resolved: ResolvedCommand, workdir: Path) -> None:
        """Emit a structured warning describing a failed member command."""

        details: list[str] = [
            f"command: {_format_command(resolved, self.extra_args)}",
            f"cwd: {workdir}",
            f"source: {resolved.source.value}",
        ]
        if outcome.message:
            details.append(f"reason: {outcome.message}")
        stderr_tail = _last_non_empty_line(outcome.stderr.splitlines())
        stdout_tail = _last_non_empty_line(outcome.stdout.splitlines())
        if stderr_tail:
            details.append(f"stderr: {stderr_tail}")
        if stdout_tail:
            details.append(f"stdout: {stdout_tail}")
        exit_repr = f"exit {outcome.exit_code}" if outcome.exit_code is not None else "not started"
        message = f"{outcome.member}:{resolved.name} failed ({exit_repr})" + "\n  " + "\n  ".join(details)
        warn(message, use_emoji=self.use_emoji, use_color=self.use_color)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _format_command(resolved: ResolvedCommand, extra_args: Sequence[str]) -> str:
    try:
        return shlex.join(resolved.argv(extra_args))
    except ValueError:
        return resolved.display(extra_args)


def _last_non_empty_line(lines: Sequence[str]) -> str | None:
    """Return the last non-empty line from ``lines`` truncated for readability."""

    for raw_line in reversed(lines):
        hint = raw_line.strip()
        if hint:
            return shorten(hint, width=160, placeholder="…")
    return None


__all__ = ["CommandRunner", "MemberExecutor", "compose_environment"]
