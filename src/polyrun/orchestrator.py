# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Top-level coordination of a command across workspace members."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .aliases import AliasSource, ResolvedCommand
from .config import ConfigProvider, WorkspaceConfigProvider
from .conventions import ConventionTable, builtin_conventions
from .errors import UnknownMemberError, UnknownScriptError
from .executor import CommandRunner, MemberExecutor
from .graph import DependencyGraph, build_graph
from .installer import ToolchainInstaller
from .logging import warn
from .models import (
    Outcome,
    OutcomeStatus,
    OverallStatus,
    ProjectConfig,
    RunOptions,
    Workspace,
    WorkspaceMember,
    WorkspaceResult,
)
from .process import Cancellation, run_command
from .scheduler import ExecutionWave, OutcomeHook, Scheduler, schedule

LOGGER = logging.getLogger(__name__)

_MemberRun = Callable[[MemberExecutor, WorkspaceMember, ProjectConfig, Path], Outcome]


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    """Validated graph and wave layout for one invocation."""

    graph: DependencyGraph
    waves: tuple[ExecutionWave, ...]
    concurrency_limit: int


def summarize(outcomes: Sequence[Outcome], *, continue_on_error: bool) -> OverallStatus:
    """Return the aggregate status for ``outcomes``.

    Args:
        outcomes: Outcomes of every scheduled member.
        continue_on_error: Whether the run was allowed to proceed past failures.

    Returns:
        OverallStatus: ``SUCCESS`` when every outcome succeeded (including an
        empty run), ``PARTIAL_FAILURE`` when failures were tolerated and at
        least one member succeeded, ``FAILED`` otherwise.
    """

    if all(outcome.status is OutcomeStatus.SUCCESS for outcome in outcomes):
        return OverallStatus.SUCCESS
    if continue_on_error and any(outcome.status is OutcomeStatus.SUCCESS for outcome in outcomes):
        return OverallStatus.PARTIAL_FAILURE
    return OverallStatus.FAILED


@dataclass(slots=True)
class WorkspaceOrchestrator:
    """Run abstract commands across workspace members in dependency order."""

    config_provider: ConfigProvider | None = None
    conventions: ConventionTable = field(default_factory=builtin_conventions)
    installer: ToolchainInstaller | None = None
    runner: CommandRunner = run_command
    after_member_hook: OutcomeHook | None = None
    use_emoji: bool = True
    use_color: bool | None = None

    def plan(self, workspace: Workspace, options: RunOptions | None = None) -> ExecutionPlan:
        """Validate the workspace and return the execution plan.

        Args:
            workspace: Workspace descriptor.
            options: Run options; only the filter and concurrency are used.

        Returns:
            ExecutionPlan: Graph restricted to the selected members plus waves.

        Raises:
            UnknownMemberError: If the filter names members absent from the workspace.
            ConfigurationError: If the dependency graph is invalid.
        """

        resolved = options or RunOptions()
        member_filter = resolved.member_filter
        if member_filter is not None:
            unknown = sorted(name for name in member_filter if name not in set(workspace.member_names()))
            if unknown:
                raise UnknownMemberError(unknown)
        graph = build_graph(workspace.members)
        if member_filter is not None:
            excluded = sorted(name for name in member_filter if name not in graph)
            if excluded:
                warn(
                    f"Ignoring disabled member(s): {', '.join(excluded)}",
                    use_emoji=self.use_emoji,
                    use_color=self.use_color,
                )
            graph = graph.restrict(member_filter)
        limit = resolved.effective_concurrency
        return ExecutionPlan(graph=graph, waves=schedule(graph, limit), concurrency_limit=limit)

    def run_command(
        self,
        workspace: Workspace,
        command_name: str,
        options: RunOptions | None = None,
        *,
        cancellation: Cancellation | None = None,
    ) -> WorkspaceResult:
        """Run ``command_name`` across ``workspace`` and aggregate the outcomes.

        Configuration problems (bad filter, dangling or cyclic dependencies,
        unreadable member configs) are raised before anything is spawned.
        Per-member problems end up in the member's :class:`Outcome`.

        Args:
            workspace: Workspace descriptor.
            command_name: Abstract command such as ``"build"``.
            options: Run options; defaults run in parallel and stop on failure.
            cancellation: Optional token allowing the caller to cancel the run.

        Returns:
            WorkspaceResult: Outcomes in wave order plus the aggregate status.
        """

        resolved = options or RunOptions()

        def run_member(executor: MemberExecutor, member: WorkspaceMember, config: ProjectConfig, cwd: Path) -> Outcome:
            return executor.execute(member, command_name, config, cwd=cwd)

        return self._run(workspace, command_name, resolved, run_member, cancellation)

    def run_script(
        self,
        workspace: Workspace,
        script_name: str,
        options: RunOptions | None = None,
        *,
        cancellation: Cancellation | None = None,
    ) -> WorkspaceResult:
        """Run the workspace script ``script_name`` in its target members.

        The script's command line runs verbatim in each member, bypassing alias
        resolution. Its ``run_parallel`` and ``continue_on_error`` flags
        override ``options``, and a non-empty ``run_in_members`` narrows the
        member filter.

        Args:
            workspace: Workspace descriptor.
            script_name: Key of ``workspace.scripts``.
            options: Base run options (timeout, concurrency, extra arguments).
            cancellation: Optional token allowing the caller to cancel the run.

        Returns:
            WorkspaceResult: Outcomes in wave order plus the aggregate status.

        Raises:
            UnknownScriptError: If the workspace defines no such script.
        """

        script = workspace.scripts.get(script_name)
        if script is None:
            raise UnknownScriptError(script_name, tuple(workspace.scripts))
        base = options or RunOptions()
        member_filter = base.member_filter
        if script.run_in_members:
            targets = frozenset(script.run_in_members)
            member_filter = targets if member_filter is None else targets & member_filter
        scripted = base.model_copy(
            update={
                "parallel": script.run_parallel,
                "continue_on_error": script.continue_on_error,
                "member_filter": member_filter,
            },
        )
        command = ResolvedCommand(script_name, script.command, AliasSource.WORKSPACE_SCRIPT)

        def run_member(executor: MemberExecutor, member: WorkspaceMember, config: ProjectConfig, cwd: Path) -> Outcome:
            return executor.execute_resolved(member, command, config, cwd=cwd)

        return self._run(workspace, script_name, scripted, run_member, cancellation)

    def build(self, workspace: Workspace, options: RunOptions | None = None) -> WorkspaceResult:
        """Run ``build`` across the workspace."""

        return self.run_command(workspace, "build", options)

    def test(self, workspace: Workspace, options: RunOptions | None = None) -> WorkspaceResult:
        """Run ``test`` across the workspace."""

        return self.run_command(workspace, "test", options)

    def _run(
        self,
        workspace: Workspace,
        label: str,
        options: RunOptions,
        run_one: _MemberRun,
        cancellation: Cancellation | None,
    ) -> WorkspaceResult:
        plan = self.plan(workspace, options)
        configs = self._load_configs(workspace, plan.graph)
        token = cancellation or Cancellation()
        executor = MemberExecutor(
            runner=self.runner,
            installer=self.installer,
            shared_environment=dict(workspace.settings.shared_environment),
            timeout_s=options.timeout_s,
            capture_output=options.capture_output,
            extra_args=options.extra_args,
            cancellation=token,
            use_emoji=self.use_emoji,
            use_color=self.use_color,
        )

        def run_member(member: WorkspaceMember) -> Outcome:
            return run_one(executor, member, configs[member.name], workspace.member_path(member))

        LOGGER.debug(
            "running %r across %d member(s) in %d wave(s), concurrency %d",
            label,
            len(plan.graph),
            len(plan.waves),
            plan.concurrency_limit,
        )
        scheduler = Scheduler(plan.graph, after_member_hook=self.after_member_hook)
        outcomes = scheduler.run(
            plan.waves,
            plan.concurrency_limit,
            run_member,
            options.failure_policy,
            cancellation=token,
        )
        return WorkspaceResult(
            command=label,
            outcomes=tuple(outcomes),
            overall_status=summarize(outcomes, continue_on_error=options.continue_on_error),
            cancelled=token.cancelled,
        )

    def _load_configs(self, workspace: Workspace, graph: DependencyGraph) -> dict[str, ProjectConfig]:
        provider = self.config_provider or WorkspaceConfigProvider(workspace, self.conventions)
        return {member.name: provider(member) for member in graph.members}


__all__ = ["ExecutionPlan", "WorkspaceOrchestrator", "summarize"]
