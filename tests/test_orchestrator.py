# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Integration tests for workspace orchestration."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from pathlib import Path

import pytest

from polyrun import orchestrator as orchestrator_module
from polyrun.errors import CycleError, DanglingDependencyError, UnknownMemberError, UnknownScriptError
from polyrun.models import (
    Outcome,
    OutcomeReason,
    OutcomeStatus,
    OverallStatus,
    ProjectConfig,
    RunOptions,
    Workspace,
    WorkspaceMember,
    WorkspaceScript,
    WorkspaceSettings,
)
from polyrun.orchestrator import WorkspaceOrchestrator, summarize
from polyrun.process import CommandOptions, ProcessResult


class _MemberRunner:
    """Fake runner keyed on the member directory name."""

    def __init__(self, failing: Iterable[str] = ()) -> None:
        self.failing = set(failing)
        self.calls: list[tuple[str, list[str]]] = []
        self.envs: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()

    def __call__(self, args: Sequence[str], *, options: CommandOptions | None = None) -> ProcessResult:
        assert options is not None and options.cwd is not None
        name = options.cwd.name
        with self._lock:
            self.calls.append((name, list(args)))
            self.envs[name] = dict(options.env or {})
        code = 1 if name in self.failing else 0
        return ProcessResult(args=tuple(args), returncode=code, stdout=f"{name}\n", stderr="")

    @property
    def invoked(self) -> list[str]:
        return [name for name, _ in self.calls]


def _provider(member: WorkspaceMember) -> ProjectConfig:
    return ProjectConfig(
        name=member.name,
        language="javascript",
        package_manager="npm",
        scripts={"build": f"npm run build:{member.name}"},
        environment={"MEMBER": member.name},
    )


def _workspace(tmp_path: Path, *members: WorkspaceMember, shared: dict[str, str] | None = None) -> Workspace:
    return Workspace(
        name="demo",
        root=tmp_path,
        members=list(members),
        settings=WorkspaceSettings(shared_environment=shared or {}),
    )


def _orchestrator(runner: _MemberRunner) -> WorkspaceOrchestrator:
    return WorkspaceOrchestrator(config_provider=_provider, runner=runner, use_emoji=False, use_color=False)


@pytest.fixture(autouse=True)
def _quiet_warnings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("polyrun.executor.warn", lambda *_args, **_kwargs: None)


def test_failed_root_blocks_dependents(make_member, tmp_path: Path) -> None:
    runner = _MemberRunner(failing={"A"})
    workspace = _workspace(tmp_path, make_member("A"), make_member("B", "A"), make_member("C", "A"))

    result = _orchestrator(runner).build(workspace)

    assert runner.invoked == ["A"]
    assert result.overall_status is OverallStatus.FAILED
    assert result.outcome_for("A").status is OutcomeStatus.FAILED
    for name in ("B", "C"):
        assert result.outcome_for(name).status is OutcomeStatus.SKIPPED
    assert not result.cancelled


def test_continue_on_error_reports_partial_failure(make_member, tmp_path: Path) -> None:
    runner = _MemberRunner(failing={"B"})
    workspace = _workspace(tmp_path, make_member("A"), make_member("B", "A"), make_member("C", "A"))

    result = _orchestrator(runner).build(workspace, RunOptions(continue_on_error=True))

    assert sorted(runner.invoked) == ["A", "B", "C"]
    assert result.overall_status is OverallStatus.PARTIAL_FAILURE
    assert [outcome.member for outcome in result.outcomes] == ["A", "B", "C"]


def test_cycle_spawns_nothing(make_member, tmp_path: Path) -> None:
    runner = _MemberRunner()
    workspace = _workspace(tmp_path, make_member("a", "b"), make_member("b", "a"))

    with pytest.raises(CycleError):
        _orchestrator(runner).run_command(workspace, "build")

    assert runner.calls == []


def test_dangling_dependency_spawns_nothing(make_member, tmp_path: Path) -> None:
    runner = _MemberRunner()
    workspace = _workspace(tmp_path, make_member("old", enabled=False), make_member("new", "old"))

    with pytest.raises(DanglingDependencyError):
        _orchestrator(runner).run_command(workspace, "build")

    assert runner.calls == []


def test_unknown_filter_names_are_rejected(make_member, tmp_path: Path) -> None:
    workspace = _workspace(tmp_path, make_member("a"))

    with pytest.raises(UnknownMemberError) as excinfo:
        _orchestrator(_MemberRunner()).run_command(
            workspace,
            "build",
            RunOptions(member_filter=["ghost", "a", "phantom"]),
        )

    assert excinfo.value.names == ("ghost", "phantom")


def test_filter_runs_only_selected_members(make_member, tmp_path: Path) -> None:
    runner = _MemberRunner()
    workspace = _workspace(tmp_path, make_member("a"), make_member("b", "a"), make_member("c", "b"))

    result = _orchestrator(runner).build(workspace, RunOptions(member_filter={"b", "c"}, parallel=False))

    assert runner.invoked == ["b", "c"]
    assert result.outcome_for("a") is None
    assert result.overall_status is OverallStatus.SUCCESS


def test_filter_naming_disabled_member_warns(make_member, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    warnings: list[str] = []
    monkeypatch.setattr(orchestrator_module, "warn", lambda message, **_: warnings.append(message))
    runner = _MemberRunner()
    workspace = _workspace(tmp_path, make_member("a"), make_member("docs", enabled=False))

    result = _orchestrator(runner).build(workspace, RunOptions(member_filter={"a", "docs"}))

    assert runner.invoked == ["a"]
    assert len(result.outcomes) == 1
    assert warnings and "docs" in warnings[0]


def test_sequential_mode_uses_single_slot(make_member, tmp_path: Path) -> None:
    workspace = _workspace(tmp_path, make_member("a"), make_member("b"), make_member("c"))

    plan = _orchestrator(_MemberRunner()).plan(workspace, RunOptions(parallel=False, concurrency_limit=8))

    assert plan.concurrency_limit == 1
    assert [wave.members for wave in plan.waves] == [("a", "b", "c")]


def test_environment_layers_reach_the_runner(make_member, tmp_path: Path) -> None:
    runner = _MemberRunner()
    workspace = _workspace(tmp_path, make_member("a"), shared={"CI": "1", "MEMBER": "shared"})

    _orchestrator(runner).build(workspace)

    assert runner.envs["a"]["CI"] == "1"
    assert runner.envs["a"]["MEMBER"] == "a"


def test_extra_args_are_forwarded(make_member, tmp_path: Path) -> None:
    runner = _MemberRunner()
    workspace = _workspace(tmp_path, make_member("a"))

    _orchestrator(runner).build(workspace, RunOptions(extra_args=("--verbose",)))

    assert runner.calls == [("a", ["npm", "run", "build:a", "--verbose"])]


def test_missing_command_is_member_scoped(make_member, tmp_path: Path) -> None:
    runner = _MemberRunner()
    workspace = _workspace(tmp_path, make_member("a"), make_member("b"))

    result = _orchestrator(runner).run_command(workspace, "deploy", RunOptions(continue_on_error=True))

    assert runner.calls == []
    assert {outcome.reason for outcome in result.outcomes} == {OutcomeReason.NOT_FOUND}
    assert result.overall_status is OverallStatus.FAILED


def test_hook_receives_outcomes(make_member, tmp_path: Path) -> None:
    seen: list[str] = []
    orchestrator = WorkspaceOrchestrator(
        config_provider=_provider,
        runner=_MemberRunner(),
        after_member_hook=lambda outcome: seen.append(outcome.member),
    )

    orchestrator.test(_workspace(tmp_path, make_member("a"), make_member("b", "a")), RunOptions())

    assert seen == ["a", "b"]


def test_default_provider_reads_member_configs(tmp_path: Path) -> None:
    (tmp_path / "svc").mkdir()
    (tmp_path / "svc" / "polyrun.toml").write_text(
        'language = "python"\n[scripts]\nbuild = "make svc"\n',
        encoding="utf-8",
    )
    (tmp_path / "lib").mkdir()
    workspace = Workspace(
        name="demo",
        root=tmp_path,
        members=[
            WorkspaceMember(name="lib", path=Path("lib"), language="rust"),
            WorkspaceMember(name="svc", path=Path("svc"), language="python", depends_on=["lib"]),
        ],
    )
    runner = _MemberRunner()

    WorkspaceOrchestrator(runner=runner).build(workspace, RunOptions(parallel=False))

    assert runner.calls == [("lib", ["cargo", "build"]), ("svc", ["make", "svc"])]


@pytest.mark.parametrize(
    ("statuses", "continue_on_error", "expected"),
    [
        ((), False, OverallStatus.SUCCESS),
        ((OutcomeStatus.SUCCESS, OutcomeStatus.SUCCESS), False, OverallStatus.SUCCESS),
        ((OutcomeStatus.SUCCESS, OutcomeStatus.FAILED), True, OverallStatus.PARTIAL_FAILURE),
        ((OutcomeStatus.SUCCESS, OutcomeStatus.FAILED), False, OverallStatus.FAILED),
        ((OutcomeStatus.FAILED, OutcomeStatus.SKIPPED), True, OverallStatus.FAILED),
    ],
)
def test_summarize(statuses: tuple[OutcomeStatus, ...], continue_on_error: bool, expected: OverallStatus) -> None:
    outcomes = [Outcome(member=f"m{index}", status=status) for index, status in enumerate(statuses)]

    assert summarize(outcomes, continue_on_error=continue_on_error) is expected


def _scripted(tmp_path: Path, scripts: dict[str, WorkspaceScript], *members: WorkspaceMember) -> Workspace:
    return Workspace(name="demo", root=tmp_path, members=list(members), scripts=scripts)


def test_script_runs_verbatim_in_target_members(make_member, tmp_path: Path) -> None:
    runner = _MemberRunner()
    script = WorkspaceScript(command="prettier --write .", run_in_members=("a", "c"), run_parallel=False)
    workspace = _scripted(tmp_path, {"fmt": script}, make_member("a"), make_member("b"), make_member("c"))

    result = _orchestrator(runner).run_script(workspace, "fmt", RunOptions(extra_args=("--check",)))

    expected = ["prettier", "--write", ".", "--check"]
    assert runner.calls == [("a", expected), ("c", expected)]
    assert result.command == "fmt"
    assert result.outcome_for("b") is None
    assert result.outcome_for("a").command == "prettier --write . --check"
    assert result.overall_status is OverallStatus.SUCCESS


def test_script_failure_policy_overrides_options(make_member, tmp_path: Path) -> None:
    runner = _MemberRunner(failing={"a"})
    script = WorkspaceScript(command="make lint", run_parallel=False, continue_on_error=True)
    workspace = _scripted(tmp_path, {"lint": script}, make_member("a"), make_member("b", "a"))

    result = _orchestrator(runner).run_script(workspace, "lint", RunOptions(continue_on_error=False))

    assert runner.invoked == ["a", "b"]
    assert result.overall_status is OverallStatus.PARTIAL_FAILURE


def test_script_targets_intersect_member_filter(make_member, tmp_path: Path) -> None:
    runner = _MemberRunner()
    script = WorkspaceScript(command="make docs", run_in_members=("a", "b"))
    workspace = _scripted(tmp_path, {"docs": script}, make_member("a"), make_member("b"), make_member("c"))

    _orchestrator(runner).run_script(workspace, "docs", RunOptions(member_filter={"b", "c"}))

    assert runner.invoked == ["b"]


def test_unknown_script_is_rejected(make_member, tmp_path: Path) -> None:
    runner = _MemberRunner()
    workspace = _scripted(tmp_path, {"fmt": WorkspaceScript(command="fmt")}, make_member("a"))

    with pytest.raises(UnknownScriptError, match="available: fmt"):
        _orchestrator(runner).run_script(workspace, "deploy")

    assert runner.calls == []


def test_default_provider_applies_workspace_defaults(tmp_path: Path) -> None:
    (tmp_path / "web").mkdir()
    (tmp_path / "web" / "package.json").write_text("{}", encoding="utf-8")
    workspace = Workspace(
        name="demo",
        root=tmp_path,
        members=[WorkspaceMember(name="web", path=Path("web"))],
        settings=WorkspaceSettings(common_scripts={"check": "tsc --noEmit"}),
    )
    runner = _MemberRunner()

    result = WorkspaceOrchestrator(runner=runner).run_command(workspace, "check")

    assert result.overall_status is OverallStatus.SUCCESS
    assert runner.calls == [("web", ["tsc", "--noEmit"])]
