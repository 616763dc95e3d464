# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Tests for wave scheduling and bounded-parallel execution."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable

import pytest

from polyrun.graph import DependencyGraph, build_graph
from polyrun.models import FailurePolicy, Outcome, OutcomeReason, OutcomeStatus, WorkspaceMember
from polyrun.process import Cancellation
from polyrun.scheduler import ExecutionWave, Scheduler, schedule


class _RecordingAction:
    """Member action tracking invocation order and peak concurrency."""

    def __init__(self, *, failing: Iterable[str] = (), delay: float = 0.0) -> None:
        self.failing = set(failing)
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self, member: WorkspaceMember) -> Outcome:
        with self._lock:
            self.calls.append(member.name)
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
        finally:
            with self._lock:
                self.active -= 1
        if member.name in self.failing:
            return Outcome(
                member=member.name,
                exit_code=1,
                status=OutcomeStatus.FAILED,
                reason=OutcomeReason.NON_ZERO_EXIT,
            )
        return Outcome(member=member.name, exit_code=0, status=OutcomeStatus.SUCCESS)


def _run(
    graph: DependencyGraph,
    action: Callable[[WorkspaceMember], Outcome],
    *,
    limit: int = 4,
    policy: FailurePolicy | None = None,
    cancellation: Cancellation | None = None,
    hook: Callable[[Outcome], None] | None = None,
) -> list[Outcome]:
    scheduler = Scheduler(graph, after_member_hook=hook)
    return scheduler.run(
        scheduler.schedule(limit),
        limit,
        action,
        policy or FailurePolicy(),
        cancellation=cancellation,
    )


def _statuses(outcomes: list[Outcome]) -> dict[str, OutcomeStatus]:
    return {outcome.member: outcome.status for outcome in outcomes}


def test_linear_chain_produces_one_member_per_wave(make_member) -> None:
    graph = build_graph([make_member("A"), make_member("B", "A"), make_member("C", "B"), make_member("D", "C")])

    waves = schedule(graph, 4)

    assert waves == tuple(ExecutionWave(index, (name,)) for index, name in enumerate("ABCD"))


def test_waves_cover_members_once_after_dependencies(make_member) -> None:
    members = [
        make_member("web", "api", "ui"),
        make_member("api", "core"),
        make_member("ui"),
        make_member("core"),
        make_member("cli", "core"),
    ]
    graph = build_graph(members)

    waves = schedule(graph, 2)

    position = {name: wave.index for wave in waves for name in wave.members}
    assert sorted(position) == sorted(member.name for member in members)
    for member in members:
        assert all(position[dep] < position[member.name] for dep in member.depends_on)
    assert waves[0].members == ("ui", "core")


def test_concurrency_limit_must_be_positive(make_member) -> None:
    graph = build_graph([make_member("a")])

    with pytest.raises(ValueError):
        schedule(graph, 0)


def test_sequential_run_follows_wave_then_declaration_order(make_member) -> None:
    graph = build_graph([make_member("c"), make_member("b"), make_member("a", "c"), make_member("d", "b")])
    action = _RecordingAction()

    outcomes = _run(graph, action, limit=1)

    assert action.calls == ["c", "b", "a", "d"]
    assert [outcome.member for outcome in outcomes] == ["c", "b", "a", "d"]
    assert action.peak == 1


def test_concurrency_never_exceeds_limit(make_member) -> None:
    graph = build_graph([make_member(f"m{index}") for index in range(8)])
    action = _RecordingAction(delay=0.05)

    outcomes = _run(graph, action, limit=3)

    assert len(outcomes) == 8
    assert 1 < action.peak <= 3


def test_chain_runs_strictly_sequentially(make_member) -> None:
    graph = build_graph([make_member("A"), make_member("B", "A"), make_member("C", "B"), make_member("D", "C")])
    action = _RecordingAction(delay=0.01)

    _run(graph, action, limit=4)

    assert action.calls == ["A", "B", "C", "D"]
    assert action.peak == 1


def test_failure_stops_later_waves(make_member) -> None:
    graph = build_graph([make_member("A"), make_member("B", "A"), make_member("C", "A")])
    action = _RecordingAction(failing={"A"})

    outcomes = _run(graph, action)

    assert action.calls == ["A"]
    assert _statuses(outcomes) == {
        "A": OutcomeStatus.FAILED,
        "B": OutcomeStatus.SKIPPED,
        "C": OutcomeStatus.SKIPPED,
    }
    assert {outcome.reason for outcome in outcomes[1:]} == {OutcomeReason.ABORTED}


def test_siblings_in_failing_wave_still_report(make_member) -> None:
    graph = build_graph([make_member("a"), make_member("b"), make_member("c", "a")])
    action = _RecordingAction(failing={"a"}, delay=0.01)

    outcomes = _run(graph, action)

    statuses = _statuses(outcomes)
    assert statuses["b"] is OutcomeStatus.SUCCESS
    assert statuses["c"] is OutcomeStatus.SKIPPED
    assert "c" not in action.calls


def test_continue_on_error_runs_everything(make_member) -> None:
    graph = build_graph([make_member("a"), make_member("b", "a"), make_member("c")])
    action = _RecordingAction(failing={"a"})

    outcomes = _run(graph, action, policy=FailurePolicy(continue_on_error=True))

    assert sorted(action.calls) == ["a", "b", "c"]
    assert _statuses(outcomes)["b"] is OutcomeStatus.SUCCESS


def test_skip_dependents_cascades_transitively(make_member) -> None:
    graph = build_graph(
        [make_member("a"), make_member("b", "a"), make_member("c", "b"), make_member("x"), make_member("y", "x")],
    )
    action = _RecordingAction(failing={"a"})

    outcomes = _run(
        graph,
        action,
        policy=FailurePolicy(continue_on_error=True, skip_dependents_on_failure=True),
    )

    by_member = {outcome.member: outcome for outcome in outcomes}
    assert by_member["b"].reason is OutcomeReason.DEPENDENCY_FAILED
    assert by_member["c"].reason is OutcomeReason.DEPENDENCY_FAILED
    assert by_member["y"].status is OutcomeStatus.SUCCESS
    assert sorted(action.calls) == ["a", "x", "y"]


def test_hook_sees_every_outcome(make_member) -> None:
    graph = build_graph([make_member("a"), make_member("b", "a")])
    seen: list[str] = []

    _run(graph, _RecordingAction(failing={"a"}), hook=lambda outcome: seen.append(outcome.member))

    assert seen == ["a", "b"]


def test_cancelled_token_skips_remaining_members(make_member) -> None:
    graph = build_graph([make_member("a"), make_member("b", "a")])
    token = Cancellation()

    def cancelling_action(member: WorkspaceMember) -> Outcome:
        token.cancel()
        return Outcome(member=member.name, exit_code=0, status=OutcomeStatus.SUCCESS)

    outcomes = _run(graph, cancelling_action, cancellation=token, policy=FailurePolicy(continue_on_error=True))

    assert outcomes[0].status is OutcomeStatus.SUCCESS
    assert outcomes[1].status is OutcomeStatus.SKIPPED
    assert outcomes[1].reason is OutcomeReason.CANCELLED


def test_queued_members_skip_after_cancel(make_member) -> None:
    graph = build_graph([make_member("a"), make_member("b"), make_member("c")])
    token = Cancellation()
    calls: list[str] = []

    def action(member: WorkspaceMember) -> Outcome:
        calls.append(member.name)
        token.cancel()
        return Outcome(member=member.name, exit_code=0, status=OutcomeStatus.SUCCESS)

    outcomes = _run(graph, action, limit=1, cancellation=token)

    assert calls == ["a"]
    assert [outcome.reason for outcome in outcomes[1:]] == [OutcomeReason.CANCELLED, OutcomeReason.CANCELLED]


def test_interrupt_in_hook_cancels_in_flight_members(make_member) -> None:
    graph = build_graph([make_member("fast"), make_member("slow"), make_member("later", "fast")])
    token = Cancellation()
    seen: list[str] = []

    def action(member: WorkspaceMember) -> Outcome:
        if member.name == "slow":
            deadline = time.monotonic() + 10
            while not token.cancelled and time.monotonic() < deadline:
                time.sleep(0.01)
            return Outcome(
                member=member.name,
                exit_code=-15,
                status=OutcomeStatus.FAILED,
                reason=OutcomeReason.CANCELLED,
            )
        return Outcome(member=member.name, exit_code=0, status=OutcomeStatus.SUCCESS)

    def hook(outcome: Outcome) -> None:
        seen.append(outcome.member)
        if outcome.member == "fast":
            raise KeyboardInterrupt

    outcomes = _run(graph, action, limit=2, cancellation=token, hook=hook)

    assert token.cancelled
    assert [outcome.member for outcome in outcomes] == ["fast", "slow", "later"]
    assert outcomes[0].status is OutcomeStatus.SUCCESS
    assert outcomes[1].reason is OutcomeReason.CANCELLED
    assert outcomes[2].status is OutcomeStatus.SKIPPED
    assert outcomes[2].reason is OutcomeReason.CANCELLED
    assert seen == ["fast", "slow", "later"]


def test_interrupt_during_submission_skips_unsubmitted_members(make_member, monkeypatch: pytest.MonkeyPatch) -> None:
    graph = build_graph([make_member("a"), make_member("b"), make_member("c", "a")])
    token = Cancellation()
    calls: list[str] = []

    def action(member: WorkspaceMember) -> Outcome:
        calls.append(member.name)
        return Outcome(member=member.name, exit_code=0, status=OutcomeStatus.SUCCESS)

    real_member = DependencyGraph.member

    def interrupting_member(self: DependencyGraph, name: str) -> WorkspaceMember:
        if name == "b":
            raise KeyboardInterrupt
        return real_member(self, name)

    scheduler = Scheduler(graph)
    waves = scheduler.schedule(2)
    monkeypatch.setattr(DependencyGraph, "member", interrupting_member)
    outcomes = scheduler.run(waves, 2, action, FailurePolicy(), cancellation=token)

    assert token.cancelled
    assert "b" not in calls
    by_member = {outcome.member: outcome for outcome in outcomes}
    assert by_member["b"].status is OutcomeStatus.SKIPPED
    assert by_member["b"].reason is OutcomeReason.CANCELLED
    assert by_member["c"].reason is OutcomeReason.CANCELLED
