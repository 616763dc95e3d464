# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Wave scheduling and bounded-parallel execution across a dependency graph."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from .errors import CycleError
from .graph import DependencyGraph
from .models import FailurePolicy, Outcome, OutcomeReason, OutcomeStatus, WorkspaceMember
from .process import Cancellation

LOGGER = logging.getLogger(__name__)

MemberAction = Callable[[WorkspaceMember], Outcome]
OutcomeHook = Callable[[Outcome], None]


@dataclass(frozen=True, slots=True)
class ExecutionWave:
    """Members that may run together once every earlier wave has finished."""

    index: int
    members: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.members)


def schedule(graph: DependencyGraph, concurrency_limit: int) -> tuple[ExecutionWave, ...]:
    """Return the execution waves for ``graph``.

    A member lands in wave *k* when its deepest dependency sits in wave
    *k - 1*. Members inside a wave keep their declaration order. The
    concurrency limit does not change wave contents; it only bounds how many
    members of a wave run at once.

    Args:
        graph: Validated dependency graph.
        concurrency_limit: Maximum number of members running at once.

    Returns:
        tuple[ExecutionWave, ...]: Waves covering every node exactly once.

    Raises:
        ValueError: If ``concurrency_limit`` is below one.
        CycleError: If ``graph`` was not acyclic.
    """

    if concurrency_limit < 1:
        raise ValueError("concurrency_limit must be at least 1")
    remaining = [len(deps) for deps in graph.dependencies]
    dependents = graph.dependents()
    ready = [node for node, count in enumerate(remaining) if count == 0]
    waves: list[ExecutionWave] = []
    placed = 0
    while ready:
        waves.append(ExecutionWave(index=len(waves), members=tuple(graph.members[node].name for node in ready)))
        placed += len(ready)
        unlocked: list[int] = []
        for node in ready:
            for dependent in dependents[node]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    unlocked.append(dependent)
        ready = sorted(unlocked)
    if placed != len(graph):
        stuck = [graph.members[node].name for node, count in enumerate(remaining) if count > 0]
        raise CycleError(stuck)
    return tuple(waves)


@dataclass(slots=True)
class _RunState:
    """Mutable bookkeeping for one :meth:`Scheduler.run` call."""

    outcomes: dict[str, Outcome] = field(default_factory=dict)
    ordered: list[Outcome] = field(default_factory=list)
    abort_reason: OutcomeReason | None = None

    def record(self, wave: ExecutionWave, results: Mapping[str, Outcome]) -> None:
        for name in wave.members:
            outcome = results[name]
            self.outcomes[name] = outcome
            self.ordered.append(outcome)


@dataclass(slots=True)
class Scheduler:
    """Drive a member-level action across the waves of a dependency graph."""

    graph: DependencyGraph
    after_member_hook: OutcomeHook | None = None

    def schedule(self, concurrency_limit: int) -> tuple[ExecutionWave, ...]:
        """Return the waves for the bound graph."""

        return schedule(self.graph, concurrency_limit)

    def run(
        self,
        waves: Sequence[ExecutionWave],
        concurrency_limit: int,
        action: MemberAction,
        policy: FailurePolicy,
        *,
        cancellation: Cancellation | None = None,
    ) -> list[Outcome]:
        """Execute ``action`` for every scheduled member.

        Waves run strictly one after another. Inside a wave up to
        ``concurrency_limit`` members run at once and the rest queue in
        declaration order. When ``policy.continue_on_error`` is false, a failure
        lets already-started siblings finish and every later member is reported
        as skipped. With ``policy.skip_dependents_on_failure`` a member whose
        dependency did not succeed is skipped without invocation, which
        cascades to its own dependents.

        Args:
            waves: Waves produced by :func:`schedule`.
            concurrency_limit: Maximum number of members running at once.
            action: Callable producing an :class:`Outcome` for a member.
            policy: Failure handling policy.
            cancellation: Token used to stop the run; one is created when omitted.

        Returns:
            list[Outcome]: Outcomes in wave order, then declaration order.

        Raises:
            ValueError: If ``concurrency_limit`` is below one.
        """

        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        token = cancellation or Cancellation()
        semaphore = threading.BoundedSemaphore(concurrency_limit)
        state = _RunState()
        with ThreadPoolExecutor(max_workers=concurrency_limit, thread_name_prefix="polyrun") as pool:
            for wave in waves:
                if token.cancelled:
                    state.abort_reason = OutcomeReason.CANCELLED
                if state.abort_reason is not None:
                    state.record(wave, self._skip_wave(wave, state.abort_reason))
                    continue
                results = self._run_wave(wave, pool, semaphore, action, policy, state, token)
                state.record(wave, results)
                if token.cancelled:
                    state.abort_reason = OutcomeReason.CANCELLED
                elif not policy.continue_on_error and any(outcome.failed for outcome in results.values()):
                    LOGGER.debug("wave %d failed; skipping %d later wave(s)", wave.index, len(waves) - wave.index - 1)
                    state.abort_reason = OutcomeReason.ABORTED
        return state.ordered

    def _run_wave(
        self,
        wave: ExecutionWave,
        pool: ThreadPoolExecutor,
        semaphore: threading.BoundedSemaphore,
        action: MemberAction,
        policy: FailurePolicy,
        state: _RunState,
        token: Cancellation,
    ) -> dict[str, Outcome]:
        results: dict[str, Outcome] = {}
        futures: dict[str, Future[Outcome]] = {}
        try:
            for name in wave.members:
                blocker = self._failed_dependency(name, state.outcomes) if policy.skip_dependents_on_failure else None
                if blocker is not None:
                    outcome = Outcome.skipped(
                        name,
                        OutcomeReason.DEPENDENCY_FAILED,
                        f"dependency '{blocker}' did not succeed",
                    )
                    results[name] = outcome
                    self._notify(outcome)
                    continue
                futures[name] = pool.submit(_guarded_action, action, self.graph.member(name), semaphore, token)
            LOGGER.debug("wave %d: %d member(s) submitted", wave.index, len(futures))

            pending: set[Future[Outcome]] = set(futures.values())
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    outcome = future.result()
                    results[outcome.member] = outcome
                    self._notify(outcome)
        except KeyboardInterrupt:
            LOGGER.debug("interrupt received; cancelling in-flight members")
            token.cancel()
            self._settle_after_interrupt(wave, futures, results)
        return results

    def _settle_after_interrupt(
        self,
        wave: ExecutionWave,
        futures: Mapping[str, Future[Outcome]],
        results: dict[str, Outcome],
    ) -> None:
        """Record an outcome for every wave member still missing one after an interrupt."""

        for name in wave.members:
            if name in results:
                continue
            future = futures.get(name)
            if future is None:
                outcome = Outcome.skipped(name, OutcomeReason.CANCELLED, "run cancelled before start")
            else:
                try:
                    outcome = future.result()
                except KeyboardInterrupt:
                    outcome = Outcome(
                        member=name,
                        status=OutcomeStatus.FAILED,
                        reason=OutcomeReason.CANCELLED,
                        message="interrupted",
                    )
            results[name] = outcome
            self._notify(outcome)

    def _failed_dependency(self, name: str, outcomes: Mapping[str, Outcome]) -> str | None:
        for dependency in self.graph.dependencies_of(name):
            prior = outcomes.get(dependency)
            if prior is not None and prior.status is not OutcomeStatus.SUCCESS:
                return dependency
        return None

    def _skip_wave(self, wave: ExecutionWave, reason: OutcomeReason) -> dict[str, Outcome]:
        message = "run cancelled" if reason is OutcomeReason.CANCELLED else "an earlier wave failed"
        results = {name: Outcome.skipped(name, reason, message) for name in wave.members}
        for name in wave.members:
            self._notify(results[name])
        return results

    def _notify(self, outcome: Outcome) -> None:
        if self.after_member_hook is not None:
            self.after_member_hook(outcome)


def _guarded_action(
    action: MemberAction,
    member: WorkspaceMember,
    semaphore: threading.BoundedSemaphore,
    token: Cancellation,
) -> Outcome:
    with semaphore:
        if token.cancelled:
            return Outcome.skipped(member.name, OutcomeReason.CANCELLED, "run cancelled before start")
        return action(member)


__all__ = ["ExecutionWave", "MemberAction", "OutcomeHook", "Scheduler", "schedule"]
