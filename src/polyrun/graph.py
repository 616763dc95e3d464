# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Validated dependency graph over enabled workspace members."""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass
from typing import Final

from .errors import CycleError, DanglingDependencyError, DuplicateMemberError, SelfDependencyError
from .models import WorkspaceMember

_UNVISITED: Final[int] = 0
_ON_STACK: Final[int] = 1
_DONE: Final[int] = 2


@dataclass(frozen=True, slots=True)
class DependencyGraph:
    """Index-based adjacency over workspace members.

    ``members[i]`` is node ``i``; ``dependencies[i]`` lists the indices node
    ``i`` depends on, sorted ascending. Node order follows the order members
    were declared, which is the tie-break used by the scheduler.
    """

    members: tuple[WorkspaceMember, ...]
    index: dict[str, int]
    dependencies: tuple[tuple[int, ...], ...]

    @property
    def names(self) -> tuple[str, ...]:
        """Return node names in declaration order."""

        return tuple(member.name for member in self.members)

    def __len__(self) -> int:
        return len(self.members)

    def __contains__(self, name: object) -> bool:
        return name in self.index

    def member(self, name: str) -> WorkspaceMember:
        """Return the member registered under ``name``."""

        return self.members[self.index[name]]

    def dependencies_of(self, name: str) -> tuple[str, ...]:
        """Return the direct dependencies of ``name`` in declaration order."""

        return tuple(self.members[dep].name for dep in self.dependencies[self.index[name]])

    def dependents(self) -> tuple[tuple[int, ...], ...]:
        """Return the reverse adjacency: for each node, the nodes depending on it."""

        reverse: list[list[int]] = [[] for _ in self.members]
        for node, deps in enumerate(self.dependencies):
            for dep in deps:
                reverse[dep].append(node)
        return tuple(tuple(entries) for entries in reverse)

    def restrict(self, names: Collection[str]) -> DependencyGraph:
        """Return the subgraph induced by ``names``.

        Edges leading outside the selection are dropped; those dependencies are
        treated as satisfied by whatever ran before this invocation.

        Args:
            names: Node names to keep; every name must exist in the graph.

        Returns:
            DependencyGraph: Subgraph preserving declaration order.
        """

        wanted = set(names)
        kept = [member for member in self.members if member.name in wanted]
        return _assemble(kept, restrict_to=wanted)


def build_graph(members: Sequence[WorkspaceMember]) -> DependencyGraph:
    """Return the validated dependency graph for ``members``.

    Only enabled members become nodes. Every structural problem is reported
    before the caller can start executing anything.

    Args:
        members: Workspace members in declaration order.

    Returns:
        DependencyGraph: Acyclic graph over the enabled members.

    Raises:
        DuplicateMemberError: If two members share a name.
        SelfDependencyError: If a member depends on itself.
        DanglingDependencyError: If a dependency names a disabled or unknown member.
        CycleError: If the dependencies form a cycle.
    """

    seen: set[str] = set()
    for member in members:
        if member.name in seen:
            raise DuplicateMemberError(member.name)
        seen.add(member.name)
    for member in members:
        if member.name in member.depends_on:
            raise SelfDependencyError(member.name)

    disabled = {member.name for member in members if not member.enabled}
    enabled = [member for member in members if member.enabled]
    enabled_names = {member.name for member in enabled}
    for member in enabled:
        for dependency in sorted(member.depends_on):
            if dependency not in enabled_names:
                raise DanglingDependencyError(member.name, dependency, disabled=dependency in disabled)

    graph = _assemble(enabled, restrict_to=enabled_names)
    _check_acyclic(graph)
    return graph


def _assemble(members: Sequence[WorkspaceMember], *, restrict_to: Collection[str]) -> DependencyGraph:
    index = {member.name: position for position, member in enumerate(members)}
    dependencies = tuple(
        tuple(sorted(index[name] for name in member.depends_on if name in restrict_to)) for member in members
    )
    return DependencyGraph(members=tuple(members), index=index, dependencies=dependencies)


def _check_acyclic(graph: DependencyGraph) -> None:
    """Raise :class:`CycleError` when ``graph`` contains a cycle.

    Iterative depth-first search with an explicit on-stack marker, so deep
    chains do not hit the interpreter recursion limit.
    """

    state = [_UNVISITED] * len(graph.members)
    for root in range(len(graph.members)):
        if state[root] != _UNVISITED:
            continue
        path: list[int] = [root]
        cursors: list[int] = [0]
        state[root] = _ON_STACK
        while path:
            node = path[-1]
            deps = graph.dependencies[node]
            if cursors[-1] >= len(deps):
                state[node] = _DONE
                path.pop()
                cursors.pop()
                continue
            nxt = deps[cursors[-1]]
            cursors[-1] += 1
            if state[nxt] == _ON_STACK:
                start = path.index(nxt)
                cycle = [graph.members[i].name for i in path[start:]]
                cycle.append(graph.members[nxt].name)
                raise CycleError(cycle)
            if state[nxt] == _UNVISITED:
                state[nxt] = _ON_STACK
                path.append(nxt)
                cursors.append(0)


__all__ = ["DependencyGraph", "build_graph"]
