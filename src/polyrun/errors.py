# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Exception hierarchy shared by the resolver, graph builder and orchestrator."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class PolyrunError(RuntimeError):
    """Base class for every error raised by polyrun."""


class ConfigurationError(PolyrunError):
    """Raised when workspace or project configuration is invalid.

    Configuration errors are always fatal and are raised before any member
    command is spawned.
    """


class DuplicateMemberError(ConfigurationError):
    """Raised when two workspace members share a name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Workspace member '{name}' is declared more than once")
        self.name = name


class SelfDependencyError(ConfigurationError):
    """Raised when a member lists itself in ``depends_on``."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Workspace member '{name}' depends on itself")
        self.name = name


class DanglingDependencyError(ConfigurationError):
    """Raised when ``depends_on`` names a disabled or unknown member."""

    def __init__(self, member: str, dependency: str, *, disabled: bool) -> None:
        """Initialise the error with the offending edge.

        Args:
            member: Member declaring the dependency.
            dependency: Name referenced by ``depends_on``.
            disabled: ``True`` when ``dependency`` exists but is disabled.
        """

        state = "disabled" if disabled else "unknown"
        super().__init__(f"Workspace member '{member}' depends on {state} member '{dependency}'")
        self.member = member
        self.dependency = dependency
        self.disabled = disabled


class CycleError(ConfigurationError):
    """Raised when the member dependency graph contains a cycle."""

    def __init__(self, path: Sequence[str]) -> None:
        """Initialise the error with the detected cycle.

        Args:
            path: Member names forming the cycle; the first name is repeated at
                the end so the loop reads naturally.
        """

        self.path: tuple[str, ...] = tuple(path)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.path)}")


class UnknownMemberError(ConfigurationError):
    """Raised when a member filter names members absent from the workspace."""

    def __init__(self, names: Sequence[str]) -> None:
        deduplicated = tuple(dict.fromkeys(names))
        super().__init__(f"Unknown workspace member(s) requested: {', '.join(deduplicated)}")
        self.names: tuple[str, ...] = deduplicated


class UnknownScriptError(ConfigurationError):
    """Raised when a workspace script name is not defined."""

    def __init__(self, name: str, available: Sequence[str] = ()) -> None:
        known = ", ".join(sorted(available)) or "none"
        super().__init__(f"Workspace script '{name}' is not defined (available: {known})")
        self.name = name
        self.available: tuple[str, ...] = tuple(available)


class ConfigLoadError(ConfigurationError):
    """Raised when a project or workspace descriptor cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Failed to load {path}: {reason}")
        self.path = path
        self.reason = reason


class CommandNotFoundError(PolyrunError, LookupError):
    """Raised when a command name resolves to no alias, script or convention."""

    def __init__(self, command: str) -> None:
        super().__init__(f"No alias, script or convention found for command '{command}'")
        self.command = command


__all__ = [
    "CommandNotFoundError",
    "ConfigLoadError",
    "ConfigurationError",
    "CycleError",
    "DanglingDependencyError",
    "DuplicateMemberError",
    "PolyrunError",
    "SelfDependencyError",
    "UnknownMemberError",
    "UnknownScriptError",
]
