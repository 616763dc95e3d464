# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Resolve abstract command names into concrete command lines."""

from __future__ import annotations

import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from .errors import CommandNotFoundError
from .models import ProjectConfig


class AliasSource(str, Enum):
    """Configuration layer that produced a resolved command."""

    CUSTOM_ALIAS = "custom_alias"
    SCRIPT = "script"
    CONVENTION = "convention"
    WORKSPACE_SCRIPT = "workspace_script"


@dataclass(frozen=True, slots=True)
class ResolvedCommand:
    """Concrete command line produced for an abstract command name."""

    name: str
    command: str
    source: AliasSource

    def argv(self, extra_args: Sequence[str] = ()) -> list[str]:
        """Return the command split into arguments with ``extra_args`` appended.

        Args:
            extra_args: Caller-supplied arguments forwarded verbatim.

        Returns:
            list[str]: Argument vector suitable for a shell-free spawn.

        Raises:
            ValueError: If the command line has unbalanced quotes.
        """

        return [*shlex.split(self.command), *extra_args]

    def display(self, extra_args: Sequence[str] = ()) -> str:
        """Return the command line as it will be executed."""

        if not extra_args:
            return self.command
        return f"{self.command} {shlex.join(extra_args)}"


def resolve(command_name: str, config: ProjectConfig) -> ResolvedCommand:
    """Return the concrete command for ``command_name`` under ``config``.

    Lookup order is custom aliases, then declared scripts, then the
    package-manager convention table; the first hit wins. Custom aliases and
    conventions are only consulted when ``config.enable_aliases`` is set.
    Values are returned verbatim, including any unexpanded template markers.

    Args:
        command_name: Abstract command such as ``"test"``.
        config: Project configuration carrying scripts, aliases and the
            convention table.

    Returns:
        ResolvedCommand: Command line and the layer it came from.

    Raises:
        CommandNotFoundError: If no layer defines ``command_name``.
    """

    if config.enable_aliases and command_name in config.custom_aliases:
        return ResolvedCommand(command_name, config.custom_aliases[command_name], AliasSource.CUSTOM_ALIAS)
    if command_name in config.scripts:
        return ResolvedCommand(command_name, config.scripts[command_name], AliasSource.SCRIPT)
    if config.enable_aliases:
        conventional = config.conventions.lookup(config.package_manager, command_name)
        if conventional is not None:
            return ResolvedCommand(command_name, conventional, AliasSource.CONVENTION)
    raise CommandNotFoundError(command_name)


def available_commands(config: ProjectConfig) -> dict[str, ResolvedCommand]:
    """Return every command name resolvable under ``config``.

    Args:
        config: Project configuration to inspect.

    Returns:
        dict[str, ResolvedCommand]: Winning resolution for each name, sorted by name.
    """

    names: set[str] = set(config.scripts)
    if config.enable_aliases:
        names.update(config.custom_aliases)
        names.update(config.conventions.for_package_manager(config.package_manager))
    return {name: resolve(name, config) for name in sorted(names)}


__all__ = ["AliasSource", "ResolvedCommand", "available_commands", "resolve"]
