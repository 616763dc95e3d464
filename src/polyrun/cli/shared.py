# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Shared utilities for CLI commands (logging, errors, exit codes)."""

from __future__ import annotations

import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Final

import typer
from rich.console import Console
from rich.text import Text

from ..console import get_console_manager
from ..errors import CommandNotFoundError, ConfigurationError
from ..logging import fail as core_fail
from ..logging import info as core_info
from ..logging import ok as core_ok
from ..logging import warn as core_warn
from ..models import OverallStatus, WorkspaceResult

EXIT_SUCCESS: Final[int] = 0
EXIT_FAILED: Final[int] = 1
EXIT_CONFIG_ERROR: Final[int] = 2
EXIT_PARTIAL_FAILURE: Final[int] = 3
EXIT_CANCELLED: Final[int] = 130


class CLIError(RuntimeError):
    """Error raised when a CLI command fails and should exit with a status code."""

    def __init__(self, message: str, *, exit_code: int = EXIT_FAILED) -> None:
        """Initialise the error with a message and exit code.

        Args:
            message: Human-readable error message shown to the user.
            exit_code: Exit status associated with the failure.
        """

        super().__init__(message)
        self.exit_code = exit_code


@dataclass(slots=True)
class CLILogger:
    """Adapter around the logging helpers honouring CLI emoji and colour flags."""

    console: Console
    use_emoji: bool
    use_color: bool
    debug_enabled: bool = False
    _key_value_re: re.Pattern[str] = re.compile(r"([\w-]+)=(\".*?\"|\S+)")

    def fail(self, message: str) -> None:
        core_fail(message, use_emoji=self.use_emoji, use_color=self.use_color)

    def warn(self, message: str) -> None:
        core_warn(message, use_emoji=self.use_emoji, use_color=self.use_color)

    def ok(self, message: str) -> None:
        core_ok(message, use_emoji=self.use_emoji, use_color=self.use_color)

    def info(self, message: str) -> None:
        core_info(message, use_emoji=self.use_emoji, use_color=self.use_color)

    def debug(self, message: str) -> None:
        """Emit ``message`` with ``key=value`` highlighting when debugging is on."""

        if not self.debug_enabled:
            return
        text = Text("[debug] ", style="bold cyan")
        cursor = 0
        for match in self._key_value_re.finditer(message):
            start, end = match.span()
            if start > cursor:
                text.append(message[cursor:start], style="dim")
            text.append(match.group(1), style="bold magenta")
            text.append("=", style="dim")
            text.append(match.group(2), style="bold blue" if match.group(1) in {"command", "cmd"} else "bold green")
            cursor = end
        if cursor < len(message):
            text.append(message[cursor:], style="dim")
        self.console.print(text)


def build_cli_logger(*, emoji: bool, color: bool, debug: bool = False) -> CLILogger:
    """Return a :class:`CLILogger` bound to the shared console manager."""

    console = get_console_manager().get(color=color, emoji=emoji)
    return CLILogger(console=console, use_emoji=emoji, use_color=color, debug_enabled=debug)


def exit_code_for(result: WorkspaceResult) -> int:
    """Return the process exit status describing ``result``."""

    if result.cancelled:
        return EXIT_CANCELLED
    if result.overall_status is OverallStatus.SUCCESS:
        return EXIT_SUCCESS
    if result.overall_status is OverallStatus.PARTIAL_FAILURE:
        return EXIT_PARTIAL_FAILURE
    return EXIT_FAILED


@contextmanager
def translate_errors(logger: CLILogger) -> Iterator[None]:
    """Report polyrun errors through ``logger`` and exit with the matching status.

    Raises:
        typer.Exit: When a configuration, resolution or CLI error escapes the block.
    """

    try:
        yield
    except (ConfigurationError, CommandNotFoundError) as exc:
        logger.fail(str(exc))
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from exc
    except CLIError as exc:
        logger.fail(str(exc))
        raise typer.Exit(code=exc.exit_code) from exc


__all__ = [
    "EXIT_CANCELLED",
    "EXIT_CONFIG_ERROR",
    "EXIT_FAILED",
    "EXIT_PARTIAL_FAILURE",
    "EXIT_SUCCESS",
    "CLIError",
    "CLILogger",
    "build_cli_logger",
    "exit_code_for",
    "translate_errors",
]
