# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Core data models shared across the polyrun package."""

from __future__ import annotations

import math
import os
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, InstanceOf, field_validator

from .conventions import DEFAULT_PACKAGE_MANAGERS, ConventionTable, builtin_conventions


def default_parallel_jobs() -> int:
    """Return 75% of available CPU cores (minimum of 1)."""
    cores = os.cpu_count() or 1
    proposed = max(1, math.floor(cores * 0.75))
    return proposed


class ProjectConfig(BaseModel):
    """Validated configuration of a single project."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    language: str
    version: str | None = None
    package_manager: str
    scripts: dict[str, str] = Field(default_factory=dict)
    custom_aliases: dict[str, str] = Field(default_factory=dict)
    enable_aliases: bool = True
    environment: dict[str, str] = Field(default_factory=dict)
    conventions: InstanceOf[ConventionTable] = Field(default_factory=builtin_conventions, exclude=True)

    @classmethod
    def for_language(
        cls,
        language: str,
        *,
        package_manager: str | None = None,
        conventions: ConventionTable | None = None,
    ) -> ProjectConfig:
        """Return a bare config relying on conventions for ``language``.

        Args:
            language: Project language identifier.
            package_manager: Explicit package manager; defaults to the
                conventional manager for ``language``.
            conventions: Convention table to embed; defaults to the built-ins.

        Returns:
            ProjectConfig: Config with no scripts or custom aliases.
        """

        manager = package_manager or DEFAULT_PACKAGE_MANAGERS.get(language, language)
        return cls(
            language=language,
            package_manager=manager,
            conventions=conventions if conventions is not None else builtin_conventions(),
        )


class WorkspaceMember(BaseModel):
    """One project inside a workspace."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    path: Path
    language: str = "unknown"
    enabled: bool = True
    depends_on: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("depends_on", mode="before")
    @classmethod
    def _coerce_depends_on(cls, value: object) -> object:
        if isinstance(value, (list, tuple, set)):
            return frozenset(str(item) for item in value)
        return value


class WorkspaceScript(BaseModel):
    """Named command line run verbatim inside a set of members."""

    model_config = ConfigDict(frozen=True)

    command: str = Field(min_length=1)
    description: str = ""
    run_in_members: tuple[str, ...] = ()
    run_parallel: bool = True
    continue_on_error: bool = False


class WorkspaceSettings(BaseModel):
    """Workspace-wide defaults shared by every member."""

    model_config = ConfigDict(validate_assignment=True)

    shared_environment: dict[str, str] = Field(default_factory=dict)
    build_parallel: bool = True
    max_parallel_jobs: int = Field(default_factory=default_parallel_jobs, ge=1)
    default_package_managers: dict[str, str] = Field(default_factory=dict)
    default_language_versions: dict[str, str] = Field(default_factory=dict)
    common_scripts: dict[str, str] = Field(default_factory=dict)

    def package_manager_for(self, language: str) -> str:
        """Return the package manager used for ``language`` members without a config."""

        if language in self.default_package_managers:
            return self.default_package_managers[language]
        return DEFAULT_PACKAGE_MANAGERS.get(language, language)


class Workspace(BaseModel):
    """Already-validated workspace descriptor."""

    model_config = ConfigDict(validate_assignment=True)

    name: str
    description: str = ""
    root: Path = Field(default_factory=Path)
    members: list[WorkspaceMember] = Field(default_factory=list)
    settings: WorkspaceSettings = Field(default_factory=WorkspaceSettings)
    scripts: dict[str, WorkspaceScript] = Field(default_factory=dict)

    def member_path(self, member: WorkspaceMember) -> Path:
        """Return ``member.path`` anchored at the workspace root."""

        return member.path if member.path.is_absolute() else self.root / member.path

    def member_names(self) -> tuple[str, ...]:
        """Return member names in declaration order."""

        return tuple(member.name for member in self.members)


class OutcomeStatus(str, Enum):
    """Terminal state of one member's attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class OutcomeReason(str, Enum):
    """Why a member did not succeed."""

    NON_ZERO_EXIT = "non_zero_exit"
    TIMEOUT = "timeout"
    SPAWN_FAILURE = "spawn_failure"
    NOT_FOUND = "not_found"
    DEPENDENCY_FAILED = "dependency_failed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


class Outcome(BaseModel):
    """Immutable record of attempting a member's command."""

    model_config = ConfigDict(frozen=True)

    member: str
    command: str = ""
    exit_code: int | None = None
    duration_ms: int = 0
    stdout: str = ""
    stderr: str = ""
    status: OutcomeStatus
    reason: OutcomeReason | None = None
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        """Return ``True`` when the member finished successfully."""

        return self.status is OutcomeStatus.SUCCESS

    @property
    def failed(self) -> bool:
        """Return ``True`` when the member ran (or tried to) and failed."""

        return self.status is OutcomeStatus.FAILED

    @classmethod
    def skipped(cls, member: str, reason: OutcomeReason, message: str | None = None) -> Outcome:
        """Return a skipped outcome for a member that was never invoked."""

        return cls(member=member, status=OutcomeStatus.SKIPPED, reason=reason, message=message)


class OverallStatus(str, Enum):
    """Aggregate status of a workspace run."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


class WorkspaceResult(BaseModel):
    """Aggregated result of running a command across a workspace."""

    model_config = ConfigDict(frozen=True)

    command: str
    outcomes: tuple[Outcome, ...] = ()
    overall_status: OverallStatus
    cancelled: bool = False

    def outcome_for(self, member: str) -> Outcome | None:
        """Return the outcome recorded for ``member`` if any."""

        for outcome in self.outcomes:
            if outcome.member == member:
                return outcome
        return None

    def by_status(self, status: OutcomeStatus) -> tuple[Outcome, ...]:
        """Return outcomes whose status equals ``status``."""

        return tuple(outcome for outcome in self.outcomes if outcome.status is status)


class FailurePolicy(BaseModel):
    """How the scheduler reacts to failed members."""

    model_config = ConfigDict(frozen=True)

    continue_on_error: bool = False
    skip_dependents_on_failure: bool = False


class RunOptions(BaseModel):
    """Options accepted by :meth:`WorkspaceOrchestrator.run_command`."""

    model_config = ConfigDict(frozen=True)

    parallel: bool = True
    concurrency_limit: int = Field(default_factory=default_parallel_jobs, ge=1)
    member_filter: frozenset[str] | None = None
    continue_on_error: bool = False
    skip_dependents_on_failure: bool = False
    timeout_s: float | None = Field(default=None, gt=0)
    capture_output: bool = True
    extra_args: tuple[str, ...] = ()

    @field_validator("member_filter", mode="before")
    @classmethod
    def _coerce_filter(cls, value: object) -> object:
        if isinstance(value, (list, tuple, set)):
            return frozenset(str(item) for item in value)
        return value

    @property
    def effective_concurrency(self) -> int:
        """Return the concurrency limit after applying ``parallel``."""

        return self.concurrency_limit if self.parallel else 1

    @property
    def failure_policy(self) -> FailurePolicy:
        """Return the failure policy described by these options."""

        return FailurePolicy(
            continue_on_error=self.continue_on_error,
            skip_dependents_on_failure=self.skip_dependents_on_failure,
        )


__all__ = [
    "FailurePolicy",
    "Outcome",
    "OutcomeReason",
    "OutcomeStatus",
    "OverallStatus",
    "ProjectConfig",
    "RunOptions",
    "Workspace",
    "WorkspaceMember",
    "WorkspaceResult",
    "WorkspaceScript",
    "WorkspaceSettings",
    "default_parallel_jobs",
]
