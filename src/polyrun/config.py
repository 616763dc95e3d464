# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Loading of ``polyrun.toml`` project and ``polyrun-workspace.toml`` workspace descriptors."""

from __future__ import annotations

import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Final, TypeAlias

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .conventions import ConventionTable, builtin_conventions
from .errors import ConfigLoadError
from .models import ProjectConfig, Workspace, WorkspaceMember, WorkspaceScript, WorkspaceSettings

PROJECT_FILE_NAME: Final[str] = "polyrun.toml"
WORKSPACE_FILE_NAME: Final[str] = "polyrun-workspace.toml"

ConfigProvider: TypeAlias = Callable[[WorkspaceMember], ProjectConfig]


class _ProjectFile(BaseModel):
    """On-disk shape of ``polyrun.toml``."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    language: str
    version: str | None = None
    package_manager: str | None = None
    enable_aliases: bool = True
    scripts: dict[str, str] = Field(default_factory=dict)
    custom_aliases: dict[str, str] = Field(default_factory=dict)
    environment: dict[str, str] = Field(default_factory=dict)


class _MemberEntry(BaseModel):
    """One ``[[members]]`` table of the workspace descriptor."""

    model_config = ConfigDict(extra="ignore")

    name: str
    path: Path
    language: str = "unknown"
    enabled: bool = True
    depends_on: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("depends_on", "dependencies"),
    )


class _WorkspaceFile(BaseModel):
    """On-disk shape of ``polyrun-workspace.toml``."""

    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""
    settings: WorkspaceSettings = Field(default_factory=WorkspaceSettings)
    members: list[_MemberEntry] = Field(default_factory=list)
    scripts: dict[str, WorkspaceScript] = Field(default_factory=dict)


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigLoadError(path, exc.strerror or str(exc)) from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(path, f"invalid TOML ({exc})") from exc


def _describe_validation(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "<root>"
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts)


def load_project_config(
    path: Path,
    *,
    conventions: ConventionTable | None = None,
    package_managers: Mapping[str, str] | None = None,
) -> ProjectConfig:
    """Return the :class:`ProjectConfig` stored at ``path``.

    Args:
        path: ``polyrun.toml`` file or the directory containing it.
        conventions: Convention table to embed; defaults to the built-ins.
        package_managers: Language to package manager overrides applied when
            the file omits ``package_manager``.

    Returns:
        ProjectConfig: Validated project configuration.

    Raises:
        ConfigLoadError: If the file is missing, malformed or invalid.
    """

    file_path = path / PROJECT_FILE_NAME if path.is_dir() else path
    payload = _read_toml(file_path)
    try:
        parsed = _ProjectFile.model_validate(payload)
    except ValidationError as exc:
        raise ConfigLoadError(file_path, _describe_validation(exc)) from exc
    table = conventions if conventions is not None else builtin_conventions()
    base = ProjectConfig.for_language(
        parsed.language,
        package_manager=parsed.package_manager or (package_managers or {}).get(parsed.language),
        conventions=table,
    )
    return base.model_copy(
        update={
            "name": parsed.name,
            "version": parsed.version,
            "enable_aliases": parsed.enable_aliases,
            "scripts": dict(parsed.scripts),
            "custom_aliases": dict(parsed.custom_aliases),
            "environment": dict(parsed.environment),
        },
    )


def find_project_root(start: Path) -> Path | None:
    """Return the nearest ancestor of ``start`` containing ``polyrun.toml``."""

    current = start.resolve()
    for candidate in (current, *current.parents):
        if (candidate / PROJECT_FILE_NAME).is_file():
            return candidate
    return None


def find_workspace_root(start: Path) -> Path | None:
    """Return the nearest ancestor of ``start`` containing ``polyrun-workspace.toml``."""

    current = start.resolve()
    for candidate in (current, *current.parents):
        if (candidate / WORKSPACE_FILE_NAME).is_file():
            return candidate
    return None


def load_workspace(path: Path) -> Workspace:
    """Return the :class:`Workspace` described at ``path``.

    Args:
        path: ``polyrun-workspace.toml`` file or the directory containing it.

    Returns:
        Workspace: Workspace rooted at the descriptor's directory.

    Raises:
        ConfigLoadError: If the descriptor is missing, malformed or invalid.
    """

    file_path = path / WORKSPACE_FILE_NAME if path.is_dir() else path
    payload = _read_toml(file_path)
    try:
        parsed = _WorkspaceFile.model_validate(payload)
        members = [
            WorkspaceMember(
                name=entry.name,
                path=entry.path,
                language=entry.language,
                enabled=entry.enabled,
                depends_on=frozenset(entry.depends_on),
            )
            for entry in parsed.members
        ]
    except ValidationError as exc:
        raise ConfigLoadError(file_path, _describe_validation(exc)) from exc
    return Workspace(
        name=parsed.name,
        description=parsed.description,
        root=file_path.parent.resolve(),
        members=members,
        settings=parsed.settings,
        scripts=dict(parsed.scripts),
    )


# First matching marker wins.
LANGUAGE_MARKERS: Final[tuple[tuple[str, str], ...]] = (
    ("package.json", "javascript"),
    ("Cargo.toml", "rust"),
    ("requirements.txt", "python"),
    ("pyproject.toml", "python"),
    ("go.mod", "golang"),
    ("pom.xml", "java"),
    ("build.gradle", "java"),
    ("composer.json", "php"),
    ("Gemfile", "ruby"),
)
UNKNOWN_LANGUAGE: Final[str] = "unknown"


def detect_language(path: Path) -> str | None:
    """Return the language suggested by marker files in ``path``, if any."""

    for marker, language in LANGUAGE_MARKERS:
        if (path / marker).exists():
            return language
    return None


@dataclass(frozen=True, slots=True)
class MemberStatus:
    """On-disk state of one workspace member."""

    name: str
    language: str
    enabled: bool
    exists: bool
    has_config: bool
    last_modified: datetime | None


def inspect_members(workspace: Workspace) -> tuple[MemberStatus, ...]:
    """Return the on-disk status of every member in declaration order.

    Members declared with an ``unknown`` language report the language detected
    from their marker files instead.
    """

    statuses: list[MemberStatus] = []
    for member in workspace.members:
        member_dir = workspace.member_path(member)
        exists = member_dir.exists()
        language = member.language
        if exists and language == UNKNOWN_LANGUAGE:
            language = detect_language(member_dir) or UNKNOWN_LANGUAGE
        statuses.append(
            MemberStatus(
                name=member.name,
                language=language,
                enabled=member.enabled,
                exists=exists,
                has_config=(member_dir / PROJECT_FILE_NAME).is_file(),
                last_modified=(
                    datetime.fromtimestamp(member_dir.stat().st_mtime, tz=timezone.utc) if exists else None
                ),
            ),
        )
    return tuple(statuses)


@dataclass(frozen=True, slots=True)
class WorkspaceConfigProvider:
    """Default :data:`ConfigProvider` reading each member's ``polyrun.toml``.

    Members without a project file get a bare config for their language,
    detected from marker files when the workspace declares it ``unknown``, so
    convention lookups still work. Workspace settings then fill the gaps:
    ``common_scripts`` sit below the member's own scripts and
    ``default_language_versions`` supplies a missing version.
    """

    workspace: Workspace
    conventions: ConventionTable

    def __call__(self, member: WorkspaceMember) -> ProjectConfig:
        settings = self.workspace.settings
        member_dir = self.workspace.member_path(member)
        if (member_dir / PROJECT_FILE_NAME).is_file():
            config = load_project_config(
                member_dir,
                conventions=self.conventions,
                package_managers=settings.default_package_managers,
            )
        else:
            language = member.language
            if language == UNKNOWN_LANGUAGE:
                language = detect_language(member_dir) or UNKNOWN_LANGUAGE
            config = ProjectConfig.for_language(
                language,
                package_manager=settings.package_manager_for(language),
                conventions=self.conventions,
            )
        return config.model_copy(
            update={
                "name": config.name or member.name,
                "version": config.version or settings.default_language_versions.get(config.language),
                "scripts": {**settings.common_scripts, **config.scripts},
            },
        )


__all__ = [
    "LANGUAGE_MARKERS",
    "PROJECT_FILE_NAME",
    "WORKSPACE_FILE_NAME",
    "ConfigProvider",
    "MemberStatus",
    "WorkspaceConfigProvider",
    "detect_language",
    "find_project_root",
    "find_workspace_root",
    "inspect_members",
    "load_project_config",
    "load_workspace",
]
