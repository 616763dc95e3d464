# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Package-manager convention table and the provider capability that extends it.

The convention table answers "how does package manager *X* spell command *Y*?"
when a project declares neither a custom alias nor a script for *Y*. The table
is assembled once from the built-in entries plus any registered
:class:`ConventionProvider` objects and is immutable afterwards, so resolution
never consults plugins at call time.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from functools import cache
from types import MappingProxyType
from typing import Final, Protocol, TypeAlias, runtime_checkable

ConventionKey: TypeAlias = tuple[str, str]


def _prefixed(package_manager: str, commands: Iterable[str]) -> dict[ConventionKey, str]:
    return {(package_manager, command): f"{package_manager} {command}" for command in commands}


def _builtin_entries() -> dict[ConventionKey, str]:
    entries: dict[ConventionKey, str] = {}
    entries.update(_prefixed("npm", ("install", "run", "start", "test", "build")))
    for manager in ("yarn", "pnpm"):
        entries.update(_prefixed(manager, ("install", "add", "run", "start", "test", "build", "dev")))
    entries.update(_prefixed("bun", ("install", "add", "run", "test")))
    entries.update(
        {
            ("bun", "start"): "bun run start",
            ("bun", "build"): "bun run build",
            ("bun", "dev"): "bun run dev",
        },
    )
    entries.update(
        {
            ("pip", "install"): "pip install -r requirements.txt",
            ("pip", "test"): "pytest",
            ("pip", "lint"): "flake8",
            ("pip", "format"): "black .",
        },
    )
    entries.update(_prefixed("poetry", ("install", "add", "run", "shell", "build")))
    entries[("poetry", "test")] = "poetry run pytest"
    entries.update(_prefixed("pipenv", ("install", "shell", "run")))
    entries[("pipenv", "test")] = "pipenv run pytest"
    entries.update(_prefixed("cargo", ("build", "run", "test", "check", "clippy", "fmt")))
    entries.update(
        {
            ("go", "build"): "go build",
            ("go", "run"): "go run main.go",
            ("go", "test"): "go test",
            ("go", "mod"): "go mod tidy",
        },
    )
    entries.update(
        {
            ("maven", "build"): "mvn clean compile",
            ("maven", "compile"): "mvn compile",
            ("maven", "test"): "mvn test",
            ("maven", "install"): "mvn install",
        },
    )
    entries.update(_prefixed("gradle", ("build", "test", "run")))
    entries.update(
        {
            ("composer", "install"): "composer install",
            ("composer", "test"): "phpunit",
            ("composer", "serve"): "php -S localhost:8000",
            ("bundler", "install"): "bundle install",
            ("bundler", "test"): "rspec",
            ("bundler", "run"): "ruby main.rb",
        },
    )
    return entries


@dataclass(frozen=True, slots=True)
class ConventionTable:
    """Immutable ``(package_manager, command) -> command line`` mapping."""

    entries: Mapping[ConventionKey, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    def lookup(self, package_manager: str, command: str) -> str | None:
        """Return the conventional command line or ``None`` when absent.

        Args:
            package_manager: Package manager declared by the project.
            command: Abstract command name such as ``"test"``.

        Returns:
            str | None: Concrete command line registered for the pair.
        """

        return self.entries.get((package_manager, command))

    def for_package_manager(self, package_manager: str) -> dict[str, str]:
        """Return every convention registered for ``package_manager``."""

        return {
            command: value for (manager, command), value in sorted(self.entries.items()) if manager == package_manager
        }

    def merged(self, extra: Mapping[ConventionKey, str]) -> ConventionTable:
        """Return a new table where ``extra`` overrides existing entries."""

        combined = dict(self.entries)
        combined.update(extra)
        return ConventionTable(combined)

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def __iter__(self) -> Iterator[ConventionKey]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@runtime_checkable
class ConventionProvider(Protocol):
    """Capability contributing additional convention entries."""

    @property
    def provider_name(self) -> str:
        """Return the identifier used when reporting the provider."""

        raise NotImplementedError

    def conventions(self) -> Mapping[ConventionKey, str]:
        """Return ``(package_manager, command) -> command line`` entries."""

        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class StaticConventionProvider:
    """Provider serving a fixed mapping, handy for profiles and tests."""

    name: str
    entries: Mapping[ConventionKey, str]

    @property
    def provider_name(self) -> str:
        return self.name

    def conventions(self) -> Mapping[ConventionKey, str]:
        return self.entries


@cache
def builtin_conventions() -> ConventionTable:
    """Return the built-in convention table."""

    return ConventionTable(_builtin_entries())


def build_convention_table(providers: Iterable[ConventionProvider] = ()) -> ConventionTable:
    """Merge ``providers`` on top of the built-in table.

    Providers are applied in order, so a later provider overrides an earlier
    one for the same key.

    Args:
        providers: Convention providers registered at startup.

    Returns:
        ConventionTable: Immutable merged table.
    """

    table = builtin_conventions()
    for provider in providers:
        table = table.merged(dict(provider.conventions()))
    return table


DEFAULT_PACKAGE_MANAGERS: Final[Mapping[str, str]] = MappingProxyType(
    {
        "python": "pip",
        "javascript": "npm",
        "typescript": "npm",
        "golang": "go",
        "rust": "cargo",
        "java": "maven",
        "php": "composer",
        "ruby": "bundler",
    },
)


__all__ = [
    "DEFAULT_PACKAGE_MANAGERS",
    "ConventionKey",
    "ConventionProvider",
    "ConventionTable",
    "StaticConventionProvider",
    "build_convention_table",
    "builtin_conventions",
]
