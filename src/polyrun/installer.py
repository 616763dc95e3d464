# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Read-only view of installed language toolchains."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Protocol, runtime_checkable

HOME_ENV_VAR: Final[str] = "POLYRUN_HOME"
_DEFAULT_HOME_NAME: Final[str] = ".polyrun"


@runtime_checkable
class ToolchainInstaller(Protocol):
    """Collaborator reporting which language toolchains are installed."""

    def is_installed(self, language: str, version: str) -> bool:
        """Return ``True`` when ``language`` ``version`` is installed."""

        raise NotImplementedError

    def install_path(self, language: str, version: str) -> Path:
        """Return the installation root of ``language`` ``version``."""

        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class ToolchainStore:
    """Global store laid out as ``<home>/languages/<language>/<version>``."""

    home: Path

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None) -> ToolchainStore:
        """Return the store rooted at ``$POLYRUN_HOME`` or ``~/.polyrun``."""

        source = os.environ if environ is None else environ
        configured = source.get(HOME_ENV_VAR)
        return cls(Path(configured) if configured else Path.home() / _DEFAULT_HOME_NAME)

    @property
    def languages_dir(self) -> Path:
        return self.home / "languages"

    def install_path(self, language: str, version: str) -> Path:
        return self.languages_dir / language / version

    def is_installed(self, language: str, version: str) -> bool:
        return self.install_path(language, version).is_dir()


def toolchain_bin_dir(installer: ToolchainInstaller | None, language: str, version: str | None) -> Path | None:
    """Return the ``bin`` directory of an installed toolchain, if any.

    Args:
        installer: Installer collaborator; ``None`` disables the lookup.
        language: Project language.
        version: Requested version; ``None`` means "whatever is on PATH".

    Returns:
        Path | None: Directory to prepend to ``PATH`` or ``None``.
    """

    if installer is None or not version:
        return None
    if not installer.is_installed(language, version):
        return None
    return installer.install_path(language, version) / "bin"


__all__ = ["HOME_ENV_VAR", "ToolchainInstaller", "ToolchainStore", "toolchain_bin_dir"]
