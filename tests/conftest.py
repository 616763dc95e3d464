# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Shared pytest fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from polyrun.console import get_console_manager
from polyrun.models import WorkspaceMember


@pytest.fixture(autouse=True)
def _reset_consoles() -> Iterator[None]:
    """Drop cached consoles so each test writes to its own captured streams."""

    get_console_manager().reset()
    yield
    get_console_manager().reset()


@pytest.fixture
def make_member(tmp_path: Path) -> Callable[..., WorkspaceMember]:
    """Return a factory building members rooted under ``tmp_path``."""

    def factory(name: str, *deps: str, enabled: bool = True, language: str = "python") -> WorkspaceMember:
        return WorkspaceMember(
            name=name,
            path=tmp_path / name,
            language=language,
            enabled=enabled,
            depends_on=frozenset(deps),
        )

    return factory

