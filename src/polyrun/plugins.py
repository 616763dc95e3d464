# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Entry-point discovery of convention providers.

Third-party packages contribute package-manager conventions by exposing a
:class:`~polyrun.conventions.ConventionProvider` (or a zero-argument factory
returning one) under the ``polyrun.conventions`` entry-point group. Providers
are loaded once and merged into an immutable table at startup.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from importlib import metadata
from importlib.metadata import EntryPoint, EntryPoints
from typing import Final, TypeAlias, cast

from .conventions import ConventionProvider, ConventionTable, build_convention_table

LOGGER = logging.getLogger(__name__)

CONVENTION_PLUGIN_GROUP: Final[str] = "polyrun.conventions"

_EntryPointSource: TypeAlias = EntryPoints | Mapping[str, Sequence[EntryPoint]]


def _select_entry_points(entries: _EntryPointSource, group: str) -> Iterable[EntryPoint]:
    """Return entry points exposed under ``group`` from ``entries``."""

    if isinstance(entries, Mapping):
        return entries.get(group, ())
    if hasattr(entries, "select"):
        return entries.select(group=group)
    return ()


def _as_provider(entry: EntryPoint) -> ConventionProvider:
    loaded = entry.load()
    if not isinstance(loaded, type) and isinstance(loaded, ConventionProvider):
        return loaded
    if callable(loaded):
        produced = cast(Callable[[], object], loaded)()
        if isinstance(produced, ConventionProvider):
            return produced
    raise TypeError(f"entry point '{entry.name}' does not provide a ConventionProvider")


def load_convention_providers(group: str = CONVENTION_PLUGIN_GROUP) -> tuple[ConventionProvider, ...]:
    """Return convention providers discovered via entry points.

    Entries that fail to import or produce the wrong type are reported through
    the module logger and left out.

    Args:
        group: Entry-point group name to inspect.

    Returns:
        tuple[ConventionProvider, ...]: Providers in discovery order.
    """

    entries_raw = metadata.entry_points()
    selected = _select_entry_points(cast(_EntryPointSource, entries_raw), group)
    providers: list[ConventionProvider] = []
    for entry in selected:
        try:
            providers.append(_as_provider(entry))
        except (AttributeError, ImportError, TypeError, ValueError) as exc:
            LOGGER.warning("ignoring convention plugin %s: %s", entry.name, exc)
    return tuple(providers)


def load_convention_table(extra: Iterable[ConventionProvider] = ()) -> ConventionTable:
    """Return the built-in table merged with plugin and ``extra`` providers."""

    return build_convention_table([*load_convention_providers(), *extra])


__all__ = ["CONVENTION_PLUGIN_GROUP", "load_convention_providers", "load_convention_table"]
