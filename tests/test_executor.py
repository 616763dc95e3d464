# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Behavioural tests for :mod:`polyrun.executor`."""

from __future__ import annotations

import os
import shlex
import sys
from collections.abc import Sequence
from pathlib import Path

import pytest

from polyrun import executor as executor_module
from polyrun.executor import MemberExecutor, compose_environment
from polyrun.installer import ToolchainStore
from polyrun.models import OutcomeReason, OutcomeStatus, ProjectConfig, WorkspaceMember
from polyrun.process import CommandOptions, ProcessResult


class _FakeRunner:
    def __init__(self, result: ProcessResult | None = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple[list[str], CommandOptions | None]] = []

    def __call__(self, args: Sequence[str], *, options: CommandOptions | None = None) -> ProcessResult:
        self.calls.append((list(args), options))
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


def _member(tmp_path: Path) -> WorkspaceMember:
    return WorkspaceMember(name="api", path=tmp_path, language="python")


def _config(**overrides: object) -> ProjectConfig:
    base: dict[str, object] = {"language": "python", "package_manager": "pip", "scripts": {"test": "pytest -q"}}
    base.update(overrides)
    return ProjectConfig(**base)


def _ok(stdout: str = "") -> ProcessResult:
    return ProcessResult(args=("pytest",), returncode=0, stdout=stdout, stderr="")


def test_success_outcome_records_command_and_output(tmp_path: Path) -> None:
    runner = _FakeRunner(_ok("5 passed\n"))

    outcome = MemberExecutor(runner=runner, extra_args=("-k", "fast")).execute(_member(tmp_path), "test", _config())

    assert outcome.status is OutcomeStatus.SUCCESS
    assert outcome.exit_code == 0
    assert outcome.command == "pytest -q -k fast"
    assert outcome.stdout == "5 passed\n"
    args, options = runner.calls[0]
    assert args == ["pytest", "-q", "-k", "fast"]
    assert options is not None and options.cwd == tmp_path


def test_unresolvable_command_fails_without_spawning(tmp_path: Path) -> None:
    runner = _FakeRunner(_ok())

    outcome = MemberExecutor(runner=runner).execute(_member(tmp_path), "deploy", _config())

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.reason is OutcomeReason.NOT_FOUND
    assert outcome.exit_code is None
    assert runner.calls == []


def test_non_zero_exit_logs_warning(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    messages: list[str] = []
    monkeypatch.setattr(executor_module, "warn", lambda message, **_: messages.append(message))
    runner = _FakeRunner(ProcessResult(args=("pytest",), returncode=2, stdout="", stderr="\nfirst\nlast line\n"))

    outcome = MemberExecutor(runner=runner).execute(_member(tmp_path), "test", _config())

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.reason is OutcomeReason.NON_ZERO_EXIT
    assert outcome.exit_code == 2
    assert len(messages) == 1
    assert messages[0].startswith("api:test failed (exit 2)")
    assert "stderr: last line" in messages[0]
    assert "source: script" in messages[0]


def test_spawn_failure_becomes_outcome(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(executor_module, "warn", lambda *_args, **_kwargs: None)
    runner = _FakeRunner(error=FileNotFoundError("Executable 'pytest' was not found on PATH"))

    outcome = MemberExecutor(runner=runner).execute(_member(tmp_path), "test", _config())

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.reason is OutcomeReason.SPAWN_FAILURE
    assert outcome.exit_code is None
    assert "not found" in (outcome.message or "")


def test_unparseable_command_is_spawn_failure(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(executor_module, "warn", lambda *_args, **_kwargs: None)
    runner = _FakeRunner(_ok())

    outcome = MemberExecutor(runner=runner).execute(_member(tmp_path), "test", _config(scripts={"test": "echo 'x"}))

    assert outcome.reason is OutcomeReason.SPAWN_FAILURE
    assert runner.calls == []


def test_timeout_maps_to_timeout_reason(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(executor_module, "warn", lambda *_args, **_kwargs: None)
    runner = _FakeRunner(
        ProcessResult(args=("pytest",), returncode=124, stdout="", stderr="Command timed out", timed_out=True),
    )

    outcome = MemberExecutor(runner=runner, timeout_s=1.0).execute(_member(tmp_path), "test", _config())

    assert outcome.reason is OutcomeReason.TIMEOUT
    assert outcome.exit_code == 124
    assert runner.calls[0][1] is not None and runner.calls[0][1].timeout == 1.0


def test_cancelled_process_maps_to_cancelled_reason(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    messages: list[str] = []
    monkeypatch.setattr(executor_module, "warn", lambda message, **_: messages.append(message))
    runner = _FakeRunner(ProcessResult(args=("pytest",), returncode=-15, stdout="", stderr="", cancelled=True))

    outcome = MemberExecutor(runner=runner).execute(_member(tmp_path), "test", _config())

    assert outcome.reason is OutcomeReason.CANCELLED
    assert messages == []


def test_environment_precedence() -> None:
    config = _config(environment={"MODE": "project", "ONLY_PROJECT": "1"})

    env = compose_environment(
        config,
        shared={"MODE": "shared", "ONLY_SHARED": "1"},
        base={"MODE": "process", "HOME": "/home/dev"},
    )

    assert env["MODE"] == "project"
    assert env["ONLY_SHARED"] == "1"
    assert env["ONLY_PROJECT"] == "1"
    assert env["HOME"] == "/home/dev"


def test_installed_toolchain_is_prepended_to_path(tmp_path: Path) -> None:
    store = ToolchainStore(tmp_path / "home")
    install_root = store.install_path("python", "3.12.1")
    (install_root / "bin").mkdir(parents=True)
    config = _config(version="3.12.1")

    env = compose_environment(config, installer=store, base={"PATH": "/usr/bin"})

    assert env["PATH"] == os.pathsep.join([str(install_root / "bin"), "/usr/bin"])


def test_missing_toolchain_leaves_path_alone(tmp_path: Path) -> None:
    store = ToolchainStore(tmp_path / "home")

    env = compose_environment(_config(version="9.9"), installer=store, base={"PATH": "/usr/bin"})

    assert env["PATH"] == "/usr/bin"


def test_toolchain_store_honours_environment(tmp_path: Path) -> None:
    store = ToolchainStore.from_environment({"POLYRUN_HOME": str(tmp_path)})

    assert store.install_path("rust", "1.79") == tmp_path / "languages" / "rust" / "1.79"
    assert not store.is_installed("rust", "1.79")


def test_real_subprocess_round_trip(tmp_path: Path) -> None:
    config = _config(scripts={"hello": f"{shlex.quote(sys.executable)} -c \"print('hi from member')\""})

    outcome = MemberExecutor().execute(_member(tmp_path), "hello", config)

    assert outcome.status is OutcomeStatus.SUCCESS
    assert outcome.stdout.strip() == "hi from member"
