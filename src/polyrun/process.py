# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Safe wrappers around ``subprocess`` execution for member commands."""

from __future__ import annotations

import os
import shutil
import signal

# Bandit: subprocess usage is intentional; commands are spawned from argument
# lists without ``shell=True``.
import subprocess  # nosec B404 suppression_valid: Shell-free subprocess wrapper enforces safe execution.
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

_POSIX: Final[bool] = os.name == "posix"
DEFAULT_KILL_GRACE_S: Final[float] = 5.0
_GROUP_POLL_S: Final[float] = 0.05


class Cancellation:
    """Cooperative cancellation token shared by one orchestration run.

    Processes spawned through :func:`run_command` register themselves while
    they run; :meth:`cancel` stops new spawns and terminates the process group
    of everything still in flight.
    """

    def __init__(self, *, kill_grace_s: float = DEFAULT_KILL_GRACE_S) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._active: set[subprocess.Popen[str]] = set()
        self._kill_grace_s = kill_grace_s

    @property
    def cancelled(self) -> bool:
        """Return ``True`` once :meth:`cancel` has been called."""

        return self._event.is_set()

    def cancel(self) -> None:
        """Mark the run cancelled and terminate every registered process."""

        with self._lock:
            self._event.set()
            active = list(self._active)
        for process in active:
            terminate_process_group(process, grace_s=self._kill_grace_s)

    def register(self, process: subprocess.Popen[str]) -> None:
        """Track ``process``; terminate it at once when already cancelled."""

        with self._lock:
            if not self._event.is_set():
                self._active.add(process)
                return
        terminate_process_group(process, grace_s=self._kill_grace_s)

    def unregister(self, process: subprocess.Popen[str]) -> None:
        """Stop tracking ``process``."""

        with self._lock:
            self._active.discard(process)


@dataclass(frozen=True, slots=True)
class CommandOptions:
    """Immutable command execution options."""

    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    timeout: float | None = None
    capture_output: bool = True
    discard_stdin: bool = True
    kill_grace_s: float = DEFAULT_KILL_GRACE_S
    cancellation: Cancellation | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")


@dataclass(frozen=True, slots=True)
class ProcessResult:
    """Completed process metadata including how it terminated."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    cancelled: bool = False


def resolve_executable(head: str, *, env: Mapping[str, str] | None, cwd: Path | None) -> str:
    """Return an absolute path for the executable named ``head``.

    Bare names are looked up on the ``PATH`` of ``env`` (the effective child
    environment), falling back to the current process ``PATH``. Names with a
    directory component are resolved against ``cwd``.

    Args:
        head: First element of the command vector.
        env: Environment the child will run with.
        cwd: Working directory the child will run in.

    Returns:
        str: Absolute executable path.

    Raises:
        FileNotFoundError: If the executable cannot be located.
    """

    candidate = Path(head)
    if candidate.is_absolute():
        if candidate.exists():
            return str(candidate)
        raise FileNotFoundError(f"Executable '{head}' does not exist")
    if os.sep in head or (os.altsep is not None and os.altsep in head):
        anchored = (cwd or Path.cwd()) / candidate
        if anchored.exists():
            return str(anchored)
        raise FileNotFoundError(f"Executable '{head}' does not exist relative to {cwd or Path.cwd()}")
    search_path = env.get("PATH") if env is not None else None
    resolved = shutil.which(head, path=search_path)
    if resolved is None:
        raise FileNotFoundError(f"Executable '{head}' was not found on PATH")
    return resolved


def terminate_process_group(process: subprocess.Popen[str], *, grace_s: float) -> None:
    """Terminate ``process`` and its process group, escalating to SIGKILL.

    On POSIX the whole group is signalled even when the leader has already
    exited, since descendants may still hold its output pipes. SIGKILL follows
    unless the group has emptied within ``grace_s``.

    Args:
        process: Process started with ``start_new_session=True``.
        grace_s: Seconds to wait after SIGTERM before sending SIGKILL.
    """

    if not _POSIX:
        if process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=grace_s)
        except subprocess.TimeoutExpired:
            process.kill()
        return
    if not _signal_group(process.pid, signal.SIGTERM):
        return
    deadline = time.monotonic() + grace_s
    while time.monotonic() < deadline:
        # Reap the leader so a zombie does not keep the group alive.
        process.poll()
        if not _group_alive(process.pid):
            return
        time.sleep(_GROUP_POLL_S)
    _signal_group(process.pid, signal.SIGKILL)


def _signal_group(pgid: int, signum: int) -> bool:
    try:
        os.killpg(pgid, signum)
    except ProcessLookupError:
        return False
    return True


def _group_alive(pgid: int) -> bool:
    try:
        os.killpg(pgid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _await_process(
    process: subprocess.Popen[str],
    *,
    timeout: float | None,
    cancellation: Cancellation | None,
) -> tuple[str | None, str | None] | None:
    """Return the output of ``process`` or ``None`` when it was interrupted.

    Without a cancellation token this is a plain :meth:`Popen.communicate`.
    With one, the wait is sliced so a cancelled run stops waiting on pipes.
    """

    if cancellation is None:
        try:
            return process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
    deadline = None if timeout is None else time.monotonic() + timeout
    while not cancellation.cancelled:
        wait_s = _GROUP_POLL_S
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            wait_s = min(wait_s, remaining)
        try:
            return process.communicate(timeout=wait_s)
        except subprocess.TimeoutExpired:
            continue
    return None


def _drain(process: subprocess.Popen[str], *, grace_s: float) -> tuple[str | None, str | None]:
    """Collect remaining output after the group was killed, bounded by ``grace_s``."""

    try:
        return process.communicate(timeout=grace_s)
    except subprocess.TimeoutExpired:
        # A descendant left the session and still holds the pipes.
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()
        try:
            process.wait(timeout=grace_s)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
        return None, None


def run_command(args: Sequence[str], *, options: CommandOptions | None = None) -> ProcessResult:
    """Execute ``args`` without a shell and wait for it to finish.

    The child runs in its own session so a timeout or cancellation can take
    down everything it spawned.

    Args:
        args: Command vector; the first item is the executable.
        options: Execution options; defaults capture output and discard stdin.

    Returns:
        ProcessResult: Exit status, captured output and termination flags. A
        timed-out process reports ``returncode`` 124.

    Raises:
        ValueError: If ``args`` is empty.
        FileNotFoundError: If the executable cannot be resolved.
        OSError: If the operating system refuses to spawn the process.
    """

    if not args:
        raise ValueError("subprocess command requires at least one argument")
    resolved_options = options or CommandOptions()
    head, *rest = args
    normalized = [resolve_executable(head, env=resolved_options.env, cwd=resolved_options.cwd), *rest]
    pipe = subprocess.PIPE if resolved_options.capture_output else None

    # Bandit: argument vectors come from validated project configuration and
    # are executed without shell expansion.
    process = subprocess.Popen(  # nosec B603 - controlled arguments, not user supplied
        normalized,
        cwd=str(resolved_options.cwd) if resolved_options.cwd is not None else None,
        env=dict(resolved_options.env) if resolved_options.env is not None else None,
        stdin=subprocess.DEVNULL if resolved_options.discard_stdin else None,
        stdout=pipe,
        stderr=pipe,
        text=True,
        encoding="utf-8",
        errors="replace",
        start_new_session=_POSIX,
    )
    cancellation = resolved_options.cancellation
    if cancellation is not None:
        cancellation.register(process)
    timed_out = False
    try:
        output = _await_process(process, timeout=resolved_options.timeout, cancellation=cancellation)
        if output is None:
            timed_out = cancellation is None or not cancellation.cancelled
            terminate_process_group(process, grace_s=resolved_options.kill_grace_s)
            output = _drain(process, grace_s=resolved_options.kill_grace_s)
        stdout, stderr = output
    finally:
        if cancellation is not None:
            cancellation.unregister(process)

    stdout_text = stdout or ""
    stderr_text = stderr or ""
    returncode = process.returncode
    if timed_out:
        timeout_msg = f"Command timed out after {resolved_options.timeout:.1f}s"
        stderr_text = f"{stderr_text}\n{timeout_msg}" if stderr_text else timeout_msg
        returncode = 124
    return ProcessResult(
        args=tuple(normalized),
        returncode=returncode,
        stdout=stdout_text,
        stderr=stderr_text,
        timed_out=timed_out,
        cancelled=cancellation is not None and cancellation.cancelled and not timed_out and returncode != 0,
    )


__all__ = [
    "Cancellation",
    "CommandOptions",
    "ProcessResult",
    "resolve_executable",
    "run_command",
    "terminate_process_group",
]
