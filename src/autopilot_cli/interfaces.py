# Autopilot — Staged Terminal Demo Runner
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Protocol definitions for dependency injection.

These interfaces enable clean separation between the kernel's
navigation logic, session construction, and command execution.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .config import RemoteConfig, Stage, SudoConfig  # pragma: no cover


class Executor(Protocol):
    """Protocol for local command execution."""

    def run(self, command: str) -> tuple[int, bytes, bytes]:
        """Run a shell command to completion.

        Returns:
            (exit_code, stdout, stderr) with raw, undecoded output

        Raises:
            ExecutionError: the command could not be spawned
        """
        ...


class CommandSession(Protocol):
    """Protocol for a local or remote command session."""

    def get_prompt(self) -> str:
        """Prompt shown before the command text, e.g. "[me@box]$"."""
        ...

    def run_command(self, cmd: str) -> tuple[bytes, bytes]:
        """Run one command (sudo-rewritten if configured).

        Returns:
            (stdout, stderr) as raw bytes

        Raises:
            ExecutionError: spawn or channel I/O failure
        """
        ...

    def close(self) -> None:
        """Release any transport held by the session."""
        ...


class SessionFactory(Protocol):
    """Protocol for building a ready CommandSession."""

    def __call__(
        self, remote: RemoteConfig | None, sudo: SudoConfig | None
    ) -> CommandSession:
        """Resolve credentials, connect if remote, return a session.

        Raises:
            SessionError: missing env var, connection or auth failure
        """
        ...


class ConfigModel(Protocol):
    """Protocol for stage configuration access."""

    @property
    def stages(self) -> tuple[Stage, ...]:
        """Ordered stages to play back."""
        ...

    def get_path(self, path: str, default: Any = None) -> Any:
        """Dotted lookup into renderer settings."""
        ...
