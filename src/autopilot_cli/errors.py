# Autopilot — Staged Terminal Demo Runner
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Exception hierarchy for Autopilot.

- ConfigShapeError: raised by the stage file loader only.
- SessionError and subclasses: a Command Session could not be built.
  The kernel turns these into an error line; they never end the run.
- ExecutionError: a single command run failed (spawn / channel I/O).
"""

from __future__ import annotations


class AutopilotError(Exception):
    """Base class for all Autopilot errors."""


class ConfigShapeError(AutopilotError, ValueError):
    """Stage file data does not have the expected shape."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class SessionError(AutopilotError):
    """A Command Session could not be constructed."""


class MissingEnvironmentVariable(SessionError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Missing environment variable: '{name}'")


class ConnectionFailed(SessionError):
    """Remote host unreachable or the SSH handshake failed."""


class AuthenticationFailed(SessionError):
    """Remote host rejected the supplied credentials."""


class ExecutionError(AutopilotError):
    """Running one command failed before its output could be collected."""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to execute command: {reason}")
