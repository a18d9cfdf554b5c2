# Autopilot — Staged Terminal Demo Runner
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Subprocess-backed executor implementation for Autopilot.

Commands run through ``/bin/sh -c`` so AND-chained commands, pipes and
the sudo rewrite behave exactly as typed. Output is returned as raw
bytes; decoding happens only when it reaches the output buffer.

Commands run without a timeout and with stdin closed.
"""

from __future__ import annotations

import subprocess

from .errors import ExecutionError


class SubprocessExecutor:
    """Subprocess implementation of Executor protocol."""

    def __init__(self, shell: str = "/bin/sh"):
        """Initialize executor with configuration.

        Args:
            shell: shell binary used as ``<shell> -c <command>``
        """
        self.shell = shell

    def run(self, command: str) -> tuple[int, bytes, bytes]:
        """Run a shell command and return buffered results.

        Args:
            command: shell command to execute

        Returns:
            (exit_code, stdout, stderr)

        Raises:
            ExecutionError: the shell could not be started
        """
        argv = [self.shell, "-c", command]

        try:
            result = subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,
                capture_output=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise ExecutionError(command, str(e)) from e

        return (result.returncode, result.stdout, result.stderr)
