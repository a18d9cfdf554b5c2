# Autopilot — Staged Terminal Demo Runner
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Execution status of the in-flight action.

Transitions:
    STOPPED --start()--------> RUNNING     (control thread, before spawn)
    RUNNING --request_stop()-> FORCED      (control thread)
    RUNNING/FORCED --finish()-> STOPPED    (worker, as its last act)

request_stop() is a compare-and-set under the lock, so a stop request
can never land after the worker has already finished.
"""

from __future__ import annotations

import threading
from enum import Enum


class ActionStatus(Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    FORCED = "forced"


class ExecutionStatus:
    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._value = ActionStatus.STOPPED

    @property
    def value(self) -> ActionStatus:
        with self._cond:
            return self._value

    def is_stopped(self) -> bool:
        return self.value is ActionStatus.STOPPED

    def force_requested(self) -> bool:
        return self.value is ActionStatus.FORCED

    def start(self) -> None:
        with self._cond:
            if self._value is not ActionStatus.STOPPED:
                raise RuntimeError(
                    f"cannot start an action while {self._value.value}"
                )
            self._value = ActionStatus.RUNNING

    def request_stop(self) -> bool:
        """Escalate RUNNING to FORCED. Returns True if this call did it."""
        with self._cond:
            if self._value is not ActionStatus.RUNNING:
                return False
            self._value = ActionStatus.FORCED
            self._cond.notify_all()
            return True

    def finish(self) -> None:
        with self._cond:
            self._value = ActionStatus.STOPPED
            self._cond.notify_all()

    def wait_forced(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, waking early on a stop request.

        Returns True if a stop has been requested.
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: self._value is ActionStatus.FORCED, timeout
            )
