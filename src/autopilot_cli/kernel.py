# Autopilot — Staged Terminal Demo Runner
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Autopilot kernel.

The action engine behind a demo run:
- stage/action navigation (advance, retreat, finished)
- dispatch of the current action to a typing or command worker
- cooperative interruption of the in-flight action

Important boundary:
- Kernel does not load YAML; it consumes the injected ConfigModel.
- Kernel does not render; a UI reads ``buffer.snapshot()``,
  ``status_text()`` and ``scroll``.

Threading:
- At most one worker thread is alive. Advance while an action runs only
  requests a stop; the next Advance after the worker settles navigates.
- Prompt/header segments are pushed on the calling thread before the
  worker starts; the worker only appends to that last segment.
"""

from __future__ import annotations

import threading
import traceback
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from . import config as cfg_module
from .buffer import OutputBuffer
from .config import CommandAction, MessageAction, Stage, StyleConfig
from .errors import ExecutionError, SessionError
from .events import InputEvent, InputKind
from .interfaces import CommandSession, ConfigModel, SessionFactory
from .session import open_session, resolve_command
from .status import ActionStatus, ExecutionStatus

PROMPT_MARKER = "> "
INTERRUPTED_NOTICE = "Command interrupted!\n"


def write_crash_log(
    error: BaseException,
    stage: str = "",
    action_idx: int | None = None,
    command: str = "",
) -> None:
    """Write an entry to the crash log.

    Logs unhandled exceptions from the control loop or a worker.
    Only creates the log directory when actually needed.
    Appends to crash.log (never overwrites).
    """
    try:
        crash_log_path = cfg_module.crash_log_path(cfg_module.get_data_root())

        # Create logs directory only when we need to write
        crash_log_path.parent.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().isoformat()
        lines = [
            f"{timestamp}",
            f"stage={stage}",
        ]

        if action_idx is not None:
            lines.append(f"action={action_idx}")
        if command:
            lines.append(f"command={command}")

        lines.append(f"error={type(error).__name__}: {error}")
        lines.append("traceback:")
        lines.append(
            "".join(
                traceback.format_exception(
                    type(error), error, error.__traceback__
                )
            )
        )
        lines.append("----")

        with crash_log_path.open("a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")

    except Exception:
        # If we can't write the crash log, fail silently
        # (we're already in an error state)
        pass


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


@dataclass
class Kernel:
    """Autopilot action engine."""

    config: ConfigModel
    session_factory: SessionFactory = open_session

    running: bool = True
    scroll: int = 0

    # Navigation position
    stage_idx: int = 0
    action_idx: int = 0
    finished: bool = False

    buffer: OutputBuffer = field(default_factory=OutputBuffer)
    status: ExecutionStatus = field(default_factory=ExecutionStatus)

    _worker: threading.Thread | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        stages = self.config.stages
        if not stages:
            raise ValueError("at least one stage is required")
        for stage in stages:
            if not stage.actions:
                raise ValueError(f"stage {stage.name!r} has no actions")
        self.write_title()

    # ---- read side (UI) ----

    @property
    def stage(self) -> Stage:
        return self.config.stages[self.stage_idx]

    @property
    def position(self) -> tuple[int, int, bool]:
        return (self.stage_idx, self.action_idx, self.finished)

    def status_text(self) -> str:
        value = self.status.value
        if self.finished and value is not ActionStatus.RUNNING:
            return "Finished"
        if value is ActionStatus.RUNNING:
            return "Running..."
        if value is ActionStatus.FORCED:
            return "Stopping..."
        return "Stopped"

    def wait(self, timeout: float | None = None) -> bool:
        """Join the current worker. Returns True once no worker is alive."""
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    # ---- input ----

    def handle_event(self, event: InputEvent) -> None:
        """Update kernel state based on one input command."""
        if event.kind is InputKind.ADVANCE:
            self.next_action()
        elif event.kind is InputKind.RETREAT:
            self.prev_action()
        elif event.kind is InputKind.SCROLL_UP:
            self.scroll_up(event.amount)
        elif event.kind is InputKind.SCROLL_DOWN:
            self.scroll_down(event.amount)
        elif event.kind is InputKind.QUIT:
            self.exit()

    def scroll_up(self, value: int) -> None:
        self.scroll += value

    def scroll_down(self, value: int) -> None:
        self.scroll = max(0, self.scroll - value)

    def exit(self) -> None:
        self.running = False
        self.status.request_stop()

    # ---- navigation ----

    def write_title(self) -> None:
        self.buffer.reset(f"### {self.stage.name} ###", StyleConfig.title())

    def next_action(self) -> None:
        # Advance doubles as "interrupt" while an action is in flight
        if not self.status.is_stopped():
            self.status.request_stop()
            return
        if self.finished:
            return

        # Title for a new stage is written when its first action runs
        if self.action_idx == 0 and self.stage_idx > 0:
            self.write_title()

        action = self.stage.actions[self.action_idx]
        if isinstance(action, MessageAction):
            self._write_message(action)
        elif isinstance(action, CommandAction):
            self._run_command(action)
        else:
            raise TypeError(f"unknown action type: {type(action).__name__}")

        self._next_action_idx()

    def prev_action(self) -> None:
        if not self.status.is_stopped():
            return
        if self.finished:
            self.finished = False
        if self.action_idx == 0:
            if self.stage_idx > 0:
                self.stage_idx -= 1
                self.write_title()
            return

        self.action_idx -= 1
        self.buffer.pop()

    def _next_action_idx(self) -> None:
        self.action_idx += 1
        if self.action_idx < len(self.stage.actions):
            return
        if self.stage_idx + 1 == len(self.config.stages):
            # Parked just past the last action
            self.finished = True
        else:
            self.stage_idx += 1
            self.action_idx = 0

    # ---- dispatch ----

    def _spawn(
        self, target: Callable[..., None], *args: Any, command: str = ""
    ) -> None:
        stage, action_idx = self.stage.name, self.action_idx

        def _worker() -> None:
            try:
                target(*args)
            except Exception as e:
                write_crash_log(e, stage=stage, action_idx=action_idx, command=command)
                self.buffer.append_last(
                    f"\n[ERROR] Unhandled exception: {type(e).__name__}: {e}\n"
                )
            finally:
                self.status.finish()

        self.status.start()
        self._worker = threading.Thread(
            target=_worker, name="autopilot-action", daemon=True
        )
        self._worker.start()

    def _write_message(self, action: MessageAction) -> None:
        self.buffer.push(PROMPT_MARKER, action.style)
        self._spawn(self._type_message, action.text, action.speed)

    def _type_message(self, text: str, speed: int) -> None:
        delay = speed / 1000
        for idx, ch in enumerate(text):
            if self.status.force_requested():
                # Print the rest of the text all at once
                self.buffer.append_last(text[idx:])
                break
            self.buffer.append_last(ch)
            if delay > 0:
                self.status.wait_forced(delay)

    def _run_command(self, action: CommandAction) -> None:
        try:
            command = resolve_command(action.command)
            session = self.session_factory(action.remote, action.sudo)
        except SessionError as e:
            self.buffer.push(f"{e}\n", StyleConfig.error())
            return

        self.buffer.push(f"{session.get_prompt()} {action.command}\n")
        self._spawn(self._command_loop, session, command, action, command=action.command)

    def _command_loop(
        self, session: CommandSession, command: str, action: CommandAction
    ) -> None:
        times = action.loop.times
        delay = action.loop.delay / 1000
        try:
            for repetition in range(times):
                if self.status.force_requested():
                    self._add_output(INTERRUPTED_NOTICE, action.hide_stdout)
                    break

                try:
                    stdout, stderr = session.run_command(command)
                except ExecutionError as e:
                    self.buffer.append_last(f"error: {e}\n")
                else:
                    self._add_output(_decode(stdout), action.hide_stdout)
                    self._add_output(_decode(stderr), action.hide_stderr)

                if delay > 0 and repetition != times - 1:
                    self.status.wait_forced(delay)
        finally:
            session.close()

    def _add_output(self, output: str, hidden: bool) -> None:
        if not hidden and output:
            self.buffer.append_last(output)
