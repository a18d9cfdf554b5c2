# Autopilot — Staged Terminal Demo Runner
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Output buffer shared between the kernel and its action worker.

The buffer is an ordered list of styled segments. The control thread
pushes, pops and resets segments; a worker only ever appends text to
the last one. Every operation takes the same lock for one step only.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from .config import StyleConfig


@dataclass(frozen=True)
class BufferedOutput:
    text: str
    style: StyleConfig

    def lines(self) -> list[str]:
        return self.text.splitlines()


class OutputBuffer:
    """Lock-guarded, append-mostly sequence of BufferedOutput segments."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._segments: list[BufferedOutput] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._segments)

    def push(self, text: str, style: StyleConfig | None = None) -> None:
        segment = BufferedOutput(text, style if style is not None else StyleConfig())
        with self._lock:
            self._segments.append(segment)

    def append_last(self, text: str) -> None:
        """Append text to the last segment; empty text is ignored."""
        if not text:
            return
        with self._lock:
            if not self._segments:
                raise IndexError("append to empty output buffer")
            last = self._segments[-1]
            self._segments[-1] = BufferedOutput(last.text + text, last.style)

    def pop(self) -> BufferedOutput | None:
        with self._lock:
            return self._segments.pop() if self._segments else None

    def reset(self, text: str, style: StyleConfig | None = None) -> None:
        """Clear and push a single segment as one step."""
        segment = BufferedOutput(text, style if style is not None else StyleConfig())
        with self._lock:
            self._segments[:] = [segment]

    def last(self) -> BufferedOutput | None:
        with self._lock:
            return self._segments[-1] if self._segments else None

    def snapshot(self) -> list[BufferedOutput]:
        with self._lock:
            return list(self._segments)
