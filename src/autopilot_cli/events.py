# Autopilot — Staged Terminal Demo Runner
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""Input commands fed to the kernel by a UI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class InputKind(Enum):
    ADVANCE = "advance"
    RETREAT = "retreat"
    SCROLL_UP = "scroll_up"
    SCROLL_DOWN = "scroll_down"
    QUIT = "quit"


@dataclass(frozen=True)
class InputEvent:
    kind: InputKind
    amount: int = 1

    @classmethod
    def advance(cls) -> InputEvent:
        return cls(InputKind.ADVANCE)

    @classmethod
    def retreat(cls) -> InputEvent:
        return cls(InputKind.RETREAT)

    @classmethod
    def scroll_up(cls, amount: int = 1) -> InputEvent:
        return cls(InputKind.SCROLL_UP, amount)

    @classmethod
    def scroll_down(cls, amount: int = 1) -> InputEvent:
        return cls(InputKind.SCROLL_DOWN, amount)

    @classmethod
    def quit(cls) -> InputEvent:
        return cls(InputKind.QUIT)
