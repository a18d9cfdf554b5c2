# Autopilot — Staged Terminal Demo Runner
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Autopilot CLI entry point.

Design:
- CLI owns process startup and stage file loading.
- Kernel is the action engine (config + session factory injected).
- UI is a full-screen prompt_toolkit view; ``--plain`` (or
  AUTOPILOT_PLAIN_UI=1) falls back to a line-mode driver.
"""

from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Callable
from pathlib import Path

from . import config
from .errors import ConfigShapeError
from .events import InputEvent, InputKind
from .kernel import Kernel, write_crash_log
from .ui import PromptToolkitUI

PLAIN_INPUTS: dict[str, InputEvent] = {
    "": InputEvent.advance(),
    "n": InputEvent.advance(),
    "next": InputEvent.advance(),
    "p": InputEvent.retreat(),
    "prev": InputEvent.retreat(),
    "q": InputEvent.quit(),
    "quit": InputEvent.quit(),
}

QUIT_JOIN_TIMEOUT = 1.0


def _describe_position(kernel: Kernel) -> str:
    stages = kernel.config.stages
    stage = kernel.stage
    return (
        f"[stage {kernel.stage_idx + 1}/{len(stages)} '{stage.name}', "
        f"action {kernel.action_idx + 1}/{len(stage.actions)}]"
    )


def run_plain(
    kernel: Kernel,
    input_fn: Callable[[str], str] = input,
    output_fn: Callable[[str], None] = print,
) -> None:
    """Line-mode driver: Enter/n = next, p = prev, q = quit.

    Every Advance waits for its action to finish before printing it.
    """
    last = kernel.buffer.last()
    if last is not None:
        output_fn(last.text)

    while kernel.running:
        try:
            line = input_fn(f"({kernel.status_text()}) > ")
        except (KeyboardInterrupt, EOFError):
            output_fn("\nBye!")
            break

        event = PLAIN_INPUTS.get(line.strip().lower())
        if event is None:
            output_fn(f"Unknown input {line!r}: Enter/n = next, p = prev, q = quit")
            continue

        before = kernel.position
        try:
            kernel.handle_event(event)
        except Exception as e:
            write_crash_log(e, stage=kernel.stage.name, action_idx=kernel.action_idx)
            output_fn(f"[ERROR] Unhandled exception: {type(e).__name__}: {e}")
            continue

        if event.kind is InputKind.ADVANCE:
            kernel.wait()
            if kernel.position == before:
                output_fn("[Finished]")
                continue
            last = kernel.buffer.last()
            if last is not None:
                output_fn(last.text.rstrip("\n"))
        elif event.kind is InputKind.RETREAT:
            output_fn(_describe_position(kernel))

    kernel.exit()
    kernel.wait(QUIT_JOIN_TIMEOUT)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autopilot",
        description="Play back a scripted terminal demo one step at a time.",
    )
    parser.add_argument(
        "config_path",
        nargs="?",
        type=Path,
        help="YAML stage file (default: packaged demo)",
    )
    parser.add_argument(
        "--plain",
        action="store_true",
        help="line-mode input instead of the full-screen view",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for Autopilot CLI."""
    args = build_parser().parse_args(argv)

    try:
        if args.config_path is not None:
            cfg = config.load_config(args.config_path)
        else:
            cfg = config.load_demo_config()
    except (OSError, ConfigShapeError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)

    kernel = Kernel(config=cfg)

    if args.plain or os.environ.get("AUTOPILOT_PLAIN_UI") == "1":
        run_plain(kernel)
        return

    ui = PromptToolkitUI(kernel)
    try:
        ui.run()
    finally:
        kernel.exit()
        kernel.wait(QUIT_JOIN_TIMEOUT)
