# Autopilot — Staged Terminal Demo Runner
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

from __future__ import annotations

from collections.abc import Sequence

from prompt_toolkit.application import Application
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout import HSplit, Layout, Window
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.styles import Style

from .buffer import BufferedOutput
from .events import InputEvent
from .kernel import Kernel, write_crash_log

Fragment = tuple[str, str]

DEFAULT_REFRESH_INTERVAL = 0.05
PAGE_SIZE = 10


# ----------------------------
# Config helpers (from the stage file's optional "ui" section)
# ----------------------------


def _cfg_get_path(kernel: Kernel | None, path: str, default):
    if kernel is None:
        return default
    cfg = getattr(kernel, "config", None)
    if cfg is None or not hasattr(cfg, "get_path"):
        return default
    try:
        return cfg.get_path(path, default)
    except Exception:
        return default


def _cfg_dict(kernel: Kernel | None, path: str, default: dict) -> dict:
    val = _cfg_get_path(kernel, path, default)
    return val if isinstance(val, dict) else default


def _cfg_float(kernel: Kernel | None, path: str, default: float) -> float:
    val = _cfg_get_path(kernel, path, default)
    if isinstance(val, bool) or not isinstance(val, (int, float)) or val <= 0:
        return default
    return float(val)


# ----------------------------
# Theme / Style
# ----------------------------


def _default_style_dict() -> dict[str, str]:
    return {
        "autopilot.body": "bg:#000000 #c0c0c0",
        "autopilot.toolbar": "bg:#0b0b0b #d0d0d0",
        "autopilot.toolbar.title": "bg:#0b0b0b #ffffff bold",
        "autopilot.toolbar.key": "bg:#0b0b0b ansiblue bold",
        "autopilot.status.running": "bg:#0b0b0b ansibrightgreen",
        "autopilot.status.stopping": "bg:#0b0b0b ansired",
        "autopilot.status.stopped": "bg:#0b0b0b ansibrightred",
        "autopilot.status.finished": "bg:#0b0b0b ansibrightyellow",
    }


def _build_style(kernel: Kernel | None) -> Style:
    base = _default_style_dict()
    overrides = _cfg_dict(kernel, "ui.theme.style", {})
    # only keep string->string
    for k, v in list(overrides.items()):
        if isinstance(k, str) and isinstance(v, str):
            base[k] = v
    return Style.from_dict(base)


_STATUS_CLASSES = {
    "Running...": "class:autopilot.status.running",
    "Stopping...": "class:autopilot.status.stopping",
    "Stopped": "class:autopilot.status.stopped",
    "Finished": "class:autopilot.status.finished",
}


# ----------------------------
# Rendering
# ----------------------------


def render_lines(segments: Sequence[BufferedOutput]) -> list[Fragment]:
    """One (style, text) per display line; a blank line follows each segment."""
    lines: list[Fragment] = []
    for seg in segments:
        style = seg.style.to_style()
        for line in seg.lines():
            lines.append((style, line))
        lines.append(("", ""))
    return lines


def visible_lines(
    lines: Sequence[Fragment], height: int, scroll: int
) -> list[Fragment]:
    """
    Tail of ``lines`` that fits ``height``, shifted up by ``scroll`` lines.
    Scrolling past the first line keeps the view pinned at the top.
    """
    if height <= 0:
        return []
    total = len(lines)
    end = max(total - scroll, min(height, total))
    start = max(0, end - height)
    return list(lines[start:end])


def dispatch(kernel: Kernel, event: InputEvent) -> None:
    """Hand one key event to the kernel without letting it kill the app."""
    try:
        kernel.handle_event(event)
    except Exception as e:
        write_crash_log(e, stage=kernel.stage.name, action_idx=kernel.action_idx)
        kernel.buffer.append_last(
            f"\n[ERROR] Unhandled exception: {type(e).__name__}: {e}\n"
        )


class PromptToolkitUI:
    """
    Full-screen demo view:
      - body: the kernel's output buffer, newest lines at the bottom
      - bottom toolbar: key help + action status
      - redraws on a short interval so typing/command output shows live
    """

    def __init__(self, kernel: Kernel) -> None:
        self.kernel = kernel
        self._style = _build_style(kernel)
        self._refresh_interval = _cfg_float(
            kernel, "ui.refresh_interval", DEFAULT_REFRESH_INTERVAL
        )
        self.app: Application | None = None

    # ---------- rendering ----------

    def _body_height(self) -> int:
        try:
            if self.app and self.app.output:
                # one row is taken by the toolbar
                return int(self.app.output.get_size().rows) - 1
        except Exception:
            pass
        return 23

    def body_fragments(self) -> list[Fragment]:
        lines = render_lines(self.kernel.buffer.snapshot())
        shown = visible_lines(lines, self._body_height(), self.kernel.scroll)
        out: list[Fragment] = []
        for style, text in shown:
            out.append((style, text + "\n"))
        return out

    def toolbar_fragments(self) -> list[Fragment]:
        status = self.kernel.status_text()
        return [
            ("class:autopilot.toolbar.title", " AutoPilot "),
            ("class:autopilot.toolbar", " Next "),
            ("class:autopilot.toolbar.key", "<Right>"),
            ("class:autopilot.toolbar", " Prev "),
            ("class:autopilot.toolbar.key", "<Left>"),
            ("class:autopilot.toolbar", " Quit "),
            ("class:autopilot.toolbar.key", "<Q>"),
            ("class:autopilot.toolbar", "  "),
            (_STATUS_CLASSES.get(status, "class:autopilot.toolbar"), f" {status} "),
        ]

    # ---------- application ----------

    def build_application(self) -> Application:
        body = Window(
            FormattedTextControl(self.body_fragments),
            wrap_lines=True,
            style="class:autopilot.body",
        )
        toolbar = Window(
            FormattedTextControl(self.toolbar_fragments),
            height=1,
            style="class:autopilot.toolbar",
        )
        self.app = Application(
            layout=Layout(HSplit([body, toolbar])),
            key_bindings=self.build_key_bindings(self.kernel),
            style=self._style,
            full_screen=True,
            refresh_interval=self._refresh_interval,
        )
        return self.app

    def run(self) -> None:
        app = self.build_application()
        app.run()

    # ---------- keybindings ----------

    def build_key_bindings(self, kernel: Kernel) -> KeyBindings:
        kb = KeyBindings()

        @kb.add("right")
        def _(event):
            dispatch(kernel, InputEvent.advance())

        @kb.add("left")
        def _(event):
            dispatch(kernel, InputEvent.retreat())

        @kb.add("up")
        def _(event):
            dispatch(kernel, InputEvent.scroll_up(1))

        @kb.add("pageup")
        def _(event):
            dispatch(kernel, InputEvent.scroll_up(PAGE_SIZE))

        @kb.add("down")
        def _(event):
            dispatch(kernel, InputEvent.scroll_down(1))

        @kb.add("pagedown")
        def _(event):
            dispatch(kernel, InputEvent.scroll_down(PAGE_SIZE))

        @kb.add("q")
        @kb.add("Q")
        @kb.add("c-c")
        def _(event):
            dispatch(kernel, InputEvent.quit())
            event.app.exit()

        return kb
