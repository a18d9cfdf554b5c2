# Autopilot — Staged Terminal Demo Runner
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Stage file model and loading for Autopilot.

Handles:
- Stage / action dataclasses (message and command actions)
- YAML loading + shape validation (ConfigShapeError on bad input)
- Style mapping to prompt_toolkit style strings
- Data root resolution (AUTOPILOT_DATA_HOME, ~/.local/share)
- Packaged YAML defaults loading (autopilot_cli.defaults/*.yaml)

Credential fields keep their ``$env:NAME`` tokens as written. They are
resolved by the session factory right before a command runs.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from importlib import resources as importlib_resources
from pathlib import Path
from typing import Any, Union

import yaml

from .errors import ConfigShapeError

DEFAULT_SPEED_MS = 50
DEFAULT_SSH_PORT = 22
MAX_SSH_PORT = 65535
DEFAULT_SUDO_USER = "root"

# -----------------------
# Styles
# -----------------------

# Config color name -> prompt_toolkit color
STYLE_COLORS: dict[str, str] = {
    "green": "ansigreen",
    "yellow": "ansiyellow",
    "blue": "ansiblue",
    "cyan": "ansicyan",
    "red": "ansired",
    "magenta": "ansimagenta",
    "white": "ansiwhite",
}


@dataclass(frozen=True)
class StyleConfig:
    color: str | None = None
    bold: bool = False
    italic: bool = False

    @classmethod
    def title(cls) -> StyleConfig:
        return cls(color="white", bold=True)

    @classmethod
    def error(cls) -> StyleConfig:
        return cls(color="red", bold=True)

    def to_style(self) -> str:
        """Render as a prompt_toolkit style string, e.g. "fg:ansigreen bold"."""
        parts: list[str] = []
        if self.color is not None:
            parts.append(f"fg:{STYLE_COLORS.get(self.color, 'ansiwhite')}")
        if self.bold:
            parts.append("bold")
        if self.italic:
            parts.append("italic")
        return " ".join(parts)


# -----------------------
# Stage model
# -----------------------


@dataclass(frozen=True)
class RemoteConfig:
    host: str
    port: int = DEFAULT_SSH_PORT
    user: str | None = None
    password: str | None = None


@dataclass(frozen=True)
class SudoConfig:
    user: str = DEFAULT_SUDO_USER
    password: str = ""


@dataclass(frozen=True)
class LoopConfig:
    times: int = 1
    delay: int = 0


@dataclass(frozen=True)
class MessageAction:
    text: str
    style: StyleConfig | None = None
    speed: int = DEFAULT_SPEED_MS


@dataclass(frozen=True)
class CommandAction:
    commands: tuple[str, ...]
    sudo: SudoConfig | None = None
    hide_stdout: bool = False
    hide_stderr: bool = False
    remote: RemoteConfig | None = None
    loop: LoopConfig = field(default_factory=LoopConfig)

    @property
    def command(self) -> str:
        """Composite command string; a list of commands is AND-chained."""
        return " && ".join(self.commands)


Action = Union[MessageAction, CommandAction]


@dataclass(frozen=True)
class Stage:
    name: str
    actions: tuple[Action, ...]


@dataclass(frozen=True)
class Config:
    """Loaded stage file. Implements the ConfigModel protocol."""

    stages: tuple[Stage, ...]
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    def get_path(self, path: str, default: Any = None) -> Any:
        """
        Nested lookup into the raw mapping using dot-separated path.
        Example: get_path("ui.theme.style", {}) -> dict style mapping
        """
        if not path:
            return default

        cur: Any = self.raw
        for part in path.split("."):
            if not isinstance(cur, dict):
                return default
            if part not in cur:
                return default
            cur = cur[part]
        return cur


# -----------------------
# Shape validation
# -----------------------


def _mapping(value: Any, path: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigShapeError(path, "expected a mapping")
    return value


def _str(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise ConfigShapeError(path, "expected a string")
    return value


def _opt_str(data: dict[str, Any], key: str, path: str, default=None):
    if data.get(key) is None:
        return default
    return _str(data[key], f"{path}.{key}")


def _opt_bool(data: dict[str, Any], key: str, path: str, default: bool) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigShapeError(f"{path}.{key}", "expected a boolean")
    return value


def _opt_int(
    data: dict[str, Any],
    key: str,
    path: str,
    default: int,
    minimum: int = 0,
    maximum: int | None = None,
) -> int:
    value = data.get(key)
    if value is None:
        return default
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigShapeError(f"{path}.{key}", "expected an integer")
    if value < minimum:
        raise ConfigShapeError(f"{path}.{key}", f"must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise ConfigShapeError(f"{path}.{key}", f"must be <= {maximum}")
    return value


def _parse_style(value: Any, path: str) -> StyleConfig | None:
    if value is None:
        return None
    data = _mapping(value, path)
    color = _opt_str(data, "color", path)
    if color is not None and color not in STYLE_COLORS:
        raise ConfigShapeError(
            f"{path}.color",
            f"unknown color {color!r} "
            f"(expected one of: {', '.join(STYLE_COLORS)})",
        )
    return StyleConfig(
        color=color,
        bold=_opt_bool(data, "bold", path, False),
        italic=_opt_bool(data, "italic", path, False),
    )


def _parse_commands(value: Any, path: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and value:
        return tuple(_str(v, f"{path}[{i}]") for i, v in enumerate(value))
    raise ConfigShapeError(path, "expected a string or a non-empty list of strings")


def _parse_sudo(value: Any, path: str) -> SudoConfig | None:
    if value is None or value is False:
        return None
    if value is True:
        return SudoConfig()
    data = _mapping(value, path)
    return SudoConfig(
        user=_opt_str(data, "user", path, DEFAULT_SUDO_USER),
        password=_opt_str(data, "password", path, ""),
    )


def _parse_remote(value: Any, path: str) -> RemoteConfig | None:
    if value is None:
        return None
    data = _mapping(value, path)
    if "host" not in data:
        raise ConfigShapeError(f"{path}.host", "is required")
    return RemoteConfig(
        host=_str(data["host"], f"{path}.host"),
        port=_opt_int(
            data, "port", path, DEFAULT_SSH_PORT, minimum=1, maximum=MAX_SSH_PORT
        ),
        user=_opt_str(data, "user", path),
        password=_opt_str(data, "password", path),
    )


def _parse_loop(value: Any, path: str) -> LoopConfig:
    if value is None:
        return LoopConfig()
    data = _mapping(value, path)
    return LoopConfig(
        times=_opt_int(data, "times", path, 1),
        delay=_opt_int(data, "delay", path, 0),
    )


def _parse_action(value: Any, path: str) -> Action:
    data = _mapping(value, path)
    kind = data.get("type")

    if kind == "message":
        if "text" not in data:
            raise ConfigShapeError(f"{path}.text", "is required")
        return MessageAction(
            text=_str(data["text"], f"{path}.text"),
            style=_parse_style(data.get("style"), f"{path}.style"),
            speed=_opt_int(data, "speed", path, DEFAULT_SPEED_MS),
        )

    if kind == "command":
        if "command" not in data:
            raise ConfigShapeError(f"{path}.command", "is required")
        return CommandAction(
            commands=_parse_commands(data["command"], f"{path}.command"),
            sudo=_parse_sudo(data.get("sudo"), f"{path}.sudo"),
            hide_stdout=_opt_bool(data, "hide_stdout", path, False),
            hide_stderr=_opt_bool(data, "hide_stderr", path, False),
            remote=_parse_remote(data.get("remote"), f"{path}.remote"),
            loop=_parse_loop(data.get("loop"), f"{path}.loop"),
        )

    raise ConfigShapeError(
        f"{path}.type", f"expected 'message' or 'command', got {kind!r}"
    )


def _parse_stage(value: Any, path: str) -> Stage:
    data = _mapping(value, path)
    if "name" not in data:
        raise ConfigShapeError(f"{path}.name", "is required")
    actions = data.get("actions")
    if not isinstance(actions, list) or not actions:
        raise ConfigShapeError(f"{path}.actions", "expected a non-empty list")
    return Stage(
        name=_str(data["name"], f"{path}.name"),
        actions=tuple(
            _parse_action(a, f"{path}.actions[{i}]")
            for i, a in enumerate(actions)
        ),
    )


def parse_config(data: Any) -> Config:
    """Shape already-parsed YAML data into a Config."""
    root = _mapping(data, "")
    stages = root.get("stages")
    if not isinstance(stages, list) or not stages:
        raise ConfigShapeError("stages", "expected a non-empty list")
    return Config(
        stages=tuple(
            _parse_stage(s, f"stages[{i}]") for i, s in enumerate(stages)
        ),
        raw=root,
    )


def load_config(path: Path) -> Config:
    """Read a YAML stage file from disk and validate it."""
    with Path(path).open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigShapeError("", f"invalid YAML in {path}: {e}") from e
    return parse_config(data or {})


# -----------------------
# Data root
# -----------------------


def get_data_root() -> Path:
    """Get the data root directory for Autopilot.

    Resolution order:
    1. AUTOPILOT_DATA_HOME environment variable (if set)
    2. ~/.local/share (default)
    """
    data_home = os.getenv("AUTOPILOT_DATA_HOME")
    if data_home:
        root = Path(data_home)
    else:
        root = Path.home() / ".local" / "share"

    root.mkdir(parents=True, exist_ok=True)
    return root


def crash_log_path(data_root: Path) -> Path:
    """<data_root>/autopilot/logs/crash.log"""
    return data_root / "autopilot" / "logs" / "crash.log"


# -----------------------
# Packaged defaults loading
# -----------------------


def _defaults_dir() -> Path:
    """Return the installed path to packaged defaults directory."""
    return Path(
        importlib_resources.files("autopilot_cli.defaults")
    )  # type: ignore[arg-type]


def load_defaults_yaml(filename: str) -> dict[str, Any]:
    """
    Load a YAML file from autopilot_cli/defaults/.
    """
    defaults_dir = _defaults_dir()
    path = defaults_dir / filename
    if not path.exists():
        raise FileNotFoundError(
            f"Missing defaults YAML: {filename} "
            f"(looked in {defaults_dir})"
        )

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(
            f"Defaults YAML {filename} must load to a mapping/dict."
        )
    return data


def load_demo_config() -> Config:
    """
    Load demo.yaml from packaged defaults.
    """
    return parse_config(load_defaults_yaml("demo.yaml"))
