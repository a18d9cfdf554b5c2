# Autopilot — Staged Terminal Demo Runner
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Command sessions: one interface over local and remote (SSH) execution.

A session is built per command action by ``open_session``:
- ``$env:NAME`` tokens in remote/sudo credentials are resolved here,
  never at load time, and are not cached between actions.
- Remote sessions connect and authenticate up front (paramiko), so an
  unreachable host or bad password fails before the action starts.
- Under sudo, commands are rewritten to feed the password on stdin.

Both variants implement the CommandSession protocol:
get_prompt(), run_command(cmd), close().
"""

from __future__ import annotations

import getpass
import os
import re
import shlex
import socket
import time
from collections.abc import Callable, Mapping
from dataclasses import replace

import paramiko

from .config import RemoteConfig, SudoConfig
from .errors import (
    AuthenticationFailed,
    ConnectionFailed,
    ExecutionError,
    MissingEnvironmentVariable,
)
from .executor import SubprocessExecutor
from .interfaces import Executor

ENV_PREFIX = "$env:"
CONNECT_TIMEOUT = 10.0
RECV_CHUNK = 32768
POLL_INTERVAL = 0.02

# A whole whitespace-delimited token of the form $env:NAME
_ENV_TOKEN = re.compile(r"(?<!\S)\$env:([A-Za-z_][A-Za-z0-9_]*)(?!\S)")


# ----------------------------
# Environment indirection
# ----------------------------


def resolve_env(
    value: str | None, environ: Mapping[str, str] | None = None
) -> str | None:
    """Resolve a ``$env:NAME`` value against the environment.

    Values without the prefix are returned unchanged.

    Raises:
        MissingEnvironmentVariable: NAME is not set
    """
    if value is None or not value.startswith(ENV_PREFIX):
        return value
    env = os.environ if environ is None else environ
    name = value[len(ENV_PREFIX):]
    if name not in env:
        raise MissingEnvironmentVariable(name)
    return env[name]


def resolve_command(
    command: str, environ: Mapping[str, str] | None = None
) -> str:
    """Replace every standalone ``$env:NAME`` token inside a command."""
    env = os.environ if environ is None else environ

    def _sub(m: re.Match[str]) -> str:
        name = m.group(1)
        if name not in env:
            raise MissingEnvironmentVariable(name)
        return env[name]

    return _ENV_TOKEN.sub(_sub, command)


def resolve_sudo_config(
    sudo: SudoConfig, environ: Mapping[str, str] | None = None
) -> SudoConfig:
    return SudoConfig(
        user=resolve_env(sudo.user, environ),
        password=resolve_env(sudo.password, environ),
    )


def resolve_remote_config(
    remote: RemoteConfig, environ: Mapping[str, str] | None = None
) -> RemoteConfig:
    return replace(
        remote,
        host=resolve_env(remote.host, environ),
        user=resolve_env(remote.user, environ) or _local_user(),
        password=resolve_env(remote.password, environ),
    )


# ----------------------------
# Prompt + sudo helpers
# ----------------------------


def _local_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def format_prompt(user: str, host: str, privileged: bool) -> str:
    return f"[{user}@{host}]{'#' if privileged else '$'}"


def sudo_command(cmd: str, sudo: SudoConfig | None) -> str:
    """Rewrite ``cmd`` to run through sudo with the password on stdin.

    ``-k`` ignores cached credentials so the piped password is always
    consumed, ``-p ''`` keeps the password prompt out of captured output.
    """
    if sudo is None:
        return cmd
    return (
        f"echo {shlex.quote(sudo.password)} | "
        f"sudo -kS -u {shlex.quote(sudo.user)} -p '' {cmd}"
    )


# ----------------------------
# Session variants
# ----------------------------


def _drain(channel: paramiko.Channel) -> tuple[bytes, bytes]:
    """Poll stdout and stderr together until the command exits."""
    out = bytearray()
    err = bytearray()
    while True:
        progressed = False
        if channel.recv_ready():
            out += channel.recv(RECV_CHUNK)
            progressed = True
        if channel.recv_stderr_ready():
            err += channel.recv_stderr(RECV_CHUNK)
            progressed = True
        if (
            (channel.exit_status_ready() or channel.closed)
            and not channel.recv_ready()
            and not channel.recv_stderr_ready()
        ):
            break
        if not progressed:
            time.sleep(POLL_INTERVAL)
    return (bytes(out), bytes(err))


class LocalSession:
    """Runs commands through a local shell."""

    def __init__(
        self, sudo: SudoConfig | None = None, executor: Executor | None = None
    ):
        self.sudo = sudo
        self.executor = executor if executor is not None else SubprocessExecutor()

    def get_prompt(self) -> str:
        user = self.sudo.user if self.sudo else _local_user()
        return format_prompt(user, socket.gethostname(), self.sudo is not None)

    def run_command(self, cmd: str) -> tuple[bytes, bytes]:
        _exit_code, stdout, stderr = self.executor.run(sudo_command(cmd, self.sudo))
        return (stdout, stderr)

    def close(self) -> None:
        pass


class RemoteSession:
    """Runs commands over an authenticated SSH connection."""

    def __init__(
        self,
        client: paramiko.SSHClient,
        remote: RemoteConfig,
        sudo: SudoConfig | None = None,
    ):
        self.client = client
        self.remote = remote
        self.sudo = sudo

    def get_prompt(self) -> str:
        user = self.sudo.user if self.sudo else self.remote.user
        host = f"{self.remote.host}:{self.remote.port}"
        return format_prompt(user or "", host, self.sudo is not None)

    def run_command(self, cmd: str) -> tuple[bytes, bytes]:
        full_cmd = sudo_command(cmd, self.sudo)
        try:
            _stdin, stdout, stderr = self.client.exec_command(full_cmd)
            out, err = _drain(stdout.channel)
            out += stdout.read()
            err += stderr.read()
        except (paramiko.SSHException, OSError) as e:
            raise ExecutionError(cmd, str(e)) from e
        return (out, err)

    def close(self) -> None:
        self.client.close()


# ----------------------------
# Factory
# ----------------------------


def connect_ssh(remote: RemoteConfig) -> paramiko.SSHClient:
    """Open and authenticate an SSH connection for a resolved RemoteConfig.

    With a password, only password auth is attempted. Without one, the
    SSH agent and default key files are used.
    """
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    connect_kwargs = {
        "hostname": remote.host,
        "port": remote.port,
        "username": remote.user,
        "timeout": CONNECT_TIMEOUT,
    }
    if remote.password is not None:
        connect_kwargs["password"] = remote.password
        connect_kwargs["allow_agent"] = False
        connect_kwargs["look_for_keys"] = False

    addr = f"{remote.host}:{remote.port}"
    try:
        client.connect(**connect_kwargs)
    except paramiko.AuthenticationException as e:
        client.close()
        raise AuthenticationFailed(
            f"Authentication failed for {remote.user}@{addr}: {e}"
        ) from e
    except (paramiko.SSHException, OSError, ValueError) as e:
        # ValueError covers UnicodeError from IDNA-encoding a bad hostname
        client.close()
        raise ConnectionFailed(f"Could not connect to {addr}: {e}") from e

    return client


def open_session(
    remote: RemoteConfig | None,
    sudo: SudoConfig | None,
    *,
    environ: Mapping[str, str] | None = None,
    executor: Executor | None = None,
    connect: Callable[[RemoteConfig], paramiko.SSHClient] = connect_ssh,
) -> LocalSession | RemoteSession:
    """Build a ready CommandSession (implements SessionFactory).

    All credentials are resolved before any connection is attempted.

    Raises:
        MissingEnvironmentVariable, ConnectionFailed, AuthenticationFailed
    """
    resolved_sudo = resolve_sudo_config(sudo, environ) if sudo else None

    if remote is None:
        return LocalSession(sudo=resolved_sudo, executor=executor)

    resolved_remote = resolve_remote_config(remote, environ)
    client = connect(resolved_remote)
    return RemoteSession(client, resolved_remote, sudo=resolved_sudo)
