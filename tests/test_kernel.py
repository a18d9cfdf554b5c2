# tests/test_kernel.py
"""
Kernel tests with dependency injection.
Sessions are faked so navigation and worker behavior can be checked
without touching a shell or the network.
"""
from __future__ import annotations

import random
import threading

import pytest

from autopilot_cli.buffer import BufferedOutput
from autopilot_cli.config import (
    CommandAction,
    Config,
    LoopConfig,
    MessageAction,
    RemoteConfig,
    Stage,
    StyleConfig,
    SudoConfig,
)
from autopilot_cli.errors import AuthenticationFailed, ExecutionError
from autopilot_cli.events import InputEvent
from autopilot_cli.kernel import INTERRUPTED_NOTICE, Kernel
from autopilot_cli.session import open_session
from autopilot_cli.status import ActionStatus

WAIT = 5.0

# ----------------------------------------------------------------
# Mock dependencies
# ----------------------------------------------------------------


class FakeSession:
    """Mock CommandSession returning canned output."""

    def __init__(self, stdout: bytes = b"X\n", stderr: bytes = b"", error=None):
        self.stdout = stdout
        self.stderr = stderr
        self.error = error
        self.calls: list[str] = []
        self.closed = False

    def get_prompt(self) -> str:
        return "[tester@box]$"

    def run_command(self, cmd: str) -> tuple[bytes, bytes]:
        self.calls.append(cmd)
        if self.error is not None:
            raise self.error
        return (self.stdout, self.stderr)

    def close(self) -> None:
        self.closed = True


class BlockingSession(FakeSession):
    """Blocks inside run_command until released."""

    def __init__(self) -> None:
        super().__init__(stdout=b"slow\n")
        self.started = threading.Event()
        self.release = threading.Event()

    def run_command(self, cmd: str) -> tuple[bytes, bytes]:
        self.started.set()
        self.release.wait(WAIT)
        return super().run_command(cmd)


class FakeFactory:
    """Mock SessionFactory."""

    def __init__(self, session: FakeSession | None = None, error=None):
        self.session = session if session is not None else FakeSession()
        self.error = error
        self.calls: list[tuple] = []

    def __call__(self, remote, sudo):
        self.calls.append((remote, sudo))
        if self.error is not None:
            raise self.error
        return self.session


def message(text: str, speed: int = 0) -> MessageAction:
    return MessageAction(text=text, speed=speed)


def command(cmd: str = "run", **kwargs) -> CommandAction:
    return CommandAction(commands=(cmd,), **kwargs)


def make_config(*stages: tuple[str, list]) -> Config:
    return Config(stages=tuple(Stage(name, tuple(actions)) for name, actions in stages))


def make_kernel(*stages: tuple[str, list], factory=None) -> Kernel:
    return Kernel(
        config=make_config(*stages),
        session_factory=factory if factory is not None else FakeFactory(),
    )


def advance(kernel: Kernel) -> None:
    kernel.handle_event(InputEvent.advance())
    assert kernel.wait(WAIT)


def texts(kernel: Kernel) -> list[str]:
    return [seg.text for seg in kernel.buffer.snapshot()]


# ----------------------------------------------------------------
# Construction
# ----------------------------------------------------------------


def test_kernel_writes_first_stage_title_on_start():
    k = make_kernel(("Intro", [message("hi")]))

    assert k.buffer.snapshot() == [BufferedOutput("### Intro ###", StyleConfig.title())]
    assert k.position == (0, 0, False)
    assert k.status_text() == "Stopped"
    assert k.running is True


def test_kernel_requires_stages():
    with pytest.raises(ValueError):
        Kernel(config=Config(stages=()))


def test_kernel_rejects_stage_without_actions():
    with pytest.raises(ValueError):
        Kernel(config=Config(stages=(Stage("Empty", ()),)))


# ----------------------------------------------------------------
# Message actions
# ----------------------------------------------------------------


def test_message_is_typed_into_prompt_segment():
    k = make_kernel(("S", [message("hello"), message("bye")]))

    advance(k)

    assert texts(k) == ["### S ###", "> hello"]
    assert k.position == (0, 1, False)
    assert k.status.value is ActionStatus.STOPPED


def test_message_keeps_its_style():
    style = StyleConfig(color="green", bold=True)
    k = make_kernel(("S", [MessageAction(text="hi", style=style, speed=0)]))

    advance(k)

    assert k.buffer.last() == BufferedOutput("> hi", style)


def test_force_stopped_message_is_completed_not_truncated():
    text = "a rather long message that would take ages to type"
    k = make_kernel(("S", [message(text, speed=1000), message("next")]))

    k.handle_event(InputEvent.advance())
    assert k.status.value is ActionStatus.RUNNING
    assert k.status_text() == "Running..."

    k.handle_event(InputEvent.advance())
    assert k.wait(WAIT)

    assert k.buffer.last().text == "> " + text
    assert k.position == (0, 1, False)
    assert k.status.value is ActionStatus.STOPPED


# ----------------------------------------------------------------
# Interruption
# ----------------------------------------------------------------


def test_advance_while_running_requests_stop_exactly_once():
    session = BlockingSession()
    k = make_kernel(
        ("S", [command(loop=LoopConfig(times=3)), message("after")]),
        factory=FakeFactory(session),
    )

    k.handle_event(InputEvent.advance())
    assert session.started.wait(WAIT)
    assert k.status.value is ActionStatus.RUNNING

    k.handle_event(InputEvent.advance())
    assert k.status.value is ActionStatus.FORCED
    assert k.status_text() == "Stopping..."

    # Further advances while the worker is busy change nothing
    k.handle_event(InputEvent.advance())
    k.handle_event(InputEvent.advance())
    assert k.status.value is ActionStatus.FORCED
    assert k.position == (0, 1, False)
    assert len(k.buffer) == 2

    session.release.set()
    assert k.wait(WAIT)

    # The in-flight repetition completes; the rest are skipped
    assert session.calls == ["run"]
    assert texts(k)[-1] == "[tester@box]$ run\nslow\n" + INTERRUPTED_NOTICE
    assert k.status.value is ActionStatus.STOPPED
    assert session.closed is True


def test_interrupted_notice_respects_hide_stdout():
    session = BlockingSession()
    k = make_kernel(
        ("S", [command(hide_stdout=True, loop=LoopConfig(times=2))]),
        factory=FakeFactory(session),
    )

    k.handle_event(InputEvent.advance())
    assert session.started.wait(WAIT)
    k.handle_event(InputEvent.advance())
    session.release.set()
    assert k.wait(WAIT)

    assert texts(k)[-1] == "[tester@box]$ run\n"


def test_retreat_is_ignored_while_running():
    session = BlockingSession()
    k = make_kernel(("S", [command(), message("x")]), factory=FakeFactory(session))

    k.handle_event(InputEvent.advance())
    assert session.started.wait(WAIT)
    k.handle_event(InputEvent.retreat())

    assert k.position == (0, 1, False)
    assert len(k.buffer) == 2

    session.release.set()
    assert k.wait(WAIT)


# ----------------------------------------------------------------
# Command actions
# ----------------------------------------------------------------


def test_command_loop_appends_output_each_repetition():
    session = FakeSession(stdout=b"X\n")
    k = make_kernel(
        ("S", [command(loop=LoopConfig(times=3, delay=0))]),
        factory=FakeFactory(session),
    )
    appended: list[str] = []
    original = k.buffer.append_last

    def spy(text: str) -> None:
        appended.append(text)
        original(text)

    k.buffer.append_last = spy  # type: ignore[method-assign]

    advance(k)

    assert session.calls == ["run", "run", "run"]
    assert appended == ["X\n", "X\n", "X\n"]
    assert texts(k)[-1] == "[tester@box]$ run\nX\nX\nX\n"


def test_command_loop_with_delay_runs_every_repetition():
    session = FakeSession(stdout=b"tick\n")
    k = make_kernel(
        ("S", [command(loop=LoopConfig(times=2, delay=10))]),
        factory=FakeFactory(session),
    )

    advance(k)

    assert len(session.calls) == 2
    assert texts(k)[-1].count("tick\n") == 2


def test_local_command_runs_for_real_three_times():
    cfg = make_config(
        ("S", [command("printf 'X\\n'", loop=LoopConfig(times=3))])
    )
    k = Kernel(config=cfg)

    advance(k)

    last = texts(k)[-1]
    assert last.endswith("$ printf 'X\\n'\nX\nX\nX\n")


def test_hide_stdout_shows_only_stderr():
    session = FakeSession(stdout=b"out\n", stderr=b"err\n")
    k = make_kernel(("S", [command(hide_stdout=True)]), factory=FakeFactory(session))

    advance(k)

    assert texts(k)[-1] == "[tester@box]$ run\nerr\n"
    assert session.calls == ["run"]


def test_hide_stderr_shows_only_stdout():
    session = FakeSession(stdout=b"out\n", stderr=b"err\n")
    k = make_kernel(("S", [command(hide_stderr=True)]), factory=FakeFactory(session))

    advance(k)

    assert texts(k)[-1] == "[tester@box]$ run\nout\n"


def test_non_utf8_output_is_decoded_lossily():
    session = FakeSession(stdout=b"caf\xff\n")
    k = make_kernel(("S", [command()]), factory=FakeFactory(session))

    advance(k)

    assert texts(k)[-1].endswith("caf�\n")


def test_zero_repetitions_runs_nothing():
    session = FakeSession()
    k = make_kernel(("S", [command(loop=LoopConfig(times=0))]), factory=FakeFactory(session))

    advance(k)

    assert session.calls == []
    assert texts(k)[-1] == "[tester@box]$ run\n"
    assert k.status.value is ActionStatus.STOPPED
    assert session.closed is True


def test_list_command_is_and_chained():
    session = FakeSession(stdout=b"")
    k = make_kernel(
        ("S", [CommandAction(commands=("make", "make test"))]),
        factory=FakeFactory(session),
    )

    advance(k)

    assert session.calls == ["make && make test"]
    assert texts(k)[-1] == "[tester@box]$ make && make test\n"


def test_remote_and_sudo_are_passed_to_session_factory():
    remote = RemoteConfig(host="box", user="me", password="$env:PW")
    sudo = SudoConfig(user="admin")
    factory = FakeFactory()
    k = make_kernel(("S", [command(remote=remote, sudo=sudo)]), factory=factory)

    advance(k)

    assert factory.calls == [(remote, sudo)]


def test_execution_error_is_shown_and_loop_continues():
    session = FakeSession(error=ExecutionError("run", "boom"))
    k = make_kernel(("S", [command(loop=LoopConfig(times=2))]), factory=FakeFactory(session))

    advance(k)

    last = texts(k)[-1]
    assert last.count("error: Failed to execute command: boom\n") == 2
    assert k.status.value is ActionStatus.STOPPED


def test_session_failure_is_reported_inline_and_action_abandoned():
    factory = FakeFactory(error=AuthenticationFailed("Authentication failed for me@box:22"))
    k = make_kernel(("S", [command(), message("next")]), factory=factory)

    k.handle_event(InputEvent.advance())

    assert k.status.value is ActionStatus.STOPPED
    assert k.buffer.last() == BufferedOutput(
        "Authentication failed for me@box:22\n", StyleConfig.error()
    )
    assert k.position == (0, 1, False)

    k.handle_event(InputEvent.retreat())
    assert texts(k) == ["### S ###"]
    assert k.position == (0, 0, False)


def test_unresolvable_remote_host_is_reported_inline():
    remote = RemoteConfig(host="a" * 70 + ".example", user="u")
    k = make_kernel(
        ("S", [command(remote=remote), message("next")]),
        factory=lambda r, s: open_session(r, s, environ={}),
    )

    k.handle_event(InputEvent.advance())

    last = k.buffer.last()
    assert last.style == StyleConfig.error()
    assert last.text.startswith(f"Could not connect to {remote.host}:22")
    assert k.status.value is ActionStatus.STOPPED
    assert k.position == (0, 1, False)


def test_missing_env_token_in_command_is_reported_without_session(
    monkeypatch: pytest.MonkeyPatch,
):
    monkeypatch.delenv("AUTOPILOT_TEST_MISSING", raising=False)
    factory = FakeFactory()
    k = make_kernel(("S", [command("echo $env:AUTOPILOT_TEST_MISSING")]), factory=factory)

    k.handle_event(InputEvent.advance())

    assert factory.calls == []
    assert k.buffer.last().text == "Missing environment variable: 'AUTOPILOT_TEST_MISSING'\n"
    assert k.buffer.last().style == StyleConfig.error()


def test_env_token_in_command_is_resolved_but_not_displayed(
    monkeypatch: pytest.MonkeyPatch,
):
    monkeypatch.setenv("AUTOPILOT_TEST_TARGET", "prod-db")
    session = FakeSession(stdout=b"")
    k = make_kernel(
        ("S", [command("ping $env:AUTOPILOT_TEST_TARGET")]),
        factory=FakeFactory(session),
    )

    advance(k)

    assert session.calls == ["ping prod-db"]
    assert texts(k)[-1] == "[tester@box]$ ping $env:AUTOPILOT_TEST_TARGET\n"


def test_unexpected_worker_exception_is_logged_and_status_reset(
    tmp_path, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.setenv("AUTOPILOT_DATA_HOME", str(tmp_path))
    session = FakeSession(error=RuntimeError("kaboom"))
    k = make_kernel(("S", [command()]), factory=FakeFactory(session))

    advance(k)

    assert k.status.value is ActionStatus.STOPPED
    assert "[ERROR] Unhandled exception: RuntimeError: kaboom" in texts(k)[-1]
    assert session.closed is True

    log = tmp_path / "autopilot" / "logs" / "crash.log"
    content = log.read_text(encoding="utf-8")
    assert "stage=S" in content
    assert "command=run" in content
    assert "RuntimeError: kaboom" in content


# ----------------------------------------------------------------
# Navigation
# ----------------------------------------------------------------


def test_retreat_undoes_advance_for_message():
    k = make_kernel(("S", [message("one"), message("two"), message("three")]))
    advance(k)

    before_pos = k.position
    before_buf = k.buffer.snapshot()

    advance(k)
    k.handle_event(InputEvent.retreat())

    assert k.position == before_pos
    assert k.buffer.snapshot() == before_buf


def test_retreat_undoes_advance_for_hidden_command():
    session = FakeSession(stdout=b"noise\n")
    k = make_kernel(
        ("S", [message("one"), command(hide_stdout=True), message("three")]),
        factory=FakeFactory(session),
    )
    advance(k)

    before_pos = k.position
    before_buf = k.buffer.snapshot()

    advance(k)
    k.handle_event(InputEvent.retreat())

    assert k.position == before_pos
    assert k.buffer.snapshot() == before_buf


def test_retreat_at_start_is_noop():
    k = make_kernel(("S", [message("one")]))

    k.handle_event(InputEvent.retreat())

    assert k.position == (0, 0, False)
    assert texts(k) == ["### S ###"]


def test_stage_title_is_rewritten_when_next_stage_starts():
    k = make_kernel(("One", [message("a")]), ("Two", [message("b")]))

    advance(k)
    # Moving into a stage keeps the previous output on screen
    assert k.position == (1, 0, False)
    assert texts(k) == ["### One ###", "> a"]

    advance(k)
    assert texts(k) == ["### Two ###", "> b"]
    assert k.position == (1, 1, True)
    assert k.status_text() == "Finished"


def test_advance_when_finished_is_noop():
    k = make_kernel(("S", [message("a")]))
    advance(k)
    assert k.finished

    snapshot = k.buffer.snapshot()
    advance(k)

    assert k.position == (0, 1, True)
    assert k.buffer.snapshot() == snapshot


def test_retreat_from_finished_and_across_stages():
    k = make_kernel(("One", [message("a")]), ("Two", [message("b")]))
    advance(k)
    advance(k)
    assert k.finished

    k.handle_event(InputEvent.retreat())
    assert k.position == (1, 0, False)
    assert texts(k) == ["### Two ###"]

    k.handle_event(InputEvent.retreat())
    assert k.position == (0, 0, False)
    assert texts(k) == ["### One ###"]


def test_navigation_stays_in_bounds():
    stages = [
        ("A", [message("a1"), command(), message("a3")]),
        ("B", [command(hide_stderr=True)]),
        ("C", [message("c1"), message("c2")]),
    ]
    k = make_kernel(*stages)
    rng = random.Random(7)

    for _ in range(300):
        if rng.random() < 0.6:
            k.handle_event(InputEvent.advance())
        else:
            k.handle_event(InputEvent.retreat())
        assert k.wait(WAIT)

        stage_idx, action_idx, finished = k.position
        assert 0 <= stage_idx < len(stages)
        n_actions = len(stages[stage_idx][1])
        if finished:
            assert stage_idx == len(stages) - 1
            assert action_idx == n_actions
        else:
            assert 0 <= action_idx < n_actions
        assert len(k.buffer) >= 1


# ----------------------------------------------------------------
# Scroll + quit
# ----------------------------------------------------------------


def test_scroll_adjusts_offset_only():
    k = make_kernel(("S", [message("a")]))

    k.handle_event(InputEvent.scroll_up(3))
    assert k.scroll == 3
    k.handle_event(InputEvent.scroll_down(1))
    assert k.scroll == 2
    k.handle_event(InputEvent.scroll_down(10))
    assert k.scroll == 0
    assert k.position == (0, 0, False)


def test_quit_stops_running_and_interrupts_action():
    session = BlockingSession()
    k = make_kernel(("S", [command(loop=LoopConfig(times=5))]), factory=FakeFactory(session))

    k.handle_event(InputEvent.advance())
    assert session.started.wait(WAIT)
    k.handle_event(InputEvent.quit())

    assert k.running is False
    assert k.status.value is ActionStatus.FORCED

    session.release.set()
    assert k.wait(WAIT)
    assert session.calls == ["run"]


def test_wait_without_worker_returns_true():
    k = make_kernel(("S", [message("a")]))
    assert k.wait(0) is True
