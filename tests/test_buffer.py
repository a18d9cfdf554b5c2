"""
Tests for the output buffer.
"""

from __future__ import annotations

import threading

import pytest

from autopilot_cli.buffer import BufferedOutput, OutputBuffer
from autopilot_cli.config import StyleConfig


def test_push_defaults_style():
    buf = OutputBuffer()

    buf.push("hello")

    assert buf.snapshot() == [BufferedOutput("hello", StyleConfig())]


def test_append_last_extends_only_last_segment():
    buf = OutputBuffer()
    buf.push("title", StyleConfig.title())
    buf.push("> ", StyleConfig(color="cyan"))

    buf.append_last("hi")
    buf.append_last("")

    assert buf.snapshot() == [
        BufferedOutput("title", StyleConfig.title()),
        BufferedOutput("> hi", StyleConfig(color="cyan")),
    ]


def test_append_to_empty_buffer_raises():
    with pytest.raises(IndexError):
        OutputBuffer().append_last("x")


def test_pop_until_empty():
    buf = OutputBuffer()
    buf.push("a")
    buf.push("b")

    assert buf.pop().text == "b"
    assert len(buf) == 1

    assert buf.pop().text == "a"
    assert len(buf) == 0
    assert buf.pop() is None
    assert buf.last() is None


def test_reset_replaces_everything():
    buf = OutputBuffer()
    buf.push("a")
    buf.push("b")

    buf.reset("### T ###", StyleConfig.title())

    assert buf.snapshot() == [BufferedOutput("### T ###", StyleConfig.title())]


def test_snapshot_is_a_copy():
    buf = OutputBuffer()
    buf.push("a")

    snap = buf.snapshot()
    buf.append_last("b")

    assert snap[0].text == "a"
    assert buf.last().text == "ab"


def test_segment_lines():
    seg = BufferedOutput("$ ls\na\nb\n", StyleConfig())
    assert seg.lines() == ["$ ls", "a", "b"]


def test_concurrent_appends_are_not_lost():
    buf = OutputBuffer()
    buf.push("")

    def writer():
        for _ in range(500):
            buf.append_last("x")

    threads = [threading.Thread(target=writer) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(buf.last().text) == 2000
