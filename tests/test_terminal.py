"""Tests for the interactive terminal bridge, driven through a pty pair."""

import fcntl
import os
import struct
import termios
import time

import pytest

from prompttrace.errors import WriteError
from prompttrace.recorder import INPUT, ChunkRecorder
from prompttrace.terminal import TerminalBridge
from tests.conftest import posix_only

pytestmark = posix_only


class _Stream:
    def __init__(self, fd):
        self._fd = fd

    def fileno(self):
        return self._fd


class FakeSession:
    command = "fake"

    def __init__(self, fail=False):
        self.writes = []
        self.sizes = []
        self.fail = fail

    def write(self, data):
        if self.fail:
            raise WriteError("Failed to write to 'fake': closed")
        self.writes.append(data)

    def resize(self, rows, cols):
        self.sizes.append((rows, cols))


def _wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


@pytest.fixture
def terminal():
    master, slave = os.openpty()
    fcntl.ioctl(slave, termios.TIOCSWINSZ, struct.pack("HHHH", 50, 132, 0, 0))
    yield master, slave
    os.close(master)
    os.close(slave)


def _bridge(session, recorder, slave):
    return TerminalBridge(
        session, recorder, stdin=_Stream(slave), stdout=_Stream(slave), poll_interval=0.05
    )


class TestTerminalBridge:
    def test_forwards_and_records_keystrokes(self, terminal):
        master, slave = terminal
        session = FakeSession()
        recorder = ChunkRecorder(1024)
        bridge = _bridge(session, recorder, slave)

        bridge.attach()
        try:
            os.write(master, "yes ✓\r".encode("utf-8"))
            assert _wait_for(lambda: "".join(session.writes) == "yes ✓\r")
        finally:
            bridge.detach()

        assert "".join(c.data for c in recorder.chunks if c.direction == INPUT) == "yes ✓\r"

    def test_syncs_terminal_size_on_attach(self, terminal):
        master, slave = terminal
        session = FakeSession()
        bridge = _bridge(session, ChunkRecorder(1024), slave)

        bridge.attach()
        bridge.detach()

        assert session.sizes[0] == (50, 132)

    def test_follows_resizes(self, terminal):
        master, slave = terminal
        session = FakeSession()
        bridge = _bridge(session, ChunkRecorder(1024), slave)

        bridge.attach()
        try:
            fcntl.ioctl(slave, termios.TIOCSWINSZ, struct.pack("HHHH", 40, 100, 0, 0))
            assert _wait_for(lambda: (40, 100) in session.sizes)
        finally:
            bridge.detach()

    def test_detach_restores_terminal_settings(self, terminal):
        master, slave = terminal
        before = termios.tcgetattr(slave)
        bridge = _bridge(FakeSession(), ChunkRecorder(1024), slave)

        bridge.attach()
        assert bridge.attached
        assert termios.tcgetattr(slave) != before
        bridge.detach()

        assert not bridge.attached
        assert termios.tcgetattr(slave) == before
        bridge.detach()  # second detach is a no-op

    def test_write_failure_stops_forwarding(self, terminal):
        master, slave = terminal
        session = FakeSession(fail=True)
        bridge = _bridge(session, ChunkRecorder(1024), slave)

        bridge.attach()
        try:
            os.write(master, b"x")
            assert _wait_for(lambda: not bridge._thread.is_alive())
        finally:
            bridge.detach()
