"""Shared fixtures for the prompttrace test suite."""

import io
import sys

import pytest

from prompttrace.controller import CaptureOptions
from prompttrace.modes import ExecutionMode

IS_WINDOWS = sys.platform == "win32"

posix_only = pytest.mark.skipif(IS_WINDOWS, reason="needs POSIX processes and pseudoterminals")


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Point the prompttrace home at a temp directory."""
    path = tmp_path / "home"
    monkeypatch.setenv("PROMPTTRACE_HOME", str(path))
    return path


@pytest.fixture
def output_file(tmp_path):
    return tmp_path / "out" / "capture-output.json"


def _detach(kwargs):
    # Never let the test runner's own terminal influence mode selection
    kwargs.setdefault("stdin", io.StringIO())
    kwargs.setdefault("stdout", io.StringIO())


def pty_options(*commands, **kwargs):
    """CaptureOptions that force a pseudoterminal for ``commands``."""
    kwargs.setdefault("kill_timeout", 0.5)
    _detach(kwargs)
    return CaptureOptions(
        command_modes={name: ExecutionMode.PTY_DIRECT for name in commands},
        **kwargs
    )


def pipe_options(**kwargs):
    """CaptureOptions with an empty mode table, so non-terminal callers get pipes."""
    kwargs.setdefault("kill_timeout", 0.5)
    _detach(kwargs)
    return CaptureOptions(command_modes={}, **kwargs)
