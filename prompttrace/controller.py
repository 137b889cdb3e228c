"""Capture session controller: the public entry point of the engine.

    result = capture_command("cat", [], "hello", "out.json", 10 * 1024 * 1024)

    handle = capture_command_with_handle("claude", [], prompt, path, limit)
    ...
    handle.kill()            # still resolves normally
    result = handle.result()

Every request produces exactly one CaptureResult. Failures never escape as
exceptions; they end up in ``CaptureResult.error`` and the chunk log is
always written (an empty array if nothing was recorded) before the result
is handed back.
"""

import logging
import sys
import termios
import threading
from concurrent.futures import Future
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .errors import SpawnError, WriteError
from .injection import strategy_for_mode
from .modes import ExecutionMode, ModeSelector, caller_is_tty
from .pty_session import DEFAULT_COLS, DEFAULT_KILL_TIMEOUT, DEFAULT_ROWS, open_session
from .recorder import ChunkRecorder
from .terminal import TerminalBridge

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class CaptureRequest:
    command: str
    arguments: tuple = ()
    prompt: str = ""
    output_path: str = ""
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES

    def __post_init__(self):
        object.__setattr__(self, "arguments", tuple(self.arguments))
        object.__setattr__(self, "output_path", str(self.output_path))
        object.__setattr__(self, "prompt", self.prompt or "")
        if not self.command:
            raise ValueError("command is required")
        if not self.output_path:
            raise ValueError("output_path is required")
        if self.max_output_bytes <= 0:
            raise ValueError("max_output_bytes must be positive")


@dataclass
class CaptureResult:
    exit_code: Optional[int]
    truncated: bool
    output_size: int
    output_file: str
    error: Optional[str] = None

    def to_dict(self):
        return asdict(self)


@dataclass
class CaptureOptions:
    """Per-controller settings. Defaults suit library use; the CLI turns on
    passthrough and interactive forwarding."""

    cwd: Optional[str] = None
    env: Optional[Dict[str, str]] = None
    rows: int = DEFAULT_ROWS
    cols: int = DEFAULT_COLS
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    strip_ansi: bool = False
    passthrough: bool = False
    interactive: bool = False
    end_input: bool = True
    command_modes: Optional[Dict[str, ExecutionMode]] = None
    stdin: Any = None
    stdout: Any = None


class CaptureState(Enum):
    CREATED = "created"
    SPAWNING = "spawning"
    RUNNING = "running"
    EXITING = "exiting"
    FINALIZED = "finalized"


class CaptureHandle:
    """A running capture that can be cancelled."""

    def __init__(self, future, kill, mode=None):
        self.future = future
        self.mode = mode
        self._kill = kill

    def kill(self):
        self._kill()

    def done(self):
        return self.future.done()

    def result(self, timeout=None) -> CaptureResult:
        return self.future.result(timeout)


class _CaptureSession:
    """One live capture, from spawn to the persisted chunk log."""

    def __init__(self, request, options, mode):
        self.request = request
        self.options = options
        self.mode = mode
        self.state = CaptureState.CREATED
        self.recorder = ChunkRecorder(request.max_output_bytes, strip_ansi=options.strip_ansi)
        # A person typing into the child owns its input, so no EOT then
        self.strategy = strategy_for_mode(
            mode, end_input=options.end_input and not self._wants_terminal()
        )
        self.future = Future()
        self.session = None
        self.bridge = None
        self.errors = []
        self._kill_requested = False
        self._lock = threading.Lock()

    def run(self):
        request = self.request
        self.state = CaptureState.SPAWNING
        try:
            command, arguments = self.strategy.prepare(
                request.command, request.arguments, request.prompt
            )
            self.session = open_session(
                command,
                arguments,
                self.mode,
                cwd=self.options.cwd,
                env=self.options.env,
                dimensions=(self.options.rows, self.options.cols),
                kill_timeout=self.options.kill_timeout,
            )
            self.session.on_data(self._on_data)
            self.session.on_ready(self._on_ready)
            self.session.on_exit(self._finalize)
            self.session.start()
        except SpawnError as e:
            logger.debug("Spawn failed: %s", e)
            self.errors.append(str(e))
            self._finalize(None)
            return
        except Exception as e:
            logger.exception("Capture of %s failed to start", request.command)
            self.errors.append(str(e))
            self._finalize(None)
            return

        with self._lock:
            if self.state is CaptureState.SPAWNING:
                self.state = CaptureState.RUNNING
                self._attach_terminal()
            kill_now = self._kill_requested
        if kill_now:
            self.session.kill()

    def _wants_terminal(self):
        if not (self.options.interactive and self.mode.uses_pty):
            return False
        return caller_is_tty(self.options.stdin, self.options.stdout)

    def _attach_terminal(self):
        if not self._wants_terminal():
            return
        bridge = TerminalBridge(
            self.session, self.recorder, stdin=self.options.stdin, stdout=self.options.stdout
        )
        try:
            bridge.attach()
        except (OSError, termios.error) as e:
            logger.warning("Interactive input disabled: %s", e)
            return
        self.bridge = bridge

    def _on_ready(self):
        try:
            self.strategy.deliver(self.session, self.request.prompt, self.recorder)
        except WriteError as e:
            logger.warning("Prompt delivery to %s failed: %s", self.request.command, e)
            self.errors.append(str(e))

    def _on_data(self, data):
        self.recorder.record_output(data)
        if self.options.passthrough:
            stdout = self.options.stdout or sys.stdout
            stdout.write(data)
            stdout.flush()

    def kill(self):
        with self._lock:
            if self.state is CaptureState.SPAWNING:
                self._kill_requested = True
                self.state = CaptureState.EXITING
                return
            if self.state is not CaptureState.RUNNING:
                return
            self.state = CaptureState.EXITING
            session = self.session
        logger.debug("Kill requested for %s", self.request.command)
        session.kill()

    def _finalize(self, status):
        with self._lock:
            if self.state is CaptureState.FINALIZED or self.future.done():
                return
            self.state = CaptureState.EXITING
            bridge, self.bridge = self.bridge, None

        path = self.request.output_path
        try:
            if bridge is not None:
                bridge.detach()
            self.strategy.cleanup()
            if self.session is not None:
                if self.session.kill_error is not None:
                    self.errors.append(str(self.session.kill_error))
                self.session.close()
        except Exception as e:
            logger.exception("Cleanup after %s failed", self.request.command)
            self.errors.append(str(e))

        try:
            self.recorder.save(path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write chunk log %s: %s", path, e)
            self.errors.append(f"Failed to write {path}: {e}")

        result = CaptureResult(
            exit_code=status.exit_code if status is not None else None,
            truncated=self.recorder.truncated,
            output_size=self.recorder.output_size,
            output_file=path,
            error="; ".join(self.errors) or None,
        )
        with self._lock:
            self.state = CaptureState.FINALIZED
        logger.debug("Capture of %s finalized: %s", self.request.command, result)
        self.future.set_result(result)


class CaptureController:
    def __init__(self, options=None, selector=None):
        self.options = options or CaptureOptions()
        self.selector = selector or ModeSelector(self.options.command_modes)

    def select_mode(self, command):
        is_tty = caller_is_tty(self.options.stdin, self.options.stdout)
        return self.selector.select(command, is_tty)

    def start(self, request) -> CaptureHandle:
        """Spawn the capture and return immediately with a cancellable handle."""
        mode = self.select_mode(request.command)
        capture = _CaptureSession(request, self.options, mode)
        capture.run()
        return CaptureHandle(capture.future, capture.kill, mode)

    def capture(self, request) -> CaptureResult:
        """Run the capture to completion."""
        return self.start(request).result()


def _request(command, arguments, prompt, output_path, max_output_bytes):
    return CaptureRequest(
        command=command,
        arguments=tuple(arguments or ()),
        prompt=prompt,
        output_path=str(output_path),
        max_output_bytes=max_output_bytes,
    )


def capture_command(
    command, arguments, prompt, output_path,
    max_output_bytes=DEFAULT_MAX_OUTPUT_BYTES, options=None,
):
    request = _request(command, arguments, prompt, output_path, max_output_bytes)
    return CaptureController(options).capture(request)


def capture_command_with_handle(
    command, arguments, prompt, output_path,
    max_output_bytes=DEFAULT_MAX_OUTPUT_BYTES, options=None,
):
    request = _request(command, arguments, prompt, output_path, max_output_bytes)
    return CaptureController(options).start(request)
