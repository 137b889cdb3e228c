"""PTY session: own one child process for the lifetime of one capture.

Two backends share the same event plumbing:
- PtyProcessSession: pexpect.spawn, so the child gets a real controlling
  terminal (raw mode, colors, window size).
- PipeProcessSession: subprocess.Popen with piped stdin and stdout
  (stderr merged), for when nobody needs a terminal.

Events:
- ready: fired once, synchronously inside start(), right after spawn.
- data:  one per OS read, decoded as UTF-8, in delivery order.
- exit:  fired exactly once with ExitStatus(exit_code, signal).

A reader thread starts draining the child as soon as it exists. Anything it
reads before the ready listeners return is held back, so whatever those
listeners write is always recorded ahead of the output it causes.

Exit follows the child itself, not the end of its output. If a background
grandchild keeps the output open, what is already buffered is read for up
to DRAIN_GRACE seconds and then exit fires.
"""

import codecs
import logging
import os
import select
import signal
import subprocess
import sys
import threading
import time
from collections import namedtuple

import pexpect

from .errors import KillTimeoutError, SpawnError, WriteError

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

# Default PTY dimensions
DEFAULT_ROWS = 24
DEFAULT_COLS = 80

# Seconds between SIGTERM and SIGKILL, and again before giving up on reaping
DEFAULT_KILL_TIMEOUT = 3.0

READ_SIZE = 4096

# How long a single read waits before re-checking the child
_POLL_INTERVAL = 0.1

# Once the child is gone, how long to keep reading output that something
# else (a background grandchild) still holds open
DRAIN_GRACE = 0.5

SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)

ExitStatus = namedtuple("ExitStatus", ["exit_code", "signal"])


class PtySession:
    """Base class: listeners, reader thread, writes and kill escalation.

    Subclasses implement _spawn, _read, _reap, _input_fd, _signal and close,
    and _child_exited when their _read can outlive the child.
    """

    def __init__(
        self,
        command,
        arguments,
        mode,
        cwd=None,
        env=None,
        rows=DEFAULT_ROWS,
        cols=DEFAULT_COLS,
        kill_timeout=DEFAULT_KILL_TIMEOUT,
    ):
        self.command = command
        self.arguments = list(arguments)
        self.mode = mode
        self.cwd = cwd
        self.env = env
        self.rows = rows
        self.cols = cols
        self.kill_timeout = kill_timeout
        self.kill_error = None

        self._ready_listeners = []
        self._data_listeners = []
        self._exit_listeners = []

        # _lock guards the state flags, _emit_lock keeps data and exit
        # events in order, _write_lock serializes writers.
        self._lock = threading.Lock()
        self._emit_lock = threading.RLock()
        self._write_lock = threading.Lock()

        self._started = False
        self._ready_fired = False
        self._ready_done = threading.Event()
        self._pending = []
        self._exited = False
        self._exit_status = None
        self._exit_event = threading.Event()
        self._killing = False
        self._timers = []
        self._reader = None

    # -- listeners -----------------------------------------------------

    def on_ready(self, callback):
        self._ready_listeners.append(callback)

    def on_data(self, callback):
        self._data_listeners.append(callback)

    def on_exit(self, callback):
        self._exit_listeners.append(callback)

    # -- state ---------------------------------------------------------

    @property
    def pid(self):
        raise NotImplementedError

    @property
    def exited(self):
        return self._exited

    @property
    def exit_status(self):
        return self._exit_status

    def wait(self, timeout=None):
        """Block until the exit event fired. Returns the ExitStatus or None."""
        self._exit_event.wait(timeout)
        return self._exit_status

    # -- lifecycle -----------------------------------------------------

    def start(self):
        """Spawn the child, fire ready, then let data flow.

        Raises SpawnError if the child cannot be created.
        """
        with self._lock:
            if self._started:
                raise RuntimeError("session already started")
            self._started = True

        self._spawn()
        logger.debug(
            "Spawned %s %s (pid %s, %s)",
            self.command, " ".join(self.arguments), self.pid, self.mode.value,
        )

        self._reader = threading.Thread(
            target=self._pump,
            name=f"prompttrace-reader-{self.pid}",
            daemon=True,
        )
        self._reader.start()

        try:
            for callback in list(self._ready_listeners):
                callback()
        finally:
            with self._emit_lock:
                self._ready_fired = True
                pending, self._pending = self._pending, []
                for data in pending:
                    self._emit_data(data)
            self._ready_done.set()

    def _pump(self):
        try:
            while True:
                data = self._read()
                if data is None:
                    break
                if data:
                    self._dispatch(data)
                elif self._child_exited():
                    self._drain()
                    break
        finally:
            status = self._reap()
            self._ready_done.wait()
            self._emit_exit(status)

    def _drain(self):
        deadline = time.monotonic() + DRAIN_GRACE
        while time.monotonic() < deadline:
            data = self._read()
            if not data:
                return
            self._dispatch(data)
        logger.debug(
            "%s (pid %s) exited but its output is still open, not waiting for it",
            self.command, self.pid,
        )

    def _dispatch(self, data):
        with self._emit_lock:
            if self._exited:
                return
            if not self._ready_fired:
                self._pending.append(data)
                return
            self._emit_data(data)

    def _emit_data(self, data):
        for callback in list(self._data_listeners):
            try:
                callback(data)
            except Exception:
                logger.exception("Data listener failed for %s", self.command)

    def _emit_exit(self, status):
        with self._emit_lock:
            with self._lock:
                if self._exited:
                    return
                self._exited = True
                self._exit_status = status
                timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()

        logger.debug(
            "%s (pid %s) exited: code=%s signal=%s",
            self.command, self.pid, status.exit_code, status.signal,
        )
        try:
            for callback in list(self._exit_listeners):
                callback(status)
        finally:
            self._exit_event.set()

    # -- input ---------------------------------------------------------

    def write(self, data):
        """Write all of ``data`` to the child. A no-op once it has exited."""
        if not data:
            return
        with self._write_lock:
            if self._exited:
                logger.debug("Ignoring write to %s after exit", self.command)
                return
            try:
                fd = self._input_fd()
                view = memoryview(data.encode("utf-8"))
                while view:
                    written = os.write(fd, view)
                    if written == 0:
                        raise OSError("input channel accepted no data")
                    view = view[written:]
            except (OSError, ValueError) as e:
                if self._exited:
                    return
                raise WriteError(f"Failed to write to '{self.command}': {e}") from e

    def close_input(self):
        """Signal end of input. Only meaningful for pipes."""

    def resize(self, rows, cols):
        """Change the terminal geometry. Only meaningful for PTYs."""

    # -- termination ---------------------------------------------------

    def kill(self):
        """Terminate the child. Idempotent and never blocks.

        SIGTERM first; SIGKILL after kill_timeout; if the process still has
        not been reaped after another kill_timeout, the exit event is
        synthesized with exit_code=None.
        """
        with self._lock:
            if not self._started or self._exited or self._killing:
                return
            self._killing = True

        logger.debug("Sending SIGTERM to %s (pid %s)", self.command, self.pid)
        try:
            self._signal(force=False)
        except OSError as e:
            logger.warning("SIGTERM to %s (pid %s) failed: %s", self.command, self.pid, e)
        self._arm(self.kill_timeout, self._escalate)

    def _arm(self, delay, callback):
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        with self._lock:
            if self._exited:
                return
            self._timers.append(timer)
        timer.start()

    def _escalate(self):
        if self._exited:
            return
        logger.warning(
            "%s (pid %s) still running %.1fs after SIGTERM, sending SIGKILL",
            self.command, self.pid, self.kill_timeout,
        )
        try:
            self._signal(force=True)
        except OSError as e:
            self.kill_error = KillTimeoutError(
                f"Failed to force-kill '{self.command}' (pid {self.pid}): {e}"
            )
            logger.error("%s", self.kill_error)
        self._arm(self.kill_timeout, self._synthesize_exit)

    def _synthesize_exit(self):
        if self._exited:
            return
        logger.error(
            "%s (pid %s) was not reaped %.1fs after SIGKILL, abandoning it",
            self.command, self.pid, self.kill_timeout,
        )
        if self.kill_error is None:
            self.kill_error = KillTimeoutError(
                f"'{self.command}' (pid {self.pid}) did not exit after SIGKILL"
            )
        self._emit_exit(ExitStatus(None, SIGKILL))

    # -- backend hooks -------------------------------------------------

    def _spawn(self):
        raise NotImplementedError

    def _read(self):
        """Return decoded text, "" when nothing arrived yet, None at EOF."""
        raise NotImplementedError

    def _child_exited(self):
        """True once the child process itself has terminated."""
        return False

    def _reap(self):
        raise NotImplementedError

    def _input_fd(self):
        raise NotImplementedError

    def _signal(self, force):
        raise NotImplementedError

    def close(self):
        """Release file descriptors once the session has exited."""


class PtyProcessSession(PtySession):
    """Child attached to a pseudoterminal through pexpect."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._child = None

    @property
    def pid(self):
        return self._child.pid if self._child is not None else None

    def _spawn(self):
        if IS_WINDOWS:
            raise SpawnError(self.command, "pseudoterminals are not supported on this platform")
        try:
            self._child = pexpect.spawn(
                self.command,
                self.arguments,
                cwd=self.cwd,
                env=self.env,
                encoding="utf-8",
                codec_errors="replace",
                dimensions=(self.rows, self.cols),
                timeout=None,
            )
        except pexpect.ExceptionPexpect as e:
            raise SpawnError(self.command, str(e)) from e
        except OSError as e:
            raise SpawnError(self.command, e.strerror or str(e)) from e

    def _read(self):
        try:
            return self._child.read_nonblocking(size=READ_SIZE, timeout=_POLL_INTERVAL)
        except pexpect.TIMEOUT:
            return ""
        except pexpect.EOF:
            return None
        except (OSError, ValueError) as e:
            # The descriptor was closed under us (abandoned session)
            logger.debug("PTY read from %s ended: %s", self.command, e)
            return None

    def _child_exited(self):
        try:
            return not self._child.isalive()
        except pexpect.ExceptionPexpect:
            return True

    def _reap(self):
        try:
            if self._child.isalive():
                self._child.wait()
        except pexpect.ExceptionPexpect as e:
            logger.debug("Could not reap %s (pid %s): %s", self.command, self.pid, e)
        return ExitStatus(self._child.exitstatus, self._child.signalstatus)

    def _input_fd(self):
        return self._child.child_fd

    def _signal(self, force):
        if self._child.terminated:
            return
        sig = SIGKILL if force else signal.SIGTERM
        try:
            # The child leads its own session, so this reaches its children too
            os.killpg(self._child.pid, sig)
        except ProcessLookupError:
            pass

    def resize(self, rows, cols):
        if self._exited:
            return
        try:
            self._child.setwinsize(rows, cols)
        except OSError as e:
            logger.debug("Resize of %s failed: %s", self.command, e)

    def close(self):
        if self._child is None or self._child.closed:
            return
        try:
            self._child.close(force=True)
        except (OSError, pexpect.ExceptionPexpect) as e:
            logger.debug("Closing PTY for %s failed: %s", self.command, e)


class PipeProcessSession(PtySession):
    """Child with plain pipes; stderr is folded into the output stream."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._proc = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._eof = False

    @property
    def pid(self):
        return self._proc.pid if self._proc is not None else None

    def _spawn(self):
        if IS_WINDOWS:
            group = {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
        else:
            group = {"start_new_session": True}
        try:
            self._proc = subprocess.Popen(
                [self.command] + self.arguments,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                cwd=self.cwd,
                env=self.env,
                bufsize=0,
                **group
            )
        except OSError as e:
            raise SpawnError(self.command, e.strerror or str(e)) from e

    def _read(self):
        if self._eof:
            return None
        try:
            fd = self._proc.stdout.fileno()
            if not IS_WINDOWS:
                ready, _, _ = select.select([fd], [], [], _POLL_INTERVAL)
                if not ready:
                    return ""
            data = os.read(fd, READ_SIZE)
        except (OSError, ValueError) as e:
            logger.debug("Pipe read from %s ended: %s", self.command, e)
            data = b""
        if data:
            return self._decoder.decode(data)
        self._eof = True
        tail = self._decoder.decode(b"", final=True)
        return tail or None

    def _child_exited(self):
        return self._proc.poll() is not None

    def _reap(self):
        returncode = self._proc.wait()
        if returncode < 0:
            return ExitStatus(None, -returncode)
        return ExitStatus(returncode, None)

    def _input_fd(self):
        return self._proc.stdin.fileno()

    def close_input(self):
        with self._write_lock:
            stdin = self._proc.stdin if self._proc is not None else None
            if stdin is None or stdin.closed:
                return
            try:
                stdin.close()
            except OSError as e:
                logger.debug("Closing stdin of %s failed: %s", self.command, e)

    def _signal(self, force):
        if self._proc.returncode is not None:
            return
        sig = SIGKILL if force else signal.SIGTERM
        if hasattr(os, "killpg"):
            try:
                os.killpg(self._proc.pid, sig)
            except ProcessLookupError:
                pass
        elif force:
            self._proc.kill()
        else:
            self._proc.terminate()

    def close(self):
        if self._proc is None:
            return
        for stream in (self._proc.stdin, self._proc.stdout):
            if stream is not None and not stream.closed:
                try:
                    stream.close()
                except OSError as e:
                    logger.debug("Closing pipe of %s failed: %s", self.command, e)


def open_session(
    command,
    arguments,
    mode,
    cwd=None,
    env=None,
    dimensions=(DEFAULT_ROWS, DEFAULT_COLS),
    kill_timeout=DEFAULT_KILL_TIMEOUT,
):
    """Build an unstarted session for ``mode``. Call start() to spawn."""
    session_cls = PtyProcessSession if mode.uses_pty else PipeProcessSession
    rows, cols = dimensions
    return session_cls(
        command,
        arguments,
        mode,
        cwd=cwd,
        env=env,
        rows=rows,
        cols=cols,
        kill_timeout=kill_timeout,
    )
