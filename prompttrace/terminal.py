"""Interactive passthrough: let the user keep typing into a PTY child.

While a capture runs in a real terminal, our own stdin goes into raw mode
and every keystroke is forwarded to the child (and logged as an input
chunk). The original terminal settings are restored on detach.
"""

import codecs
import logging
import os
import select
import sys
import termios
import threading
import tty

from .errors import WriteError

logger = logging.getLogger(__name__)


class TerminalBridge:
    def __init__(self, session, recorder, stdin=None, stdout=None, poll_interval=0.25):
        self._session = session
        self._recorder = recorder
        self._stdin = stdin if stdin is not None else sys.stdin
        self._stdout = stdout if stdout is not None else sys.stdout
        self.poll_interval = poll_interval

        self._fd = None
        self._saved_attrs = None
        self._size = None
        self._stop_r = None
        self._stop_w = None
        self._thread = None

    @property
    def attached(self):
        return self._thread is not None

    def attach(self):
        self._fd = self._stdin.fileno()
        self._saved_attrs = termios.tcgetattr(self._fd)
        tty.setraw(self._fd)
        self._sync_size()

        self._stop_r, self._stop_w = os.pipe()
        self._thread = threading.Thread(
            target=self._forward,
            name="prompttrace-stdin",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Forwarding terminal input to %s", self._session.command)

    def detach(self):
        if self._thread is None:
            return
        os.write(self._stop_w, b"x")
        self._thread.join(timeout=1.0)
        self._thread = None

        # Restore terminal settings
        try:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved_attrs)
        except termios.error as e:
            logger.warning("Could not restore terminal settings: %s", e)

        for fd in (self._stop_r, self._stop_w):
            os.close(fd)
        self._stop_r = self._stop_w = None

    def _sync_size(self):
        try:
            size = os.get_terminal_size(self._stdout.fileno())
        except (OSError, ValueError):
            return
        if size != self._size:
            self._size = size
            self._session.resize(size.lines, size.columns)

    def _forward(self):
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            ready, _, _ = select.select([self._fd, self._stop_r], [], [], self.poll_interval)
            if self._stop_r in ready:
                return
            # No SIGWINCH handler from a worker thread, so poll for resizes
            self._sync_size()
            if self._fd not in ready:
                continue

            data = os.read(self._fd, 1024)
            if not data:
                return
            text = decoder.decode(data)
            if not text:
                continue

            self._recorder.record_input(text)
            try:
                self._session.write(text)
            except WriteError as e:
                logger.debug("Stopped forwarding input: %s", e)
                return
