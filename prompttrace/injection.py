"""Input injection: when and how the prompt reaches the child.

Every strategy follows the same three steps:

    command, arguments = strategy.prepare(command, arguments, prompt)
    ...spawn, then inside the ready handler...
    strategy.deliver(session, prompt, recorder)
    ...after exit...
    strategy.cleanup()

The input chunk is always recorded before the bytes are written, and
nothing is ever retried: a WriteError goes straight back to the caller.
"""

import logging
import os
import tempfile
import threading

from .errors import WriteError
from .modes import ExecutionMode

logger = logging.getLogger(__name__)

# Ctrl-D: at the start of a line a terminal in canonical mode turns it into EOF
EOT = "\x04"

# Delay between the prompt and EOT so the line discipline hands the prompt
# over as its own read first
EOT_DELAY = 0.05


def has_prompt(prompt):
    """Empty and whitespace-only prompts are never delivered."""
    return bool(prompt and prompt.strip())


def _with_newline(prompt):
    return prompt if prompt.endswith("\n") else prompt + "\n"


class InjectionStrategy:
    name = "base"

    def prepare(self, command, arguments, prompt):
        """Return the (command, arguments) that should actually be spawned."""
        return command, list(arguments)

    def deliver(self, session, prompt, recorder):
        raise NotImplementedError

    def cleanup(self):
        pass


class PipeInjection(InjectionStrategy):
    """Write the prompt to stdin, then close it so filters see EOF."""

    name = "pipe"

    def deliver(self, session, prompt, recorder):
        try:
            if has_prompt(prompt):
                payload = _with_newline(prompt)
                recorder.record_input(payload)
                session.write(payload)
        finally:
            session.close_input()


class DirectPtyInjection(InjectionStrategy):
    """One bulk write into the PTY right after the process is created.

    Programs with paste detection only flag bulk input that arrives after
    their UI has started, so writing at spawn time gets through as typed
    input. No per-character typing and no temp files.

    With ``end_input`` (the default) an EOT follows the prompt after
    ``eot_delay`` seconds, so programs that read to end of input (``cat``,
    ``sort``, ``sh``) finish on their own. Turn it off when someone keeps
    typing into the child after the prompt. EOT is a control byte, not
    prompt text, so it never shows up as an input chunk.
    """

    name = "pty-direct"

    def __init__(self, end_input=True, eot_delay=EOT_DELAY):
        self.end_input = end_input
        self.eot_delay = eot_delay
        self._eot_timer = None

    def deliver(self, session, prompt, recorder):
        if not has_prompt(prompt):
            return
        payload = _with_newline(prompt)
        recorder.record_input(payload)
        session.write(payload)

        if self.end_input:
            timer = threading.Timer(self.eot_delay, self._send_eot, args=(session,))
            timer.daemon = True
            self._eot_timer = timer
            timer.start()

    def _send_eot(self, session):
        try:
            session.write(EOT)
        except WriteError as e:
            logger.debug("Could not send EOT to %s: %s", session.command, e)

    def cleanup(self):
        if self._eot_timer is not None:
            self._eot_timer.cancel()
            self._eot_timer = None


class StagedPtyInjection(InjectionStrategy):
    """Legacy: stage the prompt in a temp file and let a shell feed it in.

    The target runs under ``/bin/sh -c 'cat "$0" | "$@"'`` inside the PTY,
    so its output still goes to the terminal while the prompt arrives on
    stdin. Superseded by DirectPtyInjection; kept for compatibility testing.
    """

    name = "pty-staged"

    def __init__(self, shell="/bin/sh"):
        self.shell = shell
        self.prompt_file = None

    def prepare(self, command, arguments, prompt):
        if not has_prompt(prompt):
            return command, list(arguments)

        fd, path = tempfile.mkstemp(prefix="prompttrace-", suffix=".prompt")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(_with_newline(prompt))
        self.prompt_file = path
        logger.debug("Staged prompt for %s in %s", command, path)
        return self.shell, ["-c", 'cat "$0" | "$@"', path, command] + list(arguments)

    def deliver(self, session, prompt, recorder):
        # The shell does the writing; log what it will send
        if self.prompt_file is not None:
            recorder.record_input(_with_newline(prompt))

    def cleanup(self):
        if self.prompt_file is None:
            return
        try:
            os.remove(self.prompt_file)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove staged prompt %s: %s", self.prompt_file, e)
        self.prompt_file = None


_STRATEGIES = {
    ExecutionMode.PIPE_DIRECT: PipeInjection,
    ExecutionMode.PTY_DIRECT: DirectPtyInjection,
    ExecutionMode.PTY_STAGED: StagedPtyInjection,
}


def strategy_for_mode(mode, end_input=True):
    """Return a fresh strategy instance for ``mode``.

    ``end_input`` only affects PTY_DIRECT: whether EOT follows the prompt.
    """
    if mode is ExecutionMode.PTY_DIRECT:
        return DirectPtyInjection(end_input=end_input)
    return _STRATEGIES[mode]()
