"""Mode selection: decide between a pseudoterminal and a plain pipe."""

import os
import sys
from enum import Enum
from typing import Dict, Optional


class ExecutionMode(Enum):
    PTY_DIRECT = "pty-direct"
    PTY_STAGED = "pty-staged"
    PIPE_DIRECT = "pipe-direct"

    @property
    def uses_pty(self) -> bool:
        return self is not ExecutionMode.PIPE_DIRECT

    @classmethod
    def parse(cls, value: str) -> "ExecutionMode":
        """Parse a mode name such as ``pty-direct`` (underscores accepted)."""
        normalized = value.strip().lower().replace("_", "-")
        for mode in cls:
            if mode.value == normalized:
                return mode
        choices = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown execution mode: {value!r}. Use one of: {choices}")


# Programs that need raw-mode terminal access even when we are not
# attached to a terminal ourselves.
DEFAULT_COMMAND_MODES: Dict[str, ExecutionMode] = {
    "claude": ExecutionMode.PTY_DIRECT,
}

_WINDOWS_EXTENSIONS = (".exe", ".cmd", ".bat")


def command_name(command: str) -> str:
    """Reduce a command path to the bare program name used for table lookups."""
    # Split on both separators so Windows paths work everywhere
    name = command.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]
    root, ext = os.path.splitext(name)
    if ext.lower() in _WINDOWS_EXTENSIONS:
        return root
    return name


def caller_is_tty(stdin=None, stdout=None) -> bool:
    """True when both our stdin and stdout are attached to a real terminal."""
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout
    try:
        return bool(stdin and stdin.isatty() and stdout and stdout.isatty())
    except (AttributeError, ValueError):
        # Closed or replaced streams (pytest capture, CliRunner) are not terminals
        return False


class ModeSelector:
    """Resolve the execution mode for a command.

    Commands listed in ``command_modes`` always get their configured mode.
    Everything else follows the caller: a terminal caller gets a
    pseudoterminal so colors and line editing behave like a real shell,
    a piped caller gets plain pipes.
    """

    def __init__(self, command_modes: Optional[Dict[str, ExecutionMode]] = None):
        if command_modes is None:
            command_modes = DEFAULT_COMMAND_MODES
        self.command_modes = {command_name(k): v for k, v in command_modes.items()}

    def select(self, command: str, is_caller_tty: bool) -> ExecutionMode:
        required = self.command_modes.get(command_name(command))
        if required is not None:
            return required
        if is_caller_tty:
            return ExecutionMode.PTY_DIRECT
        return ExecutionMode.PIPE_DIRECT


def select_mode(command, is_caller_tty, command_modes=None):
    return ModeSelector(command_modes).select(command, is_caller_tty)
