"""Errors raised inside the capture engine."""


class CaptureError(Exception):
    """Base class for capture engine failures."""


class SpawnError(CaptureError):
    """The child process or its pseudoterminal could not be created."""

    def __init__(self, command, reason):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to start '{command}': {reason}")


class WriteError(CaptureError):
    """Writing to the child's input channel failed."""


class KillTimeoutError(CaptureError):
    """The process survived the forceful termination signal."""
