"""prompttrace: pipe prompts into CLI tools and record everything they print."""

from .controller import (
    CaptureController,
    CaptureHandle,
    CaptureOptions,
    CaptureRequest,
    CaptureResult,
    CaptureState,
    capture_command,
    capture_command_with_handle,
)
from .errors import CaptureError, KillTimeoutError, SpawnError, WriteError
from .modes import ExecutionMode, ModeSelector, select_mode
from .recorder import TRUNCATION_MARKER, ChunkRecorder, OutputChunk

__version__ = "0.1.0"
