"""Chunk recorder: ordered, timestamped, directioned capture records."""

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .ansi import strip_ansi

logger = logging.getLogger(__name__)

INPUT = "input"
OUTPUT = "output"

TRUNCATION_MARKER = "[OUTPUT TRUNCATED - SIZE LIMIT REACHED]"


def _now():
    return datetime.now().isoformat()


@dataclass(frozen=True)
class OutputChunk:
    timestamp: str
    direction: str
    data: str

    def to_dict(self):
        return {
            "timestamp": self.timestamp,
            "direction": self.direction,
            "data": self.data,
        }


class ChunkRecorder:
    """Accumulates the chunk log for one capture and enforces the size cap.

    Only output counts against ``max_output_bytes``; input chunks are kept
    for traceability. Once the cap is hit the recorder appends the
    truncation marker and ignores everything that follows. ``output_size``
    counts the bytes actually kept, which can end a few bytes short of the
    cap when the cut lands inside a multi-byte character.
    """

    def __init__(self, max_output_bytes, strip_ansi=False, clock=None):
        if max_output_bytes <= 0:
            raise ValueError("max_output_bytes must be positive")
        self.max_output_bytes = max_output_bytes
        self.strip_ansi = strip_ansi
        self._clock = clock or _now
        self._chunks = []
        self._output_size = 0
        self._truncated = False
        self._lock = threading.Lock()

    @property
    def chunks(self):
        with self._lock:
            return tuple(self._chunks)

    @property
    def output_size(self):
        return self._output_size

    @property
    def truncated(self):
        return self._truncated

    def _append(self, direction, data):
        self._chunks.append(OutputChunk(self._clock(), direction, data))

    def record_input(self, data):
        if not data:
            return
        with self._lock:
            if self._truncated:
                return
            self._append(INPUT, data)

    def record_output(self, data):
        """Record child output. Returns the text actually kept."""
        if self.strip_ansi:
            data = strip_ansi(data)
        if not data:
            return ""

        with self._lock:
            if self._truncated or self._output_size >= self.max_output_bytes:
                return ""

            encoded = data.encode("utf-8")
            remaining = self.max_output_bytes - self._output_size
            if len(encoded) < remaining:
                self._append(OUTPUT, data)
                self._output_size += len(encoded)
                return data

            # Cut on a character boundary so the kept text stays valid UTF-8;
            # a split character is dropped, so the size may end below the cap
            kept = encoded[:remaining].decode("utf-8", errors="ignore")
            if kept:
                self._append(OUTPUT, kept)
            self._append(OUTPUT, "\n\n" + TRUNCATION_MARKER)
            self._output_size += len(kept.encode("utf-8"))
            self._truncated = True
            logger.debug("Output cap of %d bytes reached, truncating", self.max_output_bytes)
            return kept

    def to_json_list(self):
        return [chunk.to_dict() for chunk in self.chunks]

    def save(self, path):
        """Write the whole chunk log to ``path`` as a JSON array."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_json_list(), f, indent=2, ensure_ascii=False)
        return path
