"""Transcript helpers: read back persisted chunk logs for display."""

import json
from datetime import datetime

from .ansi import strip_ansi
from .recorder import TRUNCATION_MARKER


def clean_text(text):
    """Remove ANSI escape codes and handle backspaces."""
    text = strip_ansi(text)

    # A backspace removes the previous character
    chars = []
    for c in text:
        if c == '\x08':
            if chars:
                chars.pop()
        else:
            chars.append(c)

    return "".join(chars)


def load_chunks(path):
    """Read a chunk log written by the recorder. Returns a list of dicts."""
    with open(path, 'r', encoding='utf-8') as f:
        chunks = json.load(f)
    if not isinstance(chunks, list):
        raise ValueError(f"{path} does not contain a chunk array")
    return chunks


def build_transcript(chunks, clean=False):
    """Concatenate the output chunks in order."""
    text = "".join(c.get('data', '') for c in chunks if c.get('direction') == 'output')
    return clean_text(text) if clean else text


def extract_user_input_lines(chunks):
    """Return the trimmed, non-empty input chunks."""
    lines = []
    for chunk in chunks:
        if chunk.get('direction') != 'input':
            continue
        line = chunk.get('data', '').strip()
        if line:
            lines.append(line)
    return lines


def _parse_timestamp(value):
    return datetime.fromisoformat(value)


def active_execution_time(chunks, input_wait_threshold=0.1):
    """Seconds the session spent working, excluding time waiting on the user.

    An input chunk that arrives more than ``input_wait_threshold`` seconds
    after the previous chunk is assumed to include human thinking time, so
    only the threshold is counted for that gap.
    """
    if not chunks:
        return 0.0

    total = 0.0
    previous_time = _parse_timestamp(chunks[0]['timestamp'])

    for chunk in chunks[1:]:
        chunk_time = _parse_timestamp(chunk['timestamp'])
        gap = (chunk_time - previous_time).total_seconds()

        if chunk.get('direction') == 'input' and gap > input_wait_threshold:
            total += input_wait_threshold
        else:
            total += gap

        previous_time = chunk_time

    return total


def summarize(chunks):
    """Counts used by ``prompttrace info``."""
    output_chunks = [c for c in chunks if c.get('direction') == 'output']
    input_chunks = [c for c in chunks if c.get('direction') == 'input']
    output_text = "".join(c.get('data', '') for c in output_chunks)
    return {
        "chunks": len(chunks),
        "output_chunks": len(output_chunks),
        "input_chunks": len(input_chunks),
        "output_bytes": len(output_text.encode('utf-8')),
        "truncated": bool(output_chunks) and output_chunks[-1].get('data', '').endswith(TRUNCATION_MARKER),
        "started_at": chunks[0]['timestamp'] if chunks else None,
        "finished_at": chunks[-1]['timestamp'] if chunks else None,
        "active_seconds": active_execution_time(chunks),
    }
