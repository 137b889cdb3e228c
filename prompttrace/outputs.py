"""Output store: capture IDs, chunk log paths, listing and retention."""

import json
import random
import string
import time
from datetime import datetime
from pathlib import Path

OUTPUT_SUFFIX = "-output.json"

# Plain-text transcripts from older versions are cleaned up too
_EXPIRABLE_SUFFIXES = ("-output.json", "-output.txt")


def ensure_dirs(output_dir):
    """Create the output directory if it doesn't exist."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


def generate_capture_id():
    """Generate a unique capture ID: YYYYMMDD-HHMMSS-abc123."""
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    random_suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{stamp}-{random_suffix}"


def output_path_for(output_dir, capture_id):
    return Path(output_dir) / f"{capture_id}{OUTPUT_SUFFIX}"


def capture_id_from_path(path):
    name = Path(path).name
    if name.endswith(OUTPUT_SUFFIX):
        return name[: -len(OUTPUT_SUFFIX)]
    return Path(path).stem


def resolve_output(output_dir, ref):
    """Accept either a path to a chunk log or a capture ID."""
    path = Path(ref)
    if path.exists():
        return path
    return output_path_for(output_dir, ref)


def list_outputs(output_dir):
    """List captures with basic stats, newest first."""
    output_dir = Path(output_dir)
    outputs = []

    if not output_dir.exists():
        return outputs

    for path in output_dir.glob(f"*{OUTPUT_SUFFIX}"):
        if not path.is_file():
            continue
        stat = path.stat()
        try:
            with open(path, "r", encoding="utf-8") as f:
                chunks = json.load(f)
        except (OSError, json.JSONDecodeError):
            chunks = None

        if isinstance(chunks, list):
            inputs = sum(1 for c in chunks if isinstance(c, dict) and c.get("direction") == "input")
            status = f"{len(chunks)} chunks"
        else:
            inputs = 0
            status = "unreadable"

        outputs.append({
            "capture_id": capture_id_from_path(path),
            "path": path,
            "size": stat.st_size,
            "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
            "inputs": inputs,
            "status": status,
        })

    outputs.sort(key=lambda o: o["modified"], reverse=True)
    return outputs


def cleanup_old_outputs(output_dir, retention_days=30, now=None):
    """Delete capture files older than ``retention_days``. Returns the removed paths."""
    output_dir = Path(output_dir)
    if not output_dir.exists():
        return []

    now = now if now is not None else time.time()
    cutoff = now - retention_days * 24 * 60 * 60
    removed = []

    for path in output_dir.iterdir():
        if not path.name.endswith(_EXPIRABLE_SUFFIXES) or not path.is_file():
            continue
        if path.stat().st_mtime < cutoff:
            path.unlink()
            removed.append(path)

    return removed
