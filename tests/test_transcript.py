"""Tests for transcript helpers."""

import json

import pytest

from prompttrace import ansi, recorder
from prompttrace.recorder import TRUNCATION_MARKER
from prompttrace.transcript import (
    active_execution_time,
    build_transcript,
    clean_text,
    extract_user_input_lines,
    load_chunks,
    strip_ansi,
    summarize,
)


def chunk(second, direction, data):
    return {"timestamp": f"2026-01-01T00:00:{second:06.3f}", "direction": direction, "data": data}


class TestCleanText:
    def test_strip_csi_sequences(self):
        assert strip_ansi("\x1b[1;32mok\x1b[0m") == "ok"

    def test_strip_osc_title(self):
        assert strip_ansi("\x1b]0;window title\x07prompt$ ") == "prompt$ "

    def test_plain_text_untouched(self):
        assert strip_ansi("no escapes here\n") == "no escapes here\n"

    def test_backspaces_are_applied(self):
        assert clean_text("helo\x08lo") == "hello"

    def test_leading_backspace_is_dropped(self):
        assert clean_text("\x08abc") == "abc"

    def test_recorder_and_readers_share_one_stripper(self):
        assert strip_ansi is ansi.strip_ansi
        assert recorder.strip_ansi is ansi.strip_ansi


class TestTranscript:
    def test_build_transcript_uses_output_only(self):
        chunks = [
            chunk(0, "input", "question\n"),
            chunk(1, "output", "\x1b[33manswer\x1b[0m\n"),
            chunk(2, "output", "done\n"),
        ]
        assert build_transcript(chunks) == "\x1b[33manswer\x1b[0m\ndone\n"
        assert build_transcript(chunks, clean=True) == "answer\ndone\n"

    def test_extract_user_input_lines(self):
        chunks = [
            chunk(0, "input", "  first  \n"),
            chunk(1, "output", "ignored"),
            chunk(2, "input", "\n"),
            chunk(3, "input", "second\n"),
        ]
        assert extract_user_input_lines(chunks) == ["first", "second"]

    def test_load_chunks(self, tmp_path):
        path = tmp_path / "log.json"
        path.write_text(json.dumps([chunk(0, "output", "x")]))
        assert load_chunks(path)[0]["data"] == "x"

    def test_load_chunks_rejects_non_arrays(self, tmp_path):
        path = tmp_path / "log.json"
        path.write_text(json.dumps({"chunks": []}))
        with pytest.raises(ValueError):
            load_chunks(path)


class TestActiveExecutionTime:
    def test_empty(self):
        assert active_execution_time([]) == 0.0

    def test_output_gaps_are_counted(self):
        chunks = [chunk(0, "output", "a"), chunk(1.5, "output", "b"), chunk(2, "output", "c")]
        assert active_execution_time(chunks) == pytest.approx(2.0)

    def test_long_wait_before_input_is_clamped(self):
        chunks = [
            chunk(0, "output", "prompt> "),
            chunk(10, "input", "yes\n"),
            chunk(11, "output", "working"),
        ]
        assert active_execution_time(chunks) == pytest.approx(1.1)

    def test_custom_threshold(self):
        chunks = [chunk(0, "output", "a"), chunk(5, "input", "b")]
        assert active_execution_time(chunks, input_wait_threshold=2) == pytest.approx(2.0)


class TestSummarize:
    def test_counts(self):
        chunks = [
            chunk(0, "input", "hi\n"),
            chunk(1, "output", "héllo"),
            chunk(2, "output", "!"),
        ]
        summary = summarize(chunks)

        assert summary["chunks"] == 3
        assert summary["input_chunks"] == 1
        assert summary["output_chunks"] == 2
        assert summary["output_bytes"] == 7
        assert not summary["truncated"]
        assert summary["started_at"] == chunks[0]["timestamp"]
        assert summary["finished_at"] == chunks[-1]["timestamp"]

    def test_truncation_marker_is_detected(self):
        chunks = [chunk(0, "output", "aaaa"), chunk(0, "output", "\n\n" + TRUNCATION_MARKER)]
        assert summarize(chunks)["truncated"]

    def test_empty_log(self):
        summary = summarize([])
        assert summary["chunks"] == 0
        assert summary["started_at"] is None
        assert summary["active_seconds"] == 0.0
