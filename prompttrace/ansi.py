"""ANSI escape handling shared by the recorder and the transcript readers."""

import re

# OSC sequences: \x1B] ... terminated by BEL or \x1B\
_OSC_ESCAPE = re.compile(r'\x1B\].*?(?:\x07|\x1B\\)', re.DOTALL)
# CSI and other two-character escape sequences
_ANSI_ESCAPE = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')


def strip_ansi(text):
    """Remove ANSI escape sequences, leaving everything else untouched."""
    text = _OSC_ESCAPE.sub('', text)
    return _ANSI_ESCAPE.sub('', text)
