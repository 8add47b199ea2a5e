"""
Terminal control-sequence stripping.

Removes:
- CSI sequences (colors, cursor movement, erase)
- OSC sequences (window titles, hyperlinks)
- Charset selection and keypad mode escapes
- Raw control bytes, including carriage returns

Line feeds are kept; the line splitter owns them. Carriage-return redraws are
not replayed, so a spinner frame rewritten in place collapses into one line.
"""

import re

# ANSI CSI sequences: ESC [ params intermediates final_byte
ANSI_CSI = re.compile(r"\x1b\[[0-9;?<=>!]*[ -/]*[@-~]")

# OSC sequences: ESC ] ... (BEL or ST)
ANSI_OSC = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")

# Charset selection, keypad modes, cursor save/restore
ANSI_SIMPLE = re.compile(r"\x1b[()#][0-9A-Za-z]|\x1b[=>78]")

# C0 controls and DEL, except \n
CONTROL_BYTES = re.compile(r"[\x00-\x09\x0b-\x1f\x7f]")


def strip_control_sequences(text: str) -> str:
    """
    Remove terminal control sequences and control bytes from text.

    Safe on truncated input: an escape sequence cut off at the end of a chunk
    loses its ESC byte and the rest is kept as literal text. The result never
    contains ESC, so stripping it again is a no-op.
    """
    if not text:
        return text
    text = ANSI_OSC.sub("", text)
    text = ANSI_CSI.sub("", text)
    text = ANSI_SIMPLE.sub("", text)
    return CONTROL_BYTES.sub("", text)
