"""
Qwen Code profile.

Heuristics tuned to the qwen CLI's output:
- Braille spinner frames ("⠋ Thinking...")
- Box-drawing rules between input and transcript
- Prompt hint, status quips and workspace footer
- Assistant replies prefixed with ✦
"""

import re
from typing import List

from .base import BaseProfile, FilterRule, rule

SPINNER_GLYPHS = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
ASSISTANT_MARKER = "✦"

# Busy-indicator quips shown while the model is working
STATUS_VERBS = (
    "Initializing",
    "Counting electrons",
    "Defragmenting memories",
    "Just a moment",
    "finding the right meme",
)


class QwenProfile(BaseProfile):
    """Profile for the qwen CLI."""

    _profile_id = "qwen"
    _display_name = "Qwen Code"
    _command = "qwen"

    def rules(self) -> List[FilterRule]:
        return [
            rule("spinner", "drop", rf"^[{SPINNER_GLYPHS}] "),
            rule("rule", "drop", r"^\s*─{4,}"),
            rule("prompt-hint", "drop", r"Type your message or @path/to/file", re.IGNORECASE),
            rule("status-verb", "drop", "|".join(STATUS_VERBS), re.IGNORECASE),
            rule("footer", "drop", r"\bno sandbox\b.*\bcoder-model\b", re.IGNORECASE),
            rule("feeling-lucky", "drop", r"I'?m Feeling Lucky", re.IGNORECASE),
            rule("blank", "drop", r"^\s*$"),
            rule("assistant", "tag", rf"^\s*{ASSISTANT_MARKER} \s*(?P<text>.*)", marker=ASSISTANT_MARKER),
        ]
