"""
Generic profile: fallback for unknown programs.

Only drops chrome that nearly every TUI draws: spinner frames, horizontal
rules and blank lines. Everything else is content.
"""

from typing import List

from .base import BaseProfile, FilterRule, rule

SPINNER_GLYPHS = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏◐◓◑◒"


class GenericProfile(BaseProfile):
    """Fallback profile for unknown programs."""

    _profile_id = "generic"
    _display_name = "Program"
    _command = "sh"

    def rules(self) -> List[FilterRule]:
        return [
            rule("spinner", "drop", rf"^\s*[{SPINNER_GLYPHS}] "),
            rule("rule", "drop", r"^\s*[─━═]{4,}"),
            rule("blank", "drop", r"^\s*$"),
        ]
