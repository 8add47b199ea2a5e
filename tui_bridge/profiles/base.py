"""
Base filter profile and the rule-driven noise classifier.

A profile bundles the heuristics for one upstream program: which lines are
UI chrome (spinners, rules, prompt hints), which carry a content marker, and
what command starts the program. The classifier itself knows nothing about
any program; it walks an ordered rule list and the first match wins.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Pattern

from ..errors import ConfigError

logger = logging.getLogger(__name__)

DECORATIVE = "decorative"
CONTENT = "content"
TAGGED = "tagged"

ACTIONS = ("drop", "tag", "keep")


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Classification:
    """Verdict for one line of output."""
    kind: str                # decorative, content, tagged
    text: str = ""           # Text to keep (empty for decorative)
    marker: str = ""         # Marker removed from tagged lines

    @property
    def keep(self) -> bool:
        return self.kind != DECORATIVE

    @classmethod
    def decorative(cls) -> "Classification":
        return cls(kind=DECORATIVE)

    @classmethod
    def content(cls, text: str) -> "Classification":
        return cls(kind=CONTENT, text=text)

    @classmethod
    def tagged(cls, text: str, marker: str = "") -> "Classification":
        return cls(kind=TAGGED, text=text, marker=marker)


@dataclass(frozen=True)
class FilterRule:
    """One classification rule: a pattern or predicate plus an action.

    action:
        drop  - line is decorative and discarded
        tag   - line is content behind a marker; the marker is removed.
                The kept text is the pattern's ``text`` group when present,
                otherwise whatever follows the match.
        keep  - line is content, kept verbatim (minus trailing whitespace)
    """
    name: str
    action: str
    pattern: Optional[Pattern] = None
    predicate: Optional[Callable[[str], bool]] = None
    marker: str = ""

    def apply(self, line: str) -> Optional[Classification]:
        """Return a Classification if this rule matches, else None."""
        if self.pattern is not None:
            match = self.pattern.search(line)
            if not match:
                return None
        elif self.predicate is not None:
            match = None
            if not self.predicate(line):
                return None
        else:
            return None

        if self.action == "drop":
            return Classification.decorative()
        if self.action == "tag":
            if match is None:
                text = line.strip()
            elif "text" in self.pattern.groupindex:
                text = match.group("text") or ""
            else:
                text = line[match.end():]
            return Classification.tagged(text.rstrip(), self.marker)
        return Classification.content(line.rstrip())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FilterRule":
        """Build a rule from a config mapping.

        Example YAML entry::

            - name: spinner
              pattern: '^[⠋⠙⠹] '
              action: drop
              ignore_case: false
        """
        if not isinstance(data, dict) or "pattern" not in data:
            raise ConfigError(f"Filter rule needs a 'pattern': {data!r}")

        action = data.get("action", "drop")
        if action not in ACTIONS:
            raise ConfigError(f"Unknown filter action {action!r} (expected one of {ACTIONS})")

        flags = re.IGNORECASE if data.get("ignore_case") else 0
        try:
            pattern = re.compile(str(data["pattern"]), flags)
        except re.error as e:
            raise ConfigError(f"Invalid filter pattern {data['pattern']!r}: {e}", cause=e)

        return cls(
            name=str(data.get("name", data["pattern"])),
            action=action,
            pattern=pattern,
            marker=str(data.get("marker", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "action": self.action}
        if self.pattern is not None:
            data["pattern"] = self.pattern.pattern
            data["ignore_case"] = bool(self.pattern.flags & re.IGNORECASE)
        if self.marker:
            data["marker"] = self.marker
        return data


def rule(name: str, action: str, pattern: str, flags: int = 0, marker: str = "") -> FilterRule:
    """Shorthand for building built-in rules."""
    return FilterRule(name=name, action=action, pattern=re.compile(pattern, flags), marker=marker)


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

class NoiseClassifier:
    """Pure per-line classifier over an ordered rule list.

    Each line is judged on its own text only. A rule that raises degrades the
    line to plain content instead of failing the stream.
    """

    def __init__(self, rules: List[FilterRule]):
        self._rules = tuple(rules)

    @property
    def rules(self) -> List[FilterRule]:
        return list(self._rules)

    def classify(self, line: str) -> Classification:
        try:
            for r in self._rules:
                result = r.apply(line)
                if result is not None:
                    return result
        except Exception as e:
            logger.debug(f"Filter rule failed on {line[:40]!r}, keeping as content: {e}")
        return Classification.content(line.rstrip())


# ---------------------------------------------------------------------------
# BaseProfile
# ---------------------------------------------------------------------------

class BaseProfile:
    """Base with an empty rule set. Subclasses override ``rules()``."""

    _profile_id: str = "base"
    _display_name: str = "Program"
    _command: str = ""

    def id(self) -> str:
        return self._profile_id

    def display_name(self) -> str:
        return self._display_name

    def start_command(self, command: Optional[str] = None) -> str:
        """Command to spawn when the config does not name one."""
        return command or self._command or self._profile_id

    def rules(self) -> List[FilterRule]:
        return []

    def classifier(
        self,
        rules: Optional[List[FilterRule]] = None,
        extra_rules: Optional[List[FilterRule]] = None,
    ) -> NoiseClassifier:
        """Build a classifier, optionally replacing or extending the built-in rules.

        Args:
            rules: Replaces the profile's rules entirely when given.
            extra_rules: Checked before the base rules.
        """
        base = list(rules) if rules is not None else self.rules()
        return NoiseClassifier(list(extra_rules or []) + base)
