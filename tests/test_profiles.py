"""
Tests for the noise classifier and filter profiles.

Covers:
- Built-in qwen rules and their precedence
- Tagged content marker removal
- Determinism and degradation on failing rules
- Rule overrides and YAML rule parsing
- Profile registry fallback
"""

import re

import pytest

from tui_bridge.errors import ConfigError
from tui_bridge.profiles import (
    BaseProfile,
    Classification,
    FilterRule,
    GenericProfile,
    NoiseClassifier,
    QwenProfile,
    CONTENT,
    DECORATIVE,
    TAGGED,
    available_profiles,
    get_profile,
    register_profile,
)


@pytest.fixture
def qwen():
    return get_profile("qwen").classifier()


# ---------------------------------------------------------------------------
# Profile Registry
# ---------------------------------------------------------------------------

class TestProfileRegistry:
    def test_get_qwen_profile(self):
        p = get_profile("qwen")
        assert isinstance(p, QwenProfile)
        assert p.id() == "qwen"
        assert p.display_name() == "Qwen Code"

    def test_get_generic_profile(self):
        p = get_profile("generic")
        assert isinstance(p, GenericProfile)
        assert p.id() == "generic"

    def test_unknown_profile_falls_back_to_generic(self):
        p = get_profile("totally_unknown_program_xyz")
        assert isinstance(p, GenericProfile)

    def test_display_name_override(self):
        p = get_profile("qwen", display_name="Qwen (local)")
        assert p.display_name() == "Qwen (local)"
        assert p.id() == "qwen"

    def test_register_custom_profile(self):
        class CustomProfile(BaseProfile):
            _profile_id = "custom"
            _display_name = "Custom"
            _command = "custom-tui"

        register_profile("custom", CustomProfile)
        p = get_profile("custom")
        assert isinstance(p, CustomProfile)
        assert "custom" in available_profiles()


# ---------------------------------------------------------------------------
# Start Command
# ---------------------------------------------------------------------------

class TestStartCommand:
    def test_qwen_default(self):
        assert QwenProfile().start_command() == "qwen"

    def test_generic_default(self):
        assert GenericProfile().start_command() == "sh"

    def test_override(self):
        assert QwenProfile().start_command("/opt/bin/qwen") == "/opt/bin/qwen"


# ---------------------------------------------------------------------------
# Qwen Rules
# ---------------------------------------------------------------------------

class TestQwenRules:
    def test_spinner_frame_is_decorative(self, qwen):
        assert qwen.classify("⠋ loading...").kind == DECORATIVE

    @pytest.mark.parametrize("glyph", list("⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"))
    def test_every_spinner_glyph(self, qwen, glyph):
        assert qwen.classify(f"{glyph} Thinking").kind == DECORATIVE

    def test_spinner_glyph_without_space_is_content(self, qwen):
        assert qwen.classify("⠋loading").kind == CONTENT

    def test_horizontal_rule_is_decorative(self, qwen):
        assert qwen.classify("──────────").kind == DECORATIVE

    def test_indented_rule_is_decorative(self, qwen):
        assert qwen.classify("   ────────────────────────── more").kind == DECORATIVE

    def test_prompt_hint_case_insensitive(self, qwen):
        assert qwen.classify(">   type your message or @PATH/TO/FILE").kind == DECORATIVE

    @pytest.mark.parametrize("line", [
        "Initializing...",
        "Counting electrons (esc to cancel, 3s)",
        "defragmenting memories",
        "Just a moment",
        "I'm finding the right meme",
    ])
    def test_status_verbs(self, qwen, line):
        assert qwen.classify(line).kind == DECORATIVE

    def test_footer(self, qwen):
        line = "../media/project      no sandbox (see /docs)      coder-model (98% context left)"
        assert qwen.classify(line).kind == DECORATIVE

    def test_footer_needs_both_parts(self, qwen):
        assert qwen.classify("running with no sandbox").kind == CONTENT

    def test_feeling_lucky(self, qwen):
        assert qwen.classify("Im Feeling Lucky").kind == DECORATIVE

    @pytest.mark.parametrize("line", ["", "   ", "\t "])
    def test_blank_lines(self, qwen, line):
        assert qwen.classify(line).kind == DECORATIVE

    def test_tagged_assistant_line(self, qwen):
        result = qwen.classify("✦ Hello there")
        assert result == Classification.tagged("Hello there", "✦")
        assert result.kind == TAGGED
        assert result.text == "Hello there"

    def test_tagged_with_indent_and_trailing_space(self, qwen):
        result = qwen.classify("  ✦ Sure, here it is   ")
        assert result.kind == TAGGED
        assert result.text == "Sure, here it is"

    def test_marker_without_space_is_content(self, qwen):
        result = qwen.classify("✦Hello")
        assert result.kind == CONTENT
        assert result.text == "✦Hello"

    def test_plain_line_is_content_trimmed(self, qwen):
        result = qwen.classify("def main():    ")
        assert result == Classification.content("def main():")

    def test_leading_whitespace_kept(self, qwen):
        assert qwen.classify("    return 1").text == "    return 1"


class TestPrecedence:
    def test_spinner_wins_over_tag(self, qwen):
        assert qwen.classify("⠋ ✦ hello").kind == DECORATIVE

    def test_status_verb_wins_over_tag(self, qwen):
        assert qwen.classify("✦ Just a moment").kind == DECORATIVE

    def test_first_matching_rule_wins(self):
        classifier = NoiseClassifier([
            FilterRule("keep-todo", "keep", re.compile(r"TODO")),
            FilterRule("drop-all", "drop", re.compile(r".")),
        ])
        assert classifier.classify("TODO: ship it").kind == CONTENT
        assert classifier.classify("anything else").kind == DECORATIVE


# ---------------------------------------------------------------------------
# Classifier Behaviour
# ---------------------------------------------------------------------------

class TestClassifier:
    def test_deterministic_regardless_of_order(self, qwen):
        lines = ["✦ Hi", "⠋ x", "plain", "", "──────", "✦ Hi", "plain"]
        first = [qwen.classify(line) for line in lines]
        second = [qwen.classify(line) for line in reversed(lines)]
        assert first == list(reversed(second))

    def test_failing_rule_degrades_to_content(self):
        def boom(line):
            raise ValueError("bad rule")

        classifier = NoiseClassifier([FilterRule("boom", "drop", predicate=boom)])
        result = classifier.classify("some text  ")
        assert result == Classification.content("some text")

    def test_predicate_rule(self):
        classifier = NoiseClassifier([
            FilterRule("short", "drop", predicate=lambda line: len(line.strip()) < 3),
        ])
        assert classifier.classify("ab").kind == DECORATIVE
        assert classifier.classify("abc").kind == CONTENT

    def test_tag_without_text_group_keeps_rest(self):
        classifier = NoiseClassifier([
            FilterRule("bullet", "tag", re.compile(r"^\s*> "), marker=">"),
        ])
        result = classifier.classify("> quoted")
        assert result.kind == TAGGED
        assert result.text == "quoted"
        assert result.marker == ">"

    def test_empty_rule_list_keeps_everything(self):
        classifier = NoiseClassifier([])
        assert classifier.classify("⠋ spinner").kind == CONTENT

    def test_keep_property(self):
        assert Classification.decorative().keep is False
        assert Classification.content("x").keep is True
        assert Classification.tagged("x").keep is True


class TestProfileOverrides:
    def test_extra_rules_checked_first(self):
        extra = [FilterRule.from_dict({"name": "hide-tip", "pattern": "^Tip:", "action": "drop"})]
        classifier = QwenProfile().classifier(extra_rules=extra)
        assert classifier.classify("Tip: press tab").kind == DECORATIVE
        assert classifier.classify("⠋ still dropped").kind == DECORATIVE

    def test_rules_replace_profile_rules(self):
        rules = [FilterRule.from_dict({"pattern": "^noise", "action": "drop"})]
        classifier = QwenProfile().classifier(rules=rules)
        assert classifier.classify("noise here").kind == DECORATIVE
        assert classifier.classify("⠋ spinner").kind == CONTENT

    def test_generic_profile_rules(self):
        classifier = GenericProfile().classifier()
        assert classifier.classify("◐ working").kind == DECORATIVE
        assert classifier.classify("════════").kind == DECORATIVE
        assert classifier.classify("✦ Hello").kind == CONTENT

    def test_generic_rule_with_title(self):
        classifier = GenericProfile().classifier()
        assert classifier.classify("──── Section ────").kind == DECORATIVE
        assert classifier.classify("  ━━━━━━ Results").kind == DECORATIVE
        assert classifier.classify("a ──── b").kind == CONTENT


# ---------------------------------------------------------------------------
# Rule Parsing
# ---------------------------------------------------------------------------

class TestFilterRuleFromDict:
    def test_parses_rule(self):
        r = FilterRule.from_dict({
            "name": "hint",
            "pattern": "press enter",
            "action": "drop",
            "ignore_case": True,
        })
        assert r.name == "hint"
        assert r.apply("PRESS ENTER to continue") == Classification.decorative()

    def test_defaults_to_drop(self):
        r = FilterRule.from_dict({"pattern": "x"})
        assert r.action == "drop"
        assert r.name == "x"

    def test_tag_rule_with_marker(self):
        r = FilterRule.from_dict({
            "pattern": r"^● (?P<text>.*)",
            "action": "tag",
            "marker": "●",
        })
        assert r.apply("● Done.") == Classification.tagged("Done.", "●")

    def test_missing_pattern(self):
        with pytest.raises(ConfigError):
            FilterRule.from_dict({"action": "drop"})

    def test_unknown_action(self):
        with pytest.raises(ConfigError):
            FilterRule.from_dict({"pattern": "x", "action": "explode"})

    def test_invalid_regex(self):
        with pytest.raises(ConfigError):
            FilterRule.from_dict({"pattern": "(unclosed"})

    def test_to_dict(self):
        r = FilterRule.from_dict({"name": "n", "pattern": "p", "action": "keep", "ignore_case": True})
        assert r.to_dict() == {"name": "n", "action": "keep", "pattern": "p", "ignore_case": True}
