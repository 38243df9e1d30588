"""Tests for user input cleaning."""
from utils.sanitize import (
    MAX_INPUT_LENGTH, escape_for_template, sanitize_message, sanitize_user_input,
)


class TestSanitizeMessage:
    def test_strips_tags(self):
        assert sanitize_message("<b>bold</b> text") == "bold text"

    def test_drops_script_and_style_bodies(self):
        assert sanitize_message("a<script>alert(1)</script>b") == "ab"
        assert sanitize_message("a<STYLE type='x'>p{}</style>b") == "ab"

    def test_empty(self):
        assert sanitize_message("") == ""


class TestEscapeForTemplate:
    def test_breaks_up_braces(self):
        assert escape_for_template("{{name}}") == "{ {name} }"

    def test_single_braces_untouched(self):
        assert escape_for_template("{a}") == "{a}"


class TestSanitizeUserInput:
    def test_removes_control_characters(self):
        assert sanitize_user_input("a\x00b\x07c") == "abc"

    def test_keeps_newlines_inside(self):
        assert sanitize_user_input("line1\nline2") == "line1\nline2"

    def test_truncates(self):
        assert len(sanitize_user_input("a" * (MAX_INPUT_LENGTH + 500))) == MAX_INPUT_LENGTH

    def test_custom_max_length(self):
        assert sanitize_user_input("abcdef", max_length=3) == "abc"

    def test_trims_whitespace(self):
        assert sanitize_user_input("   Ann  ") == "Ann"

    def test_markup_and_template_injection(self):
        assert sanitize_user_input("<i>{{secret}}</i>") == "{ {secret} }"

    def test_empty(self):
        assert sanitize_user_input("") == ""
        assert sanitize_user_input(None) == ""
