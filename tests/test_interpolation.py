"""Tests for {{variable}} substitution."""
from utils.interpolation import interpolate


class TestInterpolate:
    def test_substitutes_known_keys(self):
        assert interpolate("Hi {{name}}!", {"name": "Ann"}) == "Hi Ann!"

    def test_repeated_placeholders(self):
        assert interpolate("{{a}}-{{a}}-{{b}}", {"a": "x", "b": "y"}) == "x-x-y"

    def test_absent_key_is_left_untouched(self):
        assert interpolate("Hi {{name}}", {}) == "Hi {{name}}"

    def test_present_empty_value_substitutes(self):
        assert interpolate("Hi {{name}}.", {"name": ""}) == "Hi ."
        assert interpolate("Hi {{name}}.", {"name": None}) == "Hi ."

    def test_non_word_placeholder_is_not_a_variable(self):
        assert interpolate("{{first name}}", {"first name": "x"}) == "{{first name}}"

    def test_empty_text(self):
        assert interpolate("", {"a": "b"}) == ""
        assert interpolate(None, {"a": "b"}) == ""

    def test_values_are_stringified(self):
        assert interpolate("{{n}} items", {"n": 3}) == "3 items"
