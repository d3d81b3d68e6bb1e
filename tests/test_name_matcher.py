"""Tests for tools/name_matcher.py — loose name matching strategies."""

from tools.name_matcher import ambiguous_matches, exact_match, find_index, find_key_for, substring_match
from models.characters import Item


class TestSubstringMatch:

    def test_case_insensitive(self):
        assert substring_match("Healing Potion", "potion")
        assert substring_match("healing potion", "HEALING")

    def test_whitespace_folded(self):
        assert substring_match("Healing   Potion", "healing potion")

    def test_empty_query_never_matches(self):
        assert substring_match("Anything", "") is False
        assert substring_match("Anything", "   ") is False

    def test_no_match(self):
        assert substring_match("Rope", "Torch") is False


class TestExactMatch:

    def test_exact(self):
        assert exact_match("Ann", "ann")
        assert exact_match("Anna", "Ann") is False


class TestFinders:

    def test_first_key_wins(self):
        assert find_key_for("Anna", ["Ann", "Anna"]) == "Ann"

    def test_exact_strategy(self):
        assert find_key_for("Anna", ["Ann", "Anna"], matcher=exact_match) == "Anna"

    def test_no_key(self):
        assert find_key_for("Bob", ["Ann"]) is None

    def test_find_index_first_match(self):
        items = [Item(name="Minor Healing Potion"), Item(name="Healing Potion")]
        assert find_index(items, "Healing Potion") == 0
        assert find_index(items, "Healing Potion", matcher=exact_match) == 1
        assert find_index(items, "potion") == 0
        assert find_index(items, "sword") is None

    def test_find_index_custom_name(self):
        assert find_index(["a", "bc"], "C", name_of=lambda s: s) == 1

    def test_ambiguous(self):
        assert ambiguous_matches(["Ann", "Anna", "Bob"], "Ann") == ["Ann", "Anna"]
        assert ambiguous_matches(["Ann", "Bob"], "Bob") == ["Bob"]
