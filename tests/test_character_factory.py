"""Tests for tools/character_factory.py — point buy, HP and starter kits."""

import random

import pytest

from models.characters import ClassType, EquipmentSlot, Stats
from tools.character_factory import (
    POINT_BUY_TOTAL,
    create_character,
    point_buy_cost,
    random_point_buy,
    starting_hp,
    validate_point_buy,
)


class TestPointBuy:

    def test_baseline_costs_nothing(self):
        assert point_buy_cost(Stats(STR=8, DEX=8, CON=8, INT=8, WIS=8, CHA=8)) == 0

    def test_standard_spread(self):
        stats = Stats(STR=15, DEX=14, CON=13, INT=12, WIS=10, CHA=8)
        assert point_buy_cost(stats) == 9 + 7 + 5 + 4 + 2 + 0
        assert validate_point_buy(stats) == 0

    def test_over_budget(self):
        with pytest.raises(ValueError):
            validate_point_buy(Stats(STR=15, DEX=15, CON=15, INT=15, WIS=8, CHA=8))

    def test_out_of_range_score(self):
        with pytest.raises(ValueError):
            point_buy_cost(Stats(STR=18, DEX=8, CON=8, INT=8, WIS=8, CHA=8))

    def test_random_point_buy_is_legal(self):
        rng = random.Random(11)
        for _ in range(25):
            stats = random_point_buy(rng)
            remaining = validate_point_buy(stats)
            assert 0 <= remaining < POINT_BUY_TOTAL


class TestHitPoints:

    def test_con_modifier_applies(self):
        assert starting_hp(ClassType.FIGHTER, Stats(CON=10)) == 10
        assert starting_hp(ClassType.FIGHTER, Stats(CON=8)) == 9

    def test_class_hit_dice(self):
        stats = Stats(CON=14)
        assert starting_hp(ClassType.WIZARD, stats) == 8
        assert starting_hp(ClassType.FIGHTER, stats) == 12
        assert starting_hp(ClassType.ROGUE, stats) == 10

    def test_minimum_one(self):
        assert starting_hp(ClassType.WIZARD, Stats(CON=1)) >= 1


class TestCreateCharacter:

    def test_fighter_defaults(self):
        c = create_character("Alice", "alice@example.com")
        assert c.class_type == ClassType.FIGHTER
        assert c.level == 1
        assert c.hp == c.max_hp == 10 - 1
        assert c.equipment[EquipmentSlot.MAIN_HAND].name == "Iron Sword"
        assert [i.name for i in c.inventory] == ["Healing Potion"]
        assert c.is_ready is False

    def test_name_trimmed_or_defaulted(self):
        assert create_character("  Bob ", "b").name == "Bob"
        assert create_character("", "b").name == "Unknown Hero"

    def test_requires_owner(self):
        with pytest.raises(ValueError):
            create_character("Alice", "")

    def test_rejects_illegal_stats(self):
        with pytest.raises(ValueError):
            create_character("Alice", "a", stats=Stats(STR=15, DEX=15, CON=15, INT=15, WIS=15, CHA=15))

    def test_class_from_string(self):
        c = create_character("Merla", "m", class_type="Wizard")
        assert c.class_type == ClassType.WIZARD
        assert c.equipment[EquipmentSlot.CHEST].name == "Apprentice Robe"
