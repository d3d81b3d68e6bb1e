"""Tests for tools/item_catalog.py — name resolution and starter kits."""

import json

from models.characters import ClassType, EquipmentSlot, ItemType, Rarity
from tools.item_catalog import ItemCatalog, placeholder_id, placeholder_item, starter_kit


class TestPlaceholder:

    def test_generic_item(self):
        item = placeholder_item("Glowing Shard")
        assert item.name == "Glowing Shard"
        assert item.type == ItemType.MISC
        assert item.rarity == Rarity.COMMON

    def test_deterministic_id(self):
        assert placeholder_item("Glowing Shard").id == placeholder_item("Glowing Shard").id
        assert placeholder_id("Glowing  Shard!") == "gen-glowing-shard"

    def test_blank_name(self):
        assert placeholder_item("  ").name == "Unknown Item"


class TestItemCatalog:

    def test_default_lookup_case_insensitive(self):
        catalog = ItemCatalog()
        item = catalog.lookup("healing potion")
        assert item.id == "pot-health"
        assert item.type == ItemType.CONSUMABLE

    def test_lookup_returns_copies(self):
        catalog = ItemCatalog()
        first = catalog.lookup("Torch")
        first.name = "Changed"
        assert catalog.lookup("Torch").name == "Torch"

    def test_resolve_unknown_is_placeholder(self):
        item = ItemCatalog().resolve("Dragon Egg")
        assert item.id == "gen-dragon-egg"

    def test_contains_and_len(self):
        catalog = ItemCatalog()
        assert "iron sword" in catalog
        assert "Dragon Egg" not in catalog
        assert len(catalog) == len(ItemCatalog.default_items())

    def test_empty_catalog(self):
        catalog = ItemCatalog(items=[])
        assert len(catalog) == 0
        assert catalog.lookup("Torch") is None

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "items.json"
        path.write_text(json.dumps([
            {"id": "wand-1", "name": "Wand of Sparks", "type": "Weapon", "rarity": "Rare"},
            {"description": "missing a name"},
        ]), encoding="utf-8")
        catalog = ItemCatalog.from_json_file(path, include_defaults=False)
        assert len(catalog) == 1
        assert catalog.lookup("wand of sparks").rarity == Rarity.RARE


class TestStarterKit:

    def test_fighter(self):
        equipment, inventory = starter_kit(ClassType.FIGHTER)
        assert equipment[EquipmentSlot.MAIN_HAND].name == "Iron Sword"
        assert equipment[EquipmentSlot.CHEST].name == "Chainmail"
        assert [i.name for i in inventory] == ["Healing Potion"]

    def test_every_class_has_a_kit(self):
        for class_type in ClassType:
            equipment, inventory = starter_kit(class_type)
            assert EquipmentSlot.MAIN_HAND in equipment
            assert len(inventory) == 1

    def test_kits_are_independent_copies(self):
        first, _ = starter_kit(ClassType.ROGUE)
        first[EquipmentSlot.MAIN_HAND].name = "Broken"
        second, _ = starter_kit(ClassType.ROGUE)
        assert second[EquipmentSlot.MAIN_HAND].name == "Rusty Dagger"
