"""
ItemCatalog — resolves item names the Dungeon Master mentions into Items.

Known items (starter gear, common loot, anything loaded from a JSON file)
come back fully described. Unknown names become a placeholder Misc/Common
item, so a narrative grant never fails for lack of a catalog entry.

Also holds the class starter-kit table used at character creation.
"""

import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from models.characters import ClassType, EquipmentSlot, Item, ItemType, Rarity

logger = logging.getLogger("ItemCatalog")


def _item(item_id, name, item_type, icon, description, stats=None) -> Item:
    return Item(
        id=item_id,
        name=name,
        type=item_type,
        rarity=Rarity.COMMON,
        icon=icon,
        description=description,
        stats=stats,
    )


DEFAULT_WEAPONS: Dict[str, Item] = {
    "Sword": _item("start-sword", "Iron Sword", ItemType.WEAPON, "⚔️",
                   "A dependable blade for a novice adventurer.", {"ATK": 2}),
    "Staff": _item("start-staff", "Oak Staff", ItemType.WEAPON, "🪄",
                   "Channels basic magical energy.", {"INT": 1}),
    "Dagger": _item("start-dagger", "Rusty Dagger", ItemType.WEAPON, "🗡️",
                    "Small but deadly in the right hands.", {"DEX": 1}),
    "Mace": _item("start-mace", "Cleric's Mace", ItemType.WEAPON, "🔨",
                  "Ideal for crushing skeletons.", {"STR": 1, "WIS": 1}),
}

DEFAULT_ARMOR: Dict[str, Item] = {
    "Leather": _item("start-leather", "Leather Armor", ItemType.ARMOR, "🧥",
                     "Protection without sacrificing mobility.", {"DEF": 1}),
    "Robe": _item("start-robe", "Apprentice Robe", ItemType.ARMOR, "👘",
                  "Simple cloth, comfortable for spellcasting.", {"MP": 5}),
    "Chainmail": _item("start-chain", "Chainmail", ItemType.ARMOR, "⛓️",
                       "Interlocking iron links.", {"DEF": 3}),
}

COMMON_LOOT: List[Item] = [
    _item("pot-health", "Healing Potion", ItemType.CONSUMABLE, "🍷", "Restores health."),
    _item("pot-mana", "Mana Potion", ItemType.CONSUMABLE, "🧪", "Restores mana."),
    _item("lockpick", "Lockpick", ItemType.TOOL, "🗝️", "For opening locked doors."),
    _item("holy-symbol", "Holy Symbol", ItemType.MISC, "✝️", "A divine focus."),
    _item("rations", "Rations", ItemType.CONSUMABLE, "🍖", "Travel food."),
    _item("torch", "Torch", ItemType.TOOL, "🔥", "Burns for about an hour."),
    _item("rope", "Hempen Rope", ItemType.TOOL, "🪢", "Fifty feet of sturdy rope."),
]

_LOOT = {item.id: item for item in COMMON_LOOT}

# class -> (mainHand, chest, starting inventory)
CLASS_STARTER_GEAR: Dict[ClassType, Tuple[Item, Item, List[Item]]] = {
    ClassType.FIGHTER: (DEFAULT_WEAPONS["Sword"], DEFAULT_ARMOR["Chainmail"], [_LOOT["pot-health"]]),
    ClassType.WIZARD: (DEFAULT_WEAPONS["Staff"], DEFAULT_ARMOR["Robe"], [_LOOT["pot-mana"]]),
    ClassType.ROGUE: (DEFAULT_WEAPONS["Dagger"], DEFAULT_ARMOR["Leather"], [_LOOT["lockpick"]]),
    ClassType.CLERIC: (DEFAULT_WEAPONS["Mace"], DEFAULT_ARMOR["Chainmail"], [_LOOT["pot-health"]]),
    ClassType.PALADIN: (DEFAULT_WEAPONS["Sword"], DEFAULT_ARMOR["Chainmail"], [_LOOT["holy-symbol"]]),
    ClassType.RANGER: (DEFAULT_WEAPONS["Dagger"], DEFAULT_ARMOR["Leather"], [_LOOT["rations"]]),
}


def placeholder_id(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    return f"gen-{slug or 'item'}"


def placeholder_item(name: str) -> Item:
    """A generic item for a name nobody has described yet. Deterministic for a given name."""
    clean = name.strip() or "Unknown Item"
    return Item(
        id=placeholder_id(clean),
        name=clean,
        type=ItemType.MISC,
        rarity=Rarity.COMMON,
        description="An item of uncertain provenance.",
    )


class ItemCatalog:
    """Case-insensitive name → Item lookup."""

    def __init__(self, items: Optional[List[Item]] = None):
        self._items: Dict[str, Item] = {}
        for item in items if items is not None else self.default_items():
            self.add(item)

    @staticmethod
    def default_items() -> List[Item]:
        return [*DEFAULT_WEAPONS.values(), *DEFAULT_ARMOR.values(), *COMMON_LOOT]

    @classmethod
    def from_json_file(cls, path: Union[str, Path], include_defaults: bool = True) -> "ItemCatalog":
        """Load a catalog from a JSON list of item objects.

        Invalid entries are skipped with a warning.
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        items = cls.default_items() if include_defaults else []
        for entry in raw if isinstance(raw, list) else []:
            try:
                items.append(Item.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Skipping invalid catalog entry {entry!r}: {e.error_count()} error(s)")
        logger.info(f"Loaded {len(items)} catalog items from {path}")
        return cls(items)

    def add(self, item: Item) -> None:
        self._items[item.name.strip().lower()] = item

    def lookup(self, name: str) -> Optional[Item]:
        item = self._items.get((name or "").strip().lower())
        return item.model_copy(deep=True) if item else None

    def resolve(self, name: str) -> Item:
        """Catalog item for `name`, or a placeholder when it is unknown."""
        found = self.lookup(name)
        if found is not None:
            return found
        logger.debug(f"'{name}' not in catalog; synthesizing placeholder")
        return placeholder_item(name)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, name: str) -> bool:
        return (name or "").strip().lower() in self._items


def starter_kit(class_type: ClassType) -> Tuple[Dict[EquipmentSlot, Item], List[Item]]:
    """Fresh copies of a class's starting equipment and inventory."""
    weapon, armor, inventory = CLASS_STARTER_GEAR[ClassType(class_type)]
    equipment = {
        EquipmentSlot.MAIN_HAND: weapon.model_copy(deep=True),
        EquipmentSlot.CHEST: armor.model_copy(deep=True),
    }
    return equipment, [item.model_copy(deep=True) for item in inventory]
