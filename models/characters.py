"""
Character and Item schemas — the party roster shared by every client.

These models define the wire shape of a lobby's roster. Python attributes
are snake_case; the persisted document keeps the camelCase keys the web
client has always written, via field aliases.
"""

import re
from enum import Enum
from typing import List, Optional, Dict, Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


class ClassType(str, Enum):
    FIGHTER = "Fighter"
    WIZARD = "Wizard"
    ROGUE = "Rogue"
    CLERIC = "Cleric"
    PALADIN = "Paladin"
    RANGER = "Ranger"


CLASS_DESCRIPTIONS: Dict[ClassType, str] = {
    ClassType.FIGHTER: "A master of martial combat, skilled with a variety of weapons and armor.",
    ClassType.WIZARD: "A scholarly magic-user capable of manipulating the structures of reality.",
    ClassType.ROGUE: "A scoundrel who uses stealth and trickery to overcome obstacles and enemies.",
    ClassType.CLERIC: "A priestly champion who wields divine magic in service of a higher power.",
    ClassType.PALADIN: "A holy warrior bound to a sacred oath.",
    ClassType.RANGER: "A warrior who combats threats on the edges of civilization.",
}


class ItemType(str, Enum):
    WEAPON = "Weapon"
    ARMOR = "Armor"
    POTION = "Potion"
    SCROLL = "Scroll"
    CONSUMABLE = "Consumable"
    TOOL = "Tool"
    MISC = "Misc"


class Rarity(str, Enum):
    COMMON = "Common"
    UNCOMMON = "Uncommon"
    RARE = "Rare"
    EPIC = "Epic"
    LEGENDARY = "Legendary"


class EquipmentSlot(str, Enum):
    HEAD = "head"
    CHEST = "chest"
    MAIN_HAND = "mainHand"
    OFF_HAND = "offHand"
    LEGS = "legs"
    FEET = "feet"
    RING1 = "ring1"
    RING2 = "ring2"

    @classmethod
    def parse(cls, raw: Any) -> Optional["EquipmentSlot"]:
        """Normalize a loosely written slot name ('main_hand', 'MainHand', 'Ring 1').

        Returns None for anything outside the closed slot set.
        """
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str):
            return None
        key = re.sub(r"[^a-z0-9]", "", raw.lower())
        for slot in cls:
            if slot.value.lower() == key:
                return slot
        return None


def _coerce_enum(enum_cls, value, default):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        for member in enum_cls:
            if member.value.lower() == value.strip().lower():
                return member
    return default


class Item(BaseModel):
    """An inventory or equipped item.

    Items are value objects: reconciliation compares them by
    case-insensitive name, never by id.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    type: ItemType = ItemType.MISC
    rarity: Rarity = Rarity.COMMON
    description: str = ""
    stats: Optional[Dict[str, int]] = None
    icon: Optional[str] = None

    model_config = {"extra": "allow"}

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, v):
        return _coerce_enum(ItemType, v, ItemType.MISC)

    @field_validator("rarity", mode="before")
    @classmethod
    def validate_rarity(cls, v):
        return _coerce_enum(Rarity, v, Rarity.COMMON)

    def same_name(self, other_name: str) -> bool:
        return self.name.strip().lower() == other_name.strip().lower()


class Stats(BaseModel):
    """The six ability scores."""

    STR: int = 10
    DEX: int = 10
    CON: int = 10
    INT: int = 10
    WIS: int = 10
    CHA: int = 10

    def modifier(self, stat: str) -> int:
        return (getattr(self, stat.upper()) - 10) // 2


class Character(BaseModel):
    """One player's character in a lobby.

    `is_ready` and `pending_action` move together: a character is Ready
    exactly when it holds a committed action awaiting resolution.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    owner_email: str = Field(alias="ownerEmail")
    class_type: ClassType = Field(alias="classType", default=ClassType.FIGHTER)
    level: int = Field(default=1, ge=1)
    hp: int
    max_hp: int = Field(alias="maxHp", ge=1)
    stats: Stats = Field(default_factory=Stats)
    bio: str = ""
    avatar_url: Optional[str] = Field(alias="avatarUrl", default=None)
    inventory: List[Item] = []
    equipment: Dict[EquipmentSlot, Optional[Item]] = {}
    is_ready: bool = Field(alias="isReady", default=False)
    pending_action: Optional[str] = Field(alias="pendingAction", default=None)

    model_config = {"extra": "allow", "populate_by_name": True}

    @field_validator("class_type", mode="before")
    @classmethod
    def validate_class(cls, v):
        return _coerce_enum(ClassType, v, ClassType.FIGHTER)

    @field_validator("inventory", mode="before")
    @classmethod
    def upgrade_legacy_inventory(cls, v):
        # Older documents stored inventory as plain item names.
        if not isinstance(v, list):
            return []
        return [{"id": f"legacy-{i}", "name": entry} if isinstance(entry, str) else entry
                for i, entry in enumerate(v)]

    @field_validator("equipment", mode="before")
    @classmethod
    def normalize_slots(cls, v):
        if not isinstance(v, dict):
            return {}
        slots = {}
        for raw_slot, item in v.items():
            slot = EquipmentSlot.parse(raw_slot)
            if slot is not None:
                slots[slot] = item
        return slots

    @model_validator(mode="after")
    def ready_matches_pending_action(self):
        if not self.is_ready:
            self.pending_action = None
        elif self.pending_action is None:
            self.pending_action = ""
        return self

    def mark_ready(self, action: str) -> "Character":
        """Return a copy in the Ready state holding `action`."""
        return self.model_copy(update={"is_ready": True, "pending_action": action})

    def reset_turn(self) -> "Character":
        """Return a copy back in the Thinking state."""
        return self.model_copy(update={"is_ready": False, "pending_action": None})

    def equipped(self, slot: EquipmentSlot) -> Optional[Item]:
        return self.equipment.get(slot)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
