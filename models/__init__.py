"""
Pydantic v2 data models — the contract for the shared lobby document.

Every document a client saves is built from these models, and every
document it receives is parsed back through them before use.
"""

from models.characters import (
    Character,
    ClassType,
    CLASS_DESCRIPTIONS,
    EquipmentSlot,
    Item,
    ItemType,
    Rarity,
    Stats,
)
from models.state_delta import RequiredRoll, StateDelta, decode_state_delta
from models.messages import (
    DiceRollRecord,
    Message,
    MessageMetadata,
    Sender,
    append_message,
    system_message,
)
from models.lobby import GameState, JournalEntry, MESSAGE_HISTORY_LIMIT, build_document

__all__ = [
    "Character",
    "ClassType",
    "CLASS_DESCRIPTIONS",
    "EquipmentSlot",
    "Item",
    "ItemType",
    "Rarity",
    "Stats",
    "RequiredRoll",
    "StateDelta",
    "decode_state_delta",
    "DiceRollRecord",
    "Message",
    "MessageMetadata",
    "Sender",
    "append_message",
    "system_message",
    "GameState",
    "JournalEntry",
    "MESSAGE_HISTORY_LIMIT",
    "build_document",
]
