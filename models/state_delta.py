"""
StateDelta — the structured update the Dungeon Master appends to a reply.

The LLM emits a JSON object after its narration. That object has had two
shapes over time:

  v1 (legacy)   hpUpdates, inventoryUpdates (full item list per character),
                location, isCombat/inCombat, suggestedActions
  v2 (current)  hpUpdates, itemsAdded, itemsRemoved, equipmentUpdates,
                location, inCombat, suggestedActions, requiredRoll

`decode_state_delta()` picks the decoder by shape and validates each field
on its own. A bad field is dropped with a warning; the rest of the delta
survives. Decoding never raises: a malformed AI reply must not cost the
party its turn.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

logger = logging.getLogger("StateDelta")

MAX_SUGGESTED_ACTIONS = 3

LEGACY_KEYS = {"inventoryUpdates", "isCombat"}
CURRENT_KEYS = {"itemsAdded", "itemsRemoved", "equipmentUpdates", "requiredRoll"}


class RequiredRoll(BaseModel):
    """A directive that a specific character must roll before acting."""

    character_name: str = Field(alias="characterName")
    roll_type: str = Field(alias="rollType", default="Check")
    formula: str = "1d20"
    dc: Optional[int] = None

    model_config = {"extra": "allow", "populate_by_name": True}


class StateDelta(BaseModel):
    """One reply's worth of game-state changes. All fields optional."""

    version: int = 2
    hp_updates: Dict[str, int] = Field(alias="hpUpdates", default_factory=dict)
    items_added: Dict[str, List[str]] = Field(alias="itemsAdded", default_factory=dict)
    items_removed: Dict[str, List[str]] = Field(alias="itemsRemoved", default_factory=dict)
    equipment_updates: Dict[str, Dict[str, Optional[str]]] = Field(
        alias="equipmentUpdates", default_factory=dict
    )
    inventory_updates: Dict[str, List[str]] = Field(alias="inventoryUpdates", default_factory=dict)
    location: Optional[str] = None
    in_combat: Optional[bool] = Field(alias="inCombat", default=None)
    suggested_actions: List[str] = Field(alias="suggestedActions", default_factory=list)
    required_roll: Optional[RequiredRoll] = Field(alias="requiredRoll", default=None)

    model_config = {"populate_by_name": True}

    @property
    def touches_roster(self) -> bool:
        return bool(
            self.hp_updates
            or self.items_added
            or self.items_removed
            or self.equipment_updates
            or self.inventory_updates
        )

    def is_empty(self) -> bool:
        return (
            not self.touches_roster
            and self.location is None
            and self.in_combat is None
            and not self.suggested_actions
            and self.required_roll is None
        )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_defaults=True)


# ------------------------------------------------------------------
# Field decoders
# ------------------------------------------------------------------

_HP = TypeAdapter(Dict[str, int])
_NAME_LISTS = TypeAdapter(Dict[str, List[str]])
_EQUIPMENT = TypeAdapter(Dict[str, Dict[str, Optional[str]]])
_STR_LIST = TypeAdapter(List[str])
_BOOL = TypeAdapter(bool)


def _field(raw: Dict[str, Any], key: str, adapter: TypeAdapter) -> Any:
    """Validate one field; None when absent or invalid."""
    if key not in raw or raw[key] is None:
        return None
    value = raw[key]
    # A single item name where a list was expected is common enough to accept.
    if adapter is _NAME_LISTS and isinstance(value, dict):
        value = {k: [v] if isinstance(v, str) else v for k, v in value.items()}
    try:
        return adapter.validate_python(value)
    except ValidationError as e:
        logger.warning(f"Dropping malformed delta field '{key}': {e.error_count()} error(s)")
        return None


def _common_fields(raw: Dict[str, Any]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}

    hp = _field(raw, "hpUpdates", _HP)
    if hp:
        fields["hp_updates"] = hp

    location = raw.get("location")
    if isinstance(location, str) and location.strip():
        fields["location"] = location.strip()

    combat_key = "inCombat" if "inCombat" in raw else "isCombat"
    in_combat = _field(raw, combat_key, _BOOL)
    if in_combat is not None:
        fields["in_combat"] = in_combat

    suggestions = _field(raw, "suggestedActions", _STR_LIST)
    if suggestions:
        fields["suggested_actions"] = suggestions[:MAX_SUGGESTED_ACTIONS]

    return fields


def _decode_v1(raw: Dict[str, Any]) -> StateDelta:
    fields = _common_fields(raw)
    inventory = _field(raw, "inventoryUpdates", _NAME_LISTS)
    if inventory:
        fields["inventory_updates"] = inventory
    return StateDelta(version=1, **fields)


def _decode_v2(raw: Dict[str, Any]) -> StateDelta:
    fields = _common_fields(raw)
    for key, attr, adapter in (
        ("itemsAdded", "items_added", _NAME_LISTS),
        ("itemsRemoved", "items_removed", _NAME_LISTS),
        ("equipmentUpdates", "equipment_updates", _EQUIPMENT),
        ("inventoryUpdates", "inventory_updates", _NAME_LISTS),
    ):
        value = _field(raw, key, adapter)
        if value:
            fields[attr] = value

    roll = raw.get("requiredRoll")
    if isinstance(roll, dict):
        try:
            fields["required_roll"] = RequiredRoll.model_validate(roll)
        except ValidationError:
            logger.warning("Dropping malformed delta field 'requiredRoll'")
    return StateDelta(version=2, **fields)


DELTA_DECODERS: Dict[int, Callable[[Dict[str, Any]], StateDelta]] = {
    1: _decode_v1,
    2: _decode_v2,
}


def detect_delta_version(raw: Dict[str, Any]) -> int:
    """v1 only when the object carries legacy keys and none of the current ones."""
    keys = set(raw)
    if keys & LEGACY_KEYS and not keys & CURRENT_KEYS:
        return 1
    return 2


def decode_state_delta(raw: Any) -> Optional[StateDelta]:
    """Decode a parsed JSON object into a StateDelta.

    Returns None if `raw` is not a JSON object at all.
    """
    if isinstance(raw, StateDelta):
        return raw
    if not isinstance(raw, dict):
        logger.warning(f"State block is not an object (got {type(raw).__name__}); ignoring")
        return None
    version = raw.get("version")
    if version not in DELTA_DECODERS:
        version = detect_delta_version(raw)
    return DELTA_DECODERS[version](raw)
