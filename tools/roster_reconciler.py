"""
RosterReconciler — merges a Dungeon Master StateDelta into the party roster.

Pure function, no I/O: given the same roster and delta it always produces
the same new roster, and the input roster is never mutated. Nothing in
here raises on odd input. Unknown characters and unmatched items are
no-ops, unknown item names become placeholder items.

Per character, in order:
  0. legacy inventoryUpdates — diff the full list against the inventory
  1. hpUpdates               — absolute value, no clamping
  2. itemsAdded              — resolve and append
  3. itemsRemoved            — drop the first item whose name contains the text
  4. equipmentUpdates        — equip from inventory, synthesize, or clear
"""

import json
import logging
from typing import Dict, List, Optional, Sequence

from models.characters import Character, EquipmentSlot, Item
from models.state_delta import StateDelta
from tools.item_catalog import ItemCatalog, placeholder_item
from tools.name_matcher import NameMatcher, ambiguous_matches, find_index, find_key_for, substring_match

logger = logging.getLogger("RosterReconciler")


class _Resolver:
    """Wraps the catalog so a misbehaving lookup degrades to a placeholder."""

    def __init__(self, catalog: Optional[ItemCatalog]):
        self._catalog = catalog

    def __call__(self, name: str) -> Item:
        if self._catalog is None:
            return placeholder_item(name)
        try:
            return self._catalog.resolve(name)
        except Exception as e:
            logger.warning(f"Item lookup failed for '{name}': {e}; using placeholder")
            return placeholder_item(name)


def _section(name: str, section: Dict, matcher: NameMatcher):
    key = find_key_for(name, section.keys(), matcher)
    return section[key] if key is not None else None


def _apply_inventory_list(character: Character, names: List[str], resolve: _Resolver) -> None:
    """Legacy full-list update: keep what is still listed, add what is new, drop the rest."""
    wanted = [n for n in names if isinstance(n, str) and n.strip()]
    remaining = list(wanted)
    kept: List[Item] = []
    for item in character.inventory:
        idx = next((i for i, n in enumerate(remaining) if item.same_name(n)), None)
        if idx is None:
            logger.debug(f"{character.name}: '{item.name}' no longer listed, removing")
            continue
        kept.append(item)
        remaining.pop(idx)
    character.inventory = kept + [resolve(n) for n in remaining]


def _remove_item(character: Character, name: str, matcher: NameMatcher) -> None:
    idx = find_index(character.inventory, name, matcher=matcher)
    if idx is None:
        logger.debug(f"{character.name}: nothing matching '{name}' to remove")
        return
    character.inventory.pop(idx)


def _apply_equipment(
    character: Character,
    updates: Dict[str, Optional[str]],
    resolve: _Resolver,
    matcher: NameMatcher,
) -> None:
    for raw_slot, item_name in updates.items():
        slot = EquipmentSlot.parse(raw_slot)
        if slot is None:
            logger.warning(f"{character.name}: unknown equipment slot '{raw_slot}', ignoring")
            continue

        # The previous item is discarded, not returned to inventory.
        previous = character.equipped(slot)
        if previous is not None:
            logger.debug(f"{character.name}: discarding '{previous.name}' from {slot.value}")

        if not item_name or not item_name.strip():
            character.equipment[slot] = None
            continue

        idx = find_index(character.inventory, item_name, matcher=matcher)
        if idx is not None:
            character.equipment[slot] = character.inventory.pop(idx)
        else:
            character.equipment[slot] = resolve(item_name)


def _warn_ambiguous_keys(roster: Sequence[Character], delta: StateDelta, matcher: NameMatcher) -> None:
    names = [c.name for c in roster]
    sections = (delta.inventory_updates, delta.hp_updates, delta.items_added, delta.items_removed, delta.equipment_updates)
    for key in sorted({k for section in sections for k in section}):
        hits = ambiguous_matches(names, key, matcher)
        if len(hits) > 1:
            logger.warning(f"Delta key '{key}' refers to several characters: {hits}")


def _apply_to_character(
    character: Character,
    delta: StateDelta,
    resolve: _Resolver,
    matcher: NameMatcher,
) -> Character:
    updated = character.model_copy(deep=True)
    name = character.name

    legacy = _section(name, delta.inventory_updates, matcher)
    if legacy is not None:
        _apply_inventory_list(updated, legacy, resolve)

    hp_key = find_key_for(name, delta.hp_updates.keys(), matcher)
    if hp_key is not None:
        updated.hp = delta.hp_updates[hp_key]

    for item_name in _section(name, delta.items_added, matcher) or []:
        if isinstance(item_name, str) and item_name.strip():
            updated.inventory.append(resolve(item_name))

    for item_name in _section(name, delta.items_removed, matcher) or []:
        if isinstance(item_name, str):
            _remove_item(updated, item_name, matcher)

    equipment = _section(name, delta.equipment_updates, matcher)
    if equipment:
        _apply_equipment(updated, equipment, resolve, matcher)

    return updated


def reconcile(
    roster: Sequence[Character],
    delta: Optional[StateDelta],
    catalog: Optional[ItemCatalog] = None,
    matcher: NameMatcher = substring_match,
) -> List[Character]:
    """Return the roster that results from applying `delta`.

    An empty or missing delta returns an equal roster.
    """
    if delta is None or not delta.touches_roster:
        return [c.model_copy(deep=True) for c in roster]
    _warn_ambiguous_keys(roster, delta, matcher)
    resolve = _Resolver(catalog)
    return [_apply_to_character(c, delta, resolve, matcher) for c in roster]


def roster_snapshot(roster: Sequence[Character]) -> str:
    return json.dumps([c.to_document() for c in roster], sort_keys=True)


def roster_changed(before: Sequence[Character], after: Sequence[Character]) -> bool:
    """Deep comparison, so callers can skip no-op writes."""
    return roster_snapshot(before) != roster_snapshot(after)
