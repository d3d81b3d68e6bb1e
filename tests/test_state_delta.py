"""
Tests for models/state_delta.py — versioned, forgiving delta decoding.

A malformed field must cost only that field, never the whole delta.
"""

from models.state_delta import (
    MAX_SUGGESTED_ACTIONS,
    StateDelta,
    decode_state_delta,
    detect_delta_version,
)


class TestDetectVersion:

    def test_legacy_shape(self):
        assert detect_delta_version({"inventoryUpdates": {"Ann": ["Rope"]}}) == 1
        assert detect_delta_version({"isCombat": True}) == 1

    def test_current_shape(self):
        assert detect_delta_version({"itemsAdded": {"Ann": ["Rope"]}}) == 2
        assert detect_delta_version({"hpUpdates": {"Ann": 3}}) == 2

    def test_mixed_shape_is_current(self):
        raw = {"inventoryUpdates": {}, "itemsAdded": {"Ann": ["Rope"]}}
        assert detect_delta_version(raw) == 2


class TestDecodeCurrent:

    def test_full_delta(self):
        delta = decode_state_delta({
            "hpUpdates": {"Ann": 7},
            "itemsAdded": {"Ann": ["Healing Potion"]},
            "itemsRemoved": {"Bob": ["Torch"]},
            "equipmentUpdates": {"Ann": {"mainHand": "Iron Sword", "head": None}},
            "location": "  Sunken Crypt ",
            "inCombat": True,
            "suggestedActions": ["Run", "Hide"],
            "requiredRoll": {"characterName": "Ann", "rollType": "Perception", "formula": "1d20+2", "dc": 12},
        })
        assert delta.version == 2
        assert delta.hp_updates == {"Ann": 7}
        assert delta.items_added == {"Ann": ["Healing Potion"]}
        assert delta.items_removed == {"Bob": ["Torch"]}
        assert delta.equipment_updates == {"Ann": {"mainHand": "Iron Sword", "head": None}}
        assert delta.location == "Sunken Crypt"
        assert delta.in_combat is True
        assert delta.suggested_actions == ["Run", "Hide"]
        assert delta.required_roll.character_name == "Ann"
        assert delta.required_roll.dc == 12

    def test_empty_object(self):
        delta = decode_state_delta({})
        assert isinstance(delta, StateDelta)
        assert delta.is_empty()
        assert not delta.touches_roster

    def test_suggestions_capped(self):
        delta = decode_state_delta({"suggestedActions": ["a", "b", "c", "d", "e"]})
        assert len(delta.suggested_actions) == MAX_SUGGESTED_ACTIONS

    def test_single_item_name_accepted(self):
        delta = decode_state_delta({"itemsAdded": {"Ann": "Rope"}})
        assert delta.items_added == {"Ann": ["Rope"]}

    def test_malformed_field_dropped_alone(self):
        delta = decode_state_delta({
            "hpUpdates": {"Ann": "lots"},
            "itemsAdded": {"Ann": ["Rope"]},
        })
        assert delta.hp_updates == {}
        assert delta.items_added == {"Ann": ["Rope"]}

    def test_numeric_string_hp_coerced(self):
        delta = decode_state_delta({"hpUpdates": {"Ann": "5"}})
        assert delta.hp_updates == {"Ann": 5}

    def test_bad_required_roll_dropped(self):
        delta = decode_state_delta({"requiredRoll": {"formula": "1d20"}, "location": "Gate"})
        assert delta.required_roll is None
        assert delta.location == "Gate"

    def test_blank_location_ignored(self):
        assert decode_state_delta({"location": "   "}).location is None


class TestDecodeLegacy:

    def test_inventory_updates(self):
        delta = decode_state_delta({"inventoryUpdates": {"Ann": ["Rope", "Torch"]}, "isCombat": False})
        assert delta.version == 1
        assert delta.inventory_updates == {"Ann": ["Rope", "Torch"]}
        assert delta.in_combat is False
        assert delta.touches_roster

    def test_explicit_version_wins(self):
        delta = decode_state_delta({"version": 2, "inventoryUpdates": {"Ann": ["Rope"]}})
        assert delta.version == 2
        assert delta.inventory_updates == {"Ann": ["Rope"]}


class TestDecodeNonObjects:

    def test_list_is_not_a_delta(self):
        assert decode_state_delta(["hp", 3]) is None

    def test_string_is_not_a_delta(self):
        assert decode_state_delta("hpUpdates") is None

    def test_delta_passthrough(self):
        delta = StateDelta(location="Keep")
        assert decode_state_delta(delta) is delta


class TestToDocument:

    def test_camel_case_keys(self):
        delta = decode_state_delta({"hpUpdates": {"Ann": 3}, "inCombat": True})
        doc = delta.to_document()
        assert doc["hpUpdates"] == {"Ann": 3}
        assert doc["inCombat"] is True
        assert "itemsAdded" not in doc
        assert decode_state_delta(doc).hp_updates == {"Ann": 3}
