"""
Rules engine tests: advancement requirements, validation, level-up data and final item assembly.
"""
import asyncio

import pytest

FIGHTER = "3KhGmmNB4Lh3cbQv"
WARLOCK = "Bt7wq0RJxOkA2nLm"
WIZARD = "035nuVkU9q2wtMPs"
HUMAN = "hUm4nAnc3stry0aa"


# ─── Requirements ─────────────────────────────────────────────────────────────

@pytest.mark.parametrize("level,talents", [(1, 1), (2, 0), (3, 1), (4, 0), (5, 1)])
def test_non_patron_class_gains_talents_on_odd_levels(store, make_actor, level, talents):
    from shadowsheet.services.rules_engine import calculate_advancement
    req = calculate_advancement(make_actor(level=level - 1), level, store.get_document(FIGHTER))
    assert req.required_talents == talents
    assert req.required_boons == 0
    assert req.choice_rolls == 0
    assert not req.needs_boon
    assert req.is_level_one == (level == 1)

def test_patron_class_requirements(store, make_actor):
    from shadowsheet.services.rules_engine import calculate_advancement
    warlock = store.get_document(WARLOCK)

    first = calculate_advancement(make_actor(), 1, warlock)
    assert (first.required_talents, first.required_boons, first.choice_rolls) == (0, 1, 0)
    assert first.needs_boon

    third = calculate_advancement(make_actor(level=2), 3, warlock)
    assert (third.required_talents, third.required_boons, third.choice_rolls) == (0, 0, 1)

    fourth = calculate_advancement(make_actor(level=3), 4, warlock)
    assert (fourth.required_talents, fourth.required_boons, fourth.choice_rolls) == (0, 0, 0)

def test_ambitious_human_gets_an_extra_first_level_talent(store, make_actor):
    from shadowsheet.services.rules_engine import calculate_advancement
    req = calculate_advancement(make_actor(items=["Ambitious"]), 1, store.get_document(FIGHTER))
    assert req.required_talents == 2

def test_requires_patron(store):
    from shadowsheet.services.rules_engine import requires_patron
    assert requires_patron(store.get_document(WARLOCK))
    assert not requires_patron(store.get_document(FIGHTER))
    assert not requires_patron(None)


# ─── Validation ───────────────────────────────────────────────────────────────

def test_validation_reasons_in_order():
    from shadowsheet.models.advancement import (
        AdvancementState, Item, PendingChoice, Requirements, Selection,
    )
    from shadowsheet.services.rules_engine import validate_state

    req = Requirements(required_talents=1, required_boons=1, choice_rolls=1, is_level_one=True)
    state = AdvancementState()
    assert validate_state(state, req).reason == "Missing talents"

    state.rolled_talents.append(Item(name="Keen Senses"))
    assert validate_state(state, req).reason == "Missing boons"

    state.rolled_boons.append(Item(name="Fey Sight"))
    assert validate_state(state, req).reason == "Missing talent or boon roll"

    state.rolled_talents.append(Item(name="Iron Will"))
    assert validate_state(state, req).reason == "Missing HP roll"

    state.hp_roll = 4
    assert validate_state(state, req).reason == "Missing gold roll"

    state.gold_roll = 40
    state.pending_choice = PendingChoice()
    assert validate_state(state, req).reason == "A choice is still pending"

    state.pending_choice = None
    state.stat_selection = Selection(required=2, selected=["str"])
    assert validate_state(state, req).reason == "Handler stat-improvement is blocked"

    state.stat_selection.selected.append("wis")
    result = validate_state(state, req)
    assert result.valid and result.reason is None

def test_granted_boons_fill_no_requirement():
    from shadowsheet.models.advancement import AdvancementState, Item, Requirements
    from shadowsheet.services.rules_engine import validate_state
    req = Requirements(required_boons=1)
    state = AdvancementState(rolled_boons=[Item(name="Fey Sight")], bonus_boons=1, hp_roll=3)
    assert validate_state(state, req).reason == "Missing boons"


# ─── Level-up data ────────────────────────────────────────────────────────────

def test_hit_die_and_spellcasting(store):
    from shadowsheet.services import rules_engine
    fighter, wizard = store.get_document(FIGHTER), store.get_document(WIZARD)
    assert rules_engine.hit_die(fighter) == "1d8"
    assert rules_engine.hit_die(None) == "1d4"
    assert rules_engine.is_spellcaster(wizard)
    assert not rules_engine.is_spellcaster(fighter)

def test_spells_to_choose(store):
    from shadowsheet.services import rules_engine
    wizard = store.get_document(WIZARD)
    assert rules_engine.spells_to_choose(wizard, 0, 1) == {1: 3}
    assert rules_engine.spells_to_choose(wizard, 1, 2) == {1: 1}
    assert rules_engine.spells_to_choose(wizard, 2, 3) == {2: 1}
    assert rules_engine.spells_to_choose(store.get_document(FIGHTER), 0, 1) == {}
    assert rules_engine.max_spell_tier(wizard, 5) == 3
    assert rules_engine.max_spell_tier(wizard, 1) == 1

def test_carried_xp():
    from shadowsheet.services.rules_engine import carried_xp
    assert carried_xp(2, 25) == 5
    assert carried_xp(2, 20) == 0
    assert carried_xp(2, 10) == 0
    assert carried_xp(0, 7) == 0

def test_hp_at_first_level(make_actor):
    from shadowsheet.services.rules_engine import hp_after_level
    assert hp_after_level(make_actor(con=14), 5, 1) == {"base": 7, "value": 7, "max": 7}
    assert hp_after_level(make_actor(con=3), 1, 1)["base"] == 1

def test_hp_at_later_levels(make_actor):
    from shadowsheet.services.rules_engine import hp_after_level
    actor = make_actor(level=2, hp={"base": 8, "value": 6, "max": 10, "bonus": 2})
    assert hp_after_level(actor, 4, 3) == {"base": 12, "value": 10, "max": 14}


# ─── Final assembly ───────────────────────────────────────────────────────────

def _inline_store(*docs):
    from shadowsheet.services.document_store import DocumentStore
    s = DocumentStore(source=list(docs))
    asyncio.run(s.initialize())
    return s

def test_baggage_follows_references_without_looping():
    from shadowsheet.services.rules_engine import resolve_baggage
    s = _inline_store(
        {"_id": "clsA", "name": "Knight", "type": "Class", "_pack": "classes",
         "system": {"talents": ["Compendium.shadowdark.talents.Item.talB"], "languages": ["x"]}},
        {"_id": "talB", "name": "Oath", "type": "Talent", "_pack": "talents",
         "system": {"features": ["Compendium.shadowdark.classes.Item.clsA",
                                 "Compendium.shadowdark.talents.Item.talC"]}},
        {"_id": "talC", "name": "Banner", "type": "Talent", "_pack": "talents", "system": {}},
    )
    items = resolve_baggage(s.get_document("clsA"), s)
    assert [i.name for i in items] == ["Oath", "Banner"]

def test_baggage_skips_talents_offered_as_a_choice():
    from shadowsheet.services.rules_engine import resolve_baggage
    s = _inline_store(
        {"_id": "anc1", "name": "Elf", "type": "Ancestry", "_pack": "ancestries",
         "system": {"talentChoiceCount": 1,
                    "talents": ["Compendium.shadowdark.talents.Item.t1", "Compendium.shadowdark.talents.Item.t2"]}},
        {"_id": "t1", "name": "Farsight (Ranged)", "type": "Talent", "_pack": "talents", "system": {}},
        {"_id": "t2", "name": "Farsight (Spell)", "type": "Talent", "_pack": "talents", "system": {}},
    )
    assert resolve_baggage(s.get_document("anc1"), s) == []

def test_bundled_fighter_and_human_baggage(store):
    from shadowsheet.services.rules_engine import resolve_baggage
    fighter = [i.name for i in resolve_baggage(store.get_document(FIGHTER), store)]
    assert fighter == ["Hauler", "Torch"]
    human = [i.name for i in resolve_baggage(store.get_document(HUMAN), store)]
    assert human == ["Ambitious"]

def test_sanitize_items():
    from shadowsheet.models.advancement import Item
    from shadowsheet.services.rules_engine import sanitize_items
    item = Item(
        name="Odd",
        type="text",
        effects=["bad"],
        system={"tags": ["a"], "empty": [], "nested": [{"a": 1}], "level": 2},
    )
    (clean,) = sanitize_items([item])
    assert clean.type == "Talent"
    assert clean.effects == []
    assert clean.system == {"nested": [{"a": 1}], "level": 2}

def test_assembly_replaces_placeholders_and_stamps_level(store):
    from shadowsheet.models.advancement import AdvancementState, Item, Selection
    from shadowsheet.services.rules_engine import assemble_final_items
    from shadowsheet.services.talent_handlers import annotate
    placeholder = annotate(Item(name="Weapon Mastery", uuid="Compendium.shadowdark.talents.Item.5bpWuaT0KTNzuzCu"))
    state = AdvancementState(
        rolled_talents=[placeholder, Item(name="+1 to melee and ranged attacks", type="text")],
        weapon_mastery_selection=Selection(required=1, selected=["Greataxe"]),
    )
    items = assemble_final_items(state, 3, store.get_document(FIGHTER), None, store)
    assert [i.name for i in items] == ["+1 to melee and ranged attacks", "Weapon Mastery (Greataxe)"]
    bonus = items[0]
    assert bonus.type == "Talent"
    assert bonus.system["level"] == 3
    assert bonus.effects[0]["changes"][0]["key"] == "system.bonuses.attackBonus"
    # the rolled entries in the state are left alone
    assert state.rolled_talents[1].effects == []

def test_first_level_assembly_adds_baggage(store):
    from shadowsheet.models.advancement import AdvancementState, Item
    from shadowsheet.services.rules_engine import assemble_final_items
    state = AdvancementState(rolled_talents=[Item(name="Keen Senses")])
    items = assemble_final_items(state, 1, store.get_document(FIGHTER), store.get_document(HUMAN), store)
    assert [i.name for i in items] == ["Keen Senses", "Hauler", "Torch", "Ambitious"]

def test_audit_entry():
    from shadowsheet.models.advancement import Item
    from shadowsheet.services.rules_engine import audit_entry
    assert audit_entry(7, [Item(name="Hauler")]) == {"baseHP": 7, "itemsGained": ["Hauler"]}
