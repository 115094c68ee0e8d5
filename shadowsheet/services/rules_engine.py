from typing import Any, Dict, List, Optional, Set

from ..models.actor import Actor
from ..models.advancement import AdvancementState, Item, Requirements, ValidationResult
from ..models.document import Document
from ..utils.logger import logger
from .talent_handlers import TALENT_HANDLERS, TalentHandler, find_handler


XP_PER_LEVEL = 10
DEFAULT_HIT_DIE = "1d4"
GOLD_FORMULA = "2d6 * 5"
SPELL_TIERS = range(1, 6)

# Payload lists that never hold baggage references
BAGGAGE_SKIP_KEYS = {"languages", "class", "talentChoices"}
INLINE_GEAR_KEYS = ("equipment", "items")


def requires_patron(class_doc: Optional[Document]) -> bool:
    patron = (class_doc.payload.get("patron") if class_doc else None) or {}
    return bool(patron.get("required") or patron.get("requiredBoon"))


def calculate_advancement(
    actor: Optional[Actor],
    target_level: int,
    class_doc: Optional[Document],
    handlers: Optional[List[TalentHandler]] = None,
) -> Requirements:
    is_odd = target_level % 2 == 1
    required_talents = 1 if is_odd else 0
    required_boons = 0
    choice_rolls = 0
    needs_boon = requires_patron(class_doc)

    if needs_boon:
        required_talents = 0
        if target_level == 1:
            required_boons = 1
        elif is_odd:
            choice_rolls = 1

    if actor is not None:
        for handler in handlers if handlers is not None else TALENT_HANDLERS:
            adjustment = handler.on_init(actor, target_level)
            required_talents += adjustment.get("required_talents", 0)
            choice_rolls += adjustment.get("choice_rolls", 0)

    return Requirements(
        required_talents=required_talents,
        required_boons=required_boons,
        choice_rolls=choice_rolls,
        needs_boon=needs_boon,
        is_level_one=target_level == 1,
    )


def validate_state(
    state: AdvancementState,
    requirements: Requirements,
    handlers: Optional[List[TalentHandler]] = None,
) -> ValidationResult:
    talents = len(state.rolled_talents)
    # Boons granted by "Patron Boon" talents fill no requirement of their own
    boons = len(state.rolled_boons) - state.bonus_boons

    if talents < requirements.required_talents:
        return ValidationResult(valid=False, reason="Missing talents")
    if boons < requirements.required_boons:
        return ValidationResult(valid=False, reason="Missing boons")

    flexible = max(0, talents - requirements.required_talents) + max(0, boons - requirements.required_boons)
    if flexible < requirements.choice_rolls:
        return ValidationResult(valid=False, reason="Missing talent or boon roll")

    if state.hp_roll is None:
        return ValidationResult(valid=False, reason="Missing HP roll")
    if requirements.is_level_one and state.gold_roll is None:
        return ValidationResult(valid=False, reason="Missing gold roll")
    if state.pending_choice is not None:
        return ValidationResult(valid=False, reason="A choice is still pending")

    for handler in handlers if handlers is not None else TALENT_HANDLERS:
        if handler.is_blocked(state):
            return ValidationResult(valid=False, reason=f"Handler {handler.id} is blocked")

    return ValidationResult(valid=True)


# ─── Level-up data ──────────────────────────────────────────────────────────

def hit_die(class_doc: Optional[Document]) -> str:
    return (class_doc.payload.get("hitPoints") if class_doc else None) or DEFAULT_HIT_DIE


def is_spellcaster(class_doc: Optional[Document]) -> bool:
    spellcasting = (class_doc.payload.get("spellcasting") if class_doc else None) or {}
    return bool(spellcasting.get("class") or spellcasting.get("ability"))


def _spells_known(class_doc: Optional[Document], level: int) -> Dict[int, int]:
    spellcasting = (class_doc.payload.get("spellcasting") if class_doc else None) or {}
    table = spellcasting.get("spellsknown") or {}
    row = table.get(str(level)) or table.get(level) or {}
    return {tier: int(row.get(str(tier), row.get(tier, 0)) or 0) for tier in SPELL_TIERS}


def spells_to_choose(class_doc: Optional[Document], current_level: int, target_level: int) -> Dict[int, int]:
    """New spells per tier gained between ``current_level`` and ``target_level``."""
    current = _spells_known(class_doc, current_level)
    target = _spells_known(class_doc, target_level)
    return {tier: target[tier] - current[tier] for tier in SPELL_TIERS if target[tier] > current[tier]}


def max_spell_tier(class_doc: Optional[Document], level: int) -> int:
    known = _spells_known(class_doc, level)
    return max([tier for tier, count in known.items() if count > 0] or [1])


def carried_xp(current_level: int, xp: int) -> int:
    if current_level <= 0:
        return 0
    return max(0, xp - current_level * XP_PER_LEVEL)


def hp_after_level(actor: Actor, hp_roll: int, target_level: int) -> Dict[str, int]:
    if target_level == 1:
        base = max(1, hp_roll + actor.ability_mod("con"))
        value = base + actor.hp.bonus
        return {"base": base, "value": value, "max": value}
    base = actor.hp.base + hp_roll
    return {"base": base, "value": actor.hp.value + hp_roll, "max": base + actor.hp.bonus}


# ─── Final assembly ─────────────────────────────────────────────────────────

def _document_item(doc: Document, ref: str) -> Item:
    return Item(
        name=doc.name,
        type=doc.kind.value,
        img=doc.img,
        uuid=ref,
        system=dict(doc.payload),
        effects=list(doc.effects),
    )


def resolve_baggage(doc: Optional[Document], store, _seen: Optional[Set[str]] = None) -> List[Item]:
    """Items referenced by a class or ancestry document, followed recursively."""
    if doc is None or store is None:
        return []
    seen = _seen if _seen is not None else {doc.id}
    payload = doc.payload
    items: List[Item] = []

    choice_count = int(payload.get("talentChoiceCount") or 0)
    for key, value in payload.items():
        if key in BAGGAGE_SKIP_KEYS or key in INLINE_GEAR_KEYS or not isinstance(value, list):
            continue
        # Talents offered as a choice are not granted outright
        if key == "talents" and 0 < choice_count < len(value):
            continue
        for entry in value:
            ref = entry.get("uuid") if isinstance(entry, dict) else entry
            if not isinstance(ref, str):
                continue
            target = store.copy_document(ref)
            if target is None or target.id in seen:
                continue
            seen.add(target.id)
            items.append(_document_item(target, ref))
            items.extend(resolve_baggage(target, store, seen))

    for key in INLINE_GEAR_KEYS:
        for entry in payload.get(key) or []:
            if isinstance(entry, dict) and entry.get("name") and entry.get("type"):
                items.append(Item(**{k: v for k, v in entry.items() if k in Item.model_fields}))

    logger.debug(f"Resolved {len(items)} baggage items from '{doc.name}'")
    return items


def sanitize_items(items: List[Item]) -> List[Item]:
    for item in items:
        if item.type in ("text", 0):
            item.type = "Talent"
        if item.effects and isinstance(item.effects[0], str):
            logger.warning(f"Clearing invalid string effects for {item.name}")
            item.effects = []
        for key in list(item.system):
            value = item.system[key]
            if isinstance(value, list) and (not value or isinstance(value[0], str)):
                del item.system[key]
    return items


def assemble_final_items(
    state: AdvancementState,
    target_level: int,
    class_doc: Optional[Document] = None,
    ancestry_doc: Optional[Document] = None,
    store=None,
    handlers: Optional[List[TalentHandler]] = None,
) -> List[Item]:
    handlers = handlers if handlers is not None else TALENT_HANDLERS
    items: List[Item] = []
    grants: Dict[str, int] = {}

    for rolled in [*state.rolled_talents, *state.rolled_boons]:
        handler = find_handler(rolled, handlers)
        if handler is not None and handler.supersedes_rolled_item:
            continue
        item = rolled.model_copy(deep=True)
        item.system["level"] = target_level
        if handler is not None:
            grant = grants.get(handler.id, 0)
            grants[handler.id] = grant + 1
            handler.mutate_item(item, state, grant)
        items.append(item)

    for spell in [*state.selected_spells, *state.extra_spell_selection.selected]:
        items.append(spell.model_copy(deep=True))

    for handler in handlers:
        items.extend(handler.resolve_items(state, target_level, store))

    if target_level == 1:
        items.extend(resolve_baggage(class_doc, store))
        items.extend(resolve_baggage(ancestry_doc, store))

    logger.info(f"Assembled {len(items)} items for level {target_level}")
    return sanitize_items(items)


def audit_entry(base_hp: int, items: List[Item]) -> Dict[str, Any]:
    return {"baseHP": base_hp, "itemsGained": [i.name for i in items]}
