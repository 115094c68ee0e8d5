"""
Rule units that recognise specific advancement outcomes and attach follow-up
behaviour: sub-selections after a roll, blocking checks during validation,
item mutation and synthesized items at finalize.

``TALENT_HANDLERS`` is order-significant. Lookups that apply to a single item
(``on_roll``, ``mutate_item``, action annotation) use the first handler that
matches; lifecycle hooks that apply to the whole state run on every handler.
"""
import re
import uuid
from typing import Any, Dict, List, Optional

from ..data.talent_effects import (
    ABILITY_LABELS,
    ARMOR_MASTERY_ID,
    SPELLCASTING_CLASSES,
    SYSTEM_PREDEFINED_EFFECTS,
    WEAPON_MASTERY_ID,
    find_predefined_effect,
)
from ..models.actor import Actor
from ..models.advancement import AdvancementState, ExtraSpellSelection, Item, Selection, StatPool
from ..utils.logger import logger


def item_label(item: Any) -> str:
    """Lower-cased display text of an item or choice option."""
    for attr in ("name", "text", "description"):
        value = getattr(item, attr, None)
        if value:
            return str(value).strip().lower()
    system = getattr(item, "system", None) or {}
    return str(system.get("description", "")).strip().lower()


def _effect(name: str, definition: dict, value: Any = None) -> dict:
    return {
        "name": name,
        "icon": definition.get("icon", "icons/svg/aura.svg"),
        "changes": [{
            "key": definition["key"],
            "mode": definition["mode"],
            "value": str(definition["value"] if value is None else value),
        }],
        "transfer": True,
    }


def _is_ability_effect(effect: Any) -> bool:
    name = effect.get("name", "") if isinstance(effect, dict) else ""
    return name.startswith("Stat Distribution") or name.startswith("Ability Score Improvement")


class TalentHandler:
    id = ""
    description = ""
    action: Optional[str] = None
    config: Dict[str, Any] = {}
    # The rolled placeholder is replaced by what resolve_items produces
    supersedes_rolled_item = False

    def matches(self, item: Any) -> bool:
        return False

    def on_init(self, actor: Actor, target_level: int) -> Dict[str, int]:
        return {}

    def on_roll(self, item: Item, state: AdvancementState):
        pass

    def is_blocked(self, state: AdvancementState) -> bool:
        return False

    def mutate_item(self, item: Item, state: AdvancementState, grant: int = 0):
        """``grant`` is the item's position among the rolled items this handler matched."""

    def resolve_items(self, state: AdvancementState, target_level: int, store=None) -> List[Item]:
        return []


class AmbitiousHandler(TalentHandler):
    id = "ambitious"
    description = "Human talent: one additional talent at level 1"

    def matches(self, item):
        return item_label(item) == "ambitious"

    def on_init(self, actor, target_level):
        if target_level == 1 and actor.has_item("Ambitious"):
            return {"required_talents": 1}
        return {}


class StatImprovementHandler(TalentHandler):
    id = "stat-improvement"
    description = "Gain +1 to two stats"
    action = "stat-selection"
    config = {"required": 2}

    def matches(self, item):
        text = item_label(item)
        return "+1 point to two stats" in text or "+1 to two stats" in text

    def _per_grant(self, item) -> int:
        return {**self.config, **(getattr(item, "config", None) or {})}.get("required", 2)

    def on_roll(self, item, state):
        selection = state.stat_selection
        selection.required += self._per_grant(item)
        selection.grants += 1

    def is_blocked(self, state):
        selection = state.stat_selection
        return selection.required > 0 and len(selection.selected) < selection.required

    def mutate_item(self, item, state, grant=0):
        per = self._per_grant(item)
        share = state.stat_selection.selected[grant * per:(grant + 1) * per]
        stats = [s for s in share if s in ABILITY_LABELS]
        if not stats:
            return
        keys = [f"abilityImprovement{ABILITY_LABELS[s]}" for s in stats]
        item.system["predefinedEffects"] = ",".join(keys)
        for key in keys:
            definition = SYSTEM_PREDEFINED_EFFECTS[key]
            label = definition["label"].replace("Ability Improvement", "Ability Score Improvement")
            item.effects.append(_effect(label, definition))


class StatDistributionHandler(TalentHandler):
    id = "stat-distribution"
    description = "Distribute +2 points across stats"
    action = "stat-pool"
    config = {"total": 2}

    def matches(self, item):
        if (getattr(item, "name", "") or "").startswith("Distribute to Stats"):
            return True
        text = item_label(item)
        return "distribute" in text and "+2" in text and "stat" in text

    def on_roll(self, item, state):
        config = {**self.config, **item.config}
        pool = state.stat_pool
        if pool.grants == 0:
            index = next((i for i, t in enumerate(state.rolled_talents) if t is item), None)
            state.stat_pool = pool = StatPool(talent_index=index, max_per_stat=config.get("max_per_stat"))
        elif pool.max_per_stat is not None:
            # Caps add up across grants; an uncapped grant lifts the cap
            cap = config.get("max_per_stat")
            pool.max_per_stat = None if cap is None else pool.max_per_stat + cap
        pool.total += config.get("total", 2)
        pool.grants += 1

    def is_blocked(self, state):
        pool = state.stat_pool
        return pool.total > 0 and sum(pool.allocated.values()) < pool.total

    @staticmethod
    def _share(pool: StatPool, per: int, grant: int) -> Dict[str, int]:
        points = [stat for stat, value in pool.allocated.items() for _ in range(max(0, value))]
        share: Dict[str, int] = {}
        for stat in points[grant * per:(grant + 1) * per]:
            share[stat] = share.get(stat, 0) + 1
        return share

    def mutate_item(self, item, state, grant=0):
        pool = state.stat_pool
        if pool.total <= 0:
            return

        per = {**self.config, **item.config}.get("total", 2)
        item.effects = [e for e in item.effects if not _is_ability_effect(e)]
        keys = []
        for stat, value in self._share(pool, per, grant).items():
            if value <= 0 or stat not in ABILITY_LABELS:
                continue
            key = f"abilityImprovement{ABILITY_LABELS[stat]}"
            keys.append(key)
            definition = SYSTEM_PREDEFINED_EFFECTS[key]
            item.effects.append(_effect(f"Ability Score Improvement ({ABILITY_LABELS[stat]})", definition, value))
        if keys:
            item.system["predefinedEffects"] = ",".join(keys)


class _MasteryHandler(TalentHandler):
    """Shared behaviour of the weapon and armor mastery talents."""

    document_id = ""
    selection_field = ""
    bonus_key = ""
    fallback_img = ""
    fallback_text = ""
    config = {"required": 1}
    supersedes_rolled_item = True

    def matches(self, item):
        if item_label(item) == self.description_name.lower():
            return True
        ref = getattr(item, "uuid", None) or ""
        return ref.split(".")[-1] == self.document_id

    @property
    def description_name(self) -> str:
        return self.id.replace("-", " ").title()

    def _selection(self, state) -> Selection:
        return getattr(state, self.selection_field)

    def on_roll(self, item, state):
        selection = self._selection(state)
        selection.required += self.config["required"]
        selection.grants += 1

    def is_blocked(self, state):
        selection = self._selection(state)
        return selection.required > 0 and len(selection.selected) < selection.required

    def resolve_items(self, state, target_level, store=None):
        items = []
        for choice in self._selection(state).selected:
            doc = store.copy_document(self.document_id) if store is not None else None
            if doc is not None:
                system = dict(doc.payload)
                system["level"] = target_level
                if "bonuses" in system:
                    system["bonuses"] = {**system["bonuses"], self.bonus_key: choice.lower()}
                effects = []
                for effect in doc.effects:
                    if isinstance(effect, dict):
                        for change in effect.get("changes") or []:
                            if change.get("value") == "REPLACEME":
                                change["value"] = choice.lower()
                    effects.append(effect)
                items.append(Item(
                    name=f"{doc.name} ({choice})",
                    type=doc.kind.value,
                    img=doc.img,
                    system=system,
                    effects=effects,
                ))
            else:
                logger.warning(f"{self.description_name} document {self.document_id} not found, using fallback")
                items.append(Item(
                    name=f"{self.description_name} ({choice})",
                    type="Talent",
                    img=self.fallback_img,
                    system={
                        "level": target_level,
                        "bonuses": {self.bonus_key: choice.lower()},
                        "description": self.fallback_text.format(choice=choice),
                    },
                ))
        return items


class WeaponMasteryHandler(_MasteryHandler):
    id = "weapon-mastery"
    description = "Choose one type of weapon"
    action = "weapon-mastery"
    document_id = WEAPON_MASTERY_ID
    selection_field = "weapon_mastery_selection"
    bonus_key = "weaponMastery"
    fallback_img = "icons/skills/melee/weapons-crossed-swords-white-blue.webp"
    fallback_text = "<p>You gain +1 to attack and damage with {choice}.</p>"


class ArmorMasteryHandler(_MasteryHandler):
    id = "armor-mastery"
    description = "Choose one type of armor"
    action = "armor-mastery"
    document_id = ARMOR_MASTERY_ID
    selection_field = "armor_mastery_selection"
    bonus_key = "armorMastery"
    fallback_img = "icons/magic/defensive/shield-barrier-deflect-teal.webp"
    fallback_text = "<p>You gain +1 AC with {choice}.</p>"


class ExtraSpellHandler(TalentHandler):
    id = "extra-spell"
    description = "Learn an extra spell"
    action = "extra-spell"
    config = {"active": True, "count": 1}

    @staticmethod
    def spell_class(item) -> str:
        text = item_label(item)
        return next((cls for cls in SPELLCASTING_CLASSES if cls in text), "")

    def matches(self, item):
        text = item_label(item)
        return bool(re.search(r"\blearn (?:a|one)\b", text)) and "spell" in text

    def on_roll(self, item, state):
        config = {**self.config, **item.config}
        source = self.spell_class(item)
        selection = state.extra_spell_selection
        if not selection.active:
            state.extra_spell_selection = selection = ExtraSpellSelection(
                active=True,
                source=source,
                max_tier=config.get("max_tier", 1),
            )
        selection.count += config.get("count", 1)
        if source not in selection.sources:
            selection.sources.append(source)

    def is_blocked(self, state):
        selection = state.extra_spell_selection
        return selection.active and len(selection.selected) < selection.count

    def mutate_item(self, item, state, grant=0):
        cls = self.spell_class(item)
        if not cls:
            return
        definition = SYSTEM_PREDEFINED_EFFECTS["spellcastingClasses"]
        item.system["predefinedEffects"] = "spellcastingClasses"
        has_effect = any(
            isinstance(e, dict) and (
                e.get("name") == "Bonus Spellcasting Class"
                or any(c.get("key") == definition["key"] for c in e.get("changes") or [])
            )
            for e in item.effects
        )
        if not has_effect:
            item.effects.append(_effect("Bonus Spellcasting Class", definition, cls))


class PatronBoonHandler(TalentHandler):
    id = "patron-boon"
    description = "Roll on the patron's boon table"
    action = "patron-boon"
    config = {"rolls": 1}
    supersedes_rolled_item = True

    def matches(self, item):
        return item_label(item).startswith("patron boon")

    def on_roll(self, item, state):
        rolls = 2 if "(x2)" in item_label(item) else {**self.config, **item.config}.get("rolls", 1)
        state.boon_rolls_owed += rolls

    def is_blocked(self, state):
        return state.boon_rolls_owed > 0


class MissingEffectsHandler(TalentHandler):
    id = "missing-effects"
    description = "Apply predefined effects when missing or invalid"

    @staticmethod
    def _has_string_effects(item) -> bool:
        effects = getattr(item, "effects", None) or []
        return len(effects) > 0 and isinstance(effects[0], str)

    def matches(self, item):
        if self._has_string_effects(item):
            return True
        effects = getattr(item, "effects", None) or []
        return not effects and find_predefined_effect(getattr(item, "name", "")) is not None

    def mutate_item(self, item, state, grant=0):
        if self._has_string_effects(item):
            logger.warning(f"Clearing invalid string effects for {item.name}")
            item.effects = []

        definition = find_predefined_effect(item.name)
        if definition is None:
            return
        if any(isinstance(e, dict) and e.get("name") == definition["label"] for e in item.effects):
            return
        changes = definition.get("changes") or [{
            "key": definition["key"],
            "mode": definition["mode"],
            "value": definition["value"],
        }]
        item.effects.append({
            "name": definition["label"],
            "icon": definition.get("icon", "icons/svg/aura.svg"),
            "changes": changes,
            "transfer": True,
            "disabled": False,
            "_id": uuid.uuid4().hex[:16],
        })


TALENT_HANDLERS: List[TalentHandler] = [
    AmbitiousHandler(),
    StatImprovementHandler(),
    StatDistributionHandler(),
    WeaponMasteryHandler(),
    ArmorMasteryHandler(),
    ExtraSpellHandler(),
    PatronBoonHandler(),
    MissingEffectsHandler(),
]


def find_handler(item: Any, handlers: Optional[List[TalentHandler]] = None) -> Optional[TalentHandler]:
    for handler in handlers if handlers is not None else TALENT_HANDLERS:
        if handler.matches(item):
            return handler
    return None


def annotate(item: Any, handlers: Optional[List[TalentHandler]] = None):
    """Attach the first matching handler's action and config to an item or option."""
    handler = find_handler(item, handlers)
    if handler is None or handler.action is None:
        return item
    item.action = handler.action
    item.config = {**handler.config, **(item.config or {})}
    return item
