from typing import Any, Dict, List, Optional, Union

from ..config import settings
from ..models.actor import ABILITIES, Actor
from ..models.advancement import (
    AdvancementPhase,
    ChoiceOption,
    Item,
    LevelUpSession,
    PendingChoice,
    RollContext,
    RollOutcome,
    ValidationResult,
)
from ..models.document import Document, DocumentKind
from ..services import rules_engine
from ..services.dice_roller import RollResult, evaluate
from ..services.document_store import DocumentNotFoundError, DocumentStore
from ..services.filter_classifier import FilterClassifier
from ..services.table_resolver import is_reroll_instruction, option_to_item, process_roll_result
from ..services.talent_handlers import TALENT_HANDLERS, TalentHandler, find_handler
from ..utils.logger import logger


class AdvancementError(ValueError):
    """An operation that is illegal for the session's current phase or selections."""


class AdvancementManager:
    """
    One leveling transaction: requirements, rolls and choices, sub-selections,
    validation and the final apply. All state lives on ``session`` so it can be
    persisted between calls.
    """

    def __init__(
        self,
        session: LevelUpSession,
        store: DocumentStore,
        classifier: Optional[FilterClassifier] = None,
        handlers: Optional[List[TalentHandler]] = None,
        rng=None,
    ):
        self.session = session
        self.store = store
        self.classifier = classifier or FilterClassifier()
        self.handlers = handlers if handlers is not None else TALENT_HANDLERS
        self.rng = rng

    @classmethod
    def start(
        cls,
        store: DocumentStore,
        actor: Actor,
        class_id: Optional[str] = None,
        target_level: Optional[int] = None,
        patron_id: Optional[str] = None,
        ancestry_id: Optional[str] = None,
        **kwargs,
    ) -> "AdvancementManager":
        class_ref = class_id or actor.class_ref
        if not class_ref:
            raise AdvancementError("A class is required to level up")
        class_doc = store.get_document(class_ref)
        if class_doc is None or class_doc.kind != DocumentKind.CLASS:
            raise DocumentNotFoundError(class_ref, "Class")

        patron_ref = patron_id or actor.patron_ref
        ancestry_ref = ancestry_id or actor.ancestry_ref
        target = target_level if target_level is not None else actor.level + 1
        if target <= actor.level:
            raise AdvancementError(f"Target level {target} must be above current level {actor.level}")

        session = LevelUpSession(
            actor_id=actor.id or None,
            class_id=class_doc.id,
            patron_id=store.require_document(patron_ref).id if patron_ref else None,
            ancestry_id=store.require_document(ancestry_ref).id if ancestry_ref else None,
            actor=actor,
            current_level=actor.level,
            target_level=target,
        )
        manager = cls(session, store, **kwargs)
        session.requirements = rules_engine.calculate_advancement(actor, target, class_doc, manager.handlers)
        logger.info(
            f"Level-up started for '{actor.name or actor.id}': {actor.level} -> {target} "
            f"({session.requirements.model_dump()})"
        )
        return manager

    # --- Accessors ---

    @property
    def state(self):
        return self.session.state

    @property
    def requirements(self):
        return self.session.requirements

    @property
    def class_doc(self) -> Document:
        return self.store.require_document(self.session.class_id)

    @property
    def patron_doc(self) -> Optional[Document]:
        return self.store.get_document(self.session.patron_id) if self.session.patron_id else None

    @property
    def ancestry_doc(self) -> Optional[Document]:
        return self.store.get_document(self.session.ancestry_id) if self.session.ancestry_id else None

    def level_up_data(self) -> Dict[str, Any]:
        class_doc = self.class_doc
        patron_doc = self.patron_doc
        actor = self.session.actor
        return {
            "actor_id": self.session.actor_id,
            "current_level": self.session.current_level,
            "target_level": self.session.target_level,
            "current_xp": actor.xp,
            "talent_gained": self.session.target_level % 2 == 1,
            "class_hit_die": rules_engine.hit_die(class_doc),
            "class_talent_table": class_doc.payload.get("classTalentTable"),
            "patron_boon_table": patron_doc.payload.get("boonTable") if patron_doc else None,
            "can_roll_boons": self.requirements.needs_boon,
            "is_spellcaster": rules_engine.is_spellcaster(class_doc),
            "spells_to_choose": rules_engine.spells_to_choose(
                class_doc, self.session.current_level, self.session.target_level
            ),
            "con_mod": actor.ability_mod("con"),
            "requirements": self.requirements.model_dump(),
        }

    # --- Phase bookkeeping ---

    def _require_open(self):
        if self.session.phase == AdvancementPhase.FINALIZED:
            raise AdvancementError("Level-up session is already finalized")

    def _refresh_phase(self):
        if self.session.phase == AdvancementPhase.FINALIZED:
            return
        if self.validate().valid:
            self.session.phase = AdvancementPhase.READY_TO_FINALIZE
        else:
            self.session.phase = AdvancementPhase.ROLLING

    def validate(self) -> ValidationResult:
        return rules_engine.validate_state(self.state, self.requirements, self.handlers)

    # --- Rolling ---

    def _open_slots(self, context: RollContext) -> bool:
        state, req = self.state, self.requirements
        talents = len(state.rolled_talents)
        boons = len(state.rolled_boons) - state.bonus_boons
        flexible_used = max(0, talents - req.required_talents) + max(0, boons - req.required_boons)
        flexible_left = req.choice_rolls - flexible_used
        if context == RollContext.TALENT:
            return talents < req.required_talents or flexible_left > 0
        return state.boon_rolls_owed > 0 or boons < req.required_boons or flexible_left > 0

    def _is_duplicate(self, item: Item) -> bool:
        # Items that open a sub-selection can be gained repeatedly
        if item.action is not None:
            return False
        name = item.name.strip().lower()
        if not name:
            return False
        rolled = [i.name.strip().lower() for i in self.state.rolled_talents + self.state.rolled_boons]
        return self.session.actor.has_item(name) or name in rolled

    def _needs_reroll(self, item: Item) -> bool:
        return is_reroll_instruction(item.text) or self._is_duplicate(item)

    def _accept(self, item: Item, context: RollContext):
        target = self.state.rolled_talents if context == RollContext.TALENT else self.state.rolled_boons
        target.append(item)
        handler = find_handler(item, self.handlers)
        if handler is not None:
            handler.on_roll(item, self.state)
        if self.state.extra_spell_selection.active:
            self.state.extra_spell_selection.max_tier = rules_engine.max_spell_tier(
                self.class_doc, self.session.target_level
            )
        logger.info(f"Accepted {context.value} '{item.name}'")

    def _roll(self, context: RollContext, table_ref: Optional[str], source_id: Optional[str]) -> RollOutcome:
        self._require_open()
        if self.state.pending_choice is not None:
            raise AdvancementError("Resolve the pending choice before rolling again")
        if not table_ref:
            raise AdvancementError(f"No {context.value} table available for this character")
        if not self._open_slots(context):
            raise AdvancementError(f"No {context.value} rolls remaining")

        max_attempts = max(1, settings.MAX_REROLL_ATTEMPTS)
        attempts = 0
        while attempts < max_attempts:
            attempts += 1
            draw = self.store.draw(table_ref, rng=self.rng)
            flags = self.classifier.classify(source_id, draw.total)
            outcome = process_roll_result(draw, flags, self.store)
            if outcome.item is None or not self._needs_reroll(outcome.item):
                break
            logger.info(f"Rerolling '{outcome.item.name}' (attempt {attempts}/{max_attempts})")
        else:
            outcome.attempts = attempts
            outcome.warning = f"'{outcome.item.name}' still needed a reroll after {attempts} attempts"
            logger.warning(f"Reroll budget exhausted on {table_ref}: {outcome.warning}")
            self._refresh_phase()
            return outcome

        outcome.attempts = attempts
        if context == RollContext.BOON and self.state.boon_rolls_owed > 0:
            self.state.boon_rolls_owed -= 1
            self.state.bonus_boons += 1

        if outcome.needs_choice:
            self.state.pending_choice = PendingChoice(
                context=context,
                header=outcome.header or "Choose One",
                options=outcome.choice_options,
                choice_count=outcome.choice_count,
            )
        elif outcome.item is not None:
            self._accept(outcome.item, context)
        self._refresh_phase()
        return outcome

    def roll_talent(self, table_ref: Optional[str] = None) -> RollOutcome:
        table_ref = table_ref or self.class_doc.payload.get("classTalentTable")
        return self._roll(RollContext.TALENT, table_ref, self.session.class_id)

    def roll_boon(self, table_ref: Optional[str] = None) -> RollOutcome:
        patron_doc = self.patron_doc
        table_ref = table_ref or (patron_doc.payload.get("boonTable") if patron_doc else None)
        return self._roll(RollContext.BOON, table_ref, self.session.patron_id)

    def resolve_choice(self, selection: Union[int, str, ChoiceOption]) -> Item:
        self._require_open()
        pending = self.state.pending_choice
        if pending is None:
            raise AdvancementError("No choice is pending")

        if isinstance(selection, int):
            if not 0 <= selection < len(pending.options):
                raise AdvancementError(f"Choice index {selection} is out of range")
            option = pending.options[selection]
        else:
            name = (selection.name if isinstance(selection, ChoiceOption) else str(selection)).strip().lower()
            option = next((o for o in pending.options if o.name.strip().lower() == name), None)
            if option is None:
                raise AdvancementError(f"'{name}' is not one of the offered options")

        item = option_to_item(option, self.store)
        pending.options = [o for o in pending.options if o is not option]
        pending.accepted += 1
        if pending.accepted >= pending.choice_count or not pending.options:
            self.state.pending_choice = None
        self._accept(item, pending.context)
        self._refresh_phase()
        return item

    # --- Sub-selections ---

    def select_stats(self, stats: List[str]) -> List[str]:
        self._require_open()
        selection = self.state.stat_selection
        if selection.required <= 0:
            raise AdvancementError("No stat selection is open")
        chosen = [s.lower() for s in stats]
        if any(s not in ABILITIES for s in chosen):
            raise AdvancementError(f"Unknown stat in {stats}")
        # Each grant improves two different stats; grants are filled in order
        per = max(1, selection.required // max(1, selection.grants))
        groups = [chosen[i:i + per] for i in range(0, len(chosen), per)]
        if len(chosen) > selection.required or any(len(set(g)) != len(g) for g in groups):
            raise AdvancementError(f"Choose {selection.required} stats, {per} different per grant")
        selection.selected = chosen
        self._refresh_phase()
        return chosen

    def allocate_stat_pool(self, allocation: Dict[str, int]) -> Dict[str, int]:
        self._require_open()
        pool = self.state.stat_pool
        if pool.total <= 0:
            raise AdvancementError("No stat points to distribute")
        allocated = {k.lower(): int(v) for k, v in allocation.items() if int(v) != 0}
        if any(k not in ABILITIES for k in allocated) or any(v < 0 for v in allocated.values()):
            raise AdvancementError(f"Invalid allocation {allocation}")
        if sum(allocated.values()) > pool.total:
            raise AdvancementError(f"Only {pool.total} points can be distributed")
        if pool.max_per_stat is not None and any(v > pool.max_per_stat for v in allocated.values()):
            raise AdvancementError(f"At most {pool.max_per_stat} point per stat")
        pool.allocated = allocated
        self._refresh_phase()
        return allocated

    def _select_mastery(self, field: str, choice: str) -> str:
        self._require_open()
        selection = getattr(self.state, field)
        if selection.required <= 0:
            raise AdvancementError("No mastery selection is open")
        if not choice.strip():
            raise AdvancementError("A mastery choice is required")
        choice = choice.strip()
        if len(selection.selected) < selection.required:
            selection.selected.append(choice)
        else:
            selection.selected[-1] = choice
        self._refresh_phase()
        return choice

    def select_weapon_mastery(self, weapon: str) -> str:
        return self._select_mastery("weapon_mastery_selection", weapon)

    def select_armor_mastery(self, armor: str) -> str:
        return self._select_mastery("armor_mastery_selection", armor)

    def _spell_item(self, spell_id: str) -> Item:
        doc = self.store.copy_document(spell_id)
        if doc is None or doc.kind != DocumentKind.SPELL:
            raise AdvancementError(f"Unknown spell: {spell_id}")
        return Item(name=doc.name, type=doc.kind.value, img=doc.img, uuid=spell_id,
                    system=doc.payload, effects=doc.effects)

    def select_extra_spells(self, spell_ids: List[str]) -> List[Item]:
        self._require_open()
        selection = self.state.extra_spell_selection
        if not selection.active:
            raise AdvancementError("No extra spell selection is open")
        if len(spell_ids) > selection.count:
            raise AdvancementError(f"Choose at most {selection.count} extra spell(s)")

        sources = selection.sources or [selection.source]
        allowed = None
        if all(sources):
            allowed = {d.id for source in sources for d in self.store.get_spells_by_source(source)}
        spells = []
        for spell_id in spell_ids:
            item = self._spell_item(spell_id)
            if int(item.system.get("tier", 1) or 1) > selection.max_tier:
                raise AdvancementError(f"'{item.name}' is above tier {selection.max_tier}")
            if allowed is not None and self.store.require_document(spell_id).id not in allowed:
                raise AdvancementError(f"'{item.name}' is not a {'/'.join(sources)} spell")
            spells.append(item)
        selection.selected = spells
        self._refresh_phase()
        return spells

    def select_spells(self, spell_ids: List[str]) -> List[Item]:
        self._require_open()
        quota = rules_engine.spells_to_choose(self.class_doc, self.session.current_level, self.session.target_level)
        spells = [self._spell_item(s) for s in spell_ids]
        per_tier: Dict[int, int] = {}
        for spell in spells:
            tier = int(spell.system.get("tier", 1) or 1)
            per_tier[tier] = per_tier.get(tier, 0) + 1
            if per_tier[tier] > quota.get(tier, 0):
                raise AdvancementError(f"Too many tier {tier} spells (allowed {quota.get(tier, 0)})")
        self.state.selected_spells = spells
        self._refresh_phase()
        return spells

    def select_languages(self, languages: List[str]) -> List[str]:
        self._require_open()
        unique = list(dict.fromkeys(l.strip() for l in languages if l.strip()))
        self.state.selected_languages = unique
        self._refresh_phase()
        return unique

    def roll_hp(self) -> RollResult:
        self._require_open()
        if self.state.hp_roll is not None:
            raise AdvancementError("HP has already been rolled")
        result = evaluate(rules_engine.hit_die(self.class_doc), rng=self.rng)
        self.state.hp_roll = int(result.total)
        logger.info(f"HP roll {result.formula} = {result.total}")
        self._refresh_phase()
        return result

    def roll_gold(self) -> RollResult:
        self._require_open()
        if not self.requirements.is_level_one:
            raise AdvancementError("Starting gold is only rolled at level 1")
        if self.state.gold_roll is not None:
            raise AdvancementError("Gold has already been rolled")
        result = evaluate(rules_engine.GOLD_FORMULA, rng=self.rng)
        self.state.gold_roll = int(result.total)
        logger.info(f"Gold roll {result.formula} = {result.total}")
        self._refresh_phase()
        return result

    # --- Finalize ---

    def assemble(self) -> List[Item]:
        return rules_engine.assemble_final_items(
            self.state,
            self.session.target_level,
            self.class_doc,
            self.ancestry_doc,
            self.store,
            self.handlers,
        )

    async def finalize(self, client) -> Dict[str, Any]:
        """Apply the level-up to the actor. Returns ``success: False`` with a reason while invalid."""
        self._require_open()
        validation = self.validate()
        if not validation.valid:
            return {"success": False, "reason": validation.reason}

        session, actor, state = self.session, self.session.actor, self.state
        items = self.assemble()

        actor_id = session.actor_id
        if not actor_id:
            created = await client.create_actor({"name": actor.name or "New Character", "type": "Player"})
            actor_id = created.get("_id") or created.get("id")
            session.actor_id = actor_id

        if items:
            await client.create_actor_items(actor_id, items)

        hp = rules_engine.hp_after_level(actor, state.hp_roll, session.target_level)
        xp = rules_engine.carried_xp(session.current_level, actor.xp)
        audit_log = dict(actor.audit_log)
        audit_log[str(session.target_level)] = rules_engine.audit_entry(hp["base"], items)

        updates = {
            "system.attributes.hp.base": hp["base"],
            "system.attributes.hp.max": hp["max"],
            "system.attributes.hp.value": hp["value"],
            "system.auditLog": audit_log,
            "system.level.value": session.target_level,
            "system.level.xp": xp,
        }
        if state.selected_languages:
            updates["system.languages"] = list(dict.fromkeys(actor.languages + state.selected_languages))
        if state.gold_roll is not None:
            updates["system.coins.gp"] = actor.gold + state.gold_roll
        await client.update_actor(actor_id, updates)

        session.phase = AdvancementPhase.FINALIZED
        logger.info(f"Finalized level {session.target_level} for actor {actor_id} with {len(items)} items")
        return {
            "success": True,
            "actor_id": actor_id,
            "level": session.target_level,
            "xp": xp,
            "hp": hp,
            "items": [i.name for i in items],
            "audit": audit_log[str(session.target_level)],
        }
