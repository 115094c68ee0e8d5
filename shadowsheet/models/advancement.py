from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Union
from datetime import datetime, timezone
from enum import Enum
import uuid

from .actor import Actor


class Item(BaseModel):
    """An item to be created on the actor: talent, boon, spell, effect or gear."""

    name: str = ""
    type: Union[str, int] = "Talent"
    img: str = ""
    uuid: Optional[str] = None
    system: Dict[str, Any] = Field(default_factory=dict)
    effects: List[Any] = Field(default_factory=list)
    action: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.name or str(self.system.get("description", ""))

    def to_payload(self) -> dict:
        """Shape expected by the actor service's item creation call."""
        return self.model_dump(exclude={"uuid", "action", "config"}, exclude_none=True)


class ChoiceKind(str, Enum):
    TALENT = "talent"
    DISTRIBUTE = "distribute"
    PATRON_BOON = "patron_boon"


class ChoiceOption(BaseModel):
    name: str
    text: str = ""
    kind: ChoiceKind = ChoiceKind.TALENT
    img: str = ""
    uuid: Optional[str] = None
    description: str = ""
    action: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    source: Optional[str] = None


class RollContext(str, Enum):
    TALENT = "talent"
    BOON = "boon"


class PendingChoice(BaseModel):
    context: RollContext = RollContext.TALENT
    header: str = "Choose One"
    options: List[ChoiceOption] = Field(default_factory=list)
    choice_count: int = 1
    accepted: int = 0


class RollOutcome(BaseModel):
    item: Optional[Item] = None
    needs_choice: bool = False
    choice_options: List[ChoiceOption] = Field(default_factory=list)
    choice_count: int = 1
    header: Optional[str] = None
    total: Optional[int] = None
    attempts: int = 1
    warning: Optional[str] = None


class Selection(BaseModel):
    """Choices owed by one or more grants of the same talent."""

    required: int = 0
    selected: List[str] = Field(default_factory=list)
    grants: int = 0


class StatPool(BaseModel):
    total: int = 0
    allocated: Dict[str, int] = Field(default_factory=dict)
    talent_index: Optional[int] = None
    max_per_stat: Optional[int] = None
    grants: int = 0


class ExtraSpellSelection(BaseModel):
    active: bool = False
    max_tier: int = 1
    source: str = ""
    sources: List[str] = Field(default_factory=list)
    count: int = 0
    selected: List[Item] = Field(default_factory=list)


class AdvancementState(BaseModel):
    rolled_talents: List[Item] = Field(default_factory=list)
    rolled_boons: List[Item] = Field(default_factory=list)
    selected_spells: List[Item] = Field(default_factory=list)
    selected_languages: List[str] = Field(default_factory=list)
    hp_roll: Optional[int] = None
    gold_roll: Optional[int] = None
    stat_selection: Selection = Field(default_factory=Selection)
    stat_pool: StatPool = Field(default_factory=StatPool)
    weapon_mastery_selection: Selection = Field(default_factory=Selection)
    armor_mastery_selection: Selection = Field(default_factory=Selection)
    extra_spell_selection: ExtraSpellSelection = Field(default_factory=ExtraSpellSelection)
    pending_choice: Optional[PendingChoice] = None
    boon_rolls_owed: int = 0
    bonus_boons: int = 0


class Requirements(BaseModel):
    required_talents: int = 0
    required_boons: int = 0
    choice_rolls: int = 0
    needs_boon: bool = False
    is_level_one: bool = False


class ValidationResult(BaseModel):
    valid: bool
    reason: Optional[str] = None


class AdvancementPhase(str, Enum):
    IDLE = "idle"
    ROLLING = "rolling"
    READY_TO_FINALIZE = "ready_to_finalize"
    FINALIZED = "finalized"


class LevelUpSession(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    actor_id: Optional[str] = None
    class_id: str
    patron_id: Optional[str] = None
    ancestry_id: Optional[str] = None
    actor: Actor = Field(default_factory=Actor)
    current_level: int = 0
    target_level: int = 1
    requirements: Requirements = Field(default_factory=Requirements)
    state: AdvancementState = Field(default_factory=AdvancementState)
    phase: AdvancementPhase = AdvancementPhase.IDLE
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
