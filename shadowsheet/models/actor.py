from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


ABILITIES = ["str", "dex", "con", "int", "wis", "cha"]


class HitPoints(BaseModel):
    base: int = 0
    value: int = 0
    max: int = 0
    bonus: int = 0


class Ability(BaseModel):
    base: int = 10
    bonus: int = 0

    @property
    def mod(self) -> int:
        return (self.base + self.bonus - 10) // 2


class Actor(BaseModel):
    """The slice of an external actor document the level-up engine reads."""

    id: str = ""
    name: str = ""
    level: int = 0
    xp: int = 0
    items: List[Dict[str, Any]] = Field(default_factory=list)
    abilities: Dict[str, Ability] = Field(
        default_factory=lambda: {a: Ability() for a in ABILITIES}
    )
    hp: HitPoints = Field(default_factory=HitPoints)
    class_ref: Optional[str] = None
    patron_ref: Optional[str] = None
    ancestry_ref: Optional[str] = None
    languages: List[str] = Field(default_factory=list)
    gold: int = 0
    audit_log: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_foundry(cls, data: dict) -> "Actor":
        system = data.get("system") or {}
        level = system.get("level") or {}
        hp = (system.get("attributes") or {}).get("hp") or {}
        abilities = {}
        for key, value in (system.get("abilities") or {}).items():
            if isinstance(value, dict):
                abilities[key.lower()] = Ability(
                    base=int(value.get("base", value.get("value", 10)) or 10),
                    bonus=int(value.get("bonus", 0) or 0),
                )
        return cls(
            id=data.get("_id") or data.get("id") or "",
            name=data.get("name") or "",
            level=int(level.get("value", 0) or 0),
            xp=int(level.get("xp", 0) or 0),
            items=list(data.get("items") or []),
            abilities=abilities or {a: Ability() for a in ABILITIES},
            hp=HitPoints(**{k: int(hp.get(k, 0) or 0) for k in ("base", "value", "max", "bonus")}),
            class_ref=system.get("class") or None,
            patron_ref=system.get("patron") or None,
            ancestry_ref=system.get("ancestry") or None,
            languages=list(system.get("languages") or []),
            gold=int((system.get("coins") or {}).get("gp", 0) or 0),
            audit_log=dict(system.get("auditLog") or system.get("auditlog") or {}),
        )

    def ability_mod(self, key: str) -> int:
        ability = self.abilities.get(key)
        return ability.mod if ability else 0

    def item_names(self) -> List[str]:
        return [str(i.get("name", "")) for i in self.items if i.get("name")]

    def has_item(self, name: str) -> bool:
        target = name.strip().lower()
        return any(n.strip().lower() == target for n in self.item_names())
