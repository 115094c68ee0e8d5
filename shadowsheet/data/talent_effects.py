"""
Predefined active effects known to the game system, keyed by the system's
effect key. Used to bake stat choices into talents and to polyfill talents
that arrive without usable effects.
"""

ADD = 2
OVERRIDE = 5

_STAT_ICON = "icons/skills/melee/hand-grip-staff-yellow-brown.webp"

ABILITY_LABELS = {
    "str": "Str",
    "dex": "Dex",
    "con": "Con",
    "int": "Int",
    "wis": "Wis",
    "cha": "Cha",
}

ABILITY_NAMES = {
    "str": "Strength",
    "dex": "Dexterity",
    "con": "Constitution",
    "int": "Intelligence",
    "wis": "Wisdom",
    "cha": "Charisma",
}

SPELLCASTING_CLASSES = ["wizard", "priest", "witch", "warlock", "ranger", "bard", "druid"]

WEAPON_MASTERY_ID = "5bpWuaT0KTNzuzCu"
ARMOR_MASTERY_ID = "0g9MUhj9Tr3AWRXl"

SYSTEM_PREDEFINED_EFFECTS = {
    # Ability improvements used by stat choices
    **{
        f"abilityImprovement{label}": {
            "label": f"Ability Improvement ({label})",
            "key": f"system.abilities.{stat}.bonus",
            "mode": ADD,
            "value": 1,
            "icon": _STAT_ICON,
        }
        for stat, label in ABILITY_LABELS.items()
    },
    "mighty": {
        "label": "Mighty",
        "icon": "icons/skills/melee/unarmed-punch-fist.webp",
        "changes": [
            {"key": "system.bonuses.meleeAttackBonus", "mode": ADD, "value": 1},
            {"key": "system.bonuses.meleeDamageBonus", "mode": ADD, "value": 1},
        ],
    },
    "stout": {"label": "Stout", "key": "system.bonuses.advantage", "mode": ADD, "value": "hp",
              "icon": "icons/equipment/back/backpack-leather-tan.webp"},
    "hauler": {"label": "Hauler", "key": "system.bonuses.gearSlots", "mode": ADD, "value": 3,
               "icon": "icons/equipment/back/backpack-leather-tan.webp"},
    "meleeAttackBonus1": {"label": "+1 to Melee Attacks", "key": "system.bonuses.meleeAttackBonus", "mode": ADD,
                          "value": 1, "icon": "icons/skills/melee/strike-polearm-glowing-white.webp"},
    "meleeDamageBonus1": {"label": "+1 to Melee Damage", "key": "system.bonuses.meleeDamageBonus", "mode": ADD,
                          "value": 1, "icon": "icons/skills/melee/strike-axe-blood-red.webp"},
    "rangedAttackBonus1": {"label": "+1 to Ranged Attacks", "key": "system.bonuses.rangedAttackBonus", "mode": ADD,
                           "value": 1, "icon": "icons/weapons/ammunition/arrow-head-war-flight.webp"},
    "rangedDamageBonus1": {"label": "+1 to Ranged Damage", "key": "system.bonuses.rangedDamageBonus", "mode": ADD,
                           "value": 1, "icon": "icons/weapons/ammunition/arrow-head-war-flight.webp"},
    "meleeRangedAttackBonus": {"label": "+1 to Melee and Ranged Attacks", "key": "system.bonuses.attackBonus",
                               "mode": ADD, "value": 1,
                               "icon": "icons/skills/melee/strike-polearm-glowing-white.webp"},
    "spellChecks1": {"label": "+1 on Spellcasting Checks", "key": "system.bonuses.spellcastingCheckBonus",
                     "mode": ADD, "value": 1, "icon": "icons/magic/fire/flame-burning-fist-strike.webp"},
    "hpAdvantage": {"label": "HP Advantage", "key": "system.bonuses.advantage", "mode": ADD, "value": "hp",
                    "icon": "icons/magic/life/cross-area-circle-green-white.webp"},
    "initAdvantage": {"label": "Initiative Advantage", "key": "system.bonuses.advantage", "mode": ADD,
                      "value": "initiative", "icon": "icons/skills/movement/feet-winged-boots-glowing-yellow.webp"},
    "backstabDie": {"label": "Backstab Die", "key": "system.bonuses.backstabDie", "mode": ADD, "value": 1,
                    "icon": "icons/skills/melee/strike-dagger-white-orange.webp"},
    "critMultiplier": {"label": "Critical Multiplier", "key": "system.bonuses.critical.multiplier",
                       "mode": OVERRIDE, "value": 4, "icon": _STAT_ICON},
    "armorMastery": {"label": "Armor Mastery", "key": "system.bonuses.armorMastery", "mode": ADD,
                     "value": "REPLACEME", "icon": "icons/magic/defensive/shield-barrier-deflect-teal.webp"},
    "weaponMastery": {"label": "Weapon Mastery", "key": "system.bonuses.weaponMastery", "mode": ADD,
                      "value": "REPLACEME", "icon": "icons/skills/melee/weapons-crossed-swords-white-blue.webp"},
    "spellcastingClasses": {"label": "Spellcasting Classes", "key": "system.bonuses.spellcastingClasses",
                            "mode": ADD, "value": "REPLACEME",
                            "icon": "icons/sundries/documents/document-sealed-brown-red.webp"},
}


def find_predefined_effect(name: str):
    """First predefined effect whose label contains, or is contained in, ``name``."""
    target = (name or "").strip().lower()
    if not target:
        return None
    for definition in SYSTEM_PREDEFINED_EFFECTS.values():
        label = definition["label"].lower()
        if target in label or label in target:
            return definition
    return None
