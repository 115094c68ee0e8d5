"""
How each advancement source's talent or boon table must be read, keyed by the
class or patron document id that owns the table.
"""
from ..services.filter_classifier import FilterPatternSet, FilterRange, TableFilter as F

FIGHTER = "3KhGmmNB4Lh3cbQv"
BARD = "wQnJ2kVvL8a0cP1x"
WARLOCK = "Bt7wq0RJxOkA2nLm"
WIZARD = "035nuVkU9q2wtMPs"
PRIEST = "pR1estClass00001"
TITANIA = "pAtr0nT1tania001"
MUGDULBLUB = "pAtr0nMugdulblub"

FILTER_PATTERNS = {
    FIGHTER: FilterPatternSet(
        source_id=FIGHTER,
        label="Fighter",
        formula="2d6",
        ranges=[
            FilterRange(2, 2),
            FilterRange(3, 6),
            FilterRange(7, 9, F.DISTRIBUTE_ANY),
            FilterRange(10, 11),
            FilterRange(12, 12, F.DROP_CHOOSE_ONE | F.CHOOSE_ONE | F.DISTRIBUTE_TABLE),
        ],
    ),
    BARD: FilterPatternSet(
        source_id=BARD,
        label="Bard",
        formula="2d6",
        ranges=[
            FilterRange(2, 2),
            FilterRange(3, 6),
            FilterRange(7, 9, F.DISTRIBUTE_ANY),
            FilterRange(10, 11),
            FilterRange(12, 12, F.DROP_CHOOSE_ONE | F.CHOOSE_ONE | F.DROP_BLANK),
        ],
    ),
    WARLOCK: FilterPatternSet(
        source_id=WARLOCK,
        label="Warlock",
        formula="2d6",
        ranges=[
            FilterRange(2, 2),
            FilterRange(3, 6, F.DISTRIBUTE_ONCE),
            FilterRange(7, 9, F.BOON_ONCE),
            FilterRange(10, 11, F.BOON_TWICE),
            FilterRange(12, 12, F.WARLOCK_COMPOSITE | F.DROP_BLANK),
        ],
    ),
    WIZARD: FilterPatternSet(
        source_id=WIZARD,
        label="Wizard",
        formula="2d6",
        ranges=[
            FilterRange(2, 2),
            FilterRange(3, 7),
            FilterRange(8, 9),
            FilterRange(10, 11),
            FilterRange(12, 12, F.CHOOSE_TWO),
        ],
    ),
    PRIEST: FilterPatternSet(
        source_id=PRIEST,
        label="Priest",
        formula="2d6",
        ranges=[
            FilterRange(2, 2),
            FilterRange(3, 6),
            FilterRange(7, 9),
            FilterRange(10, 11, F.DISTRIBUTE_ANY),
            FilterRange(12, 12),
        ],
    ),
    TITANIA: FilterPatternSet(
        source_id=TITANIA,
        label="Titania",
        formula="2d6",
        ranges=[
            FilterRange(2, 7),
            FilterRange(8, 9),
            FilterRange(10, 11, F.BOON_ANY),
            FilterRange(12, 12, F.DROP_CHOOSE_ONE | F.CHOOSE_ONE | F.DISTRIBUTE_TABLE),
        ],
    ),
    MUGDULBLUB: FilterPatternSet(
        source_id=MUGDULBLUB,
        label="Mugdulblub",
        formula="2d6",
        ranges=[
            FilterRange(2, 7),
            FilterRange(8, 11),
            FilterRange(12, 12, F.DROP_CHOOSE_ONE | F.CHOOSE_ONE | F.DISTRIBUTE_TABLE | F.DROP_BLANK),
        ],
    ),
}
