from dataclasses import dataclass, field
from enum import Flag, auto
from typing import Dict, List, Optional

from ..utils.logger import logger
from .dice_roller import formula_domain


class TableFilter(Flag):
    """How the results drawn in one range of an advancement table are read."""

    NONE = 0
    CHOOSE_TWO = auto()         # pick two options from the whole table
    DROP_CHOOSE_ONE = auto()    # strip the "Choose one" header entry
    CHOOSE_ONE = auto()         # present the range's entries as a choice
    DISTRIBUTE_TABLE = auto()   # "+N to <stat>" entries collapse to one option
    DISTRIBUTE_ONCE = auto()    # +2 stat points, max +1 per stat
    DISTRIBUTE_ANY = auto()     # +2 stat points, any stats
    BOON_ONCE = auto()
    BOON_TWICE = auto()
    BOON_ANY = auto()
    WARLOCK_COMPOSITE = auto()
    DROP_BLANK = auto()


@dataclass(frozen=True)
class FilterRange:
    low: int
    high: int
    flags: TableFilter = TableFilter.NONE

    def covers(self, total: int) -> bool:
        return self.low <= total <= self.high


@dataclass
class FilterPatternSet:
    source_id: str
    formula: str
    ranges: List[FilterRange] = field(default_factory=list)
    label: str = ""


def check_partition(pattern_set: FilterPatternSet) -> List[str]:
    """Gaps and overlaps between ``pattern_set``'s ranges and its formula's domain."""
    low, high = formula_domain(pattern_set.formula)
    problems = []
    for total in range(low, high + 1):
        hits = [r for r in pattern_set.ranges if r.covers(total)]
        if not hits:
            problems.append(f"{pattern_set.source_id}: no range covers {total}")
        elif len(hits) > 1:
            problems.append(f"{pattern_set.source_id}: {len(hits)} ranges cover {total}")
    for r in pattern_set.ranges:
        if r.low > r.high or r.low < low or r.high > high:
            problems.append(f"{pattern_set.source_id}: range [{r.low}, {r.high}] outside [{low}, {high}]")
    return problems


class FilterClassifier:
    def __init__(self, patterns: Optional[Dict[str, FilterPatternSet]] = None):
        if patterns is None:
            from ..data.filter_patterns import FILTER_PATTERNS
            patterns = FILTER_PATTERNS
        self.patterns = patterns

    def classify(self, source_id: Optional[str], total: int) -> TableFilter:
        pattern_set = self.patterns.get(source_id or "")
        if pattern_set is None:
            return TableFilter.NONE
        for r in pattern_set.ranges:
            if r.covers(total):
                logger.debug(f"Classified {total} for {pattern_set.label or source_id}: {r.flags}")
                return r.flags
        logger.warning(f"No filter range covers {total} for source {source_id}")
        return TableFilter.NONE
