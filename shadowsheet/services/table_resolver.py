"""
Turns a table draw plus its classifier flags into either one concrete item or
a canonicalized, deduplicated set of choice options.
"""
import re
from typing import Iterable, List, Optional

from ..models.advancement import ChoiceKind, ChoiceOption, Item, RollOutcome
from ..models.document import TableDraw, TableResult, RollTable
from ..utils.logger import logger
from .filter_classifier import TableFilter
from .talent_handlers import annotate

DISTRIBUTE_LABEL = "Distribute to Stats"
BOON_LABEL = "Patron Boon"
BOON_TWICE_LABEL = "Patron Boon (x2)"

HEADER_RE = re.compile(r"^\s*(?:\d+\s+)?(?:choose|select|pick)\s+(?:one|two|\d+)\b", re.I)
BARE_HEADER_RE = re.compile(r"^\s*(?:choose|select)\s+(?:one|\d+)(?:\s+or\s+\d+)?\s*:?\s*$", re.I)
REROLL_RE = re.compile(r"\bre-?roll\b|\broll again\b|\balready\s+(?:taken|had)\b", re.I)
CONNECTOR_RE = re.compile(r"^(?:or|and|re-?roll|\d+)$", re.I)
DISTRIBUTE_RE = re.compile(
    r"(?:\bdistribute\b|[+-]\d+\s*(?:points?\s+)?(?:to\s+)?)[^.]*?"
    r"\b(?:stats?|abilit(?:y|ies)|attributes?|strength|dexterity|constitution|intelligence|wisdom|charisma"
    r"|str|dex|con|int|wis|cha)\b",
    re.I,
)
BOON_RE = re.compile(r"\bboons?\b", re.I)


def is_reroll_instruction(text: str) -> bool:
    return bool(REROLL_RE.search(text or ""))


def _is_instruction(text: str) -> bool:
    return bool(HEADER_RE.match(text) or REROLL_RE.search(text) or CONNECTOR_RE.match(text))


def _find_header(results: Iterable[TableResult]) -> Optional[str]:
    for r in results:
        text = r.text.strip()
        if text and HEADER_RE.match(text):
            return text
    return None


def _canonicalize(text: str, stats: bool, boons: bool):
    if stats and DISTRIBUTE_RE.search(text):
        return DISTRIBUTE_LABEL, ChoiceKind.DISTRIBUTE
    if boons and BOON_RE.search(text):
        return BOON_LABEL, ChoiceKind.PATRON_BOON
    return None


def get_choices(
    table: RollTable,
    results: Optional[List[TableResult]] = None,
    store=None,
    canonicalize_stats: bool = False,
    canonicalize_boons: bool = False,
) -> List[ChoiceOption]:
    """Choice options for ``results`` (default: the whole table), headers and instructions removed."""
    results = table.results if results is None else results
    options = []
    for r in results:
        text = r.text.strip()
        if not text and r.document_ref and store is not None:
            doc = store.get_document(r.document_ref)
            text = doc.name if doc is not None else ""
        if not text or _is_instruction(text):
            logger.debug(f"Filtering out choice entry: '{text}'")
            continue

        canonical = _canonicalize(text, canonicalize_stats, canonicalize_boons)
        if canonical is not None:
            name, kind = canonical
            option = ChoiceOption(name=name, text=text, kind=kind, img=r.img or table.img, source=table.id)
        else:
            option = ChoiceOption(
                name=text,
                text=text,
                img=r.img or table.img,
                uuid=r.document_ref,
                source=table.id,
            )
        options.append(annotate(option))

    unique = {}
    for option in options:
        unique.setdefault(option.name.strip().lower(), option)
    logger.info(f"Generated {len(unique)} choice options from {len(options)} entries of '{table.name}'")
    return list(unique.values())


def result_to_item(result: TableResult, table: RollTable, store) -> Item:
    if result.document_ref:
        doc = store.copy_document(result.document_ref) if store is not None else None
        if doc is not None:
            return Item(
                name=doc.name or result.text.strip() or table.name,
                type=doc.kind.value,
                img=doc.img or result.img,
                uuid=result.document_ref,
                system=doc.payload,
                effects=doc.effects,
            )
        logger.warning(f"Unresolvable table reference {result.document_ref} on '{table.name}'")
    return Item(name=result.text.strip() or table.name, type="text", img=result.img or table.img)


def option_to_item(option: ChoiceOption, store=None) -> Item:
    """Concrete item for a picked option: its document when it references one, else a synthetic talent."""
    if option.uuid and store is not None:
        doc = store.copy_document(option.uuid)
        if doc is not None:
            item = Item(
                name=doc.name or option.name,
                type=doc.kind.value,
                img=doc.img or option.img,
                uuid=option.uuid,
                system=doc.payload,
                effects=doc.effects,
                config=dict(option.config),
            )
            return annotate(item)

    system = {"description": option.description} if option.description else {}
    item = Item(
        name=option.name,
        type="Talent",
        img=option.img,
        system=system,
        action=option.action,
        config=dict(option.config),
    )
    return annotate(item)


def _synthetic(name: str, table: RollTable, config: Optional[dict] = None) -> Item:
    return annotate(Item(name=name, type="Talent", img=table.img, config=config or {}))


def _choice_outcome(draw: TableDraw, options: List[ChoiceOption], store, header: str = "Choose One",
                    choice_count: int = 1) -> RollOutcome:
    if len(options) > choice_count:
        return RollOutcome(
            needs_choice=True,
            choice_options=options,
            choice_count=choice_count,
            header=header,
            total=draw.total,
        )
    if len(options) == 1 and choice_count == 1:
        return RollOutcome(item=option_to_item(options[0], store), total=draw.total)
    return RollOutcome(
        needs_choice=bool(options),
        choice_options=options,
        choice_count=len(options),
        header=header,
        total=draw.total,
    )


def process_roll_result(draw: TableDraw, flags: TableFilter, store) -> RollOutcome:
    table = draw.table
    results = draw.results
    logger.info(f"Resolving {draw.total} on '{table.name}' with flags {flags}")

    if flags & TableFilter.CHOOSE_TWO:
        options = get_choices(table, None, store, canonicalize_stats=True, canonicalize_boons=True)
        return _choice_outcome(draw, options, store, header="Choose Two", choice_count=2)

    choose_one = TableFilter.DROP_CHOOSE_ONE | TableFilter.CHOOSE_ONE
    with_table = choose_one | TableFilter.DISTRIBUTE_TABLE
    if (flags & with_table) == with_table:
        options = get_choices(table, results, store, canonicalize_stats=True, canonicalize_boons=True)
        return _choice_outcome(draw, options, store, header=_find_header(results) or "Choose One")

    if (flags & choose_one) == choose_one:
        options = get_choices(table, results, store)
        return _choice_outcome(draw, options, store, header=_find_header(results) or "Choose One")

    if flags & (TableFilter.DISTRIBUTE_ONCE | TableFilter.DISTRIBUTE_ANY):
        config = {"total": 2, "max_per_stat": 1} if flags & TableFilter.DISTRIBUTE_ONCE else {"total": 2}
        return RollOutcome(item=_synthetic(DISTRIBUTE_LABEL, table, config), total=draw.total)

    if flags & (TableFilter.BOON_ONCE | TableFilter.BOON_ANY):
        return RollOutcome(item=_synthetic(BOON_LABEL, table), total=draw.total)

    if flags & TableFilter.BOON_TWICE:
        return RollOutcome(item=_synthetic(BOON_TWICE_LABEL, table), total=draw.total)

    if flags & TableFilter.WARLOCK_COMPOSITE:
        options = get_choices(table, results, store, canonicalize_stats=True, canonicalize_boons=True)
        return _choice_outcome(draw, options, store, header=_find_header(results) or "Choose One")

    candidates = results
    if flags & TableFilter.DROP_BLANK:
        candidates = [r for r in results if r.text.strip() or r.document_ref]
    if not candidates:
        logger.warning(f"No result on '{table.name}' covers {draw.total}")
        return RollOutcome(total=draw.total, warning=f"No result covers {draw.total}")

    entry = candidates[0]
    text = entry.text.strip()
    if not entry.document_ref and (BARE_HEADER_RE.match(text) or CONNECTOR_RE.match(text)):
        options = get_choices(table, None, store)
        return _choice_outcome(draw, options, store, header=text)

    return RollOutcome(item=annotate(result_to_item(entry, table, store)), total=draw.total)
