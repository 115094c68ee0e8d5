from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from typing import Any, Dict, List, Optional, Union

from ..managers import state_manager
from ..managers.advancement_manager import AdvancementError, AdvancementManager
from ..models.actor import Actor
from ..services.dice_roller import evaluate
from ..services.document_store import DocumentNotFoundError, DocumentStore
from ..services.foundry_client import ExternalApplyError, FoundryClient
from ..utils.logger import logger

router = APIRouter()


# ─── Request / Response schemas ───────────────────────────────────────────────

class RollRequest(BaseModel):
    formula: str = "1d20"
    minimize: bool = False
    maximize: bool = False


class DrawRequest(BaseModel):
    roll: Optional[int] = None


class StartLevelUpRequest(BaseModel):
    actor_id: Optional[str] = None
    actor: Optional[dict] = None  # raw actor document, skips the fetch
    class_id: Optional[str] = None
    patron_id: Optional[str] = None
    ancestry_id: Optional[str] = None
    target_level: Optional[int] = None


class TableRollRequest(BaseModel):
    table_id: Optional[str] = None


class ChoiceRequest(BaseModel):
    selection: Union[int, str]


class StatsRequest(BaseModel):
    stats: List[str]


class StatPoolRequest(BaseModel):
    allocation: Dict[str, int]


class MasteryRequest(BaseModel):
    choice: str


class SpellsRequest(BaseModel):
    spell_ids: List[str]


class LanguagesRequest(BaseModel):
    languages: List[str]


# ─── Dependencies ─────────────────────────────────────────────────────────────

def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_client(request: Request) -> FoundryClient:
    return request.app.state.foundry


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, DocumentNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ExternalApplyError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


async def _load(session_id: str, store: DocumentStore) -> AdvancementManager:
    session = await state_manager.get_levelup_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Level-up session not found")
    return AdvancementManager(session, store)


def _session_view(manager: AdvancementManager) -> dict:
    return {
        "session": manager.session.model_dump(mode="json", exclude={"actor"}),
        "validation": manager.validate().model_dump(),
    }


# ─── Roll tables ──────────────────────────────────────────────────────────────

@router.get("/api/tables")
async def list_tables(store: DocumentStore = Depends(get_store)):
    return store.list_tables()


@router.get("/api/tables/{table_id}")
async def get_table(table_id: str, store: DocumentStore = Depends(get_store)):
    try:
        return store.get_table(table_id).model_dump()
    except DocumentNotFoundError as e:
        raise _http_error(e)


@router.post("/api/tables/{table_id}/draw")
async def draw_table(table_id: str, req: DrawRequest, store: DocumentStore = Depends(get_store)):
    try:
        draw = store.draw(table_id, roll_override=req.roll)
    except DocumentNotFoundError as e:
        raise _http_error(e)
    return {
        "total": draw.total,
        "table": {"id": draw.table.id, "name": draw.table.name},
        "results": [r.model_dump() for r in draw.results],
    }


@router.get("/api/tables/{table_id}/results/{result_id}/pool")
async def result_pool(table_id: str, result_id: str, store: DocumentStore = Depends(get_store)):
    try:
        draw = store.get_result_pool(table_id, result_id)
    except DocumentNotFoundError as e:
        raise _http_error(e)
    return {"range_start": draw.total, "results": [r.model_dump() for r in draw.results]}


# ─── Dice ─────────────────────────────────────────────────────────────────────

@router.post("/api/dice/roll")
async def dice_roll(req: RollRequest):
    result = evaluate(req.formula, minimize=req.minimize, maximize=req.maximize)
    return {**result.to_dict(), "description": result.describe()}


# ─── Spells ───────────────────────────────────────────────────────────────────

@router.get("/api/spells")
async def spells_by_class(class_name: str, store: DocumentStore = Depends(get_store)):
    spells = store.get_spells_by_source(class_name)
    return [
        {"id": s.id, "name": s.name, "img": s.img, "tier": s.payload.get("tier", 1)}
        for s in sorted(spells, key=lambda s: (s.payload.get("tier", 1), s.name))
    ]


# ─── Level-up sessions ────────────────────────────────────────────────────────

@router.post("/api/level-up")
async def start_level_up(
    req: StartLevelUpRequest,
    store: DocumentStore = Depends(get_store),
    client: FoundryClient = Depends(get_client),
):
    raw_actor = req.actor
    if raw_actor is None and req.actor_id:
        raw_actor = await client.get_actor(req.actor_id)
        if raw_actor is None:
            raise HTTPException(status_code=404, detail="Actor not found")
    actor = Actor.from_foundry(raw_actor or {})

    try:
        manager = AdvancementManager.start(
            store,
            actor,
            class_id=req.class_id,
            target_level=req.target_level,
            patron_id=req.patron_id,
            ancestry_id=req.ancestry_id,
        )
    except (AdvancementError, DocumentNotFoundError) as e:
        raise _http_error(e)

    await state_manager.create_levelup_session(manager.session)
    return {**_session_view(manager), "data": manager.level_up_data()}


@router.get("/api/level-up/{session_id}")
async def get_level_up(session_id: str, store: DocumentStore = Depends(get_store)):
    manager = await _load(session_id, store)
    return {**_session_view(manager), "data": manager.level_up_data()}


@router.delete("/api/level-up/{session_id}")
async def delete_level_up(session_id: str):
    await state_manager.delete_levelup_session(session_id)
    return {"message": "Level-up session deleted"}


@router.get("/api/actors/{actor_id}/level-ups")
async def actor_level_ups(actor_id: str):
    return {
        "sessions": await state_manager.list_actor_sessions(actor_id),
        "audit_log": await state_manager.get_audit_log(actor_id),
    }


async def _apply(session_id: str, store: DocumentStore, operation) -> dict:
    """Load a session, run one manager operation on it and persist the result."""
    manager = await _load(session_id, store)
    try:
        result = operation(manager)
    except (AdvancementError, DocumentNotFoundError) as e:
        logger.warning(f"Level-up {session_id} rejected operation: {e}")
        raise _http_error(e)
    await state_manager.save_levelup_session(manager.session)
    return {"result": _jsonable(result), **_session_view(manager)}


def _jsonable(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


@router.post("/api/level-up/{session_id}/roll-hp")
async def roll_hp(session_id: str, store: DocumentStore = Depends(get_store)):
    return await _apply(session_id, store, lambda m: m.roll_hp())


@router.post("/api/level-up/{session_id}/roll-gold")
async def roll_gold(session_id: str, store: DocumentStore = Depends(get_store)):
    return await _apply(session_id, store, lambda m: m.roll_gold())


@router.post("/api/level-up/{session_id}/roll-talent")
async def roll_talent(session_id: str, req: TableRollRequest, store: DocumentStore = Depends(get_store)):
    return await _apply(session_id, store, lambda m: m.roll_talent(req.table_id))


@router.post("/api/level-up/{session_id}/roll-boon")
async def roll_boon(session_id: str, req: TableRollRequest, store: DocumentStore = Depends(get_store)):
    return await _apply(session_id, store, lambda m: m.roll_boon(req.table_id))


@router.post("/api/level-up/{session_id}/choice")
async def resolve_choice(session_id: str, req: ChoiceRequest, store: DocumentStore = Depends(get_store)):
    return await _apply(session_id, store, lambda m: m.resolve_choice(req.selection))


@router.post("/api/level-up/{session_id}/stats")
async def select_stats(session_id: str, req: StatsRequest, store: DocumentStore = Depends(get_store)):
    return await _apply(session_id, store, lambda m: m.select_stats(req.stats))


@router.post("/api/level-up/{session_id}/stat-pool")
async def allocate_stat_pool(session_id: str, req: StatPoolRequest, store: DocumentStore = Depends(get_store)):
    return await _apply(session_id, store, lambda m: m.allocate_stat_pool(req.allocation))


@router.post("/api/level-up/{session_id}/weapon-mastery")
async def weapon_mastery(session_id: str, req: MasteryRequest, store: DocumentStore = Depends(get_store)):
    return await _apply(session_id, store, lambda m: m.select_weapon_mastery(req.choice))


@router.post("/api/level-up/{session_id}/armor-mastery")
async def armor_mastery(session_id: str, req: MasteryRequest, store: DocumentStore = Depends(get_store)):
    return await _apply(session_id, store, lambda m: m.select_armor_mastery(req.choice))


@router.post("/api/level-up/{session_id}/spells")
async def select_spells(session_id: str, req: SpellsRequest, store: DocumentStore = Depends(get_store)):
    return await _apply(session_id, store, lambda m: m.select_spells(req.spell_ids))


@router.post("/api/level-up/{session_id}/extra-spells")
async def select_extra_spells(session_id: str, req: SpellsRequest, store: DocumentStore = Depends(get_store)):
    return await _apply(session_id, store, lambda m: m.select_extra_spells(req.spell_ids))


@router.post("/api/level-up/{session_id}/languages")
async def select_languages(session_id: str, req: LanguagesRequest, store: DocumentStore = Depends(get_store)):
    return await _apply(session_id, store, lambda m: m.select_languages(req.languages))


@router.post("/api/level-up/{session_id}/finalize")
async def finalize_level_up(
    session_id: str,
    store: DocumentStore = Depends(get_store),
    client: FoundryClient = Depends(get_client),
):
    manager = await _load(session_id, store)
    try:
        result = await manager.finalize(client)
    except (AdvancementError, DocumentNotFoundError, ExternalApplyError) as e:
        raise _http_error(e)
    if not result["success"]:
        raise HTTPException(status_code=409, detail=result["reason"])

    await state_manager.save_levelup_session(manager.session)
    await state_manager.record_audit_entry(
        result["actor_id"], manager.session.target_level, result["audit"], session_id=session_id
    )
    return result
