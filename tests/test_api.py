"""
HTTP API tests: tables, dice, spells and the level-up session routes.
"""
import os
import tempfile

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

FIGHTER = "3KhGmmNB4Lh3cbQv"
HUMAN = "hUm4nAnc3stry0aa"
FIGHTER_TABLE = "Compendium.shadowdark.rollable-tables.RollTable.dExHo4P85MgpwHd9"

ACTOR = {
    "_id": "actor0000000001",
    "name": "Brannoc",
    "items": [],
    "system": {
        "level": {"value": 0, "xp": 0},
        "abilities": {"con": {"base": 12}},
        "attributes": {"hp": {"base": 0, "value": 0, "max": 0, "bonus": 0}},
        "class": FIGHTER,
    },
}


# ─── Setup ────────────────────────────────────────────────────────────────────

def foundry_handler(request):
    if request.url.path == "/api/actors/remote1" and request.method == "GET":
        return httpx.Response(200, json={**ACTOR, "_id": "remote1"})
    if request.url.path.startswith("/api/actors/") and request.method == "GET":
        return httpx.Response(404)
    return httpx.Response(200, json={})


@pytest_asyncio.fixture
async def client(store):
    from shadowsheet import config
    from shadowsheet.main import app
    from shadowsheet.managers.state_manager import init_db
    from shadowsheet.services.foundry_client import FoundryClient

    # Fresh DB file per test
    tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    tmp.close()
    config.settings.DB_PATH = tmp.name
    await init_db()

    app.state.store = store
    app.state.foundry = FoundryClient(transport=httpx.MockTransport(foundry_handler))
    async with httpx.AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c
    await app.state.foundry.close()
    os.unlink(tmp.name)


async def start_level_up(client, **overrides):
    payload = {"actor": ACTOR, "class_id": FIGHTER, "ancestry_id": HUMAN, "target_level": 1, **overrides}
    res = await client.post("/api/level-up", json=payload)
    assert res.status_code == 200, res.text
    return res.json()


# ─── Dice / tables / spells ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_api_dice_roll(client):
    res = await client.post("/api/dice/roll", json={"formula": "2d6 * 5"})
    assert res.status_code == 200
    data = res.json()
    assert 10 <= data["total"] <= 60
    assert data["formula"] == "2d6 * 5"
    assert data["description"].startswith("Rolled 2d6 * 5")

@pytest.mark.asyncio
async def test_api_dice_roll_maximized_and_malformed(client):
    res = await client.post("/api/dice/roll", json={"formula": "1d8 + 2", "maximize": True})
    assert res.json()["total"] == 10
    res = await client.post("/api/dice/roll", json={"formula": "2d6 +"})
    assert res.status_code == 200
    assert res.json()["total"] == 0

@pytest.mark.asyncio
async def test_api_dice_roll_oversized_formulas(client):
    for formula in ("1" * 5000, "9" * 400 + " / 3", "3000000000d6"):
        res = await client.post("/api/dice/roll", json={"formula": formula})
        assert res.status_code == 200
        assert res.json()["total"] == 0

@pytest.mark.asyncio
async def test_list_and_get_tables(client):
    res = await client.get("/api/tables")
    assert res.status_code == 200
    assert any(t["name"] == "Fighter Talents" for t in res.json())

    res = await client.get(f"/api/tables/{FIGHTER_TABLE}")
    assert res.status_code == 200
    assert res.json()["formula"] == "2d6"

    res = await client.get("/api/tables/missing")
    assert res.status_code == 404

@pytest.mark.asyncio
async def test_draw_table(client):
    res = await client.post(f"/api/tables/{FIGHTER_TABLE}/draw", json={"roll": 12})
    assert res.status_code == 200
    data = res.json()
    assert data["total"] == 12
    assert len(data["results"]) == 4

    res = await client.post(f"/api/tables/{FIGHTER_TABLE}/draw", json={})
    assert 2 <= res.json()["total"] <= 12

@pytest.mark.asyncio
async def test_result_pool(client):
    res = await client.get(f"/api/tables/{FIGHTER_TABLE}/results/fTr12bbbbbbbbbbb/pool")
    assert res.status_code == 200
    assert res.json()["range_start"] == 12
    res = await client.get(f"/api/tables/{FIGHTER_TABLE}/results/nope/pool")
    assert res.status_code == 404

@pytest.mark.asyncio
async def test_spells_by_class(client):
    res = await client.get("/api/spells", params={"class_name": "Wizard"})
    assert res.status_code == 200
    spells = res.json()
    assert [s["name"] for s in spells] == ["Burning Hands", "Light", "Mage Armor", "Magic Missile", "Misty Step"]
    assert spells[-1]["tier"] == 2


# ─── Level-up sessions ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_start_level_up(client):
    data = await start_level_up(client)
    assert data["session"]["target_level"] == 1
    assert data["session"]["actor_id"] == "actor0000000001"
    assert "actor" not in data["session"]
    assert data["validation"] == {"valid": False, "reason": "Missing talents"}
    assert data["data"]["class_hit_die"] == "1d8"
    assert data["data"]["con_mod"] == 1

@pytest.mark.asyncio
async def test_start_level_up_fetches_actor(client):
    data = await start_level_up(client, actor=None, actor_id="remote1", target_level=None)
    assert data["session"]["actor_id"] == "remote1"
    assert data["session"]["class_id"] == FIGHTER

    res = await client.post("/api/level-up", json={"actor_id": "ghost", "class_id": FIGHTER})
    assert res.status_code == 404

@pytest.mark.asyncio
async def test_start_level_up_errors(client):
    res = await client.post("/api/level-up", json={"actor": ACTOR, "class_id": "nope"})
    assert res.status_code == 404
    res = await client.post("/api/level-up", json={"actor": ACTOR, "class_id": FIGHTER, "target_level": 0})
    assert res.status_code == 400
    res = await client.post("/api/level-up", json={"actor": {"name": "Classless"}})
    assert res.status_code == 400

@pytest.mark.asyncio
async def test_level_up_rolls_persist(client):
    session_id = (await start_level_up(client))["session"]["id"]

    res = await client.post(f"/api/level-up/{session_id}/roll-hp")
    assert res.status_code == 200, res.text
    hp = res.json()["result"]["total"]
    assert 1 <= hp <= 8

    res = await client.post(f"/api/level-up/{session_id}/roll-hp")
    assert res.status_code == 400

    res = await client.post(f"/api/level-up/{session_id}/roll-gold")
    assert res.status_code == 200
    assert 10 <= res.json()["result"]["total"] <= 60

    res = await client.get(f"/api/level-up/{session_id}")
    state = res.json()["session"]["state"]
    assert state["hp_roll"] == hp
    assert state["gold_roll"] is not None

    res = await client.post(f"/api/level-up/{session_id}/languages", json={"languages": ["Common", "Common"]})
    assert res.json()["result"] == ["Common"]

@pytest.mark.asyncio
async def test_talent_roll_route(client):
    session_id = (await start_level_up(client))["session"]["id"]
    res = await client.post(f"/api/level-up/{session_id}/roll-talent", json={})
    assert res.status_code == 200, res.text
    data = res.json()
    state = data["session"]["state"]
    assert state["rolled_talents"] or state["pending_choice"] or data["result"]["warning"]

    res = await client.post(f"/api/level-up/{session_id}/roll-boon", json={})
    assert res.status_code == 400

@pytest.mark.asyncio
async def test_sub_selection_routes_reject_when_closed(client):
    session_id = (await start_level_up(client))["session"]["id"]
    res = await client.post(f"/api/level-up/{session_id}/choice", json={"selection": 0})
    assert res.status_code == 400
    res = await client.post(f"/api/level-up/{session_id}/stats", json={"stats": ["str", "dex"]})
    assert res.status_code == 400
    res = await client.post(f"/api/level-up/{session_id}/stat-pool", json={"allocation": {"str": 2}})
    assert res.status_code == 400
    res = await client.post(f"/api/level-up/{session_id}/weapon-mastery", json={"choice": "Longsword"})
    assert res.status_code == 400
    res = await client.post(f"/api/level-up/{session_id}/armor-mastery", json={"choice": "Plate"})
    assert res.status_code == 400
    res = await client.post(f"/api/level-up/{session_id}/extra-spells", json={"spell_ids": []})
    assert res.status_code == 400
    res = await client.post(f"/api/level-up/{session_id}/spells", json={"spell_ids": ["mAg1cM1ss1le0001"]})
    assert res.status_code == 400

@pytest.mark.asyncio
async def test_finalize_incomplete_session_conflicts(client):
    session_id = (await start_level_up(client))["session"]["id"]
    res = await client.post(f"/api/level-up/{session_id}/finalize")
    assert res.status_code == 409
    assert res.json()["detail"] == "Missing talents"

@pytest.mark.asyncio
async def test_unknown_session(client):
    res = await client.get("/api/level-up/nope")
    assert res.status_code == 404
    res = await client.post("/api/level-up/nope/roll-hp")
    assert res.status_code == 404

@pytest.mark.asyncio
async def test_delete_and_list_sessions(client):
    session_id = (await start_level_up(client))["session"]["id"]
    res = await client.get("/api/actors/actor0000000001/level-ups")
    assert [s["id"] for s in res.json()["sessions"]] == [session_id]
    assert res.json()["audit_log"] == []

    res = await client.delete(f"/api/level-up/{session_id}")
    assert res.status_code == 200
    res = await client.get(f"/api/level-up/{session_id}")
    assert res.status_code == 404
