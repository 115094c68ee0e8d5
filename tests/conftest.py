import asyncio
import os
import tempfile

import pytest

# ─── Setup ────────────────────────────────────────────────────────────────────

_tmp_db = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_tmp_db.close()

os.environ["DB_PATH"] = _tmp_db.name
os.environ["FOUNDRY_URL"] = "http://foundry.test"
os.environ["FOUNDRY_API_KEY"] = "test-key"
os.environ["LOG_LEVEL"] = "WARNING"


class ScriptedRng:
    """Stands in for ``random``: hands out ``values`` in order, cycling when exhausted."""

    def __init__(self, *values):
        self.values = list(values)
        self.calls = 0

    def randint(self, a, b):
        value = self.values[self.calls % len(self.values)]
        self.calls += 1
        return max(a, min(b, value))


@pytest.fixture
def scripted():
    return ScriptedRng


@pytest.fixture(scope="session")
def store():
    from shadowsheet.services.document_store import DocumentStore
    s = DocumentStore()
    asyncio.run(s.initialize())
    return s


@pytest.fixture
def make_actor():
    from shadowsheet.models.actor import Actor

    def _make(level=0, items=(), con=10, xp=0, **kwargs):
        data = {
            "_id": kwargs.pop("actor_id", "actor0000000001"),
            "name": kwargs.pop("name", "Brannoc"),
            "items": [{"name": n, "type": "Talent"} for n in items],
            "system": {
                "level": {"value": level, "xp": xp},
                "abilities": {
                    "str": {"base": 12}, "dex": {"base": 10}, "con": {"base": con},
                    "int": {"base": 10}, "wis": {"base": 10}, "cha": {"base": 14},
                },
                "attributes": {"hp": kwargs.pop("hp", {"base": 0, "value": 0, "max": 0, "bonus": 0})},
                **kwargs,
            },
        }
        return Actor.from_foundry(data)

    return _make
