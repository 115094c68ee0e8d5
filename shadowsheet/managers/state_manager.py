import json
import uuid
from datetime import datetime, timezone
from typing import List, Optional
import aiosqlite

from ..config import settings
from ..models.advancement import LevelUpSession
from ..utils.logger import logger


async def init_db():
    async with aiosqlite.connect(settings.DB_PATH) as db:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS levelup_sessions (
                id TEXT PRIMARY KEY,
                actor_id TEXT,
                target_level INTEGER NOT NULL,
                phase TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP,
                state TEXT NOT NULL
            )
        """)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id TEXT PRIMARY KEY,
                actor_id TEXT NOT NULL,
                session_id TEXT REFERENCES levelup_sessions(id),
                level INTEGER NOT NULL,
                entry TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        await db.commit()
    logger.info("Database initialized")


# --- Level-up session CRUD ---

async def create_levelup_session(session: LevelUpSession) -> LevelUpSession:
    async with aiosqlite.connect(settings.DB_PATH) as db:
        await db.execute(
            "INSERT INTO levelup_sessions (id, actor_id, target_level, phase, updated_at, state) VALUES (?, ?, ?, ?, ?, ?)",
            (
                session.id,
                session.actor_id,
                session.target_level,
                session.phase.value,
                session.updated_at.isoformat(),
                session.model_dump_json(),
            ),
        )
        await db.commit()
    logger.info(f"Created level-up session: {session.id} (actor {session.actor_id} -> level {session.target_level})")
    return session


async def get_levelup_session(session_id: str) -> Optional[LevelUpSession]:
    async with aiosqlite.connect(settings.DB_PATH) as db:
        async with db.execute(
            "SELECT state FROM levelup_sessions WHERE id = ?", (session_id,)
        ) as cursor:
            row = await cursor.fetchone()
    if row:
        return LevelUpSession.model_validate_json(row[0])
    return None


async def save_levelup_session(session: LevelUpSession):
    session.updated_at = datetime.now(timezone.utc)
    async with aiosqlite.connect(settings.DB_PATH) as db:
        await db.execute(
            "UPDATE levelup_sessions SET state = ?, phase = ?, updated_at = ? WHERE id = ?",
            (session.model_dump_json(), session.phase.value, session.updated_at.isoformat(), session.id),
        )
        await db.commit()


async def delete_levelup_session(session_id: str):
    async with aiosqlite.connect(settings.DB_PATH) as db:
        await db.execute("DELETE FROM levelup_sessions WHERE id = ?", (session_id,))
        await db.commit()
    logger.info(f"Deleted level-up session: {session_id}")


async def list_actor_sessions(actor_id: str) -> List[dict]:
    async with aiosqlite.connect(settings.DB_PATH) as db:
        async with db.execute(
            "SELECT id, target_level, phase, created_at, updated_at FROM levelup_sessions WHERE actor_id = ? ORDER BY created_at DESC",
            (actor_id,),
        ) as cursor:
            rows = await cursor.fetchall()
    return [
        {
            "id": r[0],
            "target_level": r[1],
            "phase": r[2],
            "created_at": r[3],
            "updated_at": r[4],
        }
        for r in rows
    ]


# --- Audit log ---

async def record_audit_entry(actor_id: str, level: int, entry: dict, session_id: Optional[str] = None) -> str:
    entry_id = str(uuid.uuid4())
    async with aiosqlite.connect(settings.DB_PATH) as db:
        await db.execute(
            "INSERT INTO audit_log (id, actor_id, session_id, level, entry) VALUES (?, ?, ?, ?, ?)",
            (entry_id, actor_id, session_id, level, json.dumps(entry)),
        )
        await db.commit()
    return entry_id


async def get_audit_log(actor_id: str) -> List[dict]:
    async with aiosqlite.connect(settings.DB_PATH) as db:
        async with db.execute(
            "SELECT level, entry, session_id, created_at FROM audit_log WHERE actor_id = ? ORDER BY level ASC",
            (actor_id,),
        ) as cursor:
            rows = await cursor.fetchall()
    return [
        {"level": r[0], "entry": json.loads(r[1]), "session_id": r[2], "created_at": r[3]}
        for r in rows
    ]
