"""SQLite database management for execution history."""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

_db: aiosqlite.Connection | None = None

STATUSES = ("completed", "failed", "timeout")


async def init_db(db_path: str) -> None:
    """Initialize database and create tables."""
    global _db
    resolved = Path(db_path).expanduser().resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)

    _db = await aiosqlite.connect(str(resolved))
    _db.row_factory = aiosqlite.Row
    await _db.execute("PRAGMA journal_mode = WAL")

    await _db.execute("""
        CREATE TABLE IF NOT EXISTS executions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            execution_id TEXT,
            session_id TEXT,
            command TEXT NOT NULL,
            exit_code INTEGER,
            duration_ms INTEGER,
            output_length INTEGER DEFAULT 0,
            error TEXT DEFAULT '',
            status TEXT DEFAULT 'completed'
                CHECK(status IN ('completed', 'failed', 'timeout')),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)
    await _db.execute("CREATE INDEX IF NOT EXISTS idx_executions_created_at ON executions(created_at)")
    await _db.execute("CREATE INDEX IF NOT EXISTS idx_executions_session ON executions(session_id)")
    await _db.commit()
    logger.info("Database initialized: %s", resolved)


def is_open() -> bool:
    return _db is not None


async def get_db() -> aiosqlite.Connection:
    """Get the database connection."""
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _db


async def close_db() -> None:
    """Close the database connection."""
    global _db
    if _db is not None:
        await _db.close()
        _db = None
        logger.info("Database closed")


async def save_execution(
    command: str,
    status: str,
    execution_id: str | None = None,
    session_id: str | None = None,
    exit_code: int | None = None,
    duration_ms: int | None = None,
    output_length: int = 0,
    error: str = "",
) -> None:
    """Save an execution to history. Failures are logged, never raised."""
    try:
        db = await get_db()
        await db.execute(
            """INSERT INTO executions
               (execution_id, session_id, command, exit_code, duration_ms, output_length, error, status)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (execution_id, session_id, command, exit_code, duration_ms, output_length, error, status),
        )
        await db.commit()
    except Exception:
        logger.exception("Failed to save execution history")


async def get_recent_executions(limit: int = 10, session_id: str | None = None) -> list[dict]:
    """Get recent execution history, newest first."""
    db = await get_db()
    query = (
        "SELECT execution_id, session_id, command, exit_code, duration_ms, output_length, "
        "error, status, created_at FROM executions"
    )
    params: tuple = ()
    if session_id is not None:
        query += " WHERE session_id = ?"
        params = (session_id,)
    cursor = await db.execute(query + " ORDER BY id DESC LIMIT ?", (*params, limit))
    rows = await cursor.fetchall()
    return [dict(row) for row in rows]
