from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DB_DIR = Path.home() / ".local" / "share" / "coursework-bridge"
DB_PATH = DB_DIR / "history.db"


def _iso(ts: datetime | None = None) -> str:
    value = ts or datetime.now(UTC)
    return value.isoformat()


def init_db() -> Path:
    DB_DIR.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(DB_PATH) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ts TEXT NOT NULL,
                command TEXT NOT NULL,
                ok INTEGER NOT NULL DEFAULT 1,
                payload TEXT
            )
            """
        )
    return DB_PATH


def _connect() -> sqlite3.Connection:
    init_db()
    return sqlite3.connect(DB_PATH)


def log_action(command: str, payload: str = "", ok: bool = True) -> None:
    """Record a command or tool call. Storage failures are logged, never raised."""
    try:
        with _connect() as conn:
            conn.execute(
                "INSERT INTO history (ts, command, ok, payload) VALUES (?, ?, ?, ?)",
                (_iso(), command, 1 if ok else 0, payload),
            )
            conn.commit()
    except (sqlite3.Error, OSError) as exc:
        logger.warning("could not record history for %s: %s", command, exc)


def recent_actions(limit: int = 20) -> list[dict[str, Any]]:
    with _connect() as conn:
        rows = conn.execute(
            "SELECT id, ts, command, ok, payload FROM history ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()
    return [
        {"id": r[0], "ts": r[1], "command": r[2], "ok": bool(r[3]), "payload": r[4]}
        for r in rows
    ]
