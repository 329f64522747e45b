from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

from .settings import Settings, settings as default_settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


_db_path: str | None = None


def configure(cfg: Settings) -> None:
    """Point the journal at the sqlite file of the given settings."""
    global _db_path
    _db_path = cfg.journal_path


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (a bind-mounted path that did not
    exist gets created as a directory by Docker), the DB file goes inside it.
    """

    p = os.path.abspath(_db_path or default_settings.journal_path)

    if os.path.isdir(p):
        p = os.path.join(p, "gsl.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              server_id TEXT,
              game_type TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_events_server_id ON events(server_id);
            """
        )


def log_event(level: str, message: str, server_id: str | None = None, game_type: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, server_id, game_type, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), server_id, game_type, message),
        )


def latest_events(limit: int = 100, server_id: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if server_id:
            rows = conn.execute(
                "SELECT * FROM events WHERE server_id=? ORDER BY id DESC LIMIT ?",
                (server_id, limit),
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
