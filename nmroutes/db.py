from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    When the service runs in a container with a bind-mounted path that did not
    exist on the host, the runtime creates a *directory* there. If the
    configured path is a directory, the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "nmroutes.db")

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
              destination TEXT,
              nexthop TEXT,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              started_at TEXT NOT NULL,
              finished_at TEXT NOT NULL,
              status TEXT NOT NULL, -- ok|partial|aborted
              added INTEGER NOT NULL DEFAULT 0,
              removed INTEGER NOT NULL DEFAULT 0,
              failures INTEGER NOT NULL DEFAULT 0,
              message TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, destination: str | None = None, nexthop: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, destination, nexthop, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), destination, nexthop, message),
        )


@dataclass(frozen=True)
class RunRow:
    id: int
    started_at: str
    finished_at: str
    status: str
    added: int
    removed: int
    failures: int
    message: str | None


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    out: list[Any] = []
    for r in rows:
        out.append(cls(**dict(r)))
    return out


def record_run(
    started_at: str,
    status: str,
    added: int = 0,
    removed: int = 0,
    failures: int = 0,
    message: str | None = None,
) -> RunRow:
    with connect() as conn:
        cur = conn.execute(
            """
            INSERT INTO runs (started_at, finished_at, status, added, removed, failures, message)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (started_at, utc_now(), status, added, removed, failures, message),
        )
        row = conn.execute("SELECT * FROM runs WHERE id=?", (cur.lastrowid,)).fetchone()
        return RunRow(**dict(row))


def latest_runs(limit: int = 20) -> list[RunRow]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM runs ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return _rows_to_dataclass(rows, RunRow)


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
