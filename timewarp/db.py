from __future__ import annotations

from datetime import datetime, timezone
import json
import os
from pathlib import Path
import sqlite3
from typing import Any, Mapping

UTC_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def _to_utc_text(value: Any) -> str | None:
    if value in (None, ""):
        return None
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(str(value))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(UTC_FORMAT)


def _from_utc_text(text: str | None) -> str | None:
    if not text:
        return None
    return datetime.strptime(text, UTC_FORMAT).replace(tzinfo=timezone.utc).isoformat()


class TimewarpDB:
    """SQLite snapshot of the persisted store layout.

    Only tasks, closed focus sessions, productivity stats and achievements are
    written. The active session and countdown state never reach disk.
    """

    def __init__(self, db_path: Path, journal_mode: str | None = None) -> None:
        self.db_path = Path(db_path)
        raw_mode = (journal_mode or os.getenv("TIMEWARP_JOURNAL_MODE") or "MEMORY").strip()
        self.journal_mode = raw_mode.upper() if raw_mode else "MEMORY"
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        self._apply_journal_mode(conn)
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    def _apply_journal_mode(self, conn: sqlite3.Connection) -> None:
        try:
            conn.execute(f"PRAGMA journal_mode={self.journal_mode}")
        except sqlite3.OperationalError:
            conn.execute("PRAGMA journal_mode=MEMORY")

    def init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    position INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL CHECK (
                        status IN ('pending', 'in-progress', 'completed', 'running-away')
                    ),
                    importance INTEGER NOT NULL CHECK (importance BETWEEN 1 AND 5),
                    created_at TEXT NOT NULL,
                    deadline TEXT,
                    procrastination_level INTEGER NOT NULL CHECK (
                        procrastination_level BETWEEN 0 AND 100
                    ),
                    time_spent REAL NOT NULL CHECK (time_spent >= 0),
                    completed_at TEXT,
                    last_worked_on TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS focus_sessions (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    duration REAL NOT NULL CHECK (duration >= 0),
                    distortion_level REAL NOT NULL CHECK (distortion_level BETWEEN 0 AND 100)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_focus_sessions_start_time
                ON focus_sessions(start_time)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS achievements (
                    id TEXT PRIMARY KEY,
                    is_unlocked INTEGER NOT NULL CHECK (is_unlocked IN (0, 1)),
                    unlocked_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS stats (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def save_state(self, state: Mapping[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM tasks")
            conn.execute("DELETE FROM focus_sessions")
            conn.execute("DELETE FROM achievements")
            conn.execute("DELETE FROM stats")

            conn.executemany(
                """
                INSERT INTO tasks (
                    id, position, title, description, status, importance, created_at,
                    deadline, procrastination_level, time_spent, completed_at, last_worked_on
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        item["id"],
                        position,
                        item["title"],
                        item.get("description", ""),
                        item["status"],
                        int(item["importance"]),
                        _to_utc_text(item["created_at"]),
                        _to_utc_text(item.get("deadline")),
                        int(item.get("procrastination_level", 0)),
                        float(item.get("time_spent", 0.0)),
                        _to_utc_text(item.get("completed_at")),
                        _to_utc_text(item.get("last_worked_on")),
                    )
                    for position, item in enumerate(state.get("tasks", []))
                ],
            )
            conn.executemany(
                """
                INSERT INTO focus_sessions (id, task_id, start_time, end_time, duration, distortion_level)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        item["id"],
                        item["task_id"],
                        _to_utc_text(item["start_time"]),
                        _to_utc_text(item["end_time"]),
                        max(0.0, float(item.get("duration", 0.0))),
                        float(item.get("distortion_level", 0.0)),
                    )
                    for item in state.get("focus_sessions", [])
                    if item.get("end_time")
                ],
            )
            conn.executemany(
                "INSERT INTO achievements (id, is_unlocked, unlocked_at) VALUES (?, ?, ?)",
                [
                    (
                        item["id"],
                        1 if item.get("is_unlocked") else 0,
                        _to_utc_text(item.get("unlocked_at")),
                    )
                    for item in state.get("achievements", [])
                ],
            )
            conn.executemany(
                "INSERT INTO stats (key, value) VALUES (?, ?)",
                [
                    (key, json.dumps(value))
                    for key, value in (state.get("productivity_stats") or {}).items()
                ],
            )
            conn.commit()

    def load_state(self) -> dict[str, Any]:
        with self._connect() as conn:
            task_rows = conn.execute("SELECT * FROM tasks ORDER BY position ASC").fetchall()
            session_rows = conn.execute(
                "SELECT * FROM focus_sessions ORDER BY start_time ASC"
            ).fetchall()
            achievement_rows = conn.execute("SELECT * FROM achievements").fetchall()
            stat_rows = conn.execute("SELECT key, value FROM stats").fetchall()

        return {
            "tasks": [
                {
                    "id": row["id"],
                    "title": row["title"],
                    "description": row["description"] or "",
                    "status": row["status"],
                    "importance": int(row["importance"]),
                    "created_at": _from_utc_text(row["created_at"]),
                    "deadline": _from_utc_text(row["deadline"]),
                    "procrastination_level": int(row["procrastination_level"]),
                    "time_spent": float(row["time_spent"]),
                    "completed_at": _from_utc_text(row["completed_at"]),
                    "last_worked_on": _from_utc_text(row["last_worked_on"]),
                }
                for row in task_rows
            ],
            "focus_sessions": [
                {
                    "id": row["id"],
                    "task_id": row["task_id"],
                    "start_time": _from_utc_text(row["start_time"]),
                    "end_time": _from_utc_text(row["end_time"]),
                    "duration": float(row["duration"]),
                    "distortion_level": float(row["distortion_level"]),
                }
                for row in session_rows
            ],
            "productivity_stats": {row["key"]: json.loads(row["value"]) for row in stat_rows},
            "achievements": [
                {
                    "id": row["id"],
                    "is_unlocked": bool(row["is_unlocked"]),
                    "unlocked_at": _from_utc_text(row["unlocked_at"]),
                }
                for row in achievement_rows
            ],
        }


def default_db_path() -> Path:
    override = os.getenv("TIMEWARP_DB", "").strip()
    if override:
        return Path(override)
    return Path(__file__).resolve().parent / "data" / "timewarp.sqlite"
