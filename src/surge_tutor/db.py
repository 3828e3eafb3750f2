"""Database initialization and key/value document storage."""
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

DEFAULT_DB_PATH = str(Path.home() / ".surge_tutor" / "tutor.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS local_storage (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT
);
"""


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Return a SQLite connection with row factory and foreign keys enabled."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database, creating all tables if they don't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()


def get_item(db_path: str, key: str) -> Optional[str]:
    conn = get_connection(db_path)
    row = conn.execute("SELECT value FROM local_storage WHERE key = ?", (key,)).fetchone()
    conn.close()
    return row["value"] if row else None


def set_item(db_path: str, key: str, value: str) -> None:
    conn = get_connection(db_path)
    conn.execute(
        """INSERT INTO local_storage (key, value, updated_at) VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
        (key, value, datetime.now().isoformat()),
    )
    conn.commit()
    conn.close()


def remove_item(db_path: str, key: str) -> None:
    conn = get_connection(db_path)
    conn.execute("DELETE FROM local_storage WHERE key = ?", (key,))
    conn.commit()
    conn.close()


def list_keys(db_path: str, prefix: str = "") -> list[str]:
    conn = get_connection(db_path)
    rows = conn.execute(
        "SELECT key FROM local_storage WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
        (prefix.replace("%", r"\%").replace("_", r"\_") + "%",),
    ).fetchall()
    conn.close()
    return [r["key"] for r in rows]


def get_json(db_path: str, key: str, default: Any = None) -> Any:
    """Decode a stored JSON value; missing or corrupt values give ``default``."""
    raw = get_item(db_path, key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default


def set_json(db_path: str, key: str, value: Any) -> None:
    set_item(db_path, key, json.dumps(value, ensure_ascii=False))
