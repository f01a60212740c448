from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from typing import Callable, Optional

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS tracked_order (
    slot TEXT PRIMARY KEY,
    order_id TEXT NOT NULL,
    guest_token TEXT NOT NULL,
    order_number INTEGER,
    saved_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS preferences (
    view TEXT PRIMARY KEY,
    sound_enabled INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL
);
"""

ConnectionFactory = Callable[[], sqlite3.Connection]

LOCAL_STATE_PATH = os.environ.get("LOCAL_STATE_PATH", "data/order_sync.db")


def connection_factory(path: Optional[str] = None) -> ConnectionFactory:
    db_path = path or LOCAL_STATE_PATH

    def connect() -> sqlite3.Connection:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path)
        conn.row_factory = sqlite3.Row
        return conn

    return connect


def get_connection() -> sqlite3.Connection:
    return connection_factory()()


def init_db(factory: ConnectionFactory = get_connection) -> None:
    conn = factory()
    try:
        apply_schema(conn)
    finally:
        conn.close()


def apply_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    conn.commit()
