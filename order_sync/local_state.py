from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from .database import ConnectionFactory, get_connection
from .schemas import TrackedOrderRecord

_TRACKED_SLOT = "last"


class LocalStateRepository:
    """Client-local convenience cache: the last tracked order and per-view sound flags."""

    def __init__(self, connection_factory: ConnectionFactory = get_connection):
        self._connection_factory = connection_factory

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connection_factory()
        try:
            yield conn
        finally:
            conn.close()

    def save_tracked_order(self, record: TrackedOrderRecord) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO tracked_order (slot, order_id, guest_token, order_number, saved_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(slot) DO UPDATE SET
                    order_id = excluded.order_id,
                    guest_token = excluded.guest_token,
                    order_number = excluded.order_number,
                    saved_at = excluded.saved_at;
                """,
                (_TRACKED_SLOT, record.order_id, record.guest_token, record.order_number, now),
            )
            conn.commit()

    def load_tracked_order(self) -> Optional[TrackedOrderRecord]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT order_id, guest_token, order_number FROM tracked_order WHERE slot = ?;",
                (_TRACKED_SLOT,),
            ).fetchone()
        if row is None or not row["order_id"] or not row["guest_token"]:
            return None
        return TrackedOrderRecord(
            order_id=row["order_id"],
            guest_token=row["guest_token"],
            order_number=row["order_number"],
        )

    def clear_tracked_order(self) -> None:
        with self._connection() as conn:
            conn.execute("DELETE FROM tracked_order WHERE slot = ?;", (_TRACKED_SLOT,))
            conn.commit()

    def get_sound_enabled(self, view: str) -> bool:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT sound_enabled FROM preferences WHERE view = ?;", (view,)
            ).fetchone()
        return bool(row["sound_enabled"]) if row is not None else False

    def set_sound_enabled(self, view: str, enabled: bool) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO preferences (view, sound_enabled, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(view) DO UPDATE SET
                    sound_enabled = excluded.sound_enabled,
                    updated_at = excluded.updated_at;
                """,
                (view, 1 if enabled else 0, now),
            )
            conn.commit()
