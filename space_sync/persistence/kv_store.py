"""
Persistence collaborator — durable key-value storage for the Assignment Store.

Behavioral Contract:
- Plain get / set / delete by key; values are JSON documents.
- The Assignment Store never calls this directly. `StorePersistence`
  subscribes to store events and writes a fresh snapshot after each one.
- Restoring runs the Entity load-time migration, so snapshots written in
  the single-list layout come back with normalized list memberships.
"""

import json
import logging
import sqlite3
from typing import Any, Callable, Dict, List, Optional

from space_sync.store.assignment_store import AssignmentStore, StoreEvent

logger = logging.getLogger(__name__)

STORE_KEYS = ("entities", "lists", "active_list_id", "total_spaces")


class SQLiteKeyValueStore:
    """
    Key-value store on a single SQLite table.
    Use ":memory:" for an ephemeral store.
    """

    def __init__(self, db_path: str = ":memory:", namespace: str = "space_sync"):
        self.db_path = db_path
        self.namespace = namespace
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value_json TEXT NOT NULL,
                updated_at TEXT NOT NULL DEFAULT (datetime('now')),
                PRIMARY KEY (namespace, key)
            )
        """)
        self._conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        row = self._conn.execute(
            "SELECT value_json FROM kv WHERE namespace = ? AND key = ?",
            (self.namespace, key),
        ).fetchone()
        return json.loads(row["value_json"]) if row else default

    def set(self, key: str, value: Any) -> None:
        self._conn.execute(
            """
            INSERT INTO kv (namespace, key, value_json, updated_at)
            VALUES (?, ?, ?, datetime('now'))
            ON CONFLICT(namespace, key) DO UPDATE SET
                value_json = excluded.value_json,
                updated_at = excluded.updated_at
            """,
            (self.namespace, key, json.dumps(value, default=str)),
        )
        self._conn.commit()

    def set_many(self, items: Dict[str, Any]) -> None:
        """Write several keys in one transaction; nothing is written on failure."""
        rows = [(self.namespace, k, json.dumps(v, default=str)) for k, v in items.items()]
        with self._conn:
            self._conn.executemany(
                """
                INSERT INTO kv (namespace, key, value_json, updated_at)
                VALUES (?, ?, ?, datetime('now'))
                ON CONFLICT(namespace, key) DO UPDATE SET
                    value_json = excluded.value_json,
                    updated_at = excluded.updated_at
                """,
                rows,
            )

    def delete(self, key: str) -> bool:
        cursor = self._conn.execute(
            "DELETE FROM kv WHERE namespace = ? AND key = ?",
            (self.namespace, key),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def keys(self) -> List[str]:
        rows = self._conn.execute(
            "SELECT key FROM kv WHERE namespace = ? ORDER BY key",
            (self.namespace,),
        ).fetchall()
        return [r["key"] for r in rows]

    def close(self) -> None:
        self._conn.close()


class StorePersistence:
    """Mirrors an AssignmentStore into a key-value store."""

    def __init__(self, store: AssignmentStore, kv: SQLiteKeyValueStore):
        self.store = store
        self.kv = kv
        self._unsubscribe: Optional[Callable[[], None]] = None

    def restore(self) -> bool:
        """Load the last snapshot into the store. Returns False if none exists."""
        if self.kv.get("entities") is None and self.kv.get("lists") is None:
            return False
        snapshot = {key: self.kv.get(key) for key in STORE_KEYS}
        snapshot = {k: v for k, v in snapshot.items() if v is not None}
        self.store.restore(snapshot)
        return True

    def attach(self) -> None:
        """Start writing a snapshot after every store mutation."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def save(self) -> None:
        snapshot = self.store.snapshot()
        self.kv.set_many({key: snapshot[key] for key in STORE_KEYS})

    def _on_event(self, event: StoreEvent) -> None:
        self.save()
        logger.debug("Store snapshot written after kind=%s", event.kind)
