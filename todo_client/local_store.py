"""Durable key/value storage for the client (the browser localStorage analogue)."""

import sqlite3
import json
import os
import logging
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

# Keys shared by the store, the gateway and the controller.
STATE_KEY = 'todo_store_state'
QUEUE_KEY = 'todo_queue'
TOKEN_KEY = 'todo_token'


class StorageQuotaExceeded(Exception):
    """Raised when a write would push the stored total past ``quota_bytes``."""


class LocalStore:
    """SQLite-backed string store.

    ``quota_bytes`` caps the summed length of keys and values, mirroring the
    browser's storage quota. None means unlimited.
    """

    def __init__(self, db_path: Optional[str] = None, quota_bytes: Optional[int] = None):
        if db_path is None:
            db_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'local_data.db')
        self.db_path = db_path
        self.quota_bytes = quota_bytes
        self._init_db()

    def _init_db(self) -> None:
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            ''')
            conn.commit()

    def get_item(self, key: str) -> Optional[str]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute('SELECT value FROM kv WHERE key = ?', (key,)).fetchone()
            return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        value = str(value)
        with sqlite3.connect(self.db_path) as conn:
            if self.quota_bytes is not None:
                row = conn.execute(
                    'SELECT COALESCE(SUM(LENGTH(key) + LENGTH(value)), 0) FROM kv WHERE key != ?',
                    (key,),
                ).fetchone()
                total = int(row[0]) + len(key) + len(value)
                if total > self.quota_bytes:
                    raise StorageQuotaExceeded(
                        f'writing {key!r} needs {total} bytes; quota is {self.quota_bytes}'
                    )
            conn.execute('INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)', (key, value))
            conn.commit()

    def remove_item(self, key: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute('DELETE FROM kv WHERE key = ?', (key,))
            conn.commit()

    def keys(self) -> List[str]:
        with sqlite3.connect(self.db_path) as conn:
            return [row[0] for row in conn.execute('SELECT key FROM kv ORDER BY key').fetchall()]

    def clear_all(self) -> None:
        """Clear all local data."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute('DELETE FROM kv')
            conn.commit()

    def get_json(self, key: str, default: Any = None) -> Any:
        """Decode a JSON value; a corrupt entry reads as ``default``."""
        raw = self.get_item(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning('discarding corrupt JSON under key %r', key)
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value))
