"""Persistence for the four ledger collections.

The ledger is stored as four independent keys, each holding a JSON document.
``LedgerStorage`` owns the encoding and corruption tracking; the backends are
plain string key-value stores:

* ``SQLiteBackend`` – a ``kv`` table in a local SQLite file (default)
* ``JsonFileBackend`` – a single JSON object file, written atomically
* ``MemoryBackend`` – a dict, for tests and throwaway sessions
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import sqlite3
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from .config import DB_PATH, ensure_data_directories
from .errors import StoreFileCorruptError
from .models import DEFAULT_SETTINGS, SCHEMA_VERSION, starter_categories

logger = logging.getLogger(__name__)

STORAGE_KEYS: Dict[str, str] = {
    'transactions': 'BW_V1_TRANSACTIONS',
    'categories': 'BW_V1_CATEGORIES',
    'recurring': 'BW_V1_RECURRING',
    'settings': 'BW_V1_SETTINGS',
}
COLLECTIONS = ('settings', 'categories', 'transactions', 'recurring')


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class MemoryBackend:
    """In-process key-value store."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def remove(self, key: str) -> None:
        self.values.pop(key, None)


class SQLiteBackend:
    """Key-value table in a SQLite database file."""

    SCHEMA_SQL = """
    PRAGMA journal_mode=WAL;
    PRAGMA synchronous=NORMAL;

    CREATE TABLE IF NOT EXISTS kv (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    );
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        if path is None:
            ensure_data_directories()
            path = DB_PATH
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            conn.executescript(self.SCHEMA_SQL)
            conn.commit()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.path))
        try:
            yield conn
        finally:
            conn.close()

    def get(self, key: str) -> Optional[str]:
        with self.connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )
            conn.commit()

    def remove(self, key: str) -> None:
        with self.connect() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()


class JsonFileBackend:
    """All keys in one JSON object file.

    Values stay as raw strings inside the file so a damaged entry is detected
    per key by ``LedgerStorage``, exactly as with the other backends.  A file
    that cannot be decoded at all is copied to ``<name>.corrupt`` before
    anything overwrites it; reads then raise ``StoreFileCorruptError``.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.backup_path = self.path.with_name(self.path.name + '.corrupt')

    def _keep_damaged_copy(self) -> Path:
        shutil.copyfile(self.path, self.backup_path)
        logger.warning("Store file %s is damaged; kept a copy at %s", self.path, self.backup_path)
        return self.backup_path

    def _load(self, strict: bool = True) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open('r', encoding='utf-8') as handle:
                data = json.load(handle)
        except (json.JSONDecodeError, UnicodeDecodeError):
            data = None
        if not isinstance(data, dict):
            backup = self._keep_damaged_copy()
            if strict:
                raise StoreFileCorruptError(self.path, backup)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write(self, values: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=self.path.name + '-', suffix='.tmp', dir=str(self.path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                json.dump(values, handle, indent=2, sort_keys=True)
            os.replace(temp_name, self.path)
        except OSError:
            if os.path.exists(temp_name):
                os.unlink(temp_name)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        values = self._load(strict=False)
        values[key] = value
        self._write(values)

    def remove(self, key: str) -> None:
        values = self._load(strict=False)
        if values.pop(key, None) is not None:
            self._write(values)


# ---------------------------------------------------------------------------
# Ledger storage
# ---------------------------------------------------------------------------


class LedgerStorage:
    """Reads and writes the four collections, tracking corrupted keys."""

    def __init__(self, backend=None):
        self.backend = backend if backend is not None else SQLiteBackend()
        # Ordered set of logical collection names that failed to decode.
        self._corrupted: Dict[str, None] = {}

    def read(self, name: str, fallback: Any) -> Any:
        try:
            raw = self.backend.get(STORAGE_KEYS[name])
        except StoreFileCorruptError:
            # The whole store is unreadable, so every collection is lost.
            for collection in COLLECTIONS:
                self._corrupted[collection] = None
            return fallback
        if raw is None:
            return fallback
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            logger.warning("Stored %s could not be decoded (%s); using defaults", name, exc)
            self._corrupted[name] = None
            return fallback

    def write(self, name: str, value: Any) -> None:
        self.backend.set(STORAGE_KEYS[name], json.dumps(value))
        logger.debug("Persisted %s", name)

    def ensure_defaults(self) -> None:
        """Write defaults for any key that is missing, damaged or outdated."""
        stored_settings = self.read('settings', None)
        if not isinstance(stored_settings, dict) or stored_settings.get('schema_version') != SCHEMA_VERSION:
            self.write('settings', dict(DEFAULT_SETTINGS, rule=dict(DEFAULT_SETTINGS['rule'])))

        if not isinstance(self.read('categories', None), list):
            self.write('categories', [c.to_dict() for c in starter_categories()])

        for name in ('transactions', 'recurring'):
            if not isinstance(self.read(name, None), list):
                self.write(name, [])

    def init(self) -> None:
        self._corrupted.clear()
        self.ensure_defaults()

    def get_snapshot(self) -> Dict[str, Any]:
        """Raw (not yet normalized) contents of the four collections."""
        return {
            'settings': self.read('settings', dict(DEFAULT_SETTINGS)),
            'categories': self.read('categories', []),
            'transactions': self.read('transactions', []),
            'recurring': self.read('recurring', []),
        }

    def save_all(self, snapshot: Dict[str, Any]) -> None:
        for name in COLLECTIONS:
            self.write(name, snapshot[name])

    @property
    def has_corruption(self) -> bool:
        return bool(self._corrupted)

    @property
    def corrupted_keys(self) -> List[str]:
        return list(self._corrupted)

    def reset(self) -> Dict[str, Any]:
        for name in COLLECTIONS:
            self.backend.remove(STORAGE_KEYS[name])
        self.init()
        return self.get_snapshot()
