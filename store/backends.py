"""Interchangeable key/value storage backends behind one async interface.

Every backend namespaces keys by store name, so key ``chunk-0`` of store
``LoanNumbers`` is persisted as ``LoanNumbers-chunk-0``. Values are JSON
compatible objects; each backend stores a serialized copy so callers never
share a reference with the store.
"""

import asyncio
import json
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, Optional

from common.constants import META_KEY
from common.exceptions import StorageError
from common.logging_config import get_logger

logger = get_logger(__name__)


def make_storage_key(store: str, key: str) -> str:
    return f"{store}-{key}"


class StorageBackend(ABC):
    """Capability interface shared by all storage primitives."""

    name = "abstract"

    @abstractmethod
    async def put(self, store: str, key: str, value: Any) -> None:
        """
        Persist value under store/key, replacing any previous value.

        Raises:
            StorageError: If the write fails
        """

    @abstractmethod
    async def get(self, store: str, key: str) -> Optional[Any]:
        """
        Read the value under store/key.

        Returns:
            Stored value, or None if absent. A miss never raises.
        """

    async def put_many(self, store: str, items: Dict[str, Any]) -> None:
        """
        Persist several keys of one store.

        Backends that can write a batch in one operation override this.

        Raises:
            StorageError: If a write fails; earlier keys may already be stored
        """
        for key, value in items.items():
            await self.put(store, key, value)

    @abstractmethod
    async def delete(self, store: str, key: str) -> bool:
        """Remove one key. Returns True if it existed."""

    @abstractmethod
    async def clear(self, store: str) -> None:
        """Remove every key of a store."""

    async def last_updated(self, store: str) -> Optional[float]:
        """
        Timestamp of the last completed dataset write, or None.
        """
        meta = await self.get(store, META_KEY)
        if not isinstance(meta, dict):
            return None
        value = meta.get('lastUpdated')
        return float(value) if value is not None else None

    async def close(self) -> None:
        """Release backend resources."""


class MemoryBackend(StorageBackend):
    """
    Session-scoped table held in process memory.

    Several contexts in one process share a store by sharing the backend
    instance. Nothing survives the process.
    """

    name = "memory"

    def __init__(self):
        self._tables: Dict[str, Dict[str, str]] = {}

    async def put(self, store: str, key: str, value: Any) -> None:
        try:
            serialized = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Cannot serialize {store}/{key}: {e}") from e
        self._tables.setdefault(store, {})[make_storage_key(store, key)] = serialized

    async def get(self, store: str, key: str) -> Optional[Any]:
        raw = self._tables.get(store, {}).get(make_storage_key(store, key))
        return json.loads(raw) if raw is not None else None

    async def delete(self, store: str, key: str) -> bool:
        return self._tables.get(store, {}).pop(make_storage_key(store, key), None) is not None

    async def clear(self, store: str) -> None:
        self._tables.pop(store, None)

    def keys(self, store: str) -> list:
        return sorted(self._tables.get(store, {}))


class JsonFileBackend(StorageBackend):
    """
    One JSON document per store inside a directory.

    Writes go to a temporary file that is then moved over the original, so a
    reader never sees a half written document.
    """

    name = "json"

    def __init__(self, directory: str):
        self._directory = Path(directory).expanduser()
        self._file_lock = threading.Lock()

    def _store_path(self, store: str) -> Path:
        return self._directory / f"{store}.json"

    def _load(self, store: str) -> Dict[str, Any]:
        path = self._store_path(store)
        if not path.exists():
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Store file {path} is corrupted ({e}), treating as empty")
            return {}
        except OSError as e:
            raise StorageError(f"Cannot read store file {path}: {e}") from e
        return data if isinstance(data, dict) else {}

    def _save(self, store: str, data: Dict[str, Any]) -> None:
        path = self._store_path(store)
        tmp_path = path.with_suffix('.json.tmp')
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Cannot write store file {path}: {e}") from e

    def _put_sync(self, store: str, key: str, value: Any) -> None:
        self._put_many_sync(store, {key: value})

    def _put_many_sync(self, store: str, items: Dict[str, Any]) -> None:
        with self._file_lock:
            data = self._load(store)
            for key, value in items.items():
                data[make_storage_key(store, key)] = value
            self._save(store, data)

    def _get_sync(self, store: str, key: str) -> Optional[Any]:
        with self._file_lock:
            return self._load(store).get(make_storage_key(store, key))

    def _delete_sync(self, store: str, key: str) -> bool:
        with self._file_lock:
            data = self._load(store)
            existed = data.pop(make_storage_key(store, key), None) is not None
            if existed:
                self._save(store, data)
            return existed

    def _clear_sync(self, store: str) -> None:
        with self._file_lock:
            path = self._store_path(store)
            try:
                if path.exists():
                    path.unlink()
            except OSError as e:
                raise StorageError(f"Cannot clear store file {path}: {e}") from e

    async def put(self, store: str, key: str, value: Any) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._put_sync, store, key, value)

    async def put_many(self, store: str, items: Dict[str, Any]) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._put_many_sync, store, items)

    async def get(self, store: str, key: str) -> Optional[Any]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._get_sync, store, key)
        except StorageError as e:
            logger.warning(f"Read of {store}/{key} failed: {e}")
            return None

    async def delete(self, store: str, key: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._delete_sync, store, key)

    async def clear(self, store: str) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._clear_sync, store)


class SqliteBackend(StorageBackend):
    """
    Key/value table in a SQLite database file.

    This is the store shared by contexts running in separate processes of the
    same profile. It has no locking beyond SQLite's own; dataset writes rely on
    the meta record's in-progress flag.
    """

    name = "sqlite"

    def __init__(self, database_path: str):
        self._database_path = Path(database_path).expanduser()
        self._initialized = False
        self._init_lock = threading.Lock()

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.
        """
        conn = sqlite3.connect(str(self._database_path), timeout=30)
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._init_lock:
            if self._initialized:
                return
            self._database_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connection() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS records (
                        store TEXT NOT NULL,
                        key TEXT NOT NULL,
                        value TEXT NOT NULL,
                        PRIMARY KEY(store, key)
                    )
                """)
                conn.commit()
            self._initialized = True

    def _put_sync(self, store: str, key: str, value: Any) -> None:
        self._put_many_sync(store, {key: value})

    def _put_many_sync(self, store: str, items: Dict[str, Any]) -> None:
        try:
            rows = [
                (store, make_storage_key(store, key), json.dumps(value))
                for key, value in items.items()
            ]
            self._ensure_schema()
            with self._connection() as conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO records (store, key, value) VALUES (?, ?, ?)",
                    rows
                )
                conn.commit()
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            raise StorageError(f"Cannot write {len(items)} keys to {store}: {e}") from e

    def _get_sync(self, store: str, key: str) -> Optional[Any]:
        self._ensure_schema()
        with self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM records WHERE store = ? AND key = ?",
                (store, make_storage_key(store, key))
            ).fetchone()
        return json.loads(row[0]) if row else None

    def _delete_sync(self, store: str, key: str) -> bool:
        try:
            self._ensure_schema()
            with self._connection() as conn:
                cursor = conn.execute(
                    "DELETE FROM records WHERE store = ? AND key = ?",
                    (store, make_storage_key(store, key))
                )
                conn.commit()
                return cursor.rowcount > 0
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot delete {store}/{key}: {e}") from e

    def _clear_sync(self, store: str) -> None:
        try:
            self._ensure_schema()
            with self._connection() as conn:
                conn.execute("DELETE FROM records WHERE store = ?", (store,))
                conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot clear store {store}: {e}") from e

    async def put(self, store: str, key: str, value: Any) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._put_sync, store, key, value)

    async def put_many(self, store: str, items: Dict[str, Any]) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._put_many_sync, store, items)

    async def get(self, store: str, key: str) -> Optional[Any]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._get_sync, store, key)
        except (sqlite3.Error, OSError, ValueError) as e:
            logger.warning(f"Read of {store}/{key} failed: {e}")
            return None

    async def delete(self, store: str, key: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._delete_sync, store, key)

    async def clear(self, store: str) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._clear_sync, store)


def create_backend(kind: str, path: Optional[str] = None) -> StorageBackend:
    """
    Construct the backend for a storage primitive.

    Args:
        kind: 'memory', 'json' or 'sqlite'
        path: Directory (json) or database file (sqlite); ignored for memory

    Raises:
        ValueError: If kind is unknown or a path is required but missing
    """
    kind = kind.lower()
    if kind == MemoryBackend.name:
        return MemoryBackend()
    if kind in (JsonFileBackend.name, SqliteBackend.name) and not path:
        raise ValueError(f"Storage backend '{kind}' requires a path")
    if kind == JsonFileBackend.name:
        return JsonFileBackend(path)
    if kind == SqliteBackend.name:
        return SqliteBackend(path)
    raise ValueError(f"Unknown storage backend: {kind}")
