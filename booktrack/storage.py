"""Local key/value persistence and the session credential store."""
import asyncio
import json
import logging
import os
import tempfile
import threading
from typing import Any, Dict, Iterable, List, Optional

import psycopg2
from psycopg2 import pool

from booktrack.errors import StorageError
from booktrack.models import Session

logger = logging.getLogger(__name__)

TOKEN_KEY = "userToken"


class KeyValueStorage:
    """Async key/value store holding JSON-serializable values."""

    async def get_item(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set_item(self, key: str, value: Any) -> None:
        raise NotImplementedError

    async def remove_item(self, key: str) -> None:
        raise NotImplementedError

    async def multi_remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            await self.remove_item(key)

    async def get_all_keys(self) -> List[str]:
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):
    """Process-local storage, mostly for tests."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.items: Dict[str, Any] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[Any]:
        return self.items.get(key)

    async def set_item(self, key: str, value: Any) -> None:
        self.items[key] = value

    async def remove_item(self, key: str) -> None:
        self.items.pop(key, None)

    async def get_all_keys(self) -> List[str]:
        return list(self.items)


class JsonFileStorage(KeyValueStorage):
    """Storage kept as a single JSON object in a file."""

    def __init__(self, path: str):
        """
        Initialize file storage.

        Args:
            path: JSON file location (created on first write)
        """
        self.path = os.path.expanduser(path)
        # Serializes load-modify-save cycles across worker threads
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Corrupt storage file: {self.path}")
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path) or "."
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            # Unique temp file per write, then an atomic swap into place
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=".booktrack_",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_path = f.name
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StorageError(f"Failed to write {self.path}: {e}") from e

    def _read(self) -> Dict[str, Any]:
        with self._lock:
            return self._load()

    def _set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def _remove(self, keys: List[str]) -> None:
        with self._lock:
            data = self._load()
            if any(key in data for key in keys):
                for key in keys:
                    data.pop(key, None)
                self._save(data)

    async def get_item(self, key: str) -> Optional[Any]:
        data = await asyncio.to_thread(self._read)
        return data.get(key)

    async def set_item(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._set, key, value)

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._remove, [key])

    async def multi_remove(self, keys: Iterable[str]) -> None:
        await asyncio.to_thread(self._remove, list(keys))

    async def get_all_keys(self) -> List[str]:
        data = await asyncio.to_thread(self._read)
        return list(data)


class PostgresStorage(KeyValueStorage):
    """PostgreSQL-backed storage with connection pooling."""

    def __init__(
        self,
        connection_string: str,
        min_conn: int = 1,
        max_conn: int = 5,
        connection_pool=None
    ):
        """
        Initialize database connection pool.

        Args:
            connection_string: PostgreSQL connection string
            min_conn: Minimum connections in pool
            max_conn: Maximum connections in pool
            connection_pool: Existing pool to use instead of creating one
        """
        if connection_pool is None:
            try:
                connection_pool = psycopg2.pool.SimpleConnectionPool(
                    min_conn,
                    max_conn,
                    connection_string
                )
            except psycopg2.Error as e:
                raise StorageError(f"Failed to create connection pool: {e}") from e

        self.connection_pool = connection_pool
        logger.info("Storage connection pool created successfully")
        self._run(self._init_schema)

    def _run(self, operation, *args):
        try:
            conn = self.connection_pool.getconn()
        except psycopg2.Error as e:
            logger.error(f"Could not get a storage connection: {e}")
            raise StorageError(f"Could not get a storage connection: {e}") from e

        try:
            result = operation(conn, *args)
            conn.commit()
            return result
        except psycopg2.Error as e:
            try:
                conn.rollback()
            except psycopg2.Error as rollback_error:
                logger.warning(f"Rollback failed: {rollback_error}")
            logger.error(f"Storage operation failed: {e}")
            raise StorageError(str(e)) from e
        finally:
            try:
                self.connection_pool.putconn(conn)
            except psycopg2.Error as e:
                logger.warning(f"Could not return storage connection: {e}")

    @staticmethod
    def _init_schema(conn) -> None:
        with conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS local_storage (
                    key VARCHAR(512) PRIMARY KEY,
                    value JSONB NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

    @staticmethod
    def _select(conn, key: str) -> Optional[Any]:
        with conn.cursor() as cur:
            cur.execute("SELECT value FROM local_storage WHERE key = %s", (key,))
            row = cur.fetchone()
            # JSONB is automatically deserialized
            return row[0] if row else None

    @staticmethod
    def _upsert(conn, key: str, value: Any) -> None:
        with conn.cursor() as cur:
            cur.execute("""
                INSERT INTO local_storage (key, value, updated_at)
                VALUES (%s, %s, CURRENT_TIMESTAMP)
                ON CONFLICT (key) DO UPDATE SET
                    value = EXCLUDED.value,
                    updated_at = CURRENT_TIMESTAMP
            """, (key, json.dumps(value)))

    @staticmethod
    def _delete(conn, keys: List[str]) -> None:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM local_storage WHERE key = ANY(%s)", (keys,))

    @staticmethod
    def _keys(conn) -> List[str]:
        with conn.cursor() as cur:
            cur.execute("SELECT key FROM local_storage ORDER BY key")
            return [row[0] for row in cur.fetchall()]

    async def get_item(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._run, self._select, key)

    async def set_item(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._run, self._upsert, key, value)

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._run, self._delete, [key])

    async def multi_remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if keys:
            await asyncio.to_thread(self._run, self._delete, keys)

    async def get_all_keys(self) -> List[str]:
        return await asyncio.to_thread(self._run, self._keys)

    def close(self):
        """Close all connections in the pool."""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("Storage connection pool closed")


class SessionStore:
    """Sole owner of the persisted session credential."""

    def __init__(self, storage: KeyValueStorage, key: str = TOKEN_KEY):
        self.storage = storage
        self.key = key

    async def get(self) -> Session:
        """Read the current session; an empty store is anonymous."""
        token = await self.storage.get_item(self.key)
        if not token:
            return Session.anonymous()
        return Session(token=str(token))

    async def set(self, token: str) -> None:
        await self.storage.set_item(self.key, token)

    async def clear(self) -> None:
        await self.storage.remove_item(self.key)


def create_storage(config) -> KeyValueStorage:
    """
    Build the storage backend selected by configuration.

    Args:
        config: Config instance

    Returns:
        KeyValueStorage implementation
    """
    backend = config.STORAGE_BACKEND
    if backend == "memory":
        return MemoryStorage()
    if backend == "postgres":
        return PostgresStorage(config.DATABASE_URL)
    if backend == "file":
        return JsonFileStorage(config.STORAGE_PATH)
    raise ValueError(f"Unknown storage backend: {backend}")
