from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Mapping, Protocol

from app.core.errors import StorageError

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class BlobStore(Protocol):
    async def initialize(self) -> None: ...

    async def put(self, namespace: str, key: str, content: bytes) -> None: ...

    async def get(self, namespace: str, key: str) -> bytes | None: ...

    async def delete_many(self, namespace: str, keys: Iterable[str]) -> None: ...

    async def delete_all(self, namespace: str) -> None: ...

    async def replace(self, namespace: str, delete_keys: Iterable[str], items: Mapping[str, bytes]) -> None: ...

    async def close(self) -> None: ...

    def scope(self, namespace: str) -> "ScopedBlobStore": ...


@dataclass(frozen=True)
class ScopedBlobStore:
    """Blob store view bound to one session namespace."""

    store: BlobStore
    namespace: str

    async def put(self, key: str, content: bytes) -> None:
        await self.store.put(self.namespace, key, content)

    async def get(self, key: str) -> bytes | None:
        return await self.store.get(self.namespace, key)

    async def delete_many(self, keys: Iterable[str]) -> None:
        await self.store.delete_many(self.namespace, keys)

    async def delete_all(self) -> None:
        await self.store.delete_all(self.namespace)

    async def replace(self, delete_keys: Iterable[str], items: Mapping[str, bytes]) -> None:
        await self.store.replace(self.namespace, delete_keys, items)


class InMemoryBlobStore:
    def __init__(self) -> None:
        self._data: dict[str, dict[str, bytes]] = {}

    async def initialize(self) -> None:
        return None

    async def put(self, namespace: str, key: str, content: bytes) -> None:
        self._data.setdefault(namespace, {})[key] = bytes(content)

    async def get(self, namespace: str, key: str) -> bytes | None:
        return self._data.get(namespace, {}).get(key)

    async def delete_many(self, namespace: str, keys: Iterable[str]) -> None:
        bucket = self._data.get(namespace)
        if not bucket:
            return
        for key in keys:
            bucket.pop(key, None)

    async def delete_all(self, namespace: str) -> None:
        self._data.pop(namespace, None)

    async def replace(self, namespace: str, delete_keys: Iterable[str], items: Mapping[str, bytes]) -> None:
        updated = dict(self._data.get(namespace, {}))
        for key in delete_keys:
            updated.pop(key, None)
        for key, content in items.items():
            updated[key] = bytes(content)
        self._data[namespace] = updated

    async def close(self) -> None:
        self._data.clear()

    def scope(self, namespace: str) -> ScopedBlobStore:
        return ScopedBlobStore(store=self, namespace=namespace)


class SqliteBlobStore:
    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        with self._conn_lock:
            if self._conn is not None:
                return self._conn

            directory = os.path.dirname(self._db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            conn = sqlite3.connect(
                self._db_path,
                check_same_thread=False,
                timeout=5,
                isolation_level=None,
            )
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA busy_timeout=5000;")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS staged_blobs (
                    namespace TEXT NOT NULL,
                    store_key TEXT NOT NULL,
                    content BLOB NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (namespace, store_key)
                );
                """
            )
            self._conn = conn
            return conn

    async def _run(self, operation: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except (sqlite3.Error, OSError) as exc:
            logger.error("blob_store_failed op=%s db=%s: %s", operation, self._db_path, exc)
            raise StorageError(f"File storage is unavailable ({operation} failed).") from exc

    async def initialize(self) -> None:
        await self._run("initialize", self._get_connection)

    def _put(self, namespace: str, key: str, content: bytes) -> None:
        conn = self._get_connection()
        with self._conn_lock:
            conn.execute(
                """
                INSERT OR REPLACE INTO staged_blobs (namespace, store_key, content, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (namespace, key, sqlite3.Binary(content), _utc_now()),
            )

    async def put(self, namespace: str, key: str, content: bytes) -> None:
        await self._run("put", self._put, namespace, key, bytes(content))

    def _get(self, namespace: str, key: str) -> bytes | None:
        conn = self._get_connection()
        with self._conn_lock:
            row = conn.execute(
                "SELECT content FROM staged_blobs WHERE namespace = ? AND store_key = ?",
                (namespace, key),
            ).fetchone()
        if not row:
            return None
        return bytes(row[0])

    async def get(self, namespace: str, key: str) -> bytes | None:
        return await self._run("get", self._get, namespace, key)

    def _delete_many(self, namespace: str, keys: list[str]) -> None:
        conn = self._get_connection()
        with self._conn_lock:
            conn.executemany(
                "DELETE FROM staged_blobs WHERE namespace = ? AND store_key = ?",
                [(namespace, key) for key in keys],
            )

    async def delete_many(self, namespace: str, keys: Iterable[str]) -> None:
        await self._run("delete_many", self._delete_many, namespace, list(keys))

    def _delete_all(self, namespace: str) -> None:
        conn = self._get_connection()
        with self._conn_lock:
            conn.execute("DELETE FROM staged_blobs WHERE namespace = ?", (namespace,))

    async def delete_all(self, namespace: str) -> None:
        await self._run("delete_all", self._delete_all, namespace)

    def _replace(self, namespace: str, delete_keys: list[str], items: list[tuple[str, bytes]]) -> None:
        conn = self._get_connection()
        now = _utc_now()
        with self._conn_lock:
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                cursor.executemany(
                    "DELETE FROM staged_blobs WHERE namespace = ? AND store_key = ?",
                    [(namespace, key) for key in delete_keys],
                )
                cursor.executemany(
                    """
                    INSERT OR REPLACE INTO staged_blobs (namespace, store_key, content, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    [(namespace, key, sqlite3.Binary(content), now) for key, content in items],
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    async def replace(self, namespace: str, delete_keys: Iterable[str], items: Mapping[str, bytes]) -> None:
        await self._run(
            "replace",
            self._replace,
            namespace,
            list(delete_keys),
            [(key, bytes(content)) for key, content in items.items()],
        )

    def _close(self) -> None:
        with self._conn_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    async def close(self) -> None:
        await self._run("close", self._close)

    def scope(self, namespace: str) -> ScopedBlobStore:
        return ScopedBlobStore(store=self, namespace=namespace)
