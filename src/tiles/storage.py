"""Persistent key-value stores backing the tile cache.

The cache talks to a store only through the async ``KeyValueStore`` protocol,
one instance per namespace (tiles, metadata). ``SQLiteKeyValueStore`` keeps
each namespace in its own database file; ``MemoryKeyValueStore`` is a
process-local store for ephemeral caches.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable

from shared.errors import StoreError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar('T')


@runtime_checkable
class KeyValueStore(Protocol):
    name: str

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def get_item(self, key: str) -> str | None: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...

    async def keys(self) -> list[str]: ...

    async def clear(self) -> None: ...


class SQLiteKeyValueStore:
    """Namespace stored as ``<cache_dir>/<name>.db``.

    Features:
    - WAL mode so readers do not block the writer
    - Blocking SQLite calls run in worker threads behind one lock
    - sqlite3 errors surface as StoreError

    Usage:
        store = SQLiteKeyValueStore(cache_dir, 'tiles')
        await store.open()
        await store.set_item('15_100_200', payload)
        await store.close()
    """

    def __init__(self, cache_dir: str | Path, name: str) -> None:
        self.cache_dir = Path(cache_dir)
        self.name = name
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def db_path(self) -> Path:
        return self.cache_dir / f'{self.name}.db'

    def _connect(self) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.execute('PRAGMA journal_mode=WAL')
        conn.execute('PRAGMA synchronous=NORMAL')
        conn.execute(
            'CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)'
        )
        conn.commit()
        self._conn = conn

    async def _call(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        def run() -> T:
            with self._lock:
                if self._conn is None:
                    msg = f'Store {self.name!r} is not open'
                    raise StoreError(msg)
                try:
                    return fn(self._conn)
                except sqlite3.Error as e:
                    msg = f'Store {self.name!r} failed: {e}'
                    raise StoreError(msg) from e

        return await asyncio.to_thread(run)

    async def open(self) -> None:
        if self._conn is not None:
            return
        try:
            await asyncio.to_thread(self._connect)
        except (sqlite3.Error, OSError) as e:
            msg = f'Cannot open store {self.db_path}: {e}'
            raise StoreError(msg) from e
        logger.info('Key-value store %s opened at %s', self.name, self.db_path)

    async def close(self) -> None:
        if self._conn is None:
            return

        def run() -> None:
            with self._lock:
                if self._conn is not None:
                    self._conn.close()
                    self._conn = None

        await asyncio.to_thread(run)
        logger.info('Key-value store %s closed', self.name)

    async def get_item(self, key: str) -> str | None:
        def op(conn: sqlite3.Connection) -> str | None:
            row = conn.execute('SELECT value FROM kv WHERE key = ?', (key,)).fetchone()
            return None if row is None else row[0]

        return await self._call(op)

    async def set_item(self, key: str, value: str) -> None:
        def op(conn: sqlite3.Connection) -> None:
            conn.execute(
                'INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)', (key, value)
            )
            conn.commit()

        await self._call(op)

    async def remove_item(self, key: str) -> None:
        def op(conn: sqlite3.Connection) -> None:
            conn.execute('DELETE FROM kv WHERE key = ?', (key,))
            conn.commit()

        await self._call(op)

    async def keys(self) -> list[str]:
        def op(conn: sqlite3.Connection) -> list[str]:
            return [row[0] for row in conn.execute('SELECT key FROM kv')]

        return await self._call(op)

    async def clear(self) -> None:
        def op(conn: sqlite3.Connection) -> None:
            conn.execute('DELETE FROM kv')
            conn.commit()

        await self._call(op)


class MemoryKeyValueStore:
    """Dict-backed namespace living as long as the process."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._data: dict[str, str] = {}
        self._open = False

    def _check(self) -> None:
        if not self._open:
            msg = f'Store {self.name!r} is not open'
            raise StoreError(msg)

    async def open(self) -> None:
        self._open = True

    async def close(self) -> None:
        self._open = False

    async def get_item(self, key: str) -> str | None:
        self._check()
        await asyncio.sleep(0)
        return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._check()
        await asyncio.sleep(0)
        self._data[key] = value

    async def remove_item(self, key: str) -> None:
        self._check()
        await asyncio.sleep(0)
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        self._check()
        await asyncio.sleep(0)
        return list(self._data)

    async def clear(self) -> None:
        self._check()
        await asyncio.sleep(0)
        self._data.clear()
