"""Document store — aiosqlite-backed JSON documents with transactions.

Every document lives under a slash-separated path
(``worlds/w1/movements/m1``); its collection is the path without the last
segment.  Each row carries a ``version`` that optimistic transactions
compare at commit time.  Versions come from one store-wide counter, so a
document deleted and written again never repeats an earlier version.

Write primitives:
- ``set`` / ``update`` / ``delete`` — single immediate writes
- ``batch()`` — several writes committed in one SQLite transaction
- ``run_transaction(fn)`` — read-validate-write with retry on conflict
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, TypeVar

import aiosqlite

from polis.util.errors import DocumentNotFound, PolisError, TransactionConflict

log = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS documents (
    path TEXT PRIMARY KEY,
    collection TEXT NOT NULL,
    doc_id TEXT NOT NULL,
    data TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents (collection);
CREATE TABLE IF NOT EXISTS counters (
    name TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);
INSERT OR IGNORE INTO counters (name, value)
    SELECT 'version', COALESCE(MAX(version), 0) FROM documents;
"""


class _DeleteField:
    def __repr__(self) -> str:
        return "DELETE_FIELD"

    # Buffered writes are deep-copied; the sentinel must stay identical.
    def __copy__(self) -> "_DeleteField":
        return self

    def __deepcopy__(self, memo: dict) -> "_DeleteField":
        return self


DELETE_FIELD = _DeleteField()
"""Sentinel for ``update``: remove the field instead of setting it."""


@dataclass(frozen=True)
class Increment:
    """Sentinel for ``update``: add *amount* to the current numeric value."""
    amount: float


Filter = tuple[str, str, Any]


def split_path(path: str) -> tuple[str, str]:
    """Return ``(collection, doc_id)`` for a document path."""
    collection, _, doc_id = path.rstrip("/").rpartition("/")
    if not collection or not doc_id:
        raise PolisError(f"Not a document path: {path!r}")
    return collection, doc_id


def get_field(data: dict, dotted: str) -> Any:
    """Read a possibly nested field (``"buildings.warehouse.level"``)."""
    node: Any = data
    for key in dotted.split("."):
        if not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


def _apply_field(data: dict, dotted: str, value: Any) -> None:
    keys = dotted.split(".")
    node = data
    for key in keys[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            if value is DELETE_FIELD:
                return
            child = {}
            node[key] = child
        node = child
    last = keys[-1]
    if value is DELETE_FIELD:
        node.pop(last, None)
    elif isinstance(value, Increment):
        node[last] = (node.get(last) or 0) + value.amount
    else:
        node[last] = copy.deepcopy(value)


def deep_merge(base: dict, patch: dict) -> dict:
    """Merge *patch* into a copy of *base*, recursing into nested dicts."""
    result = copy.deepcopy(base)
    for key, value in patch.items():
        if value is DELETE_FIELD:
            result.pop(key, None)
        elif isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def apply_update(data: dict, fields: dict[str, Any]) -> dict:
    """Return a copy of *data* with dotted-path *fields* applied."""
    result = copy.deepcopy(data)
    for dotted, value in fields.items():
        _apply_field(result, dotted, value)
    return result


def _matches(data: dict, filters: Iterable[Filter]) -> bool:
    for field_name, op, expected in filters:
        actual = get_field(data, field_name)
        if op == "==":
            if actual != expected:
                return False
        elif op == "<=":
            if actual is None or actual > expected:
                return False
        elif op == "array_contains":
            if not isinstance(actual, list) or expected not in actual:
                return False
        else:
            raise PolisError(f"Unsupported filter operator: {op!r}")
    return True


# -- Write operations shared by batches and transactions ---------------------

@dataclass
class _Write:
    kind: str  # "set", "update", "delete"
    path: str
    data: dict | None = None
    merge: bool = False


class _WriteBuffer:
    def __init__(self) -> None:
        self._writes: list[_Write] = []

    def set(self, path: str, data: dict, merge: bool = False) -> None:
        split_path(path)
        self._writes.append(_Write("set", path, copy.deepcopy(data), merge))

    def update(self, path: str, fields: dict[str, Any]) -> None:
        split_path(path)
        self._writes.append(_Write("update", path, dict(fields)))

    def delete(self, path: str) -> None:
        split_path(path)
        self._writes.append(_Write("delete", path))

    @property
    def writes(self) -> list[_Write]:
        return list(self._writes)

    def __len__(self) -> int:
        return len(self._writes)


class WriteBatch(_WriteBuffer):
    """Buffered writes applied atomically by :meth:`commit`."""

    def __init__(self, store: DocumentStore) -> None:
        super().__init__()
        self._store = store

    async def commit(self) -> None:
        await self._store._commit(self.writes, reads={})


class Transaction(_WriteBuffer):
    """Optimistic transaction handle passed to ``run_transaction`` callbacks.

    All reads must happen before the first write.  At commit the versions
    of every document read are compared with the stored ones; any
    difference aborts and the callback is retried.
    """

    def __init__(self, store: DocumentStore) -> None:
        super().__init__()
        self._store = store
        self._reads: dict[str, int | None] = {}

    async def get(self, path: str) -> dict | None:
        if len(self):
            raise PolisError("Transaction reads must precede writes")
        data, version = await self._store._read(path)
        self._reads.setdefault(path, version)
        return data

    async def get_required(self, path: str) -> dict:
        data = await self.get(path)
        if data is None:
            raise DocumentNotFound(path)
        return data

    @property
    def reads(self) -> dict[str, int | None]:
        return dict(self._reads)


class _Conflict(Exception):
    pass


class DocumentStore:
    """Async JSON document store on a single SQLite file.

    Args:
        db_path: Path to the SQLite file (``":memory:"`` for tests).
        clock: Wall-clock source for :meth:`server_time`.
        max_attempts: Transaction retries before ``TransactionConflict``.
    """

    def __init__(self, db_path: str = "polis.db",
                 clock: Callable[[], float] = time.time,
                 max_attempts: int = 5) -> None:
        self._db_path = db_path
        self._clock = clock
        self._max_attempts = max_attempts
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()
        self._last_time = 0.0

    async def connect(self) -> None:
        """Open the database connection and create tables if needed."""
        self._conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        await self._conn.executescript(_SCHEMA)
        log.info("Document store connected: %s", self._db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    # -- Time & ids -------------------------------------------------------

    def server_time(self) -> float:
        """Current server timestamp in seconds; never goes backwards."""
        self._last_time = max(self._last_time, float(self._clock()))
        return self._last_time

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex[:20]

    # -- Reads ------------------------------------------------------------

    async def _read(self, path: str) -> tuple[dict | None, int | None]:
        assert self._conn is not None
        async with self._conn.execute(
            "SELECT data, version FROM documents WHERE path = ?", (path,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None, None
        return json.loads(row[0]), row[1]

    async def get(self, path: str) -> dict | None:
        """Return the document at *path*, or ``None``."""
        data, _ = await self._read(path)
        return data

    async def query(self, collection: str, filters: Iterable[Filter] = (),
                    limit: int | None = None) -> list[tuple[str, dict]]:
        """Return ``(doc_id, data)`` pairs of *collection* matching all filters.

        Filters are ``(field, op, value)`` with op ``==``, ``<=`` or
        ``array_contains``; fields may be dotted.
        """
        assert self._conn is not None
        filters = list(filters)
        async with self._conn.execute(
            "SELECT doc_id, data FROM documents WHERE collection = ? ORDER BY doc_id",
            (collection.rstrip("/"),),
        ) as cursor:
            rows = await cursor.fetchall()
        results: list[tuple[str, dict]] = []
        for doc_id, raw in rows:
            data = json.loads(raw)
            if _matches(data, filters):
                results.append((doc_id, data))
                if limit is not None and len(results) >= limit:
                    break
        return results

    async def list_paths(self, prefix: str = "") -> list[tuple[str, dict]]:
        """Return every ``(path, data)`` whose path starts with *prefix*."""
        assert self._conn is not None
        async with self._conn.execute(
            "SELECT path, data FROM documents WHERE path LIKE ? ORDER BY path",
            (prefix + "%",),
        ) as cursor:
            rows = await cursor.fetchall()
        return [(path, json.loads(raw)) for path, raw in rows]

    # -- Single writes ----------------------------------------------------

    async def set(self, path: str, data: dict, merge: bool = False) -> None:
        batch = self.batch()
        batch.set(path, data, merge=merge)
        await batch.commit()

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        """Apply dotted-path *fields*; raises ``DocumentNotFound`` if absent."""
        batch = self.batch()
        batch.update(path, fields)
        await batch.commit()

    async def delete(self, path: str) -> None:
        batch = self.batch()
        batch.delete(path)
        await batch.commit()

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    # -- Transactions -----------------------------------------------------

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run *fn* inside an optimistic transaction, retrying on conflict.

        *fn* receives a :class:`Transaction`, reads through it and buffers
        writes on it.  Its return value is returned once the writes commit.
        Exceptions raised by *fn* abort without writing.
        """
        for attempt in range(1, self._max_attempts + 1):
            tx = Transaction(self)
            result = await fn(tx)
            try:
                await self._commit(tx.writes, tx.reads)
            except _Conflict:
                log.debug("Transaction conflict, attempt %d/%d", attempt, self._max_attempts)
                continue
            return result
        raise TransactionConflict(
            f"Transaction did not commit after {self._max_attempts} attempts"
        )

    async def _commit(self, writes: list[_Write], reads: dict[str, int | None]) -> None:
        assert self._conn is not None
        if not writes and not reads:
            return
        async with self._write_lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                for path, expected in reads.items():
                    _, current = await self._read(path)
                    if current != expected:
                        raise _Conflict(path)

                staged: dict[str, tuple[dict | None, int | None]] = {}
                for write in writes:
                    if write.path not in staged:
                        staged[write.path] = await self._read(write.path)
                    current_data, version = staged[write.path]
                    if write.kind == "delete":
                        new_data = None
                    elif write.kind == "update":
                        if current_data is None:
                            raise DocumentNotFound(write.path)
                        new_data = apply_update(current_data, write.data or {})
                    elif write.merge and current_data is not None:
                        new_data = deep_merge(current_data, write.data or {})
                    else:
                        new_data = deep_merge({}, write.data or {})
                    staged[write.path] = (new_data, version)

                await self._conn.execute(
                    "UPDATE counters SET value = value + 1 WHERE name = 'version'")
                async with self._conn.execute(
                    "SELECT value FROM counters WHERE name = 'version'",
                ) as cursor:
                    next_version = (await cursor.fetchone())[0]

                for path, (data, _) in staged.items():
                    if data is None:
                        await self._conn.execute("DELETE FROM documents WHERE path = ?", (path,))
                        continue
                    collection, doc_id = split_path(path)
                    await self._conn.execute(
                        "INSERT INTO documents (path, collection, doc_id, data, version) "
                        "VALUES (?, ?, ?, ?, ?) "
                        "ON CONFLICT(path) DO UPDATE SET data = excluded.data, "
                        "version = excluded.version",
                        (path, collection, doc_id, json.dumps(data), next_version),
                    )
            except BaseException:
                await self._conn.execute("ROLLBACK")
                raise
            await self._conn.execute("COMMIT")
