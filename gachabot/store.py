"""SQLite-backed document store with optimistic multi-document transactions."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import random
import secrets
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

from gachabot.errors import InternalError, TransactionConflict
from gachabot.utils import utc_now

logger = logging.getLogger("gachabot.store")

T = TypeVar("T")

Document = Dict[str, Any]


def split_path(path: str) -> Tuple[str, str]:
    """Split ``users/abc/gacha_draws/xyz`` into ``("users/abc/gacha_draws", "xyz")``."""
    segments = [segment for segment in path.strip("/").split("/") if segment]
    if not segments or len(segments) % 2 != 0:
        raise ValueError(f"Document paths need an even number of segments: {path!r}")
    return "/".join(segments[:-1]), segments[-1]


@dataclass(frozen=True)
class Snapshot:
    path: str
    data: Optional[Document]
    version: int

    @property
    def exists(self) -> bool:
        return self.data is not None

    @property
    def doc_id(self) -> str:
        return split_path(self.path)[1]


class Transaction:
    """Read set plus buffered writes for a single transaction attempt.

    All reads must happen before the first write. Nothing reaches the
    database until the store commits the transaction.
    """

    def __init__(self, store: "DocumentStore") -> None:
        self._store = store
        self._reads: Dict[str, int] = {}
        self._writes: Dict[str, Document] = {}

    async def get(self, path: str) -> Snapshot:
        if self._writes:
            raise RuntimeError("Transactions must perform all reads before any writes.")
        snapshot = await self._store.get(path)
        self._reads.setdefault(path, snapshot.version)
        return snapshot

    def set(self, path: str, data: Mapping[str, Any]) -> None:
        split_path(path)
        self._writes[path] = copy.deepcopy(dict(data))

    def create(self, collection: str, data: Mapping[str, Any]) -> str:
        """Buffer a write-once document under an auto-generated id."""
        path = f"{collection.strip('/')}/{self._store.new_id()}"
        self.set(path, data)
        # A fresh id is expected to be absent at commit time.
        self._reads.setdefault(path, 0)
        return path

    @property
    def reads(self) -> Mapping[str, int]:
        return self._reads

    @property
    def writes(self) -> Mapping[str, Document]:
        return self._writes


class DocumentStore:
    """Keyed JSON documents grouped into slash-separated collections."""

    def __init__(self, db_path: Path, *, max_attempts: int = 5, retry_backoff: float = 0.01) -> None:
        self._db_path = db_path
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff = max(0.0, retry_backoff)
        self._conn = self._connect_db()
        self._lock = asyncio.Lock()
        self._create_tables()

    def _connect_db(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), isolation_level=None, check_same_thread=False)
        conn.execute("PRAGMA busy_timeout = 5000")
        return conn

    def _create_tables(self) -> None:
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                )
                """
            )

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def new_id() -> str:
        return secrets.token_hex(10)

    # Plain reads and writes -------------------------------------------

    def _read_row(self, path: str) -> Snapshot:
        collection, doc_id = split_path(path)
        cur = self._conn.execute(
            "SELECT data, version FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        )
        row = cur.fetchone()
        if row is None:
            return Snapshot(path=path, data=None, version=0)
        return Snapshot(path=path, data=json.loads(row[0]), version=row[1])

    def _write_row(self, path: str, data: Mapping[str, Any]) -> None:
        collection, doc_id = split_path(path)
        self._conn.execute(
            """
            INSERT INTO documents (collection, doc_id, data, version, updated_at)
            VALUES (?, ?, ?, 1, ?)
            ON CONFLICT (collection, doc_id)
            DO UPDATE SET data = excluded.data, version = version + 1, updated_at = excluded.updated_at
            """,
            (collection, doc_id, json.dumps(data, sort_keys=True), utc_now().isoformat()),
        )

    async def get(self, path: str) -> Snapshot:
        async with self._lock:
            return self._read_row(path)

    async def set(self, path: str, data: Mapping[str, Any]) -> None:
        """Write a document outside any transaction (last writer wins)."""
        async with self._lock:
            self._write_row(path, data)

    async def list_documents(
        self,
        collection: str,
        where: Optional[Mapping[str, Any]] = None,
    ) -> List[Snapshot]:
        """Return documents in ``collection`` ordered by id, filtered on top-level equality."""
        collection = collection.strip("/")
        async with self._lock:
            cur = self._conn.execute(
                "SELECT doc_id, data, version FROM documents WHERE collection = ? ORDER BY doc_id",
                (collection,),
            )
            rows = cur.fetchall()
        snapshots: List[Snapshot] = []
        for doc_id, raw, version in rows:
            data = json.loads(raw)
            if where and any(data.get(key) != value for key, value in where.items()):
                continue
            snapshots.append(Snapshot(path=f"{collection}/{doc_id}", data=data, version=version))
        return snapshots

    # Transactions -----------------------------------------------------

    async def _commit(self, tx: Transaction) -> None:
        if not tx.writes:
            return
        async with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                for path, expected in tx.reads.items():
                    current = self._read_row(path).version
                    if current != expected:
                        raise TransactionConflict(
                            f"{path} changed during transaction (read v{expected}, now v{current})"
                        )
                for path, data in tx.writes.items():
                    self._write_row(path, data)
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    async def run_transaction(
        self,
        body: Callable[[Transaction], Awaitable[T]],
        *,
        max_attempts: Optional[int] = None,
    ) -> T:
        """Run ``body`` and commit its writes atomically, retrying on conflicts.

        ``body`` may run more than once, so it must not have side effects
        outside the transaction it is handed.
        """
        attempts = max(1, max_attempts or self.max_attempts)
        for attempt in range(1, attempts + 1):
            tx = Transaction(self)
            result = await body(tx)
            try:
                await self._commit(tx)
            except TransactionConflict as exc:
                logger.info("Transaction conflict (attempt %s/%s): %s", attempt, attempts, exc)
                if attempt < attempts and self.retry_backoff:
                    await asyncio.sleep(self.retry_backoff * attempt * (1 + random.random()))
                continue
            return result
        logger.error("Transaction gave up after %s conflicting attempts.", attempts)
        raise InternalError("Too much contention on this account; please try again.")


__all__ = ["Document", "DocumentStore", "Snapshot", "Transaction", "split_path"]
