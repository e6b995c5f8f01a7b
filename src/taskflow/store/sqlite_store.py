# src/taskflow/store/sqlite_store.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
import time
import uuid
from pathlib import Path

from ..core.errors import StoreUnavailable
from ..core.ports import EntityKind, RawRecord
from .base import QueueSubscription, resolve_server_timestamps

logger = logging.getLogger(__name__)


class SqliteEntityStore:
    """
    SQLite document store with a polling snapshot feed.

    Layout:
    - documents(collection, id, data JSON, created_at, updated_at)
    - revisions(collection, revision): bumped in the same transaction as every write,
      so a poller only reloads a collection when something actually changed

    Server timestamps are stored as epoch seconds (float).

    Thread-safety:
    - each method opens its own SQLite connection
    - blocking calls run in worker threads (asyncio.to_thread)
    """

    def __init__(self, db_path: str | Path = "store.sqlite3", *, poll_seconds: float = 1.0) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._poll_seconds = max(0.01, float(poll_seconds))
        self._pollers: dict[QueueSubscription, asyncio.Task[None]] = {}
        self._ensure_schema()
        try:
            total = self.count_documents()
        except Exception:
            total = -1
        logger.info("SqliteEntityStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Stop every poller (connections are short-lived, nothing else to close)."""
        for sub in list(self._pollers):
            sub.close()

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL DEFAULT '{}',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (collection, id)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS revisions (
                    collection TEXT PRIMARY KEY,
                    revision INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_collection "
                "ON documents(collection, created_at)"
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _data_to_str(data: RawRecord) -> str:
        return json.dumps(data, ensure_ascii=False, sort_keys=True)

    @staticmethod
    def _str_to_data(s: str | None) -> RawRecord:
        if not s:
            return {}
        try:
            val = json.loads(s)
            return val if isinstance(val, dict) else {}
        except Exception:
            logger.warning("Corrupt document body skipped: %.80s", s)
            return {}

    @staticmethod
    def _bump_revision(cur: sqlite3.Cursor, kind: EntityKind) -> None:
        cur.execute(
            """
            INSERT INTO revisions(collection, revision) VALUES (?, 1)
            ON CONFLICT(collection) DO UPDATE SET revision = revision + 1
            """,
            (kind.value,),
        )

    # ---- sync API (runs in worker threads) ----

    def count_documents(self, kind: EntityKind | None = None) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            if kind is None:
                cur.execute("SELECT COUNT(*) FROM documents")
            else:
                cur.execute("SELECT COUNT(*) FROM documents WHERE collection = ?", (kind.value,))
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def revision(self, kind: EntityKind) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT revision FROM revisions WHERE collection = ?", (kind.value,))
            row = cur.fetchone()
            return int(row["revision"]) if row else 0
        finally:
            conn.close()

    def load_all(self, kind: EntityKind) -> list[RawRecord]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT id, data FROM documents WHERE collection = ? ORDER BY created_at ASC, id ASC",
                (kind.value,),
            )
            out: list[RawRecord] = []
            for row in cur.fetchall():
                doc = self._str_to_data(row["data"])
                doc["id"] = row["id"]
                out.append(doc)
            return out
        finally:
            conn.close()

    def insert(self, kind: EntityKind, record: RawRecord, record_id: str | None = None) -> str:
        now = time.time()
        doc_id = record_id or uuid.uuid4().hex[:20]
        doc = resolve_server_timestamps(dict(record), now)
        doc.pop("id", None)

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "INSERT INTO documents(collection, id, data, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (kind.value, doc_id, self._data_to_str(doc), now, now),
            )
            self._bump_revision(cur, kind)
            conn.commit()
            logger.debug("Document added kind=%s id=%s", kind.value, doc_id)
            return doc_id
        finally:
            conn.close()

    def merge(self, kind: EntityKind, record_id: str, patch: RawRecord) -> None:
        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            # Serialize read-modify-write against other writers of the same file.
            cur.execute("BEGIN IMMEDIATE")
            cur.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?",
                (kind.value, record_id),
            )
            row = cur.fetchone()
            if row is None:
                conn.rollback()
                raise KeyError(f"{kind.value}/{record_id} does not exist")

            doc = self._str_to_data(row["data"])
            doc.update(resolve_server_timestamps(dict(patch), now))
            doc.pop("id", None)

            cur.execute(
                "UPDATE documents SET data = ?, updated_at = ? WHERE collection = ? AND id = ?",
                (self._data_to_str(doc), now, kind.value, record_id),
            )
            self._bump_revision(cur, kind)
            conn.commit()
            logger.debug("Document updated kind=%s id=%s fields=%s", kind.value, record_id, sorted(patch))
        finally:
            conn.close()

    # ---- EntityStore port ----

    async def create(
        self, kind: EntityKind, record: RawRecord, *, record_id: str | None = None
    ) -> str:
        return await asyncio.to_thread(self.insert, kind, record, record_id)

    async def update(self, kind: EntityKind, record_id: str, patch: RawRecord) -> None:
        await asyncio.to_thread(self.merge, kind, record_id, patch)

    def subscribe(self, kind: EntityKind) -> QueueSubscription:
        """Start a poller for kind. Must be called from a running event loop."""
        sub = QueueSubscription(kind, on_close=self._stop_poller)
        self._pollers[sub] = asyncio.get_running_loop().create_task(self._poll(sub))
        return sub

    def _stop_poller(self, sub: QueueSubscription) -> None:
        task = self._pollers.pop(sub, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _poll(self, sub: QueueSubscription) -> None:
        last_rev: int | None = None
        while not sub.closed:
            try:
                rev = await asyncio.to_thread(self.revision, sub.kind)
                if rev != last_rev:
                    docs = await asyncio.to_thread(self.load_all, sub.kind)
                    last_rev = rev
                    sub.push(docs)
            except Exception as e:
                logger.exception("poll failed kind=%s", sub.kind.value)
                sub.fail(StoreUnavailable(f"feed for {sub.kind.value} failed: {e}"))
                return
            await asyncio.sleep(self._poll_seconds)
