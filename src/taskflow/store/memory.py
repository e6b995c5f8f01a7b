# src/taskflow/store/memory.py

"""
In-process entity store.

Used by the tests and by `TASKFLOW_STORE_BACKEND=memory`. It behaves like a
realtime document store:
- every committed write publishes a full snapshot of the collection to all
  subscribers of that collection;
- writes are serialized per store, so subscribers see the store's own history;
- `update` is a shallow merge: a field in the patch replaces the stored field
  (sequence fields are replaced wholesale, last write wins).

With pending_writes=True a write is first published with its server timestamps
unresolved (as a realtime store shows the author's own write before the
server commits it), then published again once resolved.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from ..core.ports import Clock, EntityKind, RawRecord
from .base import QueueSubscription, resolve_server_timestamps

logger = logging.getLogger(__name__)


class InMemoryEntityStore:
    def __init__(
        self,
        *,
        clock: Clock | None = None,
        pending_writes: bool = False,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self._pending_writes = pending_writes
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex[:20])
        self._docs: dict[EntityKind, dict[str, RawRecord]] = {kind: {} for kind in EntityKind}
        self._subs: dict[EntityKind, list[QueueSubscription]] = {kind: [] for kind in EntityKind}
        self._lock = asyncio.Lock()

        # Failure injection for tests: number of upcoming writes to reject.
        self.fail_writes = 0
        self.write_delay_seconds = 0.0
        self.writes: list[tuple[str, EntityKind, str, RawRecord]] = []

    # ---- feed ----

    def subscribe(self, kind: EntityKind) -> QueueSubscription:
        sub = QueueSubscription(kind, on_close=self._forget)
        self._subs[kind].append(sub)
        # Realtime feeds deliver the current state immediately.
        sub.push(self._snapshot(kind))
        logger.debug("subscribe kind=%s subscribers=%d", kind.value, len(self._subs[kind]))
        return sub

    def subscriber_count(self, kind: EntityKind) -> int:
        return len(self._subs[kind])

    def _forget(self, sub: QueueSubscription) -> None:
        subs = self._subs[sub.kind]
        if sub in subs:
            subs.remove(sub)

    def _snapshot(self, kind: EntityKind) -> list[RawRecord]:
        return [copy.deepcopy(doc) for doc in self._docs[kind].values()]

    def _publish(self, kind: EntityKind) -> None:
        for sub in list(self._subs[kind]):
            sub.push(self._snapshot(kind))

    # ---- writes ----

    async def create(
        self, kind: EntityKind, record: RawRecord, *, record_id: str | None = None
    ) -> str:
        await self._before_write("create", kind)
        async with self._lock:
            doc_id = record_id or self._id_factory()
            if doc_id in self._docs[kind]:
                raise KeyError(f"{kind.value}/{doc_id} already exists")
            doc = copy.deepcopy(dict(record))
            doc["id"] = doc_id
            self.writes.append(("create", kind, doc_id, copy.deepcopy(doc)))
            await self._commit(kind, doc_id, doc)
            return doc_id

    async def update(self, kind: EntityKind, record_id: str, patch: RawRecord) -> None:
        await self._before_write("update", kind)
        async with self._lock:
            current = self._docs[kind].get(record_id)
            if current is None:
                raise KeyError(f"{kind.value}/{record_id} does not exist")
            doc = dict(current)
            doc.update(copy.deepcopy(dict(patch)))
            doc["id"] = record_id
            self.writes.append(("update", kind, record_id, copy.deepcopy(dict(patch))))
            await self._commit(kind, record_id, doc)

    async def _before_write(self, op: str, kind: EntityKind) -> None:
        if self.write_delay_seconds > 0:
            await asyncio.sleep(self.write_delay_seconds)
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise ConnectionError(f"injected failure on {op} {kind.value}")

    async def _commit(self, kind: EntityKind, doc_id: str, doc: RawRecord) -> None:
        if self._pending_writes:
            self._docs[kind][doc_id] = doc
            self._publish(kind)
            # Let subscribers observe the unresolved write first.
            await asyncio.sleep(0)
        self._docs[kind][doc_id] = resolve_server_timestamps(doc, self._clock())
        self._publish(kind)

    # ---- direct access (seeding / inspection) ----

    def get(self, kind: EntityKind, record_id: str) -> RawRecord | None:
        doc = self._docs[kind].get(record_id)
        return copy.deepcopy(doc) if doc is not None else None

    def all(self, kind: EntityKind) -> list[RawRecord]:
        return self._snapshot(kind)

    def seed(self, kind: EntityKind, record: RawRecord) -> str:
        """Insert a record synchronously and publish it (no failure injection)."""
        doc = copy.deepcopy(dict(record))
        doc_id = str(doc.get("id") or self._id_factory())
        doc["id"] = doc_id
        self._docs[kind][doc_id] = resolve_server_timestamps(doc, self._clock())
        self._publish(kind)
        return doc_id
