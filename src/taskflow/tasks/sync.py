# src/taskflow/tasks/sync.py

from __future__ import annotations

"""
Synchronization core.

Owns the authoritative Task / User / Notification tables and keeps them equal to
the store's live feeds:
- one subscription per collection, consumed by one pump task;
- every snapshot replaces its table wholesale (no incremental patching);
- a new immutable Tables object is built first and swapped in with a single
  assignment, so readers never observe a half-applied snapshot;
- listeners run after the swap.

Optimistic writes live in a separate shadow overlay (stage / ack / discard) and
never touch the authoritative tables.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime

from ..core.ports import EntityKind, EntityStore, RawRecord, Subscription
from .task_models import Notification, Tables, Task, User

logger = logging.getLogger(__name__)

ChangeListener = Callable[[EntityKind], None]

DEFAULT_KINDS = (EntityKind.TASK, EntityKind.USER, EntityKind.NOTIFICATION)


@dataclass(slots=True, eq=False)
class ShadowWrite:
    """An optimistic, not yet confirmed change to one task."""

    task_id: str
    fields: tuple[str, ...]
    task: Task
    base_updated_at: datetime | None
    acked: bool = False

    def confirmed_by(self, authoritative: Task | None) -> bool:
        if authoritative is None:
            return True
        if all(getattr(authoritative, f) == getattr(self.task, f) for f in self.fields):
            return True
        # The store accepted a newer write (ours, or a concurrent one that won).
        return (
            self.acked
            and authoritative.updated_at is not None
            and authoritative.updated_at != self.base_updated_at
        )


def _overlay(task: Task, writes: Iterable[ShadowWrite]) -> Task:
    """Apply each write's own fields on top of task, oldest first."""
    for w in writes:
        changes = {f: getattr(w.task, f) for f in w.fields}
        task = replace(task, **changes, updated_at=w.task.updated_at)
    return task


def _parse_all(kind: EntityKind, records: Iterable[RawRecord], parse: Callable[[RawRecord], object]) -> list:
    out = []
    for raw in records:
        try:
            out.append(parse(raw))
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Skipping malformed %s record id=%s: %s", kind.value, raw.get("id"), e)
    return out


def _offer_latest(queue: asyncio.Queue[tuple], item: tuple) -> None:
    # A slow consumer only ever sees the newest snapshot it missed.
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(item)


def order_tasks(tasks: Iterable[Task]) -> tuple[Task, ...]:
    """
    Feed ordering: createdAt descending.

    Tasks whose createdAt is still pending take no part in the sort; they come
    first, in the order the feed delivered them.
    """
    items = list(tasks)
    pending = [t for t in items if t.created_at is None]
    final = sorted(
        (t for t in items if t.created_at is not None),
        key=lambda t: (t.created_at, t.id),
        reverse=True,
    )
    return tuple(pending + final)


def _order_notifications(items: Iterable[Notification]) -> tuple[Notification, ...]:
    items = list(items)
    pending = [n for n in items if n.created_at is None]
    final = sorted(
        (n for n in items if n.created_at is not None),
        key=lambda n: (n.created_at, n.id),
        reverse=True,
    )
    return tuple(pending + final)


class SyncCore:
    def __init__(
        self,
        store: EntityStore,
        *,
        kinds: Iterable[EntityKind] = DEFAULT_KINDS,
        resubscribe_delay_seconds: float = 5.0,
    ) -> None:
        self._store = store
        self._kinds = tuple(kinds)
        self._resubscribe_delay = max(0.0, float(resubscribe_delay_seconds))

        self._tables = Tables()
        self._shadow: dict[str, list[ShadowWrite]] = {}
        self._listeners: list[ChangeListener] = []
        self._snapshot_queues: dict[EntityKind, set[asyncio.Queue[tuple]]] = {k: set() for k in EntityKind}

        self._running = False
        self._pumps: dict[EntityKind, asyncio.Task[None]] = {}
        self._subs: dict[EntityKind, Subscription] = {}
        self._ready: dict[EntityKind, asyncio.Event] = {k: asyncio.Event() for k in EntityKind}

    # ---- reads ----

    @property
    def tables(self) -> Tables:
        return self._tables

    @property
    def running(self) -> bool:
        return self._running

    def task(self, task_id: str) -> Task | None:
        """Authoritative task (never includes optimistic changes)."""
        return self._tables.task_index.get(task_id)

    def user(self, user_id: str) -> User | None:
        return self._tables.user_index.get(user_id)

    def effective_task(self, task_id: str) -> Task | None:
        task = self.task(task_id)
        writes = self._shadow.get(task_id)
        if task is None or not writes:
            return task
        return _overlay(task, writes)

    def effective_tasks(self) -> tuple[Task, ...]:
        """Authoritative task list with pending optimistic writes overlaid."""
        tasks = self._tables.tasks
        if not self._shadow:
            return tasks
        shadow = dict(self._shadow)
        out = []
        for t in tasks:
            writes = shadow.get(t.id)
            out.append(_overlay(t, writes) if writes else t)
        return tuple(out)

    # ---- listeners / snapshot stream ----

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, kind: EntityKind) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind)
            except Exception:
                logger.exception("Sync listener failed kind=%s", kind.value)

    async def snapshots(self, kind: EntityKind) -> AsyncIterator[tuple]:
        """
        Yield every applied snapshot of kind (the current one first, once ready).

        A consumer that falls behind skips straight to the newest snapshot.
        Lifetime is unlimited; stop by breaking out of the loop or closing the generator.
        """
        queue: asyncio.Queue[tuple] = asyncio.Queue(maxsize=1)
        self._snapshot_queues[kind].add(queue)
        try:
            if self._ready[kind].is_set():
                yield self._select(kind)
            while True:
                yield await queue.get()
        finally:
            self._snapshot_queues[kind].discard(queue)

    def _select(self, kind: EntityKind) -> tuple:
        if kind is EntityKind.TASK:
            return self._tables.tasks
        if kind is EntityKind.USER:
            return self._tables.users
        return self._tables.notifications

    # ---- snapshot application ----

    def apply_snapshot(self, kind: EntityKind, records: Iterable[RawRecord]) -> Tables:
        """Replace the table for kind with the snapshot's members."""
        current = self._tables
        if kind is EntityKind.TASK:
            tasks = order_tasks(_parse_all(kind, records, Task.from_record))
            new = replace(
                current,
                tasks=tasks,
                task_index={t.id: t for t in tasks},
                version=current.version + 1,
            )
        elif kind is EntityKind.USER:
            users = _parse_all(kind, records, User.from_record)
            users.sort(key=lambda u: (u.name.lower(), u.id))
            new = replace(
                current,
                users=tuple(users),
                user_index={u.id: u for u in users},
                version=current.version + 1,
            )
        else:
            notes = _order_notifications(_parse_all(kind, records, Notification.from_record))
            new = replace(current, notifications=notes, version=current.version + 1)

        self._tables = new
        if kind is EntityKind.TASK:
            self._reconcile_shadow()
        self._ready[kind].set()

        logger.debug(
            "Applied %s snapshot version=%d tasks=%d users=%d",
            kind.value,
            new.version,
            len(new.tasks),
            len(new.users),
        )
        self._notify(kind)
        for queue in list(self._snapshot_queues[kind]):
            _offer_latest(queue, self._select(kind))
        return new

    # ---- optimistic shadow ----

    def stage(self, base: Task, optimistic: Task, fields: Iterable[str]) -> ShadowWrite:
        write = ShadowWrite(
            task_id=base.id,
            fields=tuple(fields),
            task=optimistic,
            base_updated_at=base.updated_at,
        )
        self._shadow.setdefault(base.id, []).append(write)
        self._notify(EntityKind.TASK)
        return write

    def ack(self, write: ShadowWrite) -> None:
        write.acked = True
        if self._reconcile_shadow():
            self._notify(EntityKind.TASK)

    def discard(self, write: ShadowWrite) -> None:
        writes = self._shadow.get(write.task_id)
        if not writes or write not in writes:
            return
        writes.remove(write)
        if not writes:
            del self._shadow[write.task_id]
        self._notify(EntityKind.TASK)

    def pending_writes(self, task_id: str | None = None) -> list[ShadowWrite]:
        if task_id is not None:
            return list(self._shadow.get(task_id, ()))
        return [w for writes in self._shadow.values() for w in writes]

    def _reconcile_shadow(self) -> bool:
        changed = False
        for task_id in list(self._shadow):
            auth = self.task(task_id)
            kept = [w for w in self._shadow[task_id] if not w.confirmed_by(auth)]
            if len(kept) != len(self._shadow[task_id]):
                changed = True
            if kept:
                self._shadow[task_id] = kept
            else:
                del self._shadow[task_id]
        return changed

    # ---- feed lifecycle ----

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for kind in self._kinds:
            self._pumps[kind] = asyncio.create_task(self._pump(kind), name=f"sync-{kind.value}")
        logger.info("Sync started kinds=%s", ",".join(k.value for k in self._kinds))

    async def stop(self) -> None:
        """Tear down every feed; no table update happens after this returns."""
        if not self._running and not self._pumps:
            return
        self._running = False
        for sub in list(self._subs.values()):
            sub.close()
        pumps = list(self._pumps.values())
        for task in pumps:
            task.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)
        self._pumps.clear()
        self._subs.clear()
        logger.info("Sync stopped")

    async def wait_until_ready(self, timeout: float | None = None) -> None:
        """Wait for the first Task and User snapshots."""
        needed = [self._ready[k].wait() for k in (EntityKind.TASK, EntityKind.USER) if k in self._kinds]
        await asyncio.wait_for(asyncio.gather(*needed), timeout=timeout)

    async def _pump(self, kind: EntityKind) -> None:
        while self._running:
            try:
                sub = self._store.subscribe(kind)
                self._subs[kind] = sub
                try:
                    async for records in sub:
                        if not self._running:
                            break
                        self.apply_snapshot(kind, records)
                finally:
                    sub.close()
                    self._subs.pop(kind, None)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Feed for %s failed; resubscribing in %.1fs", kind.value, self._resubscribe_delay
                )

            if not self._running:
                break
            await asyncio.sleep(self._resubscribe_delay)
