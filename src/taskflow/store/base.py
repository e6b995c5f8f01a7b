# src/taskflow/store/base.py

"""
Entity store adapter.

- SERVER_TIMESTAMP: placeholder a writer puts into a record; the store replaces
  it with its own clock when the write is committed.
- QueueSubscription: the snapshot feed handed out by in-process backends.
- StoreClient: wraps any EntityStore backend with a timeout and translates every
  backend failure into StoreUnavailable.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ..core.errors import StoreUnavailable
from ..core.ports import EntityKind, EntityStore, RawRecord, Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _ServerTimestamp:
    """Singleton placeholder for "the store's commit time"."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __copy__(self) -> _ServerTimestamp:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> _ServerTimestamp:
        return self

    def __reduce__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def resolve_server_timestamps(record: RawRecord, value: Any) -> RawRecord:
    """Return a shallow copy of record with every top-level placeholder replaced by value."""
    return {k: (value if v is SERVER_TIMESTAMP else v) for k, v in record.items()}


class QueueSubscription:
    """
    asyncio.Queue backed snapshot feed.

    close() drops snapshots that were queued but not consumed yet, so a torn down
    consumer never sees another table update.
    """

    def __init__(self, kind: EntityKind, on_close: Callable[[QueueSubscription], None] | None = None) -> None:
        self.kind = kind
        self._queue: asyncio.Queue[list[RawRecord] | BaseException | None] = asyncio.Queue()
        self._closed = False
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, snapshot: list[RawRecord]) -> None:
        if self._closed:
            return
        self._queue.put_nowait(snapshot)

    def fail(self, exc: BaseException) -> None:
        """Deliver an error to the consumer; the feed ends after it."""
        if self._closed:
            return
        self._queue.put_nowait(exc)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)
        if self._on_close is not None:
            self._on_close(self)

    def __aiter__(self) -> QueueSubscription:
        return self

    async def __anext__(self) -> list[RawRecord]:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None or self._closed:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self.close()
            raise item
        return item


class StoreClient:
    """
    The adapter the rest of the core talks to.

    Timeouts are enforced here, so a hung backend surfaces as a failed mutation
    (StoreUnavailable) and never as a silent success.
    """

    def __init__(self, backend: EntityStore, *, timeout_seconds: float = 10.0) -> None:
        self._backend = backend
        self._timeout = max(0.01, float(timeout_seconds))

    @property
    def backend(self) -> EntityStore:
        return self._backend

    def subscribe(self, kind: EntityKind) -> Subscription:
        return self._backend.subscribe(kind)

    async def create(
        self, kind: EntityKind, record: RawRecord, *, record_id: str | None = None
    ) -> str:
        return await self._call(
            "create", kind, lambda: self._backend.create(kind, record, record_id=record_id)
        )

    async def update(self, kind: EntityKind, record_id: str, patch: RawRecord) -> None:
        await self._call("update", kind, lambda: self._backend.update(kind, record_id, patch))

    async def _call(self, op: str, kind: EntityKind, factory: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(factory(), timeout=self._timeout)
        except TimeoutError as e:
            logger.warning("store %s on %s timed out after %.2fs", op, kind.value, self._timeout)
            raise StoreUnavailable(f"{op} on {kind.value} timed out") from e
        except StoreUnavailable:
            raise
        except Exception as e:
            logger.warning("store %s on %s failed: %r", op, kind.value, e)
            raise StoreUnavailable(f"{op} on {kind.value} failed: {e}") from e
