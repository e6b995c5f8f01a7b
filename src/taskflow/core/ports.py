# src/taskflow/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the entity store and the identity provider swappable and makes testing easier.
"""

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol

RawRecord = dict[str, Any]
# A document as delivered by the store: plain JSON-like values, "id" always present.

Clock = Callable[[], datetime]
# Returns the current time as a timezone-aware datetime.


class EntityKind(StrEnum):
    """Store collections the core reads or writes."""

    TASK = "tasks"
    USER = "users"
    NOTIFICATION = "notifications"


class Subscription(Protocol):
    """
    Live feed of one collection.

    Every item is a complete snapshot (all current members of the collection).
    Iteration ends after close().
    """

    def __aiter__(self) -> AsyncIterator[list[RawRecord]]: ...
    def close(self) -> None: ...


class EntityStore(Protocol):
    """Store-side port: push-based snapshots + request/response writes."""

    def subscribe(self, kind: EntityKind) -> Subscription: ...
    async def create(
        self, kind: EntityKind, record: RawRecord, *, record_id: str | None = None
    ) -> str: ...
    async def update(self, kind: EntityKind, record_id: str, patch: RawRecord) -> None: ...


@dataclass(slots=True, frozen=True)
class Identity:
    """Profile returned by the identity provider after sign-in."""

    id: str
    email: str
    name: str
    avatar_uri: str = ""


AuthListener = Callable[[Identity | None], None]


class IdentityProvider(Protocol):
    async def sign_in(self) -> Identity: ...
    async def sign_out(self) -> None: ...
    def on_auth_change(self, listener: AuthListener) -> Callable[[], None]: ...
