# src/taskflow/views/live.py

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from ..core.errors import ValidationError
from ..core.ports import Clock, EntityKind
from ..tasks.sync import SyncCore
from ..tasks.task_models import Notification, Task
from ..tasks.timestamps import utc_now
from .derive import ALL_STATUSES, DashboardBuckets, dashboard_buckets, filtered_tasks, parse_status_filter

logger = logging.getLogger(__name__)

VIEWS = ("dashboard", "all-tasks", "calendar", "users")


@dataclass(slots=True)
class ViewState:
    """Per-session transient UI state. Owned by the caller, never shared."""

    actor_id: str
    search_term: str = ""
    status_filter: str = ALL_STATUSES
    current_view: str = "dashboard"


@dataclass(slots=True, frozen=True)
class Projections:
    tasks: tuple[Task, ...] = ()
    filtered: tuple[Task, ...] = ()
    buckets: DashboardBuckets = field(default_factory=DashboardBuckets)
    unread: tuple[Notification, ...] = ()
    computed_at: datetime | None = None
    version: int = 0


ProjectionListener = Callable[[Projections], None]


class LiveView:
    """
    Keeps the projections of one session current.

    Re-derives synchronously on every sync change and on every view-state change.
    The result is an immutable Projections object swapped in whole.
    """

    def __init__(
        self,
        sync: SyncCore,
        state: ViewState,
        *,
        clock: Clock | None = None,
        is_admin: Callable[[str], bool] | None = None,
        admin_recipient: str = "admin",
    ) -> None:
        self._sync = sync
        self._state = state
        self._clock = clock or utc_now
        self._is_admin = is_admin or (lambda _actor: False)
        self._admin_recipient = admin_recipient
        self._listeners: list[ProjectionListener] = []
        self._projections = self._derive()
        self._unsubscribe = sync.add_listener(self._on_sync_change)

    def close(self) -> None:
        self._unsubscribe()

    # ---- reads ----

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def projections(self) -> Projections:
        return self._projections

    @property
    def buckets(self) -> DashboardBuckets:
        return self._projections.buckets

    @property
    def filtered(self) -> tuple[Task, ...]:
        return self._projections.filtered

    # ---- view state ----

    def set_search(self, term: str) -> Projections:
        self._state.search_term = term or ""
        return self.refresh()

    def set_status_filter(self, status_filter: str) -> Projections:
        parse_status_filter(status_filter)
        self._state.status_filter = (status_filter or ALL_STATUSES).strip().lower()
        return self.refresh()

    def set_actor(self, actor_id: str) -> Projections:
        self._state.actor_id = actor_id
        return self.refresh()

    def set_view(self, view: str) -> Projections:
        if view not in VIEWS:
            raise ValidationError(f"unknown view: {view!r}")
        self._state.current_view = view
        return self.refresh()

    # ---- derivation ----

    def add_listener(self, listener: ProjectionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def refresh(self) -> Projections:
        self._projections = self._derive()
        for listener in list(self._listeners):
            try:
                listener(self._projections)
            except Exception:
                logger.exception("Projection listener failed")
        return self._projections

    def _on_sync_change(self, kind: EntityKind) -> None:
        self.refresh()

    def _derive(self) -> Projections:
        now = self._clock()
        tables = self._sync.tables
        tasks = self._sync.effective_tasks()
        actor = self._state.actor_id

        recipients = {actor}
        if self._is_admin(actor):
            recipients.add(self._admin_recipient)
        unread = tuple(n for n in tables.notifications if not n.read and n.target_recipient in recipients)

        return Projections(
            tasks=tasks,
            filtered=tuple(filtered_tasks(tasks, self._state.search_term, self._state.status_filter)),
            buckets=dashboard_buckets(tasks, actor, now),
            unread=unread,
            computed_at=now,
            version=tables.version,
        )
