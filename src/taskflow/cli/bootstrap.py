# src/taskflow/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store/sync/lifecycle/notifications/identity).
"""

from __future__ import annotations

import logging

from ..accounts.identity import LocalIdentityProvider
from ..config import get_settings
from ..core.ports import EntityStore
from ..core.state import AppState
from ..notifications.emitter import NotificationEmitter
from ..store.base import StoreClient
from ..store.memory import InMemoryEntityStore
from ..store.sqlite_store import SqliteEntityStore
from ..tasks.lifecycle import TaskLifecycle
from ..tasks.sync import SyncCore
from ..tasks.timestamps import utc_now

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.store_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_backend(settings) -> EntityStore:
    if settings.store_backend == "memory":
        logger.info("Using in-memory store (data is lost on exit).")
        return InMemoryEntityStore()
    return SqliteEntityStore(settings.store_db_path, poll_seconds=settings.store_poll_seconds)


def create_initial_state(*, settings=None, clock=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()
    clock = clock or utc_now

    _ensure_local_dirs(settings)

    backend = create_backend(settings)
    store = StoreClient(backend, timeout_seconds=settings.store_timeout_seconds)
    sync = SyncCore(store, resubscribe_delay_seconds=settings.resubscribe_delay_seconds)
    lifecycle = TaskLifecycle(
        store,
        sync,
        clock=clock,
        admin_email=settings.admin_email,
        optimistic=settings.optimistic_writes,
    )

    return AppState(
        settings=settings,
        backend=backend,
        store=store,
        sync=sync,
        lifecycle=lifecycle,
        notifier=NotificationEmitter(store, admin_recipient=settings.admin_recipient),
        identity=LocalIdentityProvider.from_settings(settings),
        clock=clock,
    )
