# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskflow.core.ports import EntityKind
from taskflow.notifications.emitter import NotificationEmitter
from taskflow.store.base import StoreClient
from taskflow.store.memory import InMemoryEntityStore
from taskflow.tasks.lifecycle import TaskLifecycle
from taskflow.tasks.sync import SyncCore

from .fakes import FakeClock, user_record

ADMIN_EMAIL = "boss@example.com"


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with bootstrap and the core.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taskflow-test",
        log_level="DEBUG",
        data_dir=tmp_path / "data",
        store_db_path=tmp_path / "data" / "store.sqlite3",
        store_backend="memory",
        store_poll_seconds=0.01,
        store_timeout_seconds=2.0,
        resubscribe_delay_seconds=0.01,
        admin_email=ADMIN_EMAIL,
        admin_recipient="admin",
        optimistic_writes=True,
        view_refresh_seconds=30.0,
        console_enabled=False,
        user_id="u-me",
        user_email="me@example.com",
        user_name="Me",
        user_avatar_uri="",
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def backend(clock: FakeClock) -> InMemoryEntityStore:
    """
    In-memory store seeded with a small team:
    u1 alice, u2 bob, u3 carol (approved), u4 dave (waiting), boss (admin).
    """
    store = InMemoryEntityStore(clock=clock)
    store.seed(EntityKind.USER, user_record("u1", "Alice", email="alice@example.com"))
    store.seed(EntityKind.USER, user_record("u2", "Bob", email="bob@example.com"))
    store.seed(EntityKind.USER, user_record("u3", "Carol", email="carol@example.com"))
    store.seed(EntityKind.USER, user_record("u4", "Dave", email="dave@example.com", approved=False))
    store.seed(EntityKind.USER, user_record("boss", "Boss", email=ADMIN_EMAIL))
    return store


@pytest.fixture()
def store(backend: InMemoryEntityStore) -> StoreClient:
    return StoreClient(backend, timeout_seconds=1.0)


@pytest.fixture()
def sync(store: StoreClient) -> SyncCore:
    return SyncCore(store, resubscribe_delay_seconds=0.01)


@pytest.fixture()
def lifecycle(store: StoreClient, sync: SyncCore, clock: FakeClock) -> TaskLifecycle:
    return TaskLifecycle(store, sync, clock=clock, admin_email=ADMIN_EMAIL)


@pytest.fixture()
def notifier(store: StoreClient) -> NotificationEmitter:
    return NotificationEmitter(store, admin_recipient="admin")
