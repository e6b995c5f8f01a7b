# tests/test_sync.py

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest

from taskflow.core.ports import EntityKind
from taskflow.store.base import StoreClient
from taskflow.store.memory import InMemoryEntityStore
from taskflow.tasks.lifecycle import TaskLifecycle
from taskflow.tasks.sync import SyncCore
from taskflow.tasks.task_models import Comment, Task, TaskStatus

from .fakes import T0, FakeClock, FlakyFeedStore, running, task_record, user_record, wait_until


def _ids(tasks) -> list[str]:
    return [t.id for t in tasks]


def test_snapshot_replaces_table_wholesale(sync) -> None:
    sync.apply_snapshot(EntityKind.TASK, [task_record("a"), task_record("b")])
    before = sync.tables

    sync.apply_snapshot(EntityKind.TASK, [task_record("b", title="Renamed")])

    assert _ids(sync.tables.tasks) == ["b"]
    assert sync.task("a") is None
    assert sync.task("b").title == "Renamed"
    # The previous Tables object is untouched.
    assert _ids(before.tasks) == ["b", "a"]
    assert before.task_index["b"].title == "Write report"
    assert sync.tables.version == before.version + 1


def test_tasks_are_ordered_newest_first_with_pending_on_top(sync) -> None:
    sync.apply_snapshot(
        EntityKind.TASK,
        [
            task_record("old", created_at=T0 - timedelta(days=3)),
            task_record("p1", created_at=None),
            task_record("new", created_at=T0),
            task_record("p2", created_at=None),
            task_record("mid", created_at=T0 - timedelta(days=1)),
        ],
    )
    assert _ids(sync.tables.tasks) == ["p1", "p2", "new", "mid", "old"]


def test_malformed_records_are_skipped(sync, caplog) -> None:
    sync.apply_snapshot(
        EntityKind.TASK,
        [
            task_record("ok"),
            task_record("bad", status="archived"),
            task_record("nodue", due_at=None),
            task_record("far", due_at=1e20),
            task_record("inf", created_at=float("inf")),
            task_record("huge", due_at=10**30),
        ],
    )
    assert _ids(sync.tables.tasks) == ["ok"]
    assert "Skipping malformed" in caplog.text


def test_listeners_run_after_swap(sync) -> None:
    seen: list[tuple[EntityKind, list[str]]] = []
    unsubscribe = sync.add_listener(lambda kind: seen.append((kind, _ids(sync.tables.tasks))))

    sync.apply_snapshot(EntityKind.TASK, [task_record("a")])
    sync.apply_snapshot(EntityKind.USER, [user_record("u1", "Alice")])
    unsubscribe()
    sync.apply_snapshot(EntityKind.TASK, [])

    assert seen == [(EntityKind.TASK, ["a"]), (EntityKind.USER, ["a"])]


def test_shadow_overlay_until_confirmed(sync, clock) -> None:
    sync.apply_snapshot(EntityKind.TASK, [task_record("a")])
    base = sync.task("a")
    optimistic = replace(base, status=TaskStatus.IN_PROGRESS, updated_at=clock())

    write = sync.stage(base, optimistic, ("status",))
    assert sync.effective_task("a").status is TaskStatus.IN_PROGRESS
    assert sync.task("a").status is TaskStatus.OPEN
    assert _ids(sync.effective_tasks()) == ["a"]

    # An unrelated snapshot does not confirm it.
    sync.apply_snapshot(EntityKind.TASK, [task_record("a", title="x")])
    assert sync.pending_writes("a") == [write]

    sync.apply_snapshot(EntityKind.TASK, [task_record("a", status="in_progress", updatedAt=clock())])
    assert sync.pending_writes() == []
    assert sync.effective_task("a").status is TaskStatus.IN_PROGRESS


def test_acked_write_yields_to_a_newer_concurrent_write(sync, clock) -> None:
    sync.apply_snapshot(EntityKind.TASK, [task_record("a")])
    base = sync.task("a")
    write = sync.stage(base, replace(base, assigned_to="u3"), ("assigned_to",))
    sync.ack(write)
    assert sync.pending_writes() == [write]

    # Someone else's write landed after ours: the authoritative value wins.
    clock.advance(seconds=1)
    sync.apply_snapshot(EntityKind.TASK, [task_record("a", assignedTo="u2", updatedAt=clock())])
    assert sync.pending_writes() == []
    assert sync.effective_task("a").assigned_to == "u2"


def test_discard_restores_authoritative_view(sync) -> None:
    sync.apply_snapshot(EntityKind.TASK, [task_record("a")])
    base = sync.task("a")
    write = sync.stage(base, replace(base, status=TaskStatus.IN_PROGRESS), ("status",))
    sync.discard(write)
    assert sync.effective_task("a") is sync.task("a")


def test_stacked_writes_on_different_fields_all_show(sync, clock) -> None:
    sync.apply_snapshot(EntityKind.TASK, [task_record("a")])
    base = sync.task("a")
    note = Comment(id="c1", author_id="u1", author_name="Alice", text="on it", posted_at=clock())
    sync.stage(base, replace(base, comments=(note,), updated_at=clock()), ("comments",))

    clock.advance(seconds=1)
    sync.stage(
        base,
        replace(base, assigned_to="u3", assignment_history=("u1", "u3"), updated_at=clock()),
        ("assigned_to", "assignment_history"),
    )

    shown = sync.effective_task("a")
    assert shown.comments == (note,)
    assert shown.assigned_to == "u3"
    assert shown.assignment_history == ("u1", "u3")
    assert shown.updated_at == clock()
    assert sync.effective_tasks() == (shown,)
    assert sync.task("a").assigned_to == "u1"


def test_effective_task_is_none_once_the_task_is_gone(sync) -> None:
    sync.apply_snapshot(EntityKind.TASK, [task_record("a")])
    base = sync.task("a")
    sync.stage(base, replace(base, status=TaskStatus.IN_PROGRESS), ("status",))

    sync.apply_snapshot(EntityKind.TASK, [])
    assert sync.effective_task("a") is None
    assert sync.effective_tasks() == ()


@pytest.mark.asyncio
async def test_live_feed_updates_and_stop_halts_updates(backend, store) -> None:
    sync = SyncCore(store, resubscribe_delay_seconds=0.01)
    async with running(sync):
        assert _ids(sync.tables.tasks) == []
        assert len(sync.tables.users) == 5

        backend.seed(EntityKind.TASK, task_record("a"))
        await wait_until(lambda: sync.task("a") is not None)

    assert not sync.running
    assert backend.subscriber_count(EntityKind.TASK) == 0

    version = sync.tables.version
    backend.seed(EntityKind.TASK, task_record("b"))
    await asyncio.sleep(0.02)
    assert sync.task("b") is None
    assert sync.tables.version == version


@pytest.mark.asyncio
async def test_snapshots_stream_yields_current_then_changes(backend, sync) -> None:
    backend.seed(EntityKind.TASK, task_record("a"))
    async with running(sync):
        stream = sync.snapshots(EntityKind.TASK)
        first = await asyncio.wait_for(anext(stream), 1.0)
        assert _ids(first) == ["a"]

        backend.seed(EntityKind.TASK, task_record("b", created_at=T0))
        second = await asyncio.wait_for(anext(stream), 1.0)
        assert _ids(second) == ["b", "a"]
        await stream.aclose()


@pytest.mark.asyncio
async def test_slow_snapshot_reader_gets_only_the_newest(sync) -> None:
    sync.apply_snapshot(EntityKind.TASK, [task_record("a")])
    stream = sync.snapshots(EntityKind.TASK)
    first = await asyncio.wait_for(anext(stream), 1.0)
    assert _ids(first) == ["a"]

    sync.apply_snapshot(EntityKind.TASK, [task_record("b")])
    sync.apply_snapshot(EntityKind.TASK, [task_record("c")])
    sync.apply_snapshot(EntityKind.TASK, [task_record("d")])

    latest = await asyncio.wait_for(anext(stream), 1.0)
    assert _ids(latest) == ["d"]
    with pytest.raises(TimeoutError):
        await asyncio.wait_for(anext(stream), 0.05)
    await stream.aclose()


@pytest.mark.asyncio
async def test_own_write_is_pending_until_the_server_timestamp_lands() -> None:
    clock = FakeClock()
    backend = InMemoryEntityStore(clock=clock, pending_writes=True)
    store = StoreClient(backend)
    sync = SyncCore(store)
    lifecycle = TaskLifecycle(store, sync, clock=clock)

    pending_seen: list[bool] = []

    def on_change(kind: EntityKind) -> None:
        if kind is EntityKind.TASK:
            pending_seen.extend(t.is_pending for t in sync.tables.tasks)

    sync.add_listener(on_change)

    async with running(sync):
        task_id = await lifecycle.create(
            title="t", description="d", assigned_to="u1", due_at=T0, created_by="u2"
        )
        await wait_until(lambda: sync.task(task_id) is not None and not sync.task(task_id).is_pending)

    assert True in pending_seen
    assert pending_seen[-1] is False
    assert sync.task(task_id).created_at == T0


@pytest.mark.asyncio
async def test_failed_feed_is_resubscribed(backend) -> None:
    backend.seed(EntityKind.TASK, task_record("a"))
    flaky = FlakyFeedStore(backend, failures=1)
    sync = SyncCore(StoreClient(flaky), resubscribe_delay_seconds=0.01)

    async with running(sync):
        assert sync.task("a") is not None

    assert flaky.subscribe_calls.count(EntityKind.TASK) == 2


@pytest.mark.asyncio
async def test_wait_until_ready_times_out_without_feeds(sync) -> None:
    with pytest.raises(TimeoutError):
        await sync.wait_until_ready(timeout=0.02)


def test_effective_tasks_without_shadow_is_the_table(sync) -> None:
    sync.apply_snapshot(EntityKind.TASK, [task_record("a")])
    assert sync.effective_tasks() is sync.tables.tasks
    assert isinstance(sync.tables.tasks[0], Task)
