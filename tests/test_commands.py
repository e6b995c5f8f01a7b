# tests/test_commands.py

from __future__ import annotations

import re
import time
from types import SimpleNamespace

import pytest

from taskflow.cli.background import start_core_in_background
from taskflow.cli.bootstrap import create_initial_state
from taskflow.cli.commands import CommandRegistry, registry
from taskflow.core.errors import Forbidden
from taskflow.core.ports import EntityKind
from taskflow.tasks.task_models import TaskStatus, User

from .conftest import ADMIN_EMAIL
from .fakes import FakeClock, InlineRunner, LoopOnly, task_record, user_record


def test_command_registry_routes_2_and_3_params() -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}

    def h2(state, args):
        called["h2"] += 1
        return "h2 " + ",".join(args)

    def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a", aliases=["aa"])
    reg.register("b", h3, "b")
    notes: list[str] = []

    assert reg.handle(None, "/a x y") == "h2 x,y"
    assert reg.handle(None, "/AA") == "h2 "
    assert reg.handle(None, "/b", emit=notes.append) == "h3"
    assert called == {"h2": 2, "h3": 1}
    assert notes == ["note"]
    assert "/a - a" in reg.build_help()


def test_command_registry_unknown_and_non_command() -> None:
    reg = CommandRegistry()
    assert reg.handle(None, "hello") is None
    assert "Empty command" in (reg.handle(None, "/") or "")
    assert "Unknown command" in (reg.handle(None, "/nope") or "")


def test_lifecycle_errors_become_replies() -> None:
    reg = CommandRegistry()

    def denied(state, args):
        raise Forbidden("close", "u1")

    def broken(state, args):
        raise RuntimeError("boom")

    reg.register("close", denied, "close")
    reg.register("broken", broken, "broken")

    assert reg.handle(None, "/close t1") == "Forbidden: actor 'u1' may not close this task"
    with pytest.raises(RuntimeError):
        reg.handle(None, "/broken")


def _wait(predicate, timeout: float = 3.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.01)


def test_console_commands_drive_the_core(settings) -> None:
    settings.admin_email = settings.user_email
    state = create_initial_state(settings=settings, clock=FakeClock())
    runner = start_core_in_background(state, startup_timeout=5.0)
    try:
        assert state.user is not None and state.user.approved
        _wait(lambda: state.sync.user("u-me") is not None)
        assert "(admin)" in registry.handle(state, "/whoami")

        reply = registry.handle(state, "/create Fix login | Users cannot sign in | u-me | 2026-03-01T11:00")
        m = re.match(r"Created task (\S+)\.", reply or "")
        assert m, reply
        task_id = m.group(1)
        _wait(lambda: state.sync.task(task_id) is not None)

        assert task_id[:8] in registry.handle(state, "/dash")
        assert "Fix login" in registry.handle(state, "/search login")
        assert "Fix login" not in registry.handle(state, "/filter closed")
        registry.handle(state, "/filter all")

        for cmd, status in (
            ("begin", TaskStatus.IN_PROGRESS),
            ("submit", TaskStatus.IN_REVIEW),
            ("approve", TaskStatus.COMPLETED),
            ("close", TaskStatus.CLOSED),
        ):
            reply = registry.handle(state, f"/{cmd} {task_id[:6]}")
            assert "is now" in reply, reply
            _wait(lambda s=status: state.sync.task(task_id).status is s)

        assert registry.handle(state, f"/begin {task_id}").startswith("InvalidTransition")
        assert "Comment" in registry.handle(state, f"/comment {task_id} all done")
        _wait(lambda: len(state.sync.task(task_id).comments) == 1)

        shown = registry.handle(state, f"/show {task_id}")
        assert "[Closed]" in shown
        assert "all done" in shown
        assert registry.handle(state, "/show zzz").startswith("TaskNotFound")
        assert "Me" in registry.handle(state, "/users")
        assert registry.handle(state, "/notes") == "No unread notifications."
        assert state.backend.get(EntityKind.USER, "u-me")["approved"] is True
    finally:
        runner.stop()
        runner.join(timeout=5.0)

    assert not runner.thread.is_alive()
    assert not state.sync.running


def test_console_reads_go_through_the_core_loop(sync, lifecycle, notifier, clock) -> None:
    sync.apply_snapshot(
        EntityKind.USER,
        [user_record("u1", "Alice"), user_record("boss", "Boss", email=ADMIN_EMAIL)],
    )
    sync.apply_snapshot(EntityKind.TASK, [task_record("t1", assigned_to="u1", created_by="boss")])
    sync.apply_snapshot(
        EntityKind.NOTIFICATION,
        [{"id": "n1", "kind": "user_registered", "message": "Dave wants in", "targetRecipient": "admin"}],
    )
    runner = InlineRunner()
    boss = sync.user("boss")
    state = SimpleNamespace(
        sync=LoopOnly(sync, runner),
        lifecycle=LoopOnly(lifecycle, runner),
        notifier=LoopOnly(notifier, runner),
        user=User(id=boss.id, name=boss.name, approved=True, email=boss.email),
        actor_id="boss",
        clock=clock,
        runner=runner,
        view=None,
    )

    assert "(admin)" in registry.handle(state, "/whoami")
    shown = registry.handle(state, "/show t1")
    assert "assignee: Alice   creator: Boss" in shown
    assert "close" in shown
    assert registry.handle(state, "/show nope").startswith("TaskNotFound")
    assert "Alice" in registry.handle(state, "/users")
    assert "Reassign candidates for t1" in registry.handle(state, "/users t1")
    assert "Dave wants in" in registry.handle(state, "/notes")
    assert runner.calls >= 6
    assert not runner.inside
