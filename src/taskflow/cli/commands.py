# src/taskflow/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from typing import TypeVar, cast

from ..core.errors import TaskflowError, TaskNotFound, ValidationError
from ..core.state import AppState
from ..notifications.emitter import unread_notifications
from ..tasks.lifecycle import is_overdue
from ..tasks.task_models import Notification, Task
from ..views.derive import (
    TaskDetail,
    assignable_users,
    reassign_candidates,
    status_label,
    task_detail,
)

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

T = TypeVar("T")

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console connector (/help, /dash, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str, emit: CommandEmitter | None = None) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Lifecycle rejections (validation, transition, permission, store) become the
        reply text; anything else propagates.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                return cast(CommandHandler3, handler)(state, args, emit)
            return cast(CommandHandler2, handler)(state, args)
        except TaskflowError as e:
            logger.debug("/%s rejected: %s", name, e)
            return f"{type(e).__name__}: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def _call(state: AppState, factory: Callable[[], Awaitable[T]]) -> T:
    if state.runner is None:
        raise RuntimeError("core is not running")
    return state.runner.call(factory)


def _on_core(state: AppState, fn: Callable[[], T]) -> T:
    """Read core state on the loop thread that owns it."""
    if state.runner is None:
        return fn()
    return state.runner.call_sync(fn)


def _actor(state: AppState) -> str:
    if state.actor_id is None:
        raise ValidationError("not signed in")
    return state.actor_id


def _find_task(tasks: Iterable[Task], ref: str) -> Task:
    """Accept a full task id or an unambiguous prefix of one."""
    tasks = list(tasks)
    exact = [t for t in tasks if t.id == ref]
    if exact:
        return exact[0]
    matches = [t for t in tasks if t.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise ValidationError(f"task id prefix {ref!r} is ambiguous")
    raise TaskNotFound(ref)


def _resolve_task(state: AppState, ref: str) -> Task:
    return _on_core(state, lambda: _find_task(state.sync.effective_tasks(), ref))


def _fmt_time(value: datetime | None) -> str:
    if value is None:
        return "(pending)"
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def _fmt_task(task: Task, now: datetime) -> str:
    flag = " !overdue" if is_overdue(task, now) else ""
    comments = f" [{len(task.comments)} comments]" if task.comments else ""
    return (
        f"{task.id[:8]}  {status_label(task.status):<12} due {_fmt_time(task.due_at)}{flag}  "
        f"{task.title}{comments}"
    )


def _fmt_list(title: str, tasks, now: datetime) -> list[str]:
    lines = [f"{title} ({len(tasks)}):"]
    lines.extend(f"  {_fmt_task(t, now)}" for t in tasks)
    return lines


# ---- commands ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_whoami(state: AppState, args: list[str]) -> str:
    user = state.user
    if user is None:
        return "Not signed in."
    admin = " (admin)" if _on_core(state, lambda: state.lifecycle.is_admin(user.id)) else ""
    approved = "approved" if user.approved else "waiting for approval"
    return f"{user.name} <{user.email or '-'}> id={user.id}{admin}, {approved}"


def cmd_dash(state: AppState, args: list[str]) -> str:
    if state.view is None:
        return "Dashboard is not available yet."
    p = _on_core(state, state.view.refresh)
    now = state.clock()
    lines: list[str] = []
    lines += _fmt_list("Assigned to me", p.buckets.assigned_to_me, now)
    lines += _fmt_list("Overdue", p.buckets.overdue, now)
    lines += _fmt_list("Created by me", p.buckets.created_by_me, now)
    lines += _fmt_list("Closed (created by me)", p.buckets.completed_by_me, now)
    if p.unread:
        lines.append(f"Unread notifications: {len(p.unread)} (use /notes)")
    return "\n".join(lines)


def cmd_tasks(state: AppState, args: list[str]) -> str:
    """
    /tasks            -> list with the current search/filter
    /tasks <status>   -> set status filter (or "all") and list
    """
    if state.view is None or state.runner is None:
        return "Task list is not available yet."
    view = state.view
    if args:
        state.runner.call_sync(lambda: view.set_status_filter(args[0]))
    p = state.runner.call_sync(view.refresh)
    header = f"Tasks (search={view.state.search_term!r}, status={view.state.status_filter})"
    return "\n".join(_fmt_list(header, p.filtered, state.clock()))


def cmd_search(state: AppState, args: list[str]) -> str:
    """/search <text> (no text clears the search)"""
    if state.view is None or state.runner is None:
        return "Task list is not available yet."
    view = state.view
    term = " ".join(args)
    state.runner.call_sync(lambda: view.set_search(term))
    return cmd_tasks(state, [])


def cmd_show(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /show <task-id>"
    actor = _actor(state)
    now = state.clock()

    def read() -> tuple[Task, TaskDetail]:
        task = _find_task(state.sync.effective_tasks(), args[0])
        detail = task_detail(
            task,
            state.sync.tables.user_index,
            actor,
            now,
            is_admin=state.lifecycle.is_admin(actor),
        )
        return task, detail

    task, detail = _on_core(state, read)
    assignee = detail.assignee.name if detail.assignee else task.assigned_to
    creator = detail.creator.name if detail.creator else task.created_by
    lines = [
        f"{task.title} [{status_label(task.status)}]",
        f"  id: {task.id}",
        f"  {task.description}",
        f"  assignee: {assignee}   creator: {creator}",
        f"  due: {_fmt_time(task.due_at)}{'  (OVERDUE)' if detail.overdue else ''}",
        f"  history: {' -> '.join(task.assignment_history)}",
        f"  you can: {', '.join(a.value for a in detail.actions) or '-'}",
    ]
    if task.comments:
        lines.append("  comments:")
        for c in task.comments:
            lines.append(f"    [{_fmt_time(c.posted_at)}] {c.author_name or c.author_id}: {c.text}")
    return "\n".join(lines)


def cmd_create(state: AppState, args: list[str]) -> str:
    """/create <title> | <description> | <assignee-id> | <due, e.g. 2026-05-01T17:00>"""
    parts = [p.strip() for p in " ".join(args).split("|")]
    if len(parts) != 4:
        return "Usage: /create <title> | <description> | <assignee-id> | <due YYYY-MM-DDTHH:MM>"
    title, description, assignee, due = parts
    due_value: datetime | str = due
    try:
        # Local wall time from the console, like a date/time form field.
        parsed = datetime.fromisoformat(due)
        due_value = parsed.astimezone() if parsed.tzinfo is None else parsed
    except ValueError:
        pass
    actor = _actor(state)
    task_id = _call(
        state,
        lambda: state.lifecycle.create(
            title=title,
            description=description,
            assigned_to=assignee,
            due_at=due_value,
            created_by=actor,
        ),
    )
    return f"Created task {task_id}."


def _transition_cmd(op_name: str, verb: str) -> CommandHandler2:
    def handler(state: AppState, args: list[str]) -> str:
        if not args:
            return f"Usage: /{verb} <task-id>"
        task = _resolve_task(state, args[0])
        actor = _actor(state)
        op = getattr(state.lifecycle, op_name)
        result = _call(state, lambda: op(task.id, actor))
        return f"Task {task.id[:8]} is now {status_label(result.status)}."

    handler.__name__ = f"cmd_{verb}"
    return handler


def cmd_reassign(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /reassign <task-id> <user-id>"
    task = _resolve_task(state, args[0])
    actor = _actor(state)
    new_assignee = args[1]
    result = _call(state, lambda: state.lifecycle.reassign(task.id, actor, new_assignee))
    return f"Task {task.id[:8]} reassigned to {result.assigned_to}."


def cmd_comment(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /comment <task-id> <text>"
    task = _resolve_task(state, args[0])
    actor = _actor(state)
    name = state.user.name if state.user else actor
    text = " ".join(args[1:])
    comment = _call(state, lambda: state.lifecycle.add_comment(task.id, actor, name, text))
    return f"Comment {comment.id} added."


def cmd_users(state: AppState, args: list[str]) -> str:
    """
    /users              -> approved users (assignable)
    /users <task-id>    -> who the task can be reassigned to
    """
    tables = _on_core(state, lambda: state.sync.tables)
    users = tables.users
    if args:
        task = _resolve_task(state, args[0])
        chosen = reassign_candidates(task, users)
        title = f"Reassign candidates for {task.id[:8]}"
    else:
        chosen = assignable_users(users)
        title = "Users"
    lines = [f"{title} ({len(chosen)}):"]
    lines.extend(f"  {u.id}  {u.name}" for u in chosen)
    pending = [u for u in users if not u.approved]
    if pending and not args:
        lines.append(f"Waiting for approval: {', '.join(u.name or u.id for u in pending)}")
    return "\n".join(lines)


def cmd_notes(state: AppState, args: list[str]) -> str:
    actor = _actor(state)

    def read() -> list[Notification]:
        notes = state.sync.tables.notifications
        recipients = [actor]
        if state.lifecycle.is_admin(actor):
            recipients.append(state.notifier.admin_recipient)
        return [n for r in recipients for n in unread_notifications(notes, r)]

    unread = _on_core(state, read)
    if not unread:
        return "No unread notifications."
    lines = [f"Unread notifications ({len(unread)}):"]
    lines.extend(f"  [{_fmt_time(n.created_at)}] {n.message}" for n in unread)
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("whoami", cmd_whoami, help_text="Show the signed-in user.")
registry.register("dash", cmd_dash, help_text="Dashboard buckets (assigned/overdue/created/closed).")
registry.register("tasks", cmd_tasks, help_text="List tasks: /tasks [status|all].", aliases=["ls"])
registry.register("search", cmd_search, help_text="Search title/description: /search <text>.")
registry.register("filter", cmd_tasks, help_text="Set status filter: /filter <status|all>.")
registry.register("show", cmd_show, help_text="Task details: /show <task-id>.")
registry.register("create", cmd_create, help_text="/create <title> | <description> | <assignee> | <due>.")
registry.register("begin", _transition_cmd("begin_work", "begin"), help_text="Start work (assignee).")
registry.register(
    "submit", _transition_cmd("submit_for_review", "submit"), help_text="Submit for review (assignee)."
)
registry.register("approve", _transition_cmd("approve", "approve"), help_text="Approve review (creator).")
registry.register("reject", _transition_cmd("reject", "reject"), help_text="Send back to work (creator).")
registry.register("close", _transition_cmd("close", "close"), help_text="Close a task (admin).")
registry.register("reassign", cmd_reassign, help_text="/reassign <task-id> <user-id>.")
registry.register("comment", cmd_comment, help_text="/comment <task-id> <text>.")
registry.register("users", cmd_users, help_text="List users: /users [task-id].")
registry.register("notes", cmd_notes, help_text="Show unread notifications.")
