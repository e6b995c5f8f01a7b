# src/taskflow/views/derive.py

"""
Pure projections over the task/user tables.

Nothing here caches or mutates; every function recomputes from its inputs, so
a caller may re-derive as often as it likes.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from ..core.errors import ValidationError
from ..tasks.lifecycle import Action, available_actions, is_overdue
from ..tasks.task_models import Task, TaskStatus, User

ALL_STATUSES = "all"

STATUS_LABELS: dict[TaskStatus, str] = {
    TaskStatus.OPEN: "Open",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.IN_REVIEW: "In Review",
    TaskStatus.COMPLETED: "Completed",
    TaskStatus.CLOSED: "Closed",
}


def status_label(status: TaskStatus | str) -> str:
    try:
        return STATUS_LABELS[TaskStatus(status)]
    except ValueError:
        return "Unknown"


def parse_status_filter(raw: str | None) -> TaskStatus | None:
    """Map "all" (or empty) to None and a status value to TaskStatus; reject anything else."""
    value = (raw or ALL_STATUSES).strip().lower()
    if value == ALL_STATUSES:
        return None
    try:
        return TaskStatus(value)
    except ValueError:
        raise ValidationError(f"unknown status filter: {raw!r}") from None


def filtered_tasks(tasks: Sequence[Task], search_term: str = "", status_filter: str = ALL_STATUSES) -> list[Task]:
    """
    Search + status filter, composed with AND, input order preserved.

    The search is a case-insensitive substring match on title or description.
    """
    status = parse_status_filter(status_filter)
    needle = (search_term or "").lower()

    out: list[Task] = []
    for task in tasks:
        if needle and needle not in task.title.lower() and needle not in task.description.lower():
            continue
        if status is not None and task.status is not status:
            continue
        out.append(task)
    return out


@dataclass(slots=True, frozen=True)
class DashboardBuckets:
    assigned_to_me: tuple[Task, ...] = ()
    overdue: tuple[Task, ...] = ()
    created_by_me: tuple[Task, ...] = ()
    completed_by_me: tuple[Task, ...] = ()


def dashboard_buckets(tasks: Iterable[Task], actor_id: str, now: datetime) -> DashboardBuckets:
    tasks = list(tasks)
    assigned = sorted(
        (t for t in tasks if t.assigned_to == actor_id and t.status is not TaskStatus.CLOSED),
        key=lambda t: t.due_at,
    )
    return DashboardBuckets(
        assigned_to_me=tuple(assigned),
        overdue=tuple(t for t in assigned if is_overdue(t, now)),
        created_by_me=tuple(
            t for t in tasks if t.created_by == actor_id and t.status is not TaskStatus.CLOSED
        ),
        completed_by_me=tuple(
            t for t in tasks if t.created_by == actor_id and t.status is TaskStatus.CLOSED
        ),
    )


def assignable_users(users: Iterable[User]) -> list[User]:
    return [u for u in users if u.approved]


def reassign_candidates(task: Task, users: Iterable[User]) -> list[User]:
    return [u for u in assignable_users(users) if u.id != task.assigned_to]


@dataclass(slots=True, frozen=True)
class TaskDetail:
    task: Task
    assignee: User | None
    creator: User | None
    is_assigned_to_me: bool
    is_created_by_me: bool
    overdue: bool
    actions: tuple[Action, ...] = field(default_factory=tuple)


def task_detail(
    task: Task,
    users: Mapping[str, User],
    actor_id: str,
    now: datetime,
    *,
    is_admin: bool = False,
) -> TaskDetail:
    return TaskDetail(
        task=task,
        assignee=users.get(task.assigned_to),
        creator=users.get(task.created_by),
        is_assigned_to_me=task.assigned_to == actor_id,
        is_created_by_me=task.created_by == actor_id,
        overdue=is_overdue(task, now),
        actions=tuple(available_actions(task, actor_id, is_admin=is_admin)),
    )
