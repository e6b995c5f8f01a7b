# src/taskflow/tasks/lifecycle.py

from __future__ import annotations

"""
Task lifecycle engine.

Two independent pieces:
- TRANSITIONS: which status an action moves a task from/to, and which role may do it;
- authorize(): whether an actor holds that role on a given task.

Operations validate locally first (no side effects on rejection), then write to
the store. The result comes back through the sync feed; nothing here touches the
authoritative tables.

Append-only fields (comments, assignmentHistory) are written as a full
replacement built from the latest authoritative snapshot. Two writers appending
from the same stale snapshot race, and the last write wins.
"""

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum

from ..core.errors import (
    Forbidden,
    InvalidAssignee,
    InvalidTransition,
    StoreUnavailable,
    TaskNotFound,
    ValidationError,
)
from ..core.ports import Clock, EntityKind, RawRecord
from ..store.base import SERVER_TIMESTAMP, StoreClient
from .sync import ShadowWrite, SyncCore
from .task_models import Comment, Task, TaskStatus
from .timestamps import normalize_timestamp, to_wire, utc_now

logger = logging.getLogger(__name__)


class Action(StrEnum):
    BEGIN = "begin"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    CLOSE = "close"
    REASSIGN = "reassign"
    COMMENT = "comment"


class Role(StrEnum):
    ASSIGNEE = "assignee"
    CREATOR = "creator"
    PARTICIPANT = "participant"  # creator or assignee
    ADMIN = "admin"
    ANYONE = "anyone"


@dataclass(slots=True, frozen=True)
class Transition:
    sources: frozenset[TaskStatus]
    target: TaskStatus
    role: Role


_NOT_CLOSED = frozenset(s for s in TaskStatus if s is not TaskStatus.CLOSED)

TRANSITIONS: dict[Action, Transition] = {
    Action.BEGIN: Transition(frozenset({TaskStatus.OPEN}), TaskStatus.IN_PROGRESS, Role.ASSIGNEE),
    Action.SUBMIT: Transition(frozenset({TaskStatus.IN_PROGRESS}), TaskStatus.IN_REVIEW, Role.ASSIGNEE),
    Action.APPROVE: Transition(frozenset({TaskStatus.IN_REVIEW}), TaskStatus.COMPLETED, Role.CREATOR),
    Action.REJECT: Transition(frozenset({TaskStatus.IN_REVIEW}), TaskStatus.IN_PROGRESS, Role.CREATOR),
    # Administrative close: from any live status.
    Action.CLOSE: Transition(_NOT_CLOSED, TaskStatus.CLOSED, Role.ADMIN),
}

# Non-transition operations: who may perform them.
OPERATION_ROLES: dict[Action, Role] = {
    Action.REASSIGN: Role.PARTICIPANT,
    Action.COMMENT: Role.ANYONE,
}


def required_role(action: Action) -> Role:
    transition = TRANSITIONS.get(action)
    return transition.role if transition is not None else OPERATION_ROLES[action]


def authorize(actor_id: str, task: Task, action: Action, *, is_admin: bool = False) -> bool:
    """Return True when actor_id holds the role `action` requires on `task`."""
    if not actor_id:
        return False
    role = required_role(action)
    if role is Role.ANYONE:
        return True
    if role is Role.ADMIN:
        return is_admin
    if role is Role.ASSIGNEE:
        return actor_id == task.assigned_to
    if role is Role.CREATOR:
        return actor_id == task.created_by
    return actor_id in (task.assigned_to, task.created_by)


def can_transition(task: Task, action: Action) -> bool:
    transition = TRANSITIONS.get(action)
    return transition is not None and task.status in transition.sources


def available_actions(task: Task, actor_id: str, *, is_admin: bool = False) -> list[Action]:
    """Actions the actor may perform on task right now, in workflow order."""
    out: list[Action] = []
    for action in Action:
        if action in TRANSITIONS:
            if can_transition(task, action) and authorize(actor_id, task, action, is_admin=is_admin):
                out.append(action)
        elif action is Action.REASSIGN:
            if task.status is not TaskStatus.CLOSED and authorize(actor_id, task, action):
                out.append(action)
        else:
            out.append(action)
    return out


def is_overdue(task: Task, now: datetime) -> bool:
    return task.due_at < now


def new_comment_id(now: datetime) -> str:
    """Time-derived id, unique within a task even for comments in the same millisecond."""
    return f"{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:6]}"


def _clean(value: str | None) -> str:
    return (value or "").strip()


class TaskLifecycle:
    def __init__(
        self,
        store: StoreClient,
        sync: SyncCore,
        *,
        clock: Clock | None = None,
        admin_email: str = "",
        optimistic: bool = True,
    ) -> None:
        self._store = store
        self._sync = sync
        self._clock = clock or utc_now
        self._admin_email = admin_email.strip().lower()
        self._optimistic = optimistic

    # ---- helpers ----

    def is_admin(self, actor_id: str) -> bool:
        if not self._admin_email:
            return False
        user = self._sync.user(actor_id)
        return user is not None and user.email.strip().lower() == self._admin_email

    def _get_task(self, task_id: str) -> Task:
        task = self._sync.task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    def available_actions(self, task: Task, actor_id: str) -> list[Action]:
        return available_actions(task, actor_id, is_admin=self.is_admin(actor_id))

    async def _write(self, base: Task, patch: RawRecord, optimistic: Task, fields: Iterable[str]) -> None:
        write: ShadowWrite | None = None
        if self._optimistic:
            write = self._sync.stage(base, optimistic, fields)
        try:
            await self._store.update(EntityKind.TASK, base.id, patch)
        except StoreUnavailable:
            if write is not None:
                self._sync.discard(write)
            logger.warning("Task %s update failed; optimistic change rolled back", base.id)
            raise
        if write is not None:
            self._sync.ack(write)

    # ---- creation ----

    async def create(
        self,
        *,
        title: str,
        description: str,
        assigned_to: str,
        due_at: datetime | str | None,
        created_by: str,
    ) -> str:
        """Create an open task and return the store-generated id."""
        title_s = _clean(title)
        description_s = _clean(description)
        assigned_s = _clean(assigned_to)
        creator_s = _clean(created_by)

        missing = [
            name
            for name, val in (
                ("title", title_s),
                ("description", description_s),
                ("assigned_to", assigned_s),
                ("created_by", creator_s),
            )
            if not val
        ]
        if due_at is None or (isinstance(due_at, str) and not due_at.strip()):
            missing.append("due_at")
        if missing:
            raise ValidationError(f"missing required field(s): {', '.join(missing)}")

        try:
            due = normalize_timestamp(due_at)
        except ValueError as e:
            raise ValidationError(f"invalid due_at: {e}") from e
        if due is None:
            raise ValidationError("missing required field(s): due_at")

        record: RawRecord = {
            "title": title_s,
            "description": description_s,
            "assignedTo": assigned_s,
            "createdBy": creator_s,
            "status": TaskStatus.OPEN.value,
            "dueAt": to_wire(due),
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
            "assignmentHistory": [assigned_s],
            "comments": [],
        }
        task_id = await self._store.create(EntityKind.TASK, record)
        logger.info("Task created id=%s assigned_to=%s created_by=%s", task_id, assigned_s, creator_s)
        return task_id

    # ---- status transitions ----

    def _check_transition(self, task: Task, action: Action, actor_id: str) -> Transition:
        transition = TRANSITIONS[action]
        if task.status is TaskStatus.CLOSED or task.status not in transition.sources:
            raise InvalidTransition(action.value, task.status.value)
        if not authorize(actor_id, task, action, is_admin=self.is_admin(actor_id)):
            raise Forbidden(action.value, actor_id)
        return transition

    async def _transition(self, task_id: str, actor_id: str, action: Action) -> Task:
        task = self._get_task(task_id)
        transition = self._check_transition(task, action, _clean(actor_id))

        now = self._clock()
        optimistic = replace(task, status=transition.target, updated_at=now)
        patch = {"status": transition.target.value, "updatedAt": SERVER_TIMESTAMP}
        await self._write(task, patch, optimistic, ("status",))
        logger.info(
            "Task %s %s -> %s by %s", task_id, task.status.value, transition.target.value, actor_id
        )
        return optimistic

    async def begin_work(self, task_id: str, actor_id: str) -> Task:
        return await self._transition(task_id, actor_id, Action.BEGIN)

    async def submit_for_review(self, task_id: str, actor_id: str) -> Task:
        return await self._transition(task_id, actor_id, Action.SUBMIT)

    async def approve(self, task_id: str, actor_id: str) -> Task:
        return await self._transition(task_id, actor_id, Action.APPROVE)

    async def reject(self, task_id: str, actor_id: str) -> Task:
        return await self._transition(task_id, actor_id, Action.REJECT)

    async def close(self, task_id: str, actor_id: str) -> Task:
        return await self._transition(task_id, actor_id, Action.CLOSE)

    # ---- append-only fields ----

    async def reassign(self, task_id: str, actor_id: str, new_assignee_id: str) -> Task:
        task = self._get_task(task_id)
        actor = _clean(actor_id)
        new_assignee = _clean(new_assignee_id)

        if task.status is TaskStatus.CLOSED:
            raise InvalidTransition(Action.REASSIGN.value, task.status.value)
        if not authorize(actor, task, Action.REASSIGN):
            raise Forbidden(Action.REASSIGN.value, actor)
        if not new_assignee:
            raise ValidationError("new assignee is required")
        if new_assignee == task.assigned_to:
            raise InvalidAssignee(f"task {task_id} is already assigned to {new_assignee}")

        history = (*task.assignment_history, new_assignee)
        optimistic = replace(
            task, assigned_to=new_assignee, assignment_history=history, updated_at=self._clock()
        )
        patch = {
            "assignedTo": new_assignee,
            "assignmentHistory": list(history),
            "updatedAt": SERVER_TIMESTAMP,
        }
        await self._write(task, patch, optimistic, ("assigned_to", "assignment_history"))
        logger.info("Task %s reassigned %s -> %s by %s", task_id, task.assigned_to, new_assignee, actor)
        return optimistic

    async def add_comment(self, task_id: str, actor_id: str, actor_name: str, text: str) -> Comment:
        task = self._get_task(task_id)
        body = _clean(text)
        if not body:
            raise ValidationError("comment text is empty")
        actor = _clean(actor_id)
        if not actor:
            raise ValidationError("comment author is required")

        now = self._clock()
        comment = Comment(
            id=new_comment_id(now),
            author_id=actor,
            author_name=_clean(actor_name),
            text=body,
            posted_at=now,
        )
        comments = (*task.comments, comment)
        optimistic = replace(task, comments=comments, updated_at=now)
        patch = {
            "comments": [c.to_record() for c in comments],
            "updatedAt": SERVER_TIMESTAMP,
        }
        await self._write(task, patch, optimistic, ("comments",))
        logger.info("Comment %s added to task %s by %s", comment.id, task_id, actor)
        return comment
