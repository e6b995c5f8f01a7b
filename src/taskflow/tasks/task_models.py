# src/taskflow/tasks/task_models.py

"""
Records the core works with.

Field names of the stored documents are camelCase and part of the store
contract; the dataclasses expose them as snake_case attributes and convert with
from_record() / to_record().
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from ..core.ports import RawRecord
from .timestamps import normalize_timestamp, to_wire


class TaskStatus(StrEnum):
    """Task workflow status. CLOSED is terminal."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    COMPLETED = "completed"
    CLOSED = "closed"

    @classmethod
    def from_record(cls, raw: Any) -> TaskStatus:
        try:
            return cls(str(raw))
        except ValueError:
            raise ValueError(f"unknown task status: {raw!r}") from None


def _required_str(raw: Mapping[str, Any], key: str) -> str:
    val = raw.get(key)
    if val is None or (isinstance(val, str) and not val.strip()):
        raise ValueError(f"record field {key!r} is missing")
    return str(val)


@dataclass(slots=True, frozen=True)
class Comment:
    id: str
    author_id: str
    author_name: str
    text: str
    posted_at: datetime | None

    @classmethod
    def from_record(cls, raw: Mapping[str, Any]) -> Comment:
        return cls(
            id=_required_str(raw, "id"),
            author_id=str(raw.get("authorId") or ""),
            author_name=str(raw.get("authorName") or ""),
            text=str(raw.get("text") or ""),
            posted_at=normalize_timestamp(raw.get("postedAt")),
        )

    def to_record(self) -> RawRecord:
        return {
            "id": self.id,
            "authorId": self.author_id,
            "authorName": self.author_name,
            "text": self.text,
            "postedAt": to_wire(self.posted_at) if self.posted_at is not None else None,
        }


@dataclass(slots=True, frozen=True)
class Task:
    id: str
    title: str
    description: str
    assigned_to: str
    created_by: str
    status: TaskStatus
    due_at: datetime

    # None while the server has not finalized the timestamp ("pending").
    created_at: datetime | None
    updated_at: datetime | None

    assignment_history: tuple[str, ...] = ()
    comments: tuple[Comment, ...] = ()

    @property
    def is_pending(self) -> bool:
        return self.created_at is None or self.updated_at is None

    @classmethod
    def from_record(cls, raw: Mapping[str, Any]) -> Task:
        """
        Build a Task from a stored document.

        Raises ValueError when a required field is missing or malformed.
        """
        due_at = normalize_timestamp(raw.get("dueAt"))
        if due_at is None:
            raise ValueError("record field 'dueAt' is missing")

        created_at = normalize_timestamp(raw.get("createdAt"))
        # Documents written before updatedAt existed count as updated on creation.
        updated_at = normalize_timestamp(raw["updatedAt"]) if "updatedAt" in raw else created_at

        assigned_to = _required_str(raw, "assignedTo")
        history = tuple(str(u) for u in (raw.get("assignmentHistory") or ()) if u)
        if not history:
            history = (assigned_to,)

        comments = tuple(Comment.from_record(c) for c in (raw.get("comments") or ()) if isinstance(c, Mapping))

        return cls(
            id=_required_str(raw, "id"),
            title=_required_str(raw, "title"),
            description=_required_str(raw, "description"),
            assigned_to=assigned_to,
            created_by=_required_str(raw, "createdBy"),
            status=TaskStatus.from_record(raw.get("status")),
            due_at=due_at,
            created_at=created_at,
            updated_at=updated_at,
            assignment_history=history,
            comments=comments,
        )

    def to_record(self) -> RawRecord:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "assignedTo": self.assigned_to,
            "createdBy": self.created_by,
            "status": self.status.value,
            "dueAt": to_wire(self.due_at),
            "createdAt": to_wire(self.created_at) if self.created_at is not None else None,
            "updatedAt": to_wire(self.updated_at) if self.updated_at is not None else None,
            "assignmentHistory": list(self.assignment_history),
            "comments": [c.to_record() for c in self.comments],
        }


@dataclass(slots=True, frozen=True)
class User:
    id: str
    name: str
    avatar_uri: str = ""
    approved: bool = False
    email: str = ""
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, raw: Mapping[str, Any]) -> User:
        return cls(
            id=_required_str(raw, "id"),
            name=str(raw.get("name") or ""),
            avatar_uri=str(raw.get("avatarUri") or ""),
            approved=bool(raw.get("approved", False)),
            email=str(raw.get("email") or ""),
            created_at=normalize_timestamp(raw.get("createdAt")),
        )


@dataclass(slots=True, frozen=True)
class Notification:
    id: str
    kind: str
    message: str
    target_recipient: str
    related_user_id: str | None
    read: bool = False
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, raw: Mapping[str, Any]) -> Notification:
        related = raw.get("relatedUserId")
        return cls(
            id=_required_str(raw, "id"),
            kind=str(raw.get("kind") or ""),
            message=str(raw.get("message") or ""),
            target_recipient=str(raw.get("targetRecipient") or ""),
            related_user_id=str(related) if related else None,
            read=bool(raw.get("read", False)),
            created_at=normalize_timestamp(raw.get("createdAt")),
        )


@dataclass(slots=True, frozen=True)
class Tables:
    """
    One immutable, fully applied view of the authoritative tables.

    `tasks` is ordered: pending tasks first (feed order), then finalized tasks by
    createdAt descending.
    """

    tasks: tuple[Task, ...] = ()
    users: tuple[User, ...] = ()
    notifications: tuple[Notification, ...] = ()
    task_index: Mapping[str, Task] = field(default_factory=dict)
    user_index: Mapping[str, User] = field(default_factory=dict)
    version: int = 0
