# tests/test_task_models.py

from __future__ import annotations

from datetime import timedelta

import pytest

from taskflow.tasks.task_models import Comment, Notification, Task, TaskStatus, User

from .fakes import T0, task_record


def test_task_from_record_maps_wire_fields() -> None:
    raw = task_record(
        "t1",
        assigned_to="u3",
        assignmentHistory=["u1", "u3"],
        comments=[
            {"id": "c1", "authorId": "u2", "authorName": "Bob", "text": "hi", "postedAt": "2026-03-01T10:00:00Z"}
        ],
    )
    task = Task.from_record(raw)

    assert task.id == "t1"
    assert task.assigned_to == "u3"
    assert task.created_by == "u2"
    assert task.status is TaskStatus.OPEN
    assert task.due_at == T0 + timedelta(days=1)
    assert task.assignment_history == ("u1", "u3")
    assert task.comments == (
        Comment(id="c1", author_id="u2", author_name="Bob", text="hi", posted_at=T0 - timedelta(hours=2)),
    )
    assert not task.is_pending


def test_task_to_record_uses_camel_case() -> None:
    record = Task.from_record(task_record("t1")).to_record()
    assert set(record) == {
        "id",
        "title",
        "description",
        "assignedTo",
        "createdBy",
        "status",
        "dueAt",
        "createdAt",
        "updatedAt",
        "assignmentHistory",
        "comments",
    }
    assert record["status"] == "open"
    assert Task.from_record(record) == Task.from_record(task_record("t1"))


def test_missing_updated_at_falls_back_to_created_at() -> None:
    raw = task_record("t1")
    del raw["updatedAt"]
    task = Task.from_record(raw)
    assert task.updated_at == task.created_at


def test_empty_history_starts_with_assignee() -> None:
    task = Task.from_record(task_record("t1", assigned_to="u1", assignmentHistory=[]))
    assert task.assignment_history == ("u1",)


def test_pending_server_timestamp() -> None:
    task = Task.from_record(task_record("t1", created_at=None))
    assert task.created_at is None
    assert task.is_pending


@pytest.mark.parametrize(
    "patch",
    [{"status": "archived"}, {"dueAt": None}, {"title": ""}, {"assignedTo": None}, {"dueAt": "tomorrow"}],
)
def test_malformed_task_records_raise(patch) -> None:
    raw = task_record("t1")
    raw.update(patch)
    with pytest.raises(ValueError):
        Task.from_record(raw)


def test_user_and_notification_records() -> None:
    user = User.from_record({"id": "u9", "name": "Zed", "avatarUri": "x.png", "approved": True})
    assert user == User(id="u9", name="Zed", avatar_uri="x.png", approved=True)

    note = Notification.from_record(
        {
            "id": "n1",
            "kind": "user_approval",
            "message": "approve me",
            "targetRecipient": "admin",
            "relatedUserId": "u9",
            "createdAt": None,
        }
    )
    assert note.read is False
    assert note.related_user_id == "u9"
    assert note.created_at is None
