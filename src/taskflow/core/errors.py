# src/taskflow/core/errors.py

"""
Error taxonomy shared by the lifecycle engine, the store adapter and the views.

Local rejections (ValidationError, InvalidTransition, Forbidden, InvalidAssignee)
are raised before any store call. StoreUnavailable wraps every failure or timeout
of the external store.
"""

from __future__ import annotations


class TaskflowError(Exception):
    """Base class for every error raised by the taskflow core."""


class ValidationError(TaskflowError, ValueError):
    """Missing or empty required input."""


class TaskNotFound(ValidationError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"unknown task: {task_id!r}")
        self.task_id = task_id


class InvalidTransition(TaskflowError):
    """The task's status is not eligible for the requested operation."""

    def __init__(self, action: str, status: str) -> None:
        super().__init__(f"cannot {action} a task in status {status!r}")
        self.action = action
        self.status = status


class Forbidden(TaskflowError):
    """The actor lacks permission for the requested operation."""

    def __init__(self, action: str, actor_id: str) -> None:
        super().__init__(f"actor {actor_id!r} may not {action} this task")
        self.action = action
        self.actor_id = actor_id


class InvalidAssignee(TaskflowError):
    """Reassignment target is degenerate (e.g. the current assignee)."""


class StoreUnavailable(TaskflowError):
    """The external store failed or timed out."""
