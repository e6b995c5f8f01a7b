# src/taskflow/notifications/emitter.py

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..core.ports import EntityKind, RawRecord
from ..store.base import SERVER_TIMESTAMP, StoreClient
from ..tasks.task_models import Notification, User

logger = logging.getLogger(__name__)

USER_APPROVAL = "user_approval"


def approval_message(user: User) -> str:
    who = user.email or user.name or user.id
    return f"New user requests approval: {who}"


class NotificationEmitter:
    """
    Side-channel notices raised by lifecycle events.

    Only one event exists today: a new non-privileged user registered, which asks
    the administrative recipient for approval. Each user triggers at most one notice
    per process; delivery and read-state handling belong to the consumer.
    """

    def __init__(self, store: StoreClient, *, admin_recipient: str = "admin") -> None:
        self._store = store
        self._admin_recipient = admin_recipient
        self._notified: set[str] = set()

    @property
    def admin_recipient(self) -> str:
        return self._admin_recipient

    async def user_registered(self, user: User, *, privileged: bool = False) -> str | None:
        """
        Emit the approval request for user.

        Returns the notification id, or None when nothing was emitted (privileged user
        or already notified).
        """
        if privileged:
            logger.debug("No approval notice for privileged user %s", user.id)
            return None
        if user.id in self._notified:
            logger.debug("Approval notice for %s already emitted", user.id)
            return None

        record: RawRecord = {
            "kind": USER_APPROVAL,
            "message": approval_message(user),
            "targetRecipient": self._admin_recipient,
            "relatedUserId": user.id,
            "read": False,
            "createdAt": SERVER_TIMESTAMP,
        }
        # Mark before the write so a concurrent call for the same user can not emit twice.
        self._notified.add(user.id)
        try:
            note_id = await self._store.create(EntityKind.NOTIFICATION, record)
        except Exception:
            self._notified.discard(user.id)
            raise
        logger.info("Approval notice %s emitted for user %s", note_id, user.id)
        return note_id


def unread_notifications(notifications: Iterable[Notification], recipient: str) -> list[Notification]:
    return [n for n in notifications if n.target_recipient == recipient and not n.read]
