# src/taskflow/accounts/registration.py

from __future__ import annotations

import logging

from ..core.errors import ValidationError
from ..core.ports import EntityKind, Identity, RawRecord
from ..notifications.emitter import NotificationEmitter
from ..store.base import SERVER_TIMESTAMP, StoreClient
from ..tasks.sync import SyncCore
from ..tasks.task_models import User

logger = logging.getLogger(__name__)


def is_admin_identity(identity: Identity, admin_email: str) -> bool:
    admin = (admin_email or "").strip().lower()
    return bool(admin) and identity.email.strip().lower() == admin


async def register_on_sign_in(
    identity: Identity,
    *,
    store: StoreClient,
    sync: SyncCore,
    notifier: NotificationEmitter,
    admin_email: str = "",
    ready_timeout: float | None = 10.0,
) -> User:
    """
    Make sure the signed-in identity has a user record.

    - waits for the first user snapshot, so an existing record is never duplicated;
    - the administrator is approved on creation, everyone else waits for approval;
    - a new non-admin user triggers exactly one approval notice.
    """
    if not identity.id.strip():
        raise ValidationError("identity id is required")

    await sync.wait_until_ready(timeout=ready_timeout)

    existing = sync.user(identity.id)
    if existing is not None:
        logger.debug("User %s already registered (approved=%s)", identity.id, existing.approved)
        return existing

    privileged = is_admin_identity(identity, admin_email)
    record: RawRecord = {
        "id": identity.id,
        "email": identity.email,
        "name": identity.name or identity.email or identity.id,
        "avatarUri": identity.avatar_uri,
        "approved": privileged,
        "createdAt": SERVER_TIMESTAMP,
    }
    await store.create(EntityKind.USER, record, record_id=identity.id)
    logger.info("Registered user %s (approved=%s)", identity.id, privileged)

    user = User(
        id=identity.id,
        name=record["name"],
        avatar_uri=identity.avatar_uri,
        approved=privileged,
        email=identity.email,
    )
    await notifier.user_registered(user, privileged=privileged)
    return user
