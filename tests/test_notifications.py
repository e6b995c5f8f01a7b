# tests/test_notifications.py

from __future__ import annotations

import pytest

from taskflow.accounts.identity import LocalIdentityProvider
from taskflow.accounts.registration import is_admin_identity, register_on_sign_in
from taskflow.core.errors import StoreUnavailable, ValidationError
from taskflow.core.ports import EntityKind, Identity
from taskflow.notifications.emitter import USER_APPROVAL, unread_notifications
from taskflow.tasks.task_models import Notification, User

from .conftest import ADMIN_EMAIL
from .fakes import running, wait_until


def _notes(backend) -> list[dict]:
    return backend.all(EntityKind.NOTIFICATION)


@pytest.mark.asyncio
async def test_new_user_triggers_exactly_one_approval_notice(backend, store, sync, notifier) -> None:
    newcomer = Identity(id="u9", email="zed@example.com", name="Zed")

    async with running(sync):
        user = await register_on_sign_in(
            newcomer, store=store, sync=sync, notifier=notifier, admin_email=ADMIN_EMAIL
        )
        assert user.approved is False
        await wait_until(lambda: sync.user("u9") is not None and len(sync.tables.notifications) == 1)

        again = await register_on_sign_in(
            newcomer, store=store, sync=sync, notifier=notifier, admin_email=ADMIN_EMAIL
        )

    assert again.id == "u9"
    stored = backend.get(EntityKind.USER, "u9")
    assert stored["approved"] is False
    assert stored["email"] == "zed@example.com"

    notes = _notes(backend)
    assert len(notes) == 1
    assert notes[0]["kind"] == USER_APPROVAL
    assert notes[0]["targetRecipient"] == "admin"
    assert notes[0]["relatedUserId"] == "u9"
    assert "zed@example.com" in notes[0]["message"]


@pytest.mark.asyncio
async def test_admin_is_approved_and_not_notified(backend, store, sync, notifier) -> None:
    admin = Identity(id="chief", email="BOSS@example.com", name="Chief")

    async with running(sync):
        user = await register_on_sign_in(admin, store=store, sync=sync, notifier=notifier, admin_email=ADMIN_EMAIL)

    assert user.approved is True
    assert backend.get(EntityKind.USER, "chief")["approved"] is True
    assert _notes(backend) == []


@pytest.mark.asyncio
async def test_registration_requires_an_identity_id(store, sync, notifier) -> None:
    with pytest.raises(ValidationError):
        await register_on_sign_in(Identity(id=" ", email="", name=""), store=store, sync=sync, notifier=notifier)


@pytest.mark.asyncio
async def test_emitter_dedupes_and_skips_privileged(backend, notifier) -> None:
    user = User(id="u9", name="Zed")

    first = await notifier.user_registered(user)
    second = await notifier.user_registered(user)
    privileged = await notifier.user_registered(User(id="root", name="Root"), privileged=True)

    assert first is not None
    assert second is None
    assert privileged is None
    assert len(_notes(backend)) == 1


@pytest.mark.asyncio
async def test_emitter_can_retry_after_store_failure(backend, notifier) -> None:
    user = User(id="u9", name="Zed")
    backend.fail_writes = 1

    with pytest.raises(StoreUnavailable):
        await notifier.user_registered(user)
    assert _notes(backend) == []

    assert await notifier.user_registered(user) is not None
    assert len(_notes(backend)) == 1


def test_unread_notifications_filters_by_recipient_and_read_flag() -> None:
    notes = [
        Notification(id="1", kind=USER_APPROVAL, message="a", target_recipient="admin", related_user_id="u1"),
        Notification(id="2", kind=USER_APPROVAL, message="b", target_recipient="admin", related_user_id="u2", read=True),
        Notification(id="3", kind=USER_APPROVAL, message="c", target_recipient="u1", related_user_id=None),
    ]
    assert [n.id for n in unread_notifications(notes, "admin")] == ["1"]
    assert [n.id for n in unread_notifications(notes, "u1")] == ["3"]


def test_is_admin_identity() -> None:
    assert is_admin_identity(Identity(id="x", email=" Boss@Example.com ", name=""), ADMIN_EMAIL)
    assert not is_admin_identity(Identity(id="x", email="bob@example.com", name=""), ADMIN_EMAIL)
    assert not is_admin_identity(Identity(id="x", email="", name=""), "")


@pytest.mark.asyncio
async def test_identity_provider_reports_auth_changes() -> None:
    provider = LocalIdentityProvider(Identity(id="u1", email="alice@example.com", name="Alice"))
    seen: list[str | None] = []
    unsubscribe = provider.on_auth_change(lambda ident: seen.append(ident.id if ident else None))

    await provider.sign_in()
    await provider.sign_out()
    await provider.sign_out()
    unsubscribe()
    await provider.sign_in()

    assert seen == [None, "u1", None]
    assert provider.current is not None
