# src/taskflow/accounts/identity.py

from __future__ import annotations

import logging
from collections.abc import Callable

from ..core.ports import AuthListener, Identity

logger = logging.getLogger(__name__)


class LocalIdentityProvider:
    """
    Identity provider backed by a fixed, locally configured profile.

    Real deployments plug an external provider in behind the same port; this one
    serves the console and the tests.
    """

    def __init__(self, identity: Identity) -> None:
        self._identity = identity
        self._current: Identity | None = None
        self._listeners: list[AuthListener] = []

    @classmethod
    def from_settings(cls, settings) -> LocalIdentityProvider:
        return cls(
            Identity(
                id=settings.user_id,
                email=settings.user_email,
                name=settings.user_name,
                avatar_uri=settings.user_avatar_uri,
            )
        )

    @property
    def current(self) -> Identity | None:
        return self._current

    async def sign_in(self) -> Identity:
        self._current = self._identity
        logger.info("Signed in as %s", self._identity.id)
        self._emit(self._identity)
        return self._identity

    async def sign_out(self) -> None:
        if self._current is None:
            return
        logger.info("Signed out %s", self._current.id)
        self._current = None
        self._emit(None)

    def on_auth_change(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)
        # Like hosted providers: a new listener learns the current state at once.
        listener(self._current)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, identity: Identity | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(identity)
            except Exception:
                logger.exception("Auth listener failed")
