# src/taskflow/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..accounts.identity import LocalIdentityProvider
from ..notifications.emitter import NotificationEmitter
from ..store.base import StoreClient
from ..tasks.lifecycle import TaskLifecycle
from ..tasks.sync import SyncCore
from ..tasks.task_models import User
from .ports import Clock

if TYPE_CHECKING:
    from ..cli.background import CoreBackgroundRunner
    from ..views.live import LiveView


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    backend: Any
    store: StoreClient
    sync: SyncCore
    lifecycle: TaskLifecycle
    notifier: NotificationEmitter
    identity: LocalIdentityProvider
    clock: Clock

    # Filled in once the background core has signed in.
    user: User | None = None
    view: LiveView | None = None
    runner: CoreBackgroundRunner | None = None

    @property
    def actor_id(self) -> str | None:
        return self.user.id if self.user is not None else None
