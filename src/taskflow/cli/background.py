# src/taskflow/cli/background.py

"""
Runs the async core (sync feeds, sign-in, live view, refresher) on its own event
loop in a background thread, so the blocking console REPL can drive it.

The console never touches core objects directly: everything goes through
CoreBackgroundRunner.call() / call_sync(), which execute on the loop thread.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from ..accounts.registration import register_on_sign_in
from ..core.state import AppState
from ..views.live import LiveView, ViewState
from ..views.refresher import run_view_refresher

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CoreBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def call(self, factory: Callable[[], Awaitable[T]], timeout: float | None = 30.0) -> T:
        """Run a coroutine on the core loop and wait for its result (exceptions propagate)."""

        async def _run() -> T:
            return await factory()

        fut = asyncio.run_coroutine_threadsafe(_run(), self.loop)
        return fut.result(timeout=timeout)

    def call_sync(self, fn: Callable[[], T], timeout: float | None = 30.0) -> T:
        """Run a plain callable on the core loop thread."""

        async def _run() -> T:
            return fn()

        return self.call(_run, timeout=timeout)

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except Exception:
            logger.debug("Failed to signal core stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


async def _run_core(state: AppState, stop_event: asyncio.Event, signed_in: threading.Event, holder: dict[str, Any]) -> None:
    settings = state.settings
    refresher: asyncio.Task[None] | None = None

    await state.sync.start()
    try:
        identity = await state.identity.sign_in()
        state.user = await register_on_sign_in(
            identity,
            store=state.store,
            sync=state.sync,
            notifier=state.notifier,
            admin_email=settings.admin_email,
            ready_timeout=settings.store_timeout_seconds,
        )
        state.view = LiveView(
            state.sync,
            ViewState(actor_id=state.user.id),
            clock=state.clock,
            is_admin=state.lifecycle.is_admin,
            admin_recipient=settings.admin_recipient,
        )
        refresher = asyncio.create_task(
            run_view_refresher(state.view, interval_seconds=settings.view_refresh_seconds)
        )
    except Exception as e:
        logger.exception("Core startup failed")
        holder["error"] = e
        signed_in.set()
        await state.sync.stop()
        return

    signed_in.set()
    try:
        await stop_event.wait()
    finally:
        if refresher is not None:
            refresher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await refresher
        if state.view is not None:
            state.view.close()
        await state.identity.sign_out()
        await state.sync.stop()
        close = getattr(state.backend, "close", None)
        if callable(close):
            close()


def start_core_in_background(state: AppState, *, startup_timeout: float = 30.0) -> CoreBackgroundRunner:
    """
    Start the core in a background thread and wait until the user is signed in.

    Raises RuntimeError when the loop did not come up, and re-raises the startup
    error (e.g. StoreUnavailable) when sign-in failed.
    """
    ready = threading.Event()
    signed_in = threading.Event()
    holder: dict[str, Any] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(_run_core(state, stop_event, signed_in, holder))
        finally:
            with contextlib.suppress(Exception):
                loop.run_until_complete(loop.shutdown_asyncgens())
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="taskflow-core", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")
    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        raise RuntimeError("Core thread did not initialize properly.")

    if not signed_in.wait(timeout=startup_timeout):
        raise RuntimeError("Core did not finish sign-in in time.")
    error = holder.get("error")
    if isinstance(error, BaseException):
        t.join(timeout=5.0)
        raise error

    logger.info("Core background thread started (user=%s).", state.actor_id)
    runner_obj = CoreBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
    state.runner = runner_obj
    return runner_obj
