# src/taskflow/views/refresher.py

from __future__ import annotations

"""
View refresher.

Overdue membership depends on the wall clock, not on writes. A quiet task table
would otherwise keep showing a task as "not overdue" long after its due time, so
this small loop re-derives the live view periodically.
"""

import asyncio
import logging

from .live import LiveView

logger = logging.getLogger(__name__)


async def run_view_refresher(view: LiveView, *, interval_seconds: float = 30.0) -> None:
    """
    Every interval_seconds: re-derive the view and log when the overdue bucket changed.

    To stop the refresher, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))
    last_overdue = {t.id for t in view.buckets.overdue}

    while True:
        await asyncio.sleep(sleep_s)
        try:
            projections = view.refresh()
        except Exception:
            logger.exception("view refresh failed")
            continue

        overdue = {t.id for t in projections.buckets.overdue}
        newly = overdue - last_overdue
        if newly:
            logger.info("Tasks now overdue for %s: %s", view.state.actor_id, ", ".join(sorted(newly)))
        last_overdue = overdue
