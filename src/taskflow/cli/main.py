# src/taskflow/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, starts the async core in a background
thread (sync feeds, sign-in, live view), then runs the console REPL in the
main thread.
"""

from __future__ import annotations

import logging
import signal
import threading

from ..cli.background import start_core_in_background
from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.errors import TaskflowError
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    log_file = setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s (store=%s, log=%s)...", settings.app_name, settings.store_backend, log_file)

    state = create_initial_state(settings=settings)

    try:
        runner = start_core_in_background(state, startup_timeout=settings.store_timeout_seconds * 3)
    except (TaskflowError, RuntimeError) as e:
        logger.error("Could not start: %s", e)
        raise SystemExit(1) from e

    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    if not settings.console_enabled:
        try:
            signal.signal(signal.SIGINT, _handle_signal)
            signal.signal(signal.SIGTERM, _handle_signal)
        except (ValueError, OSError):
            logger.debug("Signal handlers not installed.", exc_info=True)

    try:
        if settings.console_enabled:
            run_console_loop(state)
        else:
            logger.info("Console disabled. Keeping the sync core alive. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        runner.stop()
        runner.join(timeout=10.0)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
