# src/taskflow/connectors/console_connector.py

from __future__ import annotations

import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("/exit", "/quit")


def _stamp() -> str:
    return datetime.now().astimezone().strftime("%H:%M:%S")


def _say(text: str) -> None:
    for i, line in enumerate(text.splitlines() or [""]):
        prefix = f"[{_stamp()}] " if i == 0 else " " * 11
        print(prefix + line, flush=True)


def _echo_input(prompt: str, line: str) -> None:
    """Stamp the line the user just typed (overwrites it on a TTY)."""
    if not sys.stdout.isatty():
        return
    sys.stdout.write(f"\033[1A\033[2K\r[{_stamp()}] {prompt}{line}\n")
    sys.stdout.flush()


def run_console_loop(state: AppState) -> None:
    """Blocking REPL. Returns on /exit, EOF or Ctrl+C."""
    name = state.user.name if state.user is not None else "?"
    prompt = f"{name}> "
    logger.info("Console connector started (user=%s).", state.actor_id)
    _say(f"Signed in as {name}. /help lists commands, /exit quits.")

    while True:
        try:
            line = input(prompt).strip()
        except (EOFError, KeyboardInterrupt):
            print()
            logger.info("Console input closed, exiting.")
            break
        _echo_input(prompt, line)

        if not line:
            continue
        if line.lower() in EXIT_COMMANDS:
            break
        if not line.startswith("/"):
            _say("Commands start with '/'. Try /help.")
            continue

        try:
            reply = command_registry.handle(state, line, emit=_say)
        except TimeoutError:
            logger.warning("Command timed out: %s", line)
            reply = "The store did not answer in time. Try again."
        except Exception:
            logger.exception("Command handler crashed: %s", line)
            reply = "Internal error while handling the command (details in the log file)."

        if reply is not None:
            _say(reply)

    logger.info("Console connector finished.")
