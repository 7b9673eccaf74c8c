# src/vectask/connectors/console_connector.py

from __future__ import annotations

import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..tasks.task_state import EventKind, Level, StoreEvent

logger = logging.getLogger(__name__)

_LEVEL_TAGS = {
    Level.INFO: "INFO",
    Level.SUCCESS: "OK",
    Level.WARNING: "WARN",
    Level.ERROR: "ERROR",
}


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except OSError:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def format_event(event: StoreEvent) -> str | None:
    """Console line for a store event; plain notices are already covered by command replies."""
    if event.kind == EventKind.NOTICE and event.level != Level.ERROR:
        return None
    tag = _LEVEL_TAGS[event.level]
    ref = f" {event.task_id[:8]}" if event.task_id else ""
    return f"[{event.kind.value.upper()}][{tag}]{ref} {event.message}"


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.\n")

    def on_event(event: StoreEvent) -> None:
        # Called on the engine thread; follow-up outcomes arrive between prompts.
        line = format_event(event)
        if line is not None:
            _print_ts(line)

    unsubscribe = state.store.subscribe(on_event)
    try:
        while True:
            try:
                user_input = input(">>> ").strip()
                _rewrite_prev_line(f"[{_ts_local()}] >>> {user_input}")
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                reply = command_registry.handle(state, user_input, emit=_print_ts)
            except Exception:
                logger.exception("Command handler crashed.")
                reply = "Internal error while handling a command."

            if reply is None:
                reply = "Commands start with '/'. Use /help to list them."
            _print_ts(reply)
    finally:
        unsubscribe()

    logger.info("Console connector finished.")
