# src/vectask/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState (which starts the engine loop thread
and loads tasks), then runs the console REPL in the main thread.
"""

from __future__ import annotations

import contextlib
import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state, shutdown_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()

    level_name = str(settings.log_level).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger.info("Starting %s...", settings.app_name)

    state = create_initial_state(settings=settings)

    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    # Some platforms may not support SIGTERM.
    with contextlib.suppress(ValueError, OSError, AttributeError):
        signal.signal(signal.SIGTERM, _handle_signal)

    try:
        if settings.console_enabled:
            run_console_loop(state)
        else:
            logger.info("Console disabled. Engine idle. Press Ctrl+C to stop.")
            with contextlib.suppress(KeyboardInterrupt):
                stop_main.wait()
    finally:
        shutdown_state(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
