# src/score_relay/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then:
- runs the scheduler (and the bus producer) in a background thread,
- runs the console REPL in the main thread (optional), or waits for a signal.
"""

from __future__ import annotations

import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..connectors.service_runner import start_service_in_background
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    runner = start_service_in_background(state)
    if runner is None:
        logger.error("Scheduler failed to start; exiting.")
        return
    state.service = runner

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
    except (ValueError, OSError):
        # Some platforms may not support SIGTERM, etc.
        pass

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            logger.info("Console disabled. Polling in the background. Press Ctrl+C to stop.")
            stop_main.wait()

    finally:
        runner.stop()
        runner.join(timeout=settings.shutdown_grace_s + 5.0)
        state.task_store.close()
        logger.info("Bye.")


if __name__ == "__main__":
    main()
