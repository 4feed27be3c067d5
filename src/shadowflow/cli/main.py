# src/shadowflow/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, starts the task session (initial load +
change feed), then runs the console REPL, or just keeps the view in sync
with the console disabled.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_initial_state, shutdown_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging
from ..tasks.errors import TaskError, friendly_task_error_message

logger = logging.getLogger(__name__)


async def _amain() -> None:
    settings = get_settings()

    state = create_initial_state(settings=settings)

    try:
        await state.session.start()
    except TaskError as e:
        logger.warning("Task session did not start: %s", e.message)
        print(friendly_task_error_message(e))

    stop_main = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows event loops).
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _handle_signal, sig)

    try:
        if settings.console_enabled:
            console = asyncio.create_task(run_console_loop(state))
            stopper = asyncio.create_task(stop_main.wait())
            await asyncio.wait({console, stopper}, return_when=asyncio.FIRST_COMPLETED)
            for t in (console, stopper):
                t.cancel()
        else:
            logger.info("Console disabled. Keeping the task view in sync. Press Ctrl+C to stop.")
            await stop_main.wait()
    finally:
        await shutdown_state(state)
        logger.info("Bye.")


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_amain())


if __name__ == "__main__":
    main()
