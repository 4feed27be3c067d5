# src/shadowflow/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..cli.commands import render_view
from ..core.state import AppState
from ..tasks.task_models import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

# Commands that only read local state; everything else may wait on the network
# and runs in the background so the prompt stays usable.
_INLINE_COMMANDS = {"help", "h", "?", "list", "ls", "show", "status"}


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def describe_remote_change(event: ChangeEvent) -> str:
    if event.kind is ChangeKind.DELETE:
        return "A task was removed elsewhere."
    task = event.task
    title = task.title if task is not None else event.task_id
    if event.kind is ChangeKind.INSERT:
        return f"New task arrived: {title}"
    if task is not None and task.is_enriched:
        return f"Task updated (AI Enhanced): {title}"
    return f"Task updated: {title}"


def _command_name(line: str) -> str:
    parts = line[1:].split()
    return parts[0].lower() if parts else ""


async def _run_command(state: AppState, line: str) -> None:
    try:
        reply = await command_registry.handle(state, line, emit=_print_ts)
    except Exception:
        logger.exception("Command handler crashed.")
        reply = "Internal error while handling a command."
    if reply is not None:
        _print_ts(reply)


async def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (user=%s).", state.session.context.user_id or "-")
    _print_ts("[CONSOLE] Type a task to add it. Use /help for commands. Use /exit to quit.\n")
    _print_ts(render_view(state))

    state.session.add_listener(lambda event: _print_ts(f"[live] {describe_remote_change(event)}"))

    while True:
        try:
            user_input = (await asyncio.to_thread(input, ">>> ")).strip()
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

        line = user_input if user_input.startswith("/") else f"/add {user_input}"

        if _command_name(line) in _INLINE_COMMANDS:
            await _run_command(state, line)
            continue

        task = asyncio.create_task(_run_command(state, line))
        state.background.add(task)
        task.add_done_callback(state.background.discard)

    if state.background:
        _print_ts(f"Waiting for {len(state.background)} change(s) to finish...")
        await asyncio.wait(list(state.background), timeout=10.0)

    logger.info("Console connector finished.")
