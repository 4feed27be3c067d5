# src/shadowflow/cli/commands.py

from __future__ import annotations

import html
import logging
import re
from collections.abc import Awaitable, Callable

from ..core.state import AppState
from ..tasks.errors import TaskError, ValidationError, friendly_task_error_message
from ..tasks.task_models import PendingOp, Task, TaskFilter, TaskView

CommandEmitter = Callable[[str], None]
CommandHandler = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_END_RE = re.compile(r"</(p|li|h[1-6]|div)>|<br\s*/?>", re.IGNORECASE)

_PENDING_LABELS = {
    PendingOp.COMPLETING: "saving",
    PendingOp.DELETING: "deleting",
    PendingOp.UPDATING: "renaming",
}


class CommandRegistry:
    """Slash-command registry used by the console connector (/add, /done, /filter, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        Task errors come back as user-facing messages, never as exceptions.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return await handler(state, args, emit)
        except TaskError as e:
            logger.info("/%s failed: %s: %s", name, e.__class__.__name__, e.message)
            return friendly_task_error_message(e)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        lines.append("  (plain text without a slash adds it as a new task)")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- rendering ----

def html_to_text(raw: str | None) -> str:
    """Rich-text plan -> plain console text."""
    if not raw:
        return ""
    text = _BLOCK_END_RE.sub("\n", raw)
    text = re.sub(r"<li[^>]*>", "- ", text, flags=re.IGNORECASE)
    text = html.unescape(_TAG_RE.sub("", text))
    lines = [ln.strip() for ln in text.splitlines()]
    return "\n".join(ln for ln in lines if ln)


def render_row(n: int, row: TaskView) -> str:
    task = row.task
    mark = "x" if task.is_completed else " "
    line = f"{n:>3}. [{mark}] {task.title}"
    if task.is_enriched:
        line += "  * AI Enhanced"
    if row.pending:
        labels = sorted(_PENDING_LABELS[op] for op in row.pending)
        line += f"  ({', '.join(labels)}...)"
    return line


def render_view(state: AppState) -> str:
    session = state.session
    if not session.context.signed_in:
        return "Not signed in. Use /signin <user_id> <access_token>."

    task_filter = session.task_filter
    header = task_filter.heading
    if session.stale:
        header += "  [possibly out of date - /reconnect]"

    rows = session.view()
    if session.reconciler.loading and not rows:
        return f"{header}\n  Loading {task_filter.value} tasks..."
    if not rows:
        empty = {
            TaskFilter.ACTIVE: "No active tasks yet",
            TaskFilter.COMPLETED: "No completed tasks yet",
            TaskFilter.ALL: "No tasks yet. Create your first task!",
        }[task_filter]
        return f"{header}\n  {empty}"

    return "\n".join([header, *(render_row(i, row) for i, row in enumerate(rows, start=1))])


def render_details(task: Task) -> str:
    lines = [f"{task.title}" + ("  (completed)" if task.is_completed else "")]
    if task.title_enriched:
        lines += ["", "What needs to happen:", f"  {task.title_enriched}"]
    if task.description_enriched:
        plan = html_to_text(task.description_enriched)
        lines += ["", "Suggested plan of action:", *(f"  {ln}" for ln in plan.splitlines())]
    if not task.is_enriched:
        lines += ["", "(AI enrichment not available yet)"]
    return "\n".join(lines)


def _resolve_task(state: AppState, ref: str | None) -> Task:
    """Accept a 1-based row number from the current view or a raw task id."""
    if not ref:
        raise ValidationError("Which task? Give its number from the list.")
    rows = state.session.view()
    if ref.isdigit():
        idx = int(ref)
        if 1 <= idx <= len(rows):
            return rows[idx - 1].task
    for row in rows:
        if row.task.id == ref:
            return row.task
    raise ValidationError(f"No task {ref!r} in the current list.")


# ---- handlers ----

async def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


async def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    st = state.session.status()
    return (
        "Status:\n"
        f"  user: {st.user_id or '(signed out)'}\n"
        f"  filter: {st.task_filter.value}\n"
        f"  change feed: {st.feed_state.value}{' (list may be stale)' if st.stale else ''}\n"
        f"  tasks in view: {st.task_count}\n"
        f"  in-flight changes: {st.pending_count}\n"
        f"  api: {getattr(state.settings, 'api_base_url', '?')}"
    )


async def cmd_list(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return render_view(state)


async def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    title = " ".join(args)
    task = await state.session.gateway.create_task(title)
    return f"Added: {task.title}\n{render_view(state)}"


async def cmd_rename(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if len(args) < 2:
        return "Usage: /rename <n> <new title>"
    task = _resolve_task(state, args[0])
    await state.session.gateway.rename_task(task.id, " ".join(args[1:]))
    return render_view(state)


async def cmd_done(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    task = _resolve_task(state, args[0] if args else None)
    await state.session.gateway.toggle_completed(task.id)
    return render_view(state)


async def cmd_rm(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    task = _resolve_task(state, args[0] if args else None)
    await state.session.gateway.delete_task(task.id)
    return f"Deleted: {task.title}\n{render_view(state)}"


async def cmd_show(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return render_details(_resolve_task(state, args[0] if args else None))


async def cmd_filter(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    try:
        task_filter = TaskFilter.parse(args[0] if args else None)
    except ValueError as e:
        return f"{e}. Usage: /filter all|active|completed"
    if emit is not None:
        emit(f"Loading {task_filter.value} tasks...")
    await state.session.set_filter(task_filter)
    return render_view(state)


async def cmd_refresh(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    ok = await state.session.refresh()
    return render_view(state) if ok else "Refresh failed (network). Showing last known list.\n" + render_view(state)


async def cmd_reconnect(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if emit is not None:
        emit("Reconnecting to the change feed...")
    ok = await state.session.reconnect()
    prefix = "Reconnected." if ok else "Reconnect incomplete; list may be stale."
    return f"{prefix}\n{render_view(state)}"


async def cmd_signin(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if len(args) != 2:
        return "Usage: /signin <user_id> <access_token>"
    context = state.provider.sign_in(user_id=args[0], access_token=args[1])
    await state.session.on_session_change(context)
    return render_view(state)


async def cmd_signout(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    context = state.provider.sign_out()
    await state.session.on_session_change(context)
    return "Signed out."


registry.register("help", cmd_help, "Show this help message.", aliases=["h", "?"])
registry.register("list", cmd_list, "Show the task list.", aliases=["ls"])
registry.register("add", cmd_add, "Add a task: /add <title>.", aliases=["new"])
registry.register("rename", cmd_rename, "Rename a task: /rename <n> <title>.", aliases=["edit"])
registry.register("done", cmd_done, "Toggle a task complete/incomplete: /done <n>.", aliases=["toggle"])
registry.register("rm", cmd_rm, "Delete a task: /rm <n>.", aliases=["delete", "del"])
registry.register("show", cmd_show, "Show a task with its AI-enhanced plan: /show <n>.")
registry.register("filter", cmd_filter, "Switch view: /filter all|active|completed.", aliases=["view"])
registry.register("refresh", cmd_refresh, "Reload the list from the server.")
registry.register("reconnect", cmd_reconnect, "Reopen the change feed and reload the list.")
registry.register("status", cmd_status, "Show session and feed status.")
registry.register("signin", cmd_signin, "Switch user: /signin <user_id> <access_token>.")
registry.register("signout", cmd_signout, "Sign out and clear the list.")
