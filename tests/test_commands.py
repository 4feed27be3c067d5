# tests/test_commands.py

from __future__ import annotations

import pytest

from shadowflow.cli.commands import CommandRegistry, html_to_text, registry
from shadowflow.connectors.console_connector import describe_remote_change
from shadowflow.core.state import AppState
from shadowflow.tasks.task_models import ChangeEvent, ChangeKind

from .fakes import FakeTaskServer, make_task, settle


@pytest.mark.asyncio
async def test_command_registry_routes_aliases_and_emit(state: AppState) -> None:
    reg = CommandRegistry()
    notes: list[str] = []

    async def h(state, args, emit):
        if emit is not None:
            emit("note")
        return f"h:{','.join(args)}"

    reg.register("a", h, "a", aliases=["alpha"])

    assert await reg.handle(state, "/a x y") == "h:x,y"
    assert await reg.handle(state, "/ALPHA z", emit=notes.append) == "h:z"
    assert notes == ["note"]
    assert await reg.handle(state, "plain text") is None
    assert (await reg.handle(state, "/")).startswith("Empty command")
    assert (await reg.handle(state, "/nope")).startswith("Unknown command: /nope")


@pytest.mark.asyncio
async def test_help_lists_registered_commands(state: AppState) -> None:
    text = await registry.handle(state, "/help")
    for name in ("/add", "/done", "/rm", "/filter", "/reconnect", "/signin"):
        assert name in text


@pytest.mark.asyncio
async def test_list_add_done_rm_flow(state: AppState, server: FakeTaskServer) -> None:
    await state.session.start()
    try:
        listing = await registry.handle(state, "/list")
        assert listing.splitlines()[0] == "All Tasks"
        assert "  1. [x] File taxes" in listing

        added = await registry.handle(state, "/add Buy milk")
        assert added.startswith("Added: Buy milk")
        assert "  1. [ ] Buy milk" in added

        done = await registry.handle(state, "/done 1")
        assert "  1. [x] Buy milk" in done

        removed = await registry.handle(state, "/rm 1")
        assert removed.startswith("Deleted: Buy milk")
        assert all(t.title != "Buy milk" for t in server.rows.values())
    finally:
        await state.session.close()


@pytest.mark.asyncio
async def test_task_errors_come_back_as_messages(state: AppState) -> None:
    await state.session.start()
    try:
        assert await registry.handle(state, "/rm 99") == "No task '99' in the current list."
        assert await registry.handle(state, "/add    ") == "Task title is required"
        assert (await registry.handle(state, "/rename 1")).startswith("Usage: /rename")
    finally:
        await state.session.close()


@pytest.mark.asyncio
async def test_filter_switch_and_empty_states(state: AppState, server: FakeTaskServer) -> None:
    await state.session.start()
    try:
        bad = await registry.handle(state, "/filter done")
        assert "Usage: /filter all|active|completed" in bad

        active = await registry.handle(state, "/filter active")
        assert active.splitlines()[0] == "Active Tasks"
        assert "File taxes" not in active

        server.rows.clear()
        empty = await registry.handle(state, "/refresh")
        assert "No active tasks yet" in empty
    finally:
        await state.session.close()


@pytest.mark.asyncio
async def test_show_renders_enriched_plan(state: AppState, server: FakeTaskServer) -> None:
    await state.session.start()
    try:
        server.server_side_update(
            "t1",
            title_enriched="Buy a loaf of sourdough",
            description_enriched="<p>Steps:</p><ol><li>Walk to the bakery</li><li>Pay &amp; go</li></ol>",
        )
        await settle()

        listing = await registry.handle(state, "/list")
        assert "Buy bread  * AI Enhanced" in listing

        details = await registry.handle(state, "/show t1")
        assert "What needs to happen:" in details
        assert "  Buy a loaf of sourdough" in details
        assert "  - Pay & go" in details

        plain = await registry.handle(state, "/show 2")
        assert "(AI enrichment not available yet)" in plain
    finally:
        await state.session.close()


@pytest.mark.asyncio
async def test_signout_and_signin_switch_user(state: AppState, server: FakeTaskServer) -> None:
    await state.session.start()
    try:
        assert await registry.handle(state, "/signout") == "Signed out."
        assert (await registry.handle(state, "/list")).startswith("Not signed in")

        server.rows = {"u2-a": make_task("u2-a", title="Pick up kids", user_id="u2")}
        listing = await registry.handle(state, "/signin u2 tok-1")
        assert "Pick up kids" in listing
        assert state.session.context.user_id == "u2"

        status = await registry.handle(state, "/status")
        assert "user: u2" in status
        assert "change feed: connected" in status
    finally:
        await state.session.close()


def test_html_to_text() -> None:
    assert html_to_text(None) == ""
    assert html_to_text("<ul><li>One</li><li>Two &lt;3</li></ul>") == "- One\n- Two <3"


def test_describe_remote_change() -> None:
    plain = make_task("t1", title="Buy bread")
    enriched = plain.with_changes(title_enriched="Buy sourdough")

    assert describe_remote_change(ChangeEvent(ChangeKind.INSERT, "t1", plain)) == "New task arrived: Buy bread"
    assert describe_remote_change(ChangeEvent(ChangeKind.UPDATE, "t1", enriched)) == (
        "Task updated (AI Enhanced): Buy bread"
    )
    assert describe_remote_change(ChangeEvent(ChangeKind.DELETE, "t1")) == "A task was removed elsewhere."
