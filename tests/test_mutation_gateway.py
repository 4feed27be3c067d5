# tests/test_mutation_gateway.py

from __future__ import annotations

import asyncio

import pytest

from shadowflow.core.session import SessionContext, StaticSessionProvider
from shadowflow.tasks.errors import (
    NotFound,
    OperationInProgress,
    TransportError,
    Unauthorized,
    ValidationError,
)
from shadowflow.tasks.mutation_gateway import MutationGateway
from shadowflow.tasks.reconciler import Reconciler
from shadowflow.tasks.task_models import ChangeEvent, ChangeKind, PendingOp, TaskFilter

from .fakes import FakeTaskServer, settle


def _list_calls(server: FakeTaskServer) -> int:
    return sum(1 for name, _ in server.calls if name == "list_tasks")


@pytest.mark.asyncio
async def test_create_inserts_once_even_if_remote_insert_races(
    gateway: MutationGateway, reconciler: Reconciler
) -> None:
    await reconciler.resync()

    task = await gateway.create_task("  Buy milk  ")
    assert task.title == "Buy milk"
    assert reconciler.store.ids()[0] == task.id

    # the feed echo of our own insert arrives afterwards
    reconciler.apply_remote(ChangeEvent(kind=ChangeKind.INSERT, task_id=task.id, task=task))

    titles = [t.title for t in reconciler.store]
    assert titles.count("Buy milk") == 1


@pytest.mark.asyncio
async def test_create_outside_filter_is_not_shown(gateway: MutationGateway, reconciler: Reconciler) -> None:
    await reconciler.set_filter(TaskFilter.COMPLETED)
    task = await gateway.create_task("Water plants")
    assert task.id not in reconciler.store


@pytest.mark.asyncio
@pytest.mark.parametrize("title", ["", "   ", "x" * 201])
async def test_create_validates_title_before_network(
    gateway: MutationGateway, server: FakeTaskServer, title: str
) -> None:
    with pytest.raises(ValidationError):
        await gateway.create_task(title)
    assert server.calls == []


@pytest.mark.asyncio
async def test_create_transport_failure_resyncs(
    gateway: MutationGateway, reconciler: Reconciler, server: FakeTaskServer
) -> None:
    await reconciler.resync()
    server.fail("create_task", TransportError("timeout"))

    with pytest.raises(TransportError):
        await gateway.create_task("Buy milk")
    assert _list_calls(server) == 2


@pytest.mark.asyncio
async def test_create_without_session_is_unauthorized(server: FakeTaskServer) -> None:
    context = SessionContext.from_provider(StaticSessionProvider())
    gateway = MutationGateway(context, server, Reconciler(context, server))
    with pytest.raises(Unauthorized):
        await gateway.create_task("Buy milk")
    assert server.calls == []


@pytest.mark.asyncio
async def test_toggle_under_all_keeps_position(
    gateway: MutationGateway, reconciler: Reconciler, server: FakeTaskServer
) -> None:
    await reconciler.resync()

    await gateway.toggle_completed("t2")

    assert reconciler.store.ids() == ["t3", "t2", "t1"]
    assert reconciler.store.get("t2").is_completed is True
    assert server.rows["t2"].is_completed is True
    assert reconciler.pending_count == 0


@pytest.mark.asyncio
async def test_toggle_under_active_leaves_view_immediately(
    gateway: MutationGateway, reconciler: Reconciler, server: FakeTaskServer
) -> None:
    await reconciler.set_filter(TaskFilter.ACTIVE)
    server.hold("update_task")

    pending = asyncio.create_task(gateway.toggle_completed("t2"))
    await settle()
    assert reconciler.store.ids() == ["t1"]
    assert reconciler.is_pending("t2", PendingOp.COMPLETING)

    server.release("update_task")
    await pending
    assert reconciler.store.ids() == ["t1"]
    assert not reconciler.is_pending("t2")


@pytest.mark.asyncio
async def test_rename_is_optimistic_and_blocks_duplicate(
    gateway: MutationGateway, reconciler: Reconciler, server: FakeTaskServer
) -> None:
    await reconciler.resync()
    server.hold("update_task")

    first = asyncio.create_task(gateway.rename_task("t1", "Buy sourdough"))
    await settle()

    row = next(r for r in reconciler.view() if r.task.id == "t1")
    assert row.task.title == "Buy sourdough"
    assert row.pending == frozenset({PendingOp.UPDATING})
    assert row.is_processing

    with pytest.raises(OperationInProgress):
        await gateway.rename_task("t1", "Buy rye")

    server.release("update_task")
    await first
    assert reconciler.store.get("t1").title == "Buy sourdough"
    assert server.rows["t1"].title == "Buy sourdough"
    assert reconciler.pending_count == 0


@pytest.mark.asyncio
async def test_delete_failure_resync_restores_task(
    gateway: MutationGateway, reconciler: Reconciler, server: FakeTaskServer
) -> None:
    await reconciler.resync()
    server.fail("delete_task", TransportError("HTTP 500", status_code=500))

    with pytest.raises(TransportError):
        await gateway.delete_task("t1")

    assert reconciler.store.ids() == ["t3", "t2", "t1"]
    assert not reconciler.is_pending("t1")


@pytest.mark.asyncio
async def test_delete_success_removes_task(
    gateway: MutationGateway, reconciler: Reconciler, server: FakeTaskServer
) -> None:
    await reconciler.resync()
    await gateway.delete_task("t3")
    assert "t3" not in reconciler.store
    assert "t3" not in server.rows


@pytest.mark.asyncio
async def test_not_found_drops_task_locally(
    gateway: MutationGateway, reconciler: Reconciler, server: FakeTaskServer
) -> None:
    await reconciler.resync()
    del server.rows["t1"]

    with pytest.raises(NotFound):
        await gateway.rename_task("t1", "Buy rye")

    assert "t1" not in reconciler.store
    assert _list_calls(server) == 1


@pytest.mark.asyncio
async def test_unauthorized_restores_previous_without_resync(
    gateway: MutationGateway, reconciler: Reconciler, server: FakeTaskServer
) -> None:
    await reconciler.set_filter(TaskFilter.ACTIVE)
    server.fail("update_task", Unauthorized("token expired"))

    with pytest.raises(Unauthorized):
        await gateway.toggle_completed("t2")

    assert reconciler.store.ids() == ["t2", "t1"]
    assert reconciler.store.get("t2").is_completed is False
    assert _list_calls(server) == 1


@pytest.mark.asyncio
async def test_mutation_on_task_outside_view_is_rejected(
    gateway: MutationGateway, reconciler: Reconciler, server: FakeTaskServer
) -> None:
    await reconciler.set_filter(TaskFilter.ACTIVE)

    with pytest.raises(ValidationError):
        await gateway.delete_task("t3")
    with pytest.raises(ValidationError):
        await gateway.toggle_completed("nope")
    with pytest.raises(ValidationError):
        await gateway.rename_task("t1", "   ")

    assert all(name == "list_tasks" for name, _ in server.calls)
