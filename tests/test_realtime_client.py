# tests/test_realtime_client.py

from __future__ import annotations

import asyncio
import contextlib
import json

import pytest
from websockets.asyncio.server import serve

from shadowflow.connectors.realtime_client import RealtimeTransport, normalize_postgres_change
from shadowflow.tasks.change_feed import decode_change
from shadowflow.tasks.errors import TransportError
from shadowflow.tasks.task_models import ChangeKind

from .fakes import make_task


def _transport() -> RealtimeTransport:
    return RealtimeTransport("wss://db.example/realtime/v1/", api_key="anon-key")


def test_normalize_postgres_change_feeds_decoder() -> None:
    row = make_task("t1", title="Buy milk").to_row()
    change = normalize_postgres_change(
        {"data": {"type": "update", "record": row, "old_record": {"id": "t1"}}, "ids": [1]}
    )

    assert change == {"eventType": "UPDATE", "new": row, "old": {"id": "t1"}}
    assert decode_change(change).kind is ChangeKind.UPDATE


def test_normalize_ignores_messages_without_change() -> None:
    assert normalize_postgres_change({}) is None
    assert normalize_postgres_change({"data": {}}) is None


def test_socket_url_carries_api_key() -> None:
    assert _transport()._socket_url() == "wss://db.example/realtime/v1/websocket?vsn=1.0.0&apikey=anon-key"


def test_handle_routes_channel_messages() -> None:
    rt = _transport()
    topic = "realtime:public:todo_tasks"

    change = rt._handle(
        {
            "topic": topic,
            "event": "postgres_changes",
            "payload": {"data": {"type": "DELETE", "record": {}, "old_record": {"id": "t1"}}},
        }
    )
    assert change == {"eventType": "DELETE", "new": {}, "old": {"id": "t1"}}

    assert rt._handle({"topic": "phoenix", "event": "phx_reply", "payload": {"status": "ok"}}) is None
    assert rt._handle({"topic": topic, "event": "presence_state", "payload": {}}) is None

    with pytest.raises(TransportError):
        rt._handle({"topic": topic, "event": "phx_error", "payload": {}})
    with pytest.raises(TransportError):
        rt._handle({"topic": topic, "event": "phx_reply", "payload": {"status": "error", "response": "bad"}})


def test_realtime_url_is_required() -> None:
    with pytest.raises(RuntimeError):
        RealtimeTransport("", api_key=None)


# ---- against a local websocket server ----

TOPIC = "realtime:public:todo_tasks"


def _reply(join: dict, status: str, response: dict | None = None) -> str:
    return json.dumps(
        {
            "topic": join["topic"],
            "event": "phx_reply",
            "payload": {"status": status, "response": response or {}},
            "ref": join["ref"],
        }
    )


@contextlib.asynccontextmanager
async def _realtime_server(handler):
    async with serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        yield f"ws://127.0.0.1:{port}/realtime/v1"


@pytest.mark.asyncio
async def test_join_push_and_server_close() -> None:
    joins: list[dict] = []
    paths: list[str] = []
    row = make_task("t9", title="Buy milk").to_row()

    async def handler(ws) -> None:
        paths.append(ws.request.path)
        join = json.loads(await ws.recv())
        joins.append(join)
        await ws.send(_reply(join, "ok"))
        await ws.send(
            json.dumps(
                {
                    "topic": TOPIC,
                    "event": "postgres_changes",
                    "payload": {"data": {"type": "INSERT", "record": row, "old_record": {}}},
                    "ref": None,
                }
            )
        )
        await ws.close()

    async with _realtime_server(handler) as url:
        rt = RealtimeTransport(url, api_key="anon-key")
        await rt.connect(user_id="u1", access_token="tok-1")

        changes = rt.changes()
        change = await asyncio.wait_for(anext(changes), timeout=2.0)
        assert change == {"eventType": "INSERT", "new": row, "old": {}}

        with pytest.raises(TransportError):
            await asyncio.wait_for(anext(changes), timeout=2.0)
        await rt.close()

    assert paths == ["/realtime/v1/websocket?vsn=1.0.0&apikey=anon-key"]
    join = joins[0]
    assert join["topic"] == TOPIC
    assert join["event"] == "phx_join"
    assert join["payload"]["access_token"] == "tok-1"
    assert join["payload"]["config"]["postgres_changes"][0]["filter"] == "user_id=eq.u1"


@pytest.mark.asyncio
async def test_rejected_join_raises_and_closes() -> None:
    async def handler(ws) -> None:
        join = json.loads(await ws.recv())
        await ws.send(_reply(join, "error", {"reason": "invalid token"}))
        async for _ in ws:
            pass

    async with _realtime_server(handler) as url:
        rt = RealtimeTransport(url, api_key=None)
        with pytest.raises(TransportError):
            await rt.connect(user_id="u1", access_token="expired")

        with pytest.raises(TransportError):
            await anext(rt.changes())


@pytest.mark.asyncio
async def test_heartbeat_runs_until_client_close() -> None:
    seen: list[dict] = []
    heartbeat = asyncio.Event()

    async def handler(ws) -> None:
        join = json.loads(await ws.recv())
        await ws.send(_reply(join, "ok"))
        async for raw in ws:
            msg = json.loads(raw)
            seen.append(msg)
            if msg["event"] == "heartbeat":
                heartbeat.set()

    async def drain(rt: RealtimeTransport) -> list:
        return [c async for c in rt.changes()]

    async with _realtime_server(handler) as url:
        rt = RealtimeTransport(url, api_key=None, heartbeat_seconds=1.0)
        await rt.connect(user_id="u1", access_token="tok-1")
        consumer = asyncio.create_task(drain(rt))

        await asyncio.wait_for(heartbeat.wait(), timeout=5.0)
        await rt.close()

        # a client-side close ends the stream without an error
        assert await asyncio.wait_for(consumer, timeout=2.0) == []
        assert rt._heartbeat_task is None

    beats = [m for m in seen if m["event"] == "heartbeat"]
    assert beats and beats[0]["topic"] == "phoenix"
