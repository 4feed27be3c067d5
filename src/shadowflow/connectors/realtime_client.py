# src/shadowflow/connectors/realtime_client.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import urlencode

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from ..core.ports import ChangePayload
from ..tasks.errors import TransportError

logger = logging.getLogger(__name__)

TASKS_SCHEMA = "public"
TASKS_TABLE = "todo_tasks"


def normalize_postgres_change(payload: dict[str, Any]) -> ChangePayload | None:
    """
    Turn a realtime `postgres_changes` push into the `{eventType, new, old}` shape.

    Returns None when the message carries no change record.
    """
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict) or not data.get("type"):
        return None
    return {
        "eventType": str(data["type"]).upper(),
        "new": data.get("record") or {},
        "old": data.get("old_record") or {},
    }


class RealtimeTransport:
    """
    Websocket client for the hosted database's realtime service (Phoenix channels).

    - connect(): open the socket, join `realtime:<schema>:<table>` with a postgres_changes
      filter on user_id, wait for the join reply
    - changes(): yield normalised row changes until the socket drops (TransportError)
      or close() is called (iterator ends)
    - a heartbeat keeps the socket open; it never re-establishes a lost connection
    """

    def __init__(
            self,
            url: str,
            *,
            api_key: str | None,
            heartbeat_seconds: float = 30.0,
            join_timeout_seconds: float = 10.0,
            schema: str = TASKS_SCHEMA,
            table: str = TASKS_TABLE,
    ) -> None:
        if not url.strip():
            raise RuntimeError("Realtime URL is not set. Set SHADOWFLOW_REALTIME_URL in your .env.")
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._heartbeat_s = max(1.0, float(heartbeat_seconds))
        self._join_timeout_s = max(1.0, float(join_timeout_seconds))
        self._schema = schema
        self._table = table
        self._topic = f"realtime:{schema}:{table}"

        self._ws: ClientConnection | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._ref = 0
        self._join_ref: str | None = None
        self._backlog: list[dict[str, Any]] = []
        self._closing = False

    # ---- low-level helpers ----

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def _socket_url(self) -> str:
        params = {"vsn": "1.0.0"}
        if self._api_key:
            params["apikey"] = self._api_key
        return f"{self._url}/websocket?{urlencode(params)}"

    async def _send(self, topic: str, event: str, payload: dict[str, Any], *, ref: str | None = None) -> str:
        if self._ws is None:
            raise TransportError("Realtime socket is not open")
        ref = ref or self._next_ref()
        msg = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        if topic == self._topic and self._join_ref:
            msg["join_ref"] = self._join_ref
        await self._ws.send(json.dumps(msg))
        return ref

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_s)
            try:
                await self._send("phoenix", "heartbeat", {})
                logger.debug("Realtime heartbeat sent")
            except (ConnectionClosed, TransportError):
                return

    # ---- FeedTransport ----

    async def connect(self, *, user_id: str, access_token: str | None) -> None:
        self._closing = False
        try:
            self._ws = await connect(self._socket_url(), open_timeout=self._join_timeout_s)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise TransportError(f"Realtime connect failed: {e.__class__.__name__}") from e

        join_payload: dict[str, Any] = {
            "config": {
                "broadcast": {"self": False},
                "presence": {"key": ""},
                "postgres_changes": [
                    {
                        "event": "*",
                        "schema": self._schema,
                        "table": self._table,
                        "filter": f"user_id=eq.{user_id}",
                    }
                ],
            },
        }
        if access_token:
            join_payload["access_token"] = access_token

        self._join_ref = self._next_ref()
        try:
            await self._send(self._topic, "phx_join", join_payload, ref=self._join_ref)
            await asyncio.wait_for(self._await_join_reply(), timeout=self._join_timeout_s)
        except (ConnectionClosed, asyncio.TimeoutError) as e:
            await self.close()
            raise TransportError(f"Realtime join failed: {e.__class__.__name__}") from e
        except TransportError:
            await self.close()
            raise

        self._heartbeat_task = asyncio.create_task(self._heartbeat(), name="realtime-heartbeat")
        logger.info("Realtime subscribed topic=%s user=%s", self._topic, user_id)

    async def _await_join_reply(self) -> None:
        if self._ws is None:
            raise TransportError("Realtime socket is not open")
        async for raw in self._ws:
            msg = self._decode(raw)
            if msg is None:
                continue
            if msg.get("event") == "phx_reply" and msg.get("ref") == self._join_ref:
                status = (msg.get("payload") or {}).get("status")
                if status != "ok":
                    response = (msg.get("payload") or {}).get("response")
                    raise TransportError(f"Realtime join rejected: {response!r}")
                return
            self._backlog.append(msg)
        raise TransportError("Realtime socket closed during join")

    @staticmethod
    def _decode(raw: str | bytes) -> dict[str, Any] | None:
        try:
            msg = json.loads(raw)
        except ValueError:
            logger.warning("Realtime: ignoring non-JSON frame")
            return None
        return msg if isinstance(msg, dict) else None

    def _handle(self, msg: dict[str, Any]) -> ChangePayload | None:
        topic = msg.get("topic")
        event = msg.get("event")
        payload = msg.get("payload") or {}

        if topic == self._topic and event == "postgres_changes":
            return normalize_postgres_change(payload)

        if topic == self._topic and event in ("phx_error", "phx_close"):
            raise TransportError(f"Realtime channel {event}")

        if event == "phx_reply" and isinstance(payload, dict) and payload.get("status") == "error":
            raise TransportError(f"Realtime error reply: {payload.get('response')!r}")

        logger.debug("Realtime: ignoring %s on %s", event, topic)
        return None

    async def changes(self) -> AsyncIterator[ChangePayload]:
        if self._ws is None:
            raise TransportError("Realtime socket is not open")

        backlog, self._backlog = self._backlog, []
        for msg in backlog:
            change = self._handle(msg)
            if change is not None:
                yield change

        try:
            async for raw in self._ws:
                msg = self._decode(raw)
                if msg is None:
                    continue
                change = self._handle(msg)
                if change is not None:
                    yield change
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as e:
            if not self._closing:
                raise TransportError(f"Realtime connection lost: {e.__class__.__name__}") from e

        if not self._closing:
            raise TransportError("Realtime connection closed by server")

    async def close(self) -> None:
        self._closing = True
        hb, self._heartbeat_task = self._heartbeat_task, None
        if hb is not None:
            hb.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await hb

        ws, self._ws = self._ws, None
        if ws is None:
            return
        with contextlib.suppress(ConnectionClosed, TransportError):
            await ws.send(json.dumps({"topic": self._topic, "event": "phx_leave", "payload": {}, "ref": self._next_ref()}))
        with contextlib.suppress(Exception):
            await ws.close()
